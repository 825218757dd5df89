from __future__ import annotations

import pytest

from forum_portal.core import settings as core_settings

_ENV_NAMES = (
    "APP_ENV",
    "AZURE_TENANT_ID",
    "AZURE_CLIENT_ID",
    "AZURE_CLIENT_SECRET",
    "FORUM_MAILBOX",
    "CALENDAR_TIMEZONE",
    "FORUM_DEFAULT_LOCATION",
    "PRIMARY_EMAIL_DOMAIN",
    "GRAPH_MAX_RETRIES",
    "GRAPH_BASE_DELAY_MS",
    "GRAPH_MAX_DELAY_MS",
    "FAILURE_THRESHOLD",
    "COOLDOWN_SECONDS",
    "CATEGORIES_CACHE_SECONDS",
)


@pytest.fixture(autouse=True)
def basic_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """ローカル環境・既定値の設定でテストを実行する。"""

    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    core_settings.load_settings.cache_clear()
