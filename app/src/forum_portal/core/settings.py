"""アプリ全体で共有する設定読み込みロジック。"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable

import boto3
from botocore.exceptions import ClientError

from forum_portal.core.retry import RetryConfig


_DEFAULT_REGION = "eu-west-1"
_DEFAULT_TZ = "Europe/Amsterdam"
_DEFAULT_MAILBOX = "forum@caesar.nl"
_DEFAULT_LOCATION = "Caesar Hoofdkantoor, Utrecht"
_DEFAULT_EMAIL_DOMAIN = "caesar.nl"
_LOCAL_ENV = "local"


@dataclass(slots=True)
class Settings:
    """環境非依存で参照できる設定値の集合。"""

    app_env: str
    region: str
    azure_tenant_id: str | None
    azure_client_id: str | None
    azure_client_secret: str | None
    forum_mailbox: str = _DEFAULT_MAILBOX
    calendar_timezone: str = _DEFAULT_TZ
    default_location: str = _DEFAULT_LOCATION
    primary_email_domain: str | None = _DEFAULT_EMAIL_DOMAIN
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    failure_threshold: int = 3
    cooldown_seconds: float = 60.0
    categories_cache_seconds: float = 3600.0
    ssm_path_prefix: str | None = None

    @property
    def is_local(self) -> bool:
        return self.app_env == _LOCAL_ENV

    @property
    def has_azure_credentials(self) -> bool:
        return bool(self.azure_tenant_id and self.azure_client_id and self.azure_client_secret)

    @property
    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.max_retries,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
        )


def _get_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"環境変数 {name} は整数で指定してください: {raw!r}") from exc


def _get_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"環境変数 {name} は数値で指定してください: {raw!r}") from exc


def _fetch_ssm_parameters(
    region: str, names: Iterable[str], prefix: str
) -> dict[str, str]:
    name_list = [f"{prefix}/{name}" for name in names]
    client = boto3.client("ssm", region_name=region)
    try:
        resp = client.get_parameters(Names=name_list, WithDecryption=True)
    except ClientError as exc:  # pragma: no cover - boto3 例外ラップ
        raise RuntimeError("SSM パラメータ取得に失敗しました。") from exc

    found = {item["Name"]: item["Value"] for item in resp.get("Parameters", [])}
    missing = {name for name in name_list if name not in found}
    if missing:
        raise ValueError(f"SSM パラメータ未設定: {', '.join(sorted(missing))}")
    return found


def _tunables_from_env() -> dict[str, object]:
    """リトライ・クールダウン等の調整値は環境共通で環境変数から読む。"""

    return {
        "forum_mailbox": os.getenv("FORUM_MAILBOX", _DEFAULT_MAILBOX),
        "calendar_timezone": os.getenv("CALENDAR_TIMEZONE", _DEFAULT_TZ),
        "default_location": os.getenv("FORUM_DEFAULT_LOCATION", _DEFAULT_LOCATION),
        "primary_email_domain": os.getenv("PRIMARY_EMAIL_DOMAIN", _DEFAULT_EMAIL_DOMAIN) or None,
        "max_retries": _get_int_env("GRAPH_MAX_RETRIES", 3),
        "base_delay_ms": _get_int_env("GRAPH_BASE_DELAY_MS", 1000),
        "max_delay_ms": _get_int_env("GRAPH_MAX_DELAY_MS", 30000),
        "failure_threshold": _get_int_env("FAILURE_THRESHOLD", 3),
        "cooldown_seconds": _get_float_env("COOLDOWN_SECONDS", 60.0),
        "categories_cache_seconds": _get_float_env("CATEGORIES_CACHE_SECONDS", 3600.0),
    }


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """環境に応じて環境変数または SSM から設定を構築する。"""

    app_env = os.getenv("APP_ENV", _LOCAL_ENV)
    region = os.getenv("REGION", _DEFAULT_REGION)
    tunables = _tunables_from_env()

    if app_env == _LOCAL_ENV:
        return Settings(
            app_env=app_env,
            region=region,
            azure_tenant_id=os.getenv("AZURE_TENANT_ID"),
            azure_client_id=os.getenv("AZURE_CLIENT_ID"),
            azure_client_secret=os.getenv("AZURE_CLIENT_SECRET"),
            ssm_path_prefix=None,
            **tunables,  # type: ignore[arg-type]
        )

    prefix = os.getenv("SSM_PATH_PREFIX", "/forum-portal/prod")
    required_keys = [
        "azure/tenant_id",
        "azure/client_id",
        "azure/client_secret",
    ]
    values = _fetch_ssm_parameters(region=region, names=required_keys, prefix=prefix)

    def from_ssm(key: str) -> str:
        return values[f"{prefix}/{key}"]

    return Settings(
        app_env=app_env,
        region=region,
        azure_tenant_id=from_ssm("azure/tenant_id"),
        azure_client_id=from_ssm("azure/client_id"),
        azure_client_secret=from_ssm("azure/client_secret"),
        ssm_path_prefix=prefix,
        **tunables,  # type: ignore[arg-type]
    )
