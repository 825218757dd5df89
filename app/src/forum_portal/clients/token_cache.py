"""Microsoft ID プラットフォームのアクセストークンを有効期限付きで保持する。"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

import httpx

from forum_portal.core import logging as app_logging
from forum_portal.core.errors import AuthenticationError

GRAPH_DEFAULT_SCOPE = "https://graph.microsoft.com/.default"
_TOKEN_URL_TEMPLATE = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
_DEFAULT_EXPIRES_IN = 3600
_EXPIRY_SKEW_SECONDS = 60
_MIN_TTL_SECONDS = 30


def token_url(tenant_id: str) -> str:
    return _TOKEN_URL_TEMPLATE.format(tenant_id=tenant_id)


class AccessTokenCache:
    """client_credentials グラントで取得したトークンのキャッシュ。

    `invalidate()` されるか期限が切れるまで同じトークンを返す。
    """

    def __init__(
        self,
        *,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        http_client: httpx.AsyncClient,
        scope: str = GRAPH_DEFAULT_SCOPE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._tenant_id = tenant_id
        self._client_id = client_id
        self._client_secret = client_secret
        self._http_client = http_client
        self._scope = scope
        self._clock = clock
        self._access_token: str | None = None
        self._expires_at: float | None = None
        self._refresh_lock = asyncio.Lock()

    @property
    def expires_at(self) -> float | None:
        return self._expires_at

    def is_fresh(self) -> bool:
        if self._access_token is None or self._expires_at is None:
            return False
        return self._clock() < self._expires_at

    async def get_access_token(self) -> str:
        token = self._fresh_token()
        if token is not None:
            return token

        async with self._refresh_lock:
            token = self._fresh_token()
            if token is not None:
                return token
            return await self._acquire()

    def _fresh_token(self) -> str | None:
        return self._access_token if self.is_fresh() else None

    def invalidate(self) -> None:
        self._access_token = None
        self._expires_at = None
        app_logging.log_event("TOKEN", "Token invalidated for refresh")

    async def _acquire(self) -> str:
        endpoint = token_url(self._tenant_id)
        app_logging.log_api_request(method="POST", endpoint=endpoint, context="Token acquisition")
        started = time.perf_counter()
        try:
            response = await self._http_client.post(
                endpoint,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "scope": self._scope,
                    "grant_type": "client_credentials",
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            app_logging.log_auth_failure(reason="Token acquisition error", details=str(exc))
            raise AuthenticationError(f"Token request failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            message = _safe_error_message(response)
            app_logging.log_auth_failure(
                reason="Token acquisition error",
                details=f"{response.status_code}: {message}",
            )
            raise AuthenticationError(
                f"Token acquisition failed ({response.status_code}): {message}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            app_logging.log_auth_failure(reason="Token acquisition failed", details="Invalid JSON")
            raise AuthenticationError("Token endpoint returned invalid JSON") from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token.strip():
            app_logging.log_auth_failure(
                reason="Token acquisition failed", details="No access token in response"
            )
            raise AuthenticationError(
                "Failed to acquire access token from Microsoft identity platform"
            )

        expires_in = _coerce_expires_in(payload.get("expires_in"))
        ttl = max(expires_in - _EXPIRY_SKEW_SECONDS, _MIN_TTL_SECONDS)
        token = access_token.strip()
        self._access_token = token
        self._expires_at = self._clock() + ttl
        app_logging.log_api_response(
            method="POST",
            endpoint=endpoint,
            status="SUCCESS",
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        return token


def _coerce_expires_in(value: Any) -> int:
    if isinstance(value, bool):
        return _DEFAULT_EXPIRES_IN
    if isinstance(value, (int, float)):
        return int(value) if value > 0 else _DEFAULT_EXPIRES_IN
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip()) or _DEFAULT_EXPIRES_IN
    return _DEFAULT_EXPIRES_IN


def _safe_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        message = payload.get("error_description") or payload.get("error")
        if isinstance(message, str) and message.strip():
            return " ".join(message.split())[:200]

    text = response.text.strip()
    if text:
        return " ".join(text.split())[:200]
    return "unknown error"
