"""Microsoft Graph のカレンダー API クライアント。

すべての呼び出しは `RemoteCallExecutor` 経由で実行し、401 の場合は
トークンキャッシュを破棄して再取得する。
"""

from __future__ import annotations

import json
from urllib.parse import quote
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import httpx

from forum_portal.clients.token_cache import AccessTokenCache
from forum_portal.core import logging as app_logging
from forum_portal.core.errors import RemoteApiError
from forum_portal.core.models import Attendee, CalendarEvent, Category, UserInfo
from forum_portal.core.retry import DEFAULT_RETRY_CONFIG, RemoteCallExecutor, RetryConfig

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
EVENT_SELECT = "id,subject,body,start,end,location,organizer,categories,attendees"
USER_SELECT = "displayName,mail,userPrincipalName"
_PAGE_SIZE = 100


class GraphCalendarClient:
    """単一の共有メールボックスに対するカレンダー操作。"""

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient,
        token_cache: AccessTokenCache,
        mailbox: str,
        timezone_name: str,
        retry_config: RetryConfig = DEFAULT_RETRY_CONFIG,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        base_url: str = GRAPH_BASE_URL,
    ) -> None:
        self._http_client = http_client
        self._token_cache = token_cache
        self._mailbox = mailbox
        self._user_path = f"/users/{_path_segment(mailbox)}"
        self._timezone_name = timezone_name
        self._base_url = base_url.rstrip("/")
        executor_kwargs: dict[str, Any] = {
            "config": retry_config,
            "on_unauthorized": self.invalidate,
        }
        if sleep is not None:
            executor_kwargs["sleep"] = sleep
        self._executor = RemoteCallExecutor(**executor_kwargs)

    @property
    def mailbox(self) -> str:
        return self._mailbox

    def invalidate(self) -> None:
        """キャッシュ済みトークンを破棄し、次回呼び出しで再取得させる。"""

        self._token_cache.invalidate()

    async def list_events(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        """期間内に開始するイベントを開始時刻順に全ページ取得する。"""

        endpoint = f"{self._user_path}/calendar/events"
        params: dict[str, Any] | None = {
            "$select": EVENT_SELECT,
            "$filter": (
                f"start/dateTime ge '{_to_graph_utc(start)}' "
                f"and start/dateTime le '{_to_graph_utc(end)}'"
            ),
            "$orderby": "start/dateTime",
            "$top": str(_PAGE_SIZE),
        }
        context = f"Date range: {start.date().isoformat()} to {end.date().isoformat()}"
        url: str | None = f"{self._base_url}{endpoint}"

        raw_events: list[dict[str, Any]] = []
        while url is not None:
            page_url, page_params = url, params
            payload = await self._executor.execute(
                "GET",
                endpoint,
                lambda: self._request_json(
                    "GET", page_url, params=page_params, headers=self._prefer_timezone()
                ),
                context=context,
            )
            raw_events.extend(item for item in payload.get("value") or [] if isinstance(item, dict))
            url = payload.get("@odata.nextLink")
            params = None

        events: list[CalendarEvent] = []
        for item in raw_events:
            try:
                events.append(CalendarEvent.from_graph(item, default_tz=self._timezone_name))
            except ValueError as exc:
                app_logging.log_event(
                    "EVENT_SKIPPED", "Unparseable calendar event", event_id=item.get("id"), error=str(exc)
                )
        return events

    async def get_event(self, event_id: str) -> CalendarEvent:
        endpoint = f"{self._user_path}/calendar/events/{_path_segment(event_id)}"
        payload = await self._executor.execute(
            "GET",
            endpoint,
            lambda: self._request_json(
                "GET",
                f"{self._base_url}{endpoint}",
                params={"$select": EVENT_SELECT},
                headers=self._prefer_timezone(),
            ),
            context=f"Session ID: {event_id}",
        )
        return CalendarEvent.from_graph(payload, default_tz=self._timezone_name)

    async def get_event_attendees(self, event_id: str) -> tuple[list[Attendee], str | None]:
        """出席者一覧と変更トークン（`@odata.etag`）を返す。"""

        endpoint = f"{self._user_path}/calendar/events/{_path_segment(event_id)}"
        payload = await self._executor.execute(
            "GET",
            endpoint,
            lambda: self._request_json(
                "GET", f"{self._base_url}{endpoint}", params={"$select": "attendees"}
            ),
            context=f"Get attendees: {event_id}",
        )
        attendees = [
            Attendee.from_graph(item)
            for item in payload.get("attendees") or []
            if isinstance(item, dict)
        ]
        return attendees, payload.get("@odata.etag")

    async def patch_event_attendees(
        self,
        event_id: str,
        attendees: list[Attendee],
        *,
        etag: str | None = None,
        context: str | None = None,
    ) -> None:
        endpoint = f"{self._user_path}/calendar/events/{_path_segment(event_id)}"
        headers = {"If-Match": etag} if etag else None
        body = {"attendees": [attendee.to_graph() for attendee in attendees]}
        await self._executor.execute(
            "PATCH",
            endpoint,
            lambda: self._request_json(
                "PATCH", f"{self._base_url}{endpoint}", json_body=body, headers=headers
            ),
            context=context,
        )

    async def get_master_categories(self) -> list[Category]:
        endpoint = f"{self._user_path}/outlook/masterCategories"
        payload = await self._executor.execute(
            "GET",
            endpoint,
            lambda: self._request_json("GET", f"{self._base_url}{endpoint}"),
        )
        return [
            Category(
                id=str(item.get("id") or ""),
                display_name=str(item.get("displayName") or ""),
                color=item.get("color"),
            )
            for item in payload.get("value") or []
            if isinstance(item, dict)
        ]

    async def get_user_photo(self, email: str) -> bytes:
        endpoint = f"/users/{_path_segment(email)}/photo/$value"
        return await self._executor.execute(
            "GET",
            endpoint,
            lambda: self._request_bytes(f"{self._base_url}{endpoint}"),
            context=f"User photo: {email}",
        )

    async def get_user_info(self, email: str) -> UserInfo:
        """表示名とメールアドレスを返す。表示名の整形は呼び出し側で行う。"""

        endpoint = f"/users/{_path_segment(email)}"
        payload = await self._executor.execute(
            "GET",
            endpoint,
            lambda: self._request_json(
                "GET", f"{self._base_url}{endpoint}", params={"$select": USER_SELECT}
            ),
            context=f"User info: {email}",
        )
        return UserInfo(
            display_name=str(payload.get("displayName") or ""),
            email=str(payload.get("mail") or payload.get("userPrincipalName") or email),
        )

    def _prefer_timezone(self) -> dict[str, str]:
        return {"Prefer": f'outlook.timezone="{self._timezone_name}"'}

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        token = await self._token_cache.get_access_token()
        request_headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        if headers:
            request_headers.update(headers)
        response = await self._http_client.request(
            method, url, params=params, json=json_body, headers=request_headers
        )
        if response.status_code < 200 or response.status_code >= 300:
            raise RemoteApiError(
                f"Graph API {method} failed ({response.status_code}): "
                f"{_safe_graph_error_message(response)}",
                response.status_code,
                retry_after=response.headers.get("Retry-After"),
            )
        return response

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        response = await self._send(
            method, url, params=params, json_body=json_body, headers=headers
        )
        if response.status_code == 204 or not response.content:
            return {}
        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            raise RemoteApiError(
                "Invalid JSON payload from Graph API", response.status_code
            ) from exc
        if not isinstance(payload, dict):
            raise RemoteApiError(
                "Graph API payload must be a JSON object", response.status_code
            )
        return payload

    async def _request_bytes(self, url: str) -> bytes:
        response = await self._send("GET", url, headers={"Accept": "*/*"})
        return response.content


def _path_segment(value: str) -> str:
    """ID やメールアドレスを 1 つのパスセグメントとしてエンコードする。

    `/` を含む値や `.` / `..` がパスを上書きしないよう、ドットだけの値も符号化する。
    """

    encoded = quote(value, safe="")
    if encoded.strip(".") == "":
        return encoded.replace(".", "%2E")
    return encoded


def _to_graph_utc(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _safe_graph_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message") or error_payload.get("code")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]

    text = response.text.strip()
    if text:
        return " ".join(text.split())[:200]
    return "unknown error"
