"""フォーラムデータの取得と参加登録のユースケース。

Graph 呼び出しはすべて `FailureTracker` で保護し、クールダウン中は
外部へ問い合わせずに `ServiceUnavailableError` を返す。
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Awaitable, Callable, TypeVar

import httpx

from forum_portal.clients.graph_client import GraphCalendarClient
from forum_portal.clients.http_client import create_async_client
from forum_portal.clients.token_cache import AccessTokenCache
from forum_portal.core import logging as app_logging
from forum_portal.core.errors import (
    ConflictError,
    ForumPortalError,
    PermissionDeniedError,
    ResourceNotFoundError,
    ServiceUnavailableError,
)
from forum_portal.core.failure_tracker import FailureTracker
from forum_portal.core.models import Attendee, Category, ForumData, Session, UserInfo, resolve_timezone
from forum_portal.core.settings import Settings
from forum_portal.features.forum.assembler_forum import build_forum_data, build_session, forum_window
from forum_portal.shared.attendee_roles import email_local_part, emails_match, format_display_name

T = TypeVar("T")

_MAX_CONFLICT_RETRIES = 3
_REGISTERED_TYPE = "optional"
_DECLINED = "declined"


class ForumService:
    """共有カレンダーを唯一のデータソースとするフォーラム API の窓口。"""

    def __init__(
        self,
        *,
        graph_client: GraphCalendarClient,
        settings: Settings,
        failure_tracker: FailureTracker | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._graph = graph_client
        self._settings = settings
        self._tracker = failure_tracker or FailureTracker(
            threshold=settings.failure_threshold,
            cooldown_seconds=settings.cooldown_seconds,
            clock=clock,
        )
        self._clock = clock
        self._tz = resolve_timezone(settings.calendar_timezone, default_tz="Europe/Amsterdam")
        self._now = now or (lambda: datetime.now(self._tz))
        self._http_client = http_client
        self._categories: list[Category] | None = None
        self._categories_expires_at: float | None = None

    @property
    def failure_tracker(self) -> FailureTracker:
        return self._tracker

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()

    async def get_forum_data(self) -> ForumData:
        """今月初めから 2 か月後の月末までのイベントから今回のフォーラムを組み立てる。"""

        now = self._now()
        start, end = forum_window(now)
        events = await self._guarded(lambda: self._graph.list_events(start, end))
        return build_forum_data(
            events,
            today=now.date(),
            default_location=self._settings.default_location,
            tz=self._tz,
        )

    async def get_session(self, session_id: str) -> Session | None:
        try:
            event = await self._guarded(lambda: self._graph.get_event(session_id))
        except ResourceNotFoundError:
            return None
        return build_session(event)

    async def get_session_by_slug(self, slug: str) -> Session | None:
        data = await self.get_forum_data()
        return next((session for session in data.sessions if session.slug == slug), None)

    async def register_for_session(
        self, session_id: str, user_email: str, user_name: str | None = None
    ) -> Session | None:
        """任意出席者として登録する。辞退済みの同一人物がいれば置き換える。"""

        name = user_name or email_local_part(user_email)

        def apply(attendees: list[Attendee]) -> list[Attendee] | None:
            existing = next((a for a in attendees if emails_match(a.email, user_email)), None)
            if existing is not None and existing.response.lower() != _DECLINED:
                return None
            remaining = [a for a in attendees if not emails_match(a.email, user_email)]
            address = existing.email if existing is not None else user_email
            return [*remaining, Attendee(email=address, name=name, type=_REGISTERED_TYPE)]

        updated = await self._update_attendees(
            session_id, apply, context=f"Register user: {user_email}"
        )
        if updated:
            app_logging.log_event(
                "REGISTRATION", "User registered", session_id=session_id, user_email=user_email
            )
        return await self._session_after_update(session_id, updated)

    async def unregister_from_session(self, session_id: str, user_email: str) -> Session | None:
        def apply(attendees: list[Attendee]) -> list[Attendee] | None:
            return [a for a in attendees if not emails_match(a.email, user_email)]

        updated = await self._update_attendees(
            session_id, apply, context=f"Unregister user: {user_email}"
        )
        if updated:
            app_logging.log_event(
                "REGISTRATION", "User unregistered", session_id=session_id, user_email=user_email
            )
        return await self._session_after_update(session_id, updated)

    async def get_master_categories(self) -> list[Category]:
        """マスターカテゴリを返す。取得に失敗した場合は空リスト。"""

        now = self._clock()
        if (
            self._categories is not None
            and self._categories_expires_at is not None
            and now < self._categories_expires_at
        ):
            return self._categories

        try:
            categories = await self._graph.get_master_categories()
        except ForumPortalError as exc:
            app_logging.log_api_error(
                method="GET",
                endpoint="masterCategories",
                error=exc,
                context="Falling back to empty categories",
            )
            return []

        self._categories = categories
        self._categories_expires_at = now + self._settings.categories_cache_seconds
        app_logging.log_event(
            "CACHE",
            "Master categories cached",
            categories=[category.display_name for category in categories],
        )
        return categories

    def invalidate_categories(self) -> None:
        self._categories = None
        self._categories_expires_at = None

    async def get_user_photo(self, email: str) -> bytes | None:
        for address in self._candidate_addresses(email):
            if self._tracker.remaining_cooldown() > 0:
                return None
            try:
                return await self._graph.get_user_photo(address)
            except ForumPortalError:
                continue
        return None

    async def get_user_info(self, email: str) -> UserInfo | None:
        for address in self._candidate_addresses(email):
            if self._tracker.remaining_cooldown() > 0:
                return None
            try:
                info = await self._graph.get_user_info(address)
            except ForumPortalError:
                continue
            return UserInfo(
                display_name=format_display_name(info.display_name or email_local_part(email)),
                email=info.email or email,
            )
        return None

    def _candidate_addresses(self, email: str) -> list[str]:
        """主ドメインのアドレスを先に試し、だめなら元のアドレスを試す。"""

        domain = self._settings.primary_email_domain
        parts = email.split("@")
        if not domain or len(parts) != 2 or parts[1].lower() == domain.lower():
            return [email]
        return [f"{parts[0]}@{domain}", email]

    async def _update_attendees(
        self,
        session_id: str,
        apply: Callable[[list[Attendee]], list[Attendee] | None],
        *,
        context: str,
    ) -> bool | None:
        """出席者リストを読み込み・変更・書き戻す。

        戻り値は、イベントが存在しない場合 None、変更不要なら False、更新したら True。
        変更トークンがあれば If-Match を付け、412 の場合は読み直して再適用する。
        """

        for attempt in range(1, _MAX_CONFLICT_RETRIES + 1):
            try:
                attendees, etag = await self._guarded(
                    lambda: self._graph.get_event_attendees(session_id)
                )
            except ResourceNotFoundError:
                return None

            updated = apply(attendees)
            if updated is None:
                return False

            try:
                await self._guarded(
                    lambda: self._graph.patch_event_attendees(
                        session_id, updated, etag=etag, context=context
                    )
                )
            except ResourceNotFoundError:
                return None
            except ConflictError:
                app_logging.log_event(
                    "REGISTRATION",
                    "Attendee update conflicted, re-reading event",
                    session_id=session_id,
                    attempt=attempt,
                )
                continue
            return True

        raise ServiceUnavailableError(
            f"Attendee update for {session_id} kept conflicting with concurrent changes"
        )

    async def _session_after_update(self, session_id: str, updated: bool | None) -> Session | None:
        if updated is None:
            return None
        return await self.get_session(session_id)

    async def _guarded(self, operation: Callable[[], Awaitable[T]]) -> T:
        """失敗トラッカーで保護して Graph 呼び出しを実行する。

        - 404 は疎通できたものとして成功扱い（例外はそのまま送出）
        - 412 も成功扱いとし、呼び出し側で再試行する
        - 403 は失敗として数え、そのまま送出する
        - それ以外（想定外の例外を含む）は失敗として数え、`ServiceUnavailableError` に変換する
        """

        if not self._tracker.allow_request():
            raise ServiceUnavailableError()
        try:
            result = await operation()
        except (ResourceNotFoundError, ConflictError):
            self._tracker.record_success()
            raise
        except PermissionDeniedError:
            self._tracker.record_failure()
            raise
        except Exception as exc:
            self._tracker.record_failure()
            app_logging.log_event(
                "GRAPH_UNAVAILABLE",
                str(exc),
                error_type=type(exc).__name__,
                consecutive_failures=self._tracker.consecutive_failures,
            )
            raise ServiceUnavailableError() from exc
        self._tracker.record_success()
        return result


def build_forum_service(
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ForumService:
    """設定から Graph クライアント一式を組み立てる。"""

    tenant_id = settings.azure_tenant_id
    client_id = settings.azure_client_id
    client_secret = settings.azure_client_secret
    if not (tenant_id and client_id and client_secret):
        raise ValueError(
            "Azure の資格情報が不足しています（AZURE_TENANT_ID / AZURE_CLIENT_ID / AZURE_CLIENT_SECRET）。"
        )

    http_client = create_async_client(transport=transport)
    token_cache = AccessTokenCache(
        tenant_id=tenant_id,
        client_id=client_id,
        client_secret=client_secret,
        http_client=http_client,
    )
    graph_client = GraphCalendarClient(
        http_client=http_client,
        token_cache=token_cache,
        mailbox=settings.forum_mailbox,
        timezone_name=settings.calendar_timezone,
        retry_config=settings.retry_config,
    )
    return ForumService(graph_client=graph_client, settings=settings, http_client=http_client)
