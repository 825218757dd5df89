"""ForumService（失敗トラッカー・参加登録）のテスト。"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

import pytest

from forum_portal.core.errors import (
    ConflictError,
    PermissionDeniedError,
    ResourceNotFoundError,
    RetryExhaustedError,
    ServiceUnavailableError,
)
from forum_portal.core.failure_tracker import ServiceState
from forum_portal.core.models import Attendee, CalendarEvent, Category, UserInfo
from forum_portal.core.settings import Settings
from forum_portal.features.forum.usecase_forum import ForumService, build_forum_service

AMS = ZoneInfo("Europe/Amsterdam")


class FakeClock:
    def __init__(self) -> None:
        self.now = 500.0

    def __call__(self) -> float:
        return self.now


def _settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "app_env": "local",
        "region": "eu-west-1",
        "azure_tenant_id": "tenant",
        "azure_client_id": "client",
        "azure_client_secret": "secret",
    }
    values.update(overrides)
    return Settings(**values)


def _session_event(attendees: list[Attendee] | None = None) -> CalendarEvent:
    return CalendarEvent(
        id="s1",
        subject="Keynote",
        start=datetime(2026, 2, 20, 9, tzinfo=AMS),
        end=datetime(2026, 2, 20, 10, tzinfo=AMS),
        attendees=attendees or [],
    )


class FakeGraphClient:
    """Graph クライアントの代わりに、呼び出し記録と差し込んだ結果を返す。"""

    def __init__(self) -> None:
        self.list_events_result: list[CalendarEvent] | BaseException = []
        self.get_event_result: CalendarEvent | BaseException = _session_event()
        self.attendees: list[Attendee] = []
        self.etag: str | None = 'W/"etag-1"'
        self.patch_errors: list[BaseException] = []
        self.patches: list[tuple[list[Attendee], str | None]] = []
        self.categories_result: list[Category] | BaseException = []
        self.photos: dict[str, bytes] = {}
        self.users: dict[str, UserInfo] = {}
        self.calls: list[str] = []

    async def list_events(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        self.calls.append("list_events")
        if isinstance(self.list_events_result, BaseException):
            raise self.list_events_result
        return self.list_events_result

    async def get_event(self, event_id: str) -> CalendarEvent:
        self.calls.append("get_event")
        if isinstance(self.get_event_result, BaseException):
            raise self.get_event_result
        return self.get_event_result

    async def get_event_attendees(self, event_id: str) -> tuple[list[Attendee], str | None]:
        self.calls.append("get_event_attendees")
        return list(self.attendees), self.etag

    async def patch_event_attendees(
        self,
        event_id: str,
        attendees: list[Attendee],
        *,
        etag: str | None = None,
        context: str | None = None,
    ) -> None:
        self.calls.append("patch_event_attendees")
        if self.patch_errors:
            raise self.patch_errors.pop(0)
        self.patches.append((attendees, etag))
        self.attendees = attendees
        self.get_event_result = _session_event(attendees)

    async def get_master_categories(self) -> list[Category]:
        self.calls.append("get_master_categories")
        if isinstance(self.categories_result, BaseException):
            raise self.categories_result
        return self.categories_result

    async def get_user_photo(self, email: str) -> bytes:
        self.calls.append(f"photo:{email}")
        if email not in self.photos:
            raise ResourceNotFoundError(f"Resource not found: {email}")
        return self.photos[email]

    async def get_user_info(self, email: str) -> UserInfo:
        self.calls.append(f"user:{email}")
        if email not in self.users:
            raise ResourceNotFoundError(f"Resource not found: {email}")
        return self.users[email]


def _service(graph: FakeGraphClient, clock: FakeClock | None = None, **overrides: Any) -> ForumService:
    return ForumService(
        graph_client=graph,  # type: ignore[arg-type]
        settings=_settings(**overrides),
        clock=clock or FakeClock(),
        now=lambda: datetime(2026, 2, 10, 12, 0, tzinfo=AMS),
    )


async def test_フォーラムデータを組み立てる() -> None:
    graph = FakeGraphClient()
    graph.list_events_result = [
        CalendarEvent(
            id="forum",
            subject="Caesar Forum",
            start=datetime(2026, 2, 20, tzinfo=AMS),
            end=datetime(2026, 2, 21, tzinfo=AMS),
        ),
        _session_event(),
    ]

    data = await _service(graph).get_forum_data()

    assert data.edition.id == "edition-2026-02-20"
    assert [session.id for session in data.sessions] == ["s1"]


async def test_3回連続で失敗するとクールダウン中は外部を呼ばない() -> None:
    graph = FakeGraphClient()
    graph.list_events_result = RetryExhaustedError("Failed after 4 attempts: boom")
    clock = FakeClock()
    service = _service(graph, clock)

    for _ in range(3):
        with pytest.raises(ServiceUnavailableError):
            await service.get_forum_data()

    assert service.failure_tracker.state is ServiceState.COOLING_DOWN
    calls_before = len(graph.calls)

    clock.now += 10
    with pytest.raises(ServiceUnavailableError):
        await service.get_forum_data()
    assert len(graph.calls) == calls_before

    clock.now += 60
    graph.list_events_result = []
    data = await service.get_forum_data()
    assert data.edition.id == "no-events"
    assert service.failure_tracker.state is ServiceState.AVAILABLE
    assert service.failure_tracker.consecutive_failures == 0


async def test_403_は権限エラーのまま送出し失敗として数える() -> None:
    graph = FakeGraphClient()
    graph.list_events_result = PermissionDeniedError("Access denied")
    service = _service(graph)

    with pytest.raises(PermissionDeniedError):
        await service.get_forum_data()

    assert service.failure_tracker.consecutive_failures == 1


async def test_想定外の例外も失敗として数え_503_相当に変換する() -> None:
    graph = FakeGraphClient()
    graph.get_event_result = ValueError("Missing dateTime")
    service = _service(graph)

    with pytest.raises(ServiceUnavailableError) as excinfo:
        await service.get_session("s1")

    assert isinstance(excinfo.value.__cause__, ValueError)
    assert service.failure_tracker.consecutive_failures == 1


async def test_存在しないセッションは_none_で成功扱い() -> None:
    graph = FakeGraphClient()
    graph.get_event_result = ResourceNotFoundError("Resource not found")
    service = _service(graph)
    service.failure_tracker.record_failure()

    assert await service.get_session("missing") is None
    assert service.failure_tracker.consecutive_failures == 0


async def test_スラッグでセッションを引く() -> None:
    graph = FakeGraphClient()
    graph.list_events_result = [
        CalendarEvent(
            id="forum",
            subject="Caesar Forum",
            start=datetime(2026, 2, 20, tzinfo=AMS),
            end=datetime(2026, 2, 21, tzinfo=AMS),
        ),
        CalendarEvent(
            id="s1",
            subject="Keynote",
            start=datetime(2026, 2, 20, 9, tzinfo=AMS),
            end=datetime(2026, 2, 20, 10, tzinfo=AMS),
            body_content="Welkom\n---\nslug: keynote\n---",
        ),
    ]
    service = _service(graph)

    session = await service.get_session_by_slug("keynote")

    assert session is not None
    assert session.id == "s1"
    assert await service.get_session_by_slug("bestaat-niet") is None


async def test_参加登録は任意出席者として追加する() -> None:
    graph = FakeGraphClient()
    graph.attendees = [Attendee(email="jan@caesar.nl", name="Jan", type="required")]

    session = await _service(graph).register_for_session("s1", "piet@caesar.nl", "Piet")

    assert session is not None
    attendees, etag = graph.patches[0]
    assert etag == 'W/"etag-1"'
    assert attendees[-1] == Attendee(email="piet@caesar.nl", name="Piet", type="optional")
    assert [person.email for person in session.attendees] == ["piet@caesar.nl"]


async def test_辞退済みの登録は既存アドレスで置き換える() -> None:
    graph = FakeGraphClient()
    graph.attendees = [
        Attendee(email="Piet@caesar-groep.nl", name="Piet", type="optional", response="declined")
    ]

    await _service(graph).register_for_session("s1", "piet@caesar.nl", "Piet")

    attendees, _ = graph.patches[0]
    assert attendees == [Attendee(email="Piet@caesar-groep.nl", name="Piet", type="optional")]


async def test_登録済みなら更新しない() -> None:
    graph = FakeGraphClient()
    graph.attendees = [Attendee(email="piet@caesar.nl", name="Piet", type="optional")]

    session = await _service(graph).register_for_session("s1", "piet@caesar.nl", "Piet")

    assert session is not None
    assert graph.patches == []


async def test_412_の場合は読み直して再適用する() -> None:
    graph = FakeGraphClient()
    graph.patch_errors = [ConflictError("Concurrent modification")]

    session = await _service(graph).register_for_session("s1", "piet@caesar.nl", None)

    assert session is not None
    assert graph.calls.count("get_event_attendees") == 2
    assert graph.patches[0][0][-1].name == "piet"


async def test_412_が続く場合はサービス利用不可() -> None:
    graph = FakeGraphClient()
    graph.patch_errors = [ConflictError("conflict") for _ in range(3)]

    with pytest.raises(ServiceUnavailableError):
        await _service(graph).register_for_session("s1", "piet@caesar.nl", "Piet")


async def test_登録取り消しは一致するエントリをすべて除く() -> None:
    graph = FakeGraphClient()
    graph.attendees = [
        Attendee(email="jan@caesar.nl", name="Jan", type="required"),
        Attendee(email="piet@caesar.nl", name="Piet", type="optional"),
        Attendee(email="PIET@caesar-groep.nl", name="Piet", type="optional"),
    ]

    session = await _service(graph).unregister_from_session("s1", "piet@caesar.nl")

    assert session is not None
    attendees, _ = graph.patches[0]
    assert [attendee.email for attendee in attendees] == ["jan@caesar.nl"]
    assert session.attendees == []


async def test_存在しないイベントへの登録は_none() -> None:
    graph = FakeGraphClient()

    async def missing(event_id: str) -> tuple[list[Attendee], str | None]:
        raise ResourceNotFoundError("Resource not found")

    graph.get_event_attendees = missing  # type: ignore[method-assign]

    assert await _service(graph).register_for_session("nope", "piet@caesar.nl") is None


async def test_カテゴリは1時間キャッシュする() -> None:
    graph = FakeGraphClient()
    graph.categories_result = [Category(id="1", display_name="AI", color="preset0")]
    clock = FakeClock()
    service = _service(graph, clock)

    assert [c.display_name for c in await service.get_master_categories()] == ["AI"]
    clock.now += 3599
    await service.get_master_categories()
    assert graph.calls.count("get_master_categories") == 1

    clock.now += 2
    await service.get_master_categories()
    assert graph.calls.count("get_master_categories") == 2


async def test_カテゴリ取得に失敗したら空リスト() -> None:
    graph = FakeGraphClient()
    graph.categories_result = RetryExhaustedError("boom")

    assert await _service(graph).get_master_categories() == []


async def test_写真は主ドメインを先に試す() -> None:
    graph = FakeGraphClient()
    graph.photos = {"piet@caesar-groep.nl": b"\xff\xd8jpeg"}

    photo = await _service(graph).get_user_photo("piet@caesar-groep.nl")

    assert photo == b"\xff\xd8jpeg"
    assert graph.calls == ["photo:piet@caesar.nl", "photo:piet@caesar-groep.nl"]


async def test_写真が無ければ_none() -> None:
    graph = FakeGraphClient()

    assert await _service(graph).get_user_photo("piet@caesar.nl") is None
    assert graph.calls == ["photo:piet@caesar.nl"]


async def test_ユーザー情報の表示名を整形する() -> None:
    graph = FakeGraphClient()
    graph.users = {"jan@caesar.nl": UserInfo(display_name="Jansen, Jan", email="jan@caesar.nl")}

    info = await _service(graph).get_user_info("jan@caesar-groep.nl")

    assert info == UserInfo(display_name="Jan Jansen", email="jan@caesar.nl")


async def test_クールダウン中はユーザー情報を取得しない() -> None:
    graph = FakeGraphClient()
    service = _service(graph)
    for _ in range(3):
        service.failure_tracker.allow_request()
        service.failure_tracker.record_failure()

    assert await service.get_user_info("jan@caesar.nl") is None
    assert await service.get_user_photo("jan@caesar.nl") is None
    assert graph.calls == []


def test_資格情報が無ければサービスを組み立てられない() -> None:
    with pytest.raises(ValueError):
        build_forum_service(_settings(azure_client_secret=None))


async def test_資格情報があればサービスを組み立てる() -> None:
    service = build_forum_service(_settings())

    assert isinstance(service, ForumService)
    await service.aclose()
