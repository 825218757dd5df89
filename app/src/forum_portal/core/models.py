"""ユースケース間で共有するデータモデル。"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


@dataclass(slots=True)
class Attendee:
    """Graph のイベント出席者 1 件。"""

    email: str
    name: str
    type: str = "required"
    response: str = "none"

    @classmethod
    def from_graph(cls, payload: dict[str, Any]) -> "Attendee":
        address = payload.get("emailAddress") or {}
        status = payload.get("status") or {}
        return cls(
            email=str(address.get("address") or ""),
            name=str(address.get("name") or ""),
            type=str(payload.get("type") or "required"),
            response=str(status.get("response") or "none"),
        )

    def to_graph(self) -> dict[str, Any]:
        """PATCH 用の出席者辞書。`status` は Graph 側で読み取り専用。"""

        return {
            "emailAddress": {"address": self.email, "name": self.name},
            "type": self.type,
        }


@dataclass(slots=True)
class CalendarEvent:
    """共有カレンダーから取得したイベント（読み取り専用入力）。"""

    id: str
    subject: str
    start: datetime
    end: datetime
    body_content: str = ""
    body_content_type: str = "text"
    location: str | None = None
    organizer_name: str | None = None
    organizer_email: str | None = None
    categories: list[str] = field(default_factory=list)
    attendees: list[Attendee] = field(default_factory=list)
    etag: str | None = None

    @property
    def is_html(self) -> bool:
        return self.body_content_type.lower() == "html"

    @classmethod
    def from_graph(cls, payload: dict[str, Any], *, default_tz: str) -> "CalendarEvent":
        """Graph API のイベント JSON を変換する。"""

        body = payload.get("body") or {}
        location = payload.get("location") or {}
        organizer = (payload.get("organizer") or {}).get("emailAddress") or {}
        return cls(
            id=str(payload.get("id") or ""),
            subject=str(payload.get("subject") or ""),
            start=parse_graph_datetime(payload.get("start") or {}, default_tz=default_tz),
            end=parse_graph_datetime(payload.get("end") or {}, default_tz=default_tz),
            body_content=str(body.get("content") or ""),
            body_content_type=str(body.get("contentType") or "text"),
            location=location.get("displayName") or None,
            organizer_name=organizer.get("name"),
            organizer_email=organizer.get("address"),
            categories=[str(item) for item in payload.get("categories") or []],
            attendees=[Attendee.from_graph(item) for item in payload.get("attendees") or []],
            etag=payload.get("@odata.etag"),
        )


@dataclass(slots=True)
class Person:
    """スピーカーまたは参加者。"""

    name: str
    email: str
    photo_url: str | None = None


@dataclass(slots=True)
class BackMatter:
    """本文末尾の `---` ブロックから抽出したメタデータと残りの本文。"""

    metadata: dict[str, str]
    content: str


@dataclass(slots=True)
class Session:
    """フォーラムのセッション。カレンダーイベントの射影で、永続化はしない。"""

    id: str
    slug: str
    title: str
    description: str
    start_time: datetime
    end_time: datetime
    room: str
    categories: list[str] = field(default_factory=list)
    speakers: list[Person] = field(default_factory=list)
    attendees: list[Person] = field(default_factory=list)
    description_html: str | None = None
    capacity: int | None = None
    show_dietary_form: bool | None = None


@dataclass(slots=True)
class ForumEdition:
    id: str
    title: str
    date: date
    location: str
    speaker_count: int = 0
    attendee_count: int = 0


@dataclass(slots=True)
class ForumData:
    edition: ForumEdition
    sessions: list[Session] = field(default_factory=list)


@dataclass(slots=True)
class Category:
    """Outlook のマスターカテゴリ。"""

    id: str
    display_name: str
    color: str | None = None


@dataclass(slots=True)
class UserInfo:
    display_name: str
    email: str


def resolve_timezone(name: str | None, *, default_tz: str) -> tzinfo:
    """IANA 名からタイムゾーンを得る。解決できなければ既定値を使う。"""

    for candidate in (name, default_tz):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            continue
    return ZoneInfo("UTC")


def parse_graph_datetime(payload: dict[str, Any], *, default_tz: str) -> datetime:
    """Graph の `{dateTime, timeZone}` をタイムゾーン付き datetime に変換する。

    Graph は小数秒を 7 桁で返すため 6 桁に切り詰めてから解析する。
    """

    raw = str(payload.get("dateTime") or "")
    if not raw:
        raise ValueError("dateTime が空です。")
    value = _FRACTION_RE.sub(r".\1", raw)
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=resolve_timezone(payload.get("timeZone"), default_tz=default_tz))
    return parsed
