"""Graph ペイロード変換のテスト。"""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from forum_portal.core.models import Attendee, CalendarEvent, parse_graph_datetime


def test_7桁の小数秒を扱える() -> None:
    value = parse_graph_datetime(
        {"dateTime": "2026-02-20T09:30:00.1234567", "timeZone": "Europe/Amsterdam"},
        default_tz="UTC",
    )

    assert value == datetime(2026, 2, 20, 9, 30, 0, 123456, tzinfo=ZoneInfo("Europe/Amsterdam"))


def test_未知のタイムゾーンは既定値を使う() -> None:
    value = parse_graph_datetime(
        {"dateTime": "2026-02-20T09:30:00", "timeZone": "W. Europe Standard Time"},
        default_tz="Europe/Amsterdam",
    )

    assert value.utcoffset() is not None
    assert value.utcoffset().total_seconds() == 3600  # type: ignore[union-attr]


def test_z_付きは_utc() -> None:
    value = parse_graph_datetime({"dateTime": "2026-02-20T08:30:00Z"}, default_tz="Europe/Amsterdam")

    assert value == datetime(2026, 2, 20, 8, 30, tzinfo=timezone.utc)


def test_空の日時はエラー() -> None:
    with pytest.raises(ValueError):
        parse_graph_datetime({"dateTime": ""}, default_tz="UTC")


def test_イベントの変換() -> None:
    event = CalendarEvent.from_graph(
        {
            "@odata.etag": 'W/"1"',
            "id": "AAMk",
            "subject": "Keynote",
            "start": {"dateTime": "2026-02-20T09:00:00.0000000", "timeZone": "Europe/Amsterdam"},
            "end": {"dateTime": "2026-02-20T10:00:00.0000000", "timeZone": "Europe/Amsterdam"},
            "body": {"contentType": "html", "content": "<p>Hoi</p>"},
            "location": {"displayName": ""},
            "categories": ["AI"],
            "attendees": [
                {
                    "emailAddress": {"address": "jan@caesar.nl", "name": "Jan"},
                    "type": "required",
                    "status": {"response": "accepted"},
                }
            ],
        },
        default_tz="Europe/Amsterdam",
    )

    assert event.is_html
    assert event.location is None
    assert event.etag == 'W/"1"'
    assert event.attendees == [Attendee(email="jan@caesar.nl", name="Jan", type="required", response="accepted")]
