"""カレンダーイベントからフォーラム回（edition）とセッションを組み立てる。"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable

from forum_portal.core.models import CalendarEvent, ForumData, ForumEdition, Session
from forum_portal.shared.attendee_roles import classify_attendees
from forum_portal.shared.back_matter import parse_back_matter, parse_capacity, parse_flag
from forum_portal.shared.html_body import html_to_text, sanitize_html, strip_back_matter_html
from forum_portal.shared.slug import generate_slug

NO_EVENTS_ID = "no-events"
NO_EVENTS_TITLE = "Geen aankomend event"
DEFAULT_DESCRIPTION = "Geen beschrijving beschikbaar."
DEFAULT_ROOM = "Zaal nog te bepalen"

_ONE_DAY = timedelta(hours=24)
_WINDOW_MONTHS_AHEAD = 2


def forum_window(now: datetime) -> tuple[datetime, datetime]:
    """今月 1 日 0:00 から 2 か月後の月末 23:59:59 までを返す。"""

    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    month_index = now.month - 1 + _WINDOW_MONTHS_AHEAD
    year = now.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    end = datetime(year, month, last_day, 23, 59, 59, tzinfo=now.tzinfo)
    return start, end


def is_all_day_event(event: CalendarEvent) -> bool:
    starts_at_midnight = event.start.hour == 0 and event.start.minute == 0
    return starts_at_midnight and (event.end - event.start) >= _ONE_DAY


def _local_date(value: datetime, tz: tzinfo | None) -> date:
    if tz is not None and value.tzinfo is not None:
        return value.astimezone(tz).date()
    return value.date()


def build_session(event: CalendarEvent) -> Session:
    """イベント 1 件をセッションに変換する。"""

    plain_text = html_to_text(event.body_content) if event.is_html else event.body_content
    back_matter = parse_back_matter(plain_text)
    metadata = back_matter.metadata

    slug = metadata.get("slug") or generate_slug(event.subject, event.id)
    description_html = (
        strip_back_matter_html(sanitize_html(event.body_content), back_matter)
        if event.is_html
        else None
    )
    roles = classify_attendees(event.attendees)

    return Session(
        id=event.id,
        slug=slug,
        title=event.subject,
        description=back_matter.content or DEFAULT_DESCRIPTION,
        description_html=description_html,
        categories=list(event.categories),
        start_time=event.start,
        end_time=event.end,
        room=event.location or DEFAULT_ROOM,
        speakers=roles.speakers,
        attendees=roles.attendees,
        capacity=parse_capacity(metadata.get("capacity")),
        show_dietary_form=parse_flag(metadata.get("diet-form")) or None,
    )


def no_events_edition(*, today: date, default_location: str) -> ForumData:
    return ForumData(
        edition=ForumEdition(
            id=NO_EVENTS_ID,
            title=NO_EVENTS_TITLE,
            date=today,
            location=default_location,
        ),
        sessions=[],
    )


def build_forum_data(
    events: Iterable[CalendarEvent],
    *,
    today: date,
    default_location: str,
    tz: tzinfo | None = None,
) -> ForumData:
    """最初の終日イベントを今回のフォーラムとし、同日のイベントをセッションにする。"""

    event_list = list(events)
    defining = next((event for event in event_list if is_all_day_event(event)), None)
    if defining is None:
        return no_events_edition(today=today, default_location=default_location)

    forum_date = _local_date(defining.start, tz)
    sessions = [
        build_session(event)
        for event in event_list
        if not is_all_day_event(event) and _local_date(event.start, tz) == forum_date
    ]

    speaker_emails = {person.email.lower() for s in sessions for person in s.speakers}
    attendee_emails = {person.email.lower() for s in sessions for person in s.attendees}

    edition = ForumEdition(
        id=f"edition-{forum_date.isoformat()}",
        title=defining.subject,
        date=forum_date,
        location=defining.location or default_location,
        speaker_count=len(speaker_emails),
        attendee_count=len(attendee_emails),
    )
    return ForumData(edition=edition, sessions=sessions)
