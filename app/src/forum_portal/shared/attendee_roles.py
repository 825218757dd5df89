"""カレンダー出席者をスピーカー・参加者に振り分ける。

カレンダー本来の RSVP をアプリの参加登録として流用している。
`required` は登壇者、`optional` はセルフサービスの参加登録を表す。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable
from urllib.parse import quote

from forum_portal.core.models import Attendee, Person

_TYPE_REQUIRED = "required"
_TYPE_OPTIONAL = "optional"
_TYPE_RESOURCE = "resource"
_RESPONSE_DECLINED = "declined"
_RESPONSES_ACCEPTED = {"accepted", "tentativelyaccepted"}


@dataclass(slots=True)
class AttendeeRoles:
    speakers: list[Person] = field(default_factory=list)
    attendees: list[Person] = field(default_factory=list)


def email_local_part(email: str) -> str:
    return email.split("@")[0].lower()


def emails_match(first: str, second: str) -> bool:
    """ローカル部で比較する（複数ドメインのエイリアス対策）。"""

    return email_local_part(first) == email_local_part(second)


def format_display_name(name: str) -> str:
    """`"姓, 名"` 形式を `"名 姓"` に並べ替える。"""

    if not name or "," not in name:
        return name
    parts = [part.strip() for part in name.split(",")]
    if len(parts) == 2 and parts[0] and parts[1]:
        return f"{parts[1]} {parts[0]}"
    return name


def photo_url(email: str) -> str:
    return f"/api/users/{quote(email, safe='')}/photo"


def to_person(attendee: Attendee) -> Person:
    name = attendee.name or attendee.email.split("@")[0]
    return Person(
        name=format_display_name(name),
        email=attendee.email,
        photo_url=photo_url(attendee.email),
    )


def is_registered(attendee: Attendee) -> bool:
    attendee_type = attendee.type.lower()
    response = attendee.response.lower()
    if attendee_type == _TYPE_OPTIONAL and response != _RESPONSE_DECLINED:
        return True
    return response in _RESPONSES_ACCEPTED


def classify_attendees(attendees: Iterable[Attendee]) -> AttendeeRoles:
    roles = AttendeeRoles()
    for attendee in attendees:
        attendee_type = attendee.type.lower()
        if attendee_type == _TYPE_RESOURCE:
            continue
        if attendee_type == _TYPE_REQUIRED:
            roles.speakers.append(to_person(attendee))
        elif is_registered(attendee):
            roles.attendees.append(to_person(attendee))
    return roles
