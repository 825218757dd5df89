"""`/api/forum` 系エンドポイントのレスポンススキーマ。

フロントエンドの型に合わせてフィールド名は camelCase で宣言する。
"""

from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field

from forum_portal.core.models import Category, ForumData, ForumEdition, Person, Session


class PersonModel(BaseModel):
    name: str
    email: str
    photoUrl: str | None = None

    model_config = ConfigDict(extra="forbid")


class SessionModel(BaseModel):
    """フォーラムのセッション。"""

    id: str
    slug: str
    title: str
    description: str
    descriptionHtml: str | None = Field(None, description="無害化済み HTML（本文が HTML の場合のみ）")
    categories: list[str] = Field(default_factory=list)
    startTime: dt.datetime
    endTime: dt.datetime
    room: str
    speakers: list[PersonModel] = Field(default_factory=list)
    attendees: list[PersonModel] = Field(default_factory=list)
    capacity: int | None = Field(None, description="定員（back-matter の capacity）")
    showDietaryForm: bool | None = None

    model_config = ConfigDict(extra="forbid")


class ForumEditionModel(BaseModel):
    id: str = Field(..., description="edition-YYYY-MM-DD、該当なしの場合は no-events")
    title: str
    date: dt.date
    location: str
    speakerCount: int = 0
    attendeeCount: int = 0

    model_config = ConfigDict(extra="forbid")


class ForumDataResponse(BaseModel):
    edition: ForumEditionModel
    sessions: list[SessionModel] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class CategoryModel(BaseModel):
    """Outlook マスターカテゴリ。"""

    id: str
    displayName: str
    color: str | None = None

    model_config = ConfigDict(extra="forbid")


def to_person_model(person: Person) -> PersonModel:
    return PersonModel(name=person.name, email=person.email, photoUrl=person.photo_url)


def to_session_model(session: Session) -> SessionModel:
    return SessionModel(
        id=session.id,
        slug=session.slug,
        title=session.title,
        description=session.description,
        descriptionHtml=session.description_html,
        categories=list(session.categories),
        startTime=session.start_time,
        endTime=session.end_time,
        room=session.room,
        speakers=[to_person_model(person) for person in session.speakers],
        attendees=[to_person_model(person) for person in session.attendees],
        capacity=session.capacity,
        showDietaryForm=session.show_dietary_form,
    )


def to_edition_model(edition: ForumEdition) -> ForumEditionModel:
    return ForumEditionModel(
        id=edition.id,
        title=edition.title,
        date=edition.date,
        location=edition.location,
        speakerCount=edition.speaker_count,
        attendeeCount=edition.attendee_count,
    )


def to_forum_data_response(data: ForumData) -> ForumDataResponse:
    return ForumDataResponse(
        edition=to_edition_model(data.edition),
        sessions=[to_session_model(session) for session in data.sessions],
    )


def to_category_model(category: Category) -> CategoryModel:
    return CategoryModel(id=category.id, displayName=category.display_name, color=category.color)
