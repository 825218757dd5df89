"""`/api/sessions/register` と `/api/sessions/unregister` のスキーマ。"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from forum_portal.features.forum.schemas_forum import SessionModel


class RegistrationRequest(BaseModel):
    """参加登録・取り消しリクエスト。"""

    sessionId: str = Field(..., min_length=1, description="カレンダーイベント ID")
    userEmail: str = Field(..., min_length=3, description="登録するユーザーのメールアドレス")
    userName: str | None = Field(None, description="表示名。省略時はメールのローカル部")

    model_config = ConfigDict(extra="forbid")

    @field_validator("userEmail")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        value = value.strip()
        local, sep, domain = value.partition("@")
        if not sep or not local or "." not in domain or "@" in domain:
            raise ValueError("userEmail はメールアドレス形式で指定してください。")
        return value


class RegistrationResponse(BaseModel):
    success: Literal[True] = True
    session: SessionModel

    model_config = ConfigDict(extra="forbid")
