"""エラーレスポンスの共有スキーマ。"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ErrorModel(BaseModel):
    """共通エラーモデル。"""

    code: str
    message: str
    retryable: bool


class ErrorResponse(BaseModel):
    error: ErrorModel

    model_config = ConfigDict(extra="forbid")
