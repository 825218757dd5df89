"""ユーザーのプロフィール写真・表示名エンドポイント。"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, ConfigDict

from forum_portal.features.forum.router_forum import get_forum_service
from forum_portal.features.forum.usecase_forum import ForumService
from forum_portal.shared.schemas.errors import ErrorModel, ErrorResponse

router = APIRouter(prefix="/api/users", tags=["users"])

_PHOTO_CACHE_CONTROL = "public, max-age=3600"


class UserInfoResponse(BaseModel):
    displayName: str
    email: str

    model_config = ConfigDict(extra="forbid")


def _user_not_found(email: str, what: str) -> HTTPException:
    error = ErrorModel(code="USER_NOT_FOUND", message=f"{what} not found: {email}", retryable=False)
    return HTTPException(status_code=404, detail={"error": error.model_dump()})


@router.get(
    "/{email}/photo",
    response_class=Response,
    responses={200: {"content": {"image/jpeg": {}}}, 404: {"model": ErrorResponse}},
)
async def user_photo(email: str, service: ForumService = Depends(get_forum_service)) -> Response:
    photo = await service.get_user_photo(email)
    if photo is None:
        raise _user_not_found(email, "Photo")
    return Response(
        content=photo,
        media_type="image/jpeg",
        headers={"Cache-Control": _PHOTO_CACHE_CONTROL},
    )


@router.get("/{email}", response_model=UserInfoResponse, responses={404: {"model": ErrorResponse}})
async def user_info(email: str, service: ForumService = Depends(get_forum_service)) -> UserInfoResponse:
    info = await service.get_user_info(email)
    if info is None:
        raise _user_not_found(email, "User")
    return UserInfoResponse(displayName=info.display_name, email=info.email)
