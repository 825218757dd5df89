"""セッションへの参加登録・取り消しエンドポイント。"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from forum_portal.features.forum.router_forum import get_forum_service, session_not_found
from forum_portal.features.forum.schemas_forum import to_session_model
from forum_portal.features.forum.usecase_forum import ForumService
from forum_portal.features.registration_post.schemas_registration_post import (
    RegistrationRequest,
    RegistrationResponse,
)
from forum_portal.shared.schemas.errors import ErrorResponse

router = APIRouter(prefix="/api/sessions", tags=["registration"])

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


@router.post("/register", response_model=RegistrationResponse, responses=_ERROR_RESPONSES)
async def register(
    payload: RegistrationRequest,
    service: ForumService = Depends(get_forum_service),
) -> RegistrationResponse:
    session = await service.register_for_session(
        payload.sessionId, payload.userEmail, payload.userName
    )
    if session is None:
        raise session_not_found(payload.sessionId)
    return RegistrationResponse(session=to_session_model(session))


@router.post("/unregister", response_model=RegistrationResponse, responses=_ERROR_RESPONSES)
async def unregister(
    payload: RegistrationRequest,
    service: ForumService = Depends(get_forum_service),
) -> RegistrationResponse:
    session = await service.unregister_from_session(payload.sessionId, payload.userEmail)
    if session is None:
        raise session_not_found(payload.sessionId)
    return RegistrationResponse(session=to_session_model(session))
