"""フォーラム・セッション参照エンドポイント。"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from forum_portal.core.errors import ServiceUnavailableError
from forum_portal.features.forum.schemas_forum import (
    CategoryModel,
    ForumDataResponse,
    SessionModel,
    to_category_model,
    to_forum_data_response,
    to_session_model,
)
from forum_portal.features.forum.usecase_forum import ForumService, build_forum_service
from forum_portal.shared.schemas.errors import ErrorModel, ErrorResponse

router = APIRouter(prefix="/api", tags=["forum"])


async def get_forum_service(request: Request) -> ForumService:
    """アプリ単位で 1 つの ForumService を初回アクセス時に組み立てる。"""

    service = getattr(request.app.state, "forum_service", None)
    if service is None:
        settings = request.app.state.settings
        if not settings.has_azure_credentials:
            raise ServiceUnavailableError("Calendar service is not configured")
        try:
            service = build_forum_service(settings)
        except ValueError as exc:
            raise ServiceUnavailableError(str(exc)) from exc
        request.app.state.forum_service = service
    return service


def session_not_found(session_ref: str) -> HTTPException:
    error = ErrorModel(
        code="SESSION_NOT_FOUND",
        message=f"Session not found: {session_ref}",
        retryable=False,
    )
    return HTTPException(status_code=404, detail={"error": error.model_dump()})


@router.get("/forum", response_model=ForumDataResponse)
async def forum_data(service: ForumService = Depends(get_forum_service)) -> ForumDataResponse:
    data = await service.get_forum_data()
    return to_forum_data_response(data)


@router.get("/categories", response_model=list[CategoryModel])
async def categories(service: ForumService = Depends(get_forum_service)) -> list[CategoryModel]:
    return [to_category_model(category) for category in await service.get_master_categories()]


@router.get(
    "/sessions/slug/{slug}",
    response_model=SessionModel,
    responses={404: {"model": ErrorResponse}},
)
async def session_by_slug(
    slug: str,
    service: ForumService = Depends(get_forum_service),
) -> SessionModel:
    session = await service.get_session_by_slug(slug)
    if session is None:
        raise session_not_found(slug)
    return to_session_model(session)


@router.get(
    "/sessions/{session_id}",
    response_model=SessionModel,
    responses={404: {"model": ErrorResponse}},
)
async def session_detail(
    session_id: str,
    service: ForumService = Depends(get_forum_service),
) -> SessionModel:
    session = await service.get_session(session_id)
    if session is None:
        raise session_not_found(session_id)
    return to_session_model(session)
