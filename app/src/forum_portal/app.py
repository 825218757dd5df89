"""FastAPI アプリケーションの組み立てを担当するモジュール。"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from .core.errors import PermissionDeniedError, ServiceUnavailableError
from .core.middleware import request_id_middleware
from .core.settings import Settings, load_settings
from .features.forum.router_forum import router as forum_router
from .features.forum.usecase_forum import ForumService
from .features.registration_post.router_registration_post import router as registration_router
from .features.users.router_users import router as users_router
from .shared.schemas.errors import ErrorModel, ErrorResponse


def _error_response(status_code: int, error: ErrorModel) -> JSONResponse:
    return JSONResponse(ErrorResponse(error=error).model_dump(), status_code=status_code)


async def _service_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    error = ErrorModel(code="SERVICE_UNAVAILABLE", message=str(exc), retryable=True)
    return _error_response(503, error)


async def _permission_denied_handler(request: Request, exc: Exception) -> JSONResponse:
    error = ErrorModel(code="GRAPH_PERMISSION_DENIED", message=str(exc), retryable=False)
    return _error_response(502, error)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = [
        f"{'.'.join(str(part) for part in item.get('loc', ()))}: {item.get('msg', '')}"
        for item in exc.errors()
    ]
    error = ErrorModel(
        code="INVALID_REQUEST",
        message="Invalid request body: " + "; ".join(messages),
        retryable=False,
    )
    return _error_response(400, error)


async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        return JSONResponse(exc.detail, status_code=exc.status_code, headers=exc.headers)
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    service = getattr(app.state, "forum_service", None)
    if service is not None:
        await service.aclose()


def create_app(
    *,
    settings: Settings | None = None,
    forum_service: ForumService | None = None,
) -> FastAPI:
    """コア設定や共通ミドルウェアを組み込んだ FastAPI アプリを返す。

    `forum_service` を省略した場合は初回の API 呼び出し時に設定から組み立てる。
    """

    settings = settings or load_settings()
    app = FastAPI(title="forum-portal", version="0.1.0", lifespan=_lifespan)
    app.state.settings = settings  # type: ignore[attr-defined]
    app.state.forum_service = forum_service  # type: ignore[attr-defined]
    app.middleware("http")(request_id_middleware)

    app.add_exception_handler(ServiceUnavailableError, _service_unavailable_handler)
    app.add_exception_handler(PermissionDeniedError, _permission_denied_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, _http_exception_handler)  # type: ignore[arg-type]

    @app.get("/healthz", tags=["health"])
    def healthz() -> dict[str, str]:
        return {"status": "ok", "env": settings.app_env}

    app.include_router(forum_router)
    app.include_router(registration_router)
    app.include_router(users_router)

    return app
