from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from .config import settings
from .errors import ConfigurationError, RequestError, StoreError
from .logging import configure_logging, logger
from .middleware import AccessLogMiddleware, RequestIDMiddleware
from .routers import auth as auth_router
from .routers import ai, health, questions, review, topics


async def _store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    # 詳細は firestore_call_failed ログに出ているため、応答は汎用メッセージのみ
    logger.error(
        "store_error",
        operation=exc.operation,
        path=request.url.path,
        request_id=getattr(request.state, "request_id", None),
    )
    return JSONResponse(
        status_code=503,
        content={"detail": "Storage is temporarily unavailable"},
    )


async def _configuration_error_handler(
    request: Request, exc: ConfigurationError
) -> JSONResponse:
    logger.error("configuration_error", error=str(exc), path=request.url.path)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


async def _request_error_handler(request: Request, exc: RequestError) -> JSONResponse:
    logger.warning(
        "upstream_request_error",
        error=str(exc)[:200],
        upstream_status=exc.status_code,
        path=request.url.path,
    )
    return JSONResponse(status_code=502, content={"detail": str(exc)})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance."""
    configure_logging()
    app = FastAPI(title="CognifAI API", version="0.1.0")

    configured_origins = list(settings.allowed_cors_origins)
    allow_credentials = bool(configured_origins)
    if not configured_origins:
        configured_origins = ["*"]

    # ワイルドカード許可時は資格情報付き CORS を無効化する
    app.add_middleware(
        CORSMiddleware,
        allow_origins=configured_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # 後から追加したミドルウェアほど外側で実行される（RequestID → AccessLog の順に処理）
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(StoreError, _store_error_handler)
    app.add_exception_handler(ConfigurationError, _configuration_error_handler)
    app.add_exception_handler(RequestError, _request_error_handler)

    if settings.disable_session_auth:
        logger.warning(
            "session_auth_disabled",
            reason="config_flag",
            dev_user_id=settings.dev_user_id,
        )

    app.include_router(auth_router.router)
    app.include_router(topics.router)
    app.include_router(questions.router)
    app.include_router(review.router)
    app.include_router(ai.router)
    app.include_router(health.router)
    return app


app = create_app()
