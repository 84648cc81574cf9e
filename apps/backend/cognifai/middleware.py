from __future__ import annotations

import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from structlog import contextvars as structlog_contextvars

from .logging import logger


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assign a request ID to each incoming request and expose it in headers.

    - Sets `request.state.request_id`
    - Adds `X-Request-ID` to the response headers
    - Binds `request_id` to structlog contextvars for the request duration
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id
        structlog_contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            structlog_contextvars.unbind_contextvars("request_id")
        response.headers["X-Request-ID"] = request_id
        return response


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Emit one structured `request_complete` log per request.

    エラー時は severity=ERROR になるよう logger.error を使い分ける。
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        start = time.perf_counter()
        status_code: int | None = None
        error_type: str | None = None
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as exc:
            status_code = 500
            error_type = exc.__class__.__name__
            raise
        finally:
            is_error = status_code is None or status_code >= 500
            log_method = logger.error if is_error else logger.info
            log_method(
                "request_complete",
                path=request.url.path,
                method=request.method,
                status_code=status_code,
                latency_ms=round((time.perf_counter() - start) * 1000, 2),
                is_error=is_error,
                error_type=error_type,
                user_id=getattr(request.state, "user_id", None),
                client_ip=request.client.host if request.client else "unknown",
                user_agent=request.headers.get("user-agent", "-"),
            )
