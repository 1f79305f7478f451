import logging
import time
import uuid
from typing import Callable, Iterable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from gymbook.core.logging_utils import error_tracker

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDE_PATHS = ("/health", "/docs", "/openapi.json", "/redoc")


def client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.headers.get("x-real-ip") or (
        request.client.host if request.client else "unknown"
    )


class RequestMonitoringMiddleware(BaseHTTPMiddleware):
    """
    Журнал запросов с request id, предупреждения о медленных запросах
    и учет 5xx в error_tracker.

    4xx не учитываются: отказ в бронировании это обычный исход.
    """

    def __init__(
        self,
        app: ASGIApp,
        exclude_paths: Iterable[str] = DEFAULT_EXCLUDE_PATHS,
        slow_request_threshold: float = 1.0,
    ):
        super().__init__(app)
        self.exclude_paths = frozenset(exclude_paths)
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.exclude_paths:
            return await call_next(request)

        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:8]
        request.state.request_id = request_id
        route = f"{request.method} {request.url.path}"
        context = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "client_ip": client_ip(request),
            "actor_id": request.headers.get("x-user-id"),
        }
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            context["duration_ms"] = self._elapsed_ms(started)
            logger.error(f"{route} failed: {type(e).__name__}", extra=context)
            error_tracker.track_error(f"UNHANDLED_{type(e).__name__}", str(e), context)
            raise

        context["duration_ms"] = self._elapsed_ms(started)
        context["status_code"] = response.status_code
        logger.info(f"{route} -> {response.status_code}", extra=context)

        if context["duration_ms"] > self.slow_request_threshold * 1000:
            logger.warning(
                f"Slow request: {route}",
                extra={**context, "category": "performance"},
            )
        if response.status_code >= 500:
            error_tracker.track_error(
                f"HTTP_{response.status_code}", f"{route} returned {response.status_code}", context
            )

        response.headers["X-Request-ID"] = request_id
        return response

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return round((time.perf_counter() - started) * 1000, 2)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers.update(
            {
                "X-Content-Type-Options": "nosniff",
                "X-Frame-Options": "DENY",
                "Referrer-Policy": "strict-origin-when-cross-origin",
            }
        )
        return response


def setup_middleware(app, config: dict = None):
    """Подключение middleware. Последний добавленный выполняется первым."""
    config = config or {}

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RequestMonitoringMiddleware,
        exclude_paths=config.get("exclude_paths", DEFAULT_EXCLUDE_PATHS),
        slow_request_threshold=config.get("slow_request_threshold", 1.0),
    )

    logger.info("Middleware configured")
