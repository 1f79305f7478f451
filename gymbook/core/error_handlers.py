"""
Обработчики ошибок FastAPI.

Все ответы об ошибках имеют одну форму: {error, message, details, path}.
"""

import logging
import re
import traceback
from typing import Any, Dict, Union
from fastapi import Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    TimeoutError,
    DisconnectionError,
)
from asyncpg.exceptions import (
    PostgresError,
    ConnectionFailureError,
    ConnectionDoesNotExistError,
    TooManyConnectionsError,
)

from gymbook.core.config import DEBUG
from gymbook.core.database import is_lock_timeout
from gymbook.core.exceptions import (
    BaseAppException,
    ConcurrencyConflictError,
    DatabaseError,
    DatabaseConnectionError,
    DatabaseTimeoutError,
    DatabaseIntegrityError,
    InvariantViolationError,
)

logger = logging.getLogger(__name__)

# CHECK-ограничения, нарушение которых означает ошибку учета мест
_INVARIANT_CONSTRAINTS = {
    "ck_class_sessions_booked_count": "0 <= booked_count <= capacity",
    "ck_class_sessions_capacity": "capacity > 0",
}

_CONSTRAINT_PATTERNS = (
    re.compile(r'constraint "([^"]+)"'),
    re.compile(r"CHECK constraint failed: (\w+)"),
)


def _error_response(
    request: Request, status_code: int, error: str, message: str, details: Dict[str, Any] = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "details": details or {},
            "path": request.url.path,
        },
    )


def _constraint_name(exc: IntegrityError) -> str:
    name = getattr(exc.orig, "constraint_name", None)
    if name:
        return name
    for pattern in _CONSTRAINT_PATTERNS:
        match = pattern.search(str(exc.orig))
        if match:
            return match.group(1)
    return "unknown"


def translate_database_error(exc: Exception) -> BaseAppException:
    """Сводит ошибки драйвера и SQLAlchemy к исключениям приложения"""
    if is_lock_timeout(exc):
        return ConcurrencyConflictError("database")

    if isinstance(exc, IntegrityError):
        constraint = _constraint_name(exc)
        if constraint in _INVARIANT_CONSTRAINTS:
            return InvariantViolationError(
                _INVARIANT_CONSTRAINTS[constraint], {"constraint": constraint}
            )
        return DatabaseIntegrityError(constraint, {"original_error": str(exc.orig)})

    if isinstance(exc, (ConnectionFailureError, ConnectionDoesNotExistError)):
        return DatabaseConnectionError("PostgreSQL connection failed")
    if isinstance(exc, TooManyConnectionsError):
        return DatabaseConnectionError("Too many database connections")
    if isinstance(exc, (OperationalError, DisconnectionError)):
        return DatabaseConnectionError("Database connection lost")
    if isinstance(exc, TimeoutError):
        return DatabaseTimeoutError("database_operation", 30)

    if isinstance(exc, PostgresError):
        return DatabaseError(
            f"PostgreSQL error: {exc}", {"postgres_code": getattr(exc, "sqlstate", None)}
        )
    return DatabaseError(f"Database operation failed: {exc}")


async def app_exception_handler(
    request: Request, exc: BaseAppException
) -> JSONResponse:
    """Обработчик исключений приложения"""

    # Бизнес-отказы пишем в INFO, внутренние сбои в ERROR/CRITICAL
    log_level = max(exc.log_level, logging.ERROR) if exc.status_code >= 500 else exc.log_level
    if isinstance(exc, ConcurrencyConflictError):
        log_level = logging.WARNING

    logger.log(
        log_level,
        f"App exception: {exc.error_code} - {exc.message}",
        extra={
            "error_code": exc.error_code,
            "status_code": exc.status_code,
            "details": exc.details,
            "path": request.url.path,
            "method": request.method,
        },
    )

    return _error_response(request, exc.status_code, exc.error_code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    logger.warning(
        f"HTTP exception: {exc.status_code} - {exc.detail}",
        extra={"status_code": exc.status_code, "path": request.url.path},
    )
    return _error_response(request, exc.status_code, "HTTP_ERROR", str(exc.detail))


async def validation_exception_handler(
    request: Request, exc: Union[RequestValidationError, PydanticValidationError]
) -> JSONResponse:
    """Ошибки валидации запроса: по одной записи на поле"""

    fields = [
        {
            "field": " -> ".join(str(loc) for loc in error.get("loc", [])),
            "message": error.get("msg", "Validation error"),
            "type": error.get("type", "value_error"),
        }
        for error in exc.errors()
    ]

    logger.info(
        f"Request validation failed: {len(fields)} field(s)",
        extra={"errors": fields, "path": request.url.path, "method": request.method},
    )

    return _error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "VALIDATION_ERROR",
        f"Validation failed for {len(fields)} field(s)",
        {"fields": fields},
    )


async def database_exception_handler(
    request: Request, exc: Union[SQLAlchemyError, PostgresError]
) -> JSONResponse:
    """Ошибки БД, не перехваченные в CRUD слое"""

    logger.error(
        f"Database exception: {type(exc).__name__} - {exc}",
        extra={
            "exception_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
        },
    )
    return await app_exception_handler(request, translate_database_error(exc))


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled exception: {type(exc).__name__} - {exc}",
        extra={
            "exception_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
            "traceback": traceback.format_exc(),
        },
    )

    # В production детали не отдаем
    details = {"exception_type": type(exc).__name__} if DEBUG else {}
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_SERVER_ERROR",
        "An unexpected error occurred",
        details,
    )


def setup_exception_handlers(app):
    """Регистрация обработчиков исключений"""

    app.add_exception_handler(BaseAppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PydanticValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(PostgresError, database_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    logger.info("Exception handlers registered")
