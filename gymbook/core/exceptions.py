"""
Исключения приложения.

Каждый класс задает HTTP статус, код ошибки и уровень логирования.
Обработчики в error_handlers превращают их в ответ {error, message, details}.
"""

import logging
from typing import Optional, Dict, Any


class BaseAppException(Exception):
    status_code = 500
    error_code = "INTERNAL_ERROR"
    default_message = "Internal error"
    log_level = logging.WARNING

    def __init__(self, message: str = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def __repr__(self):
        return f"{type(self).__name__}({self.error_code}: {self.message})"


# --- доступ ---


class AuthenticationError(BaseAppException):
    status_code = 401
    error_code = "AUTHENTICATION_ERROR"
    default_message = "Authentication failed"


class AuthorizationError(BaseAppException):
    status_code = 403
    error_code = "AUTHORIZATION_ERROR"
    default_message = "Access denied"


# --- входные данные ---


class ValidationError(BaseAppException):
    status_code = 400
    error_code = "VALIDATION_ERROR"
    default_message = "Invalid input"


class NotFoundError(BaseAppException):
    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: str = None):
        details = {"resource": resource}
        message = f"{resource} not found"
        if identifier:
            details["identifier"] = identifier
            message = f"{resource} #{identifier} not found"
        super().__init__(message, details)


# --- ожидаемые отказы ---


class BusinessOutcome(BaseAppException):
    """
    Штатный отказ: нет мест, повторная бронь, абонемент недействителен.
    Пишется в лог как INFO, а не как ошибка сервиса.
    """

    status_code = 409
    log_level = logging.INFO


class CapacityExceededError(BusinessOutcome):
    error_code = "CAPACITY_EXCEEDED"

    def __init__(self, session_id: int, capacity: int):
        super().__init__(
            "Session is fully booked", {"session_id": session_id, "capacity": capacity}
        )


class SessionUnavailableError(BusinessOutcome):
    error_code = "SESSION_UNAVAILABLE"

    def __init__(self, session_id: int, reason: str):
        super().__init__(
            f"Session is not available for booking: {reason}",
            {"session_id": session_id, "reason": reason},
        )


class DuplicateBookingError(BusinessOutcome):
    error_code = "DUPLICATE_BOOKING"

    def __init__(self, user_id: int, session_id: int):
        super().__init__(
            "You have already booked this session",
            {"user_id": user_id, "session_id": session_id},
        )


class AlreadyCancelledError(BusinessOutcome):
    error_code = "ALREADY_CANCELLED"

    def __init__(self, resource: str, identifier: int):
        super().__init__(
            f"{resource} is already cancelled",
            {"resource": resource, "identifier": identifier},
        )


class NotCancellableError(BusinessOutcome):
    error_code = "NOT_CANCELLABLE"

    def __init__(self, reservation_id: int, status: str):
        super().__init__(
            f"Reservation in status '{status}' cannot be cancelled",
            {"reservation_id": reservation_id, "status": status},
        )


class SessionNotCancellableError(BusinessOutcome):
    error_code = "SESSION_NOT_CANCELLABLE"

    def __init__(self, session_id: int, status: str):
        super().__init__(
            f"Session in status '{status}' cannot be cancelled",
            {"session_id": session_id, "status": status},
        )


class InvalidTransitionError(BusinessOutcome):
    error_code = "INVALID_TRANSITION"

    def __init__(self, reservation_id: int, current: str, target: str, reason: str = None):
        message = f"Reservation cannot move from '{current}' to '{target}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            {
                "reservation_id": reservation_id,
                "current": current,
                "target": target,
                "reason": reason,
            },
        )


class MembershipTransitionError(BusinessOutcome):
    error_code = "INVALID_TRANSITION"

    def __init__(self, membership_id: int, current: str, target: str):
        super().__init__(
            f"Membership cannot move from '{current}' to '{target}'",
            {"membership_id": membership_id, "current": current, "target": target},
        )


class AlreadyCheckedInError(BusinessOutcome):
    error_code = "ALREADY_CHECKED_IN"

    def __init__(self, user_id: int, details: Optional[Dict[str, Any]] = None):
        super().__init__("Already checked in", {"user_id": user_id, **(details or {})})


class MembershipInvalidError(BusinessOutcome):
    status_code = 403
    error_code = "MEMBERSHIP_INVALID"

    def __init__(self, message: str, membership_id: Optional[int] = None):
        super().__init__(message, {"membership_id": membership_id})


# --- конкуренция и целостность ---


class ConcurrencyConflictError(BaseAppException):
    """Ожидание блокировки истекло или версия строки устарела. Можно повторить."""

    status_code = 503
    error_code = "CONCURRENCY_CONFLICT"
    default_message = "The resource is busy. Please try again."

    def __init__(self, resource: str, message: str = None):
        super().__init__(message, {"resource": resource, "retryable": True})


class InvariantViolationError(BaseAppException):
    error_code = "INVARIANT_VIOLATION"
    log_level = logging.CRITICAL

    def __init__(self, invariant: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Invariant violated: {invariant}", {"invariant": invariant, **(details or {})}
        )


# --- база данных и окружение ---


class DatabaseError(BaseAppException):
    error_code = "DATABASE_ERROR"
    default_message = "Database operation failed"
    log_level = logging.ERROR


class DatabaseConnectionError(DatabaseError):
    status_code = 503
    error_code = "DATABASE_CONNECTION_ERROR"
    default_message = "Database connection failed"


class DatabaseTimeoutError(DatabaseError):
    status_code = 504
    error_code = "DATABASE_TIMEOUT"

    def __init__(self, operation: str, timeout: int):
        super().__init__(
            f"Database operation '{operation}' timed out after {timeout}s",
            {"operation": operation, "timeout": timeout},
        )


class DatabaseIntegrityError(BaseAppException):
    status_code = 409
    error_code = "DATABASE_INTEGRITY_ERROR"

    def __init__(self, constraint: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Database integrity constraint violated: {constraint}",
            {"constraint": constraint, **(details or {})},
        )


class ConfigurationError(BaseAppException):
    error_code = "CONFIGURATION_ERROR"
    log_level = logging.ERROR

    def __init__(self, parameter: str, message: str = None):
        super().__init__(
            message or f"Configuration parameter '{parameter}' is invalid or missing",
            {"parameter": parameter},
        )
