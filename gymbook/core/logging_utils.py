import json
import logging
import time
from collections import Counter, deque
from typing import Any, Dict

logger = logging.getLogger(__name__)

# Поля LogRecord, которые JsonFormatter пишет сам или пропускает
_RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

# Шумные библиотечные логгеры
_QUIET_LOGGERS = ("sqlalchemy.engine", "uvicorn.access", "aiosqlite", "asyncio")


def setup_logging(log_level: str = "INFO", log_format: str = "text"):
    """
    Настройка корневого логгера.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR
        log_format: text или json
    """
    handler = logging.StreamHandler()
    if log_format.lower() == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-8s [%(name)s] %(message)s")
        )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level.upper())

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info(f"Logging configured: level={log_level}, format={log_format}")


class JsonFormatter(logging.Formatter):
    """Одна JSON-строка на запись, extra-поля попадают на верхний уровень"""

    def format(self, record):
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        payload.update(
            (key, value) for key, value in vars(record).items() if key not in _RESERVED
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


class ErrorTracker:
    """Счетчики ошибок по типам и последние N ошибок в памяти процесса"""

    def __init__(self, max_history: int = 100):
        self.counts = Counter()
        self.recent = deque(maxlen=max_history)

    def track_error(
        self, error_type: str, error_message: str, context: Dict[str, Any] = None
    ):
        self.counts[error_type] += 1
        self.recent.append(
            {
                "timestamp": time.time(),
                "type": error_type,
                "message": error_message,
                "context": context or {},
            }
        )
        logger.warning(
            f"Error tracked: {error_type} (x{self.counts[error_type]})",
            extra={"error_type": error_type, "context": context or {}},
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "error_counts": dict(self.counts),
            "total_errors": sum(self.counts.values()),
            "unique_error_types": len(self.counts),
            "last_errors": list(self.recent)[-10:],
        }


error_tracker = ErrorTracker()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_business_event(
    event: str, entity_type: str, entity_id: int, details: Dict[str, Any] = None
):
    """
    Бизнес-событие: reservation_created, sessions_expanded, membership_approved...
    """
    logger.info(
        f"Business event: {event} {entity_type}#{entity_id}",
        extra={
            "category": "business_event",
            "event": event,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "details": details or {},
        },
    )


def log_invariant_violation(invariant: str, details: Dict[str, Any] = None):
    logger.critical(
        f"Invariant violated: {invariant}",
        extra={"category": "invariant", "invariant": invariant, "details": details or {}},
    )
    error_tracker.track_error("INVARIANT_VIOLATION", invariant, details)
