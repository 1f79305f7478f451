import logging
from functools import wraps
from typing import Callable, TypeVar, Any, AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.sql import text
from sqlalchemy.exc import (
    DBAPIError,
    SQLAlchemyError,
    OperationalError,
    DisconnectionError,
    TimeoutError,
)
from asyncpg.exceptions import (
    ConnectionFailureError,
    ConnectionDoesNotExistError,
)
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import (
    DATABASE_URL,
    DB_RETRY_ATTEMPTS,
    DB_RETRY_BACKOFF_FACTOR,
    DB_RETRY_DELAY,
)
from .exceptions import (
    BaseAppException,
    ConcurrencyConflictError,
    DatabaseConnectionError,
    DatabaseTimeoutError,
)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# Ошибки соединения, после которых операцию можно повторить
TRANSIENT_ERRORS = (
    OperationalError,
    DisconnectionError,
    TimeoutError,
    ConnectionFailureError,
    ConnectionDoesNotExistError,
)

# lock_not_available, query_canceled
LOCK_TIMEOUT_SQLSTATES = {"55P03", "57014"}


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Тесты: ждать блокировку файла, а не падать сразу
        return {"echo": False, "connect_args": {"timeout": 30}}
    return {
        "echo": False,
        "pool_size": 20,
        "max_overflow": 10,
        "pool_timeout": 30,
        "pool_recycle": 3600,
        "pool_pre_ping": True,
    }


engine = create_async_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

async_session = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


def is_lock_timeout(exc: BaseException) -> bool:
    """Драйвер не дождался блокировки строки или версия строки устарела"""
    if isinstance(exc, StaleDataError):
        return True
    if not isinstance(exc, DBAPIError):
        return False

    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate is None and orig is not None and orig.__cause__ is not None:
        sqlstate = getattr(orig.__cause__, "sqlstate", None)
    if sqlstate in LOCK_TIMEOUT_SQLSTATES:
        return True

    # SQLite сообщает о блокировке только текстом
    return "database is locked" in str(orig).lower()


async def set_lock_timeout(session: AsyncSession, timeout_ms: int) -> None:
    """SET LOCAL lock_timeout для текущей транзакции (только PostgreSQL)"""
    connection = await session.connection()
    if connection.dialect.name == "postgresql":
        await session.execute(text(f"SET LOCAL lock_timeout = '{int(timeout_ms)}ms'"))


def raise_for_contention(resource: str, exc: BaseException) -> None:
    if is_lock_timeout(exc):
        logger.warning(
            f"Lock contention on {resource}: {exc}",
            extra={"resource": resource, "exception_type": type(exc).__name__},
        )
        raise ConcurrencyConflictError(resource) from exc


def db_retry(
    max_attempts: int = None,
    delay: float = None,
    backoff_factor: float = DB_RETRY_BACKOFF_FACTOR,
    exceptions: tuple = TRANSIENT_ERRORS,
) -> Callable[[F], F]:
    """
    Повтор операции с БД при потере соединения.

    Задержка растет экспоненциально: delay, delay * backoff_factor, ...
    После последней попытки ошибки соединения и таймауты превращаются
    в DatabaseConnectionError / DatabaseTimeoutError.
    """
    attempts = max_attempts or DB_RETRY_ATTEMPTS
    initial_delay = DB_RETRY_DELAY if delay is None else delay

    def decorator(func: F) -> F:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            retrying = AsyncRetrying(
                stop=stop_after_attempt(attempts),
                wait=wait_exponential(multiplier=initial_delay, exp_base=backoff_factor),
                retry=retry_if_exception_type(exceptions),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            )
            try:
                return await retrying(func, *args, **kwargs)
            except TimeoutError as e:
                logger.error(f"{func.__name__} timed out after {attempts} attempts: {e}")
                raise DatabaseTimeoutError(func.__name__, 30) from e
            except exceptions as e:
                logger.error(f"{func.__name__} failed after {attempts} attempts: {e}")
                raise DatabaseConnectionError(
                    f"Database connection failed after {attempts} attempts"
                ) from e

        return wrapper

    return decorator


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency: сессия БД на время запроса"""
    async with async_session() as session:
        try:
            yield session
        except Exception as e:
            await session.rollback()
            logger.error(f"Session error: {e}")
            raise


class DatabaseManager:
    @staticmethod
    @db_retry()
    async def create_tables():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    @staticmethod
    @db_retry()
    async def check_connection() -> bool:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    @staticmethod
    async def close_connections():
        await engine.dispose()
        logger.info("Database connections closed")


db_manager = DatabaseManager()


def db_operation(func: F) -> F:
    """Операция чтения: логирует ошибки SQLAlchemy и пробрасывает их дальше"""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(
                f"SQLAlchemy error in {func.__name__}: {e}",
                extra={"operation": func.__name__, "exception_type": type(e).__name__},
            )
            raise

    return wrapper


class TransactionManager:
    """Выполняет операцию в транзакции: commit при успехе, rollback при ошибке"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def execute(self, operation: Callable, *args, **kwargs):
        try:
            result = await operation(self.session, *args, **kwargs)
            await self.session.commit()
            return result
        except BaseAppException as e:
            await self.session.rollback()
            logger.log(e.log_level, f"Transaction rolled back: {e.error_code}")
            raise
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Transaction failed: {type(e).__name__}: {e}")
            raise


async def with_db_transaction(
    session: AsyncSession, operation: Callable, *args, **kwargs
):
    return await TransactionManager(session).execute(operation, *args, **kwargs)
