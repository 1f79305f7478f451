"""
Создание и проверка схемы БД.

    python -m gymbook.core.init_db [init|verify|reset]
"""

import asyncio
import logging
import sys

from sqlalchemy import inspect

from gymbook.core.config import ENVIRONMENT
from gymbook.core.database import Base, db_manager, engine
from gymbook.core.exceptions import ConfigurationError, DatabaseError

# Регистрируем модели в metadata
import gymbook.staff.models  # noqa: F401
import gymbook.students.models  # noqa: F401

logger = logging.getLogger(__name__)

# Таблицы, без которых движок бронирования не работает
REQUIRED_TABLES = (
    "schedules",
    "class_sessions",
    "reservations",
    "memberships",
    "attendance",
)

RESET_ALLOWED_ENVIRONMENTS = ("development", "dev", "test")


async def init_database():
    try:
        await db_manager.check_connection()
        await db_manager.create_tables()
    except DatabaseError:
        raise
    except Exception as e:
        raise DatabaseError(f"Database initialization failed: {e}") from e

    logger.info("✅ Database schema ready")


async def verify_database_setup() -> bool:
    """Проверяет, что все таблицы бронирования существуют"""
    async with engine.connect() as conn:
        existing = await conn.run_sync(
            lambda sync_conn: set(inspect(sync_conn).get_table_names())
        )

    missing = sorted(set(REQUIRED_TABLES) - existing)
    if missing:
        raise DatabaseError(f"Missing tables: {', '.join(missing)}")

    logger.info(f"✅ Database verified: {len(REQUIRED_TABLES)} tables present")
    return True


async def reset_database():
    """Удаляет и создает все таблицы заново. Только для dev/test."""
    if ENVIRONMENT not in RESET_ALLOWED_ENVIRONMENTS:
        raise ConfigurationError(
            "ENVIRONMENT", "Database reset is only allowed in development or test"
        )

    logger.warning("🚨 Dropping all tables")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await init_database()


COMMANDS = {
    "init": init_database,
    "verify": verify_database_setup,
    "reset": reset_database,
}


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    command = argv[0] if argv else "init"
    if command not in COMMANDS:
        print(f"Unknown command: {command}. Available: {', '.join(COMMANDS)}")
        return 1

    try:
        asyncio.run(COMMANDS[command]())
    except (DatabaseError, ConfigurationError) as e:
        logger.error(f"{command} failed: {e.message}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
