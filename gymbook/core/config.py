import os

# PostgreSQL
POSTGRES_USER = os.getenv("POSTGRES_USER", "postgres")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
POSTGRES_DB = os.getenv("POSTGRES_DB", "gymbook")
POSTGRES_HOST = os.getenv("POSTGRES_HOST", "db")
POSTGRES_PORT = os.getenv("POSTGRES_PORT", "5432")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_HOST}:{POSTGRES_PORT}/{POSTGRES_DB}",
)

# Общий секрет для staff-эндпоинтов; пользователя определяет шлюз авторизации
STAFF_API_TOKEN = os.getenv("STAFF_API_TOKEN")

# Среда
ENVIRONMENT = os.getenv("ENVIRONMENT", "production").lower()
DEBUG = ENVIRONMENT in ["development", "dev"]

# Повторы при потере соединения с БД
DB_RETRY_ATTEMPTS = int(os.getenv("DB_RETRY_ATTEMPTS", "3"))
DB_RETRY_DELAY = float(os.getenv("DB_RETRY_DELAY", "1.0"))
DB_RETRY_BACKOFF_FACTOR = float(os.getenv("DB_RETRY_BACKOFF_FACTOR", "2.0"))

# Логирование
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json" if not DEBUG else "text")

# Приложение
APP_NAME = os.getenv("APP_NAME", "Gym Booking API")
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")

# Бронирование
MAX_EXPANSION_DAYS = int(os.getenv("MAX_EXPANSION_DAYS", "366"))
BOOKING_LOCK_TIMEOUT_MS = int(os.getenv("BOOKING_LOCK_TIMEOUT_MS", "3000"))
BOOKING_RETRY_ATTEMPTS = int(os.getenv("BOOKING_RETRY_ATTEMPTS", "2"))
PENDING_PAYMENT_TTL_HOURS = int(os.getenv("PENDING_PAYMENT_TTL_HOURS", "24"))

RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"

# Разрешенные источники для CORS (через запятую)
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS", "http://localhost:3000,http://localhost:8080"
    ).split(",")
    if origin.strip()
]

def validate_config():
    """Проверка настроек при запуске; все ошибки собираются в одно сообщение"""
    errors = [] if DATABASE_URL else ["DATABASE_URL or POSTGRES_HOST is required"]

    minimums = {
        "DB_RETRY_ATTEMPTS": (DB_RETRY_ATTEMPTS, 1),
        "DB_RETRY_DELAY": (DB_RETRY_DELAY, 0),
        "MAX_EXPANSION_DAYS": (MAX_EXPANSION_DAYS, 1),
        "BOOKING_LOCK_TIMEOUT_MS": (BOOKING_LOCK_TIMEOUT_MS, 1),
        "BOOKING_RETRY_ATTEMPTS": (BOOKING_RETRY_ATTEMPTS, 1),
        "PENDING_PAYMENT_TTL_HOURS": (PENDING_PAYMENT_TTL_HOURS, 1),
    }
    errors.extend(
        f"{name} must be >= {minimum}"
        for name, (value, minimum) in minimums.items()
        if value < minimum
    )

    if errors:
        raise ValueError(f"Configuration errors: {'; '.join(errors)}")


# VALIDATE_CONFIG_ON_IMPORT=false отключает проверку при импорте
if os.getenv("VALIDATE_CONFIG_ON_IMPORT", "true").lower() == "true":
    try:
        validate_config()
    except ValueError as e:
        print(f"⚠️  Configuration warning: {e}")
