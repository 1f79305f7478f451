from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from gymbook.core.limits import limiter, rate_limit_handler
from gymbook.core.init_db import init_database
from gymbook.core.error_handlers import setup_exception_handlers
from gymbook.core.database import db_manager
from gymbook.core.middleware import DEFAULT_EXCLUDE_PATHS, setup_middleware
from gymbook.core.logging_utils import (
    setup_logging,
    get_logger,
    log_business_event,
    error_tracker,
)
from gymbook.core.config import (
    validate_config,
    APP_NAME,
    APP_VERSION,
    CORS_ORIGINS,
    DEBUG,
    ENVIRONMENT,
    LOG_LEVEL,
    LOG_FORMAT,
)

from gymbook.staff.routers import (
    schedules_router,
    sessions_router,
    reservations_router,
    memberships_router as staff_memberships_router,
    attendance_router,
)
from gymbook.students.routers import (
    bookings_router,
    memberships_router as student_memberships_router,
)

setup_logging(LOG_LEVEL, LOG_FORMAT)
logger = get_logger(__name__)

API_PREFIX = "/api/v1"
ROUTERS = (
    schedules_router,
    sessions_router,
    reservations_router,
    staff_memberships_router,
    attendance_router,
    bookings_router,
    student_memberships_router,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"🚀 {APP_NAME} {APP_VERSION} starting ({ENVIRONMENT})")

    try:
        validate_config()
        await init_database()
    except Exception as e:
        logger.critical(f"❌ Startup aborted: {e}")
        error_tracker.track_error("STARTUP_ERROR", str(e), {"version": APP_VERSION})
        raise

    log_business_event(
        "application_started", "system", 0, {"version": APP_VERSION, "environment": ENVIRONMENT}
    )

    yield

    try:
        await db_manager.close_connections()
    except Exception as e:
        logger.error(f"❌ Shutdown: could not close database connections: {e}")
    logger.info(f"🛑 {APP_NAME} stopped")


app = FastAPI(
    title=APP_NAME,
    description="Class schedules, bookings and memberships for gyms",
    version=APP_VERSION,
    lifespan=lifespan,
    debug=DEBUG,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_exception_handlers(app)
setup_middleware(
    app,
    {
        "slow_request_threshold": 2.0,
        "exclude_paths": (*DEFAULT_EXCLUDE_PATHS, "/favicon.ico"),
    },
)

# slowapi берет limiter из app.state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

for router in ROUTERS:
    app.include_router(router, prefix=API_PREFIX)


@app.get("/health")
async def health_check():
    """Проверка состояния приложения и базы данных"""
    try:
        await db_manager.check_connection()
        database = "ok"
    except Exception as e:
        logger.warning(f"Health check: database unavailable: {e}")
        database = "unavailable"

    return {
        "status": "ok" if database == "ok" else "degraded",
        "app": APP_NAME,
        "version": APP_VERSION,
        "database": database,
        "errors": error_tracker.get_stats()["total_errors"],
    }
