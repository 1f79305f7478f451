"""Staff Routers Package"""
from .schedules import router as schedules_router
from .sessions import router as sessions_router
from .reservations import router as reservations_router
from .memberships import router as memberships_router
from .attendance import router as attendance_router

__all__ = [
    "schedules_router",
    "sessions_router",
    "reservations_router",
    "memberships_router",
    "attendance_router",
]
