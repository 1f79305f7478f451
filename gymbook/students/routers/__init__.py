"""Student Routers Package"""
from .bookings import router as bookings_router
from .memberships import router as memberships_router

__all__ = [
    "bookings_router",
    "memberships_router",
]
