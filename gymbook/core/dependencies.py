from typing import Dict, Any, Optional
from fastapi import Depends, Header

from gymbook.core.config import STAFF_API_TOKEN
from gymbook.core.exceptions import AuthenticationError, AuthorizationError

STAFF_ROLES = {"staff", "trainer", "admin", "owner"}


async def get_current_user(
    x_user_id: Optional[int] = Header(None),
    x_user_role: str = Header("member"),
) -> Dict[str, Any]:
    """
    Dependency для получения текущего пользователя.

    Аутентификация выполняется шлюзом: сюда доходят уже проверенные
    заголовки X-User-Id и X-User-Role.
    """
    if x_user_id is None:
        raise AuthenticationError("X-User-Id header is required")

    role = (x_user_role or "member").lower()
    return {"id": x_user_id, "role": role, "is_staff": role in STAFF_ROLES}


async def get_current_staff_user(
    current_user: Dict[str, Any] = Depends(get_current_user),
    x_staff_token: Optional[str] = Header(None),
) -> Dict[str, Any]:
    """Dependency для staff endpoints"""
    if not current_user["is_staff"]:
        raise AuthorizationError("Staff role required")

    if STAFF_API_TOKEN and x_staff_token != STAFF_API_TOKEN:
        raise AuthorizationError("Invalid staff token")

    return current_user
