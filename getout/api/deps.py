"""Authentication dependencies shared by the routers."""

from __future__ import annotations

from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from ..core import get_session
from ..core.security import verify_token
from ..models import User

# auto_error=False so a missing header is a 401 rather than FastAPI's 403
_bearer = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    session: Session = Depends(get_session),
) -> User:
    """Resolve the bearer JWT to a user; 401 on any failure."""

    if credentials is None:
        raise HTTPException(401, "Authentication required")
    try:
        payload = verify_token(credentials.credentials)
        user_id = int(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError) as exc:
        raise HTTPException(401, "Invalid or expired token") from exc

    user = session.get(User, user_id)
    if user is None:
        raise HTTPException(401, "User not found")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(403, "Admin access required")
    return user


def require_self_or_admin(user: User, user_id: int) -> None:
    if user.id != user_id and not user.is_admin:
        raise HTTPException(403, "You can only access your own data")


__all__ = ["get_current_user", "require_admin", "require_self_or_admin"]
