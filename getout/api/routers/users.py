"""User profile and account endpoints."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from ...core import get_session
from ...models import User
from ...services import strava, users
from ..deps import get_current_user, require_admin, require_self_or_admin

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/me")
def get_me(user: User = Depends(get_current_user)):
    return users.user_to_dict(user)


@router.patch("/me")
def update_me(
    body: Dict[str, Any],
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Update the caller's contact email (the only editable field)."""

    if "email" not in body:
        raise HTTPException(400, "Nothing to update")
    return users.user_to_dict(users.update_email(session, user, body.get("email")))


@router.delete("/me")
def delete_me(user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    """Delete the caller's account with their activities and territory."""

    removed = users.delete_user_data(session, user)
    return {"ok": True, **removed}


@router.get("")
def list_all_users(
    limit: int = 100,
    offset: int = 0,
    _: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return [users.user_to_dict(u) for u in users.list_users(session, limit=limit, offset=offset)]


@router.get("/count")
def users_count(_: User = Depends(require_admin), session: Session = Depends(get_session)):
    return {"count": users.count_users(session)}


@router.get("/{user_id}")
def get_user(
    user_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    require_self_or_admin(user, user_id)
    return users.user_to_dict(users.get_user(session, user_id))


@router.delete("/{user_id}")
def delete_user(
    user_id: int,
    _: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    target = users.get_user(session, user_id)
    removed = users.delete_user_data(session, target)
    return {"ok": True, "deleted_user": user_id, **removed}


@router.post("/{user_id}/refresh-token")
async def refresh_user_token(
    user_id: int,
    _: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    """Force a Strava token refresh for a player."""

    target = await strava.refresh_user_token(session, users.get_user(session, user_id))
    return users.user_to_dict(target)


__all__ = ["router"]
