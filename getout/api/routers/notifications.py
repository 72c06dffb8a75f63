"""Notification inbox endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from ...core import get_session
from ...models import User
from ...services import notifications
from ..deps import get_current_user, require_admin

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("/me")
def my_notifications(
    limit: int = 20,
    offset: int = 0,
    unread_only: bool = False,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    items = notifications.list_notifications(
        session, user.id, limit=limit, offset=offset, unread_only=unread_only
    )
    return [notifications.notification_to_dict(session, n) for n in items]


@router.get("/me/unread-count")
def my_unread_count(user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    return {"count": notifications.unread_count(session, user.id)}


@router.post("/read-all")
def read_all(user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    return {"ok": True, "updated": notifications.mark_all_as_read(session, user.id)}


@router.post("/{notification_id}/read")
def read_one(
    notification_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    notification = notifications.mark_as_read(session, notification_id, user.id)
    return notifications.notification_to_dict(session, notification)


@router.delete("/{notification_id}")
def delete_one(
    notification_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Owners delete their own notifications; admins may delete any."""

    owner_id = None if user.is_admin else user.id
    if not notifications.delete_notification(session, notification_id, owner_id):
        raise HTTPException(404, "Notification not found")
    return {"ok": True, "deleted_notification": notification_id}


@router.get("")
def all_notifications(
    limit: int = 50,
    offset: int = 0,
    _: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    items = notifications.list_notifications(session, limit=limit, offset=offset)
    return [notifications.notification_to_dict(session, n) for n in items]


@router.get("/count")
def notifications_count(_: User = Depends(require_admin), session: Session = Depends(get_session)):
    return {"count": notifications.count_notifications(session)}


__all__ = ["router"]
