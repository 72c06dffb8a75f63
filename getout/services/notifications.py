"""Notification creation, listing and read-state helpers."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, update
from sqlmodel import Session, func, select

from ..core import NOTIFICATION_TTL_DAYS, isoformat_z, utcnow
from ..errors import NotFoundError
from ..models import Activity, Notification, User
from ..models.notification import NEGATIVE, POSITIVE


def _hexes(count: int) -> str:
    return "hex" if count == 1 else "hexes"


def activity_message(new_hex_count: int, stolen_count: int) -> Optional[str]:
    """Message for the runner after an activity, or None when nothing happened."""

    if new_hex_count > 0 and stolen_count > 0:
        return (
            "Congratulations on your newest activity! You discovered "
            f"{new_hex_count} new {_hexes(new_hex_count)} and stole {stolen_count} from others!"
        )
    if new_hex_count > 0:
        return f"Congratulations! You discovered {new_hex_count} new {_hexes(new_hex_count)}!"
    if stolen_count > 0:
        return f"Your activity captured {stolen_count} {_hexes(stolen_count)} from other users!"
    return None


def create_activity_notification(
    session: Session,
    *,
    user_id: int,
    activity_id: int,
    new_hex_count: int,
    stolen_count: int,
) -> Optional[Notification]:
    message = activity_message(new_hex_count, stolen_count)
    if message is None:
        return None
    notification = Notification(
        owner_id=user_id,
        triggered_by_id=user_id,
        type=POSITIVE,
        message=message,
        related_activity_id=activity_id,
    )
    session.add(notification)
    session.commit()
    session.refresh(notification)
    return notification


def create_stolen_notification(
    session: Session,
    *,
    affected_user_id: int,
    thief_id: int,
    thief_name: str,
    stolen_count: int,
    activity_id: int,
) -> Notification:
    notification = Notification(
        owner_id=affected_user_id,
        triggered_by_id=thief_id,
        type=NEGATIVE,
        message=f"{thief_name} just stole {stolen_count} {_hexes(stolen_count)} from you!",
        related_activity_id=activity_id,
    )
    session.add(notification)
    session.commit()
    session.refresh(notification)
    return notification


def list_notifications(
    session: Session,
    owner_id: Optional[int] = None,
    *,
    limit: int = 20,
    offset: int = 0,
    unread_only: bool = False,
) -> List[Notification]:
    """Newest first; ``owner_id=None`` lists everyone's (admin view)."""

    query = select(Notification)
    if owner_id is not None:
        query = query.where(Notification.owner_id == owner_id)
    if unread_only:
        query = query.where(Notification.read == False)  # noqa: E712
    query = query.order_by(Notification.created_at.desc(), Notification.id.desc())
    return list(session.exec(query.offset(offset).limit(limit)).all())


def count_notifications(session: Session) -> int:
    return session.exec(select(func.count(Notification.id))).one()


def unread_count(session: Session, owner_id: int) -> int:
    return session.exec(
        select(func.count(Notification.id)).where(
            Notification.owner_id == owner_id, Notification.read == False  # noqa: E712
        )
    ).one()


def mark_as_read(session: Session, notification_id: int, owner_id: int) -> Notification:
    notification = session.get(Notification, notification_id)
    if not notification or notification.owner_id != owner_id:
        raise NotFoundError("Notification not found")
    notification.read = True
    session.add(notification)
    session.commit()
    session.refresh(notification)
    return notification


def mark_all_as_read(session: Session, owner_id: int) -> int:
    result = session.execute(
        update(Notification)
        .where(Notification.owner_id == owner_id, Notification.read == False)  # noqa: E712
        .values(read=True)
    )
    session.commit()
    return result.rowcount


def delete_notification(
    session: Session, notification_id: int, owner_id: Optional[int] = None
) -> bool:
    """Delete one notification; ``owner_id=None`` skips the ownership check."""

    notification = session.get(Notification, notification_id)
    if not notification:
        return False
    if owner_id is not None and notification.owner_id != owner_id:
        return False
    session.delete(notification)
    session.commit()
    return True


def purge_expired(session: Session, ttl_days: int = NOTIFICATION_TTL_DAYS) -> int:
    cutoff = utcnow() - timedelta(days=ttl_days)
    result = session.execute(delete(Notification).where(Notification.created_at < cutoff))
    session.commit()
    return result.rowcount


def notification_to_dict(session: Session, notification: Notification) -> Dict[str, Any]:
    triggered_by = (
        session.get(User, notification.triggered_by_id)
        if notification.triggered_by_id
        else None
    )
    activity = (
        session.get(Activity, notification.related_activity_id)
        if notification.related_activity_id
        else None
    )
    return {
        "id": notification.id,
        "owner_id": notification.owner_id,
        "type": notification.type,
        "message": notification.message,
        "read": notification.read,
        "created_at": isoformat_z(notification.created_at),
        "triggered_by": (
            {
                "id": triggered_by.id,
                "firstname": triggered_by.firstname,
                "username": triggered_by.username,
            }
            if triggered_by
            else None
        ),
        "related_activity_id": notification.related_activity_id,
        "related_activity": (
            {"name": activity.name, "type": activity.type} if activity else None
        ),
    }


__all__ = [
    "activity_message",
    "count_notifications",
    "create_activity_notification",
    "create_stolen_notification",
    "delete_notification",
    "list_notifications",
    "mark_all_as_read",
    "mark_as_read",
    "notification_to_dict",
    "purge_expired",
    "unread_count",
]
