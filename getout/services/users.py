"""Player accounts: Strava login upsert, lookups and account deletion."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import delete
from sqlmodel import Session, func, select

from ..core import isoformat_z, utcnow
from ..errors import NotFoundError, ValidationError
from ..models import Activity, CaptureHistoryEntry, Hexagon, Notification, User
from . import strava

logger = structlog.get_logger(__name__)


def get_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def list_users(session: Session, *, limit: int = 100, offset: int = 0) -> List[User]:
    return list(
        session.exec(select(User).order_by(User.id.asc()).offset(offset).limit(limit)).all()
    )


def count_users(session: Session) -> int:
    return session.exec(select(func.count(User.id))).one()


def upsert_from_strava(session: Session, token_data: Dict[str, Any]) -> User:
    """Create or update the player behind a Strava token exchange response."""

    athlete = token_data.get("athlete") or {}
    if "id" not in athlete:
        raise ValidationError("Strava response did not include an athlete")

    user = session.exec(select(User).where(User.strava_id == int(athlete["id"]))).first()
    created = user is None
    if user is None:
        user = User(
            strava_id=int(athlete["id"]),
            access_token="",
            refresh_token="",
            token_expires_at=0,
        )
    strava.store_tokens(user, token_data)
    user.scope = token_data.get("scope") or user.scope
    user.firstname = athlete.get("firstname") or ""
    user.lastname = athlete.get("lastname") or ""
    user.username = athlete.get("username")
    user.profile_image_url = athlete.get("profile")
    user.city = athlete.get("city")
    user.state = athlete.get("state")
    user.country = athlete.get("country")
    user.sex = athlete.get("sex")

    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("user_logged_in", user_id=user.id, strava_id=user.strava_id, created=created)
    return user


def update_email(session: Session, user: User, email: Optional[str]) -> User:
    normalized = (email or "").strip().lower() or None
    if normalized is not None and "@" not in normalized:
        raise ValidationError("Invalid email address")
    user.email = normalized
    user.updated_at = utcnow()
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def delete_user_data(session: Session, user: User) -> Dict[str, int]:
    """Remove a player with their activities, owned hexagons and notifications."""

    owned_pks = select(Hexagon.id).where(Hexagon.current_owner_id == user.id)
    session.execute(delete(CaptureHistoryEntry).where(CaptureHistoryEntry.hexagon_pk.in_(owned_pks)))
    hexagons = session.execute(delete(Hexagon).where(Hexagon.current_owner_id == user.id)).rowcount
    activities = session.execute(delete(Activity).where(Activity.user_id == user.id)).rowcount
    session.execute(delete(Notification).where(Notification.owner_id == user.id))
    session.delete(user)
    session.commit()

    logger.info("user_deleted", user_id=user.id, hexagons=hexagons, activities=activities)
    return {"hexagons": hexagons, "activities": activities}


def user_to_dict(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "strava_id": user.strava_id,
        "is_admin": user.is_admin,
        "email": user.email,
        "last_hex": user.last_hex,
        "strava_profile": {
            "firstname": user.firstname,
            "lastname": user.lastname,
            "username": user.username,
            "profile": user.profile_image_url,
            "city": user.city,
            "state": user.state,
            "country": user.country,
            "sex": user.sex,
        },
        "created_at": isoformat_z(user.created_at),
        "updated_at": isoformat_z(user.updated_at),
    }


__all__ = [
    "count_users",
    "delete_user_data",
    "get_user",
    "list_users",
    "update_email",
    "upsert_from_strava",
    "user_to_dict",
]
