"""Activity lookups and serialization."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlmodel import Session, select

from ..core import isoformat_z
from ..models import Activity


def get_activity(session: Session, activity_id: int) -> Optional[Activity]:
    return session.get(Activity, activity_id)


def list_activities(
    session: Session,
    user_id: Optional[int] = None,
    *,
    limit: int = 50,
    offset: int = 0,
) -> List[Activity]:
    """Newest first; ``user_id=None`` lists every activity."""

    query = select(Activity)
    if user_id is not None:
        query = query.where(Activity.user_id == user_id)
    query = query.order_by(Activity.start_date.desc(), Activity.id.desc())
    return list(session.exec(query.offset(offset).limit(limit)).all())


def activity_to_dict(activity: Activity) -> Dict[str, Any]:
    return {
        "id": activity.id,
        "strava_activity_id": activity.strava_activity_id,
        "user_id": activity.user_id,
        "source": activity.source,
        "name": activity.name,
        "type": activity.type,
        "sport_type": activity.sport_type,
        "description": activity.description,
        "start_date": isoformat_z(activity.start_date),
        "start_date_local": isoformat_z(activity.start_date_local),
        "timezone": activity.timezone,
        "moving_time": activity.moving_time,
        "elapsed_time": activity.elapsed_time,
        "distance": activity.distance,
        "elevation_gain": activity.elevation_gain,
        "average_speed": activity.average_speed,
        "start_location": (
            {"lat": activity.start_lat, "lng": activity.start_lng}
            if activity.start_lat is not None
            else None
        ),
        "end_location": (
            {"lat": activity.end_lat, "lng": activity.end_lng}
            if activity.end_lat is not None
            else None
        ),
        "summary_polyline": activity.summary_polyline,
        "is_manual": activity.is_manual,
        "is_private": activity.is_private,
        "last_hex": activity.last_hex,
        "created_at": isoformat_z(activity.created_at),
    }


__all__ = ["activity_to_dict", "get_activity", "list_activities"]
