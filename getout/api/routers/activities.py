"""Activity listing, processing and deletion endpoints."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from ...core import get_session
from ...models import User
from ...models.activity import SOURCE_API
from ...services import activities, capture
from ..deps import get_current_user, require_admin, require_self_or_admin

router = APIRouter(tags=["activities"])


@router.get("/api/activities/me")
def my_activities(
    limit: int = 50,
    offset: int = 0,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return [
        activities.activity_to_dict(a)
        for a in activities.list_activities(session, user.id, limit=limit, offset=offset)
    ]


@router.get("/api/users/{user_id}/activities")
def user_activities(
    user_id: int,
    limit: int = 50,
    offset: int = 0,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    require_self_or_admin(user, user_id)
    return [
        activities.activity_to_dict(a)
        for a in activities.list_activities(session, user_id, limit=limit, offset=offset)
    ]


@router.get("/api/activities")
def all_activities(
    limit: int = 50,
    offset: int = 0,
    _: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return [
        activities.activity_to_dict(a)
        for a in activities.list_activities(session, limit=limit, offset=offset)
    ]


@router.get("/api/activities/{activity_id}")
def get_activity(
    activity_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    activity = activities.get_activity(session, activity_id)
    if not activity:
        raise HTTPException(404, "Activity not found")
    require_self_or_admin(user, activity.user_id)
    return activities.activity_to_dict(activity)


@router.post("/api/activities/process")
async def process_activity(
    body: Dict[str, Any],
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Sync a Strava activity and capture the hexagons along its route."""

    try:
        strava_activity_id = int(body.get("strava_activity_id"))
    except (TypeError, ValueError):
        raise HTTPException(400, "strava_activity_id must be an integer")

    result = await capture.process_activity(
        session, strava_activity_id=strava_activity_id, user=user, source=SOURCE_API
    )
    return {
        "success": True,
        "activity": {
            "id": result.activity.id,
            "strava_activity_id": result.activity.strava_activity_id,
            "name": result.activity.name,
            "distance": result.activity.distance,
            "was_created": result.was_created,
        },
        "route_type": result.route_type,
        "hexagons": {
            "total_parsed": len(result.hexagon_ids),
            "total_in_db": len(result.capture.hexagons),
            **result.capture.summary(),
        },
    }


@router.delete("/api/activities/{strava_activity_id}")
def delete_activity(
    strava_activity_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Delete an activity and give its hexagons back to their previous owners."""

    outcome = capture.delete_activity_and_restore(
        session, strava_activity_id=strava_activity_id, user=user
    )
    return {
        "success": True,
        "hexagons_restored": outcome.restored,
        "hexagons_deleted": outcome.deleted,
    }


__all__ = ["router"]
