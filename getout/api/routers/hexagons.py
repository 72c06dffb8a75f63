"""Hexagon map, territory and statistics endpoints."""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session

from ...core import get_session
from ...models import User
from ...models.hexagon import ROUTE_AREA, ROUTE_LINE
from ...services import activities, capture, hexindex, leaderboard, viewport
from ...services.hexindex import BoundingBox
from ..deps import get_current_user, require_admin

router = APIRouter(prefix="/api/hexagons", tags=["hexagons"])


def _bbox(south: float, west: float, north: float, east: float) -> BoundingBox:
    return BoundingBox(south=south, west=west, north=north, east=east)


def _dump(hexagons) -> List[Dict[str, Any]]:
    return [viewport.hexagon_to_dict(h) for h in hexagons]


@router.get("/me")
def my_hexagons(
    limit: int = 1000,
    offset: int = 0,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return _dump(viewport.user_hexagons(session, user.id, limit=limit, offset=offset))


@router.get("/me/bbox")
def my_hexagons_in_bbox(
    south: float,
    west: float,
    north: float,
    east: float,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    bbox = _bbox(south, west, north, east)
    return _dump(viewport.hexagons_in_bbox(session, bbox, owner_id=user.id))


@router.get("/bbox")
def hexagons_in_bbox(
    south: float,
    west: float,
    north: float,
    east: float,
    _: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return _dump(viewport.hexagons_in_bbox(session, _bbox(south, west, north, east)))


@router.get("/viewport")
def hexagons_in_viewport(
    south: float,
    west: float,
    north: float,
    east: float,
    zoom: float = 14,
    mine: bool = False,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Hexagons visible on the map, looked up through their parent cells."""

    bbox = _bbox(south, west, north, east)
    owner_id = user.id if mine else None
    return _dump(viewport.hexagons_in_viewport(session, bbox, zoom, owner_id=owner_id))


@router.get("/viewport-parents")
def viewport_parent_ids(
    south: float,
    west: float,
    north: float,
    east: float,
    ring: int = Query(1, ge=0, le=5),
    _: User = Depends(get_current_user),
):
    """Parent cells covering the viewport, for the parent-scoped queries."""

    return {"parent_ids": hexindex.viewport_parents(_bbox(south, west, north, east), ring)}


@router.get("/me/by-parents")
def my_hexagons_by_parents(
    parent_ids: List[str] = Query(...),
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return _dump(viewport.hexagons_by_parents(session, parent_ids, owner_id=user.id))


@router.get("/by-parents")
def hexagons_by_parents(
    parent_ids: List[str] = Query(...),
    _: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return _dump(viewport.hexagons_by_parents(session, parent_ids))


@router.get("/me/count")
def my_hexagon_count(user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    return {"count": viewport.count_hexagons(session, owner_id=user.id)}


@router.get("/count")
def hexagon_count(_: User = Depends(require_admin), session: Session = Depends(get_session)):
    return {"count": viewport.count_hexagons(session)}


@router.get("/users/{user_id}")
def user_hexagons(
    user_id: int,
    limit: int = 1000,
    offset: int = 0,
    _: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    # territory is public, it is drawn on everyone's map
    return _dump(viewport.user_hexagons(session, user_id, limit=limit, offset=offset))


@router.get("/stolen-from/{user_id}")
def stolen_from_user(
    user_id: int,
    _: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return _dump(viewport.hexagons_stolen_from(session, user_id))


@router.get("/contested")
def contested(
    limit: int = 100,
    _: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return _dump(viewport.contested_hexagons(session, limit=limit))


@router.get("/stats/battle/{user_id}")
def battle_stats(
    user_id: int,
    _: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return leaderboard.user_battle_stats(session, user_id)


@router.get("/stats/records/{user_id}")
def record_stats(
    user_id: int,
    _: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return leaderboard.user_record_stats(session, user_id)


@router.get("/stats/versus")
def versus(
    user_id_1: int,
    user_id_2: int,
    _: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return leaderboard.versus_stats(session, user_id_1, user_id_2)


@router.get("/regional/active-leaders")
def regional_active_leaders(
    parent_ids: List[str] = Query(...),
    limit: int = 10,
    _: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return leaderboard.regional_active_leaders(session, parent_ids, limit=limit)


@router.get("/regional/og-discoverers")
def regional_og_discoverers(
    parent_ids: List[str] = Query(...),
    limit: int = 10,
    _: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return leaderboard.regional_og_discoverers(session, parent_ids, limit=limit)


@router.get("")
def all_hexagons(
    limit: int = 1000,
    offset: int = 0,
    _: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return _dump(viewport.all_hexagons(session, limit=limit, offset=offset))


@router.post("/capture")
def capture_hexagons(
    body: Dict[str, Any],
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Capture an explicit list of cells for one of the caller's activities."""

    hexagon_ids = body.get("hexagon_ids") or []
    route_type = body.get("route_type") or ROUTE_LINE
    if not isinstance(hexagon_ids, list) or not hexagon_ids:
        raise HTTPException(400, "hexagon_ids must be a non-empty list")
    if route_type not in (ROUTE_LINE, ROUTE_AREA):
        raise HTTPException(400, "route_type must be 'line' or 'area'")

    try:
        activity = activities.get_activity(session, int(body.get("activity_id")))
    except (TypeError, ValueError):
        raise HTTPException(400, "activity_id must be an integer")
    if not activity:
        raise HTTPException(404, "Activity not found")
    if activity.user_id != user.id:
        raise HTTPException(403, "You can only capture hexagons with your own activities")

    result = capture.capture_hexagons(
        session,
        user=user,
        activity=activity,
        hexagon_ids=[str(h) for h in hexagon_ids],
        route_type=route_type,
    )
    return {**result.summary(), "hexagons": _dump(result.hexagons)}


@router.get("/{hexagon_id}")
def get_hexagon(
    hexagon_id: str,
    _: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """One hexagon including its full capture history."""

    hexagon = viewport.get_hexagon(session, hexagon_id)
    if not hexagon:
        raise HTTPException(404, "Hexagon not found")
    return viewport.hexagon_to_dict(hexagon, viewport.capture_history(session, hexagon))


@router.delete("/{hexagon_id}")
def delete_hexagon(
    hexagon_id: str,
    _: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    if not capture.delete_hexagon(session, hexagon_id):
        raise HTTPException(404, "Hexagon not found")
    return {"ok": True, "deleted_hexagon": hexagon_id}


__all__ = ["router"]
