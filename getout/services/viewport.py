"""Read-side hexagon queries for the map and profile pages."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlmodel import Session, func, select

from ..core import isoformat_z
from ..models import CaptureHistoryEntry, Hexagon
from . import hexindex
from .hexindex import BoundingBox

# IN() lists are split to stay below SQLite's bound-parameter limit.
PARENT_CHUNK = 500

OWN_BBOX_LIMIT = 5000
ALL_BBOX_LIMIT = 10000


def _chunks(items: Sequence[str], size: int = PARENT_CHUNK) -> Iterable[Sequence[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def hexagons_by_parents(
    session: Session, parent_ids: Iterable[str], owner_id: Optional[int] = None
) -> List[Hexagon]:
    parents = sorted(set(parent_ids))
    found: List[Hexagon] = []
    for chunk in _chunks(parents):
        query = select(Hexagon).where(Hexagon.parent_hexagon_id.in_(chunk))
        if owner_id is not None:
            query = query.where(Hexagon.current_owner_id == owner_id)
        found.extend(session.exec(query).all())
    return found


def hexagons_in_viewport(
    session: Session, bbox: BoundingBox, zoom: float, owner_id: Optional[int] = None
) -> List[Hexagon]:
    """Hexagons visible in ``bbox``, located through their parent cells."""

    candidates = set(hexindex.viewport_cells(bbox, zoom))
    if not candidates:
        return []
    parents = {hexindex.parent_of(cell) for cell in candidates}
    return [
        hexagon
        for hexagon in hexagons_by_parents(session, parents, owner_id)
        if hexagon.hexagon_id in candidates
    ]


def hexagons_in_bbox(
    session: Session,
    bbox: BoundingBox,
    owner_id: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[Hexagon]:
    """Most recently captured hexagons whose centre falls inside ``bbox``."""

    if limit is None:
        limit = OWN_BBOX_LIMIT if owner_id is not None else ALL_BBOX_LIMIT
    query = select(Hexagon)
    if owner_id is not None:
        query = query.where(Hexagon.current_owner_id == owner_id)
    query = query.order_by(Hexagon.last_captured_at.desc()).limit(limit)
    return [
        hexagon
        for hexagon in session.exec(query).all()
        if bbox.contains(*hexindex.cell_center(hexagon.hexagon_id))
    ]


def get_hexagon(session: Session, hexagon_id: str) -> Optional[Hexagon]:
    return session.exec(select(Hexagon).where(Hexagon.hexagon_id == hexagon_id)).first()


def user_hexagons(
    session: Session, owner_id: int, *, limit: int = 1000, offset: int = 0
) -> List[Hexagon]:
    return list(
        session.exec(
            select(Hexagon)
            .where(Hexagon.current_owner_id == owner_id)
            .order_by(Hexagon.last_captured_at.desc(), Hexagon.id.desc())
            .offset(offset)
            .limit(limit)
        ).all()
    )


def all_hexagons(session: Session, *, limit: int = 1000, offset: int = 0) -> List[Hexagon]:
    return list(
        session.exec(
            select(Hexagon)
            .order_by(Hexagon.last_captured_at.desc(), Hexagon.id.desc())
            .offset(offset)
            .limit(limit)
        ).all()
    )


def contested_hexagons(session: Session, limit: int = 100) -> List[Hexagon]:
    return list(
        session.exec(
            select(Hexagon)
            .order_by(Hexagon.capture_count.desc(), Hexagon.last_captured_at.desc())
            .limit(limit)
        ).all()
    )


def hexagons_stolen_from(session: Session, user_id: int) -> List[Hexagon]:
    """Hexagons whose immediate previous owner was ``user_id``."""

    return list(
        session.exec(
            select(Hexagon)
            .where(Hexagon.last_previous_owner_id == user_id)
            .order_by(Hexagon.last_captured_at.desc())
        ).all()
    )


def count_hexagons(session: Session, owner_id: Optional[int] = None) -> int:
    query = select(func.count(Hexagon.id))
    if owner_id is not None:
        query = query.where(Hexagon.current_owner_id == owner_id)
    return session.exec(query).one()


def capture_history(session: Session, hexagon: Hexagon) -> List[CaptureHistoryEntry]:
    return list(
        session.exec(
            select(CaptureHistoryEntry)
            .where(CaptureHistoryEntry.hexagon_pk == hexagon.id)
            .order_by(CaptureHistoryEntry.id.asc())
        ).all()
    )


def hexagon_to_dict(
    hexagon: Hexagon, history: Optional[List[CaptureHistoryEntry]] = None
) -> Dict[str, Any]:
    """Serialize a hexagon; history is only included when passed in."""

    data: Dict[str, Any] = {
        "hexagon_id": hexagon.hexagon_id,
        "parent_hexagon_id": hexagon.parent_hexagon_id,
        "current_owner_id": hexagon.current_owner_id,
        "current_owner_strava_id": hexagon.current_owner_strava_id,
        "current_activity_id": hexagon.current_activity_id,
        "current_strava_activity_id": hexagon.current_strava_activity_id,
        "capture_count": hexagon.capture_count,
        "first_captured_at": isoformat_z(hexagon.first_captured_at),
        "first_captured_by": hexagon.first_captured_by,
        "last_captured_at": isoformat_z(hexagon.last_captured_at),
        "last_previous_owner_id": hexagon.last_previous_owner_id,
        "activity_type": hexagon.activity_type,
        "route_type": hexagon.route_type,
    }
    if history is not None:
        data["capture_history"] = [
            {
                "user_id": entry.user_id,
                "strava_id": entry.strava_id,
                "activity_id": entry.activity_id,
                "strava_activity_id": entry.strava_activity_id,
                "captured_at": isoformat_z(entry.captured_at),
                "activity_type": entry.activity_type,
            }
            for entry in history
        ]
    return data


__all__ = [
    "ALL_BBOX_LIMIT",
    "OWN_BBOX_LIMIT",
    "all_hexagons",
    "capture_history",
    "contested_hexagons",
    "count_hexagons",
    "get_hexagon",
    "hexagon_to_dict",
    "hexagons_by_parents",
    "hexagons_in_bbox",
    "hexagons_in_viewport",
    "hexagons_stolen_from",
    "user_hexagons",
]
