"""Database models for hexagon ownership and its capture history."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field as ORMField, SQLModel

from ..core.time import utcnow

ROUTE_LINE = "line"
ROUTE_AREA = "area"


class Hexagon(SQLModel, table=True):
    """Current owner of one H3 cell.

    ``version`` is bumped on every write and checked by the capture ledger
    so an update never lands on a row it did not read.
    """

    id: Optional[int] = ORMField(default=None, primary_key=True)
    hexagon_id: str = ORMField(index=True, unique=True)
    parent_hexagon_id: str = ORMField(index=True)

    current_owner_id: int = ORMField(foreign_key="user.id", index=True)
    current_owner_strava_id: int
    current_activity_id: int = ORMField(index=True)
    current_strava_activity_id: int

    capture_count: int = 1
    first_captured_at: datetime
    first_captured_by: int = ORMField(index=True)
    last_captured_at: datetime = ORMField(index=True)
    last_previous_owner_id: Optional[int] = ORMField(default=None, index=True)

    activity_type: str
    route_type: Optional[str] = None

    version: int = 1
    created_at: datetime = ORMField(default_factory=utcnow)
    updated_at: datetime = ORMField(default_factory=utcnow)


class CaptureHistoryEntry(SQLModel, table=True):
    """A prior owner of a hexagon; rows are only appended or popped newest-first."""

    __tablename__ = "capture_history"

    id: Optional[int] = ORMField(default=None, primary_key=True)
    hexagon_pk: int = ORMField(foreign_key="hexagon.id", index=True)
    user_id: int
    strava_id: int
    activity_id: int
    strava_activity_id: int
    captured_at: datetime
    activity_type: str


__all__ = ["CaptureHistoryEntry", "Hexagon", "ROUTE_AREA", "ROUTE_LINE"]
