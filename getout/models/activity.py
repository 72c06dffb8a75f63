"""Database model for synced Strava activities."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field as ORMField, SQLModel

from ..core.time import utcnow

SOURCE_WEBHOOK = "webhook"
SOURCE_API = "api"


class Activity(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    strava_activity_id: int = ORMField(index=True, unique=True)
    user_id: int = ORMField(foreign_key="user.id", index=True)
    source: str = SOURCE_API

    name: str
    type: str
    sport_type: Optional[str] = None
    description: Optional[str] = None

    start_date: datetime = ORMField(index=True)
    start_date_local: datetime
    timezone: Optional[str] = None
    moving_time: int = 0
    elapsed_time: int = 0

    distance: float = 0.0
    elevation_gain: float = 0.0
    average_speed: float = 0.0

    start_lat: Optional[float] = None
    start_lng: Optional[float] = None
    end_lat: Optional[float] = None
    end_lng: Optional[float] = None

    summary_polyline: Optional[str] = None
    is_manual: bool = False
    is_private: bool = False
    last_hex: Optional[str] = None

    created_at: datetime = ORMField(default_factory=utcnow)
    updated_at: datetime = ORMField(default_factory=utcnow)

    @property
    def capture_type(self) -> str:
        """Activity type recorded on captured hexagons."""
        return self.sport_type or self.type


__all__ = ["Activity", "SOURCE_API", "SOURCE_WEBHOOK"]
