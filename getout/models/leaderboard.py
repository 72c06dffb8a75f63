"""Database model for the cached global leaderboard."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field as ORMField, SQLModel

from ..core.time import utcnow


class LeaderboardCache(SQLModel, table=True):
    """Precomputed ranking; one row per leaderboard type."""

    __tablename__ = "leaderboard_cache"

    id: Optional[int] = ORMField(default=None, primary_key=True)
    type: str = ORMField(index=True, unique=True)
    entries_json: str = "[]"
    last_updated: datetime = ORMField(default_factory=utcnow)
    next_update: datetime = ORMField(default_factory=utcnow)


__all__ = ["LeaderboardCache"]
