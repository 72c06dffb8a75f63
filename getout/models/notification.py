"""Database model for in-app notifications."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field as ORMField, SQLModel

from ..core.time import utcnow

POSITIVE = "positive"
NEGATIVE = "negative"
NEUTRAL = "neutral"
NOTIFICATION_TYPES = (POSITIVE, NEGATIVE, NEUTRAL)


class Notification(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    owner_id: int = ORMField(index=True)
    triggered_by_id: Optional[int] = ORMField(default=None, index=True)
    type: str
    message: str
    related_activity_id: Optional[int] = None
    read: bool = ORMField(default=False, index=True)
    created_at: datetime = ORMField(default_factory=utcnow, index=True)


__all__ = ["NEGATIVE", "NEUTRAL", "NOTIFICATION_TYPES", "Notification", "POSITIVE"]
