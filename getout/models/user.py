"""Database model for Strava-linked players."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field as ORMField, SQLModel

from ..core.time import utcnow


class User(SQLModel, table=True):
    """Player identified by their Strava athlete id.

    Access and refresh tokens are stored encrypted; use
    ``getout.services.strava`` to read or rotate them.
    """

    id: Optional[int] = ORMField(default=None, primary_key=True)
    strava_id: int = ORMField(index=True, unique=True)
    access_token: str
    refresh_token: str
    token_expires_at: int
    scope: Optional[str] = None
    is_admin: bool = False
    email: Optional[str] = None

    firstname: str = ""
    lastname: str = ""
    username: Optional[str] = None
    profile_image_url: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    sex: Optional[str] = None

    last_hex: Optional[str] = None
    created_at: datetime = ORMField(default_factory=utcnow)
    updated_at: datetime = ORMField(default_factory=utcnow)


__all__ = ["User"]
