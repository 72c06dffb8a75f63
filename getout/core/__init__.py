"""Core configuration and infrastructure helpers."""

from .config import (
    ALLOWED_CORS_ORIGINS,
    BACKEND_URL,
    DB_RESET,
    FRONTEND_ORIGIN,
    FRONTEND_ORIGINS,
    LEADERBOARD_REFRESH_SECONDS,
    LOG_FORMAT,
    LOG_LEVEL,
    MAPBOX_TOKEN,
    NOTIFICATION_TTL_DAYS,
    STRAVA_CLIENT_ID,
    STRAVA_CLIENT_SECRET,
    STRAVA_REDIRECT_URI,
    STRAVA_WEBHOOK_VERIFY_TOKEN,
)
from .database import engine, get_session
from .time import as_utc, isoformat_z, parse_strava_datetime, utcnow

__all__ = [
    "ALLOWED_CORS_ORIGINS",
    "BACKEND_URL",
    "DB_RESET",
    "FRONTEND_ORIGIN",
    "FRONTEND_ORIGINS",
    "LEADERBOARD_REFRESH_SECONDS",
    "LOG_FORMAT",
    "LOG_LEVEL",
    "MAPBOX_TOKEN",
    "NOTIFICATION_TTL_DAYS",
    "STRAVA_CLIENT_ID",
    "STRAVA_CLIENT_SECRET",
    "STRAVA_REDIRECT_URI",
    "STRAVA_WEBHOOK_VERIFY_TOKEN",
    "as_utc",
    "engine",
    "get_session",
    "isoformat_z",
    "parse_strava_datetime",
    "utcnow",
]
