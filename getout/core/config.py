"""Application settings and environment helpers."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, List

from dotenv import load_dotenv

load_dotenv(override=False)


def _require_env(name: str) -> str:
    """Return a required environment variable or raise an error."""

    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer") from exc


def _split_csv(raw: str | None) -> List[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def _unique(values: Iterable[str]) -> List[str]:
    seen = set()
    ordered: List[str] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


# Strava OAuth configuration -------------------------------------------------
_STRAVA_CLIENT_ID_RAW = _require_env("STRAVA_CLIENT_ID")
try:
    STRAVA_CLIENT_ID = int(_STRAVA_CLIENT_ID_RAW)
except ValueError as exc:  # pragma: no cover
    raise RuntimeError("STRAVA_CLIENT_ID must be an integer") from exc

STRAVA_CLIENT_SECRET = _require_env("STRAVA_CLIENT_SECRET")
STRAVA_REDIRECT_URI = _require_env("STRAVA_REDIRECT_URI")
STRAVA_WEBHOOK_VERIFY_TOKEN = _require_env("STRAVA_WEBHOOK_VERIFY_TOKEN")


# Application security -------------------------------------------------------
JWT_SECRET = _require_env("JWT_SECRET")
JWT_EXPIRES_DAYS = _env_int("JWT_EXPIRES_DAYS", 7)

ENCRYPTION_KEY = _require_env("ENCRYPTION_KEY")
if len(ENCRYPTION_KEY) != 64:
    raise RuntimeError("ENCRYPTION_KEY must be exactly 64 hex characters (32 bytes)")

# FRONTEND_ORIGIN can contain a comma-separated list for multi-domain deploys.
_frontend_origins = _split_csv(_require_env("FRONTEND_ORIGIN"))
_additional_origins = _split_csv(os.getenv("ADDITIONAL_ALLOWED_ORIGINS"))

_local_dev_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

ALLOWED_CORS_ORIGINS = _unique(
    [
        *_frontend_origins,
        *_additional_origins,
        *_local_dev_origins,
    ]
)

FRONTEND_ORIGINS = _frontend_origins
FRONTEND_ORIGIN = FRONTEND_ORIGINS[0] if FRONTEND_ORIGINS else ""


# Runtime behaviour ----------------------------------------------------------
_PROJECT_ROOT = Path(__file__).resolve().parents[2]
DATA_DIR = Path(os.getenv("DATA_DIR", str(_PROJECT_ROOT / "data")))
DATABASE_URL = os.getenv("DATABASE_URL") or f"sqlite:///{DATA_DIR / 'getout.db'}"
DB_RESET = _env_bool("DB_RESET", False)

MAPBOX_TOKEN = os.getenv("MAPBOX_TOKEN", "")
BACKEND_URL = os.getenv("BACKEND_URL", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "console")

LEADERBOARD_REFRESH_SECONDS = _env_int("LEADERBOARD_REFRESH_SECONDS", 60 * 60)
NOTIFICATION_TTL_DAYS = _env_int("NOTIFICATION_TTL_DAYS", 30)


__all__ = [
    "ALLOWED_CORS_ORIGINS",
    "BACKEND_URL",
    "DATABASE_URL",
    "DATA_DIR",
    "DB_RESET",
    "ENCRYPTION_KEY",
    "FRONTEND_ORIGIN",
    "FRONTEND_ORIGINS",
    "JWT_EXPIRES_DAYS",
    "JWT_SECRET",
    "LEADERBOARD_REFRESH_SECONDS",
    "LOG_FORMAT",
    "LOG_LEVEL",
    "MAPBOX_TOKEN",
    "NOTIFICATION_TTL_DAYS",
    "STRAVA_CLIENT_ID",
    "STRAVA_CLIENT_SECRET",
    "STRAVA_REDIRECT_URI",
    "STRAVA_WEBHOOK_VERIFY_TOKEN",
]
