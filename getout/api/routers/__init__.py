"""Aggregate API routers."""

from fastapi import APIRouter

from .activities import router as activities_router
from .hexagons import router as hexagons_router
from .leaderboard import router as leaderboard_router
from .notifications import router as notifications_router
from .strava import router as strava_router
from .system import router as system_router
from .users import router as users_router

ALL_ROUTERS: tuple[APIRouter, ...] = (
    system_router,
    strava_router,
    users_router,
    activities_router,
    hexagons_router,
    leaderboard_router,
    notifications_router,
)

__all__ = ["ALL_ROUTERS"]
