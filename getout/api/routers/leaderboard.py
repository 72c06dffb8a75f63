"""Leaderboard endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlmodel import Session

from ...core import get_session
from ...models import User
from ...services import leaderboard
from ..deps import get_current_user

router = APIRouter(prefix="/api/leaderboard", tags=["leaderboard"])


@router.get("/global")
def global_leaderboard(
    limit: int = 100,
    session: Session = Depends(get_session),
):
    """Cached global ranking by hexagons held."""

    return leaderboard.get_global_leaderboard(session)[:limit]


@router.get("/cache")
def leaderboard_cache(session: Session = Depends(get_session)):
    return leaderboard.cache_to_dict(leaderboard.get_leaderboard_cache(session))


@router.get("/me/rank")
def my_rank(user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    entry = leaderboard.my_global_rank(session, user.id)
    return {"rank": entry["rank"] if entry else None, "entry": entry}


__all__ = ["router"]
