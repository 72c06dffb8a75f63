"""Global and regional rankings plus per-user battle statistics."""

from __future__ import annotations

import asyncio
import json
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy.engine import Engine
from sqlmodel import Session, func, select

from ..core import LEADERBOARD_REFRESH_SECONDS, NOTIFICATION_TTL_DAYS, isoformat_z, utcnow
from ..models import Activity, Hexagon, LeaderboardCache, User
from . import notifications

logger = structlog.get_logger(__name__)

GLOBAL = "global"
CACHE_TTL = timedelta(hours=1)

_refresh_lock = asyncio.Lock()


def _user_label(user: User) -> str:
    return user.username or f"{user.firstname} {user.lastname}".strip()


def compute_global_entries(session: Session) -> List[Dict[str, Any]]:
    """Rank every owner by the number of hexagons they currently hold."""

    counts = session.exec(
        select(Hexagon.current_owner_id, func.count(Hexagon.id))
        .group_by(Hexagon.current_owner_id)
        .order_by(func.count(Hexagon.id).desc(), Hexagon.current_owner_id.asc())
    ).all()
    if not counts:
        return []

    owner_ids = [owner_id for owner_id, _ in counts]
    users = {
        user.id: user for user in session.exec(select(User).where(User.id.in_(owner_ids)))
    }
    activity_stats = {
        user_id: (activity_count, total_distance or 0.0)
        for user_id, activity_count, total_distance in session.exec(
            select(Activity.user_id, func.count(Activity.id), func.sum(Activity.distance))
            .where(Activity.user_id.in_(owner_ids))
            .group_by(Activity.user_id)
        ).all()
    }

    entries: List[Dict[str, Any]] = []
    for owner_id, hexagon_count in counts:
        user = users.get(owner_id)
        if user is None:
            continue
        activity_count, total_distance = activity_stats.get(owner_id, (0, 0.0))
        entries.append(
            {
                "rank": len(entries) + 1,
                "user_id": user.id,
                "strava_id": user.strava_id,
                "username": _user_label(user),
                "profile_image_url": user.profile_image_url,
                "hexagon_count": hexagon_count,
                "activity_count": activity_count,
                "total_distance": float(total_distance),
            }
        )
    return entries


def update_global_leaderboard(session: Session) -> LeaderboardCache:
    started = utcnow()
    entries = compute_global_entries(session)

    cache = session.exec(select(LeaderboardCache).where(LeaderboardCache.type == GLOBAL)).first()
    if cache is None:
        cache = LeaderboardCache(type=GLOBAL)
    now = utcnow()
    cache.entries_json = json.dumps(entries)
    cache.last_updated = now
    cache.next_update = now + CACHE_TTL
    session.add(cache)
    session.commit()
    session.refresh(cache)

    logger.info(
        "leaderboard_updated",
        entries=len(entries),
        duration_ms=int((utcnow() - started).total_seconds() * 1000),
        next_update=isoformat_z(cache.next_update),
    )
    return cache


def get_leaderboard_cache(session: Session) -> LeaderboardCache:
    cache = session.exec(select(LeaderboardCache).where(LeaderboardCache.type == GLOBAL)).first()
    if cache is None:
        logger.info("leaderboard_cache_missing")
        cache = update_global_leaderboard(session)
    return cache


def get_global_leaderboard(session: Session) -> List[Dict[str, Any]]:
    return json.loads(get_leaderboard_cache(session).entries_json)


def cache_to_dict(cache: LeaderboardCache) -> Dict[str, Any]:
    return {
        "type": cache.type,
        "entries": json.loads(cache.entries_json),
        "last_updated": isoformat_z(cache.last_updated),
        "next_update": isoformat_z(cache.next_update),
    }


def my_global_rank(session: Session, user_id: int) -> Optional[Dict[str, Any]]:
    for entry in get_global_leaderboard(session):
        if entry["user_id"] == user_id:
            return entry
    return None


def _regional(session: Session, column, parent_ids: Iterable[str], limit: int) -> List[Dict[str, Any]]:
    parents = list(set(parent_ids))
    if not parents:
        return []
    rows = session.exec(
        select(column, func.count(Hexagon.id))
        .where(Hexagon.parent_hexagon_id.in_(parents))
        .group_by(column)
        .order_by(func.count(Hexagon.id).desc(), column.asc())
        .limit(limit)
    ).all()
    results: List[Dict[str, Any]] = []
    for user_id, hex_count in rows:
        user = session.get(User, user_id)
        # owners may have deleted their account
        if user is None:
            continue
        results.append(
            {
                "user": {
                    "id": user.id,
                    "strava_id": user.strava_id,
                    "username": _user_label(user),
                    "profile_image_url": user.profile_image_url,
                },
                "hex_count": hex_count,
            }
        )
    return results


def regional_active_leaders(
    session: Session, parent_ids: Iterable[str], limit: int = 10
) -> List[Dict[str, Any]]:
    """Current owners ranked by hexagons held inside the given parent cells."""

    return _regional(session, Hexagon.current_owner_id, parent_ids, limit)


def regional_og_discoverers(
    session: Session, parent_ids: Iterable[str], limit: int = 10
) -> List[Dict[str, Any]]:
    """First discoverers ranked by hexagons found inside the given parent cells."""

    return _regional(session, Hexagon.first_captured_by, parent_ids, limit)


def _count(session: Session, *conditions) -> int:
    return session.exec(select(func.count(Hexagon.id)).where(*conditions)).one()


def user_battle_stats(session: Session, user_id: int) -> Dict[str, int]:
    owned = Hexagon.current_owner_id == user_id
    return {
        "og_hexagons": _count(session, owned, Hexagon.first_captured_by == user_id),
        "conquered_hexagons": _count(session, owned, Hexagon.first_captured_by != user_id),
        "clean_territory": _count(session, owned, Hexagon.capture_count == 1),
        "total_hexagons": _count(session, owned),
    }


def _record(hexagon: Optional[Hexagon]) -> Optional[Dict[str, Any]]:
    if hexagon is None:
        return None
    return {
        "hexagon_id": hexagon.hexagon_id,
        "capture_count": hexagon.capture_count,
        "last_captured_at": isoformat_z(hexagon.last_captured_at),
    }


def user_record_stats(session: Session, user_id: int) -> Dict[str, Any]:
    owned = select(Hexagon).where(Hexagon.current_owner_id == user_id)
    most_contested = session.exec(
        owned.order_by(Hexagon.capture_count.desc(), Hexagon.id.asc())
    ).first()
    longest_held = session.exec(
        owned.order_by(Hexagon.last_captured_at.asc(), Hexagon.id.asc())
    ).first()
    return {"most_contested": _record(most_contested), "longest_held": _record(longest_held)}


def versus_stats(session: Session, user_id_1: int, user_id_2: int) -> Dict[str, int]:
    """Direct steals between two users, judged by each cell's immediate previous owner."""

    return {
        "user1_stolen_from_user2": _count(
            session,
            Hexagon.current_owner_id == user_id_1,
            Hexagon.last_previous_owner_id == user_id_2,
        ),
        "user2_stolen_from_user1": _count(
            session,
            Hexagon.current_owner_id == user_id_2,
            Hexagon.last_previous_owner_id == user_id_1,
        ),
    }


def _refresh_once(engine: Engine) -> None:
    with Session(engine) as session:
        update_global_leaderboard(session)
        purged = notifications.purge_expired(session, NOTIFICATION_TTL_DAYS)
        if purged:
            logger.info("notifications_purged", count=purged)


async def refresh(engine: Engine) -> None:
    """Rebuild the cache; concurrent callers wait for the running refresh."""

    async with _refresh_lock:
        await asyncio.to_thread(_refresh_once, engine)


async def run_refresher(engine: Engine, interval: float = LEADERBOARD_REFRESH_SECONDS) -> None:
    """Refresh immediately, then every ``interval`` seconds until cancelled."""

    logger.info("leaderboard_refresher_started", interval=interval)
    while True:
        try:
            await refresh(engine)
        except Exception:
            logger.exception("leaderboard_refresh_failed")
        await asyncio.sleep(interval)


__all__ = [
    "GLOBAL",
    "cache_to_dict",
    "compute_global_entries",
    "get_global_leaderboard",
    "get_leaderboard_cache",
    "my_global_rank",
    "refresh",
    "regional_active_leaders",
    "regional_og_discoverers",
    "run_refresher",
    "update_global_leaderboard",
    "user_battle_stats",
    "user_record_stats",
    "versus_stats",
]
