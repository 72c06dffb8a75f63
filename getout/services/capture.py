"""Hexagon ownership ledger.

Every ownership write is a compare-and-swap on ``Hexagon.version``: the row
is updated only if its version still matches the copy the decision was made
on. A lost race reloads the row and decides again, so a capture never
overwrites an owner it did not see. The previous owner is appended to the
capture history in the same transaction as the ownership change.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

import polyline
import structlog
from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..core import as_utc, parse_strava_datetime, utcnow
from ..errors import ForbiddenError, MissingRouteError, NotFoundError, UnsupportedActivityError
from ..models import Activity, CaptureHistoryEntry, Hexagon, User
from ..models.activity import SOURCE_API
from . import hexindex, notifications, strava

logger = structlog.get_logger(__name__)

MAX_CAPTURE_ATTEMPTS = 3
_LOOKUP_CHUNK = 500

CREATED = "created"
TRANSFERRED = "transferred"
OWN = "own"
STALE = "stale"
CONFLICTED = "conflicted"


@dataclass
class CaptureResult:
    created: List[str] = field(default_factory=list)
    transferred: List[str] = field(default_factory=list)
    own: List[str] = field(default_factory=list)
    stale: List[str] = field(default_factory=list)
    conflicted: List[str] = field(default_factory=list)
    invalid: List[str] = field(default_factory=list)
    # previous owner id -> number of cells taken from them
    affected_users: Counter = field(default_factory=Counter)
    hexagons: List[Hexagon] = field(default_factory=list)

    @property
    def stolen_count(self) -> int:
        return sum(self.affected_users.values())

    def summary(self) -> Dict[str, Any]:
        return {
            "created": len(self.created),
            "transferred": len(self.transferred),
            "own": len(self.own),
            "stale": len(self.stale),
            "conflicted": len(self.conflicted),
            "invalid": len(self.invalid),
            "details": {
                "created": self.created,
                "transferred": self.transferred,
                "skipped": [*self.own, *self.stale, *self.conflicted],
            },
        }


@dataclass
class ProcessResult:
    activity: Activity
    was_created: bool
    route_type: str
    hexagon_ids: List[str]
    capture: CaptureResult


@dataclass
class RestoreResult:
    restored: int = 0
    deleted: int = 0


def load_hexagons(session: Session, hexagon_ids: Sequence[str]) -> Dict[str, Hexagon]:
    found: Dict[str, Hexagon] = {}
    for start in range(0, len(hexagon_ids), _LOOKUP_CHUNK):
        chunk = hexagon_ids[start : start + _LOOKUP_CHUNK]
        for hexagon in session.exec(select(Hexagon).where(Hexagon.hexagon_id.in_(chunk))):
            found[hexagon.hexagon_id] = hexagon
    return found


def _reload(session: Session, hexagon_id: str) -> Optional[Hexagon]:
    return session.exec(
        select(Hexagon)
        .where(Hexagon.hexagon_id == hexagon_id)
        .execution_options(populate_existing=True)
    ).first()


def _cas_update(session: Session, hexagon: Hexagon, **values: Any) -> bool:
    """Apply ``values`` only if the row still carries ``hexagon.version``."""

    result = session.execute(
        update(Hexagon)
        .where(Hexagon.id == hexagon.id, Hexagon.version == hexagon.version)
        .values(version=Hexagon.version + 1, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _insert(
    session: Session,
    hexagon_id: str,
    user: User,
    activity: Activity,
    route_type: Optional[str],
) -> Optional[Hexagon]:
    """Create a first capture; None if another writer inserted the cell first."""

    hexagon = Hexagon(
        hexagon_id=hexagon_id,
        parent_hexagon_id=hexindex.parent_of(hexagon_id),
        current_owner_id=user.id,
        current_owner_strava_id=user.strava_id,
        current_activity_id=activity.id,
        current_strava_activity_id=activity.strava_activity_id,
        capture_count=1,
        first_captured_at=activity.start_date,
        first_captured_by=user.id,
        last_captured_at=activity.start_date,
        activity_type=activity.capture_type,
        route_type=route_type,
    )
    try:
        with session.begin_nested():
            session.add(hexagon)
            session.flush()
    except IntegrityError:
        return None
    return hexagon


def _transfer(
    session: Session,
    hexagon: Hexagon,
    user: User,
    activity: Activity,
    route_type: Optional[str],
) -> bool:
    entry = CaptureHistoryEntry(
        hexagon_pk=hexagon.id,
        user_id=hexagon.current_owner_id,
        strava_id=hexagon.current_owner_strava_id,
        activity_id=hexagon.current_activity_id,
        strava_activity_id=hexagon.current_strava_activity_id,
        captured_at=hexagon.last_captured_at,
        activity_type=hexagon.activity_type,
    )
    swapped = _cas_update(
        session,
        hexagon,
        current_owner_id=user.id,
        current_owner_strava_id=user.strava_id,
        current_activity_id=activity.id,
        current_strava_activity_id=activity.strava_activity_id,
        capture_count=Hexagon.capture_count + 1,
        last_captured_at=activity.start_date,
        last_previous_owner_id=hexagon.current_owner_id,
        activity_type=activity.capture_type,
        route_type=route_type if route_type else hexagon.route_type,
    )
    if not swapped:
        return False
    session.add(entry)
    session.flush()
    return True


def _refresh_own(
    session: Session,
    hexagon: Hexagon,
    activity: Activity,
    route_type: Optional[str],
) -> bool:
    """Point an already-owned cell at the owner's newer activity; no history, no count."""

    return _cas_update(
        session,
        hexagon,
        current_activity_id=activity.id,
        current_strava_activity_id=activity.strava_activity_id,
        last_captured_at=activity.start_date,
        activity_type=activity.capture_type,
        route_type=route_type if route_type else hexagon.route_type,
    )


def _capture_one(
    session: Session,
    hexagon_id: str,
    hexagon: Optional[Hexagon],
    *,
    user: User,
    activity: Activity,
    route_type: Optional[str],
    chronological: bool,
    result: CaptureResult,
) -> str:
    for _ in range(MAX_CAPTURE_ATTEMPTS):
        if hexagon is None:
            hexagon = _insert(session, hexagon_id, user, activity, route_type)
            if hexagon is not None:
                result.hexagons.append(hexagon)
                return CREATED
            hexagon = _reload(session, hexagon_id)
            continue

        if hexagon.current_owner_id == user.id:
            if chronological and as_utc(hexagon.last_captured_at) < as_utc(activity.start_date):
                if not _refresh_own(session, hexagon, activity, route_type):
                    hexagon = _reload(session, hexagon_id)
                    continue
                session.refresh(hexagon)
            result.hexagons.append(hexagon)
            return OWN
        if chronological and as_utc(hexagon.last_captured_at) >= as_utc(activity.start_date):
            return STALE

        previous_owner = hexagon.current_owner_id
        if _transfer(session, hexagon, user, activity, route_type):
            session.refresh(hexagon)
            result.affected_users[previous_owner] += 1
            result.hexagons.append(hexagon)
            return TRANSFERRED
        hexagon = _reload(session, hexagon_id)

    return CONFLICTED


def capture_hexagons(
    session: Session,
    *,
    user: User,
    activity: Activity,
    hexagon_ids: Iterable[str],
    route_type: Optional[str] = None,
    chronological: bool = False,
    commit: bool = True,
) -> CaptureResult:
    """Claim every listed cell for ``user`` on behalf of ``activity``.

    Cells owned by others are taken over and their previous owner is appended
    to the history. With ``chronological`` set, a cell last captured at or
    after the activity's start is left with its current owner, and a cell the
    user already owns through an older activity is pointed at this one.
    Otherwise cells the user already owns are left untouched.
    """

    result = CaptureResult()
    candidates: List[str] = []
    seen = set()
    for hexagon_id in hexagon_ids:
        if hexagon_id in seen:
            continue
        seen.add(hexagon_id)
        if hexindex.is_valid_cell(hexagon_id):
            candidates.append(hexagon_id)
        else:
            result.invalid.append(hexagon_id)

    existing = load_hexagons(session, candidates)
    buckets = {
        CREATED: result.created,
        TRANSFERRED: result.transferred,
        OWN: result.own,
        STALE: result.stale,
        CONFLICTED: result.conflicted,
    }
    for hexagon_id in candidates:
        outcome = _capture_one(
            session,
            hexagon_id,
            existing.get(hexagon_id),
            user=user,
            activity=activity,
            route_type=route_type,
            chronological=chronological,
            result=result,
        )
        buckets[outcome].append(hexagon_id)

    if commit:
        session.commit()

    if result.conflicted:
        logger.warning(
            "hexagon_capture_conflicts",
            user_id=user.id,
            activity_id=activity.id,
            conflicted=len(result.conflicted),
        )
    logger.info(
        "hexagons_captured",
        user_id=user.id,
        activity_id=activity.id,
        created=len(result.created),
        transferred=len(result.transferred),
        own=len(result.own),
        stale=len(result.stale),
    )
    return result


def _apply_strava_fields(activity: Activity, data: Dict[str, Any]) -> None:
    start_latlng = data.get("start_latlng") or None
    end_latlng = data.get("end_latlng") or None
    activity.name = data.get("name") or f"Activity {data['id']}"
    activity.type = data.get("type") or "Run"
    activity.sport_type = data.get("sport_type")
    activity.description = data.get("description")
    activity.start_date = parse_strava_datetime(data["start_date"])
    activity.start_date_local = parse_strava_datetime(
        data.get("start_date_local") or data["start_date"]
    )
    activity.timezone = data.get("timezone")
    activity.moving_time = int(data.get("moving_time") or 0)
    activity.elapsed_time = int(data.get("elapsed_time") or 0)
    activity.distance = float(data.get("distance") or 0.0)
    activity.elevation_gain = float(data.get("total_elevation_gain") or 0.0)
    activity.average_speed = float(data.get("average_speed") or 0.0)
    activity.start_lat, activity.start_lng = start_latlng if start_latlng else (None, None)
    activity.end_lat, activity.end_lng = end_latlng if end_latlng else (None, None)
    activity.summary_polyline = (data.get("map") or {}).get("summary_polyline")
    activity.is_manual = bool(data.get("manual", False))
    activity.is_private = bool(data.get("private", False))


def upsert_activity(
    session: Session, data: Dict[str, Any], user: User, source: str
) -> tuple[Activity, bool]:
    """Create or refresh the local copy of a Strava activity (not committed)."""

    strava_activity_id = int(data["id"])
    activity = session.exec(
        select(Activity).where(Activity.strava_activity_id == strava_activity_id)
    ).first()
    created = activity is None
    if activity is None:
        activity = Activity(
            strava_activity_id=strava_activity_id,
            user_id=user.id,
            name="",
            type="",
            start_date=utcnow(),
            start_date_local=utcnow(),
        )
    activity.user_id = user.id
    activity.source = source
    _apply_strava_fields(activity, data)
    activity.updated_at = utcnow()
    session.add(activity)
    session.flush()
    return activity, created


async def process_activity(
    session: Session,
    *,
    strava_activity_id: int,
    user: User,
    source: str = SOURCE_API,
) -> ProcessResult:
    """Sync one Strava run and capture every cell along its route."""

    log = logger.bind(strava_activity_id=strava_activity_id, user_id=user.id)
    access_token = await strava.ensure_valid_token(session, user)
    data = await strava.fetch_activity(strava_activity_id, access_token)

    if not strava.is_running_activity(data):
        raise UnsupportedActivityError(
            f'Only running activities are allowed. Activity type "{data.get("type")}" '
            f'(sport type: "{data.get("sport_type")}") is not supported. '
            "Only Run, TrailRun, and VirtualRun activities can be processed."
        )
    encoded = (data.get("map") or {}).get("summary_polyline")
    if not encoded:
        raise MissingRouteError("Activity has no GPS data (summary_polyline missing)")

    route = hexindex.analyze_route(polyline.decode(encoded))

    try:
        activity, was_created = upsert_activity(session, data, user, source)
        capture = capture_hexagons(
            session,
            user=user,
            activity=activity,
            hexagon_ids=route.hexagons,
            route_type=route.route_type,
            chronological=True,
            commit=False,
        )
        if route.hexagons:
            last_hex = hexindex.parent_of(route.hexagons[0])
            user.last_hex = last_hex
            activity.last_hex = last_hex
            session.add(user)
            session.add(activity)
        session.commit()
    except Exception:
        session.rollback()
        log.exception("activity_processing_failed")
        raise

    session.refresh(activity)
    _notify(session, user=user, activity=activity, capture=capture)
    log.info(
        "activity_processed",
        route_type=route.route_type,
        cells=len(route.hexagons),
        created=len(capture.created),
        transferred=len(capture.transferred),
    )
    return ProcessResult(
        activity=activity,
        was_created=was_created,
        route_type=route.route_type,
        hexagon_ids=route.hexagons,
        capture=capture,
    )


def _notify(session: Session, *, user: User, activity: Activity, capture: CaptureResult) -> None:
    """Notify the runner and everyone they robbed; failures never fail the capture."""

    try:
        notifications.create_activity_notification(
            session,
            user_id=user.id,
            activity_id=activity.id,
            new_hex_count=len(capture.created),
            stolen_count=capture.stolen_count,
        )
    except Exception:
        session.rollback()
        logger.exception("activity_notification_failed", activity_id=activity.id)

    thief_name = user.firstname or user.username or "Someone"
    for affected_user_id, count in capture.affected_users.items():
        try:
            notifications.create_stolen_notification(
                session,
                affected_user_id=affected_user_id,
                thief_id=user.id,
                thief_name=thief_name,
                stolen_count=count,
                activity_id=activity.id,
            )
        except Exception:
            session.rollback()
            logger.exception("stolen_notification_failed", affected_user_id=affected_user_id)


def _newest_history(session: Session, hexagon: Hexagon, skip: int = 0) -> Optional[CaptureHistoryEntry]:
    return session.exec(
        select(CaptureHistoryEntry)
        .where(CaptureHistoryEntry.hexagon_pk == hexagon.id)
        .order_by(CaptureHistoryEntry.id.desc())
        .offset(skip)
        .limit(1)
    ).first()


def _restore_one(session: Session, hexagon: Hexagon, activity_id: int) -> Optional[str]:
    for _ in range(MAX_CAPTURE_ATTEMPTS):
        if hexagon is None or hexagon.current_activity_id != activity_id:
            return None
        previous = _newest_history(session, hexagon)
        if previous is None:
            session.delete(hexagon)
            session.flush()
            return "deleted"
        before_previous = _newest_history(session, hexagon, skip=1)
        swapped = _cas_update(
            session,
            hexagon,
            current_owner_id=previous.user_id,
            current_owner_strava_id=previous.strava_id,
            current_activity_id=previous.activity_id,
            current_strava_activity_id=previous.strava_activity_id,
            last_captured_at=previous.captured_at,
            activity_type=previous.activity_type,
            capture_count=Hexagon.capture_count - 1,
            last_previous_owner_id=before_previous.user_id if before_previous else None,
        )
        if swapped:
            session.delete(previous)
            session.flush()
            session.refresh(hexagon)
            return "restored"
        hexagon = _reload(session, hexagon.hexagon_id)
    return None


def delete_activity_and_restore(
    session: Session, *, strava_activity_id: int, user: User
) -> RestoreResult:
    """Remove an activity and hand its cells back to their previous owners."""

    activity = session.exec(
        select(Activity).where(Activity.strava_activity_id == int(strava_activity_id))
    ).first()
    if not activity:
        raise NotFoundError("Activity not found in database")
    if activity.user_id != user.id and not user.is_admin:
        raise ForbiddenError("You can only delete your own activities")

    outcome = RestoreResult()
    try:
        held = session.exec(
            select(Hexagon).where(Hexagon.current_activity_id == activity.id)
        ).all()
        for hexagon in held:
            status = _restore_one(session, hexagon, activity.id)
            if status == "restored":
                outcome.restored += 1
            elif status == "deleted":
                outcome.deleted += 1
        session.delete(activity)
        session.commit()
    except Exception:
        session.rollback()
        logger.exception("activity_delete_failed", strava_activity_id=strava_activity_id)
        raise

    logger.info(
        "activity_deleted",
        strava_activity_id=strava_activity_id,
        restored=outcome.restored,
        deleted=outcome.deleted,
    )
    return outcome


def delete_hexagon(session: Session, hexagon_id: str) -> bool:
    hexagon = session.exec(select(Hexagon).where(Hexagon.hexagon_id == hexagon_id)).first()
    if not hexagon:
        return False
    session.execute(delete(CaptureHistoryEntry).where(CaptureHistoryEntry.hexagon_pk == hexagon.id))
    session.delete(hexagon)
    session.commit()
    return True


__all__ = [
    "CONFLICTED",
    "CREATED",
    "CaptureResult",
    "MAX_CAPTURE_ATTEMPTS",
    "OWN",
    "ProcessResult",
    "RestoreResult",
    "STALE",
    "TRANSFERRED",
    "capture_hexagons",
    "delete_activity_and_restore",
    "delete_hexagon",
    "load_hexagons",
    "process_activity",
    "upsert_activity",
]
