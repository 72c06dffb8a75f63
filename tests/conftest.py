"""Shared test fixtures."""

from __future__ import annotations

import os
import time
from collections.abc import AsyncGenerator, Iterator
from datetime import datetime, timedelta, timezone

# Configuration is read at import time, so it has to exist before the app is imported.
os.environ.setdefault("STRAVA_CLIENT_ID", "12345")
os.environ.setdefault("STRAVA_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("STRAVA_REDIRECT_URI", "http://localhost:5173/callback")
os.environ.setdefault("STRAVA_WEBHOOK_VERIFY_TOKEN", "test-verify-token")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-with-enough-length-for-hs256")
os.environ.setdefault("ENCRYPTION_KEY", "0123456789abcdef" * 4)
os.environ.setdefault("FRONTEND_ORIGIN", "http://localhost:5173")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import polyline
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from getout.app import create_app
from getout.core import get_session
from getout.core.security import create_access_token, encrypt
from getout.models import Activity, User
from getout.services import hexindex, strava

# Central Stockholm; every test cell is generated around here.
BASE_LAT = 59.3293
BASE_LNG = 18.0686


def cells_along(count: int, lat: float = BASE_LAT, lng: float = BASE_LNG) -> list[str]:
    """``count`` distinct resolution-10 cells walking east from (lat, lng)."""

    cells: list[str] = []
    step = 0
    while len(cells) < count:
        cell = hexindex.cell_for(lat, lng + step * 0.0005)
        if cell not in cells:
            cells.append(cell)
        step += 1
    return cells


def make_user(
    session: Session, strava_id: int, *, is_admin: bool = False, firstname: str = "Runner"
) -> User:
    user = User(
        strava_id=strava_id,
        access_token=encrypt(f"access-{strava_id}"),
        refresh_token=encrypt(f"refresh-{strava_id}"),
        token_expires_at=int(time.time()) + 6 * 3600,
        is_admin=is_admin,
        firstname=firstname,
        lastname="Test",
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def make_activity(
    session: Session,
    user: User,
    strava_activity_id: int,
    *,
    start_date: datetime | None = None,
    distance: float = 5000.0,
) -> Activity:
    start = start_date or datetime(2025, 6, 1, 7, 0, tzinfo=timezone.utc)
    activity = Activity(
        strava_activity_id=strava_activity_id,
        user_id=user.id,
        name=f"Run {strava_activity_id}",
        type="Run",
        sport_type="Run",
        start_date=start,
        start_date_local=start,
        distance=distance,
    )
    session.add(activity)
    session.commit()
    session.refresh(activity)
    return activity


def strava_payload(
    activity_id: int,
    coords: list[tuple[float, float]] | None,
    *,
    start: str = "2025-06-01T07:00:00Z",
    type_: str = "Run",
    sport_type: str = "Run",
) -> dict:
    """Activity detail as returned by ``GET /activities/{id}``."""

    return {
        "id": activity_id,
        "name": "Morning Run",
        "type": type_,
        "sport_type": sport_type,
        "start_date": start,
        "start_date_local": start,
        "timezone": "(GMT+01:00) Europe/Stockholm",
        "moving_time": 1800,
        "elapsed_time": 1900,
        "distance": 5000.0,
        "total_elevation_gain": 20.0,
        "average_speed": 2.8,
        "start_latlng": list(coords[0]) if coords else [],
        "end_latlng": list(coords[-1]) if coords else [],
        "map": {"summary_polyline": polyline.encode(coords) if coords else None},
        "manual": False,
        "private": False,
    }


def stub_strava(monkeypatch, payloads: dict[int, dict]) -> None:
    """Serve activity details from ``payloads`` instead of the Strava API."""

    async def fake_fetch(activity_id, access_token):
        return payloads[int(activity_id)]

    monkeypatch.setattr(strava, "fetch_activity", fake_fetch)


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.strava_id, user.is_admin)}"}


def later(activity: Activity, hours: int = 1) -> datetime:
    start = activity.start_date
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    return start + timedelta(hours=hours)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine) -> Iterator[Session]:
    with Session(engine) as session:
        yield session


@pytest_asyncio.fixture
async def client(engine) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against the app with the test database wired in."""

    app = create_app(run_refresher=False)

    def _session() -> Iterator[Session]:
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = _session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
