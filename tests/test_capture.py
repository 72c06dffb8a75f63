"""Tests for the hexagon ownership ledger."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import update
from sqlmodel import select

from getout.errors import ForbiddenError, MissingRouteError, NotFoundError, UnsupportedActivityError
from getout.models import Activity, CaptureHistoryEntry, Hexagon, Notification
from getout.models.activity import SOURCE_WEBHOOK
from getout.models.hexagon import ROUTE_LINE
from getout.services import capture, hexindex

from conftest import (
    BASE_LAT,
    BASE_LNG,
    cells_along,
    later,
    make_activity,
    make_user,
    strava_payload,
    stub_strava,
)


def _hexagon(session, hexagon_id: str) -> Hexagon:
    session.expire_all()
    return session.exec(select(Hexagon).where(Hexagon.hexagon_id == hexagon_id)).one()


def _history(session, hexagon: Hexagon) -> list[CaptureHistoryEntry]:
    return list(
        session.exec(
            select(CaptureHistoryEntry)
            .where(CaptureHistoryEntry.hexagon_pk == hexagon.id)
            .order_by(CaptureHistoryEntry.id)
        ).all()
    )


@pytest.fixture
def alice(session):
    return make_user(session, 1001, firstname="Alice")


@pytest.fixture
def bob(session):
    return make_user(session, 1002, firstname="Bob")


@pytest.fixture
def carol(session):
    return make_user(session, 1003, firstname="Carol")


class TestCaptureHexagons:
    def test_first_capture_creates_hexagons(self, session, alice):
        activity = make_activity(session, alice, 5001)
        cells = cells_along(3)

        result = capture.capture_hexagons(
            session, user=alice, activity=activity, hexagon_ids=cells, route_type=ROUTE_LINE
        )

        assert result.created == cells
        assert result.transferred == [] and result.own == []
        hexagon = _hexagon(session, cells[0])
        assert hexagon.current_owner_id == alice.id
        assert hexagon.current_strava_activity_id == 5001
        assert hexagon.first_captured_by == alice.id
        assert hexagon.capture_count == 1
        assert hexagon.parent_hexagon_id == hexindex.parent_of(cells[0])
        assert hexagon.route_type == ROUTE_LINE
        assert hexagon.activity_type == "Run"
        assert hexagon.version == 1
        assert _history(session, hexagon) == []

    def test_recapture_by_owner_writes_nothing(self, session, alice):
        activity = make_activity(session, alice, 5001)
        cells = cells_along(2)
        capture.capture_hexagons(session, user=alice, activity=activity, hexagon_ids=cells)
        second = make_activity(session, alice, 5002, start_date=later(activity))

        result = capture.capture_hexagons(session, user=alice, activity=second, hexagon_ids=cells)

        assert result.own == cells
        hexagon = _hexagon(session, cells[0])
        assert hexagon.version == 1
        assert hexagon.current_strava_activity_id == 5001

    def test_owner_newer_run_moves_cells_to_that_run(self, session, alice):
        first = make_activity(session, alice, 5001)
        cells = cells_along(3)
        capture.capture_hexagons(session, user=alice, activity=first, hexagon_ids=cells, chronological=True)
        second = make_activity(session, alice, 5002, start_date=later(first))

        result = capture.capture_hexagons(
            session, user=alice, activity=second, hexagon_ids=cells, chronological=True
        )

        assert result.own == cells
        assert result.stolen_count == 0
        hexagon = _hexagon(session, cells[0])
        assert hexagon.current_strava_activity_id == 5002
        assert hexagon.current_activity_id == second.id
        assert hexagon.capture_count == 1
        assert hexagon.version == 2
        assert _history(session, hexagon) == []

        # an older run of the same owner leaves the pointer alone
        capture.capture_hexagons(session, user=alice, activity=first, hexagon_ids=cells, chronological=True)
        assert _hexagon(session, cells[0]).current_strava_activity_id == 5002

        restored = capture.delete_activity_and_restore(session, strava_activity_id=5001, user=alice)
        assert restored.deleted == 0
        assert len(session.exec(select(Hexagon)).all()) == 3

    def test_transfer_appends_previous_owner_to_history(self, session, alice, bob):
        first = make_activity(session, alice, 5001)
        cells = cells_along(3)
        capture.capture_hexagons(session, user=alice, activity=first, hexagon_ids=cells)
        steal = make_activity(session, bob, 6001, start_date=later(first))

        result = capture.capture_hexagons(session, user=bob, activity=steal, hexagon_ids=cells)

        assert result.transferred == cells
        assert result.affected_users == {alice.id: 3}
        assert result.stolen_count == 3
        hexagon = _hexagon(session, cells[1])
        assert hexagon.current_owner_id == bob.id
        assert hexagon.current_strava_activity_id == 6001
        assert hexagon.capture_count == 2
        assert hexagon.last_previous_owner_id == alice.id
        assert hexagon.first_captured_by == alice.id
        assert hexagon.version == 2

        history = _history(session, hexagon)
        assert len(history) == 1
        assert history[0].user_id == alice.id
        assert history[0].strava_activity_id == 5001

    def test_duplicates_and_invalid_ids(self, session, alice):
        activity = make_activity(session, alice, 5001)
        cell = cells_along(1)[0]

        result = capture.capture_hexagons(
            session, user=alice, activity=activity, hexagon_ids=[cell, cell, "bogus"]
        )

        assert result.created == [cell]
        assert result.invalid == ["bogus"]
        assert len(session.exec(select(Hexagon)).all()) == 1

    def test_chronological_keeps_newer_capture(self, session, alice, bob):
        newer = make_activity(
            session, alice, 5001, start_date=datetime(2025, 6, 10, tzinfo=timezone.utc)
        )
        cells = cells_along(2)
        capture.capture_hexagons(session, user=alice, activity=newer, hexagon_ids=cells)
        older = make_activity(
            session, bob, 6001, start_date=datetime(2025, 6, 1, tzinfo=timezone.utc)
        )

        result = capture.capture_hexagons(
            session, user=bob, activity=older, hexagon_ids=cells, chronological=True
        )
        assert result.stale == cells
        assert _hexagon(session, cells[0]).current_owner_id == alice.id

        # explicit captures are not ordered by activity date
        result = capture.capture_hexagons(session, user=bob, activity=older, hexagon_ids=cells)
        assert result.transferred == cells

    def test_lost_race_is_reevaluated_against_the_winner(self, session, alice, bob, carol, monkeypatch):
        first = make_activity(session, alice, 5001)
        cell = cells_along(1)[0]
        capture.capture_hexagons(session, user=alice, activity=first, hexagon_ids=[cell])
        carol_run = make_activity(session, carol, 7001, start_date=later(first))
        bob_run = make_activity(session, bob, 6001, start_date=later(first, hours=2))

        real_cas = capture._cas_update
        raced = []

        def racing_cas(sess, hexagon, **values):
            if not raced:
                raced.append(hexagon.hexagon_id)
                # carol's capture lands between bob's read and bob's write
                sess.execute(
                    update(Hexagon)
                    .where(Hexagon.id == hexagon.id)
                    .values(
                        current_owner_id=carol.id,
                        current_owner_strava_id=carol.strava_id,
                        current_activity_id=carol_run.id,
                        current_strava_activity_id=carol_run.strava_activity_id,
                        capture_count=Hexagon.capture_count + 1,
                        version=Hexagon.version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
            return real_cas(sess, hexagon, **values)

        monkeypatch.setattr(capture, "_cas_update", racing_cas)
        result = capture.capture_hexagons(session, user=bob, activity=bob_run, hexagon_ids=[cell])

        assert result.transferred == [cell]
        assert result.affected_users == {carol.id: 1}
        hexagon = _hexagon(session, cell)
        assert hexagon.current_owner_id == bob.id
        assert hexagon.last_previous_owner_id == carol.id
        assert hexagon.version == 3
        assert [entry.user_id for entry in _history(session, hexagon)] == [carol.id]

    def test_persistent_conflict_is_reported(self, session, alice, bob, monkeypatch):
        first = make_activity(session, alice, 5001)
        cell = cells_along(1)[0]
        capture.capture_hexagons(session, user=alice, activity=first, hexagon_ids=[cell])
        steal = make_activity(session, bob, 6001, start_date=later(first))

        attempts = []

        def always_lose(sess, hexagon, **values):
            attempts.append(hexagon.hexagon_id)
            return False

        monkeypatch.setattr(capture, "_cas_update", always_lose)
        result = capture.capture_hexagons(session, user=bob, activity=steal, hexagon_ids=[cell])

        assert result.conflicted == [cell]
        assert len(attempts) == capture.MAX_CAPTURE_ATTEMPTS
        assert _hexagon(session, cell).current_owner_id == alice.id
        assert _history(session, _hexagon(session, cell)) == []

    def test_concurrent_first_capture_falls_back_to_transfer(self, session, alice, bob, monkeypatch):
        first = make_activity(session, alice, 5001)
        cell = cells_along(1)[0]
        capture.capture_hexagons(session, user=alice, activity=first, hexagon_ids=[cell])
        steal = make_activity(session, bob, 6001, start_date=later(first))

        # bob read the store before alice's insert became visible
        monkeypatch.setattr(capture, "load_hexagons", lambda sess, ids: {})
        result = capture.capture_hexagons(session, user=bob, activity=steal, hexagon_ids=[cell])

        assert result.created == []
        assert result.transferred == [cell]
        assert len(session.exec(select(Hexagon)).all()) == 1
        assert _hexagon(session, cell).current_owner_id == bob.id


class TestDeleteActivity:
    def test_restores_previous_owners(self, session, alice, bob, carol):
        cells = cells_along(2)
        a_run = make_activity(session, alice, 5001)
        capture.capture_hexagons(session, user=alice, activity=a_run, hexagon_ids=cells)
        b_run = make_activity(session, bob, 6001, start_date=later(a_run))
        capture.capture_hexagons(session, user=bob, activity=b_run, hexagon_ids=cells)
        c_run = make_activity(session, carol, 7001, start_date=later(a_run, hours=2))
        capture.capture_hexagons(session, user=carol, activity=c_run, hexagon_ids=cells[:1])

        outcome = capture.delete_activity_and_restore(session, strava_activity_id=7001, user=carol)

        assert outcome.restored == 1 and outcome.deleted == 0
        hexagon = _hexagon(session, cells[0])
        assert hexagon.current_owner_id == bob.id
        assert hexagon.current_strava_activity_id == 6001
        assert hexagon.capture_count == 2
        assert hexagon.last_previous_owner_id == alice.id
        assert [entry.user_id for entry in _history(session, hexagon)] == [alice.id]
        assert session.exec(select(Activity).where(Activity.strava_activity_id == 7001)).first() is None

        outcome = capture.delete_activity_and_restore(session, strava_activity_id=6001, user=bob)
        assert outcome.restored == 2
        for cell in cells:
            hexagon = _hexagon(session, cell)
            assert hexagon.current_owner_id == alice.id
            assert hexagon.capture_count == 1
            assert hexagon.last_previous_owner_id is None

    def test_uncontested_hexagons_are_removed(self, session, alice):
        cells = cells_along(3)
        run = make_activity(session, alice, 5001)
        capture.capture_hexagons(session, user=alice, activity=run, hexagon_ids=cells)

        outcome = capture.delete_activity_and_restore(session, strava_activity_id=5001, user=alice)

        assert outcome.deleted == 3
        assert session.exec(select(Hexagon)).all() == []

    def test_only_owner_or_admin(self, session, alice, bob):
        run = make_activity(session, alice, 5001)
        capture.capture_hexagons(session, user=alice, activity=run, hexagon_ids=cells_along(1))

        with pytest.raises(ForbiddenError):
            capture.delete_activity_and_restore(session, strava_activity_id=5001, user=bob)

        admin = make_user(session, 9999, is_admin=True)
        outcome = capture.delete_activity_and_restore(session, strava_activity_id=5001, user=admin)
        assert outcome.deleted == 1

    def test_unknown_activity(self, session, alice):
        with pytest.raises(NotFoundError):
            capture.delete_activity_and_restore(session, strava_activity_id=424242, user=alice)

    def test_delete_hexagon(self, session, alice, bob):
        cell, kept = cells_along(2)
        a_run = make_activity(session, alice, 5001)
        capture.capture_hexagons(session, user=alice, activity=a_run, hexagon_ids=[cell, kept])
        b_run = make_activity(session, bob, 6001, start_date=later(a_run))
        capture.capture_hexagons(session, user=bob, activity=b_run, hexagon_ids=[cell, kept])
        c_run = make_activity(session, alice, 5002, start_date=later(b_run))
        capture.capture_hexagons(session, user=alice, activity=c_run, hexagon_ids=[cell])

        assert capture.delete_hexagon(session, cell) is True
        assert [h.hexagon_id for h in session.exec(select(Hexagon)).all()] == [kept]
        history = session.exec(select(CaptureHistoryEntry)).all()
        assert [entry.user_id for entry in history] == [alice.id]
        assert capture.delete_hexagon(session, cell) is False


ROUTE = [(BASE_LAT, BASE_LNG), (BASE_LAT + 0.002, BASE_LNG + 0.001), (BASE_LAT + 0.004, BASE_LNG + 0.002)]


class TestProcessActivity:
    async def test_processes_run(self, session, alice, monkeypatch):
        stub_strava(monkeypatch, {8001: strava_payload(8001, ROUTE)})

        result = await capture.process_activity(
            session, strava_activity_id=8001, user=alice, source=SOURCE_WEBHOOK
        )

        assert result.was_created is True
        assert result.route_type == ROUTE_LINE
        assert result.capture.created == result.hexagon_ids
        assert result.activity.source == SOURCE_WEBHOOK
        assert result.activity.name == "Morning Run"

        expected_last_hex = hexindex.parent_of(result.hexagon_ids[0])
        session.refresh(alice)
        assert alice.last_hex == expected_last_hex
        assert result.activity.last_hex == expected_last_hex

        notes = session.exec(select(Notification).where(Notification.owner_id == alice.id)).all()
        assert len(notes) == 1
        assert notes[0].type == "positive"
        assert f"discovered {len(result.hexagon_ids)} new hexes" in notes[0].message

    async def test_reprocessing_updates_the_same_activity(self, session, alice, monkeypatch):
        payload = strava_payload(8001, ROUTE)
        stub_strava(monkeypatch, {8001: payload})
        await capture.process_activity(session, strava_activity_id=8001, user=alice)

        payload["name"] = "Renamed Run"
        result = await capture.process_activity(session, strava_activity_id=8001, user=alice)

        assert result.was_created is False
        assert result.activity.name == "Renamed Run"
        assert result.capture.own == result.hexagon_ids
        assert len(session.exec(select(Activity)).all()) == 1

    async def test_steal_notifies_previous_owner(self, session, alice, bob, monkeypatch):
        stub_strava(
            monkeypatch,
            {
                8001: strava_payload(8001, ROUTE, start="2025-06-01T07:00:00Z"),
                8002: strava_payload(8002, ROUTE, start="2025-06-02T07:00:00Z"),
            },
        )
        await capture.process_activity(session, strava_activity_id=8001, user=alice)
        result = await capture.process_activity(session, strava_activity_id=8002, user=bob)

        assert result.capture.transferred == result.hexagon_ids
        robbed = session.exec(
            select(Notification).where(Notification.owner_id == alice.id, Notification.type == "negative")
        ).all()
        assert len(robbed) == 1
        assert robbed[0].triggered_by_id == bob.id
        assert robbed[0].message.startswith("Bob just stole")

    async def test_older_activity_does_not_overwrite(self, session, alice, bob, monkeypatch):
        stub_strava(
            monkeypatch,
            {
                8001: strava_payload(8001, ROUTE, start="2025-06-10T07:00:00Z"),
                8002: strava_payload(8002, ROUTE, start="2025-06-01T07:00:00Z"),
            },
        )
        await capture.process_activity(session, strava_activity_id=8001, user=alice)
        result = await capture.process_activity(session, strava_activity_id=8002, user=bob)

        assert result.capture.stale == result.hexagon_ids
        assert result.capture.transferred == []
        assert session.exec(select(Notification).where(Notification.owner_id == bob.id)).all() == []

    async def test_rejects_non_running_activity(self, session, alice, monkeypatch):
        stub_strava(monkeypatch, {8001: strava_payload(8001, ROUTE, type_="Ride", sport_type="Ride")})

        with pytest.raises(UnsupportedActivityError):
            await capture.process_activity(session, strava_activity_id=8001, user=alice)
        assert session.exec(select(Activity)).all() == []

    async def test_accepts_trail_run_sport_type(self, session, alice, monkeypatch):
        stub_strava(monkeypatch, {8001: strava_payload(8001, ROUTE, type_="Workout", sport_type="TrailRun")})

        result = await capture.process_activity(session, strava_activity_id=8001, user=alice)
        assert result.activity.capture_type == "TrailRun"

    async def test_rejects_activity_without_route(self, session, alice, monkeypatch):
        stub_strava(monkeypatch, {8001: strava_payload(8001, None)})

        with pytest.raises(MissingRouteError):
            await capture.process_activity(session, strava_activity_id=8001, user=alice)

    async def test_notification_failure_does_not_fail_capture(self, session, alice, monkeypatch):
        stub_strava(monkeypatch, {8001: strava_payload(8001, ROUTE)})

        def broken(*args, **kwargs):
            raise RuntimeError("notification store down")

        monkeypatch.setattr(capture.notifications, "create_activity_notification", broken)
        result = await capture.process_activity(session, strava_activity_id=8001, user=alice)

        assert result.capture.created
        assert len(session.exec(select(Hexagon)).all()) == len(result.hexagon_ids)
