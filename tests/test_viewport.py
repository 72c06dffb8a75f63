"""Tests for viewport and territory queries."""

from __future__ import annotations

import h3

from getout.services import capture, hexindex, viewport
from getout.services.hexindex import BoundingBox

from conftest import BASE_LAT, BASE_LNG, cells_along, later, make_activity, make_user

# roughly 10 km away, in a different parent cell
FAR_LAT = BASE_LAT + 0.1
FAR_LNG = BASE_LNG + 0.1


def _bbox(pad: float = 0.01) -> BoundingBox:
    return BoundingBox(south=BASE_LAT - pad, west=BASE_LNG - pad, north=BASE_LAT + pad, east=BASE_LNG + pad)


def _seed(session):
    alice = make_user(session, 1001, firstname="Alice")
    bob = make_user(session, 1002, firstname="Bob")
    near = cells_along(4)
    far = cells_along(2, lat=FAR_LAT, lng=FAR_LNG)

    a_run = make_activity(session, alice, 5001)
    capture.capture_hexagons(session, user=alice, activity=a_run, hexagon_ids=near + far)
    b_run = make_activity(session, bob, 6001, start_date=later(a_run))
    capture.capture_hexagons(session, user=bob, activity=b_run, hexagon_ids=near[:1])
    return alice, bob, near, far


def _ids(hexagons):
    return {h.hexagon_id for h in hexagons}


def test_viewport_returns_only_visible_hexagons(session):
    alice, bob, near, far = _seed(session)

    found = viewport.hexagons_in_viewport(session, _bbox(), zoom=15)

    assert _ids(found) == set(near)


def test_viewport_owner_filter(session):
    alice, bob, near, far = _seed(session)

    mine = viewport.hexagons_in_viewport(session, _bbox(), zoom=15, owner_id=bob.id)

    assert _ids(mine) == {near[0]}


def test_bbox_query_filters_by_cell_centre(session):
    alice, bob, near, far = _seed(session)

    assert _ids(viewport.hexagons_in_bbox(session, _bbox())) == set(near)
    assert _ids(viewport.hexagons_in_bbox(session, _bbox(), owner_id=alice.id)) == set(near[1:])
    assert len(viewport.hexagons_in_bbox(session, _bbox(), limit=1)) == 1


def test_by_parents(session):
    alice, bob, near, far = _seed(session)
    far_parents = {hexindex.parent_of(c) for c in far}

    assert _ids(viewport.hexagons_by_parents(session, far_parents)) == set(far)
    assert viewport.hexagons_by_parents(session, far_parents, owner_id=bob.id) == []
    assert viewport.hexagons_by_parents(session, []) == []


def test_by_parents_splits_large_parent_lists(session, monkeypatch):
    alice, bob, near, far = _seed(session)
    monkeypatch.setattr(viewport, "PARENT_CHUNK", 1)
    parents = {hexindex.parent_of(c) for c in near + far}
    parents |= set(h3.grid_disk(hexindex.parent_of(near[0]), 1))

    assert _ids(viewport.hexagons_by_parents(session, parents)) == set(near + far)


def test_user_contested_and_stolen_queries(session):
    alice, bob, near, far = _seed(session)

    assert _ids(viewport.user_hexagons(session, alice.id)) == set(near[1:] + far)
    assert len(viewport.user_hexagons(session, alice.id, limit=2)) == 2
    assert viewport.contested_hexagons(session, limit=1)[0].hexagon_id == near[0]
    assert _ids(viewport.hexagons_stolen_from(session, alice.id)) == {near[0]}
    assert viewport.hexagons_stolen_from(session, bob.id) == []
    assert viewport.count_hexagons(session) == 6
    assert viewport.count_hexagons(session, owner_id=bob.id) == 1


def test_serialization_includes_history_only_on_request(session):
    alice, bob, near, far = _seed(session)
    hexagon = viewport.get_hexagon(session, near[0])

    listed = viewport.hexagon_to_dict(hexagon)
    detailed = viewport.hexagon_to_dict(hexagon, viewport.capture_history(session, hexagon))

    assert "capture_history" not in listed
    assert listed["capture_count"] == 2
    assert listed["last_captured_at"].endswith("Z")
    assert [entry["user_id"] for entry in detailed["capture_history"]] == [alice.id]
    assert viewport.get_hexagon(session, "missing") is None
