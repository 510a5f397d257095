from datetime import timedelta

import pytest

from panelsync.models.local import PanelLocalStatus
from panelsync.schemas.events import ExtraPanelOut
from panelsync.schemas.panels import PanelLocation
from panelsync.services.geo import closest_candidates, haversine_distance, needs_visit, next_candidate

from tests.conftest import T0


HERE = (48.8566, 2.3522)


def _panel(panel_id, dlat):
    return PanelLocation(panel_id=panel_id, lat=HERE[0] + dlat, lon=HERE[1])


def test_haversine_distance():
    assert haversine_distance(*HERE, *HERE) == 0
    # One degree of latitude is about 111 km
    assert haversine_distance(0, 0, 1, 0) == pytest.approx(111195, rel=1e-3)


def test_needs_visit():
    assert needs_visit(None, T0) is True

    record = PanelLocalStatus(panel_id="p1")
    assert needs_visit(record, T0) is True

    record.mark_covered(T0 - timedelta(hours=1), "Alice")
    assert needs_visit(record, T0) is False
    assert needs_visit(record, T0 + timedelta(days=1)) is True

    record.mark_absent(T0 - timedelta(days=5), "Bob")
    assert needs_visit(record, T0) is False

    record.mark_overposted(T0, "Chloe")
    assert needs_visit(record, T0) is True


def test_closest_candidates_orders_and_filters():
    panels = [
        _panel("far", 0.01),        # ~1.1 km
        _panel("near", 0.002),      # ~220 m
        _panel("here", 0.0001),     # ~11 m, already on site
        _panel("fresh", 0.001),
        _panel("absent", 0.003),
    ]
    fresh = PanelLocalStatus(panel_id="fresh")
    fresh.mark_covered(T0, "Alice")
    absent = PanelLocalStatus(panel_id="absent")
    absent.mark_absent(T0, "Bob")

    candidates = closest_candidates(*HERE, panels, {"fresh": fresh, "absent": absent}, T0, min_distance_m=30)

    assert [c.panel.panel_id for c in candidates] == ["near", "far"]
    assert candidates[0].distance_m == pytest.approx(222, rel=0.02)


def test_next_candidate_includes_extra_panels():
    extra = ExtraPanelOut(id="6a0f1f1e-4a9b-4c1c-a2d1-6e4b9c1e0b11", lat=HERE[0] + 0.001, lon=HERE[1])
    panels = [_panel("p1", 0.01), PanelLocation.from_extra(extra)]

    best = next_candidate(*HERE, panels, {}, T0)

    assert best.panel.is_extra is True
    assert best.panel.panel_id == "extra:6a0f1f1e-4a9b-4c1c-a2d1-6e4b9c1e0b11"
    assert best.panel.title == "Panel (team added)"


def test_next_candidate_without_position():
    assert next_candidate(None, None, [_panel("p1", 0.01)], {}, T0) is None
