from datetime import timedelta

from panelsync.models.models import CoverEvent
from panelsync.schemas.events import CoveredEvent
from panelsync.services import event_log

from tests.conftest import T0


def test_append_event_is_idempotent_by_id(server_session_factory):
    event = CoveredEvent(panel_id="p1", covered_at=T0, covered_by="Alice", note="first")
    with server_session_factory() as db:
        row, created = event_log.append_event(db, event)
        assert created is True

        again, created = event_log.append_event(db, event.model_copy(update={"note": "second"}))
        assert created is False
        assert again.id == row.id
        assert again.note == "first"


def test_concurrent_retry_returns_the_row_that_won(server_session_factory, monkeypatch):
    event = CoveredEvent(panel_id="p1", covered_at=T0, covered_by="Alice", note="first")
    with server_session_factory() as first_request:
        event_log.append_event(first_request, event)

    with server_session_factory() as second_request:
        # The retry looked before the first request committed, so its lookup missed
        real_get = second_request.get
        lookups = []

        def get_missed_once(entity, ident, **kwargs):
            lookups.append(ident)
            if len(lookups) == 1:
                return None
            return real_get(entity, ident, **kwargs)

        monkeypatch.setattr(second_request, "get", get_missed_once)

        row, created = event_log.append_event(second_request, event.model_copy(update={"note": "retry"}))

        assert created is False
        assert row.note == "first"
        assert len(lookups) == 2

    with server_session_factory() as db:
        assert db.query(CoverEvent).count() == 1


def test_latest_combined_status_orders_events_before_assignments(server_session_factory):
    with server_session_factory() as db:
        event_log.append_event(db, CoveredEvent(panel_id="p1", covered_at=T0, covered_by="Alice"))
        event_log.append_event(db, CoveredEvent(panel_id="p2", covered_at=T0 + timedelta(hours=1), covered_by="Bob"))
        event_log.upsert_assignment(db, "p0", "Chloe", T0)

        rows = event_log.latest_combined_status(db)

    assert [row["panel_id"] for row in rows] == ["p2", "p1", "p0"]
    assert rows[2]["id"] is None
    assert rows[2]["assigned_to"] == "Chloe"
