"""
Pytest configuration and shared fixtures for panelsync tests.

- Async tests run under pytest-asyncio (auto mode is enabled in pyproject.toml)
- Device stores and the server database use in-memory SQLite
- FakeEventLog stands in for the server where HTTP is beside the point
"""
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest
import pytz
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from panelsync.db import Base, get_db, make_engine
from panelsync.main import app
from panelsync.schemas.events import CombinedStatusRow, ExtraPanelOut, event_to_wire, parse_combined_rows
from panelsync.services.local_store import LocalStatusStore
from panelsync.services.reconciliation import ReconciliationEngine
from panelsync.services.responsibility import ResponsibilityCoordinator
from panelsync.services.server_client import EventLogClient, ServerError


T0 = datetime(2026, 3, 10, 9, 0, tzinfo=pytz.UTC)


class FixedClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeEventLog(EventLogClient):
    """In-memory server double with switchable failures."""

    def __init__(self):
        self.events: Dict[str, dict] = {}
        self.assignments: Dict[str, dict] = {}
        self.extra_panels: List[ExtraPanelOut] = []
        self.post_calls: List[str] = []
        self.assignment_calls: List[tuple] = []
        self.fail_posts = False
        self.fail_fetch = False
        self.fail_assignments = False
        self.latest_rows: Optional[List[CombinedStatusRow]] = None

    async def post_event(self, event):
        self.post_calls.append(str(event.id))
        if self.fail_posts:
            raise ServerError("Network unreachable", code="transport")
        self.events.setdefault(str(event.id), event_to_wire(event))
        return event

    async def fetch_latest_status(self, limit: int = 5000) -> List[CombinedStatusRow]:
        if self.fail_fetch:
            raise ServerError("HTTP 503", code="http_503", status_code=503)
        if self.latest_rows is not None:
            return list(self.latest_rows)
        latest: Dict[str, dict] = {}
        for ev in self.events.values():
            current = latest.get(ev["panel_id"])
            if current is None or ev["covered_at"] > current["covered_at"]:
                latest[ev["panel_id"]] = ev
        rows = []
        for panel_id in set(latest) | {p for p, a in self.assignments.items() if a["assigned_to"]}:
            row = dict(latest.get(panel_id) or {"id": None, "panel_id": panel_id})
            assignment = self.assignments.get(panel_id, {})
            row["assigned_to"] = assignment.get("assigned_to")
            row["assigned_at"] = assignment.get("assigned_at")
            rows.append(row)
        return parse_combined_rows(rows)[:limit]

    async def fetch_recent_events(self, limit: int = 80):
        raise NotImplementedError

    async def update_assignment(self, panel_id, user, at) -> None:
        self.assignment_calls.append((panel_id, user))
        if self.fail_assignments:
            raise ServerError("Timeout: read timed out", code="timeout")
        self.assignments[panel_id] = {"assigned_to": user, "assigned_at": at}

    async def fetch_extra_panels(self, limit: int = 5000):
        if self.fail_fetch:
            raise ServerError("HTTP 500", code="http_500", status_code=500)
        return list(self.extra_panels)[:limit]

    async def post_extra_panel(self, payload):
        if self.fail_posts:
            raise ServerError("Network unreachable", code="transport")
        panel = ExtraPanelOut(id=uuid.uuid4(), **payload.model_dump())
        self.extra_panels.insert(0, panel)
        return panel


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store():
    local = LocalStatusStore(url="sqlite://")
    yield local
    local.close()


@pytest.fixture
def fake_server() -> FakeEventLog:
    return FakeEventLog()


@pytest.fixture
def engine(store, fake_server, clock) -> ReconciliationEngine:
    return ReconciliationEngine(store, fake_server, clock=clock)


@pytest.fixture
def coordinator(store, fake_server, clock) -> ResponsibilityCoordinator:
    return ResponsibilityCoordinator(store, fake_server, clock=clock)


@pytest.fixture
def server_session_factory():
    db_engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=db_engine)
    factory = sessionmaker(bind=db_engine, autoflush=False, autocommit=False, future=True)
    yield factory
    db_engine.dispose()


@pytest.fixture
def server_app(server_session_factory):
    def override_get_db():
        db = server_session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield app
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def api(server_app) -> TestClient:
    return TestClient(server_app)
