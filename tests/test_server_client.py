import json

import httpx
import pytest

from panelsync.schemas.events import AbsentEvent, CoveredEvent, ExtraPanelCreate
from panelsync.services.server_client import ServerClient, ServerError

from tests.conftest import T0


def _client(handler, api_key="secret") -> ServerClient:
    return ServerClient(base_url="http://server.test/", api_key=api_key, timeout=2.0, transport=httpx.MockTransport(handler))


async def test_post_event_sends_flat_body_and_auth_headers():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json=seen["body"])

    event = AbsentEvent(panel_id="p1", covered_at=T0, covered_by="Bob", absent_reason="removed")
    echoed = await _client(handler).post_event(event)

    assert seen["method"] == "POST"
    assert seen["url"] == "http://server.test/events"
    assert seen["headers"]["apikey"] == "secret"
    assert seen["headers"]["authorization"] == "Bearer secret"
    assert seen["body"]["event_type"] == "absent"
    assert seen["body"]["absent_reason"] == "removed"
    assert seen["body"]["note"] is None
    assert seen["body"]["id"] == str(event.id)
    assert isinstance(echoed, AbsentEvent)
    assert echoed.id == event.id


async def test_no_auth_headers_without_key():
    seen = {}

    def handler(request):
        seen["headers"] = request.headers
        return httpx.Response(200, json=[])

    await ServerClient(base_url="http://server.test", api_key="", transport=httpx.MockTransport(handler)).fetch_latest_status(10)

    assert "apikey" not in seen["headers"]
    assert "authorization" not in seen["headers"]


async def test_http_error_status_becomes_server_error():
    def handler(request):
        return httpx.Response(500, text="database is down")

    with pytest.raises(ServerError) as exc:
        await _client(handler).post_event(CoveredEvent(panel_id="p1", covered_at=T0, covered_by="Alice"))

    assert exc.value.code == "http_500"
    assert exc.value.status_code == 500
    assert exc.value.message == "database is down"


async def test_empty_error_body_uses_status_line():
    def handler(request):
        return httpx.Response(404)

    with pytest.raises(ServerError) as exc:
        await _client(handler).fetch_extra_panels(10)

    assert exc.value.message == "HTTP 404"


async def test_timeout_and_transport_errors():
    def slow(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    def unreachable(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ServerError) as exc:
        await _client(slow).fetch_latest_status(10)
    assert exc.value.code == "timeout"

    with pytest.raises(ServerError) as exc:
        await _client(unreachable).fetch_latest_status(10)
    assert exc.value.code == "transport"


async def test_invalid_json_is_a_payload_error():
    def handler(request):
        return httpx.Response(200, content=b"<html>maintenance</html>", headers={"content-type": "text/html"})

    with pytest.raises(ServerError) as exc:
        await _client(handler).fetch_latest_status(10)

    assert exc.value.code == "payload"


async def test_unknown_event_type_rejects_the_whole_feed():
    rows = [
        {"id": "1b1c2f8e-6f53-4bb2-9e38-0a0f4f3c7a01", "panel_id": "p1", "covered_at": T0.isoformat(),
         "covered_by": "Alice", "event_type": "covered"},
        {"id": "1b1c2f8e-6f53-4bb2-9e38-0a0f4f3c7a02", "panel_id": "p2", "covered_at": T0.isoformat(),
         "covered_by": "Alice", "event_type": "vandalised"},
    ]

    def handler(request):
        return httpx.Response(200, json=rows)

    with pytest.raises(ServerError) as exc:
        await _client(handler).fetch_latest_status(10)

    assert exc.value.code == "payload"


async def test_latest_status_decodes_rows():
    rows = [
        # Legacy row: no event_type at all
        {"id": "1b1c2f8e-6f53-4bb2-9e38-0a0f4f3c7a01", "panel_id": "p1", "covered_at": T0.isoformat(),
         "covered_by": "Alice", "note": "ok", "assigned_to": None, "assigned_at": None},
        {"id": "1b1c2f8e-6f53-4bb2-9e38-0a0f4f3c7a02", "panel_id": "p2", "covered_at": T0.isoformat(),
         "covered_by": "Bob", "event_type": "OVERPOSTED", "note": "torn"},
        # Assignment without any event
        {"id": None, "panel_id": "p3", "covered_at": None, "covered_by": None, "event_type": None,
         "assigned_to": "Chloe", "assigned_at": T0.isoformat()},
    ]
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json=rows)

    p1, p2, p3 = await _client(handler).fetch_latest_status(5000)

    assert seen["params"] == {"limit": "5000"}
    assert p1.event_type == "covered"
    assert p1.event.note == "ok"
    assert p2.event_type == "overposted"
    assert p3.event is None
    assert p3.event_type == "todo"
    assert p3.assigned_to == "Chloe"
    assert p3.assigned_at == T0


async def test_recent_events_decode_variants():
    body = [
        {"id": "1b1c2f8e-6f53-4bb2-9e38-0a0f4f3c7a01", "panel_id": "p1", "covered_at": T0.isoformat(),
         "covered_by": "Alice", "event_type": "absent", "absent_reason": "gone"},
        {"id": "1b1c2f8e-6f53-4bb2-9e38-0a0f4f3c7a02", "panel_id": "p2", "covered_at": T0.isoformat(),
         "covered_by": "Bob"},
    ]

    def handler(request):
        return httpx.Response(200, json=body)

    events = await _client(handler).fetch_recent_events(80)

    assert [type(ev) for ev in events] == [AbsentEvent, CoveredEvent]
    assert events[0].absent_reason == "gone"


async def test_update_assignment_puts_upsert_body():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(204)

    await _client(handler).update_assignment("vote:12/14 rue de la paix?b", "Bob", T0)

    assert seen["method"] == "PUT"
    assert seen["path"] == "/assignments"
    assert seen["body"]["panel_id"] == "vote:12/14 rue de la paix?b"
    assert seen["body"]["assigned_to"] == "Bob"
    assert seen["body"]["assigned_at"].startswith("2026-03-10T09:00:00")


async def test_post_extra_panel_returns_created_panel():
    def handler(request):
        body = json.loads(request.content)
        body.update({"id": "6a0f1f1e-4a9b-4c1c-a2d1-6e4b9c1e0b11", "created_at": T0.isoformat()})
        return httpx.Response(201, json=body)

    panel = await _client(handler).post_extra_panel(ExtraPanelCreate(lat=48.85, lon=2.35, title="  ", created_by="Eve"))

    assert panel.panel_id == "extra:6a0f1f1e-4a9b-4c1c-a2d1-6e4b9c1e0b11"
    assert panel.display_title == "Panel (team added)"
    assert panel.created_by == "Eve"
