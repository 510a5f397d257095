from panelsync.schemas.events import CoveredEvent
from panelsync.services.feeds import add_extra_panel, load_dashboard_events, load_extra_panels, load_recent_activity
from panelsync.services.server_client import ServerError

from tests.conftest import T0


class _EventFeed:
    def __init__(self, events=None, error=None):
        self.events = events or []
        self.error = error
        self.limits = []

    async def fetch_recent_events(self, limit):
        self.limits.append(limit)
        if self.error:
            raise self.error
        return self.events[:limit]


async def test_recent_activity_and_dashboard_use_their_own_limits():
    feed = _EventFeed([CoveredEvent(panel_id="p1", covered_at=T0, covered_by="Alice")])

    events, outcome = await load_recent_activity(feed)
    assert outcome.ok is True
    assert len(events) == 1

    await load_dashboard_events(feed)
    await load_recent_activity(feed, limit=5)
    assert feed.limits == [80, 2000, 5]


async def test_feed_failure_is_soft():
    feed = _EventFeed(error=ServerError("HTTP 502", code="http_502", status_code=502))

    events, outcome = await load_recent_activity(feed)

    assert events == []
    assert outcome.ok is False
    assert outcome.code == "http_502"
    assert outcome.error == "Activity: HTTP 502"


async def test_add_extra_panel_reloads_list(fake_server):
    panels, outcome = await add_extra_panel(fake_server, 48.85, 2.35, "Market", None, "Eve")

    assert outcome.ok is True
    assert [p.title for p in panels] == ["Market"]
    assert panels[0].panel_id.startswith("extra:")


async def test_add_extra_panel_failure(fake_server):
    fake_server.fail_posts = True

    panels, outcome = await add_extra_panel(fake_server, 48.85, 2.35, "Market", None, "Eve")

    assert panels == []
    assert outcome.ok is False
    assert outcome.error.startswith("Add panel:")
    assert fake_server.extra_panels == []


async def test_load_extra_panels_failure(fake_server):
    fake_server.fail_fetch = True

    panels, outcome = await load_extra_panels(fake_server)

    assert panels == []
    assert outcome.code == "http_500"
