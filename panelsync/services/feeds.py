"""
Read-only feeds outside the reconciliation core: recent activity, dashboard
history and team-added panels. Failures come back as a soft SyncOutcome.
"""
from typing import Any, List, Optional, Tuple

import structlog

from ..config import settings
from ..schemas.events import ExtraPanelCreate, ExtraPanelOut
from ..schemas.sync import SyncOutcome
from .server_client import EventLogClient, ServerError


logger = structlog.get_logger(__name__)


def _failed(label: str, e: ServerError) -> SyncOutcome:
    logger.warning("feed_failed", feed=label, code=e.code, error=e.message)
    return SyncOutcome(ok=False, error=f"{label}: {e.message}", code=e.code)


async def load_recent_activity(client: EventLogClient, limit: Optional[int] = None) -> Tuple[List[Any], SyncOutcome]:
    try:
        events = await client.fetch_recent_events(limit or settings.recent_events_limit)
    except ServerError as e:
        return [], _failed("Activity", e)
    return events, SyncOutcome()


async def load_dashboard_events(client: EventLogClient, limit: Optional[int] = None) -> Tuple[List[Any], SyncOutcome]:
    try:
        events = await client.fetch_recent_events(limit or settings.dashboard_events_limit)
    except ServerError as e:
        return [], _failed("Dashboard", e)
    return events, SyncOutcome()


async def load_extra_panels(client: EventLogClient, limit: Optional[int] = None) -> Tuple[List[ExtraPanelOut], SyncOutcome]:
    try:
        panels = await client.fetch_extra_panels(limit or settings.extra_panels_limit)
    except ServerError as e:
        return [], _failed("Extra panels", e)
    return panels, SyncOutcome()


async def add_extra_panel(
    client: EventLogClient,
    lat: float,
    lon: float,
    title: str,
    subtitle: Optional[str],
    created_by: str,
) -> Tuple[List[ExtraPanelOut], SyncOutcome]:
    """Create a team-added panel, then reload the list so the caller sees it."""
    payload = ExtraPanelCreate(lat=lat, lon=lon, title=title, subtitle=subtitle, created_by=created_by)
    try:
        await client.post_extra_panel(payload)
    except ServerError as e:
        return [], _failed("Add panel", e)
    return await load_extra_panels(client)
