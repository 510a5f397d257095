"""
Event log API client
Handles authentication and requests to the shared event log server
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
import structlog
from pydantic import ValidationError

from ..config import settings
from ..schemas.events import (
    AssignmentUpsert,
    CombinedStatusRow,
    ExtraPanelCreate,
    ExtraPanelOut,
    event_to_wire,
    parse_combined_rows,
    parse_event,
    parse_events,
)


logger = structlog.get_logger(__name__)


class ServerError(Exception):
    """Any failure talking to the server: transport, HTTP status, or payload shape."""

    def __init__(self, message: str, code: str = "transport", status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class EventLogClient:
    """Remote contract used by the reconciliation engine."""

    async def post_event(self, event) -> Any:
        raise NotImplementedError

    async def fetch_latest_status(self, limit: int) -> List[CombinedStatusRow]:
        raise NotImplementedError

    async def fetch_recent_events(self, limit: int) -> List[Any]:
        raise NotImplementedError

    async def update_assignment(self, panel_id: str, user: Optional[str], at: Optional[datetime]) -> None:
        raise NotImplementedError

    async def fetch_extra_panels(self, limit: int) -> List[ExtraPanelOut]:
        raise NotImplementedError

    async def post_extra_panel(self, payload: ExtraPanelCreate) -> Optional[ExtraPanelOut]:
        raise NotImplementedError


class ServerClient(EventLogClient):
    """HTTP client for the event log server"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.server_base_url).rstrip("/")
        self.api_key = api_key or settings.server_api_key
        self.timeout = timeout if timeout is not None else settings.http_timeout_s
        self._transport = transport

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _request(self, method: str, endpoint: str, **kwargs) -> Any:
        """Make an HTTP request and return the decoded JSON body (None when empty)."""
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        headers = self._get_headers()
        headers.update(kwargs.pop("headers", {}))
        logger.debug("server_request", method=method, url=url)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise ServerError(f"Timeout: {e}", code="timeout") from e
        except httpx.HTTPError as e:
            raise ServerError(f"Transport: {e}", code="transport") from e

        if not (200 <= response.status_code <= 299):
            text = response.text.strip()
            raise ServerError(text or f"HTTP {response.status_code}", code=f"http_{response.status_code}", status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ServerError(f"Invalid JSON from {endpoint}: {e}", code="payload") from e

    # Cover events

    async def post_event(self, event):
        data = await self._request("POST", "/events", json=event_to_wire(event))
        if data is None:
            return None
        try:
            return parse_event(data)
        except ValidationError as e:
            raise ServerError(f"Malformed event echo: {e}", code="payload") from e

    async def fetch_latest_status(self, limit: int = settings.latest_status_limit) -> List[CombinedStatusRow]:
        """Latest combined state (event + assignment) per panel."""
        data = await self._request("GET", "/status/latest", params={"limit": limit})
        try:
            return parse_combined_rows(data)
        except ValidationError as e:
            raise ServerError(f"Malformed status feed: {e}", code="payload") from e

    async def fetch_recent_events(self, limit: int = settings.recent_events_limit):
        data = await self._request("GET", "/events/recent", params={"limit": limit})
        try:
            return parse_events(data)
        except ValidationError as e:
            raise ServerError(f"Malformed event feed: {e}", code="payload") from e

    # Coordination

    async def update_assignment(self, panel_id: str, user: Optional[str], at: Optional[datetime]) -> None:
        body = AssignmentUpsert(panel_id=panel_id, assigned_to=user, assigned_at=at).model_dump(mode="json")
        await self._request("PUT", "/assignments", json=body)

    # Extra panels

    async def fetch_extra_panels(self, limit: int = settings.extra_panels_limit) -> List[ExtraPanelOut]:
        data = await self._request("GET", "/extra-panels", params={"limit": limit})
        try:
            return [ExtraPanelOut.model_validate(item) for item in (data or [])]
        except ValidationError as e:
            raise ServerError(f"Malformed extra panels: {e}", code="payload") from e

    async def post_extra_panel(self, payload: ExtraPanelCreate) -> Optional[ExtraPanelOut]:
        data = await self._request("POST", "/extra-panels", json=payload.model_dump(mode="json"))
        if not data:
            return None
        try:
            return ExtraPanelOut.model_validate(data)
        except ValidationError as e:
            raise ServerError(f"Malformed extra panel: {e}", code="payload") from e
