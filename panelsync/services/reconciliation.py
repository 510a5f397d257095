"""
Reconciliation engine.

Applies user actions optimistically to the local store, pushes the matching
event to the server, and merges the server's latest combined status back into
the store without touching records that still carry an unconfirmed write.
"""
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Set, Tuple

import structlog
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from ..config import settings
from ..models.local import ASSIGNMENT_FIELDS, STATUS_FIELDS, PanelLocalStatus
from ..schemas.events import (
    AbsentEvent,
    CombinedStatusRow,
    CoveredEvent,
    EventType,
    OverpostedEvent,
    TodoEvent,
    event_to_wire,
    parse_event,
)
from ..schemas.sync import SyncOutcome
from .local_store import LocalStatusStore
from .server_client import EventLogClient, ServerError
from .time_rules import to_storage, utcnow


logger = structlog.get_logger(__name__)


def _field_values(record: PanelLocalStatus) -> tuple:
    return tuple(getattr(record, name) for name in STATUS_FIELDS + ASSIGNMENT_FIELDS)


def apply_row_status(record: PanelLocalStatus, row: CombinedStatusRow) -> None:
    """Overwrite the status groups of a record from one server row, by value."""
    event = row.event
    event_type = row.event_type
    if event is None or event_type == EventType.todo:
        record.reset_to_todo()
    elif event_type == EventType.absent:
        record.mark_absent(event.covered_at, event.covered_by, event.absent_reason)
    elif event_type == EventType.overposted:
        record.mark_overposted(event.covered_at, event.covered_by, event.note)
    else:
        record.mark_covered(event.covered_at, event.covered_by, event.note, event.photo_filename)


def merge_outcomes(outcomes: Iterable[SyncOutcome]) -> SyncOutcome:
    merged = SyncOutcome()
    for outcome in outcomes:
        if not outcome.ok and merged.ok:
            merged.ok = False
            merged.error = outcome.error
            merged.code = outcome.code
            merged.panel_id = outcome.panel_id
        merged.pushed += outcome.pushed
        merged.merged += outcome.merged
        merged.skipped += outcome.skipped
        merged.reset += outcome.reset
    return merged


class ReconciliationEngine:
    """
    Single reconciliation context for one device.

    Every apply_* call writes the local record before its first await, so the
    change is visible to readers immediately; the returned coroutine finishes
    once the server confirmed or rejected the event. Remote failures never
    raise: they leave needs_sync set and come back as a failed SyncOutcome.
    """

    def __init__(
        self,
        store: LocalStatusStore,
        client: EventLogClient,
        clock: Callable[[], datetime] = utcnow,
        latest_limit: Optional[int] = None,
    ):
        self.store = store
        self.client = client
        self.clock = clock
        self.latest_limit = latest_limit or settings.latest_status_limit
        self.last_error: Optional[str] = None

    # Local actions

    async def apply_covered(
        self,
        panel_id: str,
        at: datetime,
        actor: str,
        note: Optional[str] = None,
        photo_filename: Optional[str] = None,
    ) -> SyncOutcome:
        record = self.store.get_or_create(panel_id)
        record.mark_covered(at, actor, note, photo_filename)
        event = CoveredEvent(panel_id=panel_id, covered_at=at, covered_by=actor, note=note, photo_filename=photo_filename)
        return await self._stage_and_push(record, event)

    async def apply_absent(self, panel_id: str, at: datetime, actor: str, reason: Optional[str] = None) -> SyncOutcome:
        record = self.store.get_or_create(panel_id)
        record.mark_absent(at, actor, reason)
        event = AbsentEvent(panel_id=panel_id, covered_at=at, covered_by=actor, absent_reason=reason)
        return await self._stage_and_push(record, event)

    async def apply_overposted(self, panel_id: str, at: datetime, actor: str, note: Optional[str] = None) -> SyncOutcome:
        record = self.store.get_or_create(panel_id)
        record.mark_overposted(at, actor, note)
        event = OverpostedEvent(panel_id=panel_id, covered_at=at, covered_by=actor, note=note)
        return await self._stage_and_push(record, event)

    async def apply_todo_reset(self, panel_id: str, at: datetime, actor: str) -> SyncOutcome:
        record = self.store.get_or_create(panel_id)
        record.reset_to_todo()
        event = TodoEvent(panel_id=panel_id, covered_at=at, covered_by=actor)
        return await self._stage_and_push(record, event)

    async def _stage_and_push(self, record: PanelLocalStatus, event) -> SyncOutcome:
        record.needs_sync = True
        record.pending_event = event_to_wire(event)
        self.store.commit({record.panel_id})
        return await self._push(record, event)

    async def _push(self, record: PanelLocalStatus, event) -> SyncOutcome:
        try:
            await self.client.post_event(event)
        except ServerError as e:
            self.last_error = f"Sync: {e.message}"
            logger.warning(
                "push_failed",
                panel_id=record.panel_id,
                event_id=str(event.id),
                event_type=event.event_type,
                code=e.code,
                error=e.message,
            )
            return SyncOutcome(ok=False, error=self.last_error, code=e.code, panel_id=record.panel_id)

        self._confirm_event(record, str(event.id))
        return SyncOutcome(ok=True, pushed=1, panel_id=record.panel_id)

    def _confirm_event(self, record: PanelLocalStatus, event_id: str) -> None:
        if record.pending_event_id != event_id:
            # A newer local write replaced this one while it was in flight
            logger.info("push_superseded", panel_id=record.panel_id, event_id=event_id, pending=record.pending_event_id)
            return
        record.pending_event = None
        record.needs_sync = bool(record.assignment_pending)
        record.last_synced_at = to_storage(self.clock())
        self.store.commit({record.panel_id})
        logger.info("push_confirmed", panel_id=record.panel_id, event_id=event_id)

    # Retry

    async def push_pending(self) -> SyncOutcome:
        """
        Re-send every unconfirmed write, reusing the stored event id so the
        server can discard duplicates of a request that did land.
        """
        outcomes = []
        for record in self.store.pending():
            if record.pending_event:
                try:
                    event = parse_event(record.pending_event)
                except ValidationError as e:
                    logger.error("pending_event_unreadable", panel_id=record.panel_id, error=str(e))
                    outcomes.append(SyncOutcome(ok=False, error=str(e), code="payload", panel_id=record.panel_id))
                    continue
                outcomes.append(await self._push(record, event))
            if record.assignment_pending:
                outcomes.append(await self._push_assignment(record))
        return merge_outcomes(outcomes)

    async def _push_assignment(self, record: PanelLocalStatus) -> SyncOutcome:
        assigned_to, assigned_at = record.assigned_to, record.assigned_at
        try:
            await self.client.update_assignment(record.panel_id, assigned_to, assigned_at)
        except ServerError as e:
            self.last_error = f"Assignment: {e.message}"
            logger.warning("assignment_retry_failed", panel_id=record.panel_id, code=e.code, error=e.message)
            return SyncOutcome(ok=False, error=self.last_error, code=e.code, panel_id=record.panel_id)
        if (record.assigned_to, record.assigned_at) == (assigned_to, assigned_at):
            record.assignment_pending = False
            record.needs_sync = record.pending_event is not None
            self.store.commit({record.panel_id})
        return SyncOutcome(ok=True, pushed=1, panel_id=record.panel_id)

    # Pull

    async def sync_pull(self) -> SyncOutcome:
        """
        Merge the server's latest combined status into the local store.

        A fetch failure (transport, HTTP status, malformed payload) abandons
        the cycle before anything is written. Otherwise the whole merge lands
        in a single commit; a local database error rolls all of it back.
        """
        try:
            rows = await self.client.fetch_latest_status(self.latest_limit)
        except ServerError as e:
            self.last_error = f"Server read: {e.message}"
            logger.warning("pull_failed", code=e.code, error=e.message)
            return SyncOutcome(ok=False, error=self.last_error, code=e.code)

        try:
            outcome, changed = self._merge_rows(rows)
            self.store.commit(changed)
        except SQLAlchemyError as e:
            # Drop the half-applied merge so a later commit cannot persist it
            self.store.rollback()
            self.last_error = f"Local store: {e}"
            logger.error("pull_merge_failed", rows=len(rows), error=str(e))
            return SyncOutcome(ok=False, error=self.last_error, code="local")

        self.last_error = None
        logger.info(
            "pull_merged",
            rows=len(rows),
            merged=outcome.merged,
            skipped=outcome.skipped,
            reset=outcome.reset,
            changed=len(changed),
        )
        return outcome

    def _merge_rows(self, rows: List[CombinedStatusRow]) -> Tuple[SyncOutcome, Set[str]]:
        now = to_storage(self.clock())
        outcome = SyncOutcome()
        changed: Set[str] = set()
        server_panel_ids: Set[str] = set()

        for row in rows:
            server_panel_ids.add(row.panel_id)
            record = self.store.get_or_create(row.panel_id)
            before = _field_values(record)

            # Assignment is tracked apart from the sync-protected status groups
            record.set_assignment(row.assigned_to, row.assigned_at)

            if record.needs_sync:
                outcome.skipped += 1
            else:
                apply_row_status(record, row)
                outcome.merged += 1

            if _field_values(record) != before or record.last_synced_at is None:
                if not record.needs_sync:
                    record.last_synced_at = now
                changed.add(record.panel_id)

        # Reconcile deletions
        for record in self.store.all():
            if record.needs_sync or record.panel_id in server_panel_ids:
                continue
            before = _field_values(record)
            record.reset_to_todo()
            record.clear_assignment()
            if _field_values(record) != before:
                record.last_synced_at = now
                changed.add(record.panel_id)
                outcome.reset += 1
        return outcome, changed

    async def refresh(self) -> SyncOutcome:
        """Manual refresh: retry unconfirmed writes, then pull."""
        pushed = await self.push_pending()
        pulled = await self.sync_pull()
        return merge_outcomes([pushed, pulled])
