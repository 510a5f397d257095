"""
Responsibility coordination.
Who is claiming which panel: a mutable, historyless field kept apart from the
append-only event log.
"""
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

import structlog

from ..config import settings
from ..schemas.sync import SyncOutcome
from .local_store import LocalStatusStore
from .server_client import EventLogClient, ServerError
from .time_rules import to_storage, utcnow


logger = structlog.get_logger(__name__)


class ResponsibilityCoordinator:
    def __init__(
        self,
        store: LocalStatusStore,
        client: EventLogClient,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.client = client
        self.clock = clock
        self.last_error: Optional[str] = None

    async def toggle_responsibility(self, panel_id: str, user_name: Optional[str] = None) -> SyncOutcome:
        """
        Release the panel if `user_name` holds it, otherwise claim it (last claim wins).
        `user_name` defaults to the configured device user.

        The claim is applied and stamped locally before the upsert is sent. A
        failed upsert keeps the claim and flags the record for a later retry.
        A concurrent pull can still overwrite the claim before the server has
        it, since pulls always take the server's assignment.
        """
        user_name = user_name or settings.device_user
        if not user_name:
            raise ValueError("toggle_responsibility needs a user name (or DEVICE_USER)")
        now = self.clock()
        record = self.store.get_or_create(panel_id)
        if record.assigned_to == user_name:
            record.clear_assignment()
            action = "released"
        else:
            record.set_assignment(user_name, now)
            action = "claimed"
        record.last_synced_at = to_storage(now)
        self.store.commit({panel_id})

        assigned_to, assigned_at = record.assigned_to, record.assigned_at
        try:
            await self.client.update_assignment(panel_id, assigned_to, assigned_at)
        except ServerError as e:
            record.needs_sync = True
            record.assignment_pending = True
            self.store.commit({panel_id})
            self.last_error = f"Assignment: {e.message}"
            logger.warning("assignment_push_failed", panel_id=panel_id, action=action, code=e.code, error=e.message)
            return SyncOutcome(ok=False, error=self.last_error, code=e.code, panel_id=panel_id)

        if record.assignment_pending and (record.assigned_to, record.assigned_at) == (assigned_to, assigned_at):
            # An earlier failed upsert for this panel is now superseded
            record.assignment_pending = False
            record.needs_sync = record.pending_event is not None
            self.store.commit({panel_id})
        logger.info("assignment_pushed", panel_id=panel_id, action=action, assigned_to=assigned_to)
        return SyncOutcome(ok=True, pushed=1, panel_id=panel_id)

    def panels_by_assignee(self, panel_ids: Optional[Iterable[str]] = None) -> Dict[str, List[str]]:
        """
        Group claimed panels by the person holding them.

        Args:
            panel_ids: Restrict to these panels (default: every local record)

        Returns:
            Dict of assignee name to sorted panel ids, names in alphabetical order
        """
        wanted = set(panel_ids) if panel_ids is not None else None
        grouped: Dict[str, List[str]] = defaultdict(list)
        for record in self.store.all():
            if record.assigned_to is None:
                continue
            if wanted is not None and record.panel_id not in wanted:
                continue
            grouped[record.assigned_to].append(record.panel_id)
        return {name: sorted(grouped[name]) for name in sorted(grouped)}
