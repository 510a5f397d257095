"""
Device-side cache of panel status.

One row per panel. The covered, absent and overposted groups are mutually
exclusive: every transition goes through the mark_* / reset_to_todo methods,
which clear the other two groups.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, Boolean, Text, JSON
from sqlalchemy.orm import Mapped, mapped_column

from ..db import LocalBase
from ..services.time_rules import to_storage


STATUS_FIELDS = (
    "last_covered_at",
    "last_covered_by",
    "note",
    "photo_filename",
    "is_absent",
    "absent_at",
    "absent_by",
    "absent_reason",
    "is_overposted",
    "overposted_at",
    "overposted_by",
    "overposted_note",
)

ASSIGNMENT_FIELDS = ("assigned_to", "assigned_at")


class PanelLocalStatus(LocalBase):
    __tablename__ = "panel_local_status"

    panel_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    # Covered
    last_covered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_covered_by: Mapped[Optional[str]] = mapped_column(String(255))
    note: Mapped[Optional[str]] = mapped_column(Text)
    photo_filename: Mapped[Optional[str]] = mapped_column(String(255))

    # Absent
    is_absent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    absent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    absent_by: Mapped[Optional[str]] = mapped_column(String(255))
    absent_reason: Mapped[Optional[str]] = mapped_column(Text)

    # Overposted by the opposing team
    is_overposted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    overposted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    overposted_by: Mapped[Optional[str]] = mapped_column(String(255))
    overposted_note: Mapped[Optional[str]] = mapped_column(Text)

    # Responsibility
    assigned_to: Mapped[Optional[str]] = mapped_column(String(255))
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Sync
    needs_sync: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    # Wire form of the unconfirmed event; its id is reused on every retry
    pending_event: Mapped[Optional[dict]] = mapped_column(JSON)
    assignment_pending: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __init__(self, panel_id: str, **kwargs):
        kwargs.setdefault("is_absent", False)
        kwargs.setdefault("is_overposted", False)
        kwargs.setdefault("needs_sync", False)
        kwargs.setdefault("assignment_pending", False)
        super().__init__(panel_id=panel_id, **kwargs)

    @property
    def pending_event_id(self) -> Optional[str]:
        if not self.pending_event:
            return None
        return self.pending_event.get("id")

    def __repr__(self) -> str:
        return f"<PanelLocalStatus {self.panel_id} state={self.active_state} needs_sync={self.needs_sync}>"

    # -- group helpers -----------------------------------------------------

    def _clear_covered(self) -> None:
        self.last_covered_at = None
        self.last_covered_by = None
        self.note = None
        self.photo_filename = None

    def _clear_absent(self) -> None:
        self.is_absent = False
        self.absent_at = None
        self.absent_by = None
        self.absent_reason = None

    def _clear_overposted(self) -> None:
        self.is_overposted = False
        self.overposted_at = None
        self.overposted_by = None
        self.overposted_note = None

    # -- transitions -------------------------------------------------------

    def mark_covered(self, at: datetime, by: str, note: Optional[str] = None, photo_filename: Optional[str] = None) -> None:
        self._clear_absent()
        self._clear_overposted()
        self.last_covered_at = to_storage(at)
        self.last_covered_by = by
        self.note = note
        self.photo_filename = photo_filename

    def mark_absent(self, at: datetime, by: str, reason: Optional[str] = None) -> None:
        self._clear_covered()
        self._clear_overposted()
        self.is_absent = True
        self.absent_at = to_storage(at)
        self.absent_by = by
        self.absent_reason = reason

    def mark_overposted(self, at: datetime, by: str, note: Optional[str] = None) -> None:
        self._clear_covered()
        self._clear_absent()
        self.is_overposted = True
        self.overposted_at = to_storage(at)
        self.overposted_by = by
        self.overposted_note = note

    def reset_to_todo(self) -> None:
        self._clear_covered()
        self._clear_absent()
        self._clear_overposted()

    def set_assignment(self, assigned_to: Optional[str], assigned_at: Optional[datetime]) -> None:
        self.assigned_to = assigned_to
        self.assigned_at = to_storage(assigned_at)

    def clear_assignment(self) -> None:
        self.set_assignment(None, None)

    # -- views ---------------------------------------------------------------

    @property
    def active_state(self) -> str:
        if self.is_absent:
            return "absent"
        if self.is_overposted:
            return "overposted"
        if self.last_covered_at is not None:
            return "covered"
        return "todo"

    def snapshot(self) -> dict:
        """Plain dict of every persisted field, for comparisons and change events."""
        data = {"panel_id": self.panel_id}
        for name in STATUS_FIELDS + ASSIGNMENT_FIELDS:
            data[name] = getattr(self, name)
        data["needs_sync"] = self.needs_sync
        data["last_synced_at"] = self.last_synced_at
        data["pending_event"] = dict(self.pending_event) if self.pending_event else None
        data["assignment_pending"] = self.assignment_pending
        return data
