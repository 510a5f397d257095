"""
Event log service.
Append-only panel events plus a mutable assignment record per panel.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from ..models.models import CoverEvent, ExtraPanel, PanelAssignment
from ..schemas.events import ExtraPanelCreate, event_to_wire
from .time_rules import ensure_utc, to_storage


logger = structlog.get_logger(__name__)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return ensure_utc(dt).isoformat() if dt else None


def serialize_event(row: CoverEvent) -> Dict[str, Any]:
    return {
        "id": str(row.id),
        "panel_id": row.panel_id,
        "covered_at": _iso(row.covered_at),
        "covered_by": row.covered_by,
        "note": row.note,
        "photo_filename": row.photo_filename,
        "event_type": row.event_type or "covered",
        "absent_reason": row.absent_reason,
    }


def serialize_combined(panel_id: str, event: Optional[CoverEvent], assignment: Optional[PanelAssignment]) -> Dict[str, Any]:
    if event is not None:
        data = serialize_event(event)
    else:
        data = {
            "id": None,
            "panel_id": panel_id,
            "covered_at": None,
            "covered_by": None,
            "note": None,
            "photo_filename": None,
            "event_type": None,
            "absent_reason": None,
        }
    data["assigned_to"] = assignment.assigned_to if assignment else None
    data["assigned_at"] = _iso(assignment.assigned_at) if assignment else None
    return data


def serialize_assignment(row: PanelAssignment) -> Dict[str, Any]:
    return {
        "panel_id": row.panel_id,
        "assigned_to": row.assigned_to,
        "assigned_at": _iso(row.assigned_at),
    }


def serialize_extra_panel(row: ExtraPanel) -> Dict[str, Any]:
    return {
        "id": str(row.id),
        "lat": row.lat,
        "lon": row.lon,
        "title": row.title,
        "subtitle": row.subtitle,
        "created_by": row.created_by,
        "created_at": _iso(row.created_at),
    }


def append_event(db: Session, event) -> Tuple[CoverEvent, bool]:
    """
    Append one event to the log.

    Args:
        db: Database session
        event: A validated event variant (CoveredEvent, AbsentEvent, ...)

    Returns:
        Tuple of (stored row, created). A repeated id returns the stored row
        untouched with created=False, so client retries never duplicate history.
    """
    existing = db.get(CoverEvent, event.id)
    if existing is not None:
        logger.info("event_duplicate_ignored", event_id=str(event.id), panel_id=event.panel_id)
        return existing, False

    wire = event_to_wire(event)
    row = CoverEvent(
        id=event.id,
        panel_id=wire["panel_id"],
        covered_at=to_storage(event.covered_at),
        covered_by=wire["covered_by"],
        note=wire["note"],
        photo_filename=wire["photo_filename"],
        event_type=wire["event_type"],
        absent_reason=wire["absent_reason"],
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent request with the same id committed first
        db.rollback()
        existing = db.get(CoverEvent, event.id)
        if existing is None:
            raise
        logger.info("event_duplicate_ignored", event_id=str(event.id), panel_id=event.panel_id, race=True)
        return existing, False
    db.refresh(row)
    logger.info("event_appended", event_id=str(row.id), panel_id=row.panel_id, event_type=row.event_type)
    return row, True


def recent_events(db: Session, limit: int = 80) -> List[CoverEvent]:
    """Raw event feed, most recent first."""
    return (
        db.query(CoverEvent)
        .order_by(CoverEvent.covered_at.desc(), CoverEvent.received_at.desc())
        .limit(limit)
        .all()
    )


def latest_combined_status(db: Session, limit: int = 5000) -> List[Dict[str, Any]]:
    """
    Latest event per panel joined with the current assignment.

    Panels that only carry an assignment are included with null event fields.
    Rows are ordered by event time descending, nulls last.

    Args:
        db: Database session
        limit: Maximum number of rows

    Returns:
        List of flat row dicts
    """
    rank = func.row_number().over(
        partition_by=CoverEvent.panel_id,
        order_by=(CoverEvent.covered_at.desc(), CoverEvent.received_at.desc()),
    ).label("rn")
    ranked = select(CoverEvent, rank).subquery()
    latest = aliased(CoverEvent, ranked)
    events = db.execute(select(latest).where(ranked.c.rn == 1)).scalars().all()

    by_panel: Dict[str, CoverEvent] = {ev.panel_id: ev for ev in events}
    assignments: Dict[str, PanelAssignment] = {a.panel_id: a for a in db.query(PanelAssignment).all()}

    panel_ids = set(by_panel)
    panel_ids.update(pid for pid, a in assignments.items() if a.assigned_to is not None)

    def sort_key(pid: str):
        ev = by_panel.get(pid)
        if ev is None:
            return (1, 0.0, pid)
        return (0, -ensure_utc(ev.covered_at).timestamp(), pid)

    ordered = sorted(panel_ids, key=sort_key)[:limit]
    return [serialize_combined(pid, by_panel.get(pid), assignments.get(pid)) for pid in ordered]


def upsert_assignment(db: Session, panel_id: str, assigned_to: Optional[str], assigned_at: Optional[datetime]) -> PanelAssignment:
    """Last write wins; no history is kept."""
    row = db.get(PanelAssignment, panel_id)
    if row is None:
        row = PanelAssignment(panel_id=panel_id)
        db.add(row)
    row.assigned_to = assigned_to
    row.assigned_at = to_storage(assigned_at)
    db.commit()
    db.refresh(row)
    logger.info("assignment_upserted", panel_id=panel_id, assigned_to=assigned_to)
    return row


def list_extra_panels(db: Session, limit: int = 5000) -> List[ExtraPanel]:
    return db.query(ExtraPanel).order_by(ExtraPanel.created_at.desc()).limit(limit).all()


def create_extra_panel(db: Session, payload: ExtraPanelCreate) -> ExtraPanel:
    row = ExtraPanel(
        lat=payload.lat,
        lon=payload.lon,
        title=(payload.title or "").strip() or None,
        subtitle=(payload.subtitle or "").strip() or None,
        created_by=payload.created_by,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("extra_panel_created", panel_id=row.panel_id, created_by=row.created_by)
    return row
