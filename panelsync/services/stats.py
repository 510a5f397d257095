"""
Coverage statistics.
Progress bar, dashboard and back-office counters computed from local records
and loaded event history.
"""
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..models.local import PanelLocalStatus
from .time_rules import ensure_utc, fresh_window, is_fresh, start_of_local_day


def coverage_summary(
    panel_ids: Iterable[str],
    records: Mapping[str, PanelLocalStatus],
    now: datetime,
    window: Optional[timedelta] = None,
) -> Dict[str, Any]:
    """
    Share of active panels covered within the freshness window.

    Absent panels are left out of the denominator; absent and overposted
    panels never count as up to date.

    Returns:
        Dict with total, absent_now, up_to_date, effective_total, progress (0..1)
    """
    window = window or fresh_window()
    ids = list(panel_ids)
    absent_now = 0
    up_to_date = 0
    for panel_id in ids:
        record = records.get(panel_id)
        if record is None:
            continue
        if record.is_absent:
            absent_now += 1
            continue
        if record.is_overposted:
            continue
        if record.last_covered_at is not None and is_fresh(record.last_covered_at, now, window):
            up_to_date += 1

    effective_total = max(len(ids) - absent_now, 1)
    return {
        "total": len(ids),
        "absent_now": absent_now,
        "up_to_date": up_to_date,
        "effective_total": effective_total,
        "progress": up_to_date / effective_total,
    }


def dashboard_summary(events: Iterable[Any], now: datetime, timezone_str: Optional[str] = None) -> Dict[str, Any]:
    """
    Counters over a loaded slice of event history.

    Args:
        events: Event variants (CoveredEvent, AbsentEvent, ...)
        now: Reference time
        timezone_str: Timezone that decides where "today" starts

    Returns:
        Dict with covered_today, active_people_today, top_people_today,
        distinct_panels, absent_all_time
    """
    start = start_of_local_day(now, timezone_str)
    events = list(events)
    today = [ev for ev in events if ensure_utc(ev.covered_at) >= start]
    covered_today = [ev for ev in today if ev.event_type == "covered"]

    # Everyone who reported anything today ranks, whatever the event type
    per_person = Counter(ev.covered_by for ev in today)
    top: List[Dict[str, Any]] = [
        {"name": name, "count": count}
        for name, count in sorted(per_person.items(), key=lambda item: (-item[1], item[0]))
    ]
    return {
        "covered_today": len(covered_today),
        "active_people_today": len({ev.covered_by for ev in today}),
        "top_people_today": top,
        "distinct_panels": len({ev.panel_id for ev in events}),
        "absent_all_time": len({ev.panel_id for ev in events if ev.event_type == "absent"}),
    }


def assignment_summary(panel_ids: Iterable[str], records: Mapping[str, PanelLocalStatus]) -> Dict[str, int]:
    ids = list(panel_ids)
    assigned = sum(1 for pid in ids if records.get(pid) is not None and records[pid].assigned_to is not None)
    return {"assigned": assigned, "remaining": len(ids) - assigned}
