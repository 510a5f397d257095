"""
Status resolver.
Derives the display bucket of a panel from its local record. No side effects.
"""
from collections import Counter
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..models.local import PanelLocalStatus
from .time_rules import ensure_utc, fresh_window, is_fresh, utcnow


class Bucket(str, Enum):
    absent = "absent"
    overposted = "overposted"
    todo = "todo"
    up_to_date = "up_to_date"  # covered less than 24h ago
    old = "old"  # covered 24h ago or more, needs redoing
    pending_sync = "pending_sync"


Predicate = Callable[[PanelLocalStatus, datetime, timedelta], bool]

# Evaluated top-down, first match wins. Order matters: an unconfirmed local
# write masks everything, and absent/overposted outrank freshness.
RULES: List[Tuple[Predicate, Bucket]] = [
    (lambda r, now, window: bool(r.needs_sync), Bucket.pending_sync),
    (lambda r, now, window: bool(r.is_absent), Bucket.absent),
    (lambda r, now, window: bool(r.is_overposted), Bucket.overposted),
    (lambda r, now, window: r.last_covered_at is None, Bucket.todo),
    (lambda r, now, window: is_fresh(r.last_covered_at, now, window), Bucket.up_to_date),
    (lambda r, now, window: True, Bucket.old),
]


def resolve(
    record: Optional[PanelLocalStatus],
    now: Optional[datetime] = None,
    window: Optional[timedelta] = None,
) -> Bucket:
    """
    Compute the bucket of one panel.

    Args:
        record: Local record, or None for a panel never seen on this device
        now: Reference time (defaults to the current UTC time)
        window: Freshness window (default from settings)

    Returns:
        The first bucket whose rule matches
    """
    if record is None:
        return Bucket.todo
    if now is None:
        now = utcnow()
    if window is None:
        window = fresh_window()
    for predicate, bucket in RULES:
        if predicate(record, now, window):
            return bucket
    return Bucket.old


def last_activity_at(record: Optional[PanelLocalStatus]) -> Optional[datetime]:
    """Timestamp of the active state: absent, then overposted, then covered."""
    if record is None:
        return None
    if record.is_absent and record.absent_at:
        return ensure_utc(record.absent_at)
    if record.is_overposted and record.overposted_at:
        return ensure_utc(record.overposted_at)
    return ensure_utc(record.last_covered_at)


def bucket_counts(
    records: Iterable[Optional[PanelLocalStatus]],
    now: Optional[datetime] = None,
    window: Optional[timedelta] = None,
) -> Dict[Bucket, int]:
    now = now or utcnow()
    counts = Counter(resolve(r, now, window) for r in records)
    return {bucket: counts.get(bucket, 0) for bucket in Bucket}


def needs_priority_tour(counts: Dict[Bucket, int], threshold: int = 20) -> bool:
    """More than `threshold` panels needing a redo calls for a dedicated tour."""
    return counts.get(Bucket.old, 0) > threshold
