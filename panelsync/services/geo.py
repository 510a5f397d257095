"""
Tour planning helpers.
Uses Haversine formula to pick the nearest panels that still need a visit.
"""
import math
from datetime import datetime, timedelta
from typing import Iterable, List, Mapping, Optional

from ..config import settings
from ..models.local import PanelLocalStatus
from ..schemas.panels import PanelLocation, TourCandidate
from .time_rules import fresh_window, is_fresh


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great circle distance between two points on Earth.

    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point

    Returns:
        Distance in meters
    """
    # Earth radius in meters
    R = 6371000

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2 +
        math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return R * c


def needs_visit(record: Optional[PanelLocalStatus], now: datetime, window: Optional[timedelta] = None) -> bool:
    """Not absent, and either never covered or covered outside the freshness window."""
    if record is None:
        return True
    if record.is_absent:
        return False
    if record.last_covered_at is None:
        return True
    return not is_fresh(record.last_covered_at, now, window or fresh_window())


def closest_candidates(
    lat: float,
    lon: float,
    panels: Iterable[PanelLocation],
    records: Mapping[str, PanelLocalStatus],
    now: datetime,
    min_distance_m: Optional[float] = None,
    window: Optional[timedelta] = None,
) -> List[TourCandidate]:
    """
    Panels worth visiting next, nearest first.

    Panels closer than min_distance_m are skipped: the volunteer is already there.

    Args:
        lat: Current latitude
        lon: Current longitude
        panels: Known panel locations
        records: Local records keyed by panel id
        now: Reference time
        min_distance_m: Skip radius (default from settings)
        window: Freshness window (default from settings)
    """
    if min_distance_m is None:
        min_distance_m = settings.tour_min_distance_m

    candidates = []
    for panel in panels:
        if not needs_visit(records.get(panel.panel_id), now, window):
            continue
        distance = haversine_distance(lat, lon, panel.lat, panel.lon)
        if distance < min_distance_m:
            continue
        candidates.append(TourCandidate(panel=panel, distance_m=distance))

    candidates.sort(key=lambda c: c.distance_m)
    return candidates


def next_candidate(
    lat: Optional[float],
    lon: Optional[float],
    panels: Iterable[PanelLocation],
    records: Mapping[str, PanelLocalStatus],
    now: datetime,
) -> Optional[TourCandidate]:
    if lat is None or lon is None:
        return None
    candidates = closest_candidates(lat, lon, panels, records, now)
    return candidates[0] if candidates else None
