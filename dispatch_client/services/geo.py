"""
Heartbeat throttle: decides whether a location sample is worth reporting.
"""
from math import radians, sin, cos, sqrt, atan2
from typing import Optional

from dispatch_client.schemas.schemas import Location

EARTH_RADIUS_MILES = 3959
METERS_PER_MILE = 1609.34

HEARTBEAT_INTERVAL_MS = 20_000
MIN_MOVE_METERS = 100.0


def haversine_miles(a: Location, b: Location) -> float:
    """Great-circle distance in miles."""
    phi1, phi2 = radians(a.latitude), radians(b.latitude)
    dphi = radians(b.latitude - a.latitude)
    dlambda = radians(b.longitude - a.longitude)
    h = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * atan2(sqrt(h), sqrt(1 - h))


def distance_meters(a: Location, b: Location) -> float:
    return haversine_miles(a, b) * METERS_PER_MILE


def should_emit_heartbeat(
    previous: Optional[Location],
    next_location: Location,
    last_heartbeat_at: Optional[float],
    now: float,
    *,
    interval_ms: float = HEARTBEAT_INTERVAL_MS,
    min_move_meters: float = MIN_MOVE_METERS,
) -> bool:
    """
    True for the very first sample, otherwise only when at least
    `interval_ms` has passed since the last heartbeat AND the driver moved
    at least `min_move_meters`. A `last_heartbeat_at` of None means no
    heartbeat has been sent yet.
    """
    if previous is None:
        return True
    if last_heartbeat_at is not None and now - last_heartbeat_at < interval_ms:
        return False
    return distance_meters(previous, next_location) >= min_move_meters
