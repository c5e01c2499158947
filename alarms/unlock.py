"""Unlock-gate policy for ringing alarms.

The gate is a pure function of the alarm's required conditions and the signals
collected so far by a ring session. UPI is a penalty marker and never gates
dismissal.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Optional

WALK_STEP_THRESHOLD = 25
GEO_RADIUS_METERS = 200.0
EARTH_RADIUS_METERS = 6_371_000.0


class Unlock(Enum):
    FACE = "Face"
    WALK = "Walk"
    GEO = "Geo"
    UPI = "UPI"


GATING_UNLOCKS = frozenset({Unlock.FACE, Unlock.WALK, Unlock.GEO})


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Longitude out of range: {self.longitude}")


@dataclass(frozen=True)
class UnlockSignals:
    face_confirmed: bool = False
    step_count: int = 0
    geo_confirmed: bool = False


def parse_unlock(value) -> Unlock:
    if isinstance(value, Unlock):
        return value
    text = str(value).strip()
    for unlock in Unlock:
        if unlock.value.lower() == text.lower():
            return unlock
    raise ValueError(f"Unknown unlock condition: {value!r}")


def normalize_unlocks(values: Optional[Iterable]) -> frozenset:
    """Return the unlock set for an alarm; an empty selection means Face."""
    unlocks = frozenset(parse_unlock(v) for v in values or ())
    if not unlocks:
        return frozenset({Unlock.FACE})
    return unlocks


def haversine_distance(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance in meters.

    Treats the Earth as a sphere of radius 6,371,000 m. This is an
    approximation: there is no ellipsoidal correction, so results can be off by
    up to ~0.5% depending on latitude.
    """
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(b.longitude - a.longitude)
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_METERS * c


def within_geofence(position: GeoPoint, target: Optional[GeoPoint]) -> bool:
    if target is None:
        return False
    return haversine_distance(position, target) < GEO_RADIUS_METERS


def satisfied(required: Iterable[Unlock], signals: UnlockSignals) -> bool:
    gating = set(required) & GATING_UNLOCKS
    if Unlock.FACE in gating and not signals.face_confirmed:
        return False
    if Unlock.WALK in gating and signals.step_count < WALK_STEP_THRESHOLD:
        return False
    if Unlock.GEO in gating and not signals.geo_confirmed:
        return False
    return True


def pending_conditions(
    required: Iterable[Unlock],
    signals: UnlockSignals,
    geo_target: Optional[GeoPoint] = None,
) -> Dict[Unlock, str]:
    """Describe every required condition that is still unmet."""
    pending: Dict[Unlock, str] = {}
    gating = set(required) & GATING_UNLOCKS
    if Unlock.FACE in gating and not signals.face_confirmed:
        pending[Unlock.FACE] = "biometric confirmation required"
    if Unlock.WALK in gating and signals.step_count < WALK_STEP_THRESHOLD:
        pending[Unlock.WALK] = f"{signals.step_count}/{WALK_STEP_THRESHOLD} steps"
    if Unlock.GEO in gating and not signals.geo_confirmed:
        if geo_target is None:
            pending[Unlock.GEO] = "no target set"
        else:
            pending[Unlock.GEO] = f"move within {GEO_RADIUS_METERS:.0f} m of the target"
    return pending
