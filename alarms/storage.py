from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Iterable, List, Optional

from .unlock import GeoPoint, Unlock, normalize_unlocks

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
FALLBACK_ALARM_ID = -1


class ToneKind(Enum):
    DEFAULT = "Default"
    CUSTOM = "Custom"
    SELF_RECORDED = "SelfRecorded"
    SHUFFLE = "Shuffle"

    @property
    def needs_ref(self) -> bool:
        return self in (ToneKind.CUSTOM, ToneKind.SELF_RECORDED)


_TONE_ALIASES = {
    "default": ToneKind.DEFAULT,
    "custom": ToneKind.CUSTOM,
    "selfrecorded": ToneKind.SELF_RECORDED,
    "self record": ToneKind.SELF_RECORDED,
    "self": ToneKind.SELF_RECORDED,
    "shuffle": ToneKind.SHUFFLE,
}


def parse_tone(value) -> ToneKind:
    if isinstance(value, ToneKind):
        return value
    tone = _TONE_ALIASES.get(str(value).strip().lower())
    if tone is None:
        raise ValueError(f"Unknown tone kind: {value!r}")
    return tone


@dataclass(frozen=True)
class Alarm:
    id: int
    hour: int
    minute: int
    tone: ToneKind = ToneKind.DEFAULT
    tone_ref: Optional[str] = None
    unlocks: frozenset = field(default_factory=lambda: frozenset({Unlock.FACE}))
    enabled: bool = True
    geo_target: Optional[GeoPoint] = None

    def __post_init__(self) -> None:
        if not 0 <= self.hour <= 23:
            raise ValueError(f"Hour out of range: {self.hour}")
        if not 0 <= self.minute <= 59:
            raise ValueError(f"Minute out of range: {self.minute}")
        object.__setattr__(self, "unlocks", normalize_unlocks(self.unlocks))

    @property
    def is_fallback(self) -> bool:
        return self.id == FALLBACK_ALARM_ID

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "hour": self.hour,
            "minute": self.minute,
            "tone": self.tone.value,
            "tone_ref": self.tone_ref,
            "unlocks": sorted(u.value for u in self.unlocks),
            "enabled": self.enabled,
            "geo_target": (
                {"lat": self.geo_target.latitude, "lng": self.geo_target.longitude}
                if self.geo_target
                else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Alarm":
        if "id" not in data or "hour" not in data or "minute" not in data:
            raise ValueError("Alarm payload missing id/hour/minute fields")
        tone_raw = data.get("tone") or data.get("ringtoneType") or ToneKind.DEFAULT.value
        tone_ref = data.get("tone_ref", data.get("customPath"))
        unlocks_raw = data.get("unlocks") or []
        return cls(
            id=_as_int(data["id"], "id"),
            hour=_as_int(data["hour"], "hour"),
            minute=_as_int(data["minute"], "minute"),
            tone=parse_tone(tone_raw),
            tone_ref=str(tone_ref) if tone_ref else None,
            unlocks=normalize_unlocks(unlocks_raw),
            enabled=bool(data.get("enabled", True)),
            geo_target=_parse_geo(data),
        )


def fallback_alarm(hour: int, minute: int) -> Alarm:
    return Alarm(id=FALLBACK_ALARM_ID, hour=hour, minute=minute)


def new_alarm_id(taken: Iterable[int]) -> int:
    used = set(taken)
    candidate = int(time.time() * 1000) % (1 << 31)
    while candidate in used or candidate == FALLBACK_ALARM_ID:
        candidate = (candidate + 1) % (1 << 31)
    return candidate


def _as_int(value, name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Field {name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Field {name} must be an integer") from exc


def _parse_geo(data: dict) -> Optional[GeoPoint]:
    target = data.get("geo_target")
    if isinstance(target, dict) and target.get("lat") is not None and target.get("lng") is not None:
        return GeoPoint(float(target["lat"]), float(target["lng"]))
    # pre-versioned records stored the target as two flat fields
    if data.get("geoLat") is not None and data.get("geoLng") is not None:
        return GeoPoint(float(data["geoLat"]), float(data["geoLng"]))
    return None


def load_alarms(path: Path) -> List[Alarm]:
    if not path.exists():
        return []
    try:
        with path.open("r", encoding="utf-8") as f:
            payload = json.load(f)
    except Exception as exc:
        logger.error("Failed to load alarms from %s: %s", path, exc)
        return []
    if isinstance(payload, dict):
        version = payload.get("version")
        if version != SCHEMA_VERSION:
            logger.error("Unsupported alarm schema version %r in %s", version, path)
            return []
        items = payload.get("alarms") or []
    else:
        items = payload or []
    alarms: List[Alarm] = []
    seen = set()
    for item in items:
        try:
            alarm = Alarm.from_dict(item)
        except Exception as exc:
            logger.warning("Skipping alarm item due to parse error: %s", exc)
            continue
        if alarm.id in seen:
            logger.warning("Skipping duplicate alarm id %s", alarm.id)
            continue
        seen.add(alarm.id)
        alarms.append(alarm)
    return alarms


def save_alarms(path: Path, alarms: List[Alarm]) -> None:
    write_json_atomic(path, {"version": SCHEMA_VERSION, "alarms": [a.to_dict() for a in alarms]})


def write_json_atomic(path: Path, payload) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
    os.replace(tmp, path)


class AlarmStore:
    """Durable keyed collection of alarms with replace-all writes."""

    def __init__(self, path: Path):
        self.path = path
        self._alarms: List[Alarm] = []
        self._lock = Lock()

    def load(self) -> List[Alarm]:
        alarms = load_alarms(self.path)
        with self._lock:
            self._alarms = alarms
        logger.info("Loaded %s alarms from %s", len(alarms), self.path)
        return list(alarms)

    def list(self) -> List[Alarm]:
        with self._lock:
            return list(self._alarms)

    def list_enabled(self) -> List[Alarm]:
        with self._lock:
            return [a for a in self._alarms if a.enabled]

    def get_by_id(self, alarm_id: int) -> Optional[Alarm]:
        with self._lock:
            for alarm in self._alarms:
                if alarm.id == alarm_id:
                    return alarm
        return None

    def replace_all(self, alarms: Iterable[Alarm]) -> None:
        alarms = list(alarms)
        ids = [a.id for a in alarms]
        if len(ids) != len(set(ids)):
            raise ValueError("Alarm ids must be unique")
        with self._lock:
            save_alarms(self.path, alarms)
            self._alarms = alarms
