"""Local stand-in for the platform's exact wake-event subsystem.

Keeps at most one registration per alarm id, persists registrations so they
survive a restart, and delivers due payloads from a background thread.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from threading import Event, Lock, Thread
from typing import Callable, Dict, List, Optional, Tuple

from time_utils import now_in_tz

from .storage import write_json_atomic

logger = logging.getLogger(__name__)

WakeCallback = Callable[[str], None]


class SchedulingError(RuntimeError):
    """The wake subsystem refused or failed to register a wake event."""


@dataclass(frozen=True)
class WakeRequest:
    alarm_id: int
    fire_at: datetime
    payload: str
    repeat_daily: bool = False
    exact: bool = True
    allow_while_idle: bool = True
    resume_daily_at: Optional[Tuple[int, int]] = None

    def to_dict(self) -> dict:
        return {
            "alarm_id": self.alarm_id,
            "fire_at": self.fire_at.isoformat(),
            "payload": self.payload,
            "repeat_daily": self.repeat_daily,
            "exact": self.exact,
            "allow_while_idle": self.allow_while_idle,
            "resume_daily_at": list(self.resume_daily_at) if self.resume_daily_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WakeRequest":
        resume = data.get("resume_daily_at")
        return cls(
            alarm_id=int(data["alarm_id"]),
            fire_at=datetime.fromisoformat(data["fire_at"]),
            payload=str(data.get("payload", data["alarm_id"])),
            repeat_daily=bool(data.get("repeat_daily", False)),
            exact=bool(data.get("exact", True)),
            allow_while_idle=bool(data.get("allow_while_idle", True)),
            resume_daily_at=(int(resume[0]), int(resume[1])) if resume else None,
        )


class LocalWakeEventService:
    def __init__(
        self,
        storage_path: Path,
        check_interval: float = 0.8,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.storage_path = storage_path
        self.check_interval = max(0.05, check_interval)
        self._now = now_fn or now_in_tz
        self._pending: Dict[int, WakeRequest] = {}
        self._lock = Lock()
        self._stop_event = Event()
        self._thread: Optional[Thread] = None
        self._on_wake: Optional[WakeCallback] = None
        self._closed = False

    def start(self, on_wake: WakeCallback) -> None:
        self._on_wake = on_wake
        loaded = self._load()
        with self._lock:
            self._pending = {r.alarm_id: r for r in loaded}
            self._closed = False
        logger.info("Loaded %s wake registrations from %s", len(loaded), self.storage_path)
        self._stop_event.clear()
        self._thread = Thread(target=self._loop, name="wake-events", daemon=True)
        self._thread.start()

    def shutdown(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2)
        self._thread = None
        with self._lock:
            self._closed = True

    def schedule(self, request: WakeRequest) -> None:
        if request.fire_at.tzinfo is None:
            raise SchedulingError(f"Wake time for alarm {request.alarm_id} must be timezone-aware")
        if not request.exact:
            raise SchedulingError("Only exact wake events are supported")
        with self._lock:
            if self._closed:
                raise SchedulingError("Wake event service is shut down")
            previous = self._pending.get(request.alarm_id)
            self._pending[request.alarm_id] = request
            try:
                self._persist_locked()
            except OSError as exc:
                if previous is None:
                    self._pending.pop(request.alarm_id, None)
                else:
                    self._pending[request.alarm_id] = previous
                raise SchedulingError(f"Could not persist wake event: {exc}") from exc
        logger.info(
            "Wake event %s set for %s (daily=%s)",
            request.alarm_id,
            request.fire_at.isoformat(),
            request.repeat_daily,
        )

    def cancel(self, alarm_id: int) -> bool:
        with self._lock:
            removed = self._pending.pop(alarm_id, None)
            if removed is None:
                return False
            try:
                self._persist_locked()
            except OSError as exc:
                self._pending[alarm_id] = removed
                raise SchedulingError(f"Could not persist wake event cancellation: {exc}") from exc
        logger.info("Wake event %s cancelled", alarm_id)
        return True

    def get(self, alarm_id: int) -> Optional[WakeRequest]:
        with self._lock:
            return self._pending.get(alarm_id)

    def pending(self) -> List[WakeRequest]:
        with self._lock:
            return sorted(self._pending.values(), key=lambda r: r.fire_at)

    def poll(self, now: Optional[datetime] = None) -> List[WakeRequest]:
        """Pop every due request, re-arming recurring ones, and return them."""
        now = now or self._now()
        due: List[WakeRequest] = []
        with self._lock:
            for request in sorted(self._pending.values(), key=lambda r: r.fire_at):
                if request.fire_at > now:
                    continue
                due.append(request)
                follow_up = _follow_up(request, now)
                if follow_up is None:
                    del self._pending[request.alarm_id]
                else:
                    self._pending[request.alarm_id] = follow_up
            if due:
                self._persist_locked()
        return due

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            for request in self.poll():
                self._deliver(request)
            self._stop_event.wait(self.check_interval)

    def _deliver(self, request: WakeRequest) -> None:
        logger.info("Wake event %s fired (scheduled %s)", request.alarm_id, request.fire_at.isoformat())
        if not self._on_wake:
            return
        try:
            self._on_wake(request.payload)
        except Exception:
            logger.error("Wake delivery for %s failed", request.alarm_id, exc_info=True)

    def _persist_locked(self) -> None:
        write_json_atomic(
            self.storage_path,
            {"version": 1, "events": [r.to_dict() for r in self._pending.values()]},
        )

    def _load(self) -> List[WakeRequest]:
        if not self.storage_path.exists():
            return []
        try:
            with self.storage_path.open("r", encoding="utf-8") as f:
                payload = json.load(f)
        except Exception as exc:
            logger.error("Failed to load wake events from %s: %s", self.storage_path, exc)
            return []
        requests: List[WakeRequest] = []
        for item in (payload or {}).get("events", []):
            try:
                requests.append(WakeRequest.from_dict(item))
            except Exception as exc:
                logger.warning("Skipping wake event due to parse error: %s", exc)
        return requests


def _follow_up(request: WakeRequest, now: datetime) -> Optional[WakeRequest]:
    from .scheduler import next_trigger  # scheduler imports this module at load time

    if request.repeat_daily:
        local_fire = request.fire_at.astimezone(now.tzinfo)
        fire_at = next_trigger(local_fire.hour, local_fire.minute, now)
        return replace(request, fire_at=fire_at)
    if request.resume_daily_at:
        hour, minute = request.resume_daily_at
        return replace(
            request,
            fire_at=next_trigger(hour, minute, now),
            repeat_daily=True,
            resume_daily_at=None,
        )
    return None
