from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from time_utils import now_in_tz

from .storage import Alarm, AlarmStore, fallback_alarm

logger = logging.getLogger(__name__)

_INT_RE = re.compile(r"^-?\d+$")


@dataclass(frozen=True)
class WakeResolution:
    alarm: Alarm
    matched: bool
    payload_id: Optional[int]


def parse_payload(payload) -> Optional[int]:
    if payload is None or isinstance(payload, bool):
        return None
    if isinstance(payload, int):
        return payload
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError:
            return None
    text = str(payload).strip()
    if not _INT_RE.match(text):
        return None
    return int(text)


class WakeRouter:
    """Maps an inbound wake payload to the alarm it was scheduled for."""

    def __init__(self, store: AlarmStore, now_fn: Optional[Callable[[], datetime]] = None):
        self.store = store
        self._now = now_fn or now_in_tz

    def resolve(self, payload) -> Alarm:
        return self.route(payload).alarm

    def route(self, payload) -> WakeResolution:
        payload_id = parse_payload(payload)
        alarm = self.store.get_by_id(payload_id) if payload_id is not None else None
        if alarm is not None:
            return WakeResolution(alarm=alarm, matched=True, payload_id=payload_id)

        now = self._now()
        logger.error(
            "Wake payload %r did not resolve to a stored alarm; ringing fallback alarm",
            payload,
        )
        return WakeResolution(
            alarm=fallback_alarm(now.hour, now.minute),
            matched=False,
            payload_id=payload_id,
        )
