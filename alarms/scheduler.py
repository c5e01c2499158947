from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from time_utils import now_in_tz

from .storage import Alarm
from .wake_events import SchedulingError, WakeRequest

logger = logging.getLogger(__name__)

SNOOZE_MINUTES = 5

__all__ = ["AlarmScheduler", "SNOOZE_MINUTES", "SchedulingError", "next_trigger"]


def next_trigger(hour: int, minute: int, now: datetime) -> datetime:
    """Next instant strictly after ``now`` whose wall-clock time is hour:minute."""
    if not 0 <= hour <= 23 or not 0 <= minute <= 59:
        raise ValueError(f"Invalid time of day {hour}:{minute}")
    trigger = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if trigger <= now:
        trigger = trigger + timedelta(days=1)
    return trigger


class AlarmScheduler:
    def __init__(self, wake_service, now_fn: Optional[Callable[[], datetime]] = None):
        self.wake_service = wake_service
        self._now = now_fn or now_in_tz

    def schedule_next(self, alarm: Alarm) -> datetime:
        trigger = next_trigger(alarm.hour, alarm.minute, self._now())
        self._register(
            WakeRequest(
                alarm_id=alarm.id,
                fire_at=trigger,
                payload=str(alarm.id),
                repeat_daily=True,
            )
        )
        logger.info("Alarm %s scheduled for %s", alarm.id, trigger.isoformat())
        return trigger

    def schedule_snooze(self, alarm: Alarm, minutes: int = SNOOZE_MINUTES) -> datetime:
        fire_at = self._now() + timedelta(minutes=minutes)
        self._register(
            WakeRequest(
                alarm_id=alarm.id,
                fire_at=fire_at,
                payload=str(alarm.id),
                resume_daily_at=None if alarm.is_fallback else (alarm.hour, alarm.minute),
            )
        )
        logger.info("Alarm %s snoozed until %s", alarm.id, fire_at.isoformat())
        return fire_at

    def cancel(self, alarm_id: int) -> None:
        self.wake_service.cancel(alarm_id)

    def _register(self, request: WakeRequest) -> None:
        try:
            self.wake_service.schedule(request)
        except SchedulingError:
            logger.error("Wake event registration refused for alarm %s", request.alarm_id)
            raise
        except Exception as exc:
            logger.error("Wake event registration failed for alarm %s: %s", request.alarm_id, exc)
            raise SchedulingError(str(exc)) from exc
