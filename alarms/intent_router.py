from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Optional

from .manager import AlarmManager
from .parser import parse_alarm_command
from .scheduler import SchedulingError, next_trigger
from .session import DismissRejected, InvalidTransition, RingSession
from .settings import AlarmSettings, load_settings, save_settings
from .storage import Alarm
from .unlock import Unlock

logger = logging.getLogger(__name__)


@dataclass
class IntentResult:
    handled: bool
    response_text: Optional[str] = None
    action: Optional[str] = None


class IntentRouter:
    def __init__(self, alarm_manager: AlarmManager, settings_path: Path):
        self.alarm_manager = alarm_manager
        self.settings_path = settings_path

    def handle_text(self, text: str, now: datetime) -> Optional[IntentResult]:
        parsed = parse_alarm_command(text)
        if not parsed:
            return None
        logger.info("Alarm command: %s", parsed.action)
        settings = load_settings(self.settings_path)

        if parsed.action == "unknown":
            return IntentResult(handled=True, response_text=parsed.error, action=parsed.action)

        if parsed.action == "list":
            alarms = self.alarm_manager.list_alarms()
            if not alarms:
                resp = "No alarms. Add one with 'add HH:MM'."
            else:
                parts = [f"{idx}) {describe_alarm(alarm, settings)}" for idx, alarm in enumerate(alarms, start=1)]
                resp = "Your alarms:\n" + "\n".join(parts)
            return IntentResult(handled=True, response_text=resp, action="list")

        if parsed.action == "add":
            try:
                alarm = self.alarm_manager.create_alarm(
                    parsed.hour,
                    parsed.minute,
                    tone=parsed.tone,
                    tone_ref=parsed.tone_ref,
                    unlocks=parsed.unlocks,
                    geo_target=parsed.geo_target,
                )
            except ValueError as exc:
                return IntentResult(handled=True, response_text=str(exc), action="add")
            except SchedulingError as exc:
                return IntentResult(
                    handled=True,
                    response_text=f"Alarm saved but could not be scheduled: {exc}",
                    action="add",
                )
            trigger = next_trigger(alarm.hour, alarm.minute, now)
            resp = f"Alarm set for {format_alarm_time(trigger, now, settings.use_24_hour_clock)}."
            if alarm.geo_target is None and Unlock.GEO in alarm.unlocks:
                resp += " No geo target set: this alarm can only be snoozed."
            return IntentResult(handled=True, response_text=resp, action="add")

        if parsed.action in ("toggle", "delete"):
            alarm = self._alarm_by_index(parsed.index)
            if alarm is None:
                return IntentResult(handled=True, response_text="No such alarm.", action=parsed.action)
            try:
                if parsed.action == "toggle":
                    updated = self.alarm_manager.toggle_enabled(alarm.id)
                    state = "on" if updated and updated.enabled else "off"
                    resp = f"Alarm {format_clock(alarm, settings)} is now {state}."
                else:
                    self.alarm_manager.delete_alarm(alarm.id)
                    resp = f"Deleted alarm {format_clock(alarm, settings)}."
            except SchedulingError as exc:
                resp = f"Could not schedule the alarm: {exc}"
            return IntentResult(handled=True, response_text=resp, action=parsed.action)

        if parsed.action == "settings":
            updated = replace(settings, **parsed.settings)
            save_settings(self.settings_path, updated)
            return IntentResult(handled=True, response_text=describe_settings(updated), action="settings")

        session = self.alarm_manager.active_session()
        if session is None:
            return IntentResult(handled=True, response_text="Nothing is ringing.", action=parsed.action)
        return self._handle_session(session, parsed, settings, now)

    def _handle_session(self, session: RingSession, parsed, settings: AlarmSettings, now: datetime) -> IntentResult:
        action = parsed.action
        try:
            if action == "face":
                session.confirm_face()
            elif action == "steps":
                session.record_steps(parsed.steps)
            elif action == "geo":
                if not session.recheck_geo(parsed.position) and session.alarm.geo_target is not None:
                    return IntentResult(handled=True, response_text="Still too far from the target.", action=action)
            elif action == "snooze":
                fire_at = session.snooze()
                return IntentResult(
                    handled=True,
                    response_text=f"Snoozed until {format_alarm_time(fire_at, now, settings.use_24_hour_clock)}.",
                    action=action,
                )
            elif action == "dismiss":
                session.dismiss()
                return IntentResult(handled=True, response_text="Alarm dismissed. Good morning!", action=action)
        except DismissRejected as exc:
            return IntentResult(handled=True, response_text=f"Not yet: {exc}", action=action)
        except (InvalidTransition, SchedulingError) as exc:
            return IntentResult(handled=True, response_text=str(exc), action=action)
        return IntentResult(handled=True, response_text=describe_session(session), action=action)

    def _alarm_by_index(self, index: Optional[int]) -> Optional[Alarm]:
        alarms = self.alarm_manager.list_alarms()
        if not index or index > len(alarms):
            return None
        return alarms[index - 1]


def format_clock(alarm: Alarm, settings: AlarmSettings) -> str:
    if settings.use_24_hour_clock:
        return f"{alarm.hour:02d}:{alarm.minute:02d}"
    suffix = "AM" if alarm.hour < 12 else "PM"
    return f"{alarm.hour % 12 or 12}:{alarm.minute:02d} {suffix}"


def format_alarm_time(dt: datetime, now: datetime, use_24_hour_clock: bool = True) -> str:
    time_part = dt.strftime("%H:%M") if use_24_hour_clock else dt.strftime("%I:%M %p").lstrip("0")
    days = (dt.date() - now.date()).days
    if days == 0:
        return f"today {time_part}"
    if days == 1:
        return f"tomorrow {time_part}"
    return dt.strftime("%d.%m ") + time_part


def describe_alarm(alarm: Alarm, settings: AlarmSettings) -> str:
    unlocks = ", ".join(sorted(u.value for u in alarm.unlocks))
    state = "" if alarm.enabled else " (off)"
    return f"{format_clock(alarm, settings)} • {alarm.tone.value} • Unlock: {unlocks}{state}"


def describe_session(session: RingSession) -> str:
    snap = session.snapshot()
    if snap.can_dismiss:
        return "All unlock conditions met, you can dismiss now."
    details = "; ".join(f"{u.value}: {reason}" for u, reason in snap.pending.items())
    return f"Still ringing. Pending: {details}"


def describe_settings(settings: AlarmSettings) -> str:
    clock = "24-hour" if settings.use_24_hour_clock else "12-hour"
    upi = "allowed" if settings.upi_auto_cut_allowed else "off"
    waived = ", penalty waived" if settings.penalty_waived else ""
    return f"Clock: {clock}. UPI auto-cut notice: {upi}{waived}. No money is ever charged."
