"""Ring session state machine.

A session owns one ringing episode of one alarm: Loading -> Ringing, then
either Snoozed or Dismissed. Snoozing ends the session and registers a one-off
wake event; the next ring is a brand-new session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, Optional, Sequence

from .scheduler import AlarmScheduler
from .settings import AlarmSettings
from .storage import Alarm
from .tones import PlaybackError, ToneResolver, ToneSelection
from .unlock import GeoPoint, Unlock, UnlockSignals, pending_conditions, satisfied, within_geofence

logger = logging.getLogger(__name__)

PENALTY_NOTICE_TEXT = (
    "Snooze penalty: UPI auto-cut is a locked feature. This is information only, "
    "no money is charged."
)


class SessionPhase(Enum):
    LOADING = "loading"
    RINGING = "ringing"
    SNOOZED = "snoozed"
    DISMISSED = "dismissed"


class InvalidTransition(RuntimeError):
    pass


class DismissRejected(RuntimeError):
    def __init__(self, pending: Dict[Unlock, str]):
        self.pending = pending
        details = ", ".join(f"{u.value}: {reason}" for u, reason in pending.items())
        super().__init__(f"Unlock conditions not met ({details})")


@dataclass(frozen=True)
class PenaltyNotice:
    alarm_id: int
    message: str = PENALTY_NOTICE_TEXT


@dataclass(frozen=True)
class SessionSnapshot:
    alarm: Alarm
    phase: SessionPhase
    signals: UnlockSignals
    playback_active: bool
    can_dismiss: bool
    pending: Dict[Unlock, str] = field(default_factory=dict)
    tone: Optional[ToneSelection] = None
    snoozed_until: Optional[datetime] = None


def penalty_notice_due(alarm: Alarm, settings: AlarmSettings) -> bool:
    return (
        Unlock.UPI in alarm.unlocks
        and settings.upi_auto_cut_allowed
        and not settings.penalty_waived
    )


class RingSession:
    def __init__(
        self,
        alarm: Alarm,
        player,
        tone_resolver: ToneResolver,
        scheduler: AlarmScheduler,
        tone_pool: Callable[[], Sequence[str]] = list,
        settings: Callable[[], AlarmSettings] = AlarmSettings,
        notice_sink: Optional[Callable[[PenaltyNotice], None]] = None,
        on_finished: Optional[Callable[["RingSession"], None]] = None,
    ):
        self.alarm = alarm
        self.player = player
        self.tone_resolver = tone_resolver
        self.scheduler = scheduler
        self._tone_pool = tone_pool
        self._settings = settings
        self.notice_sink = notice_sink
        self.on_finished = on_finished

        self._lock = Lock()
        self._phase = SessionPhase.LOADING
        self._signals = UnlockSignals()
        self._playback_active = False
        self._tone: Optional[ToneSelection] = None
        self._snoozed_until: Optional[datetime] = None

    def __enter__(self) -> "RingSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def phase(self) -> SessionPhase:
        with self._lock:
            return self._phase

    @property
    def signals(self) -> UnlockSignals:
        with self._lock:
            return self._signals

    @property
    def playback_active(self) -> bool:
        with self._lock:
            return self._playback_active

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                alarm=self.alarm,
                phase=self._phase,
                signals=self._signals,
                playback_active=self._playback_active,
                can_dismiss=satisfied(self.alarm.unlocks, self._signals),
                pending=pending_conditions(self.alarm.unlocks, self._signals, self.alarm.geo_target),
                tone=self._tone,
                snoozed_until=self._snoozed_until,
            )

    def start(self) -> None:
        with self._lock:
            if self._phase is not SessionPhase.LOADING:
                raise InvalidTransition(f"Cannot start a session in phase {self._phase.value}")
            self._tone = self._start_playback_locked()
            self._playback_active = True
            self._phase = SessionPhase.RINGING
        logger.info("Alarm %s ringing (unlocks=%s)", self.alarm.id, _names(self.alarm.unlocks))

    # signal updates

    def confirm_face(self) -> bool:
        with self._lock:
            if not self._accepts_signals_locked("face"):
                return False
            self._signals = replace(self._signals, face_confirmed=True)
        logger.info("Alarm %s: biometric confirmed", self.alarm.id)
        return True

    def attempt_face_unlock(self, authenticate: Callable[[], bool]) -> bool:
        try:
            confirmed = bool(authenticate())
        except Exception as exc:
            logger.warning("Biometric check failed or not available: %s", exc)
            return False
        if not confirmed:
            logger.info("Alarm %s: biometric not confirmed", self.alarm.id)
            return False
        return self.confirm_face()

    def record_steps(self, count: int = 1) -> int:
        if count < 0:
            raise ValueError("Step increments must be non-negative")
        with self._lock:
            if self._accepts_signals_locked("steps"):
                self._signals = replace(self._signals, step_count=self._signals.step_count + count)
            return self._signals.step_count

    def recheck_geo(self, position: GeoPoint) -> bool:
        target = self.alarm.geo_target
        if target is None:
            logger.warning("Alarm %s: geo unlock has no target set", self.alarm.id)
        inside = within_geofence(position, target)
        with self._lock:
            if not self._accepts_signals_locked("geo"):
                return False
            if inside:
                self._signals = replace(self._signals, geo_confirmed=True)
            return self._signals.geo_confirmed

    def recheck_geo_with(self, locate: Callable[[], GeoPoint]) -> bool:
        try:
            position = locate()
        except Exception as exc:
            logger.warning("Location lookup failed: %s", exc)
            return self.signals.geo_confirmed
        return self.recheck_geo(position)

    # terminal actions

    def dismiss(self) -> None:
        with self._lock:
            self._require_ringing_locked("dismiss")
            if not satisfied(self.alarm.unlocks, self._signals):
                pending = pending_conditions(self.alarm.unlocks, self._signals, self.alarm.geo_target)
                logger.info("Alarm %s: dismiss rejected (%s)", self.alarm.id, _names(pending))
                raise DismissRejected(pending)
            try:
                self._release_playback_locked()
            finally:
                self._phase = SessionPhase.DISMISSED
        logger.info("Alarm %s dismissed", self.alarm.id)
        self._finish()

    def snooze(self) -> datetime:
        with self._lock:
            self._require_ringing_locked("snooze")
            notice_due = penalty_notice_due(self.alarm, self._settings())
            # a refused registration propagates and leaves the alarm ringing
            fire_at = self.scheduler.schedule_snooze(self.alarm)
            if notice_due:
                self._surface_notice()
            try:
                self._release_playback_locked()
            finally:
                self._snoozed_until = fire_at
                self._phase = SessionPhase.SNOOZED
        logger.info("Alarm %s snoozed until %s (penalty notice=%s)", self.alarm.id, fire_at.isoformat(), notice_due)
        self._finish()
        return fire_at

    def close(self) -> None:
        with self._lock:
            if self._playback_active:
                logger.warning("Alarm %s session torn down while %s", self.alarm.id, self._phase.value)
                self._release_playback_locked()

    # internals

    def _start_playback_locked(self) -> ToneSelection:
        selection = self.tone_resolver.resolve(self.alarm, self._tone_pool())
        try:
            self.player.start_loop(selection.path)
            return selection
        except PlaybackError as exc:
            logger.error("Alarm %s: could not play %s (%s)", self.alarm.id, selection.path, exc)
        default = Path(self.tone_resolver.default_tone)
        if selection.path != default:
            try:
                self.player.start_loop(default)
                return ToneSelection(default, self.alarm.tone, fallback_reason="playback failed")
            except PlaybackError as exc:
                logger.error("Alarm %s: default tone failed too (%s)", self.alarm.id, exc)
        self.player.start_beep_loop()
        return ToneSelection(default, self.alarm.tone, fallback_reason="beep loop")

    def _release_playback_locked(self) -> None:
        try:
            self.player.stop_loop()
        except Exception:
            logger.error("Stopping playback for alarm %s failed", self.alarm.id, exc_info=True)
        finally:
            self._playback_active = False

    def _surface_notice(self) -> None:
        notice = PenaltyNotice(alarm_id=self.alarm.id)
        logger.info("Penalty notice for alarm %s: %s", self.alarm.id, notice.message)
        if not self.notice_sink:
            return
        try:
            self.notice_sink(notice)
        except Exception:
            logger.error("Penalty notice sink failed", exc_info=True)

    def _accepts_signals_locked(self, kind: str) -> bool:
        if self._phase is SessionPhase.RINGING:
            return True
        logger.debug("Ignoring %s update for alarm %s in phase %s", kind, self.alarm.id, self._phase.value)
        return False

    def _require_ringing_locked(self, action: str) -> None:
        if self._phase is not SessionPhase.RINGING:
            raise InvalidTransition(f"Cannot {action} in phase {self._phase.value}")

    def _finish(self) -> None:
        if not self.on_finished:
            return
        try:
            self.on_finished(self)
        except Exception:  # pragma: no cover - callback safety
            logger.error("on_finished callback failed", exc_info=True)


def _names(unlocks) -> str:
    return ",".join(sorted(u.value for u in unlocks)) or "-"
