from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from threading import Lock, RLock
from typing import Callable, Dict, Iterable, List, Optional

from time_utils import now_in_tz

from .router import WakeRouter
from .scheduler import AlarmScheduler, SchedulingError
from .session import PenaltyNotice, RingSession, SessionPhase
from .settings import AlarmSettings
from .storage import Alarm, AlarmStore, ToneKind, new_alarm_id, parse_tone
from .tones import TonePool, ToneResolver
from .unlock import GeoPoint, Unlock, normalize_unlocks

logger = logging.getLogger(__name__)


class AlarmManager:
    """Wires the store, scheduler, wake service and ring sessions together."""

    def __init__(
        self,
        store: AlarmStore,
        wake_service,
        player_factory: Callable[[], object],
        tone_resolver: ToneResolver,
        tone_pool: TonePool,
        settings_provider: Callable[[], AlarmSettings] = AlarmSettings,
        notice_sink: Optional[Callable[[PenaltyNotice], None]] = None,
        on_session_started: Optional[Callable[[RingSession], None]] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.wake_service = wake_service
        self.player_factory = player_factory
        self.tone_resolver = tone_resolver
        self.tone_pool = tone_pool
        self.settings_provider = settings_provider
        self.notice_sink = notice_sink
        self.on_session_started = on_session_started
        self._now = now_fn or now_in_tz

        self.scheduler = AlarmScheduler(wake_service, now_fn=self._now)
        self.router = WakeRouter(store, now_fn=self._now)
        self._sessions: Dict[int, RingSession] = {}
        self._lock = Lock()
        # serializes read-modify-write of the stored alarm list
        self._records_lock = RLock()

    def start(self) -> None:
        self.store.load()
        self.tone_pool.load()
        self.wake_service.start(self.handle_wake)
        self.sync_schedules()

    def shutdown(self) -> None:
        self.wake_service.shutdown()
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()

    def sync_schedules(self) -> None:
        with self._records_lock:
            enabled = {a.id: a for a in self.store.list_enabled()}
            for request in self.wake_service.pending():
                if request.alarm_id not in enabled:
                    logger.info("Dropping wake registration for unknown or disabled alarm %s", request.alarm_id)
                    self.scheduler.cancel(request.alarm_id)
            for alarm in enabled.values():
                if self.wake_service.get(alarm.id) is None:
                    self.scheduler.schedule_next(alarm)

    # alarm records

    def list_alarms(self) -> List[Alarm]:
        return sorted(self.store.list(), key=lambda a: (a.hour, a.minute, a.id))

    def get_alarm(self, alarm_id: int) -> Optional[Alarm]:
        return self.store.get_by_id(alarm_id)

    def create_alarm(
        self,
        hour: int,
        minute: int,
        tone=ToneKind.DEFAULT,
        tone_ref: Optional[str] = None,
        unlocks: Iterable = (),
        geo_target: Optional[GeoPoint] = None,
    ) -> Alarm:
        tone = parse_tone(tone)
        if tone.needs_ref and not tone_ref:
            raise ValueError(f"Tone {tone.value} needs a stored audio reference")
        unlock_set = normalize_unlocks(unlocks)
        if Unlock.GEO not in unlock_set:
            geo_target = None
        elif geo_target is None:
            logger.warning("Geo unlock selected without a target; the alarm can only be snoozed")
        with self._records_lock:
            alarm = Alarm(
                id=new_alarm_id(a.id for a in self.store.list()),
                hour=hour,
                minute=minute,
                tone=tone,
                tone_ref=tone_ref if tone.needs_ref else None,
                unlocks=unlock_set,
                enabled=True,
                geo_target=geo_target,
            )
            if alarm.tone_ref:
                self.tone_pool.register(alarm.tone_ref)
            self.store.replace_all(self.store.list() + [alarm])
            logger.info("Created alarm %s at %02d:%02d", alarm.id, alarm.hour, alarm.minute)
            self.scheduler.schedule_next(alarm)
        return alarm

    def set_enabled(self, alarm_id: int, enabled: bool) -> Optional[Alarm]:
        with self._records_lock:
            alarms = self.store.list()
            for idx, alarm in enumerate(alarms):
                if alarm.id == alarm_id:
                    break
            else:
                return None
            updated = replace(alarm, enabled=enabled)
            alarms[idx] = updated
            self.store.replace_all(alarms)
            if enabled:
                self.scheduler.schedule_next(updated)
            else:
                self.scheduler.cancel(alarm_id)
        logger.info("Alarm %s %s", alarm_id, "enabled" if enabled else "disabled")
        return updated

    def toggle_enabled(self, alarm_id: int) -> Optional[Alarm]:
        with self._records_lock:
            alarm = self.store.get_by_id(alarm_id)
            if alarm is None:
                return None
            return self.set_enabled(alarm_id, not alarm.enabled)

    def delete_alarm(self, alarm_id: int) -> Optional[Alarm]:
        with self._records_lock:
            self.scheduler.cancel(alarm_id)
            alarm = self.store.get_by_id(alarm_id)
            if alarm is None:
                return None
            self.store.replace_all(a for a in self.store.list() if a.id != alarm_id)
        logger.info("Deleted alarm %s", alarm_id)
        return alarm

    # ringing

    def handle_wake(self, payload) -> RingSession:
        resolution = self.router.route(payload)
        if not resolution.matched and resolution.payload_id is not None and resolution.payload_id >= 0:
            try:
                self.scheduler.cancel(resolution.payload_id)
            except SchedulingError as exc:
                logger.error("Could not drop stale wake registration %s: %s", resolution.payload_id, exc)
        alarm = resolution.alarm
        with self._lock:
            live = self._sessions.get(alarm.id)
            if live is not None and live.phase is SessionPhase.RINGING:
                logger.warning("Duplicate wake for alarm %s ignored; session already ringing", alarm.id)
                return live
            session = RingSession(
                alarm,
                player=self.player_factory(),
                tone_resolver=self.tone_resolver,
                scheduler=self.scheduler,
                tone_pool=self.tone_pool.list,
                settings=self.settings_provider,
                notice_sink=self.notice_sink,
                on_finished=self._session_finished,
            )
            session.start()
            self._sessions[alarm.id] = session
        if self.on_session_started:
            try:
                self.on_session_started(session)
            except Exception:  # pragma: no cover - callback safety
                logger.error("on_session_started callback failed", exc_info=True)
        return session

    def session_for(self, alarm_id: int) -> Optional[RingSession]:
        with self._lock:
            return self._sessions.get(alarm_id)

    def sessions(self) -> List[RingSession]:
        with self._lock:
            return list(self._sessions.values())

    def active_session(self) -> Optional[RingSession]:
        with self._lock:
            sessions = list(self._sessions.values())
        return sessions[-1] if sessions else None

    def _session_finished(self, session: RingSession) -> None:
        with self._lock:
            if self._sessions.get(session.alarm.id) is session:
                del self._sessions[session.alarm.id]
