import threading

import pytest

from alarms.manager import AlarmManager
from alarms.session import SessionPhase
from alarms.storage import FALLBACK_ALARM_ID, Alarm, AlarmStore, ToneKind
from alarms.tones import TonePool
from alarms.unlock import GeoPoint, Unlock
from alarms.wake_events import WakeRequest
from conftest import FakePlayer, day_at


@pytest.fixture
def players():
    return []


@pytest.fixture
def started():
    return []


@pytest.fixture
def manager(tmp_path, wake_service, resolver, clock, players, started):
    def factory():
        player = FakePlayer()
        players.append(player)
        return player

    manager = AlarmManager(
        store=AlarmStore(tmp_path / "alarms.json"),
        wake_service=wake_service,
        player_factory=factory,
        tone_resolver=resolver,
        tone_pool=TonePool(tmp_path / "tones.json"),
        on_session_started=started.append,
        now_fn=clock,
    )
    manager.start()
    yield manager
    manager.shutdown()


def test_create_alarm_persists_and_schedules(manager, wake_service, tmp_path):
    alarm = manager.create_alarm(7, 0, unlocks=[Unlock.WALK])
    request = wake_service.get(alarm.id)
    assert request.fire_at == day_at(7, 0)
    assert request.repeat_daily
    assert request.payload == str(alarm.id)

    reloaded = AlarmStore(tmp_path / "alarms.json")
    reloaded.load()
    assert reloaded.get_by_id(alarm.id) == alarm


def test_create_alarm_defaults_to_face_unlock(manager):
    alarm = manager.create_alarm(6, 30)
    assert alarm.unlocks == frozenset({Unlock.FACE})
    assert alarm.enabled


def test_create_alarm_validates_tone_reference(manager):
    with pytest.raises(ValueError):
        manager.create_alarm(7, 0, tone=ToneKind.CUSTOM)
    alarm = manager.create_alarm(7, 0, tone=ToneKind.CUSTOM, tone_ref="/music/wake.wav")
    assert manager.tone_pool.list() == ["/music/wake.wav"]
    assert alarm.tone_ref == "/music/wake.wav"


def test_geo_target_only_kept_for_geo_alarms(manager):
    target = GeoPoint(12.97, 77.59)
    assert manager.create_alarm(7, 0, unlocks=[Unlock.FACE], geo_target=target).geo_target is None
    assert manager.create_alarm(7, 5, unlocks=[Unlock.GEO], geo_target=target).geo_target == target


def test_toggle_and_delete_keep_registrations_in_step(manager, wake_service):
    alarm = manager.create_alarm(7, 0)
    assert manager.toggle_enabled(alarm.id).enabled is False
    assert wake_service.get(alarm.id) is None

    assert manager.toggle_enabled(alarm.id).enabled is True
    assert wake_service.get(alarm.id) is not None

    manager.delete_alarm(alarm.id)
    assert wake_service.get(alarm.id) is None
    assert manager.get_alarm(alarm.id) is None
    assert manager.toggle_enabled(alarm.id) is None


def test_list_alarms_sorted_by_time(manager):
    manager.create_alarm(9, 0)
    manager.create_alarm(6, 15)
    assert [(a.hour, a.minute) for a in manager.list_alarms()] == [(6, 15), (9, 0)]


def test_wake_fires_session_and_rearms_daily(manager, wake_service, clock, started, players):
    alarm = manager.create_alarm(7, 0, unlocks=[Unlock.WALK])
    clock.now = day_at(7, 0)
    assert len(wake_service.fire_due()) == 1

    (session,) = started
    assert session.alarm == alarm
    assert session.phase is SessionPhase.RINGING
    assert players[0].playing is not None
    assert wake_service.get(alarm.id).fire_at == day_at(7, 0, day=16)

    session.record_steps(25)
    session.dismiss()
    assert manager.session_for(alarm.id) is None
    assert players[0].playing is None


def test_snooze_rings_again_then_resumes_daily(manager, wake_service, clock, started):
    alarm = manager.create_alarm(7, 0)
    clock.now = day_at(7, 0)
    wake_service.fire_due()
    assert started[0].snooze() == day_at(7, 5)
    assert manager.active_session() is None

    clock.now = day_at(7, 5)
    wake_service.fire_due()
    assert len(started) == 2
    assert started[1] is not started[0]
    assert started[1].alarm.id == alarm.id
    request = wake_service.get(alarm.id)
    assert request.repeat_daily
    assert request.fire_at == day_at(7, 0, day=16)


def test_duplicate_wake_keeps_ringing_session(manager, players):
    alarm = manager.create_alarm(7, 0)
    first = manager.handle_wake(str(alarm.id))
    second = manager.handle_wake(str(alarm.id))
    assert first is second
    assert len(players) == 1


def test_two_alarms_ring_independently(manager, players):
    a = manager.create_alarm(7, 0)
    b = manager.create_alarm(7, 0, unlocks=[Unlock.WALK])
    first = manager.handle_wake(a.id)
    second = manager.handle_wake(b.id)
    first.confirm_face()
    first.dismiss()
    assert players[0].playing is None
    assert players[1].playing is not None
    assert manager.sessions() == [second]


def test_unknown_payload_rings_fallback_and_cancels_stale(manager, wake_service, clock):
    wake_service.schedule(WakeRequest(alarm_id=999, fire_at=day_at(7, 0), payload="999"))
    clock.now = day_at(7, 0)
    session = manager.handle_wake("999")
    assert session.alarm.id == FALLBACK_ALARM_ID
    assert session.alarm.unlocks == frozenset({Unlock.FACE})
    assert session.phase is SessionPhase.RINGING
    assert wake_service.get(999) is None

    fire_at = session.snooze()
    assert fire_at == day_at(7, 5)
    assert wake_service.get(FALLBACK_ALARM_ID).resume_daily_at is None


def test_sync_schedules_repairs_registrations(manager, wake_service):
    manager.store.replace_all([Alarm(id=1, hour=6, minute=30), Alarm(id=2, hour=8, minute=0, enabled=False)])
    wake_service.schedule(WakeRequest(alarm_id=77, fire_at=day_at(9, 0), payload="77"))
    manager.sync_schedules()
    assert [r.alarm_id for r in wake_service.pending()] == [1]


def test_start_restores_persisted_state(tmp_path, wake_service, resolver, clock):
    store = AlarmStore(tmp_path / "alarms.json")
    store.replace_all([Alarm(id=4, hour=6, minute=45)])
    manager = AlarmManager(
        store=AlarmStore(tmp_path / "alarms.json"),
        wake_service=wake_service,
        player_factory=FakePlayer,
        tone_resolver=resolver,
        tone_pool=TonePool(tmp_path / "tones.json"),
        now_fn=clock,
    )
    manager.start()
    try:
        assert [a.id for a in manager.list_alarms()] == [4]
        assert wake_service.get(4).fire_at == day_at(6, 45)
    finally:
        manager.shutdown()


def test_shutdown_stops_ringing_sessions(manager, players):
    alarm = manager.create_alarm(7, 0)
    session = manager.handle_wake(alarm.id)
    manager.shutdown()
    assert not session.playback_active
    assert players[0].playing is None


def test_concurrent_creates_lose_no_records(manager, wake_service, tmp_path):
    def add_some():
        for minute in range(5):
            manager.create_alarm(7, minute)

    threads = [threading.Thread(target=add_some) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    reloaded = AlarmStore(tmp_path / "alarms.json")
    assert len(reloaded.load()) == 40
    assert len(wake_service.pending()) == 40


def test_stale_cancel_failure_still_rings_fallback(manager, wake_service, clock, monkeypatch):
    wake_service.schedule(WakeRequest(alarm_id=999, fire_at=day_at(7, 0), payload="999"))

    def disk_full(path, payload):
        raise OSError("No space left on device")

    monkeypatch.setattr("alarms.wake_events.write_json_atomic", disk_full)
    session = manager.handle_wake("999")
    assert session.alarm.id == FALLBACK_ALARM_ID
    assert session.phase is SessionPhase.RINGING
    assert wake_service.get(999) is not None
