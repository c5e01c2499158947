import pytest

from alarms.intent_router import IntentRouter, format_alarm_time
from alarms.manager import AlarmManager
from alarms.settings import load_settings
from alarms.storage import AlarmStore
from alarms.tones import TonePool
from conftest import FakePlayer, day_at


@pytest.fixture
def router(tmp_path, wake_service, resolver, clock):
    manager = AlarmManager(
        store=AlarmStore(tmp_path / "alarms.json"),
        wake_service=wake_service,
        player_factory=FakePlayer,
        tone_resolver=resolver,
        tone_pool=TonePool(tmp_path / "tones.json"),
        settings_provider=lambda: load_settings(tmp_path / "settings.json"),
        now_fn=clock,
    )
    manager.start()
    yield IntentRouter(manager, tmp_path / "settings.json")
    manager.shutdown()


def test_add_and_list(router, clock):
    result = router.handle_text("add 7:00 walk", now=clock())
    assert result.handled
    assert result.response_text == "Alarm set for today 7:00 AM."

    router.handle_text("settings 24h", now=clock())
    listing = router.handle_text("list", now=clock()).response_text
    assert "1) 07:00" in listing
    assert "Walk" in listing


def test_add_earlier_time_rolls_to_tomorrow(router, clock):
    router.handle_text("settings 24h", now=clock())
    result = router.handle_text("add 5:00", now=clock())
    assert result.response_text == "Alarm set for tomorrow 05:00."


def test_geo_without_target_warns(router, clock):
    result = router.handle_text("add 7:00 geo", now=clock())
    assert "can only be snoozed" in result.response_text


def test_toggle_unknown_index(router, clock):
    assert router.handle_text("toggle 3", now=clock()).response_text == "No such alarm."


def test_session_commands_drive_ringing_alarm(router, clock):
    router.handle_text("add 7:00 walk", now=clock())
    alarm = router.alarm_manager.list_alarms()[0]
    router.alarm_manager.handle_wake(alarm.id)

    result = router.handle_text("dismiss", now=clock())
    assert result.response_text.startswith("Not yet")
    assert "0/25 steps" in result.response_text

    assert "All unlock conditions met" in router.handle_text("steps 25", now=clock()).response_text
    assert router.handle_text("dismiss", now=clock()).response_text.startswith("Alarm dismissed")
    assert router.handle_text("snooze", now=clock()).response_text == "Nothing is ringing."


def test_snooze_reports_new_time(router, clock):
    router.handle_text("settings 24h", now=clock())
    router.handle_text("add 7:00", now=clock())
    clock.now = day_at(7, 0)
    router.alarm_manager.handle_wake(router.alarm_manager.list_alarms()[0].id)
    assert router.handle_text("snooze", now=clock()).response_text == "Snoozed until today 07:05."


def test_settings_persist(router, clock, tmp_path):
    router.handle_text("settings upi on waive on", now=clock())
    settings = load_settings(tmp_path / "settings.json")
    assert settings.upi_auto_cut_allowed
    assert settings.penalty_waived


def test_format_alarm_time_far_date():
    assert format_alarm_time(day_at(7, 0, day=20), day_at(6, 0)) == "20.01 07:00"
