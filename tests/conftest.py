from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from alarms.scheduler import AlarmScheduler
from alarms.tones import PlaybackError, ToneResolver
from alarms.wake_events import LocalWakeEventService


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakePlayer:
    def __init__(self, failing=()):
        self.failing = {Path(p) for p in failing}
        self.started = []
        self.playing = None
        self.beeping = False
        self.stops = 0
        self.fail_on_stop = False

    def start_loop(self, path):
        path = Path(path)
        if path in self.failing:
            raise PlaybackError(f"cannot play {path}")
        self.started.append(path)
        self.playing = path

    def start_beep_loop(self):
        self.beeping = True
        self.playing = "beep"

    def stop_loop(self):
        self.stops += 1
        self.playing = None
        self.beeping = False
        if self.fail_on_stop:
            raise RuntimeError("device vanished")


class ManualWakeService(LocalWakeEventService):
    """Wake service whose deliveries are driven by the test instead of a thread."""

    def _loop(self) -> None:
        return

    def fire_due(self):
        delivered = self.poll()
        for request in delivered:
            self._deliver(request)
        return delivered


def day_at(hour: int, minute: int, second: int = 0, day: int = 15) -> datetime:
    return datetime(2025, 1, day, hour, minute, second, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return FakeClock(day_at(6, 0))


@pytest.fixture
def wake_service(tmp_path, clock):
    return ManualWakeService(tmp_path / "wake_events.json", now_fn=clock)


@pytest.fixture
def scheduler(wake_service, clock):
    return AlarmScheduler(wake_service, now_fn=clock)


@pytest.fixture
def default_tone(tmp_path):
    return tmp_path / "alarm.wav"


@pytest.fixture
def resolver(default_tone):
    return ToneResolver(default_tone)


@pytest.fixture
def player():
    return FakePlayer()
