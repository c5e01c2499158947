import time

import pytest

pytest.importorskip("pyaudio")

from alarms import sounds  # noqa: E402
from alarms.sounds import AlarmSoundPlayer  # noqa: E402


class UnpluggedOutput:
    rate = 8000

    def __init__(self, recovers=False):
        self.recovers = recovers
        self.writes = 0
        self.reopens = 0
        self.broken = True

    def play_bytes(self, data):
        self.writes += 1
        if self.broken:
            raise OSError("device unplugged")

    def reopen(self):
        self.reopens += 1
        if not self.recovers:
            raise OSError("no such device")
        self.broken = False


def _wait_for(condition, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline and not condition():
        time.sleep(0.02)
    return condition()


@pytest.fixture(autouse=True)
def no_winsound(monkeypatch):
    monkeypatch.setattr(sounds, "winsound", None)


@pytest.mark.filterwarnings("error::pytest.PytestUnhandledThreadExceptionWarning")
def test_output_failure_keeps_ringing(tmp_path):
    output = UnpluggedOutput()
    player = AlarmSoundPlayer(tmp_path / "alarm.wav", output)
    player.start_loop(tmp_path / "alarm.wav")

    assert _wait_for(lambda: output.reopens >= 1)
    time.sleep(0.1)
    assert player.is_playing
    player.stop_loop()
    assert not player.is_playing


def test_output_recovers_after_reopen(tmp_path):
    output = UnpluggedOutput(recovers=True)
    player = AlarmSoundPlayer(tmp_path / "alarm.wav", output)
    player.start_loop(tmp_path / "alarm.wav")

    assert _wait_for(lambda: not output.broken and output.writes >= 3)
    assert player.is_playing
    player.stop_loop()


def test_missing_tone_raises_playback_error(tmp_path):
    player = AlarmSoundPlayer(tmp_path / "alarm.wav", UnpluggedOutput())
    with pytest.raises(sounds.PlaybackError):
        player.start_loop(tmp_path / "gone.wav")
