from pathlib import Path

import pytest

from config import load_config

ENV_NAMES = [
    "ALARM_STORAGE_PATH",
    "WAKE_CHECK_INTERVAL_MS",
    "OUTPUT_DEVICE_INDEX",
    "TIMEZONE",
    "DEBUG",
    "LOG_LEVEL",
    "ENABLE_SPOKEN_NOTICES",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_defaults():
    config = load_config()
    assert config.alarms_path == Path("data/alarms.json")
    assert config.wake_check_interval_ms == 800
    assert config.output_device_index is None
    assert config.timezone is None
    assert config.enable_spoken_notices
    assert config.log_level == "INFO"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("ALARM_STORAGE_PATH", "/var/lib/lifesync/alarms.json")
    monkeypatch.setenv("OUTPUT_DEVICE_INDEX", "3")
    monkeypatch.setenv("TIMEZONE", "Asia/Kolkata")
    monkeypatch.setenv("DEBUG", "1")
    config = load_config()
    assert config.alarms_path == Path("/var/lib/lifesync/alarms.json")
    assert config.output_device_index == 3
    assert config.timezone == "Asia/Kolkata"
    assert config.log_level == "DEBUG"


def test_invalid_interval_rejected(monkeypatch):
    monkeypatch.setenv("WAKE_CHECK_INTERVAL_MS", "0")
    with pytest.raises(ValueError):
        load_config()
    monkeypatch.setenv("WAKE_CHECK_INTERVAL_MS", "soon")
    with pytest.raises(ValueError):
        load_config()


def test_bool_flags_accept_on_off(monkeypatch):
    monkeypatch.setenv("ENABLE_SPOKEN_NOTICES", "off")
    assert not load_config().enable_spoken_notices
    monkeypatch.setenv("ENABLE_SPOKEN_NOTICES", "On")
    assert load_config().enable_spoken_notices
