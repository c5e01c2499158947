import logging
import logging.handlers
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _get_env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_env_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    try:
        return int(val)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def _get_env_optional_int(name: str) -> Optional[int]:
    val = os.getenv(name)
    if val is None or val == "":
        return None
    return _get_env_int(name, 0)


@dataclass
class Config:
    alarms_path: Path
    tone_pool_path: Path
    settings_path: Path
    wake_events_path: Path
    alarm_sound_path: Path
    wake_check_interval_ms: int
    output_target_rate: int
    output_device_index: Optional[int]
    timezone: Optional[str]
    enable_spoken_notices: bool
    debug: bool
    log_level: str


def load_config(env_path: Optional[Path] = None) -> Config:
    if env_path is None:
        env_path = Path(".env")
    if env_path.exists():
        load_dotenv(env_path)

    wake_check_interval_ms = _get_env_int("WAKE_CHECK_INTERVAL_MS", 800)
    if wake_check_interval_ms <= 0:
        raise ValueError("WAKE_CHECK_INTERVAL_MS must be positive")
    debug = _get_env_bool("DEBUG", False)
    log_level = os.getenv("LOG_LEVEL", "DEBUG" if debug else "INFO").upper()

    return Config(
        alarms_path=Path(os.getenv("ALARM_STORAGE_PATH", "data/alarms.json")),
        tone_pool_path=Path(os.getenv("TONE_POOL_PATH", "data/tones.json")),
        settings_path=Path(os.getenv("SETTINGS_PATH", "data/settings.json")),
        wake_events_path=Path(os.getenv("WAKE_EVENTS_PATH", "data/wake_events.json")),
        alarm_sound_path=Path(os.getenv("ALARM_SOUND_PATH", "data/alarm.wav")),
        wake_check_interval_ms=wake_check_interval_ms,
        output_target_rate=_get_env_int("OUTPUT_TARGET_RATE", 24000),
        output_device_index=_get_env_optional_int("OUTPUT_DEVICE_INDEX"),
        timezone=os.getenv("TIMEZONE") or None,
        enable_spoken_notices=_get_env_bool("ENABLE_SPOKEN_NOTICES", True),
        debug=debug,
        log_level=log_level,
    )


def setup_logging(log_level: str = "INFO") -> None:
    logs_dir = Path("logs")
    logs_dir.mkdir(exist_ok=True)

    log_path = logs_dir / "lifesync.log"
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        handlers=[file_handler, console_handler],
    )
