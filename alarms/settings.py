from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path

from .storage import write_json_atomic

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlarmSettings:
    use_24_hour_clock: bool = False
    upi_auto_cut_allowed: bool = False
    penalty_waived: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "AlarmSettings":
        return cls(
            use_24_hour_clock=bool(data.get("use_24_hour_clock", False)),
            upi_auto_cut_allowed=bool(data.get("upi_auto_cut_allowed", False)),
            penalty_waived=bool(data.get("penalty_waived", False)),
        )


def load_settings(path: Path) -> AlarmSettings:
    if not path.exists():
        return AlarmSettings()
    try:
        with path.open("r", encoding="utf-8") as f:
            payload = json.load(f)
    except Exception as exc:
        logger.error("Failed to load settings from %s: %s", path, exc)
        return AlarmSettings()
    if not isinstance(payload, dict):
        logger.warning("Ignoring settings file %s with unexpected layout", path)
        return AlarmSettings()
    return AlarmSettings.from_dict(payload)


def save_settings(path: Path, settings: AlarmSettings) -> None:
    write_json_atomic(path, asdict(settings))
