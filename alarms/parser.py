from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .storage import ToneKind
from .unlock import GeoPoint, Unlock

UNLOCK_WORDS = {
    "face": Unlock.FACE,
    "walk": Unlock.WALK,
    "geo": Unlock.GEO,
    "upi": Unlock.UPI,
}

TONE_WORDS = {
    "default": ToneKind.DEFAULT,
    "custom": ToneKind.CUSTOM,
    "self": ToneKind.SELF_RECORDED,
    "shuffle": ToneKind.SHUFFLE,
}

_TIME_RE = re.compile(r"^(\d{1,2})(?:[:.](\d{2}))?\s*(am|pm)?$")
_ON_OFF = {"on": True, "off": False, "yes": True, "no": False}


@dataclass
class AlarmCommand:
    action: str
    hour: Optional[int] = None
    minute: Optional[int] = None
    unlocks: List[Unlock] = field(default_factory=list)
    tone: ToneKind = ToneKind.DEFAULT
    tone_ref: Optional[str] = None
    geo_target: Optional[GeoPoint] = None
    index: Optional[int] = None
    steps: Optional[int] = None
    position: Optional[GeoPoint] = None
    settings: dict = field(default_factory=dict)
    error: Optional[str] = None
    raw_text: str = ""


def parse_alarm_command(text: str) -> Optional[AlarmCommand]:
    """Parse a console command into a structured command, or None if unrelated."""

    cleaned = text.strip()
    if not cleaned:
        return None
    words = cleaned.split()
    verb = words[0].lower()
    args = words[1:]

    if verb in ("list", "ls"):
        return AlarmCommand(action="list", raw_text=cleaned)
    if verb == "status":
        return AlarmCommand(action="status", raw_text=cleaned)
    if verb in ("snooze", "dismiss", "face"):
        return AlarmCommand(action=verb, raw_text=cleaned)

    if verb in ("toggle", "delete", "rm"):
        index = _extract_index(args)
        if index is None:
            return _unknown(cleaned, f"Which alarm? Use '{verb} N' with the number from 'list'.")
        return AlarmCommand(action="delete" if verb == "rm" else verb, index=index, raw_text=cleaned)

    if verb == "steps":
        steps = _extract_index(args) if args else 1
        if steps is None:
            return _unknown(cleaned, "Steps must be a whole number.")
        return AlarmCommand(action="steps", steps=steps, raw_text=cleaned)

    if verb == "geo":
        position = _extract_point(" ".join(args))
        if position is None:
            return _unknown(cleaned, "Use 'geo LAT LNG', for example 'geo 12.9716 77.5946'.")
        return AlarmCommand(action="geo", position=position, raw_text=cleaned)

    if verb == "settings":
        return _parse_settings(args, cleaned)

    if verb == "add":
        return _parse_add(args, cleaned)

    return None


def _parse_add(args: List[str], cleaned: str) -> AlarmCommand:
    if not args:
        return _unknown(cleaned, "Use 'add HH:MM [face] [walk] [geo] [upi] [tone=...]'.")
    time_text = args[0]
    rest = args[1:]
    if rest and rest[0].lower() in ("am", "pm"):
        time_text = f"{time_text} {rest[0]}"
        rest = rest[1:]
    parsed = _extract_time(time_text)
    if parsed is None:
        return _unknown(cleaned, f"Could not understand the time {time_text!r}.")
    command = AlarmCommand(action="add", hour=parsed[0], minute=parsed[1], raw_text=cleaned)

    for token in rest:
        key, _, value = token.partition("=")
        key = key.lower()
        if key in UNLOCK_WORDS:
            command.unlocks.append(UNLOCK_WORDS[key])
            if key == "geo" and value:
                command.geo_target = _extract_point(value)
                if command.geo_target is None:
                    return _unknown(cleaned, f"Bad geo target {value!r}; use geo=LAT,LNG.")
        elif key == "tone":
            kind, _, ref = value.partition(":")
            tone = TONE_WORDS.get(kind.lower())
            if tone is None:
                return _unknown(cleaned, f"Unknown tone {value!r}.")
            if tone.needs_ref and not ref:
                return _unknown(cleaned, f"Tone {kind} needs a file, e.g. tone={kind}:/path/to/file.wav")
            command.tone = tone
            command.tone_ref = ref or None
        else:
            return _unknown(cleaned, f"Unknown option {token!r}.")
    return command


def _parse_settings(args: List[str], cleaned: str) -> AlarmCommand:
    command = AlarmCommand(action="settings", raw_text=cleaned)
    pending = list(args)
    while pending:
        word = pending.pop(0).lower()
        if word in ("24h", "12h"):
            command.settings["use_24_hour_clock"] = word == "24h"
            continue
        if word in ("upi", "waive") and pending and pending[0].lower() in _ON_OFF:
            flag = _ON_OFF[pending.pop(0).lower()]
            name = "upi_auto_cut_allowed" if word == "upi" else "penalty_waived"
            command.settings[name] = flag
            continue
        return _unknown(cleaned, "Use 'settings [24h|12h] [upi on|off] [waive on|off]'.")
    return command


def _unknown(cleaned: str, error: str) -> AlarmCommand:
    return AlarmCommand(action="unknown", error=error, raw_text=cleaned)


def _extract_index(args: List[str]) -> Optional[int]:
    if not args or not args[0].isdigit():
        return None
    return int(args[0])


def _extract_time(text: str) -> Optional[Tuple[int, int]]:
    match = _TIME_RE.match(text.strip().lower())
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2)) if match.group(2) else 0
    qualifier = match.group(3)
    if qualifier and not 1 <= hour <= 12:
        return None
    hour = _adjust_hour(hour, qualifier)
    if not 0 <= hour <= 23 or not 0 <= minute <= 59:
        return None
    return hour, minute


def _adjust_hour(hour: int, qualifier: Optional[str]) -> int:
    if qualifier == "am":
        return 0 if hour == 12 else hour
    if qualifier == "pm":
        return hour if hour == 12 else hour + 12
    return hour


def _extract_point(text: str) -> Optional[GeoPoint]:
    parts = [p for p in re.split(r"[,\s]+", text.strip()) if p]
    if len(parts) != 2:
        return None
    try:
        return GeoPoint(float(parts[0]), float(parts[1]))
    except ValueError:
        return None
