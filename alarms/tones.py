from __future__ import annotations

import json
import logging
import random
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import List, Optional, Sequence

from .storage import Alarm, ToneKind, write_json_atomic

logger = logging.getLogger(__name__)


class PlaybackError(RuntimeError):
    """A tone source could not be started."""


@dataclass(frozen=True)
class ToneSelection:
    path: Path
    kind: ToneKind
    looped: bool = True
    fallback_reason: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return self.fallback_reason is not None


class TonePool:
    """Registered custom and self-recorded sources, append-only."""

    def __init__(self, path: Path):
        self.path = path
        self._refs: List[str] = []
        self._lock = Lock()

    def load(self) -> List[str]:
        refs: List[str] = []
        if self.path.exists():
            try:
                with self.path.open("r", encoding="utf-8") as f:
                    payload = json.load(f)
                refs = [str(r) for r in payload or [] if r]
            except Exception as exc:
                logger.error("Failed to load tone pool from %s: %s", self.path, exc)
        with self._lock:
            self._refs = list(dict.fromkeys(refs))
            return list(self._refs)

    def list(self) -> List[str]:
        with self._lock:
            return list(self._refs)

    def register(self, ref: str) -> bool:
        with self._lock:
            if ref in self._refs:
                return False
            refs = self._refs + [ref]
            write_json_atomic(self.path, refs)
            self._refs = refs
        logger.info("Registered tone %s", ref)
        return True


class ToneResolver:
    def __init__(self, default_tone: Path, rng: Optional[random.Random] = None):
        self.default_tone = default_tone
        self._rng = rng or random.Random()

    def resolve(self, alarm: Alarm, tone_pool: Sequence[str]) -> ToneSelection:
        if alarm.tone is ToneKind.DEFAULT:
            return ToneSelection(self.default_tone, alarm.tone)

        if alarm.tone.needs_ref:
            if not alarm.tone_ref:
                return self._fallback(alarm, "no tone reference stored")
            path = Path(alarm.tone_ref)
            if not path.is_file():
                return self._fallback(alarm, f"tone file missing: {path}")
            return ToneSelection(path, alarm.tone)

        # Shuffle
        if not tone_pool:
            return self._fallback(alarm, "tone pool is empty")
        pick = Path(self._rng.choice(list(tone_pool)))
        if not pick.is_file():
            return self._fallback(alarm, f"shuffled tone missing: {pick}")
        return ToneSelection(pick, alarm.tone)

    def _fallback(self, alarm: Alarm, reason: str) -> ToneSelection:
        logger.warning("Alarm %s falls back to default tone (%s)", alarm.id, reason)
        return ToneSelection(self.default_tone, alarm.tone, fallback_reason=reason)
