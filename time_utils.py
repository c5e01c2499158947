from __future__ import annotations

import logging
import os
from datetime import datetime, tzinfo
from functools import lru_cache
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

_ZONEINFO_MARKER = "zoneinfo" + os.sep


def _zone(name: str) -> Optional[ZoneInfo]:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        logger.warning("Failed to load timezone %s via zoneinfo (%s)", name, exc)
    return None


@lru_cache(maxsize=1)
def local_timezone() -> tzinfo:
    """System zone with its DST rules, from ``TZ`` or the /etc/localtime link."""
    name = os.environ.get("TZ", "").lstrip(":")
    if name:
        tz = _zone(name)
        if tz:
            return tz
    target = os.path.realpath("/etc/localtime")
    if _ZONEINFO_MARKER in target:
        tz = _zone(target.split(_ZONEINFO_MARKER, 1)[1])
        if tz:
            return tz
    fixed = datetime.now().astimezone().tzinfo
    logger.warning("System zone rules unavailable, using fixed offset %s; set TIMEZONE to follow DST", fixed)
    return fixed


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """Return the configured zone, or the system zone when unset or unknown."""
    if name:
        tz = _zone(name)
        if tz:
            return tz
        logger.warning("Using system local timezone instead of %s", name)
    return local_timezone()


def now_in_tz(tz: Optional[tzinfo] = None) -> datetime:
    return datetime.now(tz or local_timezone())


def clock(tz: Optional[tzinfo] = None) -> Callable[[], datetime]:
    return lambda: now_in_tz(tz)
