"""Alarm scheduling and ring-session engine for LifeSync."""

from .manager import AlarmManager
from .parser import AlarmCommand, parse_alarm_command
from .session import RingSession, SessionPhase
