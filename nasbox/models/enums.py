"""Enumerations and value domains shared by models and services."""

from enum import Enum
from typing import Optional


class RunStatus(str, Enum):
    """Lifecycle of a run. RUNNING is the only non-terminal state."""

    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    INTERRUPTED = "INTERRUPTED"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


class TriggerSource(str, Enum):
    MANUAL = "MANUAL"
    SCHEDULED = "SCHEDULED"


class LogSeverity(str, Enum):
    INFO = "INFO"
    ERROR = "ERROR"


class SourceType(str, Enum):
    """Kind of local source a plan backs up."""

    ALBUM = "ALBUM"
    FOLDER = "FOLDER"
    FULL_DEVICE = "FULL_DEVICE"


class ScheduleFrequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    INTERVAL_HOURS = "INTERVAL_HOURS"

    @classmethod
    def from_raw(cls, value: Optional[str]) -> "ScheduleFrequency":
        """Parse a stored frequency; unknown or empty values fall back to DAILY."""
        normalized = (value or "").strip().upper()
        for member in cls:
            if member.value == normalized:
                return member
        return cls.DAILY


class Weekday(Enum):
    """Weekday bits, Monday first (matches ``datetime.weekday()``)."""

    MONDAY = (0, "Mon")
    TUESDAY = (1, "Tue")
    WEDNESDAY = (2, "Wed")
    THURSDAY = (3, "Thu")
    FRIDAY = (4, "Fri")
    SATURDAY = (5, "Sat")
    SUNDAY = (6, "Sun")

    def __init__(self, bit_index: int, short_label: str):
        self.bit_index = bit_index
        self.short_label = short_label

    @property
    def bit_mask(self) -> int:
        return 1 << self.bit_index

    @classmethod
    def from_index(cls, index: int) -> "Weekday":
        for day in cls:
            if day.bit_index == index:
                return day
        raise ValueError(f"Invalid weekday index: {index}")


MINUTES_PER_DAY = 24 * 60
DEFAULT_SCHEDULE_MINUTES = 120
DEFAULT_DAY_OF_MONTH = 1
DEFAULT_INTERVAL_HOURS = 24
MAX_INTERVAL_HOURS = 168
WEEKLY_ALL_DAYS_MASK = 0b111_1111


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, int(value)))


def normalize_schedule_minutes(value: int) -> int:
    return _clamp(value, 0, MINUTES_PER_DAY - 1)


def normalize_weekly_days_mask(value: int) -> int:
    normalized = int(value) & WEEKLY_ALL_DAYS_MASK
    return normalized if normalized else WEEKLY_ALL_DAYS_MASK


def normalize_day_of_month(value: int) -> int:
    return _clamp(value, 1, 31)


def normalize_interval_hours(value: int) -> int:
    return _clamp(value, 1, MAX_INTERVAL_HOURS)


def weekly_mask_for(*days: Weekday) -> int:
    """Build a weekday mask; no days means every day."""
    if not days:
        return WEEKLY_ALL_DAYS_MASK
    mask = 0
    for day in days:
        mask |= day.bit_mask
    return mask


def is_day_selected(mask: int, weekday: Weekday) -> bool:
    return normalize_weekly_days_mask(mask) & weekday.bit_mask != 0
