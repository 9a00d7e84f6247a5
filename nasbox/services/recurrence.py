"""Recurrence calculation for scheduled plan runs."""

import calendar
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from nasbox.config import settings
from nasbox.models.enums import (
    ScheduleFrequency,
    Weekday,
    is_day_selected,
    normalize_day_of_month,
    normalize_interval_hours,
    normalize_schedule_minutes,
    normalize_weekly_days_mask,
)


def _instant(value: datetime) -> datetime:
    # Aware datetimes sharing a tzinfo compare by wall time, so compare in UTC
    return value.astimezone(timezone.utc)


class RecurrenceCalculator:
    """Computes the next execution instant of a plan schedule.

    The calculator is bound to one time zone. Schedule times are wall-clock
    times in that zone, so a daily 02:00 run stays at 02:00 local time across
    daylight-saving changes. Every input is clamped on each call.
    """

    def __init__(self, time_zone: Optional[str] = None):
        """Initialize the calculator.

        Args:
            time_zone: IANA zone name (defaults to settings.time_zone).
        """
        self.tz = ZoneInfo(time_zone or settings.time_zone)

    def next_run(
        self,
        now: datetime,
        frequency: ScheduleFrequency,
        time_minutes: int,
        weekday_mask: int,
        day_of_month: int,
        interval_hours: int
    ) -> datetime:
        """Compute the first execution instant strictly after ``now``.

        Args:
            now: Reference time. Naive values are read as wall time in the
                calculator's zone.
            frequency: Schedule frequency.
            time_minutes: Minutes since midnight.
            weekday_mask: Weekday bits, Monday is bit 0; zero means every day.
            day_of_month: Target day, falling back to the month's last day.
            interval_hours: Hours between runs for INTERVAL_HOURS.

        Returns:
            The next run, aware in the calculator's zone when ``now`` is aware,
            otherwise naive local wall time.
        """
        aware = now.tzinfo is not None
        local_now = now.astimezone(self.tz) if aware else now.replace(tzinfo=self.tz)
        frequency = ScheduleFrequency.from_raw(getattr(frequency, "value", frequency))

        if frequency is ScheduleFrequency.DAILY:
            result = self._next_daily(local_now, time_minutes)
        elif frequency is ScheduleFrequency.WEEKLY:
            result = self._next_weekly(local_now, time_minutes, weekday_mask)
        elif frequency is ScheduleFrequency.MONTHLY:
            result = self._next_monthly(local_now, time_minutes, day_of_month)
        elif frequency is ScheduleFrequency.INTERVAL_HOURS:
            result = self._next_interval(local_now, interval_hours)
        else:
            raise AssertionError(f"Unhandled schedule frequency: {frequency}")

        return result if aware else result.replace(tzinfo=None)

    def _at(self, day: date, time_minutes: int) -> datetime:
        minutes = normalize_schedule_minutes(time_minutes)
        return datetime.combine(day, time(minutes // 60, minutes % 60), tzinfo=self.tz)

    def _next_daily(self, now: datetime, time_minutes: int) -> datetime:
        candidate = self._at(now.date(), time_minutes)
        if _instant(candidate) <= _instant(now):
            candidate = self._at(now.date() + timedelta(days=1), time_minutes)
        return candidate

    def _next_weekly(self, now: datetime, time_minutes: int, weekday_mask: int) -> datetime:
        mask = normalize_weekly_days_mask(weekday_mask)
        for offset in range(8):
            day = now.date() + timedelta(days=offset)
            if not is_day_selected(mask, Weekday.from_index(day.weekday())):
                continue
            candidate = self._at(day, time_minutes)
            if _instant(candidate) > _instant(now):
                return candidate
        # Offset 7 is today's weekday one week later, so a non-empty mask always matches
        raise AssertionError(f"No weekday selected in mask {mask:#09b}")

    def _next_monthly(self, now: datetime, time_minutes: int, day_of_month: int) -> datetime:
        target_day = normalize_day_of_month(day_of_month)
        candidate = self._at(self._clamped_day(now.year, now.month, target_day), time_minutes)
        if _instant(candidate) <= _instant(now):
            year, month = (now.year + 1, 1) if now.month == 12 else (now.year, now.month + 1)
            candidate = self._at(self._clamped_day(year, month, target_day), time_minutes)
        return candidate

    @staticmethod
    def _clamped_day(year: int, month: int, target_day: int) -> date:
        last_day = calendar.monthrange(year, month)[1]
        return date(year, month, min(target_day, last_day))

    def _next_interval(self, now: datetime, interval_hours: int) -> datetime:
        hours = normalize_interval_hours(interval_hours)
        return (_instant(now) + timedelta(hours=hours)).astimezone(self.tz)

    def next_run_for_plan(self, plan, now: datetime) -> datetime:
        """Next run for a plan's stored recurrence settings."""
        return self.next_run(
            now,
            ScheduleFrequency.from_raw(plan.schedule_frequency),
            plan.schedule_time_minutes,
            plan.schedule_days_mask,
            plan.schedule_day_of_month,
            plan.schedule_interval_hours,
        )


def format_minutes_of_day(minutes: int) -> str:
    clamped = normalize_schedule_minutes(minutes)
    return f"{clamped // 60:02d}:{clamped % 60:02d}"


def format_schedule_summary(
    enabled: bool,
    frequency: ScheduleFrequency,
    time_minutes: int,
    weekday_mask: int,
    day_of_month: int,
    interval_hours: int
) -> str:
    """Human-readable schedule description, e.g. ``Weekly Tue, Thu at 21:00``."""
    if not enabled:
        return "Off"

    at = format_minutes_of_day(time_minutes)
    frequency = ScheduleFrequency.from_raw(getattr(frequency, "value", frequency))

    if frequency is ScheduleFrequency.DAILY:
        return f"Daily around {at}"
    if frequency is ScheduleFrequency.WEEKLY:
        days = ", ".join(day.short_label for day in Weekday if is_day_selected(weekday_mask, day))
        return f"Weekly {days} at {at}"
    if frequency is ScheduleFrequency.MONTHLY:
        return f"Monthly on day {normalize_day_of_month(day_of_month)} at {at} (last day fallback)"
    if frequency is ScheduleFrequency.INTERVAL_HOURS:
        hours = normalize_interval_hours(interval_hours)
        return f"Every {hours} hour{'' if hours == 1 else 's'}"
    raise AssertionError(f"Unhandled schedule frequency: {frequency}")
