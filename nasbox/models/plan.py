"""Plan database model."""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import validates
from nasbox.database.database import Base, utcnow
from nasbox.models.enums import (
    DEFAULT_DAY_OF_MONTH,
    DEFAULT_INTERVAL_HOURS,
    DEFAULT_SCHEDULE_MINUTES,
    WEEKLY_ALL_DAYS_MASK,
    ScheduleFrequency,
    normalize_day_of_month,
    normalize_interval_hours,
    normalize_schedule_minutes,
    normalize_weekly_days_mask,
)


class Plan(Base):
    """Repeatable backup job: a local source, an SMB destination and a schedule."""

    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)

    # Source descriptor
    source_type = Column(String, nullable=False, default="ALBUM")
    source_album = Column(String, nullable=False, default="")
    folder_path = Column(String, nullable=False, default="")
    include_videos = Column(Boolean, nullable=False, default=False)

    # Destination
    server_id = Column(Integer, ForeignKey("servers.id", ondelete="RESTRICT"), nullable=False, index=True)
    directory_template = Column(String, nullable=False, default="")
    filename_pattern = Column(String, nullable=False, default="")

    # Recurrence (clamped on assignment)
    schedule_enabled = Column(Boolean, nullable=False, default=False)
    schedule_frequency = Column(String, nullable=False, default=ScheduleFrequency.DAILY.value)
    schedule_time_minutes = Column(Integer, nullable=False, default=DEFAULT_SCHEDULE_MINUTES)
    schedule_days_mask = Column(Integer, nullable=False, default=WEEKLY_ALL_DAYS_MASK)
    schedule_day_of_month = Column(Integer, nullable=False, default=DEFAULT_DAY_OF_MONTH)
    schedule_interval_hours = Column(Integer, nullable=False, default=DEFAULT_INTERVAL_HOURS)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Constraints
    __table_args__ = (
        CheckConstraint("source_type IN ('ALBUM', 'FOLDER', 'FULL_DEVICE')", name='ck_plan_source_type'),
        CheckConstraint(
            "schedule_frequency IN ('DAILY', 'WEEKLY', 'MONTHLY', 'INTERVAL_HOURS')",
            name='ck_plan_schedule_frequency'
        ),
    )

    @validates("schedule_frequency")
    def _validate_frequency(self, key, value):
        return ScheduleFrequency.from_raw(value).value

    @validates("schedule_time_minutes")
    def _validate_time_minutes(self, key, value):
        return normalize_schedule_minutes(value)

    @validates("schedule_days_mask")
    def _validate_days_mask(self, key, value):
        return normalize_weekly_days_mask(value)

    @validates("schedule_day_of_month")
    def _validate_day_of_month(self, key, value):
        return normalize_day_of_month(value)

    @validates("schedule_interval_hours")
    def _validate_interval_hours(self, key, value):
        return normalize_interval_hours(value)
