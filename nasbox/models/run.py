"""Run and run log database models."""

from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, CheckConstraint, Index
from nasbox.database.database import Base, utcnow


class Run(Base):
    """One execution attempt of a plan."""

    __tablename__ = "runs"

    id = Column(Integer, primary_key=True, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id", ondelete="CASCADE"), nullable=False)
    status = Column(String, nullable=False)  # RUNNING, SUCCESS, PARTIAL, FAILED, CANCELED, INTERRUPTED
    trigger_source = Column(String, nullable=False, default="MANUAL")
    started_at = Column(DateTime, default=utcnow)
    finished_at = Column(DateTime, nullable=True)
    scanned_count = Column(Integer, nullable=False, default=0)
    uploaded_count = Column(Integer, nullable=False, default=0)
    skipped_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)
    summary_error = Column(Text, nullable=True)

    # Constraints
    __table_args__ = (
        CheckConstraint(
            "status IN ('RUNNING', 'SUCCESS', 'PARTIAL', 'FAILED', 'CANCELED', 'INTERRUPTED')",
            name='ck_run_status'
        ),
        CheckConstraint("trigger_source IN ('MANUAL', 'SCHEDULED')", name='ck_run_trigger_source'),
        Index('ix_runs_plan_id', 'plan_id'),
        Index('ix_runs_started_at', 'started_at'),
        Index('ix_runs_status', 'status'),
    )


class RunLog(Base):
    """Append-only log line attached to a run."""

    __tablename__ = "run_logs"

    id = Column(Integer, primary_key=True, index=True)
    run_id = Column(Integer, ForeignKey("runs.id", ondelete="CASCADE"), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utcnow)
    severity = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    detail = Column(Text, nullable=True)

    # Constraints
    __table_args__ = (
        CheckConstraint("severity IN ('INFO', 'ERROR')", name='ck_run_log_severity'),
        Index('ix_run_logs_run_id_timestamp', 'run_id', 'timestamp'),
    )
