"""Backup record database model."""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from nasbox.database.database import Base, utcnow


class BackupRecord(Base):
    """Ledger entry marking one media item as uploaded for one plan."""

    __tablename__ = "backup_records"

    id = Column(Integer, primary_key=True, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id", ondelete="CASCADE"), nullable=False)
    media_item_id = Column(String, nullable=False)
    remote_path = Column(String, nullable=False)
    uploaded_at = Column(DateTime, nullable=False, default=utcnow)

    # Constraints
    __table_args__ = (
        UniqueConstraint('plan_id', 'media_item_id', name='uq_backup_record_plan_media_item'),
    )
