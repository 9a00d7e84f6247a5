"""Backup record repository (the dedup ledger)."""

import logging
from datetime import datetime
from typing import List, Optional, Sequence
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from nasbox.database.database import utcnow
from nasbox.models.backup_record import BackupRecord
from nasbox.repositories.base import DuplicateRecordError, SessionRepository

logger = logging.getLogger(__name__)

# Stays below SQLite's bound-parameter limit for "IN" queries
LOOKUP_BATCH_SIZE = 900


class BackupRecordRepository(SessionRepository):
    """Persistence for backup records, unique per (plan, media item)."""

    def create(
        self,
        plan_id: int,
        media_item_id: str,
        remote_path: str,
        uploaded_at: Optional[datetime] = None
    ) -> BackupRecord:
        """Record a successful upload.

        Raises:
            DuplicateRecordError: If the item is already recorded for the plan.
        """
        record = BackupRecord(
            plan_id=plan_id,
            media_item_id=media_item_id,
            remote_path=remote_path,
            uploaded_at=uploaded_at or utcnow(),
        )
        with self._session() as db:
            try:
                db.add(record)
                db.commit()
                db.refresh(record)
                return record
            except IntegrityError:
                db.rollback()
                raise DuplicateRecordError(
                    f"Media item '{media_item_id}' is already recorded for plan {plan_id}"
                )

    def find_by_plan_and_item(self, plan_id: int, media_item_id: str) -> Optional[BackupRecord]:
        with self._session() as db:
            return db.query(BackupRecord).filter(
                BackupRecord.plan_id == plan_id,
                BackupRecord.media_item_id == media_item_id
            ).first()

    def find_by_plan_and_items(self, plan_id: int, media_item_ids: Sequence[str]) -> List[BackupRecord]:
        """Look up records for many items at once.

        The id list is split into batches of at most LOOKUP_BATCH_SIZE so the
        generated IN clause stays under the store's parameter limit. An empty
        list returns immediately without touching the database.

        Args:
            plan_id: Plan ID.
            media_item_ids: Media item IDs to look up.

        Returns:
            Records found, in batch order.
        """
        if not media_item_ids:
            return []

        ids = list(media_item_ids)
        records: List[BackupRecord] = []
        with self._session() as db:
            for start in range(0, len(ids), LOOKUP_BATCH_SIZE):
                batch = ids[start:start + LOOKUP_BATCH_SIZE]
                records.extend(self._query_batch(db, plan_id, batch))
        return records

    def _query_batch(self, db: Session, plan_id: int, batch: List[str]) -> List[BackupRecord]:
        return db.query(BackupRecord).filter(
            BackupRecord.plan_id == plan_id,
            BackupRecord.media_item_id.in_(batch)
        ).all()

    def count_for_plan(self, plan_id: int) -> int:
        with self._session() as db:
            return db.query(BackupRecord).filter(BackupRecord.plan_id == plan_id).count()
