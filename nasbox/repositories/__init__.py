"""Repositories package."""

from nasbox.repositories.base import DuplicateRecordError
from nasbox.repositories.plan_repository import PlanRepository
from nasbox.repositories.server_repository import ServerRepository
from nasbox.repositories.backup_record_repository import BackupRecordRepository
from nasbox.repositories.run_repository import RunRepository, RunLogRepository

__all__ = [
    "DuplicateRecordError",
    "PlanRepository",
    "ServerRepository",
    "BackupRecordRepository",
    "RunRepository",
    "RunLogRepository",
]
