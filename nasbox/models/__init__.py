"""Database models package."""

from nasbox.models.server import Server
from nasbox.models.plan import Plan
from nasbox.models.run import Run, RunLog
from nasbox.models.backup_record import BackupRecord
from nasbox.models.credential import StoredCredential

__all__ = [
    "Server",
    "Plan",
    "Run",
    "RunLog",
    "BackupRecord",
    "StoredCredential",
]
