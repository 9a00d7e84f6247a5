"""Services package."""

from nasbox.services.encryption_service import EncryptionService
from nasbox.services.credential_store import CredentialStore, EncryptedCredentialStore
from nasbox.services.path_renderer import PathRenderer
from nasbox.services.recurrence import RecurrenceCalculator
from nasbox.services.failure_classifier import ShareFailure, classify

__all__ = [
    "EncryptionService",
    "CredentialStore",
    "EncryptedCredentialStore",
    "PathRenderer",
    "RecurrenceCalculator",
    "ShareFailure",
    "classify",
]
