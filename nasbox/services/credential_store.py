"""Credential store keeping server passwords encrypted at rest."""

import logging
from abc import ABC, abstractmethod
from typing import Optional
from cryptography.fernet import InvalidToken
from sqlalchemy.orm import sessionmaker

from nasbox.database.database import utcnow
from nasbox.models.credential import StoredCredential
from nasbox.services.encryption_service import EncryptionService

logger = logging.getLogger(__name__)


class CredentialStore(ABC):
    """Secret storage addressed by alias."""

    @abstractmethod
    def save_secret(self, alias: str, secret: str) -> None:
        ...

    @abstractmethod
    def load_secret(self, alias: str) -> Optional[str]:
        """Return the secret for an alias, or None when absent or unreadable."""

    @abstractmethod
    def delete_secret(self, alias: str) -> None:
        ...


class EncryptedCredentialStore(CredentialStore):
    """Stores Fernet-encrypted secrets in the credentials table."""

    def __init__(self, session_factory: sessionmaker, encryption_service: EncryptionService):
        self._session_factory = session_factory
        self.encryption_service = encryption_service

    def save_secret(self, alias: str, secret: str) -> None:
        encrypted = self.encryption_service.encrypt(secret)
        db = self._session_factory()
        try:
            row = db.query(StoredCredential).filter(StoredCredential.alias == alias).first()
            if row:
                row.secret_encrypted = encrypted
                row.updated_at = utcnow()
            else:
                db.add(StoredCredential(alias=alias, secret_encrypted=encrypted))
            db.commit()
            logger.info(f"Stored credential for alias {alias}")
        finally:
            db.close()

    def load_secret(self, alias: str) -> Optional[str]:
        db = self._session_factory()
        try:
            row = db.query(StoredCredential).filter(StoredCredential.alias == alias).first()
        finally:
            db.close()

        if not row:
            return None

        try:
            return self.encryption_service.decrypt(row.secret_encrypted)
        except InvalidToken:
            logger.error(f"Stored credential for alias {alias} cannot be decrypted with the current key")
            return None

    def delete_secret(self, alias: str) -> None:
        db = self._session_factory()
        try:
            deleted = db.query(StoredCredential).filter(StoredCredential.alias == alias).delete()
            db.commit()
            if deleted:
                logger.info(f"Deleted credential for alias {alias}")
        finally:
            db.close()
