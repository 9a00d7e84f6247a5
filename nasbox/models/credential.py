"""Stored credential database model."""

from sqlalchemy import Column, String, Text, DateTime
from nasbox.database.database import Base, utcnow


class StoredCredential(Base):
    """Encrypted secret addressed by an opaque alias."""

    __tablename__ = "credentials"

    alias = Column(String, primary_key=True)
    secret_encrypted = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
