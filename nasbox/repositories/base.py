"""Shared repository plumbing."""

from contextlib import contextmanager
from typing import Iterator
from sqlalchemy.orm import Session, sessionmaker


class DuplicateRecordError(ValueError):
    """Raised when an insert violates a uniqueness constraint."""


class SessionRepository:
    """Base for repositories that open one short-lived session per operation.

    Sessions are never shared between callers, so concurrent runs can use the
    same repository instance safely; consistency is left to the database.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()
