"""Database configuration and session management."""

import os
import logging
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Create declarative base for models
Base = declarative_base()


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Database:
    """Owns the SQLAlchemy engine and session factory for one application instance.

    Built explicitly at startup and handed to the repositories; nothing in the
    package reaches for a shared global engine.
    """

    def __init__(self, database_url: str, engine: Optional[Engine] = None):
        """Initialize database.

        Args:
            database_url: SQLAlchemy URL, e.g. ``sqlite:///./data/nasbox.db``.
            engine: Optional pre-built engine (tests pass an in-memory one).
        """
        self.database_url = database_url
        self.engine = engine or self._create_engine(database_url)
        self.session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )

    @staticmethod
    def _create_engine(database_url: str) -> Engine:
        is_sqlite = database_url.startswith("sqlite")

        if is_sqlite and ":memory:" not in database_url and database_url != "sqlite://":
            # Create data directory if it doesn't exist
            db_path = database_url.split("///", 1)[-1]
            directory = os.path.dirname(db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

        if is_sqlite and (":memory:" in database_url or database_url == "sqlite://"):
            engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False} if is_sqlite else {},
            )

        if is_sqlite:
            # Enforce foreign keys (cascade deletes of runs, logs and records)
            @event.listens_for(engine, "connect")
            def set_sqlite_pragma(dbapi_conn, connection_record):
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        return engine

    def init_db(self) -> None:
        """Initialize database tables.

        Creates all tables defined in the models if they don't exist.
        This function is idempotent and safe to call multiple times.
        """
        # Import all models to ensure they are registered with Base
        from nasbox.models import Server, Plan, Run, RunLog, BackupRecord, StoredCredential  # noqa: F401

        logger.info("Initializing database...")

        inspector = inspect(self.engine)
        existing_tables = inspector.get_table_names()

        if not existing_tables:
            logger.info("No existing tables found. Creating all tables...")
        else:
            logger.info(f"Found existing tables: {existing_tables}")

        Base.metadata.create_all(bind=self.engine)

        # Run migrations for existing databases
        if existing_tables:
            logger.info("Running database migrations...")
            from nasbox.database.migrations import migrate_database
            db = self.session_factory()
            try:
                migrate_database(db)
            finally:
                db.close()

        inspector = inspect(self.engine)
        created_tables = inspector.get_table_names()
        logger.info(f"Database initialized with tables: {created_tables}")

    def drop_all_tables(self) -> None:
        """Drop all tables from the database.

        WARNING: This will delete all data. Use only for testing or development.
        """
        logger.warning("Dropping all tables from database...")
        Base.metadata.drop_all(bind=self.engine)
        logger.info("All tables dropped successfully")

    def reset_db(self) -> None:
        """Reset the database by dropping and recreating all tables.

        WARNING: This will delete all data. Use only for testing or development.
        """
        logger.warning("Resetting database...")
        self.drop_all_tables()
        self.init_db()
        logger.info("Database reset complete")

    def dispose(self) -> None:
        """Release pooled connections."""
        self.engine.dispose()
