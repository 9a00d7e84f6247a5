"""Database migration utilities."""

import logging
from sqlalchemy import inspect, text
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# (table, column, DDL type with default) added after the first schema release
COLUMN_MIGRATIONS = [
    ("plans", "include_videos", "BOOLEAN NOT NULL DEFAULT 0"),
    ("plans", "schedule_interval_hours", "INTEGER NOT NULL DEFAULT 24"),
    ("runs", "trigger_source", "VARCHAR NOT NULL DEFAULT 'MANUAL'"),
    ("servers", "last_test_error_category", "VARCHAR"),
]


def migrate_database(db: Session) -> None:
    """Apply database migrations.

    This function checks for missing columns and adds them if needed.
    It's safe to call multiple times.

    Args:
        db: Database session.
    """
    logger.info("Checking for database migrations...")

    engine = db.get_bind()
    inspector = inspect(engine)
    tables = inspector.get_table_names()

    for table, column, ddl in COLUMN_MIGRATIONS:
        if table not in tables:
            continue

        columns = [col['name'] for col in inspector.get_columns(table)]
        if column in columns:
            continue

        logger.info(f"Adding {column} column to {table} table")
        try:
            db.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
            db.commit()
            logger.info(f"Successfully added {table}.{column} column")
        except Exception as e:
            logger.error(f"Failed to add {table}.{column} column: {e}")
            db.rollback()

    logger.info("Database migrations complete")


def get_migration_status(db: Session) -> dict:
    """Get the status of database migrations.

    Args:
        db: Database session.

    Returns:
        Dictionary with migration status information.
    """
    engine = db.get_bind()
    inspector = inspect(engine)

    status = {
        'tables': inspector.get_table_names(),
        'migrations_applied': []
    }

    for table, column, _ in COLUMN_MIGRATIONS:
        if table not in status['tables']:
            continue
        columns = [col['name'] for col in inspector.get_columns(table)]
        if column in columns:
            status['migrations_applied'].append(f"{table}.{column}")

    return status
