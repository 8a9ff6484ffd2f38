"""
Database migrations for starshelf.

Uses SQLite ALTER TABLE ADD COLUMN for incremental schema evolution.
Each migration is idempotent: columns are only added if absent.

Called automatically from build_engine() after create_all() so both
fresh installs and existing DBs are handled without manual steps.
Other databases get their schema from create_all() alone.
"""
from sqlalchemy import text


def run_migrations(engine) -> None:
    """Apply all pending schema migrations.

    Safe to call multiple times; checks column existence before altering.

    Args:
        engine: SQLAlchemy engine (SQLModel create_engine result).
    """
    if engine.dialect.name != "sqlite":
        return

    with engine.connect() as conn:
        # Repository: unstar marker and derived update flag
        _add_column_if_missing(conn, "repository", "is_followed", "BOOLEAN NOT NULL DEFAULT 1")
        _add_column_if_missing(conn, "repository", "update_available", "BOOLEAN NOT NULL DEFAULT 0")

        # Repository: explicit three-state version choice
        added = _add_column_if_missing(conn, "repository", "version_choice", "VARCHAR")
        if added:
            _backfill_version_choice(conn)

        # SyncStatus: structured failure classification
        _add_column_if_missing(conn, "syncstatus", "error_kind", "VARCHAR")

        conn.commit()


def _add_column_if_missing(conn, table: str, column: str, col_type: str) -> bool:
    """Add a column to a table if it doesn't already exist.

    Args:
        conn: SQLAlchemy connection.
        table: Table name (lowercase, as SQLite stores it).
        column: Column name to add.
        col_type: SQLite type string, e.g. "INTEGER", "REAL", "TEXT".

    Returns:
        True if the column was added.
    """
    result = conn.execute(text(f"PRAGMA table_info({table})"))
    existing_columns = {row[1] for row in result}
    if column in existing_columns:
        return False
    conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}"))
    return True


def _backfill_version_choice(conn) -> None:
    """Derive version_choice for rows written before the column existed.

    Older rows encode the choice as (currently_used_version, has_releases):
    a set version is pinned, a NULL after releases were seen is an explicit
    "not using", and a NULL with no releases yet was never chosen.
    """
    conn.execute(text(
        "UPDATE repository SET version_choice = CASE "
        "WHEN currently_used_version IS NOT NULL THEN 'pinned' "
        "WHEN has_releases THEN 'not_using' "
        "ELSE 'use_latest' END"
    ))
