#!/usr/bin/env python3
"""Database Utilities for the Entity Synchronization Engine.

This module provides the SQLite plumbing shared by the run ledger and the
tabular sync provider:
    - Connection helper with typed errors
    - Transaction context manager with automatic commit/rollback
    - Row fetching as dictionaries
    - Error conversion to the engine's exception hierarchy

Example:
    conn = connect("entsync.db")
    with database_transaction(conn) as cur:
        cur.execute("INSERT INTO ...")
        cur.execute("UPDATE ...")
        # Automatic commit on success, rollback on exception

Author: Entity Sync Team
"""
import logging
import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Sequence

from .exceptions import (
    DatabaseError,
    IntegrityError,
    TransactionError,
)

logger = logging.getLogger(__name__)


# ============================================
# Connections
# ============================================

def connect(database: str, timeout: float = 5.0) -> sqlite3.Connection:
    """Open a SQLite connection.

    Args:
        database: File path, or ":memory:"
        timeout: Seconds to wait for a locked database

    Returns:
        sqlite3.Connection with foreign keys enabled

    Raises:
        DatabaseError: If the database cannot be opened
    """
    try:
        conn = sqlite3.connect(database, timeout=timeout)
        conn.execute("PRAGMA foreign_keys = ON")
    except sqlite3.Error as e:
        raise DatabaseError(
            f"Failed to open database {database}: {e}",
            details={"database": database},
            cause=e,
        )
    logger.debug(f"Opened database {database}")
    return conn


# ============================================
# Transaction Context Managers
# ============================================

@contextmanager
def database_transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Cursor]:
    """Context manager for database transactions with automatic commit/rollback.

    Args:
        conn: Open sqlite3 connection

    Yields:
        Cursor bound to the transaction

    Raises:
        TransactionError: If the transaction fails
        IntegrityError: If an integrity constraint is violated

    Example:
        with database_transaction(conn) as cur:
            cur.execute("INSERT INTO _sync_run ...")
            # Commits automatically on exit
    """
    if conn is None:
        raise TransactionError("Database connection is not open")

    cur = conn.cursor()
    try:
        yield cur
        conn.commit()
        logger.debug("Transaction committed successfully")

    except Exception as e:
        try:
            conn.rollback()
            logger.debug("Transaction rolled back due to exception")
        except sqlite3.Error as rollback_error:
            logger.error(f"Rollback failed: {rollback_error}")

        if isinstance(e, sqlite3.Error):
            raise _convert_db_exception(e)
        raise

    finally:
        cur.close()


def fetch_all(
    conn: sqlite3.Connection,
    query: str,
    params: Sequence[Any] = (),
) -> list[dict[str, Any]]:
    """Run a query and return its rows as dictionaries keyed by column name."""
    try:
        cur = conn.execute(query, tuple(params))
    except sqlite3.Error as e:
        raise _convert_db_exception(e)
    columns = [col[0] for col in cur.description or ()]
    rows = [dict(zip(columns, row)) for row in cur.fetchall()]
    cur.close()
    return rows


def fetch_one(
    conn: sqlite3.Connection,
    query: str,
    params: Sequence[Any] = (),
) -> Optional[dict[str, Any]]:
    """Run a query and return its first row, or None."""
    rows = fetch_all(conn, query, params)
    return rows[0] if rows else None


# ============================================
# Error Conversion
# ============================================

def _convert_db_exception(e: Exception) -> DatabaseError:
    """Convert a sqlite3 exception to the appropriate DatabaseError subtype."""
    error_str = str(e).lower()

    if isinstance(e, sqlite3.IntegrityError):
        if "unique" in error_str:
            return IntegrityError(f"Duplicate entry: {e}", constraint="unique", cause=e)
        if "foreign key" in error_str:
            return IntegrityError(f"Foreign key violation: {e}", constraint="foreign_key", cause=e)
        if "not null" in error_str:
            return IntegrityError(f"Not null violation: {e}", constraint="not_null", cause=e)
        return IntegrityError(f"Integrity error: {e}", cause=e)

    if "locked" in error_str or "busy" in error_str:
        return TransactionError(f"Database is locked: {e}", operation="transaction", cause=e)

    return DatabaseError(f"Database operation failed: {e}", cause=e)


# ============================================
# Health Check
# ============================================

def check_database_health(conn: Optional[sqlite3.Connection]) -> dict[str, Any]:
    """Check database connection health.

    Returns:
        Dict with health status information
    """
    if conn is None:
        return {"healthy": False, "error": "Connection not open"}

    try:
        result = conn.execute("SELECT 1").fetchone()
        return {"healthy": result == (1,)}
    except sqlite3.Error as e:
        return {"healthy": False, "error": str(e)}


# ============================================
# Exports
# ============================================

__all__ = [
    "connect",
    "database_transaction",
    "fetch_all",
    "fetch_one",
    "check_database_health",
]
