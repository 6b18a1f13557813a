"""
Database connection management.

Provides SQLite connections for the credit ledger.
"""

import sqlite3
from pathlib import Path


def get_connection(db_path: str = "flowsmith.db", timeout: float = 30.0) -> sqlite3.Connection:
    """Create and return a SQLite database connection.

    The connection runs in autocommit mode (``isolation_level=None``) so
    callers open transactions explicitly with ``BEGIN IMMEDIATE``, which
    takes the write lock before the balance is read.

    Args:
        db_path: Path to SQLite database file
        timeout: Seconds to wait for a competing writer to release the lock

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=timeout, isolation_level=None,
                           check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
