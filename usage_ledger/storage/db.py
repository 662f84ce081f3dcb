"""
Database connection management.

Provides SQLite connections for the sessions, messages and metrics tables.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "usage_ledger.db"

# Seconds a writer waits on a locked database before giving up
BUSY_TIMEOUT = 10.0


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
