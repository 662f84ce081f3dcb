"""
Repository pattern for data access.

Handles the sessions, messages and metrics tables. Every counter mutation
is a single additive SQL statement so concurrent writers touching the same
session or message never lose updates.
"""

import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, List, Optional, Protocol, Sequence

from usage_ledger.core.errors import StoreError
from .db import DEFAULT_DB_PATH, get_connection
from .models import (
    MessageIdentity,
    MessageRecord,
    RawMetricRecord,
    SessionIdentity,
    SessionRecord,
    UsageDelta,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TelemetryStore(Protocol):
    """Storage operations the ingestion engine depends on."""

    def upsert_session(self, identity: SessionIdentity, seen_at: Optional[datetime] = None) -> None:
        ...

    def accumulate_session(self, session_id: str, delta: UsageDelta) -> bool:
        ...

    def upsert_message(
        self,
        identity: MessageIdentity,
        session_id: str,
        delta: UsageDelta,
        created_at: Optional[datetime] = None,
    ) -> None:
        ...

    def accumulate_message_tokens(self, message_id: str, delta: UsageDelta) -> bool:
        ...

    def record_metric(self, record: RawMetricRecord) -> None:
        ...

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        ...

    def get_message(self, message_id: str) -> Optional[MessageRecord]:
        ...

    def list_session_messages(self, session_id: str) -> List[MessageRecord]:
        ...

    def fetch_recent_metrics(
        self,
        session_id: Optional[str] = None,
        metric_name: Optional[str] = None,
        limit: int = 100,
    ) -> List[RawMetricRecord]:
        ...


_SESSION_COLUMNS = """
    session_id, user_id, user_email, organization_id, model, total_cost,
    total_input_tokens, total_output_tokens, total_cache_read_tokens,
    total_cache_creation_tokens, first_seen, last_seen
"""

_MESSAGE_COLUMNS = """
    message_id, session_id, conversation_id, role, model, cost,
    input_tokens, output_tokens, cache_creation_tokens, cache_read_tokens,
    timestamp
"""

_METRIC_COLUMNS = """
    metric_type, metric_name, metric_value, labels, project_path,
    user_id, session_id, metadata, timestamp
"""


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the sessions, messages and metrics tables if they don't exist.

    Column names match what the read API queries. The metrics table is an
    append-only audit trail.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL UNIQUE,
                user_id TEXT,
                user_email TEXT,
                organization_id TEXT,
                model TEXT,
                total_cost REAL NOT NULL DEFAULT 0,
                total_input_tokens INTEGER NOT NULL DEFAULT 0,
                total_output_tokens INTEGER NOT NULL DEFAULT 0,
                total_cache_read_tokens INTEGER NOT NULL DEFAULT 0,
                total_cache_creation_tokens INTEGER NOT NULL DEFAULT 0,
                first_seen TEXT NOT NULL,
                last_seen TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                message_id TEXT NOT NULL UNIQUE,
                session_id TEXT NOT NULL REFERENCES sessions(session_id),
                conversation_id TEXT,
                role TEXT,
                model TEXT,
                cost REAL NOT NULL DEFAULT 0,
                input_tokens INTEGER NOT NULL DEFAULT 0,
                output_tokens INTEGER NOT NULL DEFAULT 0,
                cache_creation_tokens INTEGER NOT NULL DEFAULT 0,
                cache_read_tokens INTEGER NOT NULL DEFAULT 0,
                timestamp TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS metrics (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                metric_type TEXT NOT NULL,
                metric_name TEXT NOT NULL,
                metric_value REAL,
                labels TEXT,
                project_path TEXT,
                user_id TEXT,
                session_id TEXT,
                metadata TEXT
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_session ON messages(session_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_metrics_session ON metrics(session_id)")
        conn.commit()
    finally:
        conn.close()


class SQLiteTelemetryStore:
    """SQLite-backed store for sessions, messages and raw metrics.

    A connection is opened per operation, so one store instance can be
    shared by concurrent ingestion requests.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def initialize(self) -> None:
        initialize_schema(self.db_path)

    def _write(self, operation: str, sql: str, params: Sequence[Any]) -> int:
        """Run one write statement in its own transaction.

        Returns:
            Number of rows affected

        Raises:
            StoreError: If SQLite reports any error
        """
        try:
            conn = get_connection(self.db_path)
        except sqlite3.Error as e:
            raise StoreError(operation, e) from e
        try:
            cursor = conn.execute(sql, params)
            conn.commit()
            return cursor.rowcount
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(operation, e) from e
        finally:
            conn.close()

    def _read(self, operation: str, sql: str, params: Sequence[Any]) -> List[tuple]:
        try:
            conn = get_connection(self.db_path)
        except sqlite3.Error as e:
            raise StoreError(operation, e) from e
        try:
            return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(operation, e) from e
        finally:
            conn.close()

    def upsert_session(self, identity: SessionIdentity, seen_at: Optional[datetime] = None) -> None:
        """Create the session row if absent, otherwise only refresh last_seen.

        Identity fields of an existing row are never overwritten: the first
        writer wins for the session's lifetime.

        Args:
            identity: Session identity; session_id is required
            seen_at: Observation time (defaults to now)
        """
        if not identity.session_id:
            raise ValueError("session_id is required")
        seen = (seen_at or _utcnow()).isoformat()
        self._write(
            "upsert_session",
            """
            INSERT INTO sessions
            (session_id, user_id, user_email, organization_id, model, first_seen, last_seen)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(session_id) DO UPDATE SET last_seen = excluded.last_seen
            """,
            (
                identity.session_id,
                identity.user_id,
                identity.user_email,
                identity.org_id,
                identity.model,
                seen,
                seen,
            ),
        )

    def accumulate_session(self, session_id: str, delta: UsageDelta) -> bool:
        """Add a usage delta to a session's counters in one statement.

        Returns:
            True if the session row exists and was updated
        """
        rowcount = self._write(
            "accumulate_session",
            """
            UPDATE sessions SET
                total_cost = total_cost + ?,
                total_input_tokens = total_input_tokens + ?,
                total_output_tokens = total_output_tokens + ?,
                total_cache_read_tokens = total_cache_read_tokens + ?,
                total_cache_creation_tokens = total_cache_creation_tokens + ?,
                last_seen = ?
            WHERE session_id = ?
            """,
            (
                delta.cost,
                delta.input_tokens,
                delta.output_tokens,
                delta.cache_read_tokens,
                delta.cache_creation_tokens,
                _utcnow().isoformat(),
                session_id,
            ),
        )
        return rowcount > 0

    def upsert_message(
        self,
        identity: MessageIdentity,
        session_id: str,
        delta: UsageDelta,
        created_at: Optional[datetime] = None,
    ) -> None:
        """Insert a message, or add to its counters if it already exists.

        On conflict the counters are added; conversation, role and model are
        only filled where the existing row left them unset.

        Raises:
            StoreError: If the session row does not exist
        """
        if not identity.message_id:
            raise ValueError("message_id is required")
        self._write(
            "upsert_message",
            """
            INSERT INTO messages
            (message_id, session_id, conversation_id, role, model, cost,
             input_tokens, output_tokens, cache_creation_tokens, cache_read_tokens,
             timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(message_id) DO UPDATE SET
                conversation_id = COALESCE(messages.conversation_id, excluded.conversation_id),
                role = COALESCE(messages.role, excluded.role),
                model = COALESCE(messages.model, excluded.model),
                cost = cost + excluded.cost,
                input_tokens = input_tokens + excluded.input_tokens,
                output_tokens = output_tokens + excluded.output_tokens,
                cache_creation_tokens = cache_creation_tokens + excluded.cache_creation_tokens,
                cache_read_tokens = cache_read_tokens + excluded.cache_read_tokens
            """,
            (
                identity.message_id,
                session_id,
                identity.conversation_id,
                identity.role,
                identity.model,
                delta.cost,
                delta.input_tokens,
                delta.output_tokens,
                delta.cache_creation_tokens,
                delta.cache_read_tokens,
                (created_at or _utcnow()).isoformat(),
            ),
        )

    def accumulate_message_tokens(self, message_id: str, delta: UsageDelta) -> bool:
        """Add the token part of a delta to an existing message.

        Returns:
            False if no message with this id exists (nothing is written)
        """
        rowcount = self._write(
            "accumulate_message_tokens",
            """
            UPDATE messages SET
                input_tokens = input_tokens + ?,
                output_tokens = output_tokens + ?,
                cache_read_tokens = cache_read_tokens + ?,
                cache_creation_tokens = cache_creation_tokens + ?
            WHERE message_id = ?
            """,
            (
                delta.input_tokens,
                delta.output_tokens,
                delta.cache_read_tokens,
                delta.cache_creation_tokens,
                message_id,
            ),
        )
        return rowcount > 0

    def record_metric(self, record: RawMetricRecord) -> None:
        """Append one raw metric row. Labels and metadata are stored as JSON."""
        self._write(
            "record_metric",
            f"INSERT INTO metrics ({_METRIC_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                record.metric_type,
                record.metric_name,
                record.value,
                json.dumps(record.labels, default=str),
                record.project_path,
                record.user_id,
                record.session_id,
                json.dumps(record.metadata, default=str),
                (record.timestamp or _utcnow()).isoformat(),
            ),
        )

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        rows = self._read(
            "get_session",
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE session_id = ?",
            (session_id,),
        )
        return _session_from_row(rows[0]) if rows else None

    def get_message(self, message_id: str) -> Optional[MessageRecord]:
        rows = self._read(
            "get_message",
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE message_id = ?",
            (message_id,),
        )
        return _message_from_row(rows[0]) if rows else None

    def list_session_messages(self, session_id: str) -> List[MessageRecord]:
        """Get a session's messages, oldest first."""
        rows = self._read(
            "list_session_messages",
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE session_id = ? ORDER BY timestamp ASC, id ASC",
            (session_id,),
        )
        return [_message_from_row(row) for row in rows]

    def fetch_recent_metrics(
        self,
        session_id: Optional[str] = None,
        metric_name: Optional[str] = None,
        limit: int = 100,
    ) -> List[RawMetricRecord]:
        """Fetch raw metric rows, newest first, optionally filtered.

        Args:
            session_id: Optional filter for a specific session
            metric_name: Optional filter for a specific metric name
            limit: Maximum number of rows to return
        """
        query = f"SELECT {_METRIC_COLUMNS} FROM metrics"
        params: List[Any] = []
        conditions = []

        if session_id:
            conditions.append("session_id = ?")
            params.append(session_id)
        if metric_name:
            conditions.append("metric_name = ?")
            params.append(metric_name)

        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        rows = self._read("fetch_recent_metrics", query, params)
        return [_metric_from_row(row) for row in rows]


def _session_from_row(row: tuple) -> SessionRecord:
    return SessionRecord(
        session_id=row[0],
        user_id=row[1],
        user_email=row[2],
        org_id=row[3],
        model=row[4],
        total_cost=float(row[5]),
        total_input_tokens=int(row[6]),
        total_output_tokens=int(row[7]),
        total_cache_read_tokens=int(row[8]),
        total_cache_creation_tokens=int(row[9]),
        first_seen=datetime.fromisoformat(row[10]),
        last_seen=datetime.fromisoformat(row[11]),
    )


def _message_from_row(row: tuple) -> MessageRecord:
    return MessageRecord(
        message_id=row[0],
        session_id=row[1],
        conversation_id=row[2],
        role=row[3],
        model=row[4],
        cost=float(row[5]),
        input_tokens=int(row[6]),
        output_tokens=int(row[7]),
        cache_creation_tokens=int(row[8]),
        cache_read_tokens=int(row[9]),
        timestamp=datetime.fromisoformat(row[10]),
    )


def _metric_from_row(row: tuple) -> RawMetricRecord:
    return RawMetricRecord(
        metric_type=row[0],
        metric_name=row[1],
        value=row[2],
        labels=json.loads(row[3]) if row[3] else {},
        project_path=row[4],
        user_id=row[5],
        session_id=row[6],
        metadata=json.loads(row[7]) if row[7] else {},
        timestamp=datetime.fromisoformat(row[8]),
    )
