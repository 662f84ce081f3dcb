"""
In-memory telemetry store.

Mirrors the SQLite store's semantics (first-writer-wins identity, additive
counters, session foreign key on messages) behind a single lock. Used for
tests and for embedding the engine without a database file.
"""

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from usage_ledger.core.errors import StoreError
from .models import (
    MessageIdentity,
    MessageRecord,
    RawMetricRecord,
    SessionIdentity,
    SessionRecord,
    UsageDelta,
)


class InMemoryTelemetryStore:
    """Dictionary-backed store; every operation is atomic under one lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, SessionRecord] = {}
        self._messages: Dict[str, MessageRecord] = {}
        self._metrics: List[RawMetricRecord] = []

    def upsert_session(self, identity: SessionIdentity, seen_at: Optional[datetime] = None) -> None:
        if not identity.session_id:
            raise ValueError("session_id is required")
        seen = seen_at or datetime.now(timezone.utc)
        with self._lock:
            existing = self._sessions.get(identity.session_id)
            if existing is not None:
                self._sessions[identity.session_id] = replace(existing, last_seen=seen)
                return
            self._sessions[identity.session_id] = SessionRecord(
                session_id=identity.session_id,
                user_id=identity.user_id,
                user_email=identity.user_email,
                org_id=identity.org_id,
                model=identity.model,
                total_cost=0.0,
                total_input_tokens=0,
                total_output_tokens=0,
                total_cache_read_tokens=0,
                total_cache_creation_tokens=0,
                first_seen=seen,
                last_seen=seen,
            )

    def accumulate_session(self, session_id: str, delta: UsageDelta) -> bool:
        with self._lock:
            existing = self._sessions.get(session_id)
            if existing is None:
                return False
            self._sessions[session_id] = replace(
                existing,
                total_cost=existing.total_cost + delta.cost,
                total_input_tokens=existing.total_input_tokens + delta.input_tokens,
                total_output_tokens=existing.total_output_tokens + delta.output_tokens,
                total_cache_read_tokens=existing.total_cache_read_tokens + delta.cache_read_tokens,
                total_cache_creation_tokens=(
                    existing.total_cache_creation_tokens + delta.cache_creation_tokens
                ),
                last_seen=datetime.now(timezone.utc),
            )
            return True

    def upsert_message(
        self,
        identity: MessageIdentity,
        session_id: str,
        delta: UsageDelta,
        created_at: Optional[datetime] = None,
    ) -> None:
        if not identity.message_id:
            raise ValueError("message_id is required")
        with self._lock:
            existing = self._messages.get(identity.message_id)
            if existing is not None:
                existing = replace(
                    existing,
                    conversation_id=existing.conversation_id or identity.conversation_id,
                    role=existing.role or identity.role,
                    model=existing.model or identity.model,
                )
                self._messages[identity.message_id] = _add_to_message(existing, delta, include_cost=True)
                return
            if session_id not in self._sessions:
                raise StoreError(
                    "upsert_message",
                    LookupError(f"FOREIGN KEY constraint failed: unknown session {session_id}"),
                )
            self._messages[identity.message_id] = MessageRecord(
                message_id=identity.message_id,
                session_id=session_id,
                conversation_id=identity.conversation_id,
                role=identity.role,
                model=identity.model,
                cost=delta.cost,
                input_tokens=delta.input_tokens,
                output_tokens=delta.output_tokens,
                cache_creation_tokens=delta.cache_creation_tokens,
                cache_read_tokens=delta.cache_read_tokens,
                timestamp=created_at or datetime.now(timezone.utc),
            )

    def accumulate_message_tokens(self, message_id: str, delta: UsageDelta) -> bool:
        with self._lock:
            existing = self._messages.get(message_id)
            if existing is None:
                return False
            self._messages[message_id] = _add_to_message(existing, delta, include_cost=False)
            return True

    def record_metric(self, record: RawMetricRecord) -> None:
        if record.timestamp is None:
            record = replace(record, timestamp=datetime.now(timezone.utc))
        with self._lock:
            self._metrics.append(record)

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            return self._sessions.get(session_id)

    def get_message(self, message_id: str) -> Optional[MessageRecord]:
        with self._lock:
            return self._messages.get(message_id)

    def list_session_messages(self, session_id: str) -> List[MessageRecord]:
        with self._lock:
            # dicts keep insertion order, which is creation order here
            return [m for m in self._messages.values() if m.session_id == session_id]

    def fetch_recent_metrics(
        self,
        session_id: Optional[str] = None,
        metric_name: Optional[str] = None,
        limit: int = 100,
    ) -> List[RawMetricRecord]:
        with self._lock:
            rows = list(reversed(self._metrics))
        if session_id:
            rows = [r for r in rows if r.session_id == session_id]
        if metric_name:
            rows = [r for r in rows if r.metric_name == metric_name]
        return rows[:limit]


def _add_to_message(existing: MessageRecord, delta: UsageDelta, include_cost: bool) -> MessageRecord:
    return replace(
        existing,
        cost=existing.cost + (delta.cost if include_cost else 0.0),
        input_tokens=existing.input_tokens + delta.input_tokens,
        output_tokens=existing.output_tokens + delta.output_tokens,
        cache_creation_tokens=existing.cache_creation_tokens + delta.cache_creation_tokens,
        cache_read_tokens=existing.cache_read_tokens + delta.cache_read_tokens,
    )
