"""
Session and message aggregation.

Thin rules layer over a TelemetryStore: normalizes identity fields,
enforces the correlation-key preconditions and hands every counter change
to the store as one additive delta.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Optional

from usage_ledger.storage.models import MessageIdentity, SessionIdentity, UsageDelta
from usage_ledger.storage.repository import TelemetryStore
from .identity import normalize_identity_value

logger = logging.getLogger(__name__)


def normalize_session_identity(identity: SessionIdentity) -> SessionIdentity:
    return replace(
        identity,
        session_id=normalize_identity_value(identity.session_id),
        user_id=normalize_identity_value(identity.user_id),
        user_email=normalize_identity_value(identity.user_email),
        org_id=normalize_identity_value(identity.org_id),
        model=normalize_identity_value(identity.model),
    )


def normalize_message_identity(identity: MessageIdentity) -> MessageIdentity:
    return replace(
        identity,
        message_id=normalize_identity_value(identity.message_id),
        conversation_id=normalize_identity_value(identity.conversation_id),
        role=normalize_identity_value(identity.role),
        model=normalize_identity_value(identity.model),
    )


class SessionAggregator:
    """Creates sessions and accumulates their cost and token totals."""

    def __init__(self, store: TelemetryStore):
        self.store = store

    def upsert(self, identity: SessionIdentity, seen_at: Optional[datetime] = None) -> bool:
        """Create the session if absent, else refresh its last_seen.

        Identity fields are first-writer-wins; a later call never changes
        them even if the first writer left them unset.

        Returns:
            False if the identity has no session id (nothing written)
        """
        identity = normalize_session_identity(identity)
        if identity.session_id is None:
            return False
        self.store.upsert_session(identity, seen_at)
        logger.debug("Upserted session %s", identity.session_id)
        return True

    def accumulate(self, session_id: Optional[str], delta: UsageDelta) -> bool:
        """Add a delta to a session's counters.

        Returns:
            False if session_id is unset or the session row is missing
        """
        session_id = normalize_identity_value(session_id)
        if session_id is None:
            return False
        updated = self.store.accumulate_session(session_id, delta)
        if not updated:
            logger.warning("Session %s not found; usage delta dropped", session_id)
        return updated


class MessageAggregator:
    """Creates messages and accumulates their cost and token counters.

    A message is only persisted when both its id and its session id are
    known. Identity fields are filled once, where still unset, and never
    overwritten.
    """

    def __init__(self, store: TelemetryStore):
        self.store = store

    def upsert(
        self,
        identity: MessageIdentity,
        session_id: Optional[str],
        delta: UsageDelta,
        created_at: Optional[datetime] = None,
    ) -> bool:
        """Insert the message with ``delta`` as initial counters, or add
        ``delta`` to the existing row.

        Returns:
            False if the message id or session id is missing
        """
        identity = normalize_message_identity(identity)
        session_id = normalize_identity_value(session_id)
        if identity.message_id is None or session_id is None:
            return False
        self.store.upsert_message(identity, session_id, delta, created_at)
        logger.debug(
            "Upserted message %s in session %s (cost=%s tokens=%s)",
            identity.message_id, session_id, delta.cost, delta.total_tokens,
        )
        return True

    def accumulate_tokens(self, message_id: Optional[str], delta: UsageDelta) -> bool:
        """Add token counts to an existing message.

        A missing message is not an error: token metrics may arrive before
        or without the batch that creates the message.

        Returns:
            True if an existing message was updated
        """
        message_id = normalize_identity_value(message_id)
        if message_id is None:
            return False
        updated = self.store.accumulate_message_tokens(message_id, delta)
        if not updated:
            logger.debug("Message %s not found; token delta ignored", message_id)
        return updated
