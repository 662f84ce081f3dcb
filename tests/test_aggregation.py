"""
Unit tests for session and message aggregators.
"""

from unittest.mock import MagicMock

import pytest

from usage_ledger.core.aggregation import (
    MessageAggregator,
    SessionAggregator,
    normalize_message_identity,
    normalize_session_identity,
)
from usage_ledger.storage.memory import InMemoryTelemetryStore
from usage_ledger.storage.models import MessageIdentity, SessionIdentity, UsageDelta


class TestNormalization:

    def test_session_identity_blanks_become_none(self):
        identity = normalize_session_identity(SessionIdentity("S1", "", "  ", None, "m"))
        assert identity == SessionIdentity("S1", None, None, None, "m")

    def test_message_identity_blanks_become_none(self):
        identity = normalize_message_identity(MessageIdentity("", "C1", "", None))
        assert identity == MessageIdentity(None, "C1", None, None)


class TestSessionAggregator:
    """Test session creation and counter accumulation."""

    def setup_method(self):
        self.store = InMemoryTelemetryStore()
        self.sessions = SessionAggregator(self.store)

    def test_upsert_without_session_id_writes_nothing(self):
        assert self.sessions.upsert(SessionIdentity(user_id="U1")) is False
        assert self.sessions.upsert(SessionIdentity(session_id="")) is False

    def test_upsert_then_accumulate(self):
        assert self.sessions.upsert(SessionIdentity("S1", model="claude-sonnet"))
        assert self.sessions.accumulate("S1", UsageDelta(cost=0.15))
        assert self.sessions.accumulate("S1", UsageDelta(input_tokens=150))

        session = self.store.get_session("S1")
        assert session.total_cost == pytest.approx(0.15)
        assert session.total_input_tokens == 150
        assert session.model == "claude-sonnet"

    def test_accumulate_unknown_session(self):
        assert self.sessions.accumulate("ghost", UsageDelta(cost=1.0)) is False
        assert self.sessions.accumulate(None, UsageDelta(cost=1.0)) is False

    def test_store_not_called_without_session_id(self):
        store = MagicMock()
        SessionAggregator(store).upsert(SessionIdentity())
        SessionAggregator(store).accumulate("", UsageDelta(cost=1.0))

        store.upsert_session.assert_not_called()
        store.accumulate_session.assert_not_called()


class TestMessageAggregator:
    """Test message creation and accumulation."""

    def setup_method(self):
        self.store = InMemoryTelemetryStore()
        self.store.upsert_session(SessionIdentity("S1"))
        self.messages = MessageAggregator(self.store)

    def test_upsert_creates_then_adds(self):
        identity = MessageIdentity("M1", "C1", "assistant", "claude-haiku")
        assert self.messages.upsert(identity, "S1", UsageDelta(cost=0.05))
        assert self.messages.upsert(identity, "S1", UsageDelta(cost=0.05))

        message = self.store.get_message("M1")
        assert message.session_id == "S1"
        assert message.cost == pytest.approx(0.10)

    def test_upsert_requires_both_ids(self):
        assert self.messages.upsert(MessageIdentity(None), "S1", UsageDelta(cost=1.0)) is False
        assert self.messages.upsert(MessageIdentity("M1"), None, UsageDelta(cost=1.0)) is False
        assert self.messages.upsert(MessageIdentity("M1"), "", UsageDelta(cost=1.0)) is False
        assert self.store.get_message("M1") is None

    def test_accumulate_tokens_existing_message(self):
        self.messages.upsert(MessageIdentity("M1"), "S1", UsageDelta(cost=0.05))

        assert self.messages.accumulate_tokens("M1", UsageDelta(input_tokens=150))
        assert self.messages.accumulate_tokens("M1", UsageDelta(output_tokens=25))

        message = self.store.get_message("M1")
        assert message.input_tokens == 150
        assert message.output_tokens == 25

    def test_accumulate_tokens_missing_message(self):
        assert self.messages.accumulate_tokens("ghost", UsageDelta(input_tokens=150)) is False
        assert self.messages.accumulate_tokens(None, UsageDelta(input_tokens=150)) is False
        assert self.store.get_message("ghost") is None
