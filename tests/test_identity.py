"""
Unit tests for session and message identity resolution.
"""

from usage_ledger.core.identity import (
    first_present,
    normalize_identity_value,
    resolve_message,
    resolve_session,
)
from usage_ledger.storage.models import MessageIdentity, SessionIdentity


class TestNormalizeIdentityValue:
    """Test normalization of attribute values into identity strings."""

    def test_empty_string_becomes_none(self):
        assert normalize_identity_value("") is None
        assert normalize_identity_value("   ") is None

    def test_none_stays_none(self):
        assert normalize_identity_value(None) is None

    def test_numbers_become_strings(self):
        assert normalize_identity_value(42) == "42"

    def test_plain_string_unchanged(self):
        assert normalize_identity_value("user-1") == "user-1"

    def test_first_present_skips_empty(self):
        attrs = {"session.id": "", "session_id": "S1"}
        assert first_present(attrs, ("session.id", "session_id")) == "S1"


class TestResolveSession:
    """Test session identity resolution with key fallbacks."""

    def test_dotted_resource_keys(self):
        identity = resolve_session({
            "session.id": "S1",
            "user.id": "U1",
            "user.email": "u1@example.com",
            "organization.id": "O1",
            "model": "claude-sonnet",
        })
        assert identity == SessionIdentity("S1", "U1", "u1@example.com", "O1", "claude-sonnet")

    def test_underscored_resource_keys(self):
        identity = resolve_session({
            "session_id": "S1",
            "user_id": "U1",
            "user_email": "u1@example.com",
            "organization_id": "O1",
        })
        assert identity.session_id == "S1"
        assert identity.user_id == "U1"
        assert identity.user_email == "u1@example.com"
        assert identity.org_id == "O1"
        assert identity.model is None

    def test_datapoint_fallback(self):
        identity = resolve_session({}, {"session.id": "S2", "user_id": "U2"})
        assert identity.session_id == "S2"
        assert identity.user_id == "U2"

    def test_resource_takes_priority(self):
        identity = resolve_session(
            {"session_id": "from-resource"},
            {"session.id": "from-datapoint", "user.id": "dp-user"},
        )
        assert identity.session_id == "from-resource"
        assert identity.user_id == "dp-user"

    def test_empty_resource_value_falls_through(self):
        identity = resolve_session({"session_id": ""}, {"session_id": "S3"})
        assert identity.session_id == "S3"

    def test_nothing_resolvable(self):
        assert resolve_session({}, {}) == SessionIdentity()
        assert resolve_session({}) == SessionIdentity()


class TestResolveMessage:
    """Test message identity resolution."""

    def test_underscored_keys(self):
        identity = resolve_message({
            "message_id": "M1",
            "conversation_id": "C1",
            "role": "user",
            "model": "claude-haiku",
        })
        assert identity == MessageIdentity("M1", "C1", "user", "claude-haiku")

    def test_dotted_keys(self):
        identity = resolve_message({
            "message.id": "M1",
            "conversation.id": "C1",
            "message.role": "assistant",
            "message.model": "claude-opus",
        })
        assert identity == MessageIdentity("M1", "C1", "assistant", "claude-opus")

    def test_empty_strings_unset(self):
        identity = resolve_message({"message_id": "M1", "role": "", "model": ""})
        assert identity.message_id == "M1"
        assert identity.role is None
        assert identity.model is None

    def test_missing_message_id(self):
        assert resolve_message({"role": "user"}).message_id is None
