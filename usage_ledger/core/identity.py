"""
Session and message identity resolution.

Exporters are inconsistent about attribute naming, so each identity field
is looked up under a dotted and an underscored key. Both resolvers are
pure and never raise; unknown fields come back as None.
"""

from typing import Mapping, Optional, Sequence

from usage_ledger.storage.models import AttributeValue, MessageIdentity, SessionIdentity

SESSION_ID_KEYS = ("session.id", "session_id")
USER_ID_KEYS = ("user.id", "user_id")
USER_EMAIL_KEYS = ("user.email", "user_email")
ORG_ID_KEYS = ("organization.id", "organization_id")
MODEL_KEYS = ("model",)

MESSAGE_ID_KEYS = ("message_id", "message.id")
CONVERSATION_ID_KEYS = ("conversation_id", "conversation.id")
ROLE_KEYS = ("role", "message.role")
MESSAGE_MODEL_KEYS = ("model", "message.model")


def normalize_identity_value(value: Optional[AttributeValue]) -> Optional[str]:
    """Convert an attribute value to an identity string.

    Empty and whitespace-only strings mean "unset" and become None.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        text = "true" if value else "false"
    else:
        text = str(value)
    if not text.strip():
        return None
    return text


def first_present(
    attrs: Mapping[str, AttributeValue],
    keys: Sequence[str],
) -> Optional[str]:
    """Return the first non-empty value found under any of ``keys``."""
    for key in keys:
        value = normalize_identity_value(attrs.get(key))
        if value is not None:
            return value
    return None


def _resolve_field(
    resource_attrs: Mapping[str, AttributeValue],
    datapoint_attrs: Mapping[str, AttributeValue],
    keys: Sequence[str],
) -> Optional[str]:
    resolved = first_present(resource_attrs, keys)
    if resolved is None:
        resolved = first_present(datapoint_attrs, keys)
    return resolved


def resolve_session(
    resource_attrs: Mapping[str, AttributeValue],
    datapoint_attrs: Optional[Mapping[str, AttributeValue]] = None,
) -> SessionIdentity:
    """Resolve session identity, resource attributes taking priority.

    Args:
        resource_attrs: Decoded resource attributes of the block
        datapoint_attrs: Decoded attributes of one data point, if any

    Returns:
        SessionIdentity with every resolvable field set
    """
    datapoint_attrs = datapoint_attrs or {}
    return SessionIdentity(
        session_id=_resolve_field(resource_attrs, datapoint_attrs, SESSION_ID_KEYS),
        user_id=_resolve_field(resource_attrs, datapoint_attrs, USER_ID_KEYS),
        user_email=_resolve_field(resource_attrs, datapoint_attrs, USER_EMAIL_KEYS),
        org_id=_resolve_field(resource_attrs, datapoint_attrs, ORG_ID_KEYS),
        model=_resolve_field(resource_attrs, datapoint_attrs, MODEL_KEYS),
    )


def resolve_message(attrs: Mapping[str, AttributeValue]) -> MessageIdentity:
    """Resolve message identity from a data point's attributes."""
    return MessageIdentity(
        message_id=first_present(attrs, MESSAGE_ID_KEYS),
        conversation_id=first_present(attrs, CONVERSATION_ID_KEYS),
        role=first_present(attrs, ROLE_KEYS),
        model=first_present(attrs, MESSAGE_MODEL_KEYS),
    )
