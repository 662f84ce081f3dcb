"""
Data models for storage layer.

Defines the rows of the sessions, messages and metrics tables and the
value objects that flow into them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Union

AttributeValue = Union[str, int, float, bool]


@dataclass(frozen=True)
class UsageDelta:
    """Additive cost and token amounts applied to a session or message.

    Deltas are commutative, so applying the same set of deltas in any
    order yields the same counters.
    """
    cost: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0

    def plus(self, other: "UsageDelta") -> "UsageDelta":
        """Return a new delta holding the sum of both."""
        return UsageDelta(
            cost=self.cost + other.cost,
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_read_tokens=self.cache_read_tokens + other.cache_read_tokens,
            cache_creation_tokens=self.cache_creation_tokens + other.cache_creation_tokens,
        )

    @property
    def total_tokens(self) -> int:
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_read_tokens
            + self.cache_creation_tokens
        )


@dataclass(frozen=True)
class SessionIdentity:
    """Identity fields of a session. Unknown fields are None."""
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    org_id: Optional[str] = None
    model: Optional[str] = None


@dataclass(frozen=True)
class MessageIdentity:
    """Identity fields of a message. Unknown fields are None."""
    message_id: Optional[str] = None
    conversation_id: Optional[str] = None
    role: Optional[str] = None
    model: Optional[str] = None


@dataclass(frozen=True)
class SessionRecord:
    """A row of the sessions table."""
    session_id: str
    user_id: Optional[str]
    user_email: Optional[str]
    org_id: Optional[str]
    model: Optional[str]
    total_cost: float
    total_input_tokens: int
    total_output_tokens: int
    total_cache_read_tokens: int
    total_cache_creation_tokens: int
    first_seen: datetime
    last_seen: datetime


@dataclass(frozen=True)
class MessageRecord:
    """A row of the messages table."""
    message_id: str
    session_id: str
    conversation_id: Optional[str]
    role: Optional[str]
    model: Optional[str]
    cost: float
    input_tokens: int
    output_tokens: int
    cache_creation_tokens: int
    cache_read_tokens: int
    timestamp: datetime


@dataclass(frozen=True)
class RawMetricRecord:
    """Append-only audit row for one processed data point.

    Correlation columns are best effort and may be None.
    """
    metric_type: str
    metric_name: str
    value: float
    labels: Dict[str, Any] = field(default_factory=dict)
    project_path: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None
