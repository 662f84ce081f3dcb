"""
Synthetic message fallback.

Some exporters only send session-level usage (``claude_code.cost.usage``,
``claude_code.token.usage``) without any message identity. To keep
per-turn granularity, one synthetic message is fabricated per
resourceMetrics block. Its id is derived from the block itself, so
reprocessing the same block lands on the same row.
"""

import hashlib
import json
from typing import Any, Mapping, Optional, Sequence

from usage_ledger.storage.models import MessageIdentity

SYNTHETIC_PREFIX = "synthetic"
DEFAULT_SYNTHETIC_ROLE = "assistant"


def block_nonce(timestamps: Sequence[str], block: Mapping[str, Any]) -> str:
    """Derive a deterministic per-block nonce.

    Uses the earliest ``timeUnixNano`` among the block's session-level data
    points followed by a short digest of the canonical block JSON, so two
    different blocks starting at the same instant stay apart. Without any
    timestamp the longer digest alone is used.
    """
    numeric = []
    for raw in timestamps:
        try:
            numeric.append(int(raw))
        except (TypeError, ValueError):
            continue
    canonical = json.dumps(block, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha1(canonical.encode("utf-8")).hexdigest()
    if numeric:
        return f"{min(numeric)}-{digest[:8]}"
    return digest[:16]


def synthetic_message_id(session_id: str, nonce: str) -> str:
    return f"{SYNTHETIC_PREFIX}-{session_id}-{nonce}"


def is_synthetic_message_id(message_id: Optional[str]) -> bool:
    return bool(message_id) and message_id.startswith(f"{SYNTHETIC_PREFIX}-")


class SyntheticMessagePolicy:
    """Decides when a block needs a synthetic message and builds its identity."""

    def __init__(self, role: str = DEFAULT_SYNTHETIC_ROLE):
        self.role = role

    def applies(self, session_id: Optional[str], saw_session_usage: bool, saw_real_message: bool) -> bool:
        """A synthetic message is due when the block carried session-level
        usage for a known session but resolved no real message id."""
        return bool(session_id) and saw_session_usage and not saw_real_message

    def message_identity(
        self,
        session_id: str,
        timestamps: Sequence[str],
        block: Mapping[str, Any],
        model: Optional[str] = None,
    ) -> MessageIdentity:
        return MessageIdentity(
            message_id=synthetic_message_id(session_id, block_nonce(timestamps, block)),
            conversation_id=None,
            role=self.role,
            model=model,
        )
