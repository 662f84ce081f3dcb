"""
Read-only payload summary.

Extracts the headline figures of an OTLP payload (metrics seen, sessions,
users, models, session-level cost and tokens) for logging and display.
Nothing is written.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Tuple

from usage_ledger.storage.models import UsageDelta
from .attributes import extract_attributes
from .identity import resolve_session
from .router import (
    LINES_OF_CODE_METRIC,
    SESSION_TOKEN_TYPE_KEYS,
    MetricRoute,
    cost_delta,
    extract_data_points,
    resolve_token_field,
    route_for,
    token_delta,
)


@dataclass(frozen=True)
class PayloadSummary:
    """Headline figures of one OTLP payload."""
    resource_blocks: int = 0
    data_points: int = 0
    metric_names: Tuple[str, ...] = ()
    session_ids: Tuple[str, ...] = ()
    user_ids: Tuple[str, ...] = ()
    models: Tuple[str, ...] = ()
    usage: UsageDelta = field(default_factory=UsageDelta)
    lines_of_code: float = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "resource_blocks": self.resource_blocks,
            "data_points": self.data_points,
            "metric_names": list(self.metric_names),
            "session_count": len(self.session_ids),
            "sessions": list(self.session_ids),
            "user_count": len(self.user_ids),
            "models": list(self.models),
            "total_cost": self.usage.cost,
            "total_tokens": {
                "input": self.usage.input_tokens,
                "output": self.usage.output_tokens,
                "cache_read": self.usage.cache_read_tokens,
                "cache_creation": self.usage.cache_creation_tokens,
            },
            "lines_of_code": self.lines_of_code,
        }


def _list(container: Any, key: str) -> List[Any]:
    if not isinstance(container, dict):
        return []
    items = container.get(key)
    return [item for item in items if isinstance(item, dict)] if isinstance(items, list) else []


def _add_unique(seen: List[str], value: Any) -> None:
    if value and value not in seen:
        seen.append(value)


def summarize_payload(payload: Mapping[str, Any]) -> PayloadSummary:
    """Summarize an OTLP-JSON metrics payload.

    Args:
        payload: Decoded OTLP-JSON body

    Returns:
        PayloadSummary; all zero/empty for a payload with no metrics
    """
    blocks = _list(payload, "resourceMetrics")
    metric_names: List[str] = []
    session_ids: List[str] = []
    user_ids: List[str] = []
    models: List[str] = []
    usage = UsageDelta()
    lines_of_code = 0
    data_points = 0

    for block in blocks:
        resource = block.get("resource")
        resource_attrs = extract_attributes(resource.get("attributes") if isinstance(resource, dict) else None)
        for scope in _list(block, "scopeMetrics"):
            for metric in _list(scope, "metrics"):
                name = metric.get("name") or ""
                _add_unique(metric_names, name)
                route = route_for(name)
                for point in extract_data_points(metric):
                    data_points += 1
                    identity = resolve_session(resource_attrs, point.attributes)
                    _add_unique(session_ids, identity.session_id)
                    _add_unique(user_ids, identity.user_id)
                    _add_unique(models, identity.model)

                    if point.histogram is not None:
                        continue
                    if route is MetricRoute.SESSION_COST:
                        usage = usage.plus(cost_delta(point.value))
                    elif route is MetricRoute.SESSION_TOKENS:
                        token_field = resolve_token_field(point.attributes, SESSION_TOKEN_TYPE_KEYS)
                        if token_field is not None:
                            usage = usage.plus(token_delta(token_field, point.value))
                    elif name == LINES_OF_CODE_METRIC:
                        lines_of_code += point.value

    return PayloadSummary(
        resource_blocks=len(blocks),
        data_points=data_points,
        metric_names=tuple(metric_names),
        session_ids=tuple(session_ids),
        user_ids=tuple(user_ids),
        models=tuple(models),
        usage=usage,
        lines_of_code=lines_of_code,
    )
