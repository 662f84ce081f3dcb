"""
Metric classification and routing.

Classifies an OTLP metric by its shape, unpacks its data points and maps
metric names to the aggregation they feed.

Routing table (exact, case-sensitive names):
- claude_code.cost.usage      -> session cost
- claude_code.token.usage     -> session tokens, by ``type``
- conversation.message.cost   -> message cost
- conversation.message.tokens -> message tokens, by ``type`` or ``token.type``
- anything else               -> raw metric row only
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from usage_ledger.storage.models import AttributeValue, UsageDelta
from .attributes import extract_attributes

SESSION_COST_METRIC = "claude_code.cost.usage"
SESSION_TOKEN_METRIC = "claude_code.token.usage"
MESSAGE_COST_METRIC = "conversation.message.cost"
MESSAGE_TOKEN_METRIC = "conversation.message.tokens"
LINES_OF_CODE_METRIC = "claude_code.lines_of_code.count"


class MetricType(Enum):
    """Storage type of a metric, derived from its OTLP shape."""
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"
    UNKNOWN = "unknown"


class MetricRoute(Enum):
    """Aggregation a metric feeds."""
    SESSION_COST = "session_cost"
    SESSION_TOKENS = "session_tokens"
    MESSAGE_COST = "message_cost"
    MESSAGE_TOKENS = "message_tokens"
    UNROUTED = "unrouted"

    @property
    def is_session_level(self) -> bool:
        return self in (MetricRoute.SESSION_COST, MetricRoute.SESSION_TOKENS)

    @property
    def is_message_level(self) -> bool:
        return self in (MetricRoute.MESSAGE_COST, MetricRoute.MESSAGE_TOKENS)


class TokenField(Enum):
    """Token counter a token metric adds to."""
    INPUT = "input"
    OUTPUT = "output"
    CACHE_READ = "cache_read"
    CACHE_CREATION = "cache_creation"


_ROUTES: Dict[str, MetricRoute] = {
    SESSION_COST_METRIC: MetricRoute.SESSION_COST,
    SESSION_TOKEN_METRIC: MetricRoute.SESSION_TOKENS,
    MESSAGE_COST_METRIC: MetricRoute.MESSAGE_COST,
    MESSAGE_TOKEN_METRIC: MetricRoute.MESSAGE_TOKENS,
}

_TOKEN_TYPES: Dict[str, TokenField] = {
    "input": TokenField.INPUT,
    "output": TokenField.OUTPUT,
    "cacheRead": TokenField.CACHE_READ,
    "cache_read": TokenField.CACHE_READ,
    "cacheCreation": TokenField.CACHE_CREATION,
    "cache_creation": TokenField.CACHE_CREATION,
}

SESSION_TOKEN_TYPE_KEYS = ("type",)
MESSAGE_TOKEN_TYPE_KEYS = ("type", "token.type")


@dataclass(frozen=True)
class HistogramSummary:
    """Distribution data of one histogram data point."""
    count: int = 0
    sum: float = 0.0
    min: Optional[float] = None
    max: Optional[float] = None
    bucket_counts: List[Any] = field(default_factory=list)
    explicit_bounds: List[Any] = field(default_factory=list)
    exemplars: List[Any] = field(default_factory=list)


@dataclass(frozen=True)
class DataPoint:
    """One decoded OTLP data point."""
    value: float
    attributes: Dict[str, AttributeValue]
    time_unix_nano: Optional[str] = None
    histogram: Optional[HistogramSummary] = None


def classify_metric(metric: Mapping[str, Any]) -> MetricType:
    """Determine the storage type of a metric from its OTLP shape.

    Monotonic sums are counters; non-monotonic sums are reported as gauges.
    """
    if isinstance(metric.get("sum"), dict):
        return MetricType.COUNTER if metric["sum"].get("isMonotonic") is True else MetricType.GAUGE
    if isinstance(metric.get("gauge"), dict):
        return MetricType.GAUGE
    if isinstance(metric.get("histogram"), dict):
        return MetricType.HISTOGRAM
    return MetricType.UNKNOWN


def route_for(metric_name: Optional[str]) -> MetricRoute:
    return _ROUTES.get(metric_name or "", MetricRoute.UNROUTED)


def token_field_for(token_type: Optional[AttributeValue]) -> Optional[TokenField]:
    """Map a token ``type`` attribute to its counter; None if unrecognized."""
    if not isinstance(token_type, str):
        return None
    return _TOKEN_TYPES.get(token_type)


def resolve_token_field(
    attrs: Mapping[str, AttributeValue],
    keys: Tuple[str, ...] = SESSION_TOKEN_TYPE_KEYS,
) -> Optional[TokenField]:
    """Find the token type under the first of ``keys`` that is set."""
    for key in keys:
        token_type = attrs.get(key)
        if token_type is None or token_type == "":
            continue
        return token_field_for(token_type)
    return None


def token_delta(token_field: TokenField, value: float) -> UsageDelta:
    """Build a delta that adds ``value`` tokens to a single counter."""
    tokens = int(value)
    if token_field is TokenField.INPUT:
        return UsageDelta(input_tokens=tokens)
    if token_field is TokenField.OUTPUT:
        return UsageDelta(output_tokens=tokens)
    if token_field is TokenField.CACHE_READ:
        return UsageDelta(cache_read_tokens=tokens)
    return UsageDelta(cache_creation_tokens=tokens)


def cost_delta(value: float) -> UsageDelta:
    return UsageDelta(cost=float(value))


def _to_int(raw: Any) -> Optional[int]:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _to_float(raw: Any) -> Optional[float]:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def extract_value(data_point: Mapping[str, Any]) -> float:
    """Extract the scalar value of a number data point.

    ``asInt`` is preferred over ``asDouble``; 0 when neither decodes.
    """
    if data_point.get("asInt") is not None:
        as_int = _to_int(data_point["asInt"])
        if as_int is not None:
            return as_int
    if data_point.get("asDouble") is not None:
        as_double = _to_float(data_point["asDouble"])
        if as_double is not None:
            return as_double
    return 0


def _histogram_summary(data_point: Mapping[str, Any]) -> HistogramSummary:
    def _list(key: str) -> List[Any]:
        raw = data_point.get(key)
        return list(raw) if isinstance(raw, list) else []

    return HistogramSummary(
        count=_to_int(data_point.get("count")) or 0,
        sum=_to_float(data_point.get("sum")) or 0.0,
        min=_to_float(data_point.get("min")),
        max=_to_float(data_point.get("max")),
        bucket_counts=_list("bucketCounts"),
        explicit_bounds=_list("explicitBounds"),
        exemplars=_list("exemplars"),
    )


def _raw_data_points(metric: Mapping[str, Any]) -> List[Dict[str, Any]]:
    for shape in ("sum", "gauge", "histogram"):
        container = metric.get(shape)
        if isinstance(container, dict):
            points = container.get("dataPoints")
            if not isinstance(points, list):
                return []
            return [p for p in points if isinstance(p, dict)]
    return []


def extract_data_points(metric: Mapping[str, Any]) -> List[DataPoint]:
    """Decode the data points of a metric.

    Absent or malformed containers yield an empty list. Histogram points
    carry their distribution in ``histogram`` and use ``sum`` as value.
    """
    is_histogram = classify_metric(metric) is MetricType.HISTOGRAM
    points = []
    for raw in _raw_data_points(metric):
        time_unix_nano = raw.get("timeUnixNano")
        if time_unix_nano is not None:
            time_unix_nano = str(time_unix_nano)
        if is_histogram:
            summary = _histogram_summary(raw)
            points.append(DataPoint(
                value=summary.sum,
                attributes=extract_attributes(raw.get("attributes")),
                time_unix_nano=time_unix_nano,
                histogram=summary,
            ))
        else:
            points.append(DataPoint(
                value=extract_value(raw),
                attributes=extract_attributes(raw.get("attributes")),
                time_unix_nano=time_unix_nano,
            ))
    return points
