"""
OTLP metrics ingestion pipeline.

Processes one OTLP-JSON payload synchronously, to completion:

    payload -> resourceMetrics block -> scopeMetrics -> metric -> data point
            -> session/message aggregation -> raw metric sink

Session context of a block comes from its resource attributes. If the
resource carries no session id, the first data point that resolves one
establishes it for the rest of the block.

Failures are per data point. A storage error while aggregating one data
point is recorded and processing continues, including the raw metric row
for that same point. The failures are reported once the payload is done.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from usage_ledger.config.loader import IngestionConfig
from usage_ledger.storage.models import AttributeValue, SessionIdentity, UsageDelta
from usage_ledger.storage.repository import TelemetryStore
from .aggregation import MessageAggregator, SessionAggregator
from .attributes import extract_attributes
from .errors import IngestionError, UsageLedgerError
from .identity import resolve_message, resolve_session
from .router import (
    MESSAGE_TOKEN_TYPE_KEYS,
    SESSION_TOKEN_TYPE_KEYS,
    DataPoint,
    MetricRoute,
    classify_metric,
    cost_delta,
    extract_data_points,
    resolve_token_field,
    route_for,
    token_delta,
)
from .sink import RawMetricSink
from .summary import summarize_payload
from .synthetic import SyntheticMessagePolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DataPointFailure:
    """One failed step while ingesting a payload."""
    block_index: int
    metric_name: str
    stage: str  # "session", "aggregate", "sink" or "synthetic"
    message: str


@dataclass
class IngestionResult:
    """Outcome of ingesting one payload."""
    resource_blocks: int = 0
    data_points: int = 0
    raw_metrics_recorded: int = 0
    messages_written: int = 0
    session_ids: List[str] = field(default_factory=list)
    synthetic_message_ids: List[str] = field(default_factory=list)
    failures: List[DataPointFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failures


@dataclass(frozen=True)
class BlockState:
    """What is known about a resourceMetrics block while it is processed."""
    session: SessionIdentity = field(default_factory=SessionIdentity)
    session_usage: UsageDelta = field(default_factory=UsageDelta)
    session_timestamps: Tuple[str, ...] = ()
    saw_session_usage: bool = False
    saw_real_message: bool = False

    def with_session_usage(self, delta: UsageDelta, time_unix_nano: Optional[str]) -> "BlockState":
        timestamps = self.session_timestamps
        if time_unix_nano:
            timestamps = timestamps + (time_unix_nano,)
        return replace(
            self,
            session_usage=self.session_usage.plus(delta),
            session_timestamps=timestamps,
            saw_session_usage=True,
        )


def _list(container: Any, key: str) -> List[Dict[str, Any]]:
    """Child list of an OTLP container; missing or malformed means empty."""
    if not isinstance(container, dict):
        return []
    items = container.get(key)
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


class IngestionPipeline:
    """Reconstructs sessions and messages from OTLP metric payloads.

    The pipeline holds no state between payloads; all accumulation happens
    in the store as atomic additive updates, so concurrent pipelines can
    share one store.
    """

    def __init__(self, store: TelemetryStore, config: Optional[IngestionConfig] = None):
        """Initialize the pipeline.

        Args:
            store: Storage backend (SQLite or in-memory)
            config: Ingestion settings (defaults if omitted)
        """
        self.config = config or IngestionConfig()
        self.store = store
        self.sessions = SessionAggregator(store)
        self.messages = MessageAggregator(store)
        self.sink = RawMetricSink(store, self.config.default_service_name)
        self.synthetic = SyntheticMessagePolicy(self.config.synthetic_role)

    def ingest(self, payload: Mapping[str, Any], raise_on_failure: bool = True) -> IngestionResult:
        """Process one OTLP-JSON metrics payload.

        Args:
            payload: Decoded OTLP-JSON body
            raise_on_failure: Raise IngestionError if any step failed

        Returns:
            IngestionResult describing what was written

        Raises:
            ValueError: If payload is not a JSON object
            IngestionError: If a storage step failed and raise_on_failure is set
        """
        if not isinstance(payload, Mapping):
            raise ValueError("OTLP payload must be a JSON object")

        summary = summarize_payload(payload)
        logger.info("Ingesting OTLP payload: %s", summary.as_dict())

        result = IngestionResult()
        for index, block in enumerate(_list(payload, "resourceMetrics")):
            result.resource_blocks += 1
            self._ingest_block(index, block, result)

        logger.info(
            "Ingested %d data points from %d blocks (%d raw rows, %d message writes, %d synthetic, %d failures)",
            result.data_points,
            result.resource_blocks,
            result.raw_metrics_recorded,
            result.messages_written,
            len(result.synthetic_message_ids),
            len(result.failures),
        )
        if result.failures and raise_on_failure:
            raise IngestionError(result)
        return result

    def _ingest_block(self, index: int, block: Dict[str, Any], result: IngestionResult) -> None:
        resource = block.get("resource")
        resource_attrs = extract_attributes(resource.get("attributes") if isinstance(resource, dict) else None)

        state = BlockState(session=resolve_session(resource_attrs))
        if state.session.session_id:
            self._establish_session(index, state.session, result)

        for scope in _list(block, "scopeMetrics"):
            for metric in _list(scope, "metrics"):
                name = metric.get("name")
                metric_name = name if isinstance(name, str) else ""
                metric_type = classify_metric(metric)
                route = route_for(metric_name)

                for point in extract_data_points(metric):
                    result.data_points += 1
                    state = self._promote_session(index, state, resource_attrs, point, result)

                    try:
                        state = self._aggregate(route, metric_name, point, state, result)
                    except UsageLedgerError as e:
                        logger.exception("Aggregation failed for %s in block %d", metric_name, index)
                        result.failures.append(DataPointFailure(index, metric_name, "aggregate", str(e)))

                    try:
                        self.sink.record_data_point(metric_type, metric_name, point, resource_attrs, state.session)
                        result.raw_metrics_recorded += 1
                    except UsageLedgerError as e:
                        logger.exception("Raw metric write failed for %s in block %d", metric_name, index)
                        result.failures.append(DataPointFailure(index, metric_name, "sink", str(e)))

        self._apply_synthetic_message(index, block, state, result)

    def _establish_session(self, index: int, identity: SessionIdentity, result: IngestionResult) -> None:
        try:
            self.sessions.upsert(identity)
        except UsageLedgerError as e:
            logger.exception("Session upsert failed for %s in block %d", identity.session_id, index)
            result.failures.append(DataPointFailure(index, "", "session", str(e)))
            return
        if identity.session_id not in result.session_ids:
            result.session_ids.append(identity.session_id)

    def _promote_session(
        self,
        index: int,
        state: BlockState,
        resource_attrs: Mapping[str, AttributeValue],
        point: DataPoint,
        result: IngestionResult,
    ) -> BlockState:
        """Adopt the first data-point-level session id for the rest of the block."""
        if state.session.session_id:
            return state
        candidate = resolve_session(resource_attrs, point.attributes)
        if not candidate.session_id:
            return state
        logger.debug("Block %d session %s established from data point attributes", index, candidate.session_id)
        self._establish_session(index, candidate, result)
        return replace(state, session=candidate)

    def _aggregate(
        self,
        route: MetricRoute,
        metric_name: str,
        point: DataPoint,
        state: BlockState,
        result: IngestionResult,
    ) -> BlockState:
        if route is MetricRoute.UNROUTED:
            return state
        if point.histogram is not None:
            logger.debug("Histogram data point for %s is not aggregated", metric_name)
            return state

        session_id = state.session.session_id

        if route.is_session_level:
            if route is MetricRoute.SESSION_COST:
                delta = cost_delta(point.value)
            else:
                token_field = resolve_token_field(point.attributes, SESSION_TOKEN_TYPE_KEYS)
                if token_field is None:
                    logger.debug("Unrecognized token type on %s: %r", metric_name, point.attributes.get("type"))
                    # Still session-level usage for the block; adds nothing
                    return state.with_session_usage(UsageDelta(), point.time_unix_nano)
                delta = token_delta(token_field, point.value)

            state = state.with_session_usage(delta, point.time_unix_nano)
            if not session_id:
                logger.warning("Skipping %s aggregation: no session id", metric_name)
                return state
            self.sessions.accumulate(session_id, delta)
            return state

        identity = resolve_message(point.attributes)
        if identity.message_id:
            state = replace(state, saw_real_message=True)

        if route is MetricRoute.MESSAGE_COST:
            delta = cost_delta(point.value)
        else:
            token_field = resolve_token_field(point.attributes, MESSAGE_TOKEN_TYPE_KEYS)
            if token_field is None:
                logger.debug("Unrecognized token type on %s", metric_name)
                return state
            delta = token_delta(token_field, point.value)

        if not identity.message_id:
            logger.warning("Skipping %s aggregation: no message id", metric_name)
            return state

        if session_id:
            identity = replace(identity, model=identity.model or state.session.model)
            if self.messages.upsert(identity, session_id, delta):
                result.messages_written += 1
        elif route is MetricRoute.MESSAGE_TOKENS:
            if self.messages.accumulate_tokens(identity.message_id, delta):
                result.messages_written += 1
        else:
            logger.warning("Skipping %s for message %s: no session id", metric_name, identity.message_id)
        return state

    def _apply_synthetic_message(
        self,
        index: int,
        block: Mapping[str, Any],
        state: BlockState,
        result: IngestionResult,
    ) -> None:
        session_id = state.session.session_id
        if not self.synthetic.applies(session_id, state.saw_session_usage, state.saw_real_message):
            return

        identity = self.synthetic.message_identity(
            session_id, state.session_timestamps, block, model=state.session.model,
        )
        try:
            self.messages.upsert(identity, session_id, state.session_usage)
        except UsageLedgerError as e:
            logger.exception("Synthetic message write failed for session %s", session_id)
            result.failures.append(DataPointFailure(index, "", "synthetic", str(e)))
            return
        result.messages_written += 1
        result.synthetic_message_ids.append(identity.message_id)
        logger.info("Created synthetic message %s for session %s", identity.message_id, session_id)
