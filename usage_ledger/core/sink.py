"""
Raw metric audit sink.

Every processed data point becomes one row in the metrics table,
whether or not it could be correlated to a session or message.
"""

from typing import Any, Dict, Mapping, Optional

from usage_ledger.storage.models import AttributeValue, RawMetricRecord, SessionIdentity
from usage_ledger.storage.repository import TelemetryStore
from .identity import SESSION_ID_KEYS, USER_ID_KEYS, first_present
from .router import DataPoint, MetricType

DEFAULT_SERVICE_NAME = "claude-code"

PROJECT_PATH_KEYS = ("project_path",)
ACCOUNT_UUID_KEYS = ("user_account_uuid",)


class RawMetricSink:
    """Appends raw metric rows to a store."""

    def __init__(self, store: TelemetryStore, default_service_name: str = DEFAULT_SERVICE_NAME):
        self.store = store
        self.default_service_name = default_service_name

    def record(
        self,
        metric_type: str,
        metric_name: str,
        value: float,
        labels: Mapping[str, Any],
        project_path: Optional[str],
        user_id: Optional[str],
        session_id: Optional[str],
        metadata: Mapping[str, Any],
    ) -> RawMetricRecord:
        """Append one raw metric row unconditionally.

        Missing correlation fields are stored as NULL.
        """
        record = RawMetricRecord(
            metric_type=metric_type,
            metric_name=metric_name,
            value=value,
            labels=dict(labels),
            project_path=project_path,
            user_id=user_id,
            session_id=session_id,
            metadata=dict(metadata),
        )
        self.store.record_metric(record)
        return record

    def record_data_point(
        self,
        metric_type: MetricType,
        metric_name: str,
        point: DataPoint,
        resource_attrs: Mapping[str, AttributeValue],
        session: SessionIdentity,
    ) -> RawMetricRecord:
        """Record a decoded data point with best-effort correlation columns.

        Args:
            metric_type: Storage type of the metric
            metric_name: OTLP metric name
            point: The decoded data point
            resource_attrs: Decoded resource attributes of its block
            session: Session identity in effect for the block
        """
        attrs = point.attributes
        labels: Dict[str, Any] = {**resource_attrs, **attrs}
        metadata: Dict[str, Any] = {
            "timestamp": point.time_unix_nano,
            "service": first_present(resource_attrs, ("service.name",)) or self.default_service_name,
        }
        if point.histogram is not None:
            labels.update(
                count=point.histogram.count,
                min=point.histogram.min,
                max=point.histogram.max,
            )
            metadata.update(
                buckets=point.histogram.bucket_counts,
                explicitBounds=point.histogram.explicit_bounds,
                exemplars=point.histogram.exemplars,
            )

        project_path = (
            first_present(attrs, PROJECT_PATH_KEYS)
            or first_present(resource_attrs, PROJECT_PATH_KEYS)
        )
        user_id = (
            session.user_id
            or first_present(attrs, USER_ID_KEYS)
            or first_present(attrs, ACCOUNT_UUID_KEYS)
            or first_present(resource_attrs, ACCOUNT_UUID_KEYS)
        )
        session_id = session.session_id or first_present(attrs, SESSION_ID_KEYS)

        return self.record(
            metric_type.value,
            metric_name,
            point.value,
            labels,
            project_path,
            user_id,
            session_id,
            metadata,
        )
