"""Request metrics recording and aggregation.

This module provides:
- a bounded in-memory log of per-request timing/status records
- filtering by time range, method, path and status
- aggregate stats, slowest / most-accessed endpoints, error summary
- a JSON export for the admin dashboard

Recording only observes; it never rejects or delays a request.
"""

from __future__ import annotations

import json
import logging
from collections import Counter, defaultdict, deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from gigbook.core.logging import REQUEST_LOGGER

logger = logging.getLogger(__name__)
request_logger = logging.getLogger(REQUEST_LOGGER)

DEFAULT_MAX_RECORDS = 10_000
DEFAULT_SLOW_REQUEST_THRESHOLD_MS = 1000.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RequestMetric:
    """Timing and outcome of a single request."""

    method: str
    path: str
    status_code: int
    duration_ms: float
    timestamp: datetime = field(default_factory=_utcnow)
    user_id: Optional[int | str] = None
    user_role: Optional[str] = None
    query_params: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["timestamp"] = self.timestamp.isoformat()
        return payload


class RequestMetricsRecorder:
    """Ring buffer of request metrics with aggregation queries."""

    def __init__(
        self,
        max_records: int = DEFAULT_MAX_RECORDS,
        *,
        slow_request_threshold_ms: float = DEFAULT_SLOW_REQUEST_THRESHOLD_MS,
    ) -> None:
        self.max_records = max(1, int(max_records))
        self.slow_request_threshold_ms = slow_request_threshold_ms
        self._records: deque[RequestMetric] = deque(maxlen=self.max_records)

    def __len__(self) -> int:
        return len(self._records)

    def record(self, metric: RequestMetric) -> None:
        """Append a record, dropping the oldest one past capacity."""
        try:
            self._records.append(metric)
            self._log(metric)
        except Exception:
            logger.exception("Failed to record request metric")

    def _log(self, metric: RequestMetric) -> None:
        extra = {
            "request": {
                "method": metric.method,
                "path": metric.path,
                "status_code": metric.status_code,
                "duration_ms": round(metric.duration_ms, 1),
                "user_id": metric.user_id,
            }
        }
        if metric.duration_ms > self.slow_request_threshold_ms:
            request_logger.warning(
                "Slow request: %s %s took %.1fms (threshold: %.0fms)",
                metric.method,
                metric.path,
                metric.duration_ms,
                self.slow_request_threshold_ms,
                extra=extra,
            )
        if metric.is_error:
            request_logger.error(
                "Request failed: %s %s -> %s (%.1fms)",
                metric.method,
                metric.path,
                metric.status_code,
                metric.duration_ms,
                extra=extra,
            )
        request_logger.info(
            "%s %s - %s (%.1fms)",
            metric.method,
            metric.path,
            metric.status_code,
            metric.duration_ms,
            extra=extra,
        )

    def get_metrics(
        self,
        *,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        method: Optional[str] = None,
        path: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> list[RequestMetric]:
        """Return records matching every given filter, oldest first."""
        records: Iterable[RequestMetric] = self._records
        if start_time is not None:
            records = [m for m in records if m.timestamp >= start_time]
        if end_time is not None:
            records = [m for m in records if m.timestamp <= end_time]
        if method:
            records = [m for m in records if m.method == method]
        if path:
            records = [m for m in records if m.path == path]
        if status_code is not None:
            records = [m for m in records if m.status_code == status_code]
        return list(records)

    def get_stats(self, records: Optional[list[RequestMetric]] = None) -> dict[str, Any]:
        """Count, duration aggregates, error rate (percent) and throughput."""
        metrics = list(self._records) if records is None else records
        if not metrics:
            return {
                "total_requests": 0,
                "average_duration": 0.0,
                "min_duration": 0.0,
                "max_duration": 0.0,
                "error_rate": 0.0,
                "requests_per_second": 0.0,
            }

        durations = [m.duration_ms for m in metrics]
        errors = sum(1 for m in metrics if m.is_error)
        span = (metrics[-1].timestamp - metrics[0].timestamp).total_seconds()

        return {
            "total_requests": len(metrics),
            "average_duration": sum(durations) / len(metrics),
            "min_duration": min(durations),
            "max_duration": max(durations),
            "error_rate": errors / len(metrics) * 100,
            "requests_per_second": len(metrics) / span if span > 0 else 0.0,
        }

    def _group_by_endpoint(self) -> dict[tuple[str, str], list[RequestMetric]]:
        grouped: dict[tuple[str, str], list[RequestMetric]] = defaultdict(list)
        for metric in self._records:
            grouped[(metric.method, metric.path)].append(metric)
        return grouped

    def get_slowest_endpoints(self, limit: int = 10) -> list[dict[str, Any]]:
        ranked = [
            {
                "method": method,
                "path": path,
                "average_duration": round(sum(m.duration_ms for m in group) / len(group), 2),
                "count": len(group),
            }
            for (method, path), group in self._group_by_endpoint().items()
        ]
        ranked.sort(key=lambda item: item["average_duration"], reverse=True)
        return ranked[:limit]

    def get_most_accessed_endpoints(self, limit: int = 10) -> list[dict[str, Any]]:
        ranked = [
            {
                "method": method,
                "path": path,
                "count": len(group),
                "error_count": sum(1 for m in group if m.is_error),
            }
            for (method, path), group in self._group_by_endpoint().items()
        ]
        ranked.sort(key=lambda item: item["count"], reverse=True)
        return ranked[:limit]

    def get_error_summary(self) -> dict[str, Any]:
        errors = [m for m in self._records if m.is_error]
        by_status = Counter(m.status_code for m in errors)
        total = len(self._records)
        return {
            "total_errors": len(errors),
            "errors_by_status": {str(status): count for status, count in sorted(by_status.items())},
            "error_rate": len(errors) / total * 100 if total else 0.0,
        }

    def snapshot(self) -> dict[str, Any]:
        """Everything the admin dashboard shows, as plain JSON-able data."""
        return {
            "metrics": [m.to_dict() for m in self._records],
            "stats": self.get_stats(),
            "slowest_endpoints": self.get_slowest_endpoints(),
            "most_accessed": self.get_most_accessed_endpoints(),
            "errors": self.get_error_summary(),
        }

    def export(self) -> str:
        return json.dumps(self.snapshot(), indent=2, default=str)

    def clear(self) -> None:
        self._records.clear()


__all__ = [
    "DEFAULT_MAX_RECORDS",
    "DEFAULT_SLOW_REQUEST_THRESHOLD_MS",
    "RequestMetric",
    "RequestMetricsRecorder",
]
