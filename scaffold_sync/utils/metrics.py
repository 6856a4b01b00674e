"""
Metrics collection and emission for sync runs.

This module provides metrics tracking for:
- Sync run duration
- Outcome counts per target (created / skipped / failed)
- Files compared and files changed
- Host API call counts and latency
"""

import time
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from contextlib import asynccontextmanager

from scaffold_sync.utils.logging import get_logger, log_api_call

logger = get_logger(__name__)


class SyncMetrics:
    """
    Collects metrics during one template sync run.

    Tracks:
    - Run start/end time
    - Outcome counts per target status
    - Files compared / changed
    - API call counts and latency per service
    """

    def __init__(self, run_id: str, template_ref: str):
        self.run_id = run_id
        self.template_ref = template_ref

        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self.duration_ms: Optional[int] = None

        self.outcomes: Dict[str, int] = {}
        self.files_compared: int = 0
        self.files_changed: int = 0

        self.api_calls: Dict[str, int] = {}
        self.api_latencies: Dict[str, list[float]] = {}

        self.status: str = "pending"

    def start(self) -> None:
        """Mark run start."""
        self.start_time = datetime.now(timezone.utc)
        self.status = "running"
        logger.info(
            f"Sync run {self.run_id} started",
            extra={"run_id": self.run_id, "template_ref": self.template_ref}
        )

    def complete(self, status: str = "completed") -> None:
        """
        Mark run completion and log the summary.

        Args:
            status: Final status ('completed', 'aborted', 'timeout')
        """
        self.end_time = datetime.now(timezone.utc)
        self.status = status

        if self.start_time:
            duration = (self.end_time - self.start_time).total_seconds()
            self.duration_ms = int(duration * 1000)

        logger.info(
            f"Sync run {self.run_id} {status}",
            extra={"run_id": self.run_id, "metrics": self.get_metrics_summary()}
        )

    def record_outcome(self, status: str) -> None:
        """Count one target outcome."""
        self.outcomes[status] = self.outcomes.get(status, 0) + 1

    def record_comparison(self, compared: int, changed: int) -> None:
        """Accumulate file comparison counts for one target."""
        self.files_compared += compared
        self.files_changed += changed

    def record_api_call(self, service: str, duration_ms: float) -> None:
        self.api_calls[service] = self.api_calls.get(service, 0) + 1
        self.api_latencies.setdefault(service, []).append(duration_ms)

    def get_metrics_summary(self) -> Dict[str, Any]:
        """
        Get summary of collected metrics.

        Returns:
            Dictionary of metrics
        """
        summary = {
            "run_id": self.run_id,
            "template_ref": self.template_ref,
            "status": self.status,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": self.duration_ms,
            "outcomes": dict(self.outcomes),
            "files_compared": self.files_compared,
            "files_changed": self.files_changed,
            "api_calls": dict(self.api_calls),
        }

        if self.api_latencies:
            summary["api_latencies"] = {
                service: _latency_stats(latencies)
                for service, latencies in self.api_latencies.items()
                if latencies
            }

        return summary


def _latency_stats(latencies: list[float]) -> Dict[str, float]:
    return {
        "count": len(latencies),
        "min_ms": round(min(latencies), 2),
        "max_ms": round(max(latencies), 2),
        "avg_ms": round(sum(latencies) / len(latencies), 2),
    }


@asynccontextmanager
async def track_api_call(
    metrics: Optional[SyncMetrics],
    service: str,
    logger_adapter,
    endpoint: str = "",
    method: str = ""
):
    """
    Context manager to track host API call timing.

    Usage:
        async with track_api_call(metrics, "github", logger, endpoint="read_tree"):
            snapshot = await fetcher.fetch_files(url)
    """
    start_time = time.time()
    error = None

    try:
        yield
    except Exception as e:
        error = e
        raise
    finally:
        duration_ms = (time.time() - start_time) * 1000

        if metrics:
            metrics.record_api_call(service, duration_ms)

        log_api_call(
            logger_adapter,
            service=service,
            endpoint=endpoint,
            method=method,
            duration_ms=duration_ms,
            error=str(error) if error else None
        )


def emit_metric(metric_name: str, value: float, **tags: Any) -> None:
    """
    Emit a metric as a structured log line.

    Args:
        metric_name: Metric name
        value: Metric value
        **tags: Metric tags/labels
    """
    logger.info(
        f"Metric: {metric_name}",
        extra={
            "metric_name": metric_name,
            "metric_value": value,
            "metric_tags": tags,
        }
    )
