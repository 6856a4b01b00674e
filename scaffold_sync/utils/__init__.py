"""
Utility modules for scaffold-sync.
"""

from scaffold_sync.utils.logging import (
    get_logger,
    setup_logging,
    LogContext,
    log_sync_stage,
    log_api_call,
    log_error_with_context,
)
from scaffold_sync.utils.metrics import (
    SyncMetrics,
    track_api_call,
    emit_metric,
)
from scaffold_sync.utils.resilience import (
    ErrorRecoveryManager,
    retry_with_backoff,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "LogContext",
    "log_sync_stage",
    "log_api_call",
    "log_error_with_context",
    "SyncMetrics",
    "track_api_call",
    "emit_metric",
    "ErrorRecoveryManager",
    "retry_with_backoff",
]
