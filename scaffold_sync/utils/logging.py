"""
Structured logging for sync runs.

Every log line is a JSON object. Sync context (run, template, target entity,
stage, provider) is carried by ``ContextLoggerAdapter`` and promoted to top
level fields so one run or one target can be followed across modules.
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from logging import LogRecord
from typing import Any, Dict, MutableMapping, Optional

# Promoted to the top level of each JSON line; other extras go under "context"
CONTEXT_FIELDS = ("run_id", "template_ref", "entity_ref", "stage", "provider")

# Third-party loggers that log every request at INFO
QUIET_LOGGERS = ("urllib3", "azure", "msrest", "httpx", "httpcore")

_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "taskName"}


class JSONFormatter(logging.Formatter):
    """
    Render log records as single-line JSON.

    Fields: ``timestamp``, ``level``, ``logger``, ``message``, the sync context
    fields present on the record, ``context`` for any other extras, ``error``
    when exception info is attached and ``source``.
    """

    def format(self, record: LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update({field: getattr(record, field) for field in CONTEXT_FIELDS if hasattr(record, field)})

        context = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and key not in CONTEXT_FIELDS
        }
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["error"] = self._error_details(record.exc_info)

        log_data["source"] = {"file": record.pathname, "line": record.lineno, "function": record.funcName}
        return json.dumps(log_data, default=str)

    @staticmethod
    def _error_details(exc_info) -> Dict[str, Optional[str]]:
        error_type, error, _ = exc_info
        return {
            "type": error_type.__name__ if error_type else None,
            "message": str(error) if error else None,
            "stack_trace": "".join(traceback.format_exception(*exc_info)),
        }


class ContextLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter merging its context into every record; per-call extras win."""

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs

    def with_context(self, **context: Any) -> "ContextLoggerAdapter":
        """Return a child adapter; this adapter's context is left untouched."""
        return ContextLoggerAdapter(self.logger, {**self.extra, **context})


class LogContext:
    """
    Temporarily add fields to an adapter's context.

    Usage:
        with LogContext(logger, entity_ref="component:default/payments"):
            logger.info("Fetching target files")
    """

    def __init__(self, logger: logging.LoggerAdapter, **context: Any):
        self.logger = logger
        self.context = context
        self._saved: Optional[Dict[str, Any]] = None

    def __enter__(self) -> logging.LoggerAdapter:
        self._saved = dict(self.logger.extra or {})
        self.logger.extra = {**self._saved, **self.context}
        return self.logger

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._saved is not None:
            self.logger.extra = self._saved


def setup_logging(log_level: str = "INFO") -> None:
    """
    Send JSON logs to stdout at the given level, replacing existing handlers.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, **context: Any) -> ContextLoggerAdapter:
    """
    Get a context-aware logger for a module.

    Example:
        logger = get_logger(__name__, provider="github")
        logger.info("Listing tree")  # carries provider=github
    """
    return ContextLoggerAdapter(logging.getLogger(name), context)


def log_sync_stage(
    logger: logging.LoggerAdapter,
    run_id: str,
    entity_ref: str,
    stage: str,
    status: str,
    **details: Any
) -> None:
    """
    Log a sync pipeline stage transition for one entity.

    Failed stages log at WARNING, everything else at INFO.

    Args:
        logger: Logger to use
        run_id: Sync run identifier
        entity_ref: Template or target entity reference
        stage: Stage name (e.g. 'resolve_template', 'fetch_target_files', 'diff')
        status: 'started', 'completed', 'skipped', 'created' or 'failed'
        **details: Additional fields (file counts, reasons, URLs)
    """
    extra = {"run_id": run_id, "entity_ref": entity_ref, "stage": stage, "status": status, **details}
    level = logging.WARNING if status == "failed" else logging.INFO
    logger.log(level, f"Sync stage {status}: {stage}", extra=extra)


def log_api_call(
    logger: logging.LoggerAdapter,
    service: str,
    endpoint: str,
    method: str,
    status_code: Optional[int] = None,
    duration_ms: Optional[float] = None,
    error: Optional[str] = None
) -> None:
    """
    Log one call to a VCS host API.

    Successful calls log at DEBUG, failed ones at ERROR.

    Args:
        logger: Logger to use
        service: Provider name ('github', 'azure-devops')
        endpoint: REST path or SDK operation name
        method: HTTP method, or 'SDK'
        status_code: HTTP status, when there was a response
        duration_ms: Call duration
        error: Failure message
    """
    extra: Dict[str, Any] = {"service": service, "endpoint": endpoint, "method": method}
    if status_code is not None:
        extra["status_code"] = status_code
    if duration_ms is not None:
        extra["duration_ms"] = round(duration_ms, 2)

    if error:
        extra["error"] = error
        logger.error(f"API call failed: {method} {endpoint}", extra=extra)
    else:
        logger.debug(f"API call: {method} {endpoint}", extra=extra)


def log_error_with_context(
    logger: logging.LoggerAdapter,
    message: str,
    error: BaseException,
    **context: Any
) -> None:
    """Log ``message: error`` at ERROR with the error's traceback and extra context."""
    logger.error(
        f"{message}: {error}",
        extra=context,
        exc_info=(type(error), error, error.__traceback__)
    )
