"""Context management for structured logging.

Fields set with ``set_log_context`` are attached to every record logged from
the same asyncio task, so an application can tag all storage calls of one
job (job id, tenant, request id) without passing them around.
"""

from __future__ import annotations

from contextvars import ContextVar
import logging
from typing import Any

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """Add fields to the logging context of the current task.

    Example:
        ```python
        set_log_context(job_id="nightly-export", tenant="acme")
        await storage.write("a.json", body, "application/json")  # logs carry job_id
        ```
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def get_log_context() -> dict[str, Any]:
    """Return a copy of the current logging context."""
    return _log_context.get().copy()


def clear_log_context() -> None:
    """Remove every field from the current logging context."""
    _log_context.set({})


def remove_from_log_context(*keys: str) -> None:
    """Remove specific keys from the logging context."""
    current = _log_context.get().copy()
    for key in keys:
        current.pop(key, None)
    _log_context.set(current)


class ContextInjectingFilter(logging.Filter):
    """Logging filter copying the contextvars log context onto each record.

    Attached to the root logger by ``configure_logging``; existing record
    attributes are never overwritten.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class ContextBoundLogger(logging.LoggerAdapter):
    """Logger adapter with permanently bound context fields.

    Example:
        ```python
        logger = ContextBoundLogger(logging.getLogger(__name__), backend="s3")
        bucket_logger = logger.bind(bucket="reports")
        bucket_logger.info("Listing started")  # includes backend and bucket
        ```
    """

    def __init__(self, logger: logging.Logger, **context: Any) -> None:
        super().__init__(logger, context)

    def bind(self, **context: Any) -> ContextBoundLogger:
        """Return a new logger with additional bound context."""
        merged = {**self.extra, **context}
        return ContextBoundLogger(self.logger, **merged)

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = kwargs.get("extra", {})
        kwargs["extra"] = {**self.extra, **extra}
        return msg, kwargs


def get_logger(name: str, **context: Any) -> ContextBoundLogger:
    """Get logger with bound context.

    Example:
        ```python
        logger = get_logger(__name__, backend="azure")
        logger.info("Container ready", extra={"container": "reports"})
        ```
    """
    return ContextBoundLogger(logging.getLogger(name), **context)
