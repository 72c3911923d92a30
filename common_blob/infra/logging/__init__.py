"""Logging infrastructure.

Provides opt-in structured logging for applications using the library:
- JSONL format for Loki/Elasticsearch ingestion
- Automatic context injection (job_id, tenant, request_id, ...)
- QueueHandler + QueueListener for non-blocking I/O
- OpenTelemetry trace correlation

Basic usage:
    from common_blob.infra.logging import set_log_context, setup_logging
    import logging

    setup_logging()  # reads LOG_* settings

    logger = logging.getLogger(__name__)
    set_log_context(job_id="nightly-export")
    logger.info("Export started")  # includes job_id
"""

from common_blob.infra.logging.config import configure_logging, setup_logging, shutdown
from common_blob.infra.logging.context import (
    ContextBoundLogger,
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    get_logger,
    remove_from_log_context,
    set_log_context,
)
from common_blob.infra.logging.formatters import JSONFormatter

__all__ = [
    "ContextBoundLogger",
    "ContextInjectingFilter",
    "JSONFormatter",
    "clear_log_context",
    "configure_logging",
    "get_log_context",
    "get_logger",
    "remove_from_log_context",
    "set_log_context",
    "setup_logging",
    "shutdown",
]
