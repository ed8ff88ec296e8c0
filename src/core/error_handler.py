"""Centralized logging and terminal error messaging for the decoder.

This module provides:
- Structured logging with correlation IDs (one per decode session)
- Redaction of sensitive keys so model output never reaches the logs
- Environment-aware log formatting (JSON in production, readable in dev)
- A single user-facing message per terminal failure
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any

from pythonjsonlogger.jsonlogger import JsonFormatter  # type: ignore[import-untyped]

from core.config import get_settings
from core.exceptions import (
    ServerError,
    StallTimeout,
    StreamDecodeError,
    TransportError,
    UnparsableResponse,
)
from core.security_config import is_sensitive_key


# Context variable for correlation ID tracking across async calls
_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

logger = logging.getLogger(__name__)

# Lead-in for each terminal error type; the error's own message follows
ERROR_TYPE_MESSAGES: dict[type[StreamDecodeError], str] = {
    TransportError: "The model server could not be reached",
    ServerError: "The model server returned an error",
    StallTimeout: "The response stopped arriving",
    UnparsableResponse: "The response could not be understood",
}


def get_correlation_id() -> str:
    """Get or create a correlation ID for session tracing."""
    correlation_id: str | None = _correlation_id_var.get()
    if correlation_id is None or correlation_id == "":
        new_id = str(uuid.uuid4())
        _correlation_id_var.set(new_id)
        return new_id
    return correlation_id


def set_correlation_id(correlation_id: str | None) -> None:
    """Set the correlation ID for the current context."""
    _correlation_id_var.set(correlation_id)


class StructuredLogger:
    """Structured logger that includes correlation IDs and sanitized data."""

    def __init__(self, logger_name: str):
        self.logger = logging.getLogger(logger_name)

    def _log_with_context(
        self,
        level: int,
        message: str,
        extra_data: dict[str, Any] | None = None,
        exc_info: bool = False,
    ) -> None:
        """Log with correlation ID and structured data."""
        data = dict(extra_data or {})
        # Callers on the timer path pass the session id explicitly since the
        # context variable belongs to whichever task armed the job.
        correlation_id = data.pop("correlation_id", None) or get_correlation_id()

        sanitized_data = self._sanitize_data(data)

        log_data = {
            "correlation_id": correlation_id,
            "message": message,
            **sanitized_data,
        }

        settings = get_settings()
        if settings.ENVIRONMENT == "production":
            # The JsonFormatter merges `extra` keys into the emitted object, so
            # pass the fields flat rather than nesting pre-encoded JSON.
            # `message` is reserved on LogRecord and is set from the msg arg.
            flat = {k: v for k, v in log_data.items() if k != "message"}
            self.logger.log(level, message, extra=flat, exc_info=exc_info)
        else:
            suffix = " ".join(f"{k}={v}" for k, v in sanitized_data.items())
            self.logger.log(
                level,
                f"[{correlation_id}] {message}" + (f" {suffix}" if suffix else ""),
                extra={"structured_data": log_data},
                exc_info=exc_info,
            )

    def _sanitize_data(self, data: dict[str, Any]) -> dict[str, Any]:
        """Remove or mask sensitive data from log entries."""
        if not isinstance(data, dict) or not data:
            return {}

        sanitized: dict[str, Any] = {}
        for key, value in data.items():
            if is_sensitive_key(key):
                sanitized[key] = "[REDACTED]"
            else:
                sanitized[key] = self._sanitize_value(value)
        return sanitized

    def _sanitize_value(self, value: Any) -> Any:
        """Sanitize a single value which may be a dict, list, or primitive."""
        if isinstance(value, dict):
            return self._sanitize_data(value)
        if isinstance(value, list):
            return [self._sanitize_value(item) for item in value]
        return value

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug level message."""
        self._log_with_context(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        """Log info level message."""
        self._log_with_context(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log warning level message."""
        self._log_with_context(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        """Log error level message."""
        self._log_with_context(logging.ERROR, message, kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log exception with traceback."""
        self._log_with_context(logging.ERROR, message, kwargs, exc_info=True)


def describe_failure(error: StreamDecodeError) -> str:
    """Build the single, actionable message shown to the user for a failure."""
    lead = ERROR_TYPE_MESSAGES.get(type(error), "The request failed")
    parts = [f"{lead}: {error.message.rstrip('.')}."]
    if error.remediation:
        parts.append(error.remediation)
    return " ".join(parts)


def setup_logging() -> None:
    """Configure application logging with proper JSON structure and idempotent setup."""
    settings = get_settings()

    log_level = logging.DEBUG if settings.ENVIRONMENT == "development" else logging.INFO
    root_logger = logging.getLogger()

    # Make setup idempotent - avoid duplicate handlers
    if root_logger.handlers:
        return

    formatter: logging.Formatter
    if settings.ENVIRONMENT == "production":
        formatter = JsonFormatter(fmt="%(asctime)s %(levelname)s %(name)s %(message)s")
    else:
        # Human-readable logging for development
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.setLevel(log_level)

    root_logger.setLevel(log_level)
    root_logger.addHandler(handler)

    # APScheduler logs every job execution at INFO; the heartbeat is noisy
    if settings.ENVIRONMENT == "production":
        logging.getLogger("apscheduler").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)
