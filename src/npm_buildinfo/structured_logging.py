"""
Structured logging configuration for npm-buildinfo.

Provides consistent, machine-readable logging of pipeline events so that
install/ci runs can be traced from CI logs.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .error_handling import sanitize_message

_RESERVED_RECORD_KEYS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "getMessage",
    "exc_info",
    "exc_text",
    "stack_info",
    "taskName",
}


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": sanitize_message(record.getMessage()),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class StructuredLogger:
    """Structured logger for pipeline events."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(f"npm_buildinfo.{name}")
        self._setup_logger()
        self.run_context: Dict[str, Any] = {}

    def _setup_logger(self) -> None:
        """Setup logger with structured formatting."""
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.WARNING)
            self.logger.propagate = False

    def set_run_context(
        self,
        command: Optional[str] = None,
        build_name: Optional[str] = None,
        build_number: Optional[str] = None,
    ) -> None:
        """Set run context attached to every event."""
        self.run_context = {}
        if command:
            self.run_context["command"] = command
        if build_name:
            self.run_context["build_name"] = build_name
        if build_number:
            self.run_context["build_number"] = build_number

    def clear_run_context(self) -> None:
        """Clear run context."""
        self.run_context.clear()

    def _log(self, level: str, event_type: str, **kwargs) -> None:
        log_data = {"event_type": event_type, **self.run_context, **kwargs}
        getattr(self.logger, level)(event_type, extra=log_data)

    def info(self, event_type: str, **kwargs) -> None:
        """Log info level event."""
        self._log("info", event_type, **kwargs)

    def warning(self, event_type: str, **kwargs) -> None:
        """Log warning level event."""
        self._log("warning", event_type, **kwargs)

    def error(self, event_type: str, **kwargs) -> None:
        """Log error level event."""
        self._log("error", event_type, **kwargs)

    def debug(self, event_type: str, **kwargs) -> None:
        """Log debug level event."""
        self._log("debug", event_type, **kwargs)


_command_logger = StructuredLogger("command")
_tree_logger = StructuredLogger("tree")
_enrichment_logger = StructuredLogger("enrichment")
_registry_logger = StructuredLogger("registry")

_ALL_LOGGERS = [_command_logger, _tree_logger, _enrichment_logger, _registry_logger]


def get_command_logger() -> StructuredLogger:
    """Get install/ci command logger."""
    return _command_logger


def get_tree_logger() -> StructuredLogger:
    """Get dependency tree parsing logger."""
    return _tree_logger


def get_enrichment_logger() -> StructuredLogger:
    """Get checksum enrichment logger."""
    return _enrichment_logger


def get_registry_logger() -> StructuredLogger:
    """Get registry client logger."""
    return _registry_logger


def log_state_transition(from_state: str, to_state: str) -> None:
    """Log a pipeline state change."""
    get_command_logger().debug(
        "state_transition", from_state=from_state, to_state=to_state
    )


def log_enrichment_complete(
    total: int, from_previous_build: int, from_registry: int, missing: int, errors: int
) -> None:
    """Log the outcome of a checksum enrichment pass."""
    logger = get_enrichment_logger()
    log_data = {
        "total_dependencies": total,
        "from_previous_build": from_previous_build,
        "from_registry": from_registry,
        "missing": missing,
        "error_count": errors,
    }
    if errors:
        logger.warning("enrichment_completed_with_errors", **log_data)
    else:
        logger.info("enrichment_completed", **log_data)


def log_registry_lookup(
    name: str, version: str, found: bool, response_time_ms: Optional[float] = None
) -> None:
    """Log a registry checksum lookup result."""
    log_data: Dict[str, Any] = {
        "package_name": name,
        "package_version": version,
        "found": found,
    }
    if response_time_ms is not None:
        log_data["response_time_ms"] = response_time_ms
    get_registry_logger().debug("checksum_lookup", **log_data)


def set_run_context(
    command: Optional[str] = None,
    build_name: Optional[str] = None,
    build_number: Optional[str] = None,
) -> None:
    """Set global run context for all loggers."""
    for logger in _ALL_LOGGERS:
        logger.set_run_context(command, build_name, build_number)


def clear_run_context() -> None:
    """Clear global run context."""
    for logger in _ALL_LOGGERS:
        logger.clear_run_context()


def configure_logging(log_level: str = "WARNING") -> None:
    """Configure logging for the application."""
    level = getattr(logging, log_level.upper(), logging.WARNING)

    logging.getLogger().setLevel(level)
    logging.getLogger("npm_buildinfo").setLevel(level)
    for logger in _ALL_LOGGERS:
        logger.logger.setLevel(level)
