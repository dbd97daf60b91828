"""
Error handling for npm-buildinfo.

Defines the exception hierarchy raised by the install/ci pipeline and a
centralized handler that logs structured error context with sensitive
values (npm auth, tokens, credentials in URLs) redacted.
"""

import logging
import re
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


class NpmBuildInfoError(Exception):
    """Base class for all errors surfaced by the install/ci pipeline."""


class PrerequisiteError(NpmBuildInfoError):
    """Raised before any mutation when the environment cannot run the command."""


class ConfigMutationError(NpmBuildInfoError):
    """Raised when the project .npmrc or its backup cannot be written or removed."""


class NpmrcRestoreError(ConfigMutationError):
    """Raised when the project .npmrc cannot be returned to its original state."""


class InstallProcessError(NpmBuildInfoError):
    """Raised when 'npm install' or 'npm ci' exits with a non-zero code."""

    def __init__(self, message: str, return_code: Optional[int] = None):
        super().__init__(message)
        self.return_code = return_code


class TreeParseError(NpmBuildInfoError):
    """Raised when the 'npm ls' JSON has a malformed 'dependencies' entry."""


class RegistryError(NpmBuildInfoError):
    """Raised by the registry client for network, auth or server failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EnrichmentError(NpmBuildInfoError):
    """Raised after checksum enrichment when at least one lookup failed."""

    def __init__(self, first_error: BaseException, error_count: int = 1):
        super().__init__(
            f"Failed collecting checksums for {error_count} "
            f"dependenc{'y' if error_count == 1 else 'ies'}: {first_error}"
        )
        self.first_error = first_error
        self.error_count = error_count


class DoubleFailureError(NpmBuildInfoError):
    """Raised when restoring the .npmrc fails after an earlier failure."""

    def __init__(self, restore_error: BaseException, original_error: BaseException):
        super().__init__(
            f"Two errors occurred:\n {restore_error}\n {original_error}"
        )
        self.restore_error = restore_error
        self.original_error = original_error


class ErrorLevel(Enum):
    """Error severity levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ErrorCategory(Enum):
    """Error categories following the pipeline's failure taxonomy."""

    PREREQUISITE = "PREREQUISITE"
    CONFIG_MUTATION = "CONFIG_MUTATION"
    INSTALL = "INSTALL"
    TREE_LISTING = "TREE_LISTING"
    ENRICHMENT = "ENRICHMENT"
    NETWORK = "NETWORK"
    CREDENTIAL = "CREDENTIAL"
    CONFIGURATION = "CONFIGURATION"
    FILESYSTEM = "FILESYSTEM"


@dataclass
class ErrorContext:
    """Structured error context information."""

    level: ErrorLevel
    category: ErrorCategory
    message: str
    module: str
    function: str
    details: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[BaseException] = None
    traceback_info: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error context to dictionary for logging."""
        return {
            "level": self.level.value,
            "category": self.category.value,
            "message": self.message,
            "module": self.module,
            "function": self.function,
            "details": self.details,
            "exception_type": type(self.exception).__name__ if self.exception else None,
            "exception_message": str(self.exception) if self.exception else None,
            "traceback": self.traceback_info,
            "suggestions": self.suggestions,
        }


# Patterns for values that must never reach a log line
SENSITIVE_PATTERNS = [
    (r"(_authToken\s*=\s*)(\S+)", r"\1[REDACTED]"),
    (r"(_auth\s*=\s*)(\S+)", r"\1[REDACTED]"),
    (r"(_password\s*=\s*)(\S+)", r"\1[REDACTED]"),
    (r'token["\s]*[:=]["\s]*([a-zA-Z0-9_\-+=/.]{8,})', 'token="[REDACTED]"'),
    (r'password["\s]*[:=]["\s]*([^\s"\']+)', 'password="[REDACTED]"'),
    (r"(https?://[^@\s]+:)[^@\s]+@", r"\1[REDACTED]@"),
    (r"Authorization:\s*\w+\s+([^\s]+)", "Authorization: [REDACTED]"),
]


def sanitize_message(message: str) -> str:
    """Remove credentials and auth directives from a log message."""
    sanitized = message
    for pattern, replacement in SENSITIVE_PATTERNS:
        sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)
    return sanitized


class SecureLogger:
    """Secure logger that sanitizes sensitive information."""

    def __init__(self, name: str, level: int = logging.WARNING):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_error_context(self, context: ErrorContext):
        """
        Log error context with appropriate level.

        Args:
            context: Error context to log
        """
        log_data = {
            "category": context.category.value,
            "module": context.module,
            "function": context.function,
            "details": self._sanitize_dict(context.details),
        }

        if context.exception:
            log_data["exception"] = type(context.exception).__name__

        if context.suggestions:
            log_data["suggestions"] = context.suggestions

        log_message = f"{sanitize_message(context.message)} | {log_data}"

        level = getattr(logging, context.level.value)
        self.logger.log(level, log_message)

    def _sanitize_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Sanitize dictionary values to remove sensitive info."""
        if not isinstance(data, dict):
            return data

        sanitized = {}
        sensitive_keys = {"token", "password", "secret", "credential", "auth"}

        for key, value in data.items():
            if any(sensitive_key in key.lower() for sensitive_key in sensitive_keys):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_dict(value)
            elif isinstance(value, str):
                sanitized[key] = sanitize_message(value)
            else:
                sanitized[key] = value

        return sanitized


ErrorCallback = Callable[[ErrorContext], None]


class ErrorHandler:
    """
    Centralized error handler for consistent error management.

    Provides logging, callbacks, and statistics for pipeline components.
    """

    def __init__(
        self,
        logger_name: str = "npm_buildinfo",
        log_level: int = logging.WARNING,
        enable_callbacks: bool = True,
    ):
        self.logger = SecureLogger(logger_name, log_level)
        self.enable_callbacks = enable_callbacks
        self.error_callbacks: Dict[ErrorCategory, List[ErrorCallback]] = {}
        self.global_callbacks: List[ErrorCallback] = []
        self.error_stats: Dict[str, int] = {}

    def register_callback(
        self, callback: ErrorCallback, category: Optional[ErrorCategory] = None
    ):
        """
        Register error callback.

        Args:
            callback: Function to call on errors
            category: Error category to filter, None for all errors
        """
        if not self.enable_callbacks:
            return

        if category is None:
            self.global_callbacks.append(callback)
        else:
            self.error_callbacks.setdefault(category, []).append(callback)

    def handle_error(
        self,
        level: ErrorLevel,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        exception: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ) -> ErrorContext:
        """
        Handle an error with structured logging and callbacks.

        Returns:
            ErrorContext: The created error context
        """
        context = ErrorContext(
            level=level,
            category=category,
            message=message,
            module=module,
            function=function,
            details=details or {},
            exception=exception,
            traceback_info=traceback.format_exc() if exception else None,
            suggestions=suggestions or [],
        )

        stat_key = f"{category.value}_{level.value}"
        self.error_stats[stat_key] = self.error_stats.get(stat_key, 0) + 1

        self.logger.log_error_context(context)

        if self.enable_callbacks:
            for callback in self.error_callbacks.get(category, []):
                try:
                    callback(context)
                except Exception as cb_error:
                    # Callback errors must not break the pipeline
                    self.logger.logger.error(f"Error in callback: {cb_error}")

            for callback in self.global_callbacks:
                try:
                    callback(context)
                except Exception as cb_error:
                    self.logger.logger.error(f"Error in global callback: {cb_error}")

        return context

    def debug(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        """Handle debug level event."""
        return self.handle_error(
            ErrorLevel.DEBUG, category, message, module, function, **kwargs
        )

    def warning(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        """Handle warning level error."""
        return self.handle_error(
            ErrorLevel.WARNING, category, message, module, function, **kwargs
        )

    def error(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        """Handle error level error."""
        return self.handle_error(
            ErrorLevel.ERROR, category, message, module, function, **kwargs
        )

    def critical(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        """Handle critical level error."""
        return self.handle_error(
            ErrorLevel.CRITICAL, category, message, module, function, **kwargs
        )

    def get_error_stats(self) -> Dict[str, int]:
        """Get error statistics."""
        return self.error_stats.copy()

    def reset_stats(self):
        """Reset error statistics."""
        self.error_stats.clear()


_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """
    Get the global error handler instance.

    Returns:
        ErrorHandler: Global error handler
    """
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def setup_error_handling(
    log_level: int = logging.WARNING,
    enable_callbacks: bool = True,
    logger_name: str = "npm_buildinfo",
) -> ErrorHandler:
    """
    Setup global error handling configuration.

    Returns:
        ErrorHandler: Configured error handler
    """
    global _global_error_handler
    _global_error_handler = ErrorHandler(logger_name, log_level, enable_callbacks)
    return _global_error_handler


def log_network_error(
    message: str,
    module: str,
    function: str,
    url: Optional[str] = None,
    status_code: Optional[int] = None,
    exception: Optional[BaseException] = None,
):
    """
    Convenience function for logging registry network errors.

    Args:
        message: Error message
        module: Module name
        function: Function name
        url: URL that failed (credentials and query are dropped)
        status_code: HTTP status code
        exception: Optional exception
    """
    details: Dict[str, Any] = {}
    if url is not None:
        from urllib.parse import urlparse

        parsed = urlparse(url)
        sanitized_url = f"{parsed.scheme}://{parsed.hostname}"
        if parsed.port:
            sanitized_url += f":{parsed.port}"
        sanitized_url += parsed.path
        details["url"] = sanitized_url

    if status_code is not None:
        details["status_code"] = status_code

    suggestions = [
        "Check network connectivity",
        "Verify the Artifactory URL is correct",
        "Check that the configured credentials are valid",
    ]

    get_error_handler().error(
        ErrorCategory.NETWORK,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=suggestions,
    )


def log_tree_listing_warning(
    message: str,
    scope: str,
    exception: Optional[BaseException] = None,
    stderr: Optional[str] = None,
):
    """
    Log a non-fatal 'npm ls' problem.

    Args:
        message: Warning message
        scope: Dependency scope being listed (dev or prod)
        exception: Optional exception raised by the listing call
        stderr: Error output produced by npm, if any
    """
    details: Dict[str, Any] = {"scope": scope}
    if stderr:
        details["stderr"] = stderr[:2000]

    get_error_handler().warning(
        ErrorCategory.TREE_LISTING,
        message,
        "npm_runner",
        "list_dependencies",
        details=details,
        exception=exception,
        suggestions=["Run 'npm ls --all' manually to inspect the dependency tree"],
    )


def log_credential_error(
    message: str,
    module: str,
    function: str,
    credential_type: Optional[str] = None,
    exception: Optional[BaseException] = None,
):
    """
    Convenience function for logging credential errors.

    Args:
        message: Error message
        module: Module name
        function: Function name
        credential_type: Type of credential (access token, password, ssh key)
        exception: Optional exception
    """
    details: Dict[str, Any] = {}
    if credential_type is not None:
        details["credential_type"] = credential_type

    get_error_handler().warning(
        ErrorCategory.CREDENTIAL,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=[
            "Verify credential is valid and not expired",
            "Use an access token or username/password with this command",
        ],
    )
