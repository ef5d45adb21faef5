"""Unified error handling for the automation cloud client with structured context."""

from typing import Any, Dict, Optional
from datetime import datetime, timezone
from enum import Enum


class ErrorSeverity(str, Enum):
    """Error severity levels for classification and handling."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """Error categories for structured handling."""

    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    NOT_FOUND = "not_found"
    PROTOCOL = "protocol"
    RUNTIME = "runtime"


class AutomationCloudError(Exception):
    """
    Base exception for all client operations with structured context.

    Carries enough context for a structured log entry and a user-facing
    message without the caller having to unpack the failure.
    """

    def __init__(
        self,
        message: str,
        *,
        context: Optional[Dict[str, Any]] = None,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        category: ErrorCategory = ErrorCategory.RUNTIME,
        operation: Optional[str] = None,
        component: Optional[str] = None,
        user_message: Optional[str] = None,
        help_text: Optional[str] = None,
        error_code: Optional[str] = None,
    ):
        """
        Initialize structured error.

        Args:
            message: Technical error message for developers
            context: Additional context data for debugging
            severity: Error severity level
            category: Error category for classification
            operation: Operation that failed (e.g., "get_job", "vault_pan")
            component: Component where error occurred (e.g., "http", "tracker")
            user_message: User-friendly error message
            help_text: Suggested resolution or help information
            error_code: Unique error code for documentation reference
        """
        super().__init__(message)

        self.message = message
        self.context = dict(context or {})
        self.severity = severity
        self.category = category
        self.operation = operation
        self.component = component
        self.user_message = user_message or message
        self.help_text = help_text
        self.error_code = error_code
        self.timestamp = datetime.now(timezone.utc)

        self.context.update(
            {
                "timestamp": self.timestamp.isoformat(),
                "severity": self.severity.value,
                "category": self.category.value,
            }
        )

        if self.operation:
            self.context["operation"] = self.operation
        if self.component:
            self.context["component"] = self.component

    def __str__(self) -> str:
        if self.operation and self.component:
            return f"[{self.component.upper()}] {self.operation} failed: {self.message}"
        elif self.operation:
            return f"Operation '{self.operation}' failed: {self.message}"
        return self.message

    @property
    def retryable(self) -> bool:
        """True if repeating the same request may succeed."""
        return False

    def get_user_message(self) -> str:
        """Get user-friendly error message."""
        if self.user_message != self.message:
            return self.user_message
        if self.operation:
            return f"Failed to {self.operation}. {self.help_text if self.help_text else ''}".strip()
        return self.message

    def get_context_for_logging(self) -> Dict[str, Any]:
        """Get context information for structured logging."""
        log_context = self.context.copy()
        log_context.update(
            {
                "error_type": self.__class__.__name__,
                "error_message": self.message,
                "user_message": self.get_user_message(),
                "retryable": self.retryable,
            }
        )

        if self.error_code:
            log_context["error_code"] = self.error_code
        if self.help_text:
            log_context["help_text"] = self.help_text

        return log_context

    def with_context(self, **additional_context: Any) -> "AutomationCloudError":
        """Add additional context to existing error."""
        self.context.update(additional_context)
        return self

    def is_user_error(self) -> bool:
        """Check if this is a caller-side error vs a service/system error."""
        return self.category in [
            ErrorCategory.VALIDATION,
            ErrorCategory.CONFIGURATION,
            ErrorCategory.AUTHENTICATION,
            ErrorCategory.NOT_FOUND,
        ]


class ConfigurationError(AutomationCloudError):
    """Missing or invalid client configuration."""

    def __init__(
        self,
        message: str,
        *,
        setting: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            component="config",
            category=ErrorCategory.CONFIGURATION,
            help_text="Check the values passed to ClientConfig or the AUTOMATIONCLOUD_* environment",
            error_code="CFG001",
            **kwargs,
        )
        if setting:
            self.context["setting"] = setting


class ApiError(AutomationCloudError):
    """A request to the remote API did not produce a usable response."""

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        endpoint: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.NETWORK,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("component", "http")
        super().__init__(message, category=category, **kwargs)

        self.status = status
        self.endpoint = endpoint
        self.context.update({"http_status": status, "endpoint": endpoint})


class ClientError(ApiError):
    """
    4xx-class failure: the caller must change something before retrying.

    Typical causes are a bad job id, an expired token or a malformed request.
    """

    def __init__(self, message: str, *, status: Optional[int] = None, **kwargs: Any) -> None:
        if status == 404:
            category = ErrorCategory.NOT_FOUND
        elif status in (401, 403):
            category = ErrorCategory.AUTHENTICATION
        else:
            category = ErrorCategory.VALIDATION
        kwargs.setdefault("user_message", "The request was rejected by the API")
        kwargs.setdefault("error_code", "API400")
        super().__init__(message, status=status, category=category, **kwargs)


class ServerError(ApiError):
    """5xx-class or transport failure; retrying later may succeed."""

    def __init__(self, message: str, *, status: Optional[int] = None, **kwargs: Any) -> None:
        kwargs.setdefault("user_message", "The API is temporarily unavailable")
        kwargs.setdefault("help_text", "The request will be retried automatically")
        kwargs.setdefault("error_code", "API500")
        super().__init__(
            message,
            status=status,
            category=ErrorCategory.NETWORK,
            severity=ErrorSeverity.WARNING,
            **kwargs,
        )

    @property
    def retryable(self) -> bool:
        return True


class ParseError(ApiError):
    """The API answered but the body could not be understood."""

    def __init__(self, message: str, *, status: Optional[int] = None, **kwargs: Any) -> None:
        kwargs.setdefault("user_message", "The API returned an unexpected response")
        kwargs.setdefault("error_code", "API422")
        super().__init__(message, status=status, category=ErrorCategory.PROTOCOL, **kwargs)


def classify_status(
    status: int,
    message: str,
    *,
    endpoint: Optional[str] = None,
    operation: Optional[str] = None,
) -> ApiError:
    """Map an unsuccessful HTTP status onto ClientError or ServerError."""
    if status < 500:
        return ClientError(message, status=status, endpoint=endpoint, operation=operation)
    return ServerError(message, status=status, endpoint=endpoint, operation=operation)
