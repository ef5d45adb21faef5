"""
Structured logging for the automation cloud client.

Wraps structlog with a small component-aware logger so every module logs the
same way: a short event message plus an ``extra_context`` mapping.
"""

import logging
import logging.config
import structlog
from structlog import contextvars as structlog_contextvars
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from enum import Enum
import sys
import types
from contextlib import contextmanager
import time


class LogLevel(str, Enum):
    """Log levels with string values."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class LogFormat(str, Enum):
    """Log output formats."""

    STRUCTURED = "structured"
    JSON = "json"
    CONSOLE = "console"


class ContextKeys:
    """Standard context keys for structured logging."""

    COMPONENT = "component"
    OPERATION = "operation"
    JOB_ID = "job_id"
    SUBSCRIPTION_ID = "subscription_id"
    DURATION_MS = "duration_ms"
    ERROR_TYPE = "error_type"
    HTTP_STATUS = "http_status"
    ENDPOINT = "endpoint"
    DELAY_S = "delay_s"


class StructuredLogger:
    """Component logger that merges a base context into every entry."""

    def __init__(
        self,
        component: str,
        *,
        logger_name: Optional[str] = None,
        base_context: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize structured logger for component.

        Args:
            component: Component name (e.g., "http", "jobs.tracker")
            logger_name: Optional logger name (defaults to autocloud.<component>)
            base_context: Base context added to all log messages
        """
        self.component = component
        self.logger_name = logger_name or f"autocloud.{component}"
        self.base_context = dict(base_context or {})
        self.base_context[ContextKeys.COMPONENT] = component

        self._logger = structlog.get_logger(self.logger_name)

    def _log_with_context(
        self,
        level: str,
        message: str,
        *,
        extra_context: Optional[Dict[str, Any]] = None,
        exception: Optional[BaseException] = None,
    ) -> None:
        if logging.getLogger(self.logger_name).getEffectiveLevel() > getattr(logging, level):
            return

        context: Dict[str, Any] = {}
        if exception is not None:
            # Client errors carry their own status, endpoint and operation.
            error_context = getattr(exception, "get_context_for_logging", None)
            if callable(error_context):
                context.update(error_context())
            else:
                context[ContextKeys.ERROR_TYPE] = type(exception).__name__
                context["error_message"] = str(exception)
        context.update(self.base_context)
        if extra_context:
            context.update(extra_context)

        context["timestamp"] = datetime.now(timezone.utc).isoformat()

        getattr(self._logger, level.lower())(message, **context)

    def debug(self, message: str, *, extra_context: Optional[Dict[str, Any]] = None) -> None:
        self._log_with_context("DEBUG", message, extra_context=extra_context)

    def info(self, message: str, *, extra_context: Optional[Dict[str, Any]] = None) -> None:
        self._log_with_context("INFO", message, extra_context=extra_context)

    def warning(
        self,
        message: str,
        *,
        extra_context: Optional[Dict[str, Any]] = None,
        exception: Optional[BaseException] = None,
    ) -> None:
        self._log_with_context("WARNING", message, extra_context=extra_context, exception=exception)

    def error(
        self,
        message: str,
        *,
        extra_context: Optional[Dict[str, Any]] = None,
        exception: Optional[BaseException] = None,
    ) -> None:
        self._log_with_context("ERROR", message, extra_context=extra_context, exception=exception)

    def with_context(self, **context: Any) -> "ContextualLogger":
        """Return a logger that adds ``context`` to every entry."""
        return ContextualLogger(self, context)

    def performance_timer(self, operation: str, *, threshold_ms: Optional[float] = None) -> "PerformanceTimer":
        """Create a timer that logs the duration of ``operation`` on exit."""
        return PerformanceTimer(self, operation, threshold_ms=threshold_ms)

    @contextmanager
    def operation_context(self, operation: str, **additional_context: Any) -> Any:
        """
        Context manager for operation with automatic timing and structured logging.

        Args:
            operation: Operation name
            **additional_context: Additional context for the operation

        Yields:
            ContextualLogger instance for the operation
        """
        start_time = time.perf_counter()

        context = {ContextKeys.OPERATION: operation}
        context.update(additional_context)
        contextual_logger = self.with_context(**context)

        contextual_logger.debug(f"Starting operation: {operation}")

        try:
            yield contextual_logger
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            contextual_logger.error(
                f"Operation '{operation}' failed",
                extra_context={ContextKeys.DURATION_MS: round(duration_ms, 2)},
                exception=e,
            )
            raise
        else:
            duration_ms = (time.perf_counter() - start_time) * 1000
            contextual_logger.debug(
                f"Operation '{operation}' completed",
                extra_context={ContextKeys.DURATION_MS: round(duration_ms, 2)},
            )


class ContextualLogger:
    """Logger wrapper that adds a fixed context to all log messages."""

    def __init__(self, base_logger: StructuredLogger, context: Dict[str, Any]):
        self.base_logger = base_logger
        self.context = context

    def _merge(self, extra_context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        merged = self.context.copy()
        if extra_context:
            merged.update(extra_context)
        return merged

    def debug(self, message: str, *, extra_context: Optional[Dict[str, Any]] = None) -> None:
        self.base_logger.debug(message, extra_context=self._merge(extra_context))

    def info(self, message: str, *, extra_context: Optional[Dict[str, Any]] = None) -> None:
        self.base_logger.info(message, extra_context=self._merge(extra_context))

    def warning(
        self,
        message: str,
        *,
        extra_context: Optional[Dict[str, Any]] = None,
        exception: Optional[BaseException] = None,
    ) -> None:
        self.base_logger.warning(message, extra_context=self._merge(extra_context), exception=exception)

    def error(
        self,
        message: str,
        *,
        extra_context: Optional[Dict[str, Any]] = None,
        exception: Optional[BaseException] = None,
    ) -> None:
        self.base_logger.error(message, extra_context=self._merge(extra_context), exception=exception)

    def with_context(self, **additional_context: Any) -> "ContextualLogger":
        merged = self.context.copy()
        merged.update(additional_context)
        return ContextualLogger(self.base_logger, merged)


class PerformanceTimer:
    """Context manager that logs how long an operation took."""

    def __init__(
        self,
        logger: StructuredLogger,
        operation: str,
        *,
        threshold_ms: Optional[float] = None,
        log_level: str = "DEBUG",
    ):
        self.logger = logger
        self.operation = operation
        self.threshold_ms = threshold_ms
        self.log_level = log_level
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None

    def __enter__(self) -> "PerformanceTimer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[types.TracebackType],
    ) -> None:
        self.end_time = time.perf_counter()
        duration_ms = self.duration_ms
        if duration_ms is None:
            return
        if self.threshold_ms is None or duration_ms >= self.threshold_ms:
            log_method = getattr(self.logger, self.log_level.lower())
            log_method(
                f"Operation '{self.operation}' completed",
                extra_context={
                    ContextKeys.OPERATION: self.operation,
                    ContextKeys.DURATION_MS: round(duration_ms, 2),
                },
            )

    @property
    def duration_ms(self) -> Optional[float]:
        """Get duration in milliseconds."""
        if self.start_time is not None and self.end_time is not None:
            return (self.end_time - self.start_time) * 1000
        return None


def bind_job_context(job_id: str, **context: Any) -> None:
    """Bind job identifiers into structlog contextvars for the current task.

    asyncio tasks run in a copy of the context they were created in, so the
    binding stays local to the tracking loop that calls this.
    """
    structlog_contextvars.bind_contextvars(**{ContextKeys.JOB_ID: job_id}, **context)


class LoggerFactory:
    """
    Centralized factory for creating component loggers.

    Loggers are cached per component so repeated lookups at import time are cheap.
    """

    _loggers: Dict[str, StructuredLogger] = {}
    _configured: bool = False

    @classmethod
    def configure_logging(
        cls,
        level: str = "INFO",
        format_type: str = "structured",
        enable_console: bool = True,
    ) -> None:
        """
        Configure structlog and the ``autocloud`` branch of the logging tree.

        The root logger is left alone so an application embedding the client
        keeps its own handlers.

        Args:
            level: Minimum log level (DEBUG, INFO, WARNING, ERROR)
            format_type: Log format (structured, json, console)
            enable_console: Write to stderr; otherwise entries are only
                propagated to the application's handlers
        """
        level = LogLevel(level.upper()).value
        format_type = LogFormat(format_type).value

        processors: List[Any] = [
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.dev.set_exc_info,
        ]
        if format_type == LogFormat.JSON.value:
            processors.append(structlog.processors.JSONRenderer())
        elif format_type == LogFormat.CONSOLE.value:
            processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
        else:
            processors.append(structlog.processors.KeyValueRenderer(key_order=["event", ContextKeys.COMPONENT]))

        structlog.configure(
            processors=processors,
            wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level)),
            logger_factory=structlog.WriteLoggerFactory(file=sys.stderr),
            cache_logger_on_first_use=True,
        )

        handlers: Dict[str, Any] = {}
        if enable_console:
            handlers["stderr"] = {
                "class": "logging.StreamHandler",
                "formatter": "plain",
                "stream": "ext://sys.stderr",
            }
        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {"plain": {"format": "%(asctime)s %(name)s %(levelname)s %(message)s"}},
                "handlers": handlers,
                "loggers": {
                    "autocloud": {
                        "level": level,
                        "handlers": list(handlers),
                        "propagate": not enable_console,
                    }
                },
            }
        )
        cls._configured = True

    @classmethod
    def get_logger(
        cls,
        component: str,
        *,
        logger_name: Optional[str] = None,
        base_context: Optional[Dict[str, Any]] = None,
    ) -> StructuredLogger:
        """Get or create the logger for ``component``."""
        cache_key = f"{component}:{logger_name or component}"

        if cache_key not in cls._loggers:
            cls._loggers[cache_key] = StructuredLogger(
                component,
                logger_name=logger_name,
                base_context=base_context,
            )

        return cls._loggers[cache_key]

    @classmethod
    def is_configured(cls) -> bool:
        return cls._configured
