"""Structured logging for the workbook preview service.

Provides:
- Request and submission correlation through contextvars
- A ``key=value`` structured message format shared by every module
- Timing helpers that record per-stage metrics (parse, recalculate, render)
- Progress logging for per-sheet work

Usage:
    from workbook_preview.utils.logging import get_logger, LogContext

    logger = get_logger(__name__)

    with LogContext(submission_id="abc-123", worksheet="Summary"):
        logger.info("Rendering worksheet", rows=100)

    with timed_operation(logger, "recalculate") as metrics:
        metrics.formulas_recalculated = 42
"""

import logging
import time
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
_submission_id_var: ContextVar[str | None] = ContextVar(
    "submission_id", default=None
)
_extra_context_var: ContextVar[dict[str, Any] | None] = ContextVar(
    "extra_context", default=None
)


def get_request_id() -> str | None:
    """Get the current request ID from context."""
    return _request_id_var.get()


def set_request_id(request_id: str | None) -> None:
    """Set the request ID in context, or clear it with None."""
    _request_id_var.set(request_id)


def get_submission_id() -> str | None:
    """Get the submission currently being served, if any."""
    return _submission_id_var.get()


def set_submission_id(submission_id: str | None) -> None:
    """Set the submission ID in context, or clear it with None."""
    _submission_id_var.set(submission_id)


def get_extra_context() -> dict[str, Any]:
    """Get additional context values set through LogContext."""
    ctx = _extra_context_var.get()
    return ctx if ctx is not None else {}


def set_extra_context(context: dict[str, Any]) -> None:
    _extra_context_var.set(context)


def clear_context() -> None:
    """Clear all context variables."""
    _request_id_var.set(None)
    _submission_id_var.set(None)
    _extra_context_var.set(None)


@dataclass
class PerformanceMetrics:
    """Metrics collected while one pipeline stage runs.

    Attributes:
        operation: Name of the stage being measured.
        start_time: When the stage started.
        end_time: When the stage ended.
        duration_seconds: Duration in seconds.
        bytes_processed: Size of the workbook package handled.
        sheets_processed: Worksheets visited.
        cells_rendered: Table cells written to HTML.
        formulas_recalculated: Formula results replaced by the engine.
        storage_calls: Object store / database calls made.
        custom_metrics: Additional stage-specific values.
    """

    operation: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    duration_seconds: float = 0.0
    bytes_processed: int = 0
    sheets_processed: int = 0
    cells_rendered: int = 0
    formulas_recalculated: int = 0
    storage_calls: int = 0
    custom_metrics: dict[str, Any] = field(default_factory=dict)

    def finish(self) -> None:
        """Mark the stage as complete and calculate duration."""
        self.end_time = datetime.now(UTC)
        self.duration_seconds = (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary, omitting counters that stayed at zero."""
        result: dict[str, Any] = {
            "operation": self.operation,
            "duration_seconds": self.duration_seconds,
        }
        for name in (
            "bytes_processed",
            "sheets_processed",
            "cells_rendered",
            "formulas_recalculated",
            "storage_calls",
        ):
            value = getattr(self, name)
            if value > 0:
                result[name] = value
        if self.custom_metrics:
            result["custom_metrics"] = self.custom_metrics
        return result


class StructuredLogFormatter(logging.Formatter):
    """Log formatter that prefixes records with the active context.

    The prefix carries request_id, submission_id and any LogContext values,
    for example ``[request_id=r1 submission_id=s1 worksheet=Summary]``.
    """

    def format(self, record: logging.LogRecord) -> str:
        prefix_parts = []
        request_id = get_request_id()
        if request_id:
            prefix_parts.append(f"request_id={request_id}")
        submission_id = get_submission_id()
        if submission_id:
            prefix_parts.append(f"submission_id={submission_id}")
        for key, value in get_extra_context().items():
            prefix_parts.append(f"{key}={value}")

        prefix = f"[{' '.join(prefix_parts)}] " if prefix_parts else ""

        original_msg = record.msg
        record.msg = f"{prefix}{original_msg}"
        try:
            return super().format(record)
        finally:
            record.msg = original_msg


class StructuredLogger:
    """Logger wrapper that renders keyword arguments as ``key=value`` pairs.

    Besides the usual level methods it offers helpers for stage metrics,
    progress, storage calls and per-request render summaries.
    """

    def __init__(self, name: str) -> None:
        self._logger = logging.getLogger(name)
        self._name = name

    @property
    def logger(self) -> logging.Logger:
        """Access the underlying Python logger."""
        return self._logger

    def _build_message(self, message: str, **kwargs: Any) -> str:
        if not kwargs:
            return message
        parts = [f"{k}={v}" for k, v in kwargs.items()]
        return f"{message} | {', '.join(parts)}"

    def debug(self, message: str, **kwargs: Any) -> None:
        self._logger.debug(self._build_message(message, **kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self._logger.info(self._build_message(message, **kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self._logger.warning(self._build_message(message, **kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        """Log an error message.

        Args:
            message: Log message.
            exc_info: Whether to include exception info.
            **kwargs: Additional structured data.
        """
        self._logger.error(self._build_message(message, **kwargs), exc_info=exc_info)

    def critical(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        self._logger.critical(self._build_message(message, **kwargs), exc_info=exc_info)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log an error together with the active exception's traceback."""
        self._logger.exception(self._build_message(message, **kwargs))

    def log_performance(self, metrics: PerformanceMetrics) -> None:
        self.info(f"Performance: {metrics.operation}", **metrics.to_dict())

    def log_progress(
        self,
        stage: str,
        current: int,
        total: int,
        details: str | None = None,
    ) -> None:
        """Log progress for a multi-step operation.

        Args:
            stage: Current processing stage.
            current: Current progress count.
            total: Total items to process.
            details: Optional additional details.
        """
        percentage = (current / total * 100) if total > 0 else 0
        kwargs: dict[str, Any] = {
            "current": current,
            "total": total,
            "percentage": f"{percentage:.1f}%",
        }
        if details:
            kwargs["details"] = details
        self.info(f"Progress: {stage}", **kwargs)

    def log_storage_call(
        self,
        service: str,
        operation: str,
        duration_seconds: float,
        target: str | None = None,
        success: bool = True,
        error_message: str | None = None,
    ) -> None:
        """Log one call to the object store or submissions table.

        Failed calls are logged at WARNING because callers always have a
        fallback (the next candidate path, or rendering without metadata).

        Args:
            service: Backend name (e.g., "supabase-storage").
            operation: Operation performed ("list", "download", "select").
            duration_seconds: Time taken for the call.
            target: Object path or row key the call addressed.
            success: Whether the call succeeded.
            error_message: Error message if the call failed.
        """
        kwargs: dict[str, Any] = {
            "service": service,
            "operation": operation,
            "duration_seconds": f"{duration_seconds:.3f}",
            "success": success,
        }
        if target is not None:
            kwargs["target"] = target
        if error_message:
            kwargs["error"] = error_message

        level = logging.INFO if success else logging.WARNING
        self._logger.log(level, self._build_message("Storage call", **kwargs))

    def log_render_result(
        self,
        worksheet: str,
        rows: int,
        columns: int,
        cells_rendered: int,
        cell_errors: int,
        duration_seconds: float,
        recalculated: bool,
    ) -> None:
        """Log the outcome of one worksheet preview.

        Args:
            worksheet: Name of the rendered worksheet.
            rows: Rows in the rendered table.
            columns: Columns in the rendered table.
            cells_rendered: Table cells emitted.
            cell_errors: Cells replaced by an empty cell after a failure.
            duration_seconds: Total request processing time.
            recalculated: Whether engine results were applied.
        """
        kwargs: dict[str, Any] = {
            "worksheet": worksheet,
            "rows": rows,
            "columns": columns,
            "cells_rendered": cells_rendered,
            "cell_errors": cell_errors,
            "duration_seconds": f"{duration_seconds:.2f}",
            "recalculated": recalculated,
        }
        level = logging.INFO if cell_errors == 0 else logging.WARNING
        self._logger.log(level, self._build_message("Worksheet rendered", **kwargs))


class LogContext:
    """Context manager for adding temporary context to logs.

    ``request_id`` and ``submission_id`` go to their dedicated context
    variables; every other keyword is merged into the extra context.

    Usage:
        with LogContext(submission_id="123", worksheet="Summary"):
            logger.info("Rendering...")
    """

    def __init__(self, **kwargs: Any) -> None:
        self._new_context = kwargs
        self._old_context: dict[str, Any] = {}
        self._old_submission_id: str | None = None
        self._old_request_id: str | None = None

    def __enter__(self) -> "LogContext":
        self._old_context = get_extra_context().copy()
        self._old_submission_id = get_submission_id()
        self._old_request_id = get_request_id()

        context = dict(self._new_context)
        submission_id = context.pop("submission_id", None)
        request_id = context.pop("request_id", None)
        if submission_id is not None:
            set_submission_id(submission_id)
        if request_id is not None:
            set_request_id(request_id)

        merged = self._old_context.copy()
        merged.update(context)
        set_extra_context(merged)
        return self

    def __exit__(self, *args: Any) -> None:
        set_extra_context(self._old_context)
        set_submission_id(self._old_submission_id)
        set_request_id(self._old_request_id)


@contextmanager
def timed_operation(
    logger: StructuredLogger,
    operation: str,
) -> Generator[PerformanceMetrics, None, None]:
    """Time a pipeline stage and log its metrics when it ends.

    Usage:
        with timed_operation(logger, "render") as metrics:
            metrics.cells_rendered = 3000

    Args:
        logger: Logger to use for output.
        operation: Name of the stage.

    Yields:
        PerformanceMetrics instance for tracking.
    """
    metrics = PerformanceMetrics(operation=operation)
    try:
        yield metrics
    finally:
        metrics.finish()
        logger.log_performance(metrics)


def configure_logging(
    level: int | str = logging.INFO,
    format_string: str | None = None,
    use_structured_formatter: bool = True,
) -> None:
    """Configure the root logger for the application.

    Args:
        level: Log level (int or string like "INFO").
        format_string: Custom format string (uses default if None).
        use_structured_formatter: Whether to use the structured formatter.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setLevel(level)
    formatter: logging.Formatter
    if use_structured_formatter:
        formatter = StructuredLogFormatter(format_string)
    else:
        formatter = logging.Formatter(format_string)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for a module.

    Example:
        logger = get_logger(__name__)
        logger.info("Workbook loaded", sheets=3, bytes=48213)
    """
    return StructuredLogger(name)


class ProgressTracker:
    """Track and log progress of a per-item loop.

    Usage:
        tracker = ProgressTracker(logger, "Recalculating sheets", total=3)
        for sheet in sheets:
            ...
            tracker.update(details=sheet.name)
        tracker.complete()
    """

    def __init__(
        self,
        logger: StructuredLogger,
        stage: str,
        total: int,
        log_interval: int = 1,
    ) -> None:
        self._logger = logger
        self._stage = stage
        self._total = total
        self._current = 0
        self._log_interval = log_interval
        self._start_time = time.time()

    @property
    def current(self) -> int:
        return self._current

    def update(self, increment: int = 1, details: str | None = None) -> None:
        """Advance the counter, logging every ``log_interval`` items."""
        self._current += increment
        if self._current % self._log_interval == 0 or self._current == self._total:
            self._logger.log_progress(
                self._stage,
                self._current,
                self._total,
                details,
            )

    def complete(self) -> float:
        """Log completion and return the elapsed seconds."""
        duration = time.time() - self._start_time
        self._logger.info(
            f"Completed: {self._stage}",
            total_items=self._total,
            duration_seconds=f"{duration:.2f}",
        )
        return duration
