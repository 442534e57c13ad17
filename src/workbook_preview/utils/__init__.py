"""Utilities package for the workbook preview service.

This package provides:
- Centralized exception classes (exceptions.py)
- Structured logging utilities (logging.py)
- A1 address and range helpers (addressing.py)
"""

from workbook_preview.utils.exceptions import (
    ErrorCode,
    HTTPStatusMixin,
    MalformedPackageError,
    ModelNotFoundError,
    PreviewError,
    ValidationError,
    WorksheetNotFoundError,
)
from workbook_preview.utils.logging import (
    LogContext,
    StructuredLogger,
    get_logger,
    get_request_id,
    set_request_id,
)

__all__ = [
    # Exceptions
    "ErrorCode",
    "HTTPStatusMixin",
    "MalformedPackageError",
    "ModelNotFoundError",
    "PreviewError",
    "ValidationError",
    "WorksheetNotFoundError",
    # Logging
    "LogContext",
    "StructuredLogger",
    "get_logger",
    "get_request_id",
    "set_request_id",
]
