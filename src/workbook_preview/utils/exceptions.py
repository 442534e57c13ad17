"""Centralized exception classes for the workbook preview service.

Every failure the service can report carries an error code, an HTTP status
and a short client-facing label, so the web layer can turn any of them into
the same ``{error, message, error_code, details}`` body.

Exception Hierarchy:
    PreviewError (base)
    ├── PackageError
    │   ├── MalformedPackageError
    │   ├── PartNotFoundError
    │   └── FileTooLargeError
    ├── ModelNotFoundError
    ├── SubmissionNotFoundError
    ├── WorksheetError
    │   ├── WorksheetNotFoundError
    │   └── NoWorksheetsError
    ├── CellProcessingError
    ├── RuleParseError
    ├── RecalculationUnavailableError
    ├── StorageUnavailableError
    └── ValidationError

Several of these never reach a client: PartNotFoundError, CellProcessingError,
RuleParseError and RecalculationUnavailableError are caught next to where
they are raised and replaced by a default (empty table, blank cell, skipped
rule, cached values).
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Enumeration of all error codes used in the application.

    Error codes are grouped by category:
    - E1xxx: Workbook package errors
    - E2xxx: Worksheet and rendering errors
    - E3xxx: Recalculation errors
    - E4xxx: Request errors
    - E5xxx: External service errors
    - E9xxx: Internal/unexpected errors
    """

    # Package errors (E1xxx)
    MODEL_NOT_FOUND = "E1001"
    FILE_TOO_LARGE = "E1002"
    MALFORMED_PACKAGE = "E1003"
    PART_NOT_FOUND = "E1004"

    # Worksheet errors (E2xxx)
    WORKSHEET_NOT_FOUND = "E2001"
    NO_WORKSHEETS = "E2002"
    CELL_PROCESSING_FAILED = "E2003"
    RULE_PARSE_FAILED = "E2004"

    # Recalculation errors (E3xxx)
    RECALCULATION_UNAVAILABLE = "E3001"
    RECALCULATION_TIMEOUT = "E3002"

    # Request errors (E4xxx)
    INVALID_REQUEST = "E4001"
    SUBMISSION_NOT_FOUND = "E4002"

    # External service errors (E5xxx)
    STORAGE_UNAVAILABLE = "E5001"
    DATABASE_UNAVAILABLE = "E5002"

    # Internal errors (E9xxx)
    INTERNAL_ERROR = "E9001"
    CONFIGURATION_ERROR = "E9002"
    UNEXPECTED_ERROR = "E9999"


class HTTPStatusMixin:
    """Mixin that provides HTTP status code for exceptions.

    Subclasses set the `http_status` class attribute.
    """

    http_status: int = 500

    def get_http_status(self) -> int:
        """Get the HTTP status code for this exception."""
        return self.http_status


class PreviewError(Exception, HTTPStatusMixin):
    """Base exception for all workbook preview errors.

    Attributes:
        message: Human-readable error message.
        error_code: Unique error code from ErrorCode enum.
        details: Optional dictionary with additional error details.
        error: Short client-facing label, e.g. "File not found".
        http_status: HTTP status code for API responses (default 500).
    """

    http_status: int = 500
    error: str = "Internal server error"

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            error_code: Error code from ErrorCode enum.
            details: Optional additional details about the error.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def response_fields(self) -> dict[str, Any]:
        """Extra top-level fields merged into the API error body."""
        return {}

    def to_dict(self) -> dict[str, Any]:
        """Convert the exception to a dictionary for API responses."""
        result: dict[str, Any] = {
            "error": self.error,
            "message": self.message,
            "error_code": self.error_code.value,
        }
        if self.details:
            result["details"] = self.details
        result.update(self.response_fields())
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code.value}] {self.message}"


# =============================================================================
# Package Errors (E1xxx)
# =============================================================================


class PackageError(PreviewError):
    """Base class for workbook package errors."""

    http_status: int = 500
    error: str = "Failed to parse Excel file"

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.MALFORMED_PACKAGE,
        part_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if part_name:
            details["part_name"] = part_name
        super().__init__(message, error_code, details)
        self.part_name = part_name


class MalformedPackageError(PackageError):
    """Raised when the package is not a readable spreadsheet zip.

    Covers an unreadable archive, a missing or unparseable workbook part, and
    worksheet parts that are referenced but absent or corrupt.
    """

    def __init__(
        self,
        message: str,
        part_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            error_code=ErrorCode.MALFORMED_PACKAGE,
            part_name=part_name,
            details=details,
        )


class PartNotFoundError(PackageError):
    """Raised when an optional part (styles, theme, shared strings) is absent.

    Callers substitute the part's default instead of failing.
    """

    http_status: int = 404

    def __init__(self, part_name: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            message=f"Package part not found: {part_name}",
            error_code=ErrorCode.PART_NOT_FOUND,
            part_name=part_name,
            details=details,
        )


class FileTooLargeError(PackageError):
    """Raised when a workbook exceeds the maximum allowed size."""

    http_status: int = 413
    error: str = "File too large"

    def __init__(
        self,
        file_size: int,
        max_size: int,
        file_path: str | None = None,
    ) -> None:
        details: dict[str, Any] = {
            "file_size_bytes": file_size,
            "max_size_bytes": max_size,
        }
        if file_path:
            details["file_path"] = file_path
        super().__init__(
            message=(
                f"File size ({file_size} bytes) exceeds maximum "
                f"allowed size ({max_size} bytes)"
            ),
            error_code=ErrorCode.FILE_TOO_LARGE,
            details=details,
        )
        self.file_size = file_size
        self.max_size = max_size


class ModelNotFoundError(PreviewError):
    """Raised when no object path yields the submission's workbook."""

    http_status: int = 404
    error: str = "File not found"

    def __init__(
        self,
        submission_id: str,
        paths_attempted: list[str] | None = None,
        message: str | None = None,
    ) -> None:
        """Initialize with the lookup attempts.

        Args:
            submission_id: Submission whose model was requested.
            paths_attempted: Object paths tried, in order.
            message: Optional custom message.
        """
        details: dict[str, Any] = {"submission_id": submission_id}
        if paths_attempted:
            details["paths_attempted"] = paths_attempted
        super().__init__(
            message=message or f"No model file found for submission {submission_id}",
            error_code=ErrorCode.MODEL_NOT_FOUND,
            details=details,
        )
        self.submission_id = submission_id
        self.paths_attempted = paths_attempted or []


class SubmissionNotFoundError(PreviewError):
    """Raised when the submissions table has no row for an id."""

    http_status: int = 404
    error: str = "Submission not found"

    def __init__(self, submission_id: str) -> None:
        super().__init__(
            message=f"Submission not found: {submission_id}",
            error_code=ErrorCode.SUBMISSION_NOT_FOUND,
            details={"submission_id": submission_id},
        )
        self.submission_id = submission_id


# =============================================================================
# Worksheet Errors (E2xxx)
# =============================================================================


class WorksheetError(PreviewError):
    """Base class for worksheet selection errors."""

    http_status: int = 404


class WorksheetNotFoundError(WorksheetError):
    """Raised when the requested worksheet name is not in the workbook.

    The response lists the available names so a client can retry.
    """

    error: str = "Worksheet not found"

    def __init__(self, requested: str, available: list[str]) -> None:
        super().__init__(
            message=f'Worksheet "{requested}" not found',
            error_code=ErrorCode.WORKSHEET_NOT_FOUND,
        )
        self.requested = requested
        self.available = list(available)

    def response_fields(self) -> dict[str, Any]:
        return {
            "availableWorksheets": self.available,
            "requestedWorksheet": self.requested,
        }


class NoWorksheetsError(WorksheetError):
    """Raised when a workbook contains no worksheets."""

    error: str = "No worksheets found in workbook"

    def __init__(self, message: str = "The workbook contains no worksheets") -> None:
        super().__init__(message=message, error_code=ErrorCode.NO_WORKSHEETS)


class CellProcessingError(PreviewError):
    """Raised when one cell cannot be styled, formatted or evaluated."""

    def __init__(self, address: str, cause: Exception) -> None:
        super().__init__(
            message=f"Failed to process cell {address}: {cause}",
            error_code=ErrorCode.CELL_PROCESSING_FAILED,
            details={"address": address, "error_type": type(cause).__name__},
        )
        self.address = address
        self.cause = cause


class RuleParseError(PreviewError):
    """Raised when a conditional formatting rule is malformed."""

    def __init__(self, message: str, sqref: str | None = None) -> None:
        details: dict[str, Any] = {}
        if sqref:
            details["sqref"] = sqref
        super().__init__(
            message=message,
            error_code=ErrorCode.RULE_PARSE_FAILED,
            details=details,
        )
        self.sqref = sqref


# =============================================================================
# Recalculation Errors (E3xxx)
# =============================================================================


class RecalculationUnavailableError(PreviewError):
    """Raised when the formula engine fails or runs out of time."""

    http_status: int = 503

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.RECALCULATION_UNAVAILABLE,
        sheet_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if sheet_name:
            details["sheet_name"] = sheet_name
        super().__init__(message, error_code, details)
        self.sheet_name = sheet_name


# =============================================================================
# Request and External Service Errors (E4xxx, E5xxx)
# =============================================================================


class ValidationError(PreviewError):
    """General validation error for request input."""

    http_status: int = 400

    def __init__(
        self,
        message: str,
        field: str | None = None,
        errors: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with validation details.

        Args:
            message: Main error message, also used as the client-facing label.
            field: Field that failed validation.
            errors: List of validation errors.
            details: Additional details.
        """
        details = details or {}
        if field:
            details["field"] = field
        if errors:
            details["validation_errors"] = errors
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_REQUEST,
            details=details,
        )
        self.error = message


class StorageUnavailableError(PreviewError):
    """Raised when the object store or submissions table cannot be used."""

    http_status: int = 503
    error: str = "Storage unavailable"

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.STORAGE_UNAVAILABLE,
        service: str | None = None,
    ) -> None:
        details: dict[str, Any] = {}
        if service:
            details["service"] = service
        super().__init__(message, error_code, details)
        self.service = service
