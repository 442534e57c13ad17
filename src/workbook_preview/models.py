"""Pydantic models for API requests and responses."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: str
    version: str
    storage_configured: bool = False


class RenderRequest(BaseModel):
    """Request body for the preview endpoint.

    ``submission_id`` is optional at the schema level so that a missing id is
    reported as the documented 400 rather than a generic validation error.
    """

    submission_id: str | None = Field(
        default=None, description="Submission whose stored model is rendered"
    )
    worksheet_name: str | None = Field(
        default=None, description="Worksheet to render; defaults to the first"
    )


class ExportRequest(BaseModel):
    """Request body for the recalculated export endpoint."""

    submission_id: str | None = Field(
        default=None, description="Submission whose stored model is exported"
    )


class WorksheetInfo(BaseModel):
    """A worksheet listed in a preview response."""

    name: str
    id: int


class RenderResponse(BaseModel):
    """Response model for the preview endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    html: str = Field(..., description="Rendered worksheet table")
    worksheets: list[WorksheetInfo] = Field(
        ..., description="All worksheets in workbook order"
    )
    current_worksheet: str = Field(
        ..., alias="currentWorksheet", description="Name of the rendered worksheet"
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict, description="Submission metadata, empty if unavailable"
    )
    styles: str = Field(..., description="CSS for the rendered table")
    anti_copy_script: str = Field(
        ..., alias="antiCopyScript", description="Client script for the preview page"
    )


class ErrorResponse(BaseModel):
    """Error body for API error responses.

    ``error`` is a short label such as "File not found"; ``message`` carries
    the human-readable explanation and ``error_code`` the machine-readable
    code (e.g. 'E1001').
    """

    model_config = ConfigDict(populate_by_name=True)

    error: str = Field(..., description="Short error label")
    message: str | None = Field(default=None, description="Human-readable message")
    error_code: str | None = Field(default=None, description="Machine-readable code")
    details: dict[str, Any] | None = Field(
        default=None, description="Additional error details for debugging"
    )
    request_id: str | None = Field(
        default=None, description="Request ID for error correlation"
    )
    available_worksheets: list[str] | None = Field(
        default=None, alias="availableWorksheets"
    )
    requested_worksheet: str | None = Field(default=None, alias="requestedWorksheet")
