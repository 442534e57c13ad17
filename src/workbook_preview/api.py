"""FastAPI application for workbook previews."""

import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from workbook_preview.config import Settings, settings, validate_settings_on_startup
from workbook_preview.models import (
    ErrorResponse,
    ExportRequest,
    HealthResponse,
    RenderRequest,
    RenderResponse,
)
from workbook_preview.services.formula_engine import EngineFactory
from workbook_preview.services.model_storage import (
    STORAGE_SERVICE,
    ObjectStorage,
    SubmissionRepository,
    SupabaseObjectStorage,
    SupabaseSubmissionRepository,
    build_supabase_client,
)
from workbook_preview.services.preview_service import (
    WorkbookFile,
    WorkbookPreviewService,
)
from workbook_preview.utils.exceptions import (
    ErrorCode,
    PreviewError,
    StorageUnavailableError,
    ValidationError,
)
from workbook_preview.utils.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    set_request_id,
)

VERSION = "0.1.0"

# Configure structured logging using settings
configure_logging(
    level=settings.log_level_int,
    use_structured_formatter=True,
)
logger = get_logger(__name__)

GENERIC_SERVER_MESSAGE = "The workbook could not be processed. Please try again later."


def _attachment(file: WorkbookFile) -> Response:
    return Response(
        content=file.data,
        media_type=file.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{file.filename}"',
            "X-Success-Path": file.source_path,
        },
    )


def create_app(
    storage: ObjectStorage | None = None,
    submissions: SubmissionRepository | None = None,
    engine_factory: EngineFactory | None = None,
    app_settings: Settings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        storage: Model bucket; built from the Supabase settings when omitted.
        submissions: Submission table; built from the Supabase settings when
            omitted and storage is configured.
        engine_factory: Formula engine factory for recalculation.
        app_settings: Settings to use instead of the module-level instance.
    """
    s = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> Any:
        model_storage, submission_repository = storage, submissions
        if model_storage is None and s.storage_configured:
            client = build_supabase_client(s)
            model_storage = SupabaseObjectStorage(client, s.storage_bucket)
            if submission_repository is None:
                submission_repository = SupabaseSubmissionRepository(
                    client, s.submissions_table
                )

        if model_storage is None:
            app.state.preview_service = None
        else:
            app.state.preview_service = WorkbookPreviewService(
                model_storage,
                submission_repository,
                s=s,
                engine_factory=engine_factory,
            )
        try:
            yield
        finally:
            app.state.preview_service = None

    app = FastAPI(
        title="Workbook Preview API",
        description=(
            "Renders stored Excel financial models as styled, read-only HTML "
            "tables with recalculated formula values."
        ),
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Configure CORS using settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=s.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Validate settings on startup
    validate_settings_on_startup(s)

    def preview_service(request: Request) -> WorkbookPreviewService:
        service: WorkbookPreviewService | None = getattr(
            request.app.state, "preview_service", None
        )
        if service is None:
            raise StorageUnavailableError(
                "Model storage is not configured", service=STORAGE_SERVICE
            )
        return service

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next: Any) -> Any:
        """Assign a request ID, expose it in the response and clear log context."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        set_request_id(request_id)
        request.state.request_id = request_id

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_context()

    @app.exception_handler(PreviewError)
    async def preview_exception_handler(
        request: Request, exc: PreviewError
    ) -> JSONResponse:
        """Handle all custom exceptions from utils.exceptions.

        Server-side failures keep their label but, outside debug mode, their
        message and details are replaced so parser internals do not leak.
        """
        request_id = getattr(request.state, "request_id", get_request_id())
        log = logger.error if exc.http_status >= 500 else logger.warning
        log(
            f"Preview error: {exc.message}",
            error_code=exc.error_code.value,
            http_status=exc.http_status,
        )
        body = exc.to_dict()
        if exc.http_status >= 500 and not s.debug:
            body["message"] = GENERIC_SERVER_MESSAGE
            body.pop("details", None)
        return JSONResponse(
            status_code=exc.http_status,
            content=ErrorResponse(**body, request_id=request_id).model_dump(
                exclude_none=True, by_alias=True
            ),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        """Custom exception handler for HTTP exceptions."""
        request_id = getattr(request.state, "request_id", get_request_id())
        logger.warning(
            f"HTTP Error: {exc.detail}",
            status_code=exc.status_code,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=str(exc.detail),
                request_id=request_id,
            ).model_dump(exclude_none=True, by_alias=True),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Report malformed request bodies as 400 errors."""
        request_id = getattr(request.state, "request_id", get_request_id())
        errors = [str(error.get("msg", error)) for error in exc.errors()]
        logger.warning("Invalid request body", errors=errors)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=ErrorResponse(
                error="Invalid request",
                message="; ".join(errors),
                error_code=ErrorCode.INVALID_REQUEST.value,
                request_id=request_id,
            ).model_dump(exclude_none=True, by_alias=True),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all exception handler for unexpected errors.

        Logs the full exception and returns a generic error response
        to avoid leaking internal details.
        """
        request_id = getattr(request.state, "request_id", get_request_id())
        logger.exception(
            f"Unexpected error: {type(exc).__name__}",
            error_type=type(exc).__name__,
        )
        # In debug mode, include more details
        if s.debug:
            message = f"Internal server error: {type(exc).__name__}: {exc}"
        else:
            message = "Internal server error. Please try again later."

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error="Internal server error",
                message=message,
                error_code=ErrorCode.INTERNAL_ERROR.value,
                request_id=request_id,
            ).model_dump(exclude_none=True, by_alias=True),
        )

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(request: Request) -> dict[str, Any]:
        """Check the health status of the service."""
        logger.debug("Health check requested")
        return {
            "status": "healthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "version": VERSION,
            "storage_configured": getattr(request.app.state, "preview_service", None)
            is not None,
        }

    @app.post(
        "/preview/render",
        response_model=RenderResponse,
        tags=["Preview"],
        responses={
            400: {"model": ErrorResponse, "description": "Missing submission_id"},
            404: {"model": ErrorResponse, "description": "File or worksheet not found"},
            500: {"model": ErrorResponse, "description": "Workbook could not be parsed"},
        },
    )
    async def render_preview(request: Request, body: RenderRequest) -> dict[str, Any]:
        """Render one worksheet of a submission's stored model as HTML.

        Formulas are recalculated within the configured bounds before
        rendering; cached values are used if recalculation is unavailable.
        """
        if not body.submission_id:
            raise ValidationError("Missing submission_id", field="submission_id")

        service = preview_service(request)
        result = await service.render_preview(body.submission_id, body.worksheet_name)
        logger.info(
            "Preview rendered",
            submission_id=body.submission_id,
            worksheet=result["currentWorksheet"],
        )
        return result

    @app.post(
        "/preview/export",
        tags=["Preview"],
        response_class=Response,
        responses={
            200: {"description": "Recalculated workbook attachment"},
            400: {"model": ErrorResponse, "description": "Missing submission_id"},
            404: {"model": ErrorResponse, "description": "File not found"},
        },
    )
    async def export_workbook(request: Request, body: ExportRequest) -> Response:
        """Download the model with recalculated formula values."""
        if not body.submission_id:
            raise ValidationError("Missing submission_id", field="submission_id")

        service = preview_service(request)
        exported = await service.export_recalculated(body.submission_id)
        logger.info(
            "Workbook exported",
            submission_id=body.submission_id,
            filename=exported.filename,
            size=len(exported.data),
        )
        return _attachment(exported)

    @app.get(
        "/models/{submission_id}",
        tags=["Models"],
        response_class=Response,
        responses={
            200: {"description": "Stored model attachment"},
            404: {"model": ErrorResponse, "description": "Submission or file not found"},
        },
    )
    async def download_model(request: Request, submission_id: str) -> Response:
        """Download a submission's stored model unchanged."""
        service = preview_service(request)
        model = await service.download_model(submission_id)
        logger.info(
            "Model downloaded",
            submission_id=submission_id,
            path=model.source_path,
            size=len(model.data),
        )
        return _attachment(model)

    logger.info("FastAPI application created successfully")
    return app


# Create the application instance
app = create_app()
