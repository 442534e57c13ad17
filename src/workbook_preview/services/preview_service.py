"""Request-level orchestration: locate, load, recalculate, render, export.

Each call builds its own Workbook. CPU-bound steps run in worker threads so
the event loop stays free; recalculation is computed into a separate result
and applied only once it finishes, so an abandoned recalculation never
touches the workbook being rendered.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Sequence
from dataclasses import dataclass
from functools import partial
from typing import Any

from workbook_preview.config import Settings, settings
from workbook_preview.services.exporter import RecalculatedWorkbookExporter
from workbook_preview.services.formula_engine import EngineFactory, FormulasEngine
from workbook_preview.services.model_storage import (
    DATABASE_SERVICE,
    LocatedModel,
    ModelLocator,
    ObjectStorage,
    SubmissionRepository,
)
from workbook_preview.services.preview_assets import ANTI_COPY_SCRIPT, PREVIEW_STYLES
from workbook_preview.services.recalculation import (
    RecalculationAdapter,
    RecalculationResult,
)
from workbook_preview.services.renderer import WorksheetRenderer
from workbook_preview.services.workbook_loader import WorkbookLoader
from workbook_preview.utils.exceptions import (
    ErrorCode,
    NoWorksheetsError,
    PreviewError,
    RecalculationUnavailableError,
    StorageUnavailableError,
    SubmissionNotFoundError,
    WorksheetNotFoundError,
)
from workbook_preview.utils.logging import LogContext, get_logger, timed_operation
from workbook_preview.workbook import Sheet, Workbook

logger = get_logger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
XLSM_MEDIA_TYPE = "application/vnd.ms-excel.sheet.macroEnabled.12"

DEFAULT_COMPANY_NAME = "Financial"
DOWNLOAD_COLUMNS = ("id", "company_name", "processed_file_path")

_UNSAFE_FILENAME_RE = re.compile(r"[^\w\- .]")


@dataclass(frozen=True)
class WorkbookFile:
    """A workbook ready to be sent as an attachment."""

    filename: str
    data: bytes
    media_type: str
    source_path: str


def model_filename(company_name: str | None, macro_enabled: bool) -> str:
    """``<company>_Model.xlsx``, or ``.xlsm`` for macro-enabled models."""
    company = _UNSAFE_FILENAME_RE.sub("_", (company_name or "").strip())
    extension = "xlsm" if macro_enabled else "xlsx"
    return f"{company or DEFAULT_COMPANY_NAME}_Model.{extension}"


class WorkbookPreviewService:
    """Serve previews and exports of stored submission models.

    Args:
        storage: Bucket holding the models.
        submissions: Submission table; metadata is skipped when None.
        s: Settings supplying bounds, timeouts and storage layout.
        engine_factory: Formula engine factory; defaults to the formulas
            library engine with the configured engine caps.
    """

    def __init__(
        self,
        storage: ObjectStorage,
        submissions: SubmissionRepository | None = None,
        s: Settings | None = None,
        engine_factory: EngineFactory | None = None,
    ) -> None:
        self._settings = s or settings
        self._locator = ModelLocator(storage, self._settings)
        self._submissions = submissions
        self._loader = WorkbookLoader()
        self._recalculation = RecalculationAdapter(
            engine_factory
            or partial(
                FormulasEngine.build_empty,
                self._settings.engine_max_rows,
                self._settings.engine_max_columns,
            ),
            max_rows=self._settings.recalc_max_rows,
            max_columns=self._settings.recalc_max_columns,
        )
        self._renderer = WorksheetRenderer(
            max_rows=self._settings.render_max_rows,
            max_columns=self._settings.render_max_columns,
            formula_placeholder=self._settings.formula_placeholder,
        )
        self._exporter = RecalculatedWorkbookExporter()

    # ---- operations ---- #

    async def render_preview(
        self, submission_id: str, worksheet_name: str | None = None
    ) -> dict[str, Any]:
        """Render one worksheet of a submission's model.

        Raises:
            ModelNotFoundError: If no stored model exists.
            MalformedPackageError: If the model cannot be parsed.
            NoWorksheetsError: If the model has no worksheets.
            WorksheetNotFoundError: If ``worksheet_name`` is not in the model.
        """
        with LogContext(submission_id=submission_id):
            _, workbook = await self.load_workbook(submission_id)
            recalculated = await self.recalculate(workbook)
            sheet = self.select_worksheet(workbook, worksheet_name)

            with timed_operation(logger, "render_worksheet") as metrics:
                rendered = await asyncio.to_thread(
                    self._renderer.render, sheet, workbook.styles, workbook.theme
                )
                metrics.cells_rendered = rendered.cells_rendered
            logger.log_render_result(
                worksheet=sheet.name,
                rows=rendered.rows,
                columns=rendered.columns,
                cells_rendered=rendered.cells_rendered,
                cell_errors=rendered.cell_errors,
                duration_seconds=metrics.duration_seconds,
                recalculated=recalculated is not None,
            )

            metadata = await self.fetch_metadata(submission_id)

        return {
            "success": True,
            "html": rendered.html,
            "worksheets": [
                {"name": s.name, "id": s.sheet_id} for s in workbook.sheets
            ],
            "currentWorksheet": sheet.name,
            "metadata": metadata,
            "styles": PREVIEW_STYLES,
            "antiCopyScript": ANTI_COPY_SCRIPT,
        }

    async def export_recalculated(self, submission_id: str) -> WorkbookFile:
        """Return the model with freshly computed formula values written in."""
        with LogContext(submission_id=submission_id):
            model, workbook = await self.load_workbook(submission_id)
            result = await self.recalculate(workbook)
            data = await asyncio.to_thread(
                self._exporter.export, model.data, workbook, result
            )
            metadata = await self.fetch_metadata(submission_id)

        return WorkbookFile(
            filename=model_filename(metadata.get("company_name"), workbook.has_macros),
            data=data,
            media_type=XLSM_MEDIA_TYPE if workbook.has_macros else XLSX_MEDIA_TYPE,
            source_path=model.path,
        )

    async def download_model(self, submission_id: str) -> WorkbookFile:
        """Return the stored model unchanged.

        Raises:
            StorageUnavailableError: If no submission table is configured.
            SubmissionNotFoundError: If the submission row does not exist.
            ModelNotFoundError: If no stored model exists.
        """
        if self._submissions is None:
            raise StorageUnavailableError(
                "Submission table is not configured",
                error_code=ErrorCode.DATABASE_UNAVAILABLE,
                service=DATABASE_SERVICE,
            )
        with LogContext(submission_id=submission_id):
            row = await self._submissions.get_submission(submission_id, DOWNLOAD_COLUMNS)
            if row is None:
                raise SubmissionNotFoundError(submission_id)

            extra_paths = [row.get("processed_file_path") or "", submission_id]
            model = await self._locator.locate(submission_id, extra_paths)

        return WorkbookFile(
            filename=model_filename(row.get("company_name"), model.is_macro_enabled),
            data=model.data,
            media_type=XLSM_MEDIA_TYPE if model.is_macro_enabled else XLSX_MEDIA_TYPE,
            source_path=model.path,
        )

    # ---- steps ---- #

    async def load_workbook(
        self, submission_id: str, extra_paths: Sequence[str] = ()
    ) -> tuple[LocatedModel, Workbook]:
        model = await self._locator.locate(submission_id, extra_paths)
        workbook = await asyncio.to_thread(self._loader.load, model.data)
        if not workbook.sheets:
            raise NoWorksheetsError()
        return model, workbook

    async def recalculate(self, workbook: Workbook) -> RecalculationResult | None:
        """Recalculate formulas within the time budget.

        Returns None, keeping the cached results, when recalculation is
        disabled, fails, or runs past ``recalc_timeout_seconds``.
        """
        if not self._settings.recalculation_enabled:
            return None
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(self._recalculation.compute, workbook),
                timeout=self._settings.recalc_timeout_seconds,
            )
        except TimeoutError:
            logger.warning(
                "Recalculation timed out, using cached values",
                timeout_seconds=self._settings.recalc_timeout_seconds,
            )
            return None
        except RecalculationUnavailableError as e:
            logger.warning(
                "Recalculation unavailable, using cached values",
                error=e.message,
                error_code=e.error_code.value,
            )
            return None

        updated = self._recalculation.apply(workbook, result)
        logger.debug("Recalculated values applied", cells=updated)
        return result

    @staticmethod
    def select_worksheet(workbook: Workbook, worksheet_name: str | None) -> Sheet:
        """The named worksheet, or the first one when no name is given."""
        if not worksheet_name:
            return workbook.sheets[0]
        sheet = workbook.sheet(worksheet_name)
        if sheet is None:
            raise WorksheetNotFoundError(worksheet_name, workbook.sheet_names)
        return sheet

    async def fetch_metadata(self, submission_id: str) -> dict[str, Any]:
        """Submission metadata for decorating a response; empty on any failure."""
        if self._submissions is None:
            return {}
        try:
            row = await self._submissions.get_submission(
                submission_id, self._settings.metadata_columns_list
            )
        except PreviewError as e:
            logger.warning("Submission metadata unavailable", error=e.message)
            return {}
        return dict(row) if row else {}
