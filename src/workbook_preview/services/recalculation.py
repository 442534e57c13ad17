"""Recompute formula results with a formula engine.

Recalculation is split in two steps so it can be abandoned safely:
``compute`` loads a bounded block of every sheet into a fresh engine and
collects the new results without touching the workbook, and ``apply`` writes
those results into the formula cells. If the engine is unavailable, the
cached results from the package stay in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from openpyxl.utils.datetime import to_excel

from workbook_preview.services.formula_engine import (
    EngineFactory,
    FormulaEngine,
    FormulaEngineError,
    FormulasEngine,
    sanitize_sheet_name,
)
from workbook_preview.utils.addressing import CellRange
from workbook_preview.utils.exceptions import RecalculationUnavailableError
from workbook_preview.utils.logging import ProgressTracker, get_logger, timed_operation
from workbook_preview.workbook import Cell, CellValue, ErrorValue, RichText, Sheet
from workbook_preview.workbook import Workbook

logger = get_logger(__name__)

# Engine results that mean "function not supported here"; the cached value
# is kept instead.
UNSUPPORTED_RESULTS = frozenset({"#NAME?"})


@dataclass
class RecalculationResult:
    """New formula results keyed by ``(sheet name, row, column)``."""

    values: dict[tuple[str, int, int], CellValue] = field(default_factory=dict)
    formulas_seen: int = 0
    formulas_kept: int = 0


class RecalculationAdapter:
    """Drive a formula engine over a bounded block of each sheet.

    Args:
        engine_factory: Creates an empty engine per recalculation.
        max_rows: Rows per sheet handed to the engine, from the used range's
            first row.
        max_columns: Columns per sheet handed to the engine, from the used
            range's first column.
    """

    def __init__(
        self,
        engine_factory: EngineFactory | None = None,
        max_rows: int = 200,
        max_columns: int = 50,
    ) -> None:
        self._engine_factory = engine_factory or FormulasEngine.build_empty
        self.max_rows = max_rows
        self.max_columns = max_columns

    def bounded_range(self, sheet: Sheet) -> CellRange | None:
        used = sheet.used_range
        if used is None:
            return None
        return CellRange(
            used.min_row,
            used.min_col,
            min(used.max_row, used.min_row + self.max_rows - 1),
            min(used.max_col, used.min_col + self.max_columns - 1),
        )

    def compute(self, workbook: Workbook) -> RecalculationResult:
        """Compute new results for formula cells inside each sheet's bound.

        Raises:
            RecalculationUnavailableError: If the engine cannot be built, loaded
                or queried.
        """
        with timed_operation(logger, "recalculate") as metrics:
            try:
                result = self._compute(workbook)
            except RecalculationUnavailableError:
                raise
            except Exception as e:
                raise RecalculationUnavailableError(
                    f"Formula engine failed: {e}",
                    details={"error_type": type(e).__name__},
                ) from e
            metrics.sheets_processed = len(workbook.sheets)
            metrics.formulas_recalculated = len(result.values)
            metrics.custom_metrics["formulas_kept"] = result.formulas_kept
        return result

    def apply(self, workbook: Workbook, result: RecalculationResult) -> int:
        """Write computed results into formula cells; returns cells updated."""
        updated = 0
        for (sheet_name, row, column), value in result.values.items():
            sheet = workbook.sheet(sheet_name)
            cell = sheet.cell(row, column) if sheet is not None else None
            if cell is None or not cell.is_formula:
                continue
            cell.result = value
            updated += 1
        return updated

    def recalculate(self, workbook: Workbook) -> RecalculationResult | None:
        """Compute and apply, keeping cached values if the engine fails."""
        try:
            result = self.compute(workbook)
        except RecalculationUnavailableError as e:
            logger.warning(
                "Recalculation unavailable, using cached values",
                error=e.message,
            )
            return None
        self.apply(workbook, result)
        return result

    # ---- internals ---- #

    def _compute(self, workbook: Workbook) -> RecalculationResult:
        engine = self._engine_factory()
        sheet_ids = self._register_sheets(engine, workbook)
        bounds = {sheet.name: self.bounded_range(sheet) for sheet in workbook.sheets}

        for sheet in workbook.sheets:
            cell_range = bounds[sheet.name]
            if cell_range is None:
                continue
            rows = [
                [
                    self._engine_value(sheet.cell(row, column))
                    for column in range(cell_range.min_col, cell_range.max_col + 1)
                ]
                for row in range(cell_range.min_row, cell_range.max_row + 1)
            ]
            try:
                engine.set_sheet_content(
                    sheet_ids[sheet.name],
                    rows,
                    origin=(cell_range.min_row, cell_range.min_col),
                )
            except FormulaEngineError as e:
                raise RecalculationUnavailableError(
                    f"Engine rejected sheet content: {e}", sheet_name=sheet.name
                ) from e

        result = RecalculationResult()
        tracker = ProgressTracker(logger, "Recalculating sheets", total=len(workbook.sheets))
        for sheet in workbook.sheets:
            cell_range = bounds[sheet.name]
            if cell_range is not None:
                self._collect(engine, sheet_ids[sheet.name], sheet, cell_range, result)
            tracker.update(details=sheet.name)
        tracker.complete()
        return result

    def _register_sheets(self, engine: FormulaEngine, workbook: Workbook) -> dict[str, int]:
        sheet_ids: dict[str, int] = {}
        used_names: set[str] = set()
        for sheet in workbook.sheets:
            base = sanitize_sheet_name(sheet.name) or f"Sheet{sheet.sheet_id}"
            name = base
            suffix = 2
            while name.upper() in used_names:
                name = f"{base}_{suffix}"
                suffix += 1
            used_names.add(name.upper())
            try:
                sheet_ids[sheet.name] = engine.add_sheet(name, aliases=(sheet.name,))
            except FormulaEngineError as e:
                raise RecalculationUnavailableError(
                    f"Engine rejected sheet: {e}", sheet_name=sheet.name
                ) from e
        return sheet_ids

    def _collect(
        self,
        engine: FormulaEngine,
        sheet_id: int,
        sheet: Sheet,
        cell_range: CellRange,
        result: RecalculationResult,
    ) -> None:
        for cell in sheet.formula_cells():
            if not cell_range.contains(cell.row, cell.column):
                continue
            result.formulas_seen += 1
            try:
                value = engine.get_cell_value(sheet_id, cell.row, cell.column)
            except FormulaEngineError as e:
                logger.debug(
                    "Keeping cached result",
                    sheet=sheet.name,
                    address=cell.address,
                    reason=str(e),
                )
                result.formulas_kept += 1
                continue
            if value is None or (
                isinstance(value, ErrorValue) and value.code in UNSUPPORTED_RESULTS
            ):
                result.formulas_kept += 1
                continue
            result.values[(sheet.name, cell.row, cell.column)] = value

    @staticmethod
    def _engine_value(cell: Cell | None) -> Any:
        if cell is None:
            return None
        if cell.is_formula:
            return f"={cell.formula}"
        value = cell.value
        if isinstance(value, datetime):
            return to_excel(value)
        if isinstance(value, RichText):
            return value.text
        return value
