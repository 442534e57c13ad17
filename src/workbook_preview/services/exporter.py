"""Write recalculated formula results back into the original package."""

from __future__ import annotations

import zipfile
from collections.abc import Iterator
from io import BytesIO
from typing import Any

from openpyxl import load_workbook

from workbook_preview.services.recalculation import RecalculationResult
from workbook_preview.utils.exceptions import MalformedPackageError
from workbook_preview.utils.logging import get_logger, timed_operation
from workbook_preview.workbook import ErrorValue, RichText, Workbook

logger = get_logger(__name__)


class RecalculatedWorkbookExporter:
    """Produce a downloadable copy of a model with fresh formula values."""

    def export(
        self,
        data: bytes,
        workbook: Workbook,
        recalculated: RecalculationResult | None = None,
    ) -> bytes:
        """Return package bytes with formula results written as values.

        Args:
            data: The original package bytes.
            workbook: The parsed workbook, with recalculated results applied.
            recalculated: Restricts the written cells to this result set.
                When omitted every formula cell with a result is written.

        Raises:
            MalformedPackageError: If openpyxl cannot open the package.
        """
        with timed_operation(logger, "export_workbook") as metrics:
            metrics.bytes_processed = len(data)
            try:
                book = load_workbook(BytesIO(data), keep_vba=workbook.has_macros)
            except (zipfile.BadZipFile, KeyError, ValueError, OSError) as e:
                raise MalformedPackageError(f"Cannot open workbook for export: {e}") from e

            written = 0
            for sheet_name, row, column, value in self._results(workbook, recalculated):
                if sheet_name not in book.sheetnames or value is None:
                    continue
                book[sheet_name].cell(row=row, column=column).value = self._plain(value)
                written += 1
            metrics.custom_metrics["cells_written"] = written

            output = BytesIO()
            book.save(output)
        logger.info("Workbook exported", cells_written=written, has_macros=workbook.has_macros)
        return output.getvalue()

    @staticmethod
    def _results(
        workbook: Workbook, recalculated: RecalculationResult | None
    ) -> Iterator[tuple[str, int, int, Any]]:
        if recalculated is not None:
            for (sheet_name, row, column), value in recalculated.values.items():
                yield sheet_name, row, column, value
            return
        for sheet in workbook.sheets:
            for cell in sheet.formula_cells():
                yield sheet.name, cell.row, cell.column, cell.result

    @staticmethod
    def _plain(value: Any) -> Any:
        if isinstance(value, ErrorValue):
            return value.code
        if isinstance(value, RichText):
            return value.text
        return value
