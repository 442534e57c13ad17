"""Render one worksheet as a styled HTML table."""

from __future__ import annotations

import html
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from workbook_preview.services.cell_formatter import CellValueFormatter, NumberFormat
from workbook_preview.services.conditional_format import ConditionalFormatEvaluator
from workbook_preview.services.style_resolver import cell_css, format_css_number
from workbook_preview.styles import StyleTable, ThemeColorTable
from workbook_preview.utils.addressing import CellRange, column_letter, format_address
from workbook_preview.utils.exceptions import CellProcessingError
from workbook_preview.utils.logging import get_logger
from workbook_preview.workbook import (
    Cell,
    CellValue,
    ConditionalFormatRule,
    Sheet,
    is_number,
)

logger = get_logger(__name__)

DEFAULT_COLUMN_WIDTH = 10.0
DEFAULT_ROW_HEIGHT = 15.0
COLUMN_WIDTH_PX = 7
ROW_HEIGHT_PX = 1.5

EMPTY_SHEET_HTML = "<p>Empty worksheet</p>"


@dataclass
class RenderedSheet:
    """HTML for one worksheet plus counts for logging."""

    html: str
    rows: int = 0
    columns: int = 0
    cells_rendered: int = 0
    cell_errors: int = 0


def _attribute(name: str, value: object) -> str:
    return f'{name}="{html.escape(str(value), quote=True)}"'


class WorksheetRenderer:
    """Walk a bounded viewport of a sheet and emit ``<table>`` markup.

    The viewport starts at the used range's top-left cell and covers at most
    ``max_rows`` rows and ``max_columns`` columns. Header and body use the
    same column bound.
    """

    def __init__(
        self,
        max_rows: int = 100,
        max_columns: int = 30,
        formula_placeholder: str = "",
    ) -> None:
        self.max_rows = max_rows
        self.max_columns = max_columns
        self._formula_placeholder = formula_placeholder

    def viewport(self, sheet: Sheet) -> CellRange | None:
        used = sheet.used_range
        if used is None:
            return None
        return CellRange(
            used.min_row,
            used.min_col,
            min(used.max_row, used.min_row + self.max_rows - 1),
            min(used.max_col, used.min_col + self.max_columns - 1),
        )

    def render(
        self,
        sheet: Sheet,
        styles: StyleTable,
        theme: ThemeColorTable,
        rules: Sequence[ConditionalFormatRule] | None = None,
    ) -> RenderedSheet:
        """Render a sheet.

        Args:
            sheet: Worksheet to render.
            styles: The workbook's style table.
            theme: The workbook's theme colors, for direct cell styles.
            rules: Conditional formatting rules; defaults to the sheet's own.
        """
        viewport = self.viewport(sheet)
        if viewport is None:
            return RenderedSheet(html=EMPTY_SHEET_HTML)

        rules = sheet.conditional_formats if rules is None else rules
        context = _RenderContext(
            sheet=sheet,
            styles=styles,
            theme=theme,
            rules=sorted(rules, key=lambda r: r.priority),
            values=sheet.value_snapshot() if rules else {},
            viewport=viewport,
            formatter=CellValueFormatter(styles.number_formats, self._formula_placeholder),
            evaluator=ConditionalFormatEvaluator(),
        )

        result = RenderedSheet(html="", rows=viewport.rows, columns=viewport.columns)
        parts = [
            '<div class="excel-table-wrapper">',
            f'<table class="excel-formatted-table" {_attribute("data-worksheet", sheet.name)}>',
            self._header(sheet, viewport),
            "<tbody>",
        ]
        for row in range(viewport.min_row, viewport.max_row + 1):
            height = sheet.row_heights.get(row, DEFAULT_ROW_HEIGHT) * ROW_HEIGHT_PX
            parts.append(f'<tr style="height: {format_css_number(height)}px">')
            parts.append(f'<th class="excel-row-header">{row}</th>')
            for column in range(viewport.min_col, viewport.max_col + 1):
                try:
                    markup = self._cell(context, row, column)
                except CellProcessingError as e:
                    logger.warning(
                        "Cell rendered empty",
                        sheet=sheet.name,
                        address=e.address,
                        error=e.message,
                    )
                    result.cell_errors += 1
                    markup = (
                        f'<td class="excel-cell" '
                        f'{_attribute("data-address", e.address)}></td>'
                    )
                if markup is not None:
                    parts.append(markup)
                    result.cells_rendered += 1
            parts.append("</tr>")
        parts.append("</tbody></table></div>")

        result.html = "".join(parts)
        return result

    def _header(self, sheet: Sheet, viewport: CellRange) -> str:
        cells = ['<thead><tr><th class="excel-row-header"></th>']
        for column in range(viewport.min_col, viewport.max_col + 1):
            width = sheet.column_widths.get(column, DEFAULT_COLUMN_WIDTH) * COLUMN_WIDTH_PX
            cells.append(
                f'<th class="excel-col-header" style="width: {format_css_number(width)}px">'
                f"{column_letter(column)}</th>"
            )
        cells.append("</tr></thead>")
        return "".join(cells)

    def _cell(self, context: _RenderContext, row: int, column: int) -> str | None:
        """Markup for one position, or None for a covered merge position."""
        sheet = context.sheet
        merge = sheet.merge_at(row, column)
        if merge is not None and merge.anchor != (row, column):
            return None

        address = format_address(row, column)
        try:
            cell = sheet.cell(row, column) or Cell(row=row, column=column)
            css, bordered = cell_css(cell, context.styles, context.theme)
            if context.rules:
                css.update(
                    context.evaluator.evaluate(
                        address, cell.effective_value, context.rules, context.values
                    )
                )
            text = context.formatter.format(cell, self._number_format(cell, context.styles))
        except Exception as e:
            raise CellProcessingError(address, e) from e

        classes = ["excel-cell"]
        if cell.is_formula:
            classes.append("has-formula")
        elif is_number(cell.value):
            if cell.value > 0:  # type: ignore[operator]
                classes.append("positive-value")
            elif cell.value < 0:  # type: ignore[operator]
                classes.append("negative-value")
        classes.extend(f"has-border-{side}" for side in bordered)

        attributes = [_attribute("class", " ".join(classes)), _attribute("data-address", address)]
        if cell.formula:
            attributes.append(_attribute("data-formula", cell.formula))
        if merge is not None:
            colspan = min(merge.max_col, context.viewport.max_col) - column + 1
            rowspan = min(merge.max_row, context.viewport.max_row) - row + 1
            if colspan > 1:
                attributes.append(_attribute("colspan", colspan))
            if rowspan > 1:
                attributes.append(_attribute("rowspan", rowspan))
        if css:
            style = "; ".join(f"{key}: {value}" for key, value in css.items())
            attributes.append(_attribute("style", style))

        return f"<td {' '.join(attributes)}>{html.escape(text, quote=True)}</td>"

    @staticmethod
    def _number_format(cell: Cell, styles: StyleTable) -> NumberFormat:
        if cell.style is not None:
            return cell.style.num_fmt
        cell_format = styles.cell_format(cell.style_index)
        return cell_format.num_fmt_id if cell_format is not None else None


@dataclass
class _RenderContext:
    sheet: Sheet
    styles: StyleTable
    theme: ThemeColorTable
    rules: list[ConditionalFormatRule]
    values: Mapping[str, CellValue]
    viewport: CellRange
    formatter: CellValueFormatter
    evaluator: ConditionalFormatEvaluator
