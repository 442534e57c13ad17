"""Tests for worksheet HTML rendering."""

import re
from unittest.mock import patch

import pytest

from workbook_preview.services.cell_formatter import CellValueFormatter
from workbook_preview.services.renderer import EMPTY_SHEET_HTML, WorksheetRenderer
from workbook_preview.styles import (
    CellFormat,
    DifferentialFormat,
    Fill,
    StyleTable,
    ThemeColorTable,
)
from workbook_preview.utils.addressing import CellRange
from workbook_preview.workbook import (
    Cell,
    ConditionalFormatRule,
    MergeRange,
    Sheet,
    ValueType,
)

THEME = ThemeColorTable()


def _number(row: int, column: int, value: float, style_index: int = 0) -> Cell:
    return Cell(row, column, value=value, value_type=ValueType.NUMBER, style_index=style_index)


def _td(html: str, address: str) -> str | None:
    match = re.search(rf'<td [^>]*data-address="{address}"[^>]*>.*?</td>', html)
    return match.group(0) if match else None


@pytest.fixture
def styles() -> StyleTable:
    return StyleTable(
        fills=(Fill(), Fill("gray125"), Fill("solid", fg_color="#FFFF00")),
        cell_formats=(CellFormat(), CellFormat(fill_id=2), CellFormat(num_fmt_id=4)),
    )


class TestTableStructure:
    """Tests for headers, rows and bounds."""

    def test_headers_and_rows(self, styles: StyleTable) -> None:
        sheet = Sheet("Summary", 1)
        sheet.set_cell(_number(1, 1, 1))
        sheet.set_cell(_number(2, 2, 2))
        sheet.column_widths[2] = 20
        sheet.row_heights[2] = 30

        rendered = WorksheetRenderer().render(sheet, styles, THEME)

        assert rendered.html.startswith(
            '<div class="excel-table-wrapper"><table class="excel-formatted-table" '
            'data-worksheet="Summary">'
        )
        assert '<th class="excel-col-header" style="width: 70px">A</th>' in rendered.html
        assert '<th class="excel-col-header" style="width: 140px">B</th>' in rendered.html
        assert '<tr style="height: 22.5px"><th class="excel-row-header">1</th>' in rendered.html
        assert '<tr style="height: 45px"><th class="excel-row-header">2</th>' in rendered.html
        assert (rendered.rows, rendered.columns, rendered.cells_rendered) == (2, 2, 4)

    def test_viewport_is_capped(self, styles: StyleTable) -> None:
        """Row and column counts are the used range clipped to the bounds."""
        sheet = Sheet("Large", 1)
        for row in range(1, 11):
            for column in range(1, 6):
                sheet.set_cell(_number(row, column, row * column))

        rendered = WorksheetRenderer(max_rows=3, max_columns=2).render(sheet, styles, THEME)

        assert rendered.html.count('<th class="excel-col-header"') == 2
        assert rendered.html.count("<tr style=") == 3
        assert (rendered.rows, rendered.columns) == (3, 2)
        assert _td(rendered.html, "C1") is None

    def test_viewport_starts_at_used_range(self, styles: StyleTable) -> None:
        sheet = Sheet("Offset", 1)
        sheet.set_cell(_number(4, 3, 1))

        renderer = WorksheetRenderer()

        assert renderer.viewport(sheet) == CellRange(4, 3, 4, 3)
        assert ">C</th>" in renderer.render(sheet, styles, THEME).html

    def test_empty_sheet(self, styles: StyleTable) -> None:
        rendered = WorksheetRenderer().render(Sheet("Blank", 1), styles, THEME)
        assert rendered.html == EMPTY_SHEET_HTML

    def test_rendering_is_repeatable(self, styles: StyleTable) -> None:
        sheet = Sheet("Summary", 1)
        sheet.set_cell(_number(1, 1, 3, style_index=1))
        renderer = WorksheetRenderer()
        assert renderer.render(sheet, styles, THEME).html == renderer.render(sheet, styles, THEME).html


class TestMerges:
    """Tests for merged ranges."""

    def test_anchor_spans_and_covered_cells_skipped(self, styles: StyleTable) -> None:
        sheet = Sheet("Merged", 1)
        sheet.set_cell(_number(1, 1, 1))
        sheet.set_cell(Cell(2, 2, value="Title", value_type=ValueType.STRING))
        sheet.set_cell(_number(4, 4, 1))
        sheet.add_merge(MergeRange.from_ref("B2:C3"))

        html = WorksheetRenderer().render(sheet, styles, THEME).html

        assert (
            '<td class="excel-cell" data-address="B2" colspan="2" rowspan="2">Title</td>'
            in html
        )
        for address in ("B3", "C2", "C3"):
            assert _td(html, address) is None
        assert _td(html, "D3") is not None

    def test_spans_clipped_to_viewport(self, styles: StyleTable) -> None:
        sheet = Sheet("Merged", 1)
        sheet.add_merge(MergeRange.from_ref("A1:D4"))

        html = WorksheetRenderer(max_rows=2, max_columns=3).render(sheet, styles, THEME).html

        assert 'colspan="3" rowspan="2"' in html


class TestCells:
    """Tests for cell markup."""

    def test_classes_and_formatting(self, styles: StyleTable) -> None:
        sheet = Sheet("Summary", 1)
        sheet.set_cell(_number(1, 1, 1234.5, style_index=2))
        sheet.set_cell(_number(1, 2, -3))
        sheet.set_cell(
            Cell(1, 3, value_type=ValueType.FORMULA, formula="A1*2", result=2469)
        )

        html = WorksheetRenderer().render(sheet, styles, THEME).html

        assert '<td class="excel-cell positive-value" data-address="A1">1,234.50</td>' in html
        assert '<td class="excel-cell negative-value" data-address="B1">-3</td>' in html
        assert (
            '<td class="excel-cell has-formula" data-address="C1" data-formula="A1*2">'
            "2469</td>" in html
        )

    def test_text_is_escaped(self, styles: StyleTable) -> None:
        sheet = Sheet('Q1 "draft"', 1)
        sheet.set_cell(Cell(1, 1, value="<script>&", value_type=ValueType.STRING))

        html = WorksheetRenderer().render(sheet, styles, THEME).html

        assert "&lt;script&gt;&amp;" in html
        assert "<script>" not in html
        assert 'data-worksheet="Q1 &quot;draft&quot;"' in html

    def test_conditional_format_overrides_base_style(self, styles: StyleTable) -> None:
        sheet = Sheet("Summary", 1)
        sheet.set_cell(_number(1, 1, 5, style_index=1))
        sheet.conditional_formats = [
            ConditionalFormatRule(
                ranges=(CellRange(1, 1, 1, 1),),
                type="cellIs",
                operator="greaterThan",
                formulas=("3",),
                style=DifferentialFormat(background_color="#C6EFCE", bold=True),
            )
        ]

        td = _td(WorksheetRenderer().render(sheet, styles, THEME).html, "A1")

        assert 'style="background-color: #C6EFCE; font-weight: bold"' in td

    def test_base_style(self, styles: StyleTable) -> None:
        sheet = Sheet("Summary", 1)
        sheet.set_cell(_number(1, 1, 5, style_index=1))

        td = _td(WorksheetRenderer().render(sheet, styles, THEME).html, "A1")

        assert 'style="background-color: #FFFF00"' in td

    def test_failing_cell_renders_empty(self, styles: StyleTable) -> None:
        sheet = Sheet("Summary", 1)
        sheet.set_cell(_number(1, 1, 5))

        with patch.object(CellValueFormatter, "format", side_effect=RuntimeError("bad")):
            rendered = WorksheetRenderer().render(sheet, styles, THEME)

        assert rendered.cell_errors == 1
        assert '<td class="excel-cell" data-address="A1"></td>' in rendered.html

    def test_formula_placeholder(self, styles: StyleTable) -> None:
        sheet = Sheet("Summary", 1)
        sheet.set_cell(Cell(1, 1, value_type=ValueType.FORMULA, formula="NOW()"))

        html = WorksheetRenderer(formula_placeholder="...").render(sheet, styles, THEME).html

        assert 'data-formula="NOW()">...</td>' in html
