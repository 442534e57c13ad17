"""Tests for the workbook loader."""

import pytest

from tests.fixtures import MAIN_NS, REL_NS, build_package, cell_xml, row_xml, styles_xml
from workbook_preview.services.workbook_loader import WorkbookLoader
from workbook_preview.styles import ThemeColorTable
from workbook_preview.utils.exceptions import MalformedPackageError


class TestWorkbookLoader:
    """Tests for WorkbookLoader.load."""

    def test_load_complete_package(self) -> None:
        data = build_package(
            {
                "Summary": row_xml(1, cell_xml("A1", 0, cell_type="s"), cell_xml("B1", 7, style=1)),
                "Inputs": row_xml(1, cell_xml("A1", 3)),
            },
            styles=styles_xml(
                cell_xfs=(
                    '<xf numFmtId="0" fontId="0" fillId="0" borderId="0"/>'
                    '<xf numFmtId="10" fontId="0" fillId="0" borderId="0"/>'
                )
            ),
            shared_strings=["Revenue"],
            macros=True,
        )

        workbook = WorkbookLoader().load(data)

        assert workbook.sheet_names == ["Summary", "Inputs"]
        assert workbook.has_macros is True
        summary = workbook.sheet("Summary")
        assert summary.cell(1, 1).value == "Revenue"
        assert workbook.styles.cell_format(summary.cell(1, 2).style_index).num_fmt_id == 10

    def test_defaults_without_styles_or_theme(self) -> None:
        """A package with only worksheets still loads."""
        workbook = WorkbookLoader().load(
            build_package({"Sheet1": row_xml(1, cell_xml("A1", 1))}, theme=None)
        )

        assert workbook.theme == ThemeColorTable()
        assert workbook.styles.cell_formats == ()

    def test_duplicate_sheet_names(self) -> None:
        workbook_xml = (
            f'<workbook xmlns="{MAIN_NS}" xmlns:r="{REL_NS}"><sheets>'
            '<sheet name="Sheet1" sheetId="1" r:id="rId1"/>'
            '<sheet name="Sheet1" sheetId="2" r:id="rId2"/>'
            "</sheets></workbook>"
        )
        data = build_package(
            {"Sheet1": "", "Sheet2": ""},
            extra_parts={"xl/workbook.xml": workbook_xml.encode()},
        )

        with pytest.raises(MalformedPackageError, match="Duplicate"):
            WorkbookLoader().load(data)

    def test_garbage_bytes(self) -> None:
        with pytest.raises(MalformedPackageError):
            WorkbookLoader().load(b"\x00\x01garbage")
