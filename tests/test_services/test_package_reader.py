"""Tests for the package reader."""

import io
import zipfile

import pytest

from tests.fixtures import build_package, cell_xml, row_xml
from workbook_preview.services.package_reader import (
    PackageReader,
    parse_shared_strings,
)
from workbook_preview.utils.exceptions import ErrorCode, MalformedPackageError
from workbook_preview.workbook import RichText


def _zip(parts: dict[str, str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in parts.items():
            archive.writestr(name, content)
    return buffer.getvalue()


class TestPackageReader:
    """Tests for PackageReader.read."""

    def test_reads_sheets_in_workbook_order(self) -> None:
        """Worksheets keep the order of the workbook part."""
        data = build_package(
            {
                "Summary": row_xml(1, cell_xml("A1", 1)),
                "Details": row_xml(1, cell_xml("A1", 2)),
            }
        )

        contents = PackageReader().read(data)

        assert [sheet.name for sheet in contents.sheets] == ["Summary", "Details"]
        assert contents.sheets[0].part_name == "xl/worksheets/sheet1.xml"
        assert contents.sheets[1].sheet_id == 2
        assert b"<sheetData>" in contents.sheets[0].xml

    def test_optional_parts(self) -> None:
        """Theme is read when present; missing styles give None."""
        contents = PackageReader().read(build_package({"Sheet1": ""}))

        assert contents.theme_xml is not None
        assert contents.styles_xml is None
        assert contents.shared_strings == []
        assert contents.has_macros is False

    def test_missing_theme(self) -> None:
        contents = PackageReader().read(build_package({"Sheet1": ""}, theme=None))
        assert contents.theme_xml is None

    def test_macro_detection(self) -> None:
        """A VBA project part marks the package as macro-enabled."""
        contents = PackageReader().read(build_package({"Sheet1": ""}, macros=True))
        assert contents.has_macros is True

    def test_shared_strings(self) -> None:
        contents = PackageReader().read(
            build_package({"Sheet1": ""}, shared_strings=["Revenue", "Cost"])
        )
        assert contents.shared_strings == ["Revenue", "Cost"]

    def test_not_a_zip(self) -> None:
        """Random bytes are rejected as malformed."""
        with pytest.raises(MalformedPackageError) as exc_info:
            PackageReader().read(b"not a spreadsheet")

        assert exc_info.value.error_code == ErrorCode.MALFORMED_PACKAGE

    def test_missing_workbook_part(self) -> None:
        with pytest.raises(MalformedPackageError, match="xl/workbook.xml"):
            PackageReader().read(_zip({"docProps/app.xml": "<Properties/>"}))

    def test_invalid_workbook_xml(self) -> None:
        with pytest.raises(MalformedPackageError, match="Invalid XML"):
            PackageReader().read(_zip({"xl/workbook.xml": "<workbook"}))

    def test_missing_worksheet_part(self) -> None:
        """A sheet listed in the workbook must exist in the package."""
        data = build_package(
            {"Summary": ""},
            extra_parts={"xl/_rels/workbook.xml.rels": (
                b'<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/'
                b'relationships"><Relationship Id="rId1" Type="http://schemas.'
                b'openxmlformats.org/officeDocument/2006/relationships/worksheet" '
                b'Target="worksheets/missing.xml"/></Relationships>'
            )},
        )

        with pytest.raises(MalformedPackageError, match="Summary"):
            PackageReader().read(data)


class TestSharedStrings:
    """Tests for parse_shared_strings."""

    def test_rich_text_runs(self) -> None:
        """Items made of runs become RichText."""
        xml = (
            b'<sst xmlns="http://schemas.openxmlformats.org/spreadsheetml/2006/main">'
            b"<si><t>Plain</t></si>"
            b"<si><r><t>Bold</t></r><r><t> text</t></r></si>"
            b"</sst>"
        )

        strings = parse_shared_strings(xml)

        assert strings[0] == "Plain"
        assert isinstance(strings[1], RichText)
        assert strings[1].text == "Bold text"

    def test_unreadable_part(self) -> None:
        assert parse_shared_strings(b"<sst") == []
