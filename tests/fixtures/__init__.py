"""Helpers for building small workbook packages in tests.

``build_package`` writes the OOXML parts directly so tests control exactly
which parts exist; ``build_openpyxl_package`` uses openpyxl for packages that
must also be readable by openpyxl.

Example usage:
    from tests.fixtures import build_package, row_xml, cell_xml

    data = build_package({"Summary": row_xml(1, cell_xml("A1", 42))})
"""

import io
import zipfile
from collections.abc import Callable, Mapping
from typing import Any
from xml.sax.saxutils import escape

from openpyxl import Workbook as OpenpyxlWorkbook

MAIN_NS = "http://schemas.openxmlformats.org/spreadsheetml/2006/main"
REL_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
PKG_REL_NS = "http://schemas.openxmlformats.org/package/2006/relationships"
DRAWING_NS = "http://schemas.openxmlformats.org/drawingml/2006/main"

THEME_REL_TYPE = f"{REL_NS}/theme"
STYLES_REL_TYPE = f"{REL_NS}/styles"
SHARED_STRINGS_REL_TYPE = f"{REL_NS}/sharedStrings"
WORKSHEET_REL_TYPE = f"{REL_NS}/worksheet"

DEFAULT_THEME_XML = f"""<?xml version="1.0" encoding="UTF-8"?>
<a:theme xmlns:a="{DRAWING_NS}" name="Office Theme">
  <a:themeElements>
    <a:clrScheme name="Office">
      <a:dk1><a:sysClr val="windowText" lastClr="000000"/></a:dk1>
      <a:lt1><a:sysClr val="window" lastClr="FFFFFF"/></a:lt1>
      <a:dk2><a:srgbClr val="44546A"/></a:dk2>
      <a:lt2><a:srgbClr val="E7E6E6"/></a:lt2>
      <a:accent1><a:srgbClr val="5B9BD5"/></a:accent1>
      <a:accent2><a:srgbClr val="ED7D31"/></a:accent2>
      <a:accent3><a:srgbClr val="A5A5A5"/></a:accent3>
      <a:accent4><a:srgbClr val="FFC000"/></a:accent4>
      <a:accent5><a:srgbClr val="4472C4"/></a:accent5>
      <a:accent6><a:srgbClr val="70AD47"/></a:accent6>
      <a:hlink><a:srgbClr val="0563C1"/></a:hlink>
      <a:folHlink><a:srgbClr val="954F72"/></a:folHlink>
    </a:clrScheme>
  </a:themeElements>
</a:theme>"""


def cell_xml(
    ref: str,
    value: Any = None,
    *,
    cell_type: str | None = None,
    formula: str | None = None,
    style: int | None = None,
    formula_attrs: str = "",
) -> str:
    """Serialize one ``<c>`` element."""
    attrs = f'r="{ref}"'
    if style is not None:
        attrs += f' s="{style}"'
    if cell_type is not None:
        attrs += f' t="{cell_type}"'
    inner = ""
    if formula is not None or formula_attrs:
        inner += f"<f{(' ' + formula_attrs) if formula_attrs else ''}>{escape(formula or '')}</f>"
    if cell_type == "inlineStr":
        inner += f"<is><t>{escape(str(value))}</t></is>"
    elif value is not None:
        inner += f"<v>{escape(str(value))}</v>"
    return f"<c {attrs}>{inner}</c>"


def row_xml(number: int, *cells: str, height: float | None = None) -> str:
    attrs = f'r="{number}"'
    if height is not None:
        attrs += f' ht="{height}" customHeight="1"'
    return f"<row {attrs}>{''.join(cells)}</row>"


def worksheet_xml(
    rows: str = "",
    *,
    cols: str = "",
    merges: list[str] | None = None,
    conditional_formatting: str = "",
) -> str:
    """Serialize a worksheet part from pre-built fragments."""
    parts = [f'<?xml version="1.0" encoding="UTF-8"?><worksheet xmlns="{MAIN_NS}">']
    if cols:
        parts.append(f"<cols>{cols}</cols>")
    parts.append(f"<sheetData>{rows}</sheetData>")
    if merges:
        parts.append(f'<mergeCells count="{len(merges)}">')
        parts.extend(f'<mergeCell ref="{ref}"/>' for ref in merges)
        parts.append("</mergeCells>")
    parts.append(conditional_formatting)
    parts.append("</worksheet>")
    return "".join(parts)


def styles_xml(
    *,
    num_fmts: str = "",
    fonts: str = '<font><sz val="11"/><name val="Calibri"/></font>',
    fills: str = (
        '<fill><patternFill patternType="none"/></fill>'
        '<fill><patternFill patternType="gray125"/></fill>'
    ),
    borders: str = "<border><left/><right/><top/><bottom/></border>",
    cell_xfs: str = '<xf numFmtId="0" fontId="0" fillId="0" borderId="0"/>',
    dxfs: str = "",
) -> str:
    """Serialize a styles part; every section defaults to Excel's minimum."""
    parts = [f'<?xml version="1.0" encoding="UTF-8"?><styleSheet xmlns="{MAIN_NS}">']
    if num_fmts:
        parts.append(f"<numFmts>{num_fmts}</numFmts>")
    parts.append(f"<fonts>{fonts}</fonts>")
    parts.append(f"<fills>{fills}</fills>")
    parts.append(f"<borders>{borders}</borders>")
    parts.append(f"<cellXfs>{cell_xfs}</cellXfs>")
    if dxfs:
        parts.append(f"<dxfs>{dxfs}</dxfs>")
    parts.append("</styleSheet>")
    return "".join(parts)


def shared_strings_xml(strings: list[str]) -> str:
    items = "".join(f"<si><t>{escape(s)}</t></si>" for s in strings)
    return (
        f'<?xml version="1.0" encoding="UTF-8"?>'
        f'<sst xmlns="{MAIN_NS}" count="{len(strings)}">{items}</sst>'
    )


def build_package(
    sheets: Mapping[str, str],
    *,
    styles: str | None = None,
    theme: str | None = DEFAULT_THEME_XML,
    shared_strings: list[str] | None = None,
    macros: bool = False,
    extra_parts: Mapping[str, bytes] | None = None,
) -> bytes:
    """Build a package from worksheet bodies keyed by sheet name.

    Each value is either a full worksheet part or just ``<row>`` elements,
    which are wrapped with ``worksheet_xml``. Pass ``theme=None`` to omit the
    theme part.
    """
    sheet_entries = []
    rels = []
    parts: dict[str, str | bytes] = {}
    for position, (name, body) in enumerate(sheets.items(), start=1):
        sheet_entries.append(
            f'<sheet name="{escape(name)}" sheetId="{position}" r:id="rId{position}"/>'
        )
        rels.append(
            f'<Relationship Id="rId{position}" Type="{WORKSHEET_REL_TYPE}" '
            f'Target="worksheets/sheet{position}.xml"/>'
        )
        xml = body if body.lstrip().startswith("<?xml") else worksheet_xml(body)
        parts[f"xl/worksheets/sheet{position}.xml"] = xml

    next_id = len(sheets) + 1
    if styles is not None:
        rels.append(
            f'<Relationship Id="rId{next_id}" Type="{STYLES_REL_TYPE}" Target="styles.xml"/>'
        )
        parts["xl/styles.xml"] = styles
        next_id += 1
    if theme is not None:
        rels.append(
            f'<Relationship Id="rId{next_id}" Type="{THEME_REL_TYPE}" '
            f'Target="theme/theme1.xml"/>'
        )
        parts["xl/theme/theme1.xml"] = theme
        next_id += 1
    if shared_strings is not None:
        rels.append(
            f'<Relationship Id="rId{next_id}" Type="{SHARED_STRINGS_REL_TYPE}" '
            f'Target="sharedStrings.xml"/>'
        )
        parts["xl/sharedStrings.xml"] = shared_strings_xml(shared_strings)

    parts["xl/workbook.xml"] = (
        f'<?xml version="1.0" encoding="UTF-8"?>'
        f'<workbook xmlns="{MAIN_NS}" xmlns:r="{REL_NS}">'
        f"<sheets>{''.join(sheet_entries)}</sheets></workbook>"
    )
    parts["xl/_rels/workbook.xml.rels"] = (
        f'<?xml version="1.0" encoding="UTF-8"?>'
        f'<Relationships xmlns="{PKG_REL_NS}">{"".join(rels)}</Relationships>'
    )
    if macros:
        parts["xl/vbaProject.bin"] = b"\x00" * 16
    for part_name, content in (extra_parts or {}).items():
        parts[part_name] = content

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for part_name, content in parts.items():
            archive.writestr(part_name, content)
    return buffer.getvalue()


def build_openpyxl_package(
    populate: Callable[[OpenpyxlWorkbook], None],
) -> bytes:
    """Build a package with openpyxl; ``populate`` fills the workbook."""
    workbook = OpenpyxlWorkbook()
    populate(workbook)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()
