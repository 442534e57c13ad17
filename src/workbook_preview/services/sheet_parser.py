"""Turn worksheet XML into a Sheet of typed cells."""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from datetime import datetime

from openpyxl.formula.translate import Translator, TranslatorError

from workbook_preview.services.package_reader import SheetPart, string_item_value
from workbook_preview.services.style_resolver import color_spec_from_element
from workbook_preview.services.style_resolver import resolve_color
from workbook_preview.styles import StyleTable, ThemeColorTable
from workbook_preview.utils.addressing import (
    MAX_COLUMN,
    format_address,
    parse_address,
    parse_sqref,
)
from workbook_preview.utils.exceptions import MalformedPackageError, RuleParseError
from workbook_preview.utils.logging import get_logger
from workbook_preview.workbook import (
    Cell,
    CellValue,
    ColorScale,
    ConditionalFormatRule,
    DataBar,
    ErrorValue,
    MergeRange,
    RichText,
    Sheet,
    ValueAnchor,
    ValueType,
)

logger = get_logger(__name__)

MAIN_NS = "http://schemas.openxmlformats.org/spreadsheetml/2006/main"

DEFAULT_SCALE_COLORS = {
    "min": "#F8696B",
    "mid": "#FFEB84",
    "max": "#63BE7B",
}
DEFAULT_BAR_COLOR = "#638EC6"

_INTEGER_RE = re.compile(r"^-?\d+$")


def _q(tag: str) -> str:
    return f"{{{MAIN_NS}}}{tag}"


def value_type_of(value: CellValue) -> ValueType:
    if value is None:
        return ValueType.EMPTY
    if isinstance(value, bool):
        return ValueType.BOOLEAN
    if isinstance(value, (int, float)):
        return ValueType.NUMBER
    if isinstance(value, datetime):
        return ValueType.DATE
    if isinstance(value, ErrorValue):
        return ValueType.ERROR
    if isinstance(value, RichText):
        return ValueType.RICH_TEXT
    return ValueType.STRING


class SheetParser:
    """Parse one worksheet part.

    Args:
        styles: Resolved style table, used to look up differential formats.
        theme: Theme colors, used to resolve color scale and data bar colors.
    """

    def __init__(self, styles: StyleTable, theme: ThemeColorTable) -> None:
        self._styles = styles
        self._theme = theme

    def parse(self, part: SheetPart, shared_strings: list[str | RichText]) -> Sheet:
        """Build a Sheet from its XML part.

        Raises:
            MalformedPackageError: If the part is not well-formed XML.
        """
        try:
            root = ET.fromstring(part.xml)
        except ET.ParseError as e:
            raise MalformedPackageError(
                f'Invalid XML in worksheet "{part.name}": {e}', part.part_name
            ) from e

        sheet = Sheet(name=part.name, sheet_id=part.sheet_id, part_name=part.part_name)
        self._read_columns(root, sheet)
        self._read_rows(root, sheet, shared_strings)
        for merge_cell in root.iterfind(f"{_q('mergeCells')}/{_q('mergeCell')}"):
            ref = merge_cell.get("ref")
            try:
                merge = MergeRange.from_ref(ref or "")
            except ValueError:
                logger.warning("Skipping invalid merge", sheet=part.name, ref=ref)
                continue
            if not merge.is_single_cell:
                sheet.add_merge(merge)
        sheet.conditional_formats = self._read_conditional_formats(root, part.name)
        return sheet

    # ---- layout ---- #

    def _read_columns(self, root: ET.Element, sheet: Sheet) -> None:
        for col in root.iterfind(f"{_q('cols')}/{_q('col')}"):
            width = col.get("width")
            if width is None:
                continue
            try:
                first = int(col.get("min", "0"))
                last = min(int(col.get("max", col.get("min", "0"))), MAX_COLUMN)
                width_value = float(width)
            except ValueError:
                continue
            for column in range(max(first, 1), last + 1):
                sheet.column_widths[column] = width_value

    def _read_rows(
        self,
        root: ET.Element,
        sheet: Sheet,
        shared_strings: list[str | RichText],
    ) -> None:
        shared_formulas: dict[str, tuple[str, str]] = {}
        row_number = 0
        for row in root.iterfind(f"{_q('sheetData')}/{_q('row')}"):
            try:
                row_number = int(row.get("r", row_number + 1))
            except ValueError as e:
                raise MalformedPackageError(
                    f'Invalid row number in worksheet "{sheet.name}": {row.get("r")!r}',
                    sheet.part_name,
                ) from e
            height = row.get("ht")
            if height is not None:
                try:
                    sheet.row_heights[row_number] = float(height)
                except ValueError:
                    pass

            column_number = 0
            for element in row.iterfind(_q("c")):
                ref = element.get("r")
                try:
                    _, column_number = parse_address(ref or "")
                except ValueError:
                    column_number += 1
                cell = self._read_cell(
                    element, row_number, column_number, shared_strings, shared_formulas
                )
                if cell is not None:
                    sheet.set_cell(cell)

    # ---- cells ---- #

    def _read_cell(
        self,
        element: ET.Element,
        row: int,
        column: int,
        shared_strings: list[str | RichText],
        shared_formulas: dict[str, tuple[str, str]],
    ) -> Cell | None:
        cell_type = element.get("t", "n")
        try:
            style_index = int(element.get("s", "0"))
        except ValueError:
            style_index = 0

        if cell_type == "inlineStr":
            inline = element.find(_q("is"))
            value: CellValue = string_item_value(inline) if inline is not None else None
        else:
            v = element.find(_q("v"))
            raw = v.text if v is not None else None
            value = self._typed_value(cell_type, raw, shared_strings, row, column)

        formula_el = element.find(_q("f"))
        formula = None
        if formula_el is not None:
            formula = self._formula_text(
                formula_el, format_address(row, column), shared_formulas
            )

        if formula is not None:
            return Cell(
                row=row,
                column=column,
                value_type=ValueType.FORMULA,
                formula=formula,
                result=value,
                style_index=style_index,
            )
        return Cell(
            row=row,
            column=column,
            value=value,
            value_type=value_type_of(value),
            style_index=style_index,
        )

    def _typed_value(
        self,
        cell_type: str,
        raw: str | None,
        shared_strings: list[str | RichText],
        row: int,
        column: int,
    ) -> CellValue:
        if raw is None:
            return None
        if cell_type == "s":
            try:
                return shared_strings[int(raw)]
            except (ValueError, IndexError):
                logger.warning(
                    "Shared string index out of range",
                    address=format_address(row, column),
                    index=raw,
                )
                return ""
        if cell_type == "str":
            return raw
        if cell_type == "b":
            return raw.strip() in ("1", "true")
        if cell_type == "e":
            return ErrorValue(raw.strip())
        if cell_type == "d":
            try:
                return datetime.fromisoformat(raw.strip())
            except ValueError:
                return raw
        try:
            if _INTEGER_RE.match(raw.strip()):
                return int(raw)
            return float(raw)
        except ValueError:
            logger.warning(
                "Non-numeric value in numeric cell",
                address=format_address(row, column),
            )
            return raw

    def _formula_text(
        self,
        element: ET.Element,
        address: str,
        shared_formulas: dict[str, tuple[str, str]],
    ) -> str | None:
        """Return the formula for a cell, expanding shared formula followers."""
        formula_type = element.get("t")
        text = (element.text or "").strip()
        if formula_type == "dataTable":
            return None
        if formula_type != "shared":
            return text or None

        group = element.get("si")
        if text:
            if group is not None:
                shared_formulas[group] = (text, address)
            return text
        if group not in shared_formulas:
            logger.warning("Shared formula without master", address=address, si=group)
            return None
        master_text, master_address = shared_formulas[group]
        try:
            translated = Translator(f"={master_text}", origin=master_address)
            return translated.translate_formula(address)[1:]
        except TranslatorError:
            logger.warning("Could not translate shared formula", address=address)
            return None

    # ---- conditional formatting ---- #

    def _read_conditional_formats(
        self, root: ET.Element, sheet_name: str
    ) -> list[ConditionalFormatRule]:
        rules = []
        for block in root.iterfind(_q("conditionalFormatting")):
            sqref = block.get("sqref", "")
            for rule_el in block.iterfind(_q("cfRule")):
                try:
                    rules.append(self._read_rule(rule_el, sqref))
                except RuleParseError as e:
                    logger.warning(
                        "Skipping conditional formatting rule",
                        sheet=sheet_name,
                        sqref=sqref,
                        error=e.message,
                    )
        return rules

    def _read_rule(self, element: ET.Element, sqref: str) -> ConditionalFormatRule:
        rule_type = element.get("type")
        if not rule_type:
            raise RuleParseError("Rule has no type", sqref)
        try:
            ranges = tuple(parse_sqref(sqref))
        except ValueError as e:
            raise RuleParseError(f"Invalid range: {e}", sqref) from e

        try:
            priority = int(element.get("priority", "1"))
        except ValueError as e:
            raise RuleParseError("Invalid priority", sqref) from e

        dxf_id = None
        if element.get("dxfId") is not None:
            try:
                dxf_id = int(element.get("dxfId", ""))
            except ValueError as e:
                raise RuleParseError("Invalid dxfId", sqref) from e

        formulas = tuple(
            (f.text or "").strip() for f in element.iterfind(_q("formula"))
        )
        return ConditionalFormatRule(
            ranges=ranges,
            type=rule_type,
            priority=priority,
            stop_if_true=element.get("stopIfTrue") in ("1", "true"),
            operator=element.get("operator"),
            formulas=formulas,
            text=element.get("text"),
            dxf_id=dxf_id,
            style=self._styles.differential_format(dxf_id),
            color_scale=self._read_color_scale(element.find(_q("colorScale"))),
            data_bar=self._read_data_bar(element.find(_q("dataBar"))),
        )

    def _anchors(self, element: ET.Element) -> tuple[ValueAnchor, ...]:
        return tuple(
            ValueAnchor(type=cfvo.get("type", "min"), value=cfvo.get("val"))
            for cfvo in element.iterfind(_q("cfvo"))
        )

    def _read_color_scale(self, element: ET.Element | None) -> ColorScale | None:
        if element is None:
            return None
        anchors = self._anchors(element)
        colors = [
            resolve_color(color_spec_from_element(color), self._theme)
            for color in element.iterfind(_q("color"))
        ]
        if len(anchors) == 3:
            defaults = [
                DEFAULT_SCALE_COLORS["min"],
                DEFAULT_SCALE_COLORS["mid"],
                DEFAULT_SCALE_COLORS["max"],
            ]
        else:
            anchors = anchors[:2] or (ValueAnchor("min"), ValueAnchor("max"))
            if len(anchors) == 1:
                anchors = (anchors[0], ValueAnchor("max"))
            defaults = [DEFAULT_SCALE_COLORS["min"], DEFAULT_SCALE_COLORS["max"]]
        resolved = tuple(
            (colors[i] if i < len(colors) and colors[i] else default)
            for i, default in enumerate(defaults)
        )
        return ColorScale(anchors=anchors, colors=resolved)

    def _read_data_bar(self, element: ET.Element | None) -> DataBar | None:
        if element is None:
            return None
        color = resolve_color(color_spec_from_element(element.find(_q("color"))), self._theme)
        return DataBar(
            color=color or DEFAULT_BAR_COLOR,
            show_value=element.get("showValue") not in ("0", "false"),
            anchors=self._anchors(element),
        )
