"""Dataclasses representing a parsed workbook.

A Workbook is built once per request by the loader, may have formula results
replaced by the recalculation adapter, and is then only read by the renderer
and exporter.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union

from workbook_preview.styles import DifferentialFormat, DirectStyle, StyleTable
from workbook_preview.styles import ThemeColorTable
from workbook_preview.utils.addressing import CellRange, format_address

ERROR_CODES = frozenset(
    {
        "#NULL!",
        "#DIV/0!",
        "#VALUE!",
        "#REF!",
        "#NAME?",
        "#NUM!",
        "#N/A",
        "#GETTING_DATA",
        "#SPILL!",
        "#CALC!",
    }
)


class ValueType(str, Enum):
    EMPTY = "empty"
    NUMBER = "number"
    STRING = "string"
    BOOLEAN = "boolean"
    DATE = "date"
    ERROR = "error"
    RICH_TEXT = "rich_text"
    FORMULA = "formula"


@dataclass(frozen=True)
class ErrorValue:
    """A spreadsheet error such as ``#DIV/0!``."""

    code: str

    def __str__(self) -> str:
        return self.code


@dataclass(frozen=True)
class RichText:
    """Text made of separately formatted runs."""

    runs: tuple[str, ...]

    @property
    def text(self) -> str:
        return "".join(self.runs)

    def __str__(self) -> str:
        return self.text


CellValue = Union[None, bool, int, float, str, datetime, ErrorValue, RichText]


def is_number(value: object) -> bool:
    """True for int and float values, excluding booleans."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def as_error(value: object) -> ErrorValue | None:
    """Return the value as an ErrorValue when it is one or spells one."""
    if isinstance(value, ErrorValue):
        return value
    if isinstance(value, str) and value in ERROR_CODES:
        return ErrorValue(value)
    return None


@dataclass(frozen=True)
class MergeRange(CellRange):
    """A merged block; its top-left cell is the anchor."""

    @property
    def anchor(self) -> tuple[int, int]:
        return self.min_row, self.min_col

    @property
    def rowspan(self) -> int:
        return self.rows

    @property
    def colspan(self) -> int:
        return self.columns


@dataclass
class Cell:
    """One worksheet cell.

    Formula cells have ``value_type == FORMULA`` and no ``value``; their
    display value lives in ``result`` (the cached value from the package,
    possibly replaced by recalculation).
    """

    row: int
    column: int
    value: CellValue = None
    value_type: ValueType = ValueType.EMPTY
    formula: str | None = None
    result: CellValue = None
    style_index: int = 0
    style: DirectStyle | None = None
    merge: MergeRange | None = None

    @property
    def address(self) -> str:
        return format_address(self.row, self.column)

    @property
    def is_formula(self) -> bool:
        return self.value_type is ValueType.FORMULA

    @property
    def effective_value(self) -> CellValue:
        """The value shown to users: the result for formulas, else the value."""
        return self.result if self.is_formula else self.value

    @property
    def is_merge_anchor(self) -> bool:
        return self.merge is not None and self.merge.anchor == (self.row, self.column)

    @property
    def merged_into(self) -> str | None:
        """Anchor address for non-anchor cells of a merge."""
        if self.merge is None or self.is_merge_anchor:
            return None
        return format_address(*self.merge.anchor)


@dataclass(frozen=True)
class ValueAnchor:
    """A ``cfvo`` entry: how a scale endpoint is chosen."""

    type: str
    value: str | None = None


@dataclass(frozen=True)
class ColorScale:
    anchors: tuple[ValueAnchor, ...]
    colors: tuple[str, ...]


@dataclass(frozen=True)
class DataBar:
    color: str = "#638EC6"
    show_value: bool = True
    anchors: tuple[ValueAnchor, ...] = ()


@dataclass(frozen=True)
class ConditionalFormatRule:
    """One ``cfRule`` with its target ranges and resolved differential style."""

    ranges: tuple[CellRange, ...]
    type: str
    priority: int = 1
    stop_if_true: bool = False
    operator: str | None = None
    formulas: tuple[str, ...] = ()
    text: str | None = None
    dxf_id: int | None = None
    style: DifferentialFormat | None = None
    color_scale: ColorScale | None = None
    data_bar: DataBar | None = None

    @property
    def sqref(self) -> str:
        return " ".join(r.ref for r in self.ranges)

    def applies_to(self, row: int, column: int) -> bool:
        return any(r.contains(row, column) for r in self.ranges)


@dataclass
class Sheet:
    """A worksheet with sparse cells keyed by ``(row, column)``."""

    name: str
    sheet_id: int
    cells: dict[tuple[int, int], Cell] = field(default_factory=dict)
    merges: list[MergeRange] = field(default_factory=list)
    conditional_formats: list[ConditionalFormatRule] = field(default_factory=list)
    column_widths: dict[int, float] = field(default_factory=dict)
    row_heights: dict[int, float] = field(default_factory=dict)
    part_name: str | None = None
    _merge_index: dict[tuple[int, int], MergeRange] = field(
        default_factory=dict, init=False, repr=False
    )

    def cell(self, row: int, column: int) -> Cell | None:
        return self.cells.get((row, column))

    def set_cell(self, cell: Cell) -> None:
        self.cells[(cell.row, cell.column)] = cell

    def iter_cells(self) -> Iterator[Cell]:
        """Iterate cells row by row, then by column."""
        for key in sorted(self.cells):
            yield self.cells[key]

    def add_merge(self, merge: MergeRange) -> None:
        """Register a merge and link every existing cell it covers.

        The anchor cell is created when the package did not contain it.
        """
        self.merges.append(merge)
        for row, column in merge.cells():
            self._merge_index[(row, column)] = merge
            cell = self.cells.get((row, column))
            if cell is not None:
                cell.merge = merge
        if merge.anchor not in self.cells:
            anchor = Cell(row=merge.min_row, column=merge.min_col, merge=merge)
            self.set_cell(anchor)

    def merge_at(self, row: int, column: int) -> MergeRange | None:
        return self._merge_index.get((row, column))

    @property
    def used_range(self) -> CellRange | None:
        """Bounding box of all cells and merges, or None for an empty sheet."""
        bounds: CellRange | None = None
        if self.cells:
            rows = [row for row, _ in self.cells]
            columns = [column for _, column in self.cells]
            bounds = CellRange(min(rows), min(columns), max(rows), max(columns))
        for merge in self.merges:
            bounds = merge if bounds is None else bounds.union(merge)
        if bounds is None:
            return None
        return CellRange(bounds.min_row, bounds.min_col, bounds.max_row, bounds.max_col)

    def formula_cells(self) -> list[Cell]:
        return [cell for cell in self.iter_cells() if cell.is_formula]

    def value_snapshot(self) -> dict[str, CellValue]:
        """Effective values keyed by address, for expression evaluation."""
        return {cell.address: cell.effective_value for cell in self.cells.values()}


@dataclass
class Workbook:
    """A parsed workbook: ordered sheets plus shared style tables."""

    sheets: list[Sheet] = field(default_factory=list)
    styles: StyleTable = field(default_factory=StyleTable)
    theme: ThemeColorTable = field(default_factory=ThemeColorTable)
    has_macros: bool = False

    def add_sheet(self, sheet: Sheet) -> None:
        if self.sheet(sheet.name) is not None:
            raise ValueError(f"Duplicate sheet name: {sheet.name}")
        self.sheets.append(sheet)

    def sheet(self, name: str) -> Sheet | None:
        for sheet in self.sheets:
            if sheet.name == name:
                return sheet
        return None

    @property
    def sheet_names(self) -> list[str]:
        return [sheet.name for sheet in self.sheets]
