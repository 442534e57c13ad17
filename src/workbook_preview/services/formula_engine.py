"""Formula engine boundary and its implementation on the ``formulas`` library.

The recalculation adapter talks to an engine only through ``FormulaEngine``:
create an empty engine, add named sheets, load a rectangle of cell contents
per sheet, then read computed values back. Strings starting with ``=`` are
formulas; every other value is a literal.

Rows and columns are 1-based and absolute; ``origin`` tells the engine where
the first content row and column sit on the sheet.
"""

from __future__ import annotations

import re
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import numpy as np
from formulas import Parser
from formulas.errors import FormulaError

from workbook_preview.utils.addressing import CellRange
from workbook_preview.utils.logging import get_logger
from workbook_preview.workbook import ERROR_CODES, ErrorValue, RichText

logger = get_logger(__name__)

_SHEET_NAME_RE = re.compile(r"[^A-Za-z0-9_]")
_INPUT_RE = re.compile(r"^(?:(?P<sheet>'(?:[^']|'')+'|[^!]+)!)?(?P<ref>[^!]+)$")

CellKey = tuple[int, int, int]


def sanitize_sheet_name(name: str) -> str:
    """Drop every character other than letters, digits and underscore."""
    return _SHEET_NAME_RE.sub("", name)


class FormulaEngineError(Exception):
    """Raised by an engine when it cannot load content or compute a cell."""


class FormulaEngine(Protocol):
    """What the recalculation adapter needs from a formula engine."""

    def add_sheet(self, name: str, aliases: Sequence[str] = ()) -> int:
        """Register a sheet and return its engine id.

        ``aliases`` are other names formulas may use for the sheet, such as
        its name in the workbook before sanitizing.
        """
        ...

    def set_sheet_content(
        self,
        sheet_id: int,
        rows: Sequence[Sequence[Any]],
        origin: tuple[int, int] = (1, 1),
    ) -> None:
        """Replace a sheet's content with a rectangle of values."""
        ...

    def get_cell_value(self, sheet_id: int, row: int, column: int) -> Any:
        """Return the computed value at an absolute position."""
        ...


EngineFactory = Callable[[], FormulaEngine]


@dataclass
class _EngineSheet:
    name: str
    values: dict[tuple[int, int], Any] = field(default_factory=dict)
    formulas: dict[tuple[int, int], str] = field(default_factory=dict)
    bounds: CellRange | None = None


@dataclass
class _CompiledFormula:
    function: Any
    inputs: list[str]
    dependencies: set[CellKey]


class FormulasEngine:
    """In-process engine backed by the ``formulas`` package.

    Every formula is compiled separately; formula cells are then evaluated in
    dependency order so each one sees its inputs' recomputed values. Error
    inputs propagate unchanged to the dependent cell. Cells in a reference
    cycle, or whose formula cannot be compiled, raise FormulaEngineError.

    Args:
        max_rows: Rows accepted per sheet.
        max_columns: Columns accepted per sheet.
    """

    def __init__(self, max_rows: int = 10000, max_columns: int = 1000) -> None:
        self._max_rows = max_rows
        self._max_columns = max_columns
        self._parser = Parser()
        self._sheets: list[_EngineSheet] = []
        self._sheet_ids: dict[str, int] = {}
        self._aliases: dict[str, int] = {}
        self._results: dict[CellKey, Any] | None = None
        self._failures: dict[CellKey, str] = {}

    @classmethod
    def build_empty(cls, max_rows: int = 10000, max_columns: int = 1000) -> FormulasEngine:
        return cls(max_rows=max_rows, max_columns=max_columns)

    def add_sheet(self, name: str, aliases: Sequence[str] = ()) -> int:
        key = sanitize_sheet_name(name).upper()
        if not key:
            raise FormulaEngineError(f"Sheet name {name!r} is empty once sanitized")
        if key in self._sheet_ids:
            raise FormulaEngineError(f"Duplicate sheet name: {name}")
        self._sheets.append(_EngineSheet(name=name))
        sheet_id = len(self._sheets) - 1
        self._sheet_ids[key] = sheet_id
        for alias in aliases:
            self._aliases.setdefault(alias.upper(), sheet_id)
        self._results = None
        return sheet_id

    def set_sheet_content(
        self,
        sheet_id: int,
        rows: Sequence[Sequence[Any]],
        origin: tuple[int, int] = (1, 1),
    ) -> None:
        sheet = self._sheet(sheet_id)
        width = max((len(row) for row in rows), default=0)
        if len(rows) > self._max_rows or width > self._max_columns:
            raise FormulaEngineError(
                f"Content of {len(rows)}x{width} exceeds the engine limit of "
                f"{self._max_rows}x{self._max_columns}"
            )

        sheet.values.clear()
        sheet.formulas.clear()
        top, left = origin
        for row_offset, row in enumerate(rows):
            for column_offset, value in enumerate(row):
                position = (top + row_offset, left + column_offset)
                if isinstance(value, str) and value.startswith("=") and len(value) > 1:
                    sheet.formulas[position] = value
                elif value is not None:
                    sheet.values[position] = value
        sheet.bounds = (
            CellRange(top, left, top + len(rows) - 1, left + width - 1)
            if rows and width
            else None
        )
        self._results = None

    def get_cell_value(self, sheet_id: int, row: int, column: int) -> Any:
        sheet = self._sheet(sheet_id)
        results = self._results if self._results is not None else self._calculate()
        key = (sheet_id, row, column)
        if key in self._failures:
            raise FormulaEngineError(self._failures[key])
        if key in results:
            return results[key]
        return sheet.values.get((row, column))

    # ---- evaluation ---- #

    def _sheet(self, sheet_id: int) -> _EngineSheet:
        if not 0 <= sheet_id < len(self._sheets):
            raise FormulaEngineError(f"Unknown sheet id: {sheet_id}")
        return self._sheets[sheet_id]

    def _calculate(self) -> dict[CellKey, Any]:
        results: dict[CellKey, Any] = {}
        self._results = results
        self._failures = {}
        compiled: dict[CellKey, _CompiledFormula] = {}
        for sheet_id, sheet in enumerate(self._sheets):
            for (row, column), text in sheet.formulas.items():
                key = (sheet_id, row, column)
                try:
                    compiled[key] = self._compile(sheet_id, text)
                except (FormulaError, FormulaEngineError, ValueError) as e:
                    self._failures[key] = f"Cannot compile {text}: {e}"

        for key in self._evaluation_order(compiled):
            results[key] = self._evaluate(key, compiled[key])

        logger.debug(
            "Formula engine pass complete",
            formulas=len(compiled) + len(self._failures),
            failed=len(self._failures),
        )
        return results

    def _compile(self, sheet_id: int, text: str) -> _CompiledFormula:
        function = self._parser.ast(text)[1].compile()
        inputs = list(function.inputs)
        dependencies: set[CellKey] = set()
        for name in inputs:
            target_sheet, cell_range = self._resolve_input(sheet_id, name)
            for row, column in self._sheets[target_sheet].formulas:
                if cell_range.contains(row, column):
                    dependencies.add((target_sheet, row, column))
        return _CompiledFormula(function, inputs, dependencies)

    def _resolve_input(self, sheet_id: int, name: str) -> tuple[int, CellRange]:
        """Map an input name like ``SHEET2!A1:B3`` to a sheet and clamped range.

        Multi-cell ranges are clamped to the target sheet's loaded content; a
        range into a sheet without content becomes its top-left cell.
        """
        match = _INPUT_RE.match(name)
        if match is None:
            raise FormulaEngineError(f"Unsupported reference: {name}")
        target = sheet_id
        if match.group("sheet"):
            target = self._target_sheet(match.group("sheet"), name)
        try:
            cell_range = CellRange.from_ref(match.group("ref"))
        except ValueError as e:
            raise FormulaEngineError(f"Unsupported reference: {name}") from e
        if cell_range.is_single_cell:
            return target, cell_range

        bounds = self._sheets[target].bounds
        if bounds is None:
            corner = (cell_range.min_row, cell_range.min_col)
            return target, CellRange(*corner, *corner)
        max_row = max(cell_range.min_row, min(cell_range.max_row, bounds.max_row))
        max_col = max(cell_range.min_col, min(cell_range.max_col, bounds.max_col))
        cell_range = CellRange(cell_range.min_row, cell_range.min_col, max_row, max_col)
        if cell_range.rows > self._max_rows or cell_range.columns > self._max_columns:
            raise FormulaEngineError(
                f"Reference {name} spans {cell_range.rows}x{cell_range.columns} cells, "
                f"over the engine limit of {self._max_rows}x{self._max_columns}"
            )
        return target, cell_range

    def _target_sheet(self, quoted_name: str, reference: str) -> int:
        """Resolve a sheet name, preferring registered aliases over sanitized names."""
        sheet_name = quoted_name.strip("'").replace("''", "'").upper()
        if sheet_name in self._aliases:
            return self._aliases[sheet_name]
        key = sanitize_sheet_name(sheet_name)
        if key not in self._sheet_ids:
            raise FormulaEngineError(f"Unknown sheet in reference: {reference}")
        return self._sheet_ids[key]

    def _evaluation_order(self, compiled: dict[CellKey, _CompiledFormula]) -> list[CellKey]:
        """Topological order of compiled formulas; cycle members are failed."""
        waiting = {
            key: {dep for dep in formula.dependencies if dep in compiled}
            for key, formula in compiled.items()
        }
        dependents: dict[CellKey, list[CellKey]] = {}
        for key, deps in waiting.items():
            for dep in deps:
                dependents.setdefault(dep, []).append(key)

        ready = deque(sorted(key for key, deps in waiting.items() if not deps))
        order = []
        while ready:
            key = ready.popleft()
            order.append(key)
            for dependent in dependents.get(key, []):
                waiting[dependent].discard(key)
                if not waiting[dependent]:
                    ready.append(dependent)

        for key, deps in waiting.items():
            if deps:
                self._failures[key] = "Circular reference"
        return order

    def _input_value(self, sheet_id: int, name: str) -> Any:
        target, cell_range = self._resolve_input(sheet_id, name)
        if cell_range.is_single_cell:
            return self._scalar(target, cell_range.min_row, cell_range.min_col, blank=0)
        return np.array(
            [
                [
                    self._scalar(target, row, column, blank="")
                    for column in range(cell_range.min_col, cell_range.max_col + 1)
                ]
                for row in range(cell_range.min_row, cell_range.max_row + 1)
            ],
            dtype=object,
        )

    def _scalar(self, sheet_id: int, row: int, column: int, blank: Any) -> Any:
        key = (sheet_id, row, column)
        if key in self._failures:
            raise FormulaEngineError(f"Depends on failed cell {row},{column}")
        results = self._results if self._results is not None else {}
        value = results.get(key, self._sheets[sheet_id].values.get((row, column)))
        if value is None:
            return blank
        if isinstance(value, RichText):
            return value.text
        return value

    def _evaluate(self, key: CellKey, formula: _CompiledFormula) -> Any:
        sheet_id = key[0]
        try:
            arguments = [self._input_value(sheet_id, name) for name in formula.inputs]
        except FormulaEngineError as e:
            self._failures[key] = str(e)
            return None

        for argument in arguments:
            if isinstance(argument, ErrorValue):
                return argument

        try:
            result = formula.function(*arguments)
        except (FormulaError, ArithmeticError, ValueError, TypeError) as e:
            self._failures[key] = f"Evaluation failed: {e}"
            return None
        return unwrap_result(result)


def unwrap_result(result: Any) -> Any:
    """Convert an engine result to a plain Python value or ErrorValue."""
    if isinstance(result, np.ndarray):
        if result.size == 0:
            return None
        result = result.ravel()[0]
    if isinstance(result, np.generic):
        result = result.item()
    if isinstance(result, str):
        text = str(result)
        return ErrorValue(text) if text in ERROR_CODES else text
    if isinstance(result, (bool, int, float)) or result is None:
        return result
    return str(result)
