"""A1-style address helpers on top of ``openpyxl.utils.cell``.

Rows and columns are 1-based everywhere in the package. Column letters use
bijective base-26: 1 -> A, 26 -> Z, 27 -> AA, 16384 -> XFD.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass

from openpyxl.utils.cell import (
    column_index_from_string,
    coordinate_from_string,
    get_column_letter,
    range_boundaries,
)
from openpyxl.utils.exceptions import CellCoordinatesException

MAX_ROW = 1_048_576
MAX_COLUMN = 16_384

_SQREF_SPLIT_RE = re.compile(r"[\s,]+")


def column_letter(index: int) -> str:
    """Convert a 1-based column index to its letters."""
    return get_column_letter(index)


def column_index(letters: str) -> int:
    """Convert column letters to a 1-based index."""
    return column_index_from_string(letters)


def _check_bounds(ref: str, row: int, column: int) -> None:
    if not 1 <= row <= MAX_ROW or not 1 <= column <= MAX_COLUMN:
        raise ValueError(f"Cell address out of bounds: {ref!r}")


def parse_address(address: str) -> tuple[int, int]:
    """Parse ``"B7"`` (absolute markers allowed) into ``(row, column)``."""
    try:
        letters, row = coordinate_from_string(address.strip())
    except CellCoordinatesException as e:
        raise ValueError(f"Invalid cell address: {address!r}") from e
    column = column_index(letters)
    _check_bounds(address, row, column)
    return row, column


def format_address(row: int, column: int) -> str:
    return f"{column_letter(column)}{row}"


@dataclass(frozen=True)
class CellRange:
    """Inclusive rectangle of cells."""

    min_row: int
    min_col: int
    max_row: int
    max_col: int

    def __post_init__(self) -> None:
        if self.min_row > self.max_row or self.min_col > self.max_col:
            raise ValueError(f"Inverted range: {self}")

    @classmethod
    def from_ref(cls, ref: str) -> CellRange:
        """Parse ``A1``, ``A1:C3``, ``A:A`` or ``3:5`` (bounds are normalised)."""
        text = ref.strip()
        if "!" in text:
            text = text.rsplit("!", 1)[1]
        if not text:
            raise ValueError(f"Invalid range reference: {ref!r}")
        min_col, min_row, max_col, max_row = range_boundaries(text)
        if min_col is None and min_row is None:
            raise ValueError(f"Invalid range reference: {ref!r}")

        if min_row is None:
            min_row, max_row = 1, MAX_ROW
        if min_col is None:
            min_col, max_col = 1, MAX_COLUMN
        _check_bounds(ref, min_row, min_col)
        _check_bounds(ref, max_row, max_col)
        return cls(
            min(min_row, max_row),
            min(min_col, max_col),
            max(min_row, max_row),
            max(min_col, max_col),
        )

    @property
    def ref(self) -> str:
        start = format_address(self.min_row, self.min_col)
        if self.is_single_cell:
            return start
        return f"{start}:{format_address(self.max_row, self.max_col)}"

    @property
    def rows(self) -> int:
        return self.max_row - self.min_row + 1

    @property
    def columns(self) -> int:
        return self.max_col - self.min_col + 1

    @property
    def is_single_cell(self) -> bool:
        return self.min_row == self.max_row and self.min_col == self.max_col

    def contains(self, row: int, column: int) -> bool:
        return (
            self.min_row <= row <= self.max_row
            and self.min_col <= column <= self.max_col
        )

    def union(self, other: CellRange) -> CellRange:
        return CellRange(
            min(self.min_row, other.min_row),
            min(self.min_col, other.min_col),
            max(self.max_row, other.max_row),
            max(self.max_col, other.max_col),
        )

    def cells(self) -> Iterator[tuple[int, int]]:
        """Iterate ``(row, column)`` pairs row by row."""
        for row in range(self.min_row, self.max_row + 1):
            for column in range(self.min_col, self.max_col + 1):
                yield row, column


def parse_sqref(sqref: str) -> list[CellRange]:
    """Split a space or comma separated range list into ranges.

    Raises:
        ValueError: If any item is not a valid reference.
    """
    items = [item for item in _SQREF_SPLIT_RE.split(sqref.strip()) if item]
    if not items:
        raise ValueError("Empty range reference")
    return [CellRange.from_ref(item) for item in items]
