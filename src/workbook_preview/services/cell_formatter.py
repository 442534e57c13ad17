"""Convert cell values to display text using their number format.

Output follows US English conventions: ``1/15/2024`` dates, ``3:04:05 PM``
times, ``$1,234.50`` currency and ``,`` thousands separators. Numbers without
a recognised format are printed the way a browser prints them (``3`` rather
than ``3.0``).
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from openpyxl.styles.numbers import BUILTIN_FORMATS
from openpyxl.utils.datetime import from_excel

from workbook_preview.workbook import Cell, CellValue, RichText, ValueType
from workbook_preview.workbook import as_error, is_number

DATE_FORMAT_IDS = frozenset({14, 15, 16, 17, 18, 19, 20, 21, 22, 45, 46, 47})
TIME_FORMAT_IDS = frozenset({18, 19, 20, 21})

# Display text for formula errors; every other error code shows as blank.
ERROR_DISPLAY = {
    "#DIV/0!": "0",
    "#NUM!": "0",
}

MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
          "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_DECIMALS_RE = re.compile(r"0\.(0+)")
_BRACKETS_RE = re.compile(r"\[[^\]]*\]")
_DIGITS_RE = re.compile(r"^\d+$")

NumberFormat = int | str | None


def is_date_format(num_fmt: NumberFormat) -> bool:
    """Whether a format id or code displays a date or time."""
    if num_fmt is None:
        return False
    if isinstance(num_fmt, int):
        return num_fmt in DATE_FORMAT_IDS
    fmt = _BRACKETS_RE.sub("", num_fmt.lower())
    if '"' in fmt or "general" in fmt or "#,##" in fmt or _DIGITS_RE.match(fmt):
        return False
    has_component = (
        "d" in fmt or "m" in fmt or "y" in fmt or ("h" in fmt and ":" in fmt)
    )
    has_separator = "/" in fmt or "-" in fmt or ":" in fmt
    return has_component and has_separator


def _decimals(code: str) -> int:
    match = _DECIMALS_RE.search(code)
    return len(match.group(1)) if match else 0


def _round(value: float, decimals: int, exact: bool = False) -> Decimal:
    """Round half away from zero.

    ``exact`` rounds the binary value itself (so ``1.005`` stays ``1.00``),
    otherwise the shortest decimal representation is rounded.
    """
    number = Decimal(value) if exact else Decimal(repr(float(value)))
    return number.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)


def number_to_string(value: int | float) -> str:
    """Print a number without a trailing ``.0``."""
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value) if isinstance(value, float) else str(value)


def format_grouped(value: float, decimals: int) -> str:
    rounded = _round(value, decimals)
    if rounded == 0:
        rounded = abs(rounded)
    return f"{rounded:,f}"


def format_currency(value: float, decimals: int = 2) -> str:
    rounded = _round(value, decimals)
    sign = "-" if rounded < 0 else ""
    return f"{sign}${abs(rounded):,f}"


def format_date_value(moment: datetime, num_fmt: NumberFormat) -> str:
    """Format a date using one of the known display patterns."""
    if isinstance(num_fmt, int):
        if num_fmt == 15:
            return _day_month_year(moment)
        if num_fmt == 16:
            return _day_month(moment)
        if num_fmt == 17:
            return _month_year(moment)
        if num_fmt in TIME_FORMAT_IDS:
            return _locale_time(moment)
        if num_fmt == 22:
            return f"{_locale_date(moment)}, {_locale_time(moment)}"
        return _locale_date(moment)

    if isinstance(num_fmt, str):
        fmt = num_fmt.lower()
        if "mmm" in fmt and "d" in fmt and "yy" in fmt:
            return _day_month_year(moment)
        if "mmm" in fmt and "yy" in fmt:
            return _month_year(moment)
        if "mmm" in fmt and "d" in fmt and "y" not in fmt:
            return _day_month(moment)
        if "h:" in fmt:
            return _locale_time(moment)
    return _locale_date(moment)


def _locale_date(moment: datetime) -> str:
    return f"{moment.month}/{moment.day}/{moment.year}"


def _locale_time(moment: datetime) -> str:
    hour = moment.hour % 12 or 12
    suffix = "AM" if moment.hour < 12 else "PM"
    return f"{hour}:{moment.minute:02d}:{moment.second:02d} {suffix}"


def _day_month_year(moment: datetime) -> str:
    return f"{moment.day}-{MONTHS[moment.month - 1]}-{moment.year % 100:02d}"


def _day_month(moment: datetime) -> str:
    return f"{moment.day}-{MONTHS[moment.month - 1]}"


def _month_year(moment: datetime) -> str:
    return f"{MONTHS[moment.month - 1]}-{moment.year % 100:02d}"


class CellValueFormatter:
    """Format cells of one workbook.

    Args:
        number_formats: Custom format codes by id from the style table.
        formula_placeholder: Text for formula cells without a result.
    """

    def __init__(
        self,
        number_formats: Mapping[int, str] | None = None,
        formula_placeholder: str = "",
    ) -> None:
        self._number_formats = dict(number_formats or {})
        self._formula_placeholder = formula_placeholder

    def format(self, cell: Cell | None, num_fmt: NumberFormat = None) -> str:
        """Return the display text of a cell.

        Args:
            cell: The cell, or None for a position without one.
            num_fmt: Built-in format id or format code for the cell.
        """
        if cell is None:
            return ""

        if cell.is_formula:
            result = cell.result
            error = as_error(result)
            if error is not None:
                if error.code == "#VALUE!":
                    return self._formula_placeholder
                return ERROR_DISPLAY.get(error.code, "")
            if result is None:
                return self._formula_placeholder
            if isinstance(result, RichText):
                return result.text
            return self.format_value(result, num_fmt)

        if cell.value_type is ValueType.EMPTY or cell.value is None:
            return ""
        if isinstance(cell.value, RichText):
            return cell.value.text
        if cell.value_type is ValueType.ERROR:
            return ""
        return self.format_value(cell.value, num_fmt)

    def format_value(self, value: CellValue, num_fmt: NumberFormat = None) -> str:
        if value is None:
            return ""
        if isinstance(value, datetime):
            return format_date_value(value, self._date_format(num_fmt))
        if isinstance(value, bool):
            return "TRUE" if value else "FALSE"
        if not is_number(value):
            return str(value)

        if self._date_format(num_fmt) is not None:
            try:
                moment = from_excel(value)
            except (OverflowError, ValueError):
                return number_to_string(value)  # type: ignore[arg-type]
            return format_date_value(moment, self._date_format(num_fmt))

        return self._format_number(value, self._code(num_fmt))  # type: ignore[arg-type]

    # ---- helpers ---- #

    def _code(self, num_fmt: NumberFormat) -> str | None:
        if isinstance(num_fmt, int):
            return self._number_formats.get(num_fmt) or BUILTIN_FORMATS.get(num_fmt)
        return num_fmt

    def _date_format(self, num_fmt: NumberFormat) -> NumberFormat:
        """The format to use for date display, or None if not a date format."""
        if isinstance(num_fmt, int) and num_fmt in self._number_formats:
            code = self._number_formats[num_fmt]
            return code if is_date_format(code) else None
        return num_fmt if is_date_format(num_fmt) else None

    def _format_number(self, value: int | float, code: str | None) -> str:
        if not code or code.lower() == "general":
            return number_to_string(value)
        try:
            if "$" in code or "¤" in code:
                return format_currency(value, _decimals(code))
            if "%" in code:
                decimals = _decimals(code)
                return f"{_round(value * 100, decimals, exact=True):f}%"
            if "#,##" in code:
                return format_grouped(value, _decimals(code))
            if "_-" in code or "* " in code:
                formatted = format_currency(abs(value))
                return f"({formatted})" if value < 0 else formatted
        except (InvalidOperation, ValueError):
            pass
        return number_to_string(value)
