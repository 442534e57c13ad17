"""Evaluate conditional formatting rules for one cell.

Rules are visited in ascending priority order (priority 1 first). Boolean
rules (``cellIs``, ``containsText``, ``expression``) contribute their
differential style when they match and end processing when ``stopIfTrue`` is
set. Continuous rules (``colorScale``, ``dataBar``) always contribute and
never end processing. A property already set by an earlier (higher
precedence) rule is not replaced by a later one.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from workbook_preview.services.expression_evaluator import (
    ExpressionError,
    evaluate_expression,
    substitute_references,
)
from workbook_preview.services.style_resolver import format_css_number
from workbook_preview.utils.addressing import parse_address
from workbook_preview.utils.logging import get_logger
from workbook_preview.workbook import (
    CellValue,
    ColorScale,
    ConditionalFormatRule,
    DataBar,
    RichText,
    ValueAnchor,
    is_number,
)

logger = get_logger(__name__)

CELL_IS_OPERATORS = frozenset(
    {
        "greaterThan",
        "lessThan",
        "greaterThanOrEqual",
        "lessThanOrEqual",
        "equal",
        "notEqual",
        "between",
        "notBetween",
    }
)


def _hex_to_rgb(color: str) -> tuple[int, int, int]:
    color = color.lstrip("#")
    return int(color[0:2], 16), int(color[2:4], 16), int(color[4:6], 16)


def interpolate_color(start: str, end: str, factor: float) -> str:
    """Linear blend of two ``#RRGGBB`` colors, rounding each channel."""
    factor = max(0.0, min(1.0, factor))
    channels = [
        int(a + (b - a) * factor + 0.5)
        for a, b in zip(_hex_to_rgb(start), _hex_to_rgb(end), strict=True)
    ]
    return "#" + "".join(f"{c:02X}" for c in channels)


def _percentile(values: list[float], percent: float) -> float:
    ordered = sorted(values)
    if len(ordered) == 1:
        return ordered[0]
    position = (len(ordered) - 1) * max(0.0, min(100.0, percent)) / 100
    lower = int(position)
    upper = min(lower + 1, len(ordered) - 1)
    return ordered[lower] + (ordered[upper] - ordered[lower]) * (position - lower)


class ConditionalFormatEvaluator:
    """Compute CSS overrides from a sheet's conditional formatting rules.

    One instance serves one render of one sheet: numeric values of each
    rule's range are cached per rule and value snapshot.
    """

    def __init__(self) -> None:
        self._range_cache: dict[tuple[int, int], list[float]] = {}

    def evaluate(
        self,
        address: str,
        value: CellValue,
        rules: Sequence[ConditionalFormatRule],
        values: Mapping[str, CellValue],
    ) -> dict[str, str]:
        """Return the CSS declarations conditional formatting adds to a cell.

        Args:
            address: Cell address, e.g. ``"B7"``.
            value: The cell's effective value.
            rules: Rules of the cell's sheet, in any order.
            values: Read-only snapshot of effective values by address.
        """
        row, column = parse_address(address)
        overrides: dict[str, str] = {}
        for rule in sorted(rules, key=lambda r: r.priority):
            if not rule.applies_to(row, column):
                continue

            if rule.type == "colorScale":
                if rule.color_scale is not None:
                    self._merge(overrides, self._color_scale(rule, rule.color_scale, value, values))
                continue
            if rule.type == "dataBar":
                if rule.data_bar is not None:
                    self._merge(overrides, self._data_bar(rule, rule.data_bar, value, values))
                continue

            if not self._matches(rule, value, values):
                continue
            if rule.style is not None:
                self._merge(overrides, rule.style.to_css())
            if rule.stop_if_true:
                break
        return overrides

    @staticmethod
    def _merge(overrides: dict[str, str], css: dict[str, str]) -> None:
        for key, declaration in css.items():
            overrides.setdefault(key, declaration)

    # ---- boolean rules ---- #

    def _matches(
        self,
        rule: ConditionalFormatRule,
        value: CellValue,
        values: Mapping[str, CellValue],
    ) -> bool:
        if rule.type == "cellIs":
            return self._cell_is(rule, value, values)
        if rule.type == "containsText":
            return self._contains_text(rule, value)
        if rule.type == "expression":
            return self._expression(rule, values)
        return False

    def _operand(self, text: str, values: Mapping[str, CellValue]) -> float | None:
        text = text.strip()
        try:
            return float(text)
        except ValueError:
            pass
        try:
            address = "".join(text.replace("$", "").split())
            parse_address(address)
        except ValueError:
            return None
        referenced = values.get(address)
        return float(referenced) if is_number(referenced) else None

    def _cell_is(
        self,
        rule: ConditionalFormatRule,
        value: CellValue,
        values: Mapping[str, CellValue],
    ) -> bool:
        if not is_number(value) or rule.operator not in CELL_IS_OPERATORS:
            return False
        if not rule.formulas:
            return False
        number = float(value)  # type: ignore[arg-type]
        first = self._operand(rule.formulas[0], values)
        if first is None:
            return False

        operator = rule.operator
        if operator in ("between", "notBetween"):
            if len(rule.formulas) < 2:
                return False
            second = self._operand(rule.formulas[1], values)
            if second is None:
                return False
            low, high = min(first, second), max(first, second)
            inside = low <= number <= high
            return inside if operator == "between" else not inside
        if operator == "greaterThan":
            return number > first
        if operator == "lessThan":
            return number < first
        if operator == "greaterThanOrEqual":
            return number >= first
        if operator == "lessThanOrEqual":
            return number <= first
        if operator == "equal":
            return number == first
        return number != first

    def _contains_text(self, rule: ConditionalFormatRule, value: CellValue) -> bool:
        if isinstance(value, RichText):
            value = value.text
        if not isinstance(value, str):
            return False
        needle = rule.text
        if needle is None:
            if not rule.formulas:
                return False
            needle = rule.formulas[0].strip()
            if len(needle) >= 2 and needle[0] == needle[-1] == '"':
                needle = needle[1:-1]
        return needle.lower() in value.lower()

    def _expression(
        self, rule: ConditionalFormatRule, values: Mapping[str, CellValue]
    ) -> bool:
        if not rule.formulas:
            return False
        substituted = substitute_references(rule.formulas[0], values)
        try:
            return evaluate_expression(substituted)
        except ExpressionError as e:
            logger.debug(
                "Expression rule not applied",
                sqref=rule.sqref,
                reason=str(e),
            )
            return False

    # ---- continuous rules ---- #

    def _range_values(
        self, rule: ConditionalFormatRule, values: Mapping[str, CellValue]
    ) -> list[float]:
        key = (id(rule), id(values))
        cached = self._range_cache.get(key)
        if cached is not None:
            return cached
        numbers = []
        for address, cell_value in values.items():
            if not is_number(cell_value):
                continue
            row, column = parse_address(address)
            if rule.applies_to(row, column):
                numbers.append(float(cell_value))  # type: ignore[arg-type]
        self._range_cache[key] = numbers
        return numbers

    def _threshold(
        self, anchor: ValueAnchor, numbers: list[float], default: float
    ) -> float:
        low, high = min(numbers), max(numbers)
        try:
            if anchor.type == "min":
                return low
            if anchor.type == "max":
                return high
            if anchor.type == "num" and anchor.value is not None:
                return float(anchor.value)
            if anchor.type == "percent" and anchor.value is not None:
                return low + (high - low) * float(anchor.value) / 100
            if anchor.type == "percentile" and anchor.value is not None:
                return _percentile(numbers, float(anchor.value))
        except ValueError:
            pass
        return default

    def _color_scale(
        self,
        rule: ConditionalFormatRule,
        scale: ColorScale,
        value: CellValue,
        values: Mapping[str, CellValue],
    ) -> dict[str, str]:
        if not is_number(value):
            return {}
        numbers = self._range_values(rule, values)
        if not numbers or min(numbers) == max(numbers):
            return {}
        number = float(value)  # type: ignore[arg-type]
        low = self._threshold(scale.anchors[0], numbers, min(numbers))
        high = self._threshold(scale.anchors[-1], numbers, max(numbers))
        if high <= low:
            return {}

        if len(scale.colors) == 3:
            mid_anchor = scale.anchors[1] if len(scale.anchors) == 3 else ValueAnchor(
                "percentile", "50"
            )
            mid = self._threshold(mid_anchor, numbers, (low + high) / 2)
            if number <= mid:
                factor = 1.0 if mid == low else (number - low) / (mid - low)
                color = interpolate_color(scale.colors[0], scale.colors[1], factor)
            else:
                factor = 1.0 if high == mid else (number - mid) / (high - mid)
                color = interpolate_color(scale.colors[1], scale.colors[2], factor)
        else:
            factor = (number - low) / (high - low)
            color = interpolate_color(scale.colors[0], scale.colors[-1], factor)
        return {"background-color": color}

    def _data_bar(
        self,
        rule: ConditionalFormatRule,
        bar: DataBar,
        value: CellValue,
        values: Mapping[str, CellValue],
    ) -> dict[str, str]:
        if not is_number(value):
            return {}
        numbers = self._range_values(rule, values)
        if not numbers or min(numbers) == max(numbers):
            return {}
        low, high = min(numbers), max(numbers)
        if len(bar.anchors) >= 2:
            low = self._threshold(bar.anchors[0], numbers, low)
            high = self._threshold(bar.anchors[-1], numbers, high)
        if high <= low:
            return {}
        percent = (float(value) - low) / (high - low) * 100  # type: ignore[arg-type]
        width = f"{format_css_number(max(0.0, min(100.0, percent)))}%"
        css = {
            "--bar-width": width,
            "background-image": (
                f"linear-gradient(to right, {bar.color} {width}, transparent {width})"
            ),
        }
        if not bar.show_value:
            css["color"] = "transparent"
        return css
