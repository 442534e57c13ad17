"""Resolve theme colors, style tables and per-cell CSS.

Colors follow the spreadsheet rules:
- ``rgb`` values drop a leading alpha byte (``FF5B9BD5`` -> ``#5B9BD5``)
- ``theme`` values index the twelve theme slots, then apply ``tint``
  (lighten towards white when positive, darken towards black when negative)
- ``indexed`` values use the fixed 64-entry legacy palette
- anything else resolves to black
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from typing import Any

from openpyxl.styles.colors import COLOR_INDEX

from workbook_preview.styles import (
    DEFAULT_COLOR,
    DEFAULT_THEME_COLORS,
    THEME_SLOTS,
    Alignment,
    Border,
    BorderSide,
    CellFormat,
    ColorSpec,
    DifferentialFormat,
    DirectStyle,
    Fill,
    Font,
    StyleTable,
    ThemeColorTable,
)
from workbook_preview.utils.logging import get_logger
from workbook_preview.workbook import Cell

logger = get_logger(__name__)

MAIN_NS = "http://schemas.openxmlformats.org/spreadsheetml/2006/main"
DRAWING_NS = "http://schemas.openxmlformats.org/drawingml/2006/main"
NS = {"main": MAIN_NS, "a": DRAWING_NS}

LEGACY_PALETTE_SIZE = 64

_HEX_RE = re.compile(r"^[0-9A-Fa-f]{6}$")

_HORIZONTAL_ALIGN = {
    "left": "left",
    "center": "center",
    "centerContinuous": "center",
    "right": "right",
    "justify": "justify",
    "distributed": "justify",
    "fill": "left",
}
_VERTICAL_ALIGN = {
    "top": "top",
    "center": "middle",
    "bottom": "bottom",
    "justify": "middle",
    "distributed": "middle",
}


def _q(tag: str) -> str:
    return f"{{{MAIN_NS}}}{tag}"


def _flag(element: ET.Element | None) -> bool:
    """Read an on/off child such as ``<b/>`` or ``<b val="0"/>``."""
    if element is None:
        return False
    return element.get("val", "1").lower() not in ("0", "false")


def _to_int(value: str | None, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def format_css_number(value: float) -> str:
    """Render a number for CSS without a trailing ``.0``."""
    rounded = round(float(value), 2)
    if rounded == int(rounded):
        return str(int(rounded))
    return f"{rounded:g}"


# ---------------------------------------------------------------------------
# Colors
# ---------------------------------------------------------------------------


def apply_tint(hex_color: str, tint: float) -> str:
    """Lighten or darken ``#RRGGBB`` by an Excel tint in [-1, 1]."""
    channels = [int(hex_color[i : i + 2], 16) for i in (1, 3, 5)]
    tinted = []
    for channel in channels:
        if tint > 0:
            value = channel + (255 - channel) * tint
        else:
            value = channel * (1 + tint)
        # Round half up, clamped to a byte.
        tinted.append(max(0, min(255, int(value + 0.5))))
    return "#" + "".join(f"{c:02X}" for c in tinted)


def color_spec_from_element(element: ET.Element | None) -> ColorSpec | None:
    """Read a ``<color>``-like element's attributes into a ColorSpec."""
    if element is None:
        return None
    theme = element.get("theme")
    indexed = element.get("indexed")
    tint = element.get("tint")
    try:
        tint_value = float(tint) if tint is not None else 0.0
    except ValueError:
        tint_value = 0.0
    return ColorSpec(
        rgb=element.get("rgb"),
        theme=_to_int(theme) if theme is not None else None,
        tint=tint_value,
        indexed=_to_int(indexed) if indexed is not None else None,
        auto=element.get("auto") in ("1", "true"),
    )


def resolve_color(spec: ColorSpec | None, theme: ThemeColorTable) -> str | None:
    """Resolve a color reference to ``#RRGGBB``; None when there is none."""
    if spec is None:
        return None
    if spec.rgb:
        rgb = spec.rgb[-6:]
        if _HEX_RE.match(rgb):
            return f"#{rgb.upper()}"
        return DEFAULT_COLOR
    if spec.theme is not None:
        base = theme.get(spec.theme)
        if base is None:
            return DEFAULT_COLOR
        return apply_tint(base, spec.tint) if spec.tint else base
    if spec.indexed is not None:
        if 0 <= spec.indexed < min(LEGACY_PALETTE_SIZE, len(COLOR_INDEX)):
            return f"#{COLOR_INDEX[spec.indexed][-6:].upper()}"
        return DEFAULT_COLOR
    return DEFAULT_COLOR


# ---------------------------------------------------------------------------
# Parts
# ---------------------------------------------------------------------------


class StyleResolver:
    """Build the theme color table and style table from package parts."""

    def parse_theme(self, theme_xml: bytes | None) -> ThemeColorTable:
        """Read the theme color scheme, defaulting any missing slot.

        A missing or unreadable theme part yields the default Office palette.
        """
        if theme_xml is None:
            return ThemeColorTable()
        try:
            root = ET.fromstring(theme_xml)
        except ET.ParseError as e:
            logger.warning("Theme part unreadable, using default colors", error=str(e))
            return ThemeColorTable()

        scheme = root.find(".//a:clrScheme", NS)
        if scheme is None:
            return ThemeColorTable()

        colors = []
        for index, slot in enumerate(THEME_SLOTS):
            colors.append(self._scheme_color(scheme.find(f"a:{slot}", NS), index))
        return ThemeColorTable(tuple(colors))

    def _scheme_color(self, slot: ET.Element | None, index: int) -> str:
        default = DEFAULT_THEME_COLORS[index]
        if slot is None:
            return default
        srgb = slot.find("a:srgbClr", NS)
        if srgb is not None and _HEX_RE.match(srgb.get("val", "")):
            return f"#{srgb.get('val', '').upper()}"
        system = slot.find("a:sysClr", NS)
        if system is not None and _HEX_RE.match(system.get("lastClr", "")):
            return f"#{system.get('lastClr', '').upper()}"
        return default

    def parse_styles(
        self, styles_xml: bytes | None, theme: ThemeColorTable
    ) -> StyleTable:
        """Parse ``styles.xml`` into a StyleTable with resolved colors.

        A missing or unreadable styles part yields an empty table, so every
        style index falls back to unstyled output.
        """
        if styles_xml is None:
            return StyleTable()
        try:
            root = ET.fromstring(styles_xml)
        except ET.ParseError as e:
            logger.warning("Styles part unreadable, using empty table", error=str(e))
            return StyleTable()

        number_formats: dict[int, str] = {}
        for num_fmt in root.iterfind(f"{_q('numFmts')}/{_q('numFmt')}"):
            code = num_fmt.get("formatCode")
            num_fmt_id = num_fmt.get("numFmtId")
            if code is not None and num_fmt_id is not None:
                number_formats[_to_int(num_fmt_id)] = code

        fonts = tuple(
            self._font(font, theme)
            for font in root.iterfind(f"{_q('fonts')}/{_q('font')}")
        )
        fills = tuple(
            self._fill(fill, theme)
            for fill in root.iterfind(f"{_q('fills')}/{_q('fill')}")
        )
        borders = tuple(
            self._border(border, theme)
            for border in root.iterfind(f"{_q('borders')}/{_q('border')}")
        )
        cell_formats = tuple(
            self._cell_format(xf) for xf in root.iterfind(f"{_q('cellXfs')}/{_q('xf')}")
        )
        differential_formats = tuple(
            self._differential_format(dxf, theme)
            for dxf in root.iterfind(f"{_q('dxfs')}/{_q('dxf')}")
        )

        logger.debug(
            "Parsed style table",
            fonts=len(fonts),
            fills=len(fills),
            cell_formats=len(cell_formats),
            dxfs=len(differential_formats),
        )
        return StyleTable(
            fonts=fonts,
            fills=fills,
            borders=borders,
            cell_formats=cell_formats,
            differential_formats=differential_formats,
            number_formats=number_formats,
        )

    def resolve(
        self, styles_xml: bytes | None, theme_xml: bytes | None
    ) -> tuple[StyleTable, ThemeColorTable]:
        theme = self.parse_theme(theme_xml)
        return self.parse_styles(styles_xml, theme), theme

    # ---- element readers ---- #

    def _font(self, element: ET.Element, theme: ThemeColorTable) -> Font:
        size_el = element.find(_q("sz"))
        name_el = element.find(_q("name"))
        underline_el = element.find(_q("u"))
        size: float | None = None
        if size_el is not None:
            try:
                size = float(size_el.get("val", ""))
            except ValueError:
                size = None
        return Font(
            name=name_el.get("val") if name_el is not None else None,
            size=size,
            bold=_flag(element.find(_q("b"))),
            italic=_flag(element.find(_q("i"))),
            underline=underline_el is not None
            and underline_el.get("val", "single") != "none",
            color=resolve_color(color_spec_from_element(element.find(_q("color"))), theme),
        )

    def _fill(self, element: ET.Element, theme: ThemeColorTable) -> Fill:
        pattern = element.find(_q("patternFill"))
        if pattern is None:
            return Fill()
        return Fill(
            pattern_type=pattern.get("patternType"),
            fg_color=resolve_color(color_spec_from_element(pattern.find(_q("fgColor"))), theme),
            bg_color=resolve_color(color_spec_from_element(pattern.find(_q("bgColor"))), theme),
        )

    def _border(self, element: ET.Element, theme: ThemeColorTable) -> Border:
        sides: dict[str, BorderSide | None] = {}
        for name in ("left", "right", "top", "bottom"):
            side = element.find(_q(name))
            style = side.get("style") if side is not None else None
            if side is None or not style or style == "none":
                sides[name] = None
                continue
            color = resolve_color(color_spec_from_element(side.find(_q("color"))), theme)
            sides[name] = BorderSide(style=style, color=color)
        return Border(**sides)

    def _cell_format(self, element: ET.Element) -> CellFormat:
        alignment_el = element.find(_q("alignment"))
        alignment = None
        if alignment_el is not None:
            alignment = Alignment(
                horizontal=alignment_el.get("horizontal"),
                vertical=alignment_el.get("vertical"),
                wrap_text=alignment_el.get("wrapText") in ("1", "true"),
            )
        return CellFormat(
            font_id=_to_int(element.get("fontId")),
            fill_id=_to_int(element.get("fillId")),
            border_id=_to_int(element.get("borderId")),
            num_fmt_id=_to_int(element.get("numFmtId")),
            alignment=alignment,
        )

    def _differential_format(
        self, element: ET.Element, theme: ThemeColorTable
    ) -> DifferentialFormat:
        background = None
        pattern = element.find(f"{_q('fill')}/{_q('patternFill')}")
        if pattern is not None:
            # fgColor first, then bgColor.
            spec = color_spec_from_element(pattern.find(_q("fgColor")))
            if spec is None:
                spec = color_spec_from_element(pattern.find(_q("bgColor")))
            background = resolve_color(spec, theme)

        color = None
        bold = None
        italic = None
        font = element.find(_q("font"))
        if font is not None:
            color = resolve_color(color_spec_from_element(font.find(_q("color"))), theme)
            if font.find(_q("b")) is not None:
                bold = _flag(font.find(_q("b")))
            if font.find(_q("i")) is not None:
                italic = _flag(font.find(_q("i")))
        return DifferentialFormat(
            background_color=background, color=color, bold=bold, italic=italic
        )


# ---------------------------------------------------------------------------
# Cell CSS
# ---------------------------------------------------------------------------


def border_css(style: str, color: str | None) -> str:
    if style in ("medium", "thick", "double", "mediumDashed", "mediumDashDot"):
        width = "2px"
    else:
        width = "1px"
    if "dash" in style.lower():
        line = "dashed"
    elif style in ("dotted", "hair"):
        line = "dotted"
    elif style == "double":
        line = "double"
    else:
        line = "solid"
    return f"{width} {line} {color or DEFAULT_COLOR}"


def cell_css(
    cell: Cell, styles: StyleTable, theme: ThemeColorTable
) -> tuple[dict[str, str], list[str]]:
    """Resolve a cell's base CSS declarations and bordered sides.

    A direct style wins over the ``cellXfs`` entry named by ``style_index``.
    """
    if cell.style is not None:
        return _direct_style_css(cell.style, theme)

    css: dict[str, str] = {}
    sides: list[str] = []
    cell_format = styles.cell_format(cell.style_index)
    if cell_format is None:
        return css, sides

    fill = styles.fill(cell_format.fill_id)
    if fill is not None and fill.is_solid and fill.fg_color:
        css["background-color"] = fill.fg_color

    font = styles.font(cell_format.font_id)
    if font is not None:
        _font_css(
            css,
            color=font.color,
            bold=font.bold,
            italic=font.italic,
            underline=font.underline,
            size=font.size,
            name=font.name,
        )

    if cell_format.alignment is not None:
        _alignment_css(
            css,
            cell_format.alignment.horizontal,
            cell_format.alignment.vertical,
            cell_format.alignment.wrap_text,
        )

    border = styles.border(cell_format.border_id)
    if border is not None:
        for name, side in border.sides():
            css[f"border-{name}"] = border_css(side.style, side.color)
            sides.append(name)
    return css, sides


def _direct_style_css(
    style: DirectStyle, theme: ThemeColorTable
) -> tuple[dict[str, str], list[str]]:
    css: dict[str, str] = {}
    fill_color = resolve_color(style.fill_color, theme)
    if fill_color:
        css["background-color"] = fill_color
    _font_css(
        css,
        color=resolve_color(style.font_color, theme),
        bold=style.bold,
        italic=style.italic,
        underline=style.underline,
        size=style.font_size,
        name=style.font_name,
    )
    _alignment_css(css, style.horizontal, style.vertical, style.wrap_text)
    sides = []
    for name in ("top", "right", "bottom", "left"):
        if name in style.borders:
            line_style, color_spec = style.borders[name]
            css[f"border-{name}"] = border_css(line_style, resolve_color(color_spec, theme))
            sides.append(name)
    return css, sides


def _font_css(css: dict[str, str], **font: Any) -> None:
    if font["color"]:
        css["color"] = font["color"]
    if font["bold"]:
        css["font-weight"] = "bold"
    if font["italic"]:
        css["font-style"] = "italic"
    if font["underline"]:
        css["text-decoration"] = "underline"
    if font["size"]:
        css["font-size"] = f"{format_css_number(font['size'])}pt"
    if font["name"]:
        css["font-family"] = f"'{font['name']}', sans-serif"


def _alignment_css(
    css: dict[str, str], horizontal: str | None, vertical: str | None, wrap: bool
) -> None:
    if horizontal in _HORIZONTAL_ALIGN:
        css["text-align"] = _HORIZONTAL_ALIGN[horizontal]
    if vertical in _VERTICAL_ALIGN:
        css["vertical-align"] = _VERTICAL_ALIGN[vertical]
    if wrap:
        css["white-space"] = "pre-wrap"
