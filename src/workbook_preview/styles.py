"""Dataclasses describing workbook styling.

Colors parsed from ``styles.xml`` are resolved to ``#RRGGBB`` strings while
the package is read, so the style table is immutable afterwards. Direct cell
styles keep unresolved ``ColorSpec`` values and are resolved against the
theme when a cell is rendered.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from openpyxl.styles.numbers import BUILTIN_FORMATS

DEFAULT_COLOR = "#000000"

# Order of the theme color table: lt1, dk1, lt2, dk2, accent1-6, hlink, folHlink.
THEME_SLOTS: tuple[str, ...] = (
    "lt1",
    "dk1",
    "lt2",
    "dk2",
    "accent1",
    "accent2",
    "accent3",
    "accent4",
    "accent5",
    "accent6",
    "hlink",
    "folHlink",
)

DEFAULT_THEME_COLORS: tuple[str, ...] = (
    "#FFFFFF",
    "#000000",
    "#E7E6E6",
    "#44546A",
    "#5B9BD5",
    "#ED7D31",
    "#A5A5A5",
    "#FFC000",
    "#4472C4",
    "#70AD47",
    "#0563C1",
    "#954F72",
)


@dataclass(frozen=True)
class ThemeColorTable:
    """Twelve theme colors indexed by ``THEME_SLOTS`` position."""

    colors: tuple[str, ...] = DEFAULT_THEME_COLORS

    def __post_init__(self) -> None:
        if len(self.colors) != len(THEME_SLOTS):
            raise ValueError(
                f"Theme color table needs {len(THEME_SLOTS)} entries, "
                f"got {len(self.colors)}"
            )

    def get(self, index: int) -> str | None:
        if 0 <= index < len(self.colors):
            return self.colors[index]
        return None


@dataclass(frozen=True)
class ColorSpec:
    """An unresolved color reference as written in the package."""

    rgb: str | None = None
    theme: int | None = None
    tint: float = 0.0
    indexed: int | None = None
    auto: bool = False


@dataclass(frozen=True)
class Font:
    name: str | None = None
    size: float | None = None
    bold: bool = False
    italic: bool = False
    underline: bool = False
    color: str | None = None


@dataclass(frozen=True)
class Fill:
    pattern_type: str | None = None
    fg_color: str | None = None
    bg_color: str | None = None

    @property
    def is_solid(self) -> bool:
        return self.pattern_type == "solid"


@dataclass(frozen=True)
class BorderSide:
    style: str
    color: str | None = None


@dataclass(frozen=True)
class Border:
    left: BorderSide | None = None
    right: BorderSide | None = None
    top: BorderSide | None = None
    bottom: BorderSide | None = None

    def sides(self) -> list[tuple[str, BorderSide]]:
        """Return the present sides as ``(name, side)`` pairs."""
        result = []
        for name in ("top", "right", "bottom", "left"):
            side = getattr(self, name)
            if side is not None:
                result.append((name, side))
        return result


@dataclass(frozen=True)
class Alignment:
    horizontal: str | None = None
    vertical: str | None = None
    wrap_text: bool = False


@dataclass(frozen=True)
class CellFormat:
    """One ``cellXfs`` entry referencing fonts, fills, borders and formats."""

    font_id: int = 0
    fill_id: int = 0
    border_id: int = 0
    num_fmt_id: int = 0
    alignment: Alignment | None = None


@dataclass(frozen=True)
class DifferentialFormat:
    """Partial style applied by a conditional formatting rule."""

    background_color: str | None = None
    color: str | None = None
    bold: bool | None = None
    italic: bool | None = None

    def to_css(self) -> dict[str, str]:
        css: dict[str, str] = {}
        if self.background_color:
            css["background-color"] = self.background_color
        if self.color:
            css["color"] = self.color
        if self.bold is not None:
            css["font-weight"] = "bold" if self.bold else "normal"
        if self.italic is not None:
            css["font-style"] = "italic" if self.italic else "normal"
        return css


@dataclass(frozen=True)
class StyleTable:
    """Resolved style tables of one workbook."""

    fonts: tuple[Font, ...] = ()
    fills: tuple[Fill, ...] = ()
    borders: tuple[Border, ...] = ()
    cell_formats: tuple[CellFormat, ...] = ()
    differential_formats: tuple[DifferentialFormat, ...] = ()
    number_formats: dict[int, str] = field(default_factory=dict)

    def cell_format(self, style_index: int) -> CellFormat | None:
        if 0 <= style_index < len(self.cell_formats):
            return self.cell_formats[style_index]
        return None

    def font(self, font_id: int) -> Font | None:
        return self.fonts[font_id] if 0 <= font_id < len(self.fonts) else None

    def fill(self, fill_id: int) -> Fill | None:
        return self.fills[fill_id] if 0 <= fill_id < len(self.fills) else None

    def border(self, border_id: int) -> Border | None:
        return self.borders[border_id] if 0 <= border_id < len(self.borders) else None

    def differential_format(self, dxf_id: int | None) -> DifferentialFormat | None:
        if dxf_id is None or not 0 <= dxf_id < len(self.differential_formats):
            return None
        return self.differential_formats[dxf_id]

    def number_format_code(self, num_fmt_id: int) -> str | None:
        """Custom format code for an id, falling back to the built-in table."""
        return self.number_formats.get(num_fmt_id) or BUILTIN_FORMATS.get(num_fmt_id)


@dataclass(frozen=True)
class DirectStyle:
    """Style attached to a single cell instead of a ``cellXfs`` index."""

    fill_color: ColorSpec | None = None
    font_color: ColorSpec | None = None
    bold: bool = False
    italic: bool = False
    underline: bool = False
    font_size: float | None = None
    font_name: str | None = None
    horizontal: str | None = None
    vertical: str | None = None
    wrap_text: bool = False
    borders: dict[str, tuple[str, ColorSpec | None]] = field(default_factory=dict)
    num_fmt: int | str | None = None
