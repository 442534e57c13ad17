"""Open a spreadsheet zip package and extract its XML parts.

The reader only locates and decodes parts; turning them into cells and styles
is the job of the sheet parser and style resolver. Worksheets are listed in
workbook order with their part paths resolved through the workbook
relationships.
"""

from __future__ import annotations

import io
import posixpath
import xml.etree.ElementTree as ET
import zipfile
from dataclasses import dataclass, field

from workbook_preview.utils.exceptions import MalformedPackageError
from workbook_preview.utils.exceptions import PartNotFoundError
from workbook_preview.utils.logging import get_logger
from workbook_preview.workbook import RichText

logger = get_logger(__name__)

MAIN_NS = "http://schemas.openxmlformats.org/spreadsheetml/2006/main"
REL_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
PKG_REL_NS = "http://schemas.openxmlformats.org/package/2006/relationships"
WORKSHEET_REL_TYPE = f"{REL_NS}/worksheet"

WORKBOOK_PART = "xl/workbook.xml"
WORKBOOK_RELS_PART = "xl/_rels/workbook.xml.rels"
STYLES_PART = "xl/styles.xml"
SHARED_STRINGS_PART = "xl/sharedStrings.xml"
DEFAULT_THEME_PART = "xl/theme/theme1.xml"
VBA_PART = "xl/vbaProject.bin"


@dataclass
class SheetPart:
    """A worksheet entry from the workbook part."""

    name: str
    sheet_id: int
    part_name: str
    xml: bytes


@dataclass
class PackageContents:
    """Decoded parts of one package."""

    sheets: list[SheetPart] = field(default_factory=list)
    shared_strings: list[str | RichText] = field(default_factory=list)
    styles_xml: bytes | None = None
    theme_xml: bytes | None = None
    has_macros: bool = False


class PackageReader:
    """Read worksheet, style, theme and shared string parts from a package."""

    def read(self, data: bytes) -> PackageContents:
        """Decode a package.

        Args:
            data: Raw bytes of an ``.xlsx`` / ``.xlsm`` file.

        Returns:
            PackageContents with every worksheet part in workbook order.

        Raises:
            MalformedPackageError: If the bytes are not a zip, the workbook
                part is missing or invalid, or a listed worksheet part is
                missing or invalid.
        """
        try:
            archive = zipfile.ZipFile(io.BytesIO(data))
        except zipfile.BadZipFile as e:
            raise MalformedPackageError(f"Not a valid zip package: {e}") from e

        with archive:
            names = set(archive.namelist())
            workbook_root = self._parse_required(archive, names, WORKBOOK_PART)
            targets = self._relationship_targets(archive, names)

            contents = PackageContents(has_macros=VBA_PART in names)
            contents.sheets = self._read_sheets(archive, names, workbook_root, targets)
            contents.styles_xml = self._read_optional(archive, names, STYLES_PART)
            contents.theme_xml = self._read_optional(
                archive, names, self._theme_part(targets)
            )
            shared_strings_xml = self._read_optional(
                archive, names, self._shared_strings_part(targets)
            )

        if shared_strings_xml is not None:
            contents.shared_strings = parse_shared_strings(shared_strings_xml)

        logger.debug(
            "Package read",
            sheets=len(contents.sheets),
            shared_strings=len(contents.shared_strings),
            has_styles=contents.styles_xml is not None,
            has_theme=contents.theme_xml is not None,
        )
        return contents

    def read_part(self, archive: zipfile.ZipFile, names: set[str], part: str) -> bytes:
        """Read one part.

        Raises:
            PartNotFoundError: If the part is not in the package.
        """
        if part not in names:
            raise PartNotFoundError(part)
        return archive.read(part)

    # ---- workbook structure ---- #

    def _parse_required(
        self, archive: zipfile.ZipFile, names: set[str], part: str
    ) -> ET.Element:
        try:
            return ET.fromstring(self.read_part(archive, names, part))
        except PartNotFoundError as e:
            raise MalformedPackageError(f"Missing required part: {part}", part) from e
        except ET.ParseError as e:
            raise MalformedPackageError(f"Invalid XML in {part}: {e}", part) from e

    def _read_optional(
        self, archive: zipfile.ZipFile, names: set[str], part: str
    ) -> bytes | None:
        try:
            return self.read_part(archive, names, part)
        except PartNotFoundError:
            logger.debug("Optional part absent", part=part)
            return None

    def _relationship_targets(
        self, archive: zipfile.ZipFile, names: set[str]
    ) -> dict[str, tuple[str, str]]:
        """Map relationship id to ``(type, part path)`` for the workbook."""
        if WORKBOOK_RELS_PART not in names:
            return {}
        try:
            root = ET.fromstring(archive.read(WORKBOOK_RELS_PART))
        except ET.ParseError as e:
            raise MalformedPackageError(
                f"Invalid XML in {WORKBOOK_RELS_PART}: {e}", WORKBOOK_RELS_PART
            ) from e

        targets = {}
        for rel in root.iterfind(f"{{{PKG_REL_NS}}}Relationship"):
            rel_id = rel.get("Id")
            target = rel.get("Target")
            if not rel_id or not target:
                continue
            targets[rel_id] = (rel.get("Type", ""), _resolve_target(target))
        return targets

    def _read_sheets(
        self,
        archive: zipfile.ZipFile,
        names: set[str],
        workbook_root: ET.Element,
        targets: dict[str, tuple[str, str]],
    ) -> list[SheetPart]:
        sheets = []
        entries = workbook_root.iterfind(f"{{{MAIN_NS}}}sheets/{{{MAIN_NS}}}sheet")
        for position, entry in enumerate(entries, start=1):
            name = entry.get("name")
            if not name:
                raise MalformedPackageError("Sheet entry without a name", WORKBOOK_PART)

            rel_type, part_name = targets.get(
                entry.get(f"{{{REL_NS}}}id", ""),
                (WORKSHEET_REL_TYPE, f"xl/worksheets/sheet{position}.xml"),
            )
            if rel_type and rel_type != WORKSHEET_REL_TYPE:
                logger.debug("Skipping non-worksheet sheet", name=name, type=rel_type)
                continue

            try:
                xml = self.read_part(archive, names, part_name)
            except PartNotFoundError as e:
                raise MalformedPackageError(
                    f'Worksheet "{name}" references missing part {part_name}',
                    part_name,
                ) from e

            try:
                sheet_id = int(entry.get("sheetId", position))
            except ValueError:
                sheet_id = position
            sheets.append(SheetPart(name, sheet_id, part_name, xml))
        return sheets

    def _theme_part(self, targets: dict[str, tuple[str, str]]) -> str:
        for rel_type, part in targets.values():
            if rel_type.endswith("/theme"):
                return part
        return DEFAULT_THEME_PART

    def _shared_strings_part(self, targets: dict[str, tuple[str, str]]) -> str:
        for rel_type, part in targets.values():
            if rel_type.endswith("/sharedStrings"):
                return part
        return SHARED_STRINGS_PART


def _resolve_target(target: str) -> str:
    """Resolve a relationship target relative to ``xl/``."""
    if target.startswith("/"):
        return target.lstrip("/")
    return posixpath.normpath(posixpath.join("xl", target))


def string_item_value(item: ET.Element) -> str | RichText:
    """Read an ``<si>`` / ``<is>`` element: plain text or rich text runs."""
    runs = item.findall(f"{{{MAIN_NS}}}r")
    if runs:
        return RichText(
            tuple("".join(t.text or "" for t in run.iter(f"{{{MAIN_NS}}}t")) for run in runs)
        )
    text = item.find(f"{{{MAIN_NS}}}t")
    return text.text or "" if text is not None else ""


def parse_shared_strings(xml: bytes) -> list[str | RichText]:
    """Parse the shared strings part; an unreadable part yields no strings."""
    try:
        root = ET.fromstring(xml)
    except ET.ParseError as e:
        logger.warning("Shared strings part unreadable", error=str(e))
        return []
    return [string_item_value(si) for si in root.iterfind(f"{{{MAIN_NS}}}si")]
