"""Build a Workbook from package bytes."""

from __future__ import annotations

from workbook_preview.services.package_reader import PackageReader
from workbook_preview.services.sheet_parser import SheetParser
from workbook_preview.services.style_resolver import StyleResolver
from workbook_preview.utils.exceptions import MalformedPackageError
from workbook_preview.utils.logging import get_logger, timed_operation
from workbook_preview.workbook import Workbook

logger = get_logger(__name__)


class WorkbookLoader:
    """Read a package, resolve its styles and parse every worksheet."""

    def __init__(
        self,
        reader: PackageReader | None = None,
        style_resolver: StyleResolver | None = None,
    ) -> None:
        self._reader = reader or PackageReader()
        self._style_resolver = style_resolver or StyleResolver()

    def load(self, data: bytes) -> Workbook:
        """Parse package bytes into a Workbook.

        Missing styles, theme or shared strings fall back to defaults; only
        structural problems fail the load.

        Raises:
            MalformedPackageError: If the package structure is invalid.
        """
        with timed_operation(logger, "load_workbook") as metrics:
            metrics.bytes_processed = len(data)
            contents = self._reader.read(data)
            styles, theme = self._style_resolver.resolve(
                contents.styles_xml, contents.theme_xml
            )
            parser = SheetParser(styles, theme)

            workbook = Workbook(styles=styles, theme=theme, has_macros=contents.has_macros)
            for part in contents.sheets:
                sheet = parser.parse(part, contents.shared_strings)
                try:
                    workbook.add_sheet(sheet)
                except ValueError as e:
                    raise MalformedPackageError(str(e), part.part_name) from e
            metrics.sheets_processed = len(workbook.sheets)

        logger.info(
            "Workbook loaded",
            sheets=len(workbook.sheets),
            names=workbook.sheet_names,
            has_macros=workbook.has_macros,
        )
        return workbook
