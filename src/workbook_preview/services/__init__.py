"""Services for workbook preview rendering."""

from workbook_preview.services.preview_service import WorkbookPreviewService
from workbook_preview.services.renderer import WorksheetRenderer
from workbook_preview.services.workbook_loader import WorkbookLoader

__all__ = ["WorkbookLoader", "WorkbookPreviewService", "WorksheetRenderer"]
