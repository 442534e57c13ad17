"""In-memory stand-ins for object storage and the submissions table."""

from collections.abc import Mapping, Sequence
from typing import Any

from workbook_preview.services.model_storage import StorageObject


class FakeObjectStorage:
    """Serves objects from a dict and records every download attempt."""

    def __init__(
        self,
        objects: Mapping[str, bytes] | None = None,
        listings: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        self.objects = dict(objects or {})
        self.listings = {prefix: list(names) for prefix, names in (listings or {}).items()}
        self.downloads: list[str] = []

    async def list(self, prefix: str, limit: int = 5) -> list[StorageObject]:
        names = self.listings.get(prefix, [])[:limit]
        return [StorageObject(name=name) for name in names]

    async def download(self, path: str) -> bytes | None:
        self.downloads.append(path)
        return self.objects.get(path)


class FakeSubmissionRepository:
    """Returns rows by id, or raises ``error`` for every lookup."""

    def __init__(
        self,
        rows: Mapping[str, dict[str, Any]] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.rows = dict(rows or {})
        self.error = error
        self.queries: list[tuple[str, tuple[str, ...]]] = []

    async def get_submission(
        self, submission_id: str, columns: Sequence[str]
    ) -> dict[str, Any] | None:
        self.queries.append((submission_id, tuple(columns)))
        if self.error is not None:
            raise self.error
        row = self.rows.get(submission_id)
        if row is None:
            return None
        return {column: row[column] for column in columns if column in row}
