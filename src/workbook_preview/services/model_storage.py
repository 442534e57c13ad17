"""Locate and download submission models, and read submission metadata."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from supabase import Client, PostgrestAPIError, StorageException, create_client

from workbook_preview.config import Settings
from workbook_preview.utils.exceptions import (
    ErrorCode,
    FileTooLargeError,
    ModelNotFoundError,
    StorageUnavailableError,
)
from workbook_preview.utils.logging import get_logger, timed_operation

logger = get_logger(__name__)

STORAGE_SERVICE = "supabase-storage"
DATABASE_SERVICE = "supabase-db"


@dataclass(frozen=True)
class StorageObject:
    """An entry returned by a folder listing."""

    name: str
    size: int | None = None


@dataclass(frozen=True)
class LocatedModel:
    """A model file found in object storage."""

    path: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_macro_enabled(self) -> bool:
        return self.path.lower().endswith(".xlsm")


class ObjectStorage(Protocol):
    """Read access to the bucket holding completed models."""

    async def list(self, prefix: str, limit: int = 5) -> list[StorageObject]:
        """List objects under a folder; an unreadable folder lists as empty."""
        ...

    async def download(self, path: str) -> bytes | None:
        """Download an object, or return None when it cannot be fetched."""
        ...


class SubmissionRepository(Protocol):
    """Read access to questionnaire submissions."""

    async def get_submission(
        self, submission_id: str, columns: Sequence[str]
    ) -> dict[str, Any] | None:
        """Return the selected columns of a submission row, or None."""
        ...


def build_supabase_client(s: Settings) -> Client:
    """Create a Supabase client from settings.

    Raises:
        StorageUnavailableError: If the URL or service key is missing.
    """
    if not s.storage_configured:
        raise StorageUnavailableError(
            "Supabase URL and service key must be configured",
            service=STORAGE_SERVICE,
        )
    return create_client(s.supabase_url or "", s.get_supabase_service_key())


class SupabaseObjectStorage:
    """ObjectStorage backed by a Supabase storage bucket.

    supabase-py is synchronous, so each call runs in a worker thread.
    """

    def __init__(self, client: Client, bucket: str) -> None:
        self._client = client
        self._bucket = bucket

    async def list(self, prefix: str, limit: int = 5) -> list[StorageObject]:
        start = time.perf_counter()
        try:
            entries = await asyncio.to_thread(
                self._client.storage.from_(self._bucket).list,
                prefix,
                {"limit": limit},
            )
        except (StorageException, httpx.HTTPError) as e:
            logger.log_storage_call(
                STORAGE_SERVICE,
                "list",
                time.perf_counter() - start,
                target=prefix,
                success=False,
                error_message=str(e),
            )
            return []
        logger.log_storage_call(
            STORAGE_SERVICE, "list", time.perf_counter() - start, target=prefix
        )

        objects = []
        for entry in entries or []:
            name = entry.get("name")
            if not name:
                continue
            size = (entry.get("metadata") or {}).get("size")
            objects.append(StorageObject(name=name, size=size))
        return objects

    async def download(self, path: str) -> bytes | None:
        start = time.perf_counter()
        try:
            data = await asyncio.to_thread(
                self._client.storage.from_(self._bucket).download, path
            )
        except (StorageException, httpx.HTTPError) as e:
            logger.log_storage_call(
                STORAGE_SERVICE,
                "download",
                time.perf_counter() - start,
                target=path,
                success=False,
                error_message=str(e),
            )
            return None
        logger.log_storage_call(
            STORAGE_SERVICE, "download", time.perf_counter() - start, target=path
        )
        return data


class SupabaseSubmissionRepository:
    """SubmissionRepository backed by a Supabase table."""

    def __init__(self, client: Client, table: str) -> None:
        self._client = client
        self._table = table

    async def get_submission(
        self, submission_id: str, columns: Sequence[str]
    ) -> dict[str, Any] | None:
        """Fetch one submission row.

        Raises:
            StorageUnavailableError: If the query fails.
        """

        def _query() -> Any:
            return (
                self._client.table(self._table)
                .select(",".join(columns) or "*")
                .eq("id", submission_id)
                .limit(1)
                .execute()
            )

        start = time.perf_counter()
        try:
            response = await asyncio.to_thread(_query)
        except (PostgrestAPIError, httpx.HTTPError) as e:
            logger.log_storage_call(
                DATABASE_SERVICE,
                "select",
                time.perf_counter() - start,
                target=submission_id,
                success=False,
                error_message=str(e),
            )
            raise StorageUnavailableError(
                f"Submission lookup failed: {e}",
                error_code=ErrorCode.DATABASE_UNAVAILABLE,
                service=DATABASE_SERVICE,
            ) from e
        logger.log_storage_call(
            DATABASE_SERVICE, "select", time.perf_counter() - start, target=submission_id
        )

        rows = response.data or []
        return rows[0] if rows else None


class ModelLocator:
    """Find a submission's model among the known storage layouts.

    Candidates are tried in order: the first entry of the submission's
    folder listing, each configured fallback pattern, then caller-supplied
    paths. Downloads no larger than ``min_model_bytes`` are treated as
    missing.
    """

    def __init__(self, storage: ObjectStorage, s: Settings) -> None:
        self._storage = storage
        self._settings = s

    async def candidate_paths(
        self, submission_id: str, extra_paths: Sequence[str] = ()
    ) -> list[str]:
        candidates: list[str] = []
        listing = await self._storage.list(
            submission_id, limit=self._settings.storage_list_limit
        )
        listed = [entry for entry in listing if not entry.name.startswith(".")]
        if listed:
            candidates.append(f"{submission_id}/{listed[0].name}")
        candidates.extend(
            pattern.format(id=submission_id)
            for pattern in self._settings.fallback_path_patterns_list
        )
        candidates.extend(path for path in extra_paths if path)
        return list(dict.fromkeys(candidates))

    async def locate(
        self, submission_id: str, extra_paths: Sequence[str] = ()
    ) -> LocatedModel:
        """Download the first usable model file for a submission.

        Raises:
            ModelNotFoundError: If no candidate yields a usable file.
            FileTooLargeError: If the file found exceeds the size limit.
        """
        attempted: list[str] = []
        with timed_operation(logger, "locate_model") as metrics:
            candidates = await self.candidate_paths(submission_id, extra_paths)
            metrics.storage_calls += 1
            for path in candidates:
                attempted.append(path)
                data = await self._storage.download(path)
                metrics.storage_calls += 1
                if data is None:
                    continue
                if len(data) <= self._settings.min_model_bytes:
                    logger.debug("Skipping undersized object", path=path, size=len(data))
                    continue
                if len(data) > self._settings.max_file_size_bytes:
                    raise FileTooLargeError(
                        len(data), self._settings.max_file_size_bytes, file_path=path
                    )
                metrics.bytes_processed = len(data)
                logger.info("Model located", path=path, size=len(data))
                return LocatedModel(path=path, data=data)

        raise ModelNotFoundError(submission_id, paths_attempted=attempted)
