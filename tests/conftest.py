from __future__ import annotations

import os
from collections.abc import Iterator
from unittest.mock import patch

import pytest

from tests.fixtures import build_openpyxl_package, build_package, cell_xml, row_xml
from tests.fixtures.fakes import FakeObjectStorage, FakeSubmissionRepository
from workbook_preview.config import Settings


@pytest.fixture
def test_settings() -> Iterator[Settings]:
    """Settings isolated from the environment and any .env file."""
    with patch.dict(os.environ, {}, clear=True):
        yield Settings(_env_file=None)


@pytest.fixture
def model_package() -> bytes:
    """Two-sheet model whose formula carries a stale cached value."""
    return build_package(
        {
            "Summary": row_xml(
                1,
                cell_xml("A1", 21),
                cell_xml("B1", 0, formula="A1*2"),
            ),
            "Inputs": row_xml(1, cell_xml("A1", "Growth", cell_type="inlineStr")),
        }
    )


@pytest.fixture
def exportable_package() -> bytes:
    """Model written by openpyxl, so it can be re-opened for export."""

    def populate(book) -> None:
        sheet = book.active
        sheet.title = "Summary"
        sheet["A1"] = 21
        sheet["B1"] = "=A1*2"

    return build_openpyxl_package(populate)


@pytest.fixture
def storage(model_package: bytes) -> FakeObjectStorage:
    return FakeObjectStorage(
        objects={"sub-1/model.xlsx": model_package},
        listings={"sub-1": ["model.xlsx"]},
    )


@pytest.fixture
def submissions() -> FakeSubmissionRepository:
    return FakeSubmissionRepository(
        rows={
            "sub-1": {
                "id": "sub-1",
                "company_name": "Acme Corp",
                "modeling_approach": "bottom-up",
                "revenue_generation_selected": "subscription",
                "processed_file_path": None,
            }
        }
    )
