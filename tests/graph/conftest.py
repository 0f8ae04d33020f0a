"""Shared fixtures for graph tests."""

from __future__ import annotations

from typing import Any

import pytest

from catalog_enrichment.domain.values import IdentifierLookupResult, OcrResult
from catalog_enrichment.services.collaborators import ResearchServices
from catalog_enrichment.services.repository import InMemoryResearchRepository
from tests.helpers.fakes import (
    FakeIdentifierLookup,
    FakeOcr,
    FakeVision,
    FakeWebSearch,
    make_services,
)

UPC = "012345678905"
IMAGES = ["https://img.example.com/front.jpg", "https://img.example.com/tag.jpg"]


@pytest.fixture
def lookup() -> FakeIdentifierLookup:
    return FakeIdentifierLookup(
        {UPC: IdentifierLookupResult(found=True, brand="Nike", name="Air Max 90")}
    )


@pytest.fixture
def ocr() -> FakeOcr:
    """Reads the barcode and the brand off the tag at 0.8."""
    return FakeOcr(OcrResult(identifiers={"upc": UPC, "brand": "Nike"}, confidence=0.8))


@pytest.fixture
def vision() -> FakeVision:
    return FakeVision({"color": "Black", "material": "Mesh", "condition": "new"})


@pytest.fixture
def services(lookup: FakeIdentifierLookup, ocr: FakeOcr, vision: FakeVision) -> ResearchServices:
    return make_services(
        identifier_lookup=lookup, ocr=ocr, vision=vision, web_search=FakeWebSearch()
    )


@pytest.fixture
def repository() -> InMemoryResearchRepository:
    return InMemoryResearchRepository()


@pytest.fixture
def sneaker_fields() -> dict[str, Any]:
    """Builder field lists for a used sneaker photographed front and tag."""
    return {
        "required": ("title", "brand", "condition"),
        "recommended": ("upc", "color", "material"),
        "images": tuple(IMAGES),
    }
