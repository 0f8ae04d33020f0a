#!/usr/bin/env python3
"""Example 01: Research one item end to end.

Demonstrates:
- Implementing the barcode and OCR service contracts in memory
- Plugging a (mock) multimodal chat model in as the vision analyzer
- Building the graph with ResearchGraphBuilder and running it
- Inspecting the ledger, readiness and the persisted research record

Run:
    PYTHONPATH=src python examples/01_basic_research.py
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from catalog_enrichment.domain.values import IdentifierLookupResult, OcrResult
from catalog_enrichment.graph.builder import ResearchGraphBuilder, run_research
from catalog_enrichment.services.activity import LoggingActivityLogger
from catalog_enrichment.services.collaborators import (
    CachingIdentifierLookup,
    IdentifierLookup,
    OcrService,
    ResearchServices,
)
from catalog_enrichment.services.repository import InMemoryResearchRepository
from catalog_enrichment.services.vision import LLMVisionAnalyzer, VisionAttributes
from catalog_enrichment.testing import MockVisionModel

UPC = "194956623584"


class DictIdentifierLookup(IdentifierLookup):
    def __init__(self, records: dict[str, IdentifierLookupResult]) -> None:
        self._records = records

    def lookup(self, code: str) -> IdentifierLookupResult:
        return self._records.get(code, IdentifierLookupResult(found=False))


class TagReader(OcrService):
    """Pretends every photo shows the same care tag."""

    def extract_text(self, image_urls: Sequence[str]) -> OcrResult:
        return OcrResult(
            identifiers={"upc": UPC},
            labels={"Made in": "Vietnam", "Material": "Leather"},
            confidence=0.85,
        )


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    # -- Services -------------------------------------------------------------
    lookup = CachingIdentifierLookup(
        DictIdentifierLookup({
            UPC: IdentifierLookupResult(
                found=True,
                brand="Nike",
                name="Air Force 1 '07",
                category="Clothing, Shoes & Accessories > Men's Shoes",
            )
        })
    )
    vision = LLMVisionAnalyzer(
        MockVisionModel(
            structured_responses=[
                VisionAttributes(color="White", condition="very good", style="Low Top")
            ]
        )
    )
    services = ResearchServices(identifier_lookup=lookup, ocr=TagReader(), vision=vision)
    repository = InMemoryResearchRepository()

    # -- Graph ----------------------------------------------------------------
    app, initial = (
        ResearchGraphBuilder("sku-af1-white")
        .with_services(services)
        .with_repository(repository)
        .with_activity_logger(LoggingActivityLogger(logging.DEBUG))
        .with_required_fields("title", "brand", "condition")
        .with_recommended_fields("upc", "color", "material", "style", "country_of_manufacture")
        .with_images(
            "https://img.example.com/af1/side.jpg",
            "https://img.example.com/af1/tag.jpg",
        )
        .with_mode("fast")
        .build()
    )

    print("=== Catalog Item Research ===")
    print(f"Item: {initial['item_id']}  mode: {initial['constraints'].mode.value}")
    print()

    result = run_research(app, initial, repository)

    states = result["field_states"]
    for name, state in states.fields.items():
        sources = ", ".join(s.type.value for s in state.confidence.sources) or "-"
        print(
            f"  {name:<24} {str(state.value):<46} "
            f"{state.confidence.value:5.2f}  [{sources}]"
        )
    print()
    print(f"Decision: {result['decision'].value}")
    print(f"Ready to publish: {result['readiness'].ready}")
    print(f"Completion score: {states.completion_score:.2f}")
    print(f"Total cost: ${result['total_cost']:.4f}")
    for warning in result["warnings"]:
        print(f"Warning: {warning}")
    record = repository.find_latest_research(initial["item_id"])
    print(f"Saved research record for run {record.run_id if record else 'N/A'}")
    print()
    print("Done.")


if __name__ == "__main__":
    main()
