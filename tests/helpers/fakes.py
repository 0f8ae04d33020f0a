"""In-memory stand-ins for the external research services."""

from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from typing import Any

from catalog_enrichment.domain.exceptions import RetryableToolError
from catalog_enrichment.domain.values import (
    IdentifierLookupResult,
    OcrResult,
    PriceHistoryProduct,
    ProductQuery,
    SearchHit,
    SynthesizedProduct,
)
from catalog_enrichment.services.collaborators import (
    IdentifierLookup,
    OcrService,
    PriceHistoryService,
    ResearchServices,
    VisionAnalyzer,
    WebSearchService,
)


class FakeIdentifierLookup(IdentifierLookup):
    def __init__(
        self,
        records: Mapping[str, IdentifierLookupResult] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.records = dict(records or {})
        self.error = error
        self.calls: list[str] = []

    def lookup(self, code: str) -> IdentifierLookupResult:
        self.calls.append(code)
        if self.error is not None:
            raise self.error
        return self.records.get(code, IdentifierLookupResult(found=False))


class BlockingIdentifierLookup(IdentifierLookup):
    """Holds every lookup until ``release`` is set."""

    def __init__(self, result: IdentifierLookupResult | None = None) -> None:
        self.result = result or IdentifierLookupResult(found=True, brand="Late")
        self.release = threading.Event()

    def lookup(self, code: str) -> IdentifierLookupResult:
        self.release.wait(timeout=5.0)
        return self.result


class FlakyIdentifierLookup(IdentifierLookup):
    """Raises ``RetryableToolError`` for the first *failures* calls."""

    def __init__(self, failures: int, result: IdentifierLookupResult) -> None:
        self.failures = failures
        self.result = result
        self.calls = 0

    def lookup(self, code: str) -> IdentifierLookupResult:
        self.calls += 1
        if self.calls <= self.failures:
            raise RetryableToolError("rate limited", tool="barcode_lookup")
        return self.result


class FakePriceHistory(PriceHistoryService):
    def __init__(
        self,
        products: Mapping[str, PriceHistoryProduct] | None = None,
        by_identifier: Mapping[str, str] | None = None,
        by_keyword: Mapping[str, list[str]] | None = None,
        configured: bool = True,
    ) -> None:
        self.products = dict(products or {})
        self.by_identifier = dict(by_identifier or {})
        self.by_keyword = dict(by_keyword or {})
        self.configured = configured
        self.keyword_calls: list[tuple[str, int]] = []

    def is_configured(self) -> bool:
        return self.configured

    def search_by_identifier(self, code: str) -> str | None:
        return self.by_identifier.get(code)

    def search_by_keyword(self, keyword: str, limit: int = 3) -> list[str]:
        self.keyword_calls.append((keyword, limit))
        return self.by_keyword.get(keyword, [])[:limit]

    def get_product(self, product_id: str) -> PriceHistoryProduct | None:
        return self.products.get(product_id)


class FakeOcr(OcrService):
    def __init__(self, result: OcrResult | None = None, error: Exception | None = None) -> None:
        self.result = result or OcrResult()
        self.error = error
        self.calls: list[list[str]] = []

    def extract_text(self, image_urls: Sequence[str]) -> OcrResult:
        self.calls.append(list(image_urls))
        if self.error is not None:
            raise self.error
        return self.result


class FakeVision(VisionAnalyzer):
    def __init__(
        self, attributes: Mapping[str, Any] | None = None, error: Exception | None = None
    ) -> None:
        self.attributes = dict(attributes or {})
        self.error = error
        self.prompts: list[str] = []
        self.images: list[list[str]] = []

    def analyze(self, image_urls: Sequence[str], prompt: str) -> Mapping[str, Any]:
        self.images.append(list(image_urls))
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.attributes


class FakeWebSearch(WebSearchService):
    def __init__(
        self,
        synthesized: SynthesizedProduct | None = None,
        hits: list[SearchHit] | None = None,
        configured: bool = True,
    ) -> None:
        self.synthesized = synthesized or SynthesizedProduct(confidence=0.0)
        self.hits = hits if hits is not None else [
            SearchHit(title="Result", url="https://example.com/p/1", rank=1)
        ]
        self.configured = configured
        self.queries: list[ProductQuery] = []

    def is_configured(self) -> bool:
        return self.configured

    def search(self, query: ProductQuery) -> list[SearchHit]:
        self.queries.append(query)
        return list(self.hits)

    def synthesize(self, hits: Sequence[SearchHit], query: ProductQuery) -> SynthesizedProduct:
        return self.synthesized


def make_services(**overrides: Any) -> ResearchServices:
    """A ``ResearchServices`` bundle; unspecified collaborators are ``None``."""
    return ResearchServices(**overrides)
