"""Abstract contracts for the external services the engine consults.

Concrete clients (barcode databases, price-history APIs, OCR engines,
search providers) live outside this package; the engine only sees these
interfaces.  Each client enforces its own timeout and retry discipline and
should raise ``RetryableToolError`` for transient failures.

Classes
-------
IdentifierLookup
    Barcode / identifier database.
CachingIdentifierLookup
    TTL cache in front of an ``IdentifierLookup``.
PriceHistoryService
    Marketplace price history.
OcrService
    Text recognition on product images.
VisionAnalyzer
    Structured attribute extraction from images.
WebSearchService
    Product search plus synthesis of a best-guess record.
ResearchServices
    The bundle of collaborators handed to the executor.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from catalog_enrichment.domain.enums import ServiceKind
from catalog_enrichment.domain.values import (
    IdentifierLookupResult,
    OcrResult,
    PriceHistoryProduct,
    ProductQuery,
    SearchHit,
    SynthesizedProduct,
)

logger = logging.getLogger(__name__)


# ===================================================================== #
#  Identifier lookup                                                     #
# ===================================================================== #


class IdentifierLookup(ABC):
    """Barcode / identifier database."""

    @abstractmethod
    def lookup(self, code: str) -> IdentifierLookupResult:
        """Look up *code*; ``found=False`` when the database has no record."""


class CachingIdentifierLookup(IdentifierLookup):
    """Cache identifier lookups with separate hit and miss lifetimes.

    Expired entries are dropped when they are looked up and swept whenever a
    new result is stored, so the cache only holds live records.

    Parameters
    ----------
    inner:
        The lookup to cache.
    positive_ttl:
        Seconds a found record stays cached.
    negative_ttl:
        Seconds a miss stays cached.
    clock:
        Monotonic time source.
    """

    def __init__(
        self,
        inner: IdentifierLookup,
        positive_ttl: float = 30 * 24 * 3600.0,
        negative_ttl: float = 3600.0,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._inner = inner
        self._positive_ttl = positive_ttl
        self._negative_ttl = negative_ttl
        self._clock = clock or time.monotonic
        self._entries: dict[str, tuple[float, IdentifierLookupResult]] = {}
        self._lock = threading.Lock()

    def lookup(self, code: str) -> IdentifierLookupResult:
        key = code.strip()
        now = self._clock()
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None and cached[0] <= now:
                del self._entries[key]
                cached = None
        if cached is not None:
            logger.debug("CachingIdentifierLookup: hit for %s", key)
            return cached[1]

        result = self._inner.lookup(key)
        ttl = self._positive_ttl if result.found else self._negative_ttl
        with self._lock:
            self._evict_expired(now)
            self._entries[key] = (now + ttl, result)
        return result

    def _evict_expired(self, now: float) -> None:
        # caller holds the lock
        expired = [k for k, (expires, _) in self._entries.items() if expires <= now]
        for key in expired:
            del self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ===================================================================== #
#  Price history                                                         #
# ===================================================================== #


class PriceHistoryService(ABC):
    """Marketplace price-history provider."""

    @abstractmethod
    def is_configured(self) -> bool:
        """True when credentials are present and calls can be made."""

    @abstractmethod
    def search_by_identifier(self, code: str) -> str | None:
        """Product id matching a barcode, or ``None``."""

    @abstractmethod
    def search_by_keyword(self, keyword: str, limit: int = 3) -> list[str]:
        """Product ids matching *keyword*, best first."""

    @abstractmethod
    def get_product(self, product_id: str) -> PriceHistoryProduct | None:
        """Full product record, or ``None`` if unknown."""


# ===================================================================== #
#  OCR / vision                                                          #
# ===================================================================== #


class OcrService(ABC):
    @abstractmethod
    def extract_text(self, image_urls: Sequence[str]) -> OcrResult:
        """Recognise identifiers and label text in *image_urls*."""


class VisionAnalyzer(ABC):
    """Extract a structured attribute map from product images."""

    @abstractmethod
    def analyze(self, image_urls: Sequence[str], prompt: str) -> Mapping[str, Any]:
        """Return ``attribute -> value`` for what the images show.

        Attributes the analyzer cannot identify are omitted.
        """


# ===================================================================== #
#  Web search                                                            #
# ===================================================================== #


class WebSearchService(ABC):
    @abstractmethod
    def is_configured(self) -> bool:
        """True when a search provider is available."""

    @abstractmethod
    def search(self, query: ProductQuery) -> list[SearchHit]:
        """Ranked results for *query*."""

    @abstractmethod
    def synthesize(self, hits: Sequence[SearchHit], query: ProductQuery) -> SynthesizedProduct:
        """Combine *hits* into one best-guess product record."""


# ===================================================================== #
#  Bundle                                                                #
# ===================================================================== #


@dataclass(frozen=True)
class ResearchServices:
    """Collaborators available to one engine instance.

    Any member may be ``None``; tools backed by a missing service are never
    planned, and executing one raises ``ConfigurationError``.
    """

    identifier_lookup: IdentifierLookup | None = None
    price_history: PriceHistoryService | None = None
    ocr: OcrService | None = None
    vision: VisionAnalyzer | None = None
    web_search: WebSearchService | None = None

    def configured(self) -> frozenset[ServiceKind]:
        """Service kinds that are present and report themselves usable."""
        kinds: set[ServiceKind] = set()
        if self.identifier_lookup is not None:
            kinds.add(ServiceKind.IDENTIFIER_LOOKUP)
        if self.price_history is not None and self.price_history.is_configured():
            kinds.add(ServiceKind.PRICE_HISTORY)
        if self.ocr is not None:
            kinds.add(ServiceKind.OCR)
        if self.vision is not None:
            kinds.add(ServiceKind.VISION)
        if self.web_search is not None and self.web_search.is_configured():
            kinds.add(ServiceKind.WEB_SEARCH)
        return frozenset(kinds)
