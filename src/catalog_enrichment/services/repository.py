"""Persistence contract for research results and evidence.

The engine touches persistence only when a run finishes (``persist_results``)
and when an aborted run is salvaged.  ``InMemoryResearchRepository`` is a
thread-safe reference implementation used by tests and local runs.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod

from catalog_enrichment.domain.values import EvidenceBundle, ResearchRecord


class ResearchRepository(ABC):
    @abstractmethod
    def save_research(self, record: ResearchRecord) -> None: ...

    @abstractmethod
    def save_evidence_bundle(self, bundle: EvidenceBundle) -> None: ...

    @abstractmethod
    def find_latest_research(self, item_id: str) -> ResearchRecord | None:
        """Most recently saved research record for *item_id*."""

    @abstractmethod
    def get_evidence_bundle(self, run_id: str) -> EvidenceBundle | None: ...


class InMemoryResearchRepository(ResearchRepository):
    """Dictionary-backed repository.

    Research records are kept per item in save order; evidence bundles are
    keyed by run id, a later save for the same run replacing the earlier one.
    """

    def __init__(self) -> None:
        self._research: dict[str, list[ResearchRecord]] = {}
        self._evidence: dict[str, EvidenceBundle] = {}
        self._lock = threading.Lock()

    def save_research(self, record: ResearchRecord) -> None:
        with self._lock:
            self._research.setdefault(record.item_id, []).append(record)

    def save_evidence_bundle(self, bundle: EvidenceBundle) -> None:
        with self._lock:
            self._evidence[bundle.run_id] = bundle

    def find_latest_research(self, item_id: str) -> ResearchRecord | None:
        with self._lock:
            records = self._research.get(item_id)
            if not records:
                return None
            return max(records, key=lambda r: r.created_at)

    def get_evidence_bundle(self, run_id: str) -> EvidenceBundle | None:
        with self._lock:
            return self._evidence.get(run_id)

    def research_for(self, item_id: str) -> list[ResearchRecord]:
        with self._lock:
            return list(self._research.get(item_id, []))
