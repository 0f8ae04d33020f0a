"""Value objects for the catalog enrichment engine.

All types here are frozen dataclasses -- immutable, compared by value.
"Mutating" a value object means building a new one with
``dataclasses.replace``; no caller ever edits a returned instance in place,
which keeps every ledger snapshot safe to hash and diff.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from .enums import (
    Decision,
    FieldDataType,
    FieldStatus,
    ResearchMode,
    ServiceKind,
    SourceType,
    ToolType,
)

# ---------------------------------------------------------------------------
# Collaborator results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IdentifierLookupResult:
    """Answer of a barcode / identifier database lookup."""

    found: bool
    brand: str | None = None
    name: str | None = None
    description: str | None = None
    category: str | None = None


@dataclass(frozen=True)
class PriceStats:
    """Price statistics reported by a price-history service."""

    current: float | None = None
    average_30d: float | None = None
    average_90d: float | None = None
    lowest: float | None = None
    highest: float | None = None
    currency: str = "USD"


@dataclass(frozen=True)
class PriceHistoryProduct:
    """Product record returned by a price-history service."""

    product_id: str
    title: str | None = None
    brand: str | None = None
    category: str | None = None
    price_stats: PriceStats | None = None
    sales_rank: int | None = None
    sales_rank_trend: str | None = None
    review_count: int | None = None
    rating: float | None = None


@dataclass(frozen=True)
class OcrResult:
    """Text recognised in product images.

    ``identifiers`` holds structured codes (``upc``, ``model``, ``mpn``,
    ``brand``); ``labels`` holds free-form ``key -> value`` pairs read off
    tags and packaging.
    """

    identifiers: Mapping[str, str] = field(default_factory=dict)
    labels: Mapping[str, str] = field(default_factory=dict)
    confidence: float = 0.0
    text: str = ""


@dataclass(frozen=True)
class ProductQuery:
    """Partial identifiers handed to a web search."""

    brand: str | None = None
    model: str | None = None
    upc: str | None = None
    mpn: str | None = None
    category: str | None = None
    title: str | None = None

    def is_targeted(self) -> bool:
        """True when the query carries at least one identifying attribute."""
        return any((self.brand, self.model, self.upc, self.mpn))


@dataclass(frozen=True)
class SearchHit:
    """One ranked web search result."""

    title: str
    url: str
    snippet: str = ""
    rank: int = 0


@dataclass(frozen=True)
class SynthesizedProduct:
    """Best-guess product record synthesised from search hits."""

    confidence: float
    brand: str | None = None
    model: str | None = None
    mpn: str | None = None
    title: str | None = None
    description: str | None = None
    category: str | None = None
    specifications: Mapping[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Raw payloads (tagged by the source type that produced them)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BarcodePayload:
    kind: ClassVar[SourceType] = SourceType.BARCODE_LOOKUP

    code: str
    result: IdentifierLookupResult


@dataclass(frozen=True)
class PriceHistoryPayload:
    kind: ClassVar[SourceType] = SourceType.PRICE_HISTORY

    product: PriceHistoryProduct


@dataclass(frozen=True)
class OcrPayload:
    kind: ClassVar[SourceType] = SourceType.OCR

    result: OcrResult


@dataclass(frozen=True)
class VisionPayload:
    kind: ClassVar[SourceType] = SourceType.VISION

    attributes: Mapping[str, Any]


@dataclass(frozen=True)
class WebSearchPayload:
    kind: ClassVar[SourceType] = SourceType.WEB_SEARCH

    query: ProductQuery
    synthesized: SynthesizedProduct
    hit_count: int = 0


SourcePayload = Union[
    BarcodePayload, PriceHistoryPayload, OcrPayload, VisionPayload, WebSearchPayload
]


# ---------------------------------------------------------------------------
# Field confidence ledger
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldDataSource:
    """Provenance of one candidate value.

    ``confidence`` is the source's self-reported trust in ``[0, 1]``; the
    ledger discounts it by a fixed per-type weight when merging.
    """

    type: SourceType
    confidence: float
    timestamp: float = field(default_factory=time.time)
    payload: SourcePayload | None = None
    cost: float | None = None

    def __post_init__(self) -> None:
        if not (0.0 <= self.confidence <= 1.0):
            raise ValueError(
                f"source confidence must be in [0, 1], got {self.confidence}"
            )
        if self.payload is not None and self.payload.kind is not self.type:
            raise ValueError(
                f"{type(self.payload).__name__} cannot back a {self.type.value} source"
            )
        if self.cost is not None and self.cost < 0:
            raise ValueError(f"source cost must be >= 0, got {self.cost}")


@dataclass(frozen=True)
class FieldConfidence:
    """Merged confidence of a field and every source that contributed to it."""

    value: float = 0.0
    sources: tuple[FieldDataSource, ...] = ()
    last_updated: float = 0.0

    def __post_init__(self) -> None:
        if not (0.0 <= self.value <= 1.0):
            raise ValueError(f"confidence must be in [0, 1], got {self.value}")


@dataclass(frozen=True)
class FieldState:
    """Research state of a single product attribute."""

    name: str
    display_name: str
    value: Any = None
    confidence: FieldConfidence = field(default_factory=FieldConfidence)
    required: bool = False
    required_by: tuple[str, ...] = ()
    data_type: FieldDataType = FieldDataType.STRING
    allowed_values: tuple[str, ...] | None = None
    attempts: int = 0
    status: FieldStatus = FieldStatus.PENDING

    @property
    def has_value(self) -> bool:
        return self.value is not None and self.value != ""


@dataclass(frozen=True)
class ItemFieldStates:
    """All tracked fields of one item plus aggregate metrics.

    Attributes
    ----------
    fields:
        Mapping of normalized field name to ``FieldState``.
    completion_score:
        ``0.7 * required ratio + 0.3 * recommended ratio``.
    ready_to_publish:
        ``True`` when every required field is complete.
    total_cost:
        Running sum of every accepted source's reported cost.
    iterations:
        Number of completed adaptive-loop evaluations.
    """

    item_id: str = ""
    fields: Mapping[str, FieldState] = field(default_factory=dict)
    required_complete: int = 0
    required_total: int = 0
    recommended_complete: int = 0
    recommended_total: int = 0
    completion_score: float = 0.0
    ready_to_publish: bool = False
    total_cost: float = 0.0
    iterations: int = 0
    target_marketplaces: tuple[str, ...] = ()

    def get(self, name: str) -> FieldState | None:
        return self.fields.get(name)

    def value_of(self, name: str) -> Any:
        """Current value of ``name`` or ``None`` when unknown or empty."""
        state = self.fields.get(name)
        if state is None or not state.has_value:
            return None
        return state.value


@dataclass(frozen=True)
class ReadinessReport:
    """Outcome of a readiness check over the required fields."""

    ready: bool
    completion_score: float
    missing_fields: tuple[str, ...] = ()
    low_confidence_fields: tuple[tuple[str, float], ...] = ()
    required_complete: int = 0
    required_total: int = 0


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResearchConstraints:
    """Budget and quality limits of one research run."""

    mode: ResearchMode
    max_cost_usd: float
    max_iterations: int
    required_confidence: float
    recommended_confidence: float

    def __post_init__(self) -> None:
        if self.max_cost_usd < 0:
            raise ValueError(f"max_cost_usd must be >= 0, got {self.max_cost_usd}")
        if self.max_iterations < 0:
            raise ValueError(
                f"max_iterations must be >= 0, got {self.max_iterations}"
            )
        for name in ("required_confidence", "recommended_confidence"):
            v = getattr(self, name)
            if not (0.0 <= v <= 1.0):
                raise ValueError(f"{name} must be in [0, 1], got {v}")


@dataclass(frozen=True)
class ToolMetadata:
    """Static description of a research tool.

    ``can_provide`` lists the fields the tool can fill; ``"*"`` marks a
    wildcard tool.  ``requires_fields`` is satisfied when at least one of
    the listed fields already has a value.
    """

    tool: ToolType
    display_name: str
    base_cost: float
    base_time_ms: int
    can_provide: tuple[str, ...]
    priority: float
    confidence_weight: float
    requires_service: ServiceKind | None = None
    requires_images: bool = False
    requires_fields: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.base_cost < 0:
            raise ValueError(f"base_cost must be >= 0, got {self.base_cost}")
        if not (0.0 <= self.confidence_weight <= 1.0):
            raise ValueError(
                f"confidence_weight must be in [0, 1], got {self.confidence_weight}"
            )

    @property
    def is_wildcard(self) -> bool:
        return "*" in self.can_provide

    def provides(self, field_name: str) -> bool:
        return self.is_wildcard or field_name in self.can_provide


@dataclass(frozen=True)
class ResearchContext:
    """What is already known about the item, for tool prerequisites and scoring."""

    has_upc: bool = False
    has_brand: bool = False
    has_model: bool = False
    has_category: bool = False
    has_images: bool = False
    image_count: int = 0
    configured_services: frozenset[ServiceKind] = frozenset()

    def is_configured(self, service: ServiceKind) -> bool:
        return service in self.configured_services


def _empty_attempts() -> dict[ToolType, int]:
    return {tool: 0 for tool in ToolType}


@dataclass(frozen=True)
class TaskHistory:
    """Per-run bookkeeping of tool usage and progress.

    ``attempts_by_tool`` always holds exactly one counter per ``ToolType``.
    A fresh history is created for every run.
    """

    attempts_by_tool: Mapping[ToolType, int] = field(default_factory=_empty_attempts)
    failed_tools: tuple[ToolType, ...] = ()
    consecutive_no_progress: int = 0
    last_snapshot_hash: str | None = None

    def __post_init__(self) -> None:
        unknown = set(self.attempts_by_tool) - set(ToolType)
        if unknown:
            raise ValueError(f"unknown tools in attempts_by_tool: {unknown}")
        if len(self.attempts_by_tool) != len(ToolType):
            counts = _empty_attempts()
            counts.update(self.attempts_by_tool)
            object.__setattr__(self, "attempts_by_tool", counts)

    def attempts_for(self, tool: ToolType) -> int:
        return self.attempts_by_tool.get(tool, 0)

    def record_attempt(self, tool: ToolType, produced_updates: bool) -> TaskHistory:
        """Return a copy with ``tool``'s counter bumped.

        A tool that produced no usable updates is added to ``failed_tools``.
        """
        counts = dict(self.attempts_by_tool)
        counts[tool] = counts.get(tool, 0) + 1
        failed = self.failed_tools
        if not produced_updates and tool not in failed:
            failed = failed + (tool,)
        return TaskHistory(
            attempts_by_tool=counts,
            failed_tools=failed,
            consecutive_no_progress=self.consecutive_no_progress,
            last_snapshot_hash=self.last_snapshot_hash,
        )


@dataclass(frozen=True)
class ResearchTask:
    """A single planned call to one research tool."""

    tool: ToolType
    target_fields: tuple[str, ...]
    priority: float = 0.0
    estimated_cost: float = 0.0
    estimated_time_ms: int = 0
    reasoning: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass(frozen=True)
class FieldEvaluation:
    """Macro continue/stop decision with its diagnostics."""

    decision: Decision
    reason: str
    fields_needing_research: tuple[str, ...] = ()
    completion_score: float = 0.0
    budget_remaining: float = 0.0
    iterations_remaining: int = 0


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldUpdate:
    """A candidate value for one field, with provenance."""

    field_name: str
    value: Any
    source: FieldDataSource


@dataclass(frozen=True)
class TaskResult:
    """Outcome of executing a ``ResearchTask``."""

    task: ResearchTask
    success: bool
    field_updates: tuple[FieldUpdate, ...] = ()
    cost: float = 0.0
    time_ms: int = 0
    error: str | None = None


@dataclass(frozen=True)
class ExecutionContext:
    """Item facts a tool routine may use to build its query."""

    item_id: str
    image_urls: tuple[str, ...] = ()
    upc: str | None = None
    brand: str | None = None
    model: str | None = None
    mpn: str | None = None
    category: str | None = None
    title: str | None = None

    @classmethod
    def from_states(
        cls, states: ItemFieldStates, image_urls: tuple[str, ...] = ()
    ) -> ExecutionContext:
        """Snapshot the identifying values currently held by the ledger."""

        def text(name: str) -> str | None:
            value = states.value_of(name)
            return None if value is None else str(value)

        return cls(
            item_id=states.item_id,
            image_urls=tuple(image_urls),
            upc=text("upc"),
            brand=text("brand"),
            model=text("model"),
            mpn=text("mpn"),
            category=text("category"),
            title=text("title"),
        )


# ---------------------------------------------------------------------------
# Persistence / salvage
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResearchRecord:
    """Structured research result persisted at the end of a run."""

    item_id: str
    run_id: str
    fields: Mapping[str, Any]
    readiness: ReadinessReport
    decision: Decision | None = None
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class EvidenceBundle:
    """Every accepted field update of a run, with provenance."""

    item_id: str
    run_id: str
    items: tuple[FieldUpdate, ...] = ()


@dataclass(frozen=True)
class SalvageResult:
    """Best available partial result of an abnormally terminated run."""

    item_id: str
    run_id: str
    success: bool
    partial: bool
    research: ResearchRecord | None = None
    evidence_count: int = 0
    warnings: tuple[str, ...] = ()
