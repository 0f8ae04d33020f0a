"""Service layer for the catalog enrichment engine.

Re-exports public service types for convenient top-level access::

    from catalog_enrichment.services import (
        ConfidenceLedger, ResearchPlanner, TaskExecutor, SalvageRecovery,
        ResearchServices, LLMVisionAnalyzer, InMemoryResearchRepository,
    )
"""

from catalog_enrichment.services.activity import (
    ActivityEvent,
    ActivityLogger,
    LoggingActivityLogger,
    NullActivityLogger,
    RecordingActivityLogger,
)
from catalog_enrichment.services.collaborators import (
    CachingIdentifierLookup,
    IdentifierLookup,
    OcrService,
    PriceHistoryService,
    ResearchServices,
    VisionAnalyzer,
    WebSearchService,
)
from catalog_enrichment.services.executor import TaskExecutor
from catalog_enrichment.services.ledger import (
    SOURCE_WEIGHTS,
    ConfidenceLedger,
    MarketplaceMapping,
)
from catalog_enrichment.services.planner import (
    CostEstimate,
    ResearchPlanner,
    build_research_context,
)
from catalog_enrichment.services.repository import (
    InMemoryResearchRepository,
    ResearchRepository,
)
from catalog_enrichment.services.salvage import SalvageRecovery
from catalog_enrichment.services.vision import LLMVisionAnalyzer, VisionAttributes

__all__ = [
    # Activity
    "ActivityEvent",
    "ActivityLogger",
    "LoggingActivityLogger",
    "NullActivityLogger",
    "RecordingActivityLogger",
    # Collaborators
    "CachingIdentifierLookup",
    "IdentifierLookup",
    "OcrService",
    "PriceHistoryService",
    "ResearchServices",
    "VisionAnalyzer",
    "WebSearchService",
    # Core
    "ConfidenceLedger",
    "CostEstimate",
    "MarketplaceMapping",
    "ResearchPlanner",
    "SOURCE_WEIGHTS",
    "SalvageRecovery",
    "TaskExecutor",
    "build_research_context",
    # Persistence
    "InMemoryResearchRepository",
    "ResearchRepository",
    # Vision
    "LLMVisionAnalyzer",
    "VisionAttributes",
]
