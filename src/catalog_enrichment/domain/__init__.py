"""Domain layer for the catalog enrichment engine.

Re-exports all public domain types so that consumers can write::

    from catalog_enrichment.domain import FieldState, SourceType, ToolType
"""

# -- Enumerations -------------------------------------------------------------
from .enums import (
    Decision,
    FieldDataType,
    FieldStatus,
    ResearchMode,
    ServiceKind,
    SourceType,
    ToolType,
)

# -- Exceptions ---------------------------------------------------------------
from .exceptions import (
    ConfigurationError,
    EnrichmentError,
    RetryableToolError,
    SalvageError,
    ToolExecutionError,
)

# -- Field vocabulary -------------------------------------------------------
from .fields import (
    CANONICAL_FIELDS,
    CanonicalField,
    FieldRequirement,
    canonical_field_name,
    normalize_field_name,
)

# -- Value Objects ------------------------------------------------------------
from .values import (
    BarcodePayload,
    EvidenceBundle,
    ExecutionContext,
    FieldConfidence,
    FieldDataSource,
    FieldEvaluation,
    FieldState,
    FieldUpdate,
    IdentifierLookupResult,
    ItemFieldStates,
    OcrPayload,
    OcrResult,
    PriceHistoryPayload,
    PriceHistoryProduct,
    PriceStats,
    ProductQuery,
    ReadinessReport,
    ResearchConstraints,
    ResearchContext,
    ResearchRecord,
    ResearchTask,
    SalvageResult,
    SearchHit,
    SourcePayload,
    SynthesizedProduct,
    TaskHistory,
    TaskResult,
    ToolMetadata,
    VisionPayload,
    WebSearchPayload,
)

__all__ = [
    # Enums
    "Decision",
    "FieldDataType",
    "FieldStatus",
    "ResearchMode",
    "ServiceKind",
    "SourceType",
    "ToolType",
    # Exceptions
    "ConfigurationError",
    "EnrichmentError",
    "RetryableToolError",
    "SalvageError",
    "ToolExecutionError",
    # Fields
    "CANONICAL_FIELDS",
    "CanonicalField",
    "FieldRequirement",
    "canonical_field_name",
    "normalize_field_name",
    # Values
    "BarcodePayload",
    "EvidenceBundle",
    "ExecutionContext",
    "FieldConfidence",
    "FieldDataSource",
    "FieldEvaluation",
    "FieldState",
    "FieldUpdate",
    "IdentifierLookupResult",
    "ItemFieldStates",
    "OcrPayload",
    "OcrResult",
    "PriceHistoryPayload",
    "PriceHistoryProduct",
    "PriceStats",
    "ProductQuery",
    "ReadinessReport",
    "ResearchConstraints",
    "ResearchContext",
    "ResearchRecord",
    "ResearchTask",
    "SalvageResult",
    "SearchHit",
    "SourcePayload",
    "SynthesizedProduct",
    "TaskHistory",
    "TaskResult",
    "ToolMetadata",
    "VisionPayload",
    "WebSearchPayload",
]
