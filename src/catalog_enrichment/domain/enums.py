"""Domain enumerations for the catalog enrichment engine.

These enums capture the fixed vocabularies used across the domain layer:
field lifecycle statuses, value data types, source provenance, research
modes, the closed set of research tools, backing services and the
loop decisions.
"""

from enum import Enum


class FieldStatus(Enum):
    """Lifecycle status of a tracked field."""

    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"
    USER_REQUIRED = "user_required"  # removed from automation


class FieldDataType(Enum):
    """Declared type of a field's value."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ENUM = "enum"
    ARRAY = "array"
    OBJECT = "object"


class SourceType(Enum):
    """Provenance of a candidate field value."""

    USER_INPUT = "user_input"
    BARCODE_LOOKUP = "barcode_lookup"
    PRICE_HISTORY = "price_history"
    MARKETPLACE_API = "marketplace_api"
    AMAZON_CATALOG = "amazon_catalog"
    USER_HINT = "user_hint"
    OCR = "ocr"
    VISION = "vision"
    WEB_SEARCH = "web_search"
    UNKNOWN = "unknown"


class ResearchMode(Enum):
    """How much budget and rigour a research run may spend."""

    FAST = "fast"
    BALANCED = "balanced"
    THOROUGH = "thorough"


class ToolType(Enum):
    """Closed set of research tools the planner can schedule."""

    BARCODE_LOOKUP = "barcode_lookup"
    PRICE_HISTORY = "price_history"
    OCR = "ocr"
    VISION = "vision"
    WEB_SEARCH_TARGETED = "web_search_targeted"
    WEB_SEARCH_GENERAL = "web_search_general"


class ServiceKind(Enum):
    """Backing collaborator a tool depends on."""

    IDENTIFIER_LOOKUP = "identifier_lookup"
    PRICE_HISTORY = "price_history"
    OCR = "ocr"
    VISION = "vision"
    WEB_SEARCH = "web_search"


class Decision(Enum):
    """Macro decision taken after each evaluation."""

    CONTINUE = "continue"
    COMPLETE = "complete"
    STOP_WITH_WARNINGS = "stop_with_warnings"
