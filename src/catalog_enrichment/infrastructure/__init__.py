"""Infrastructure layer: configuration and the tool registry."""

from catalog_enrichment.infrastructure.config import (
    ExecutorConfig,
    LoopConfig,
    PlannerConfig,
    get_default_constraints,
    load_config_from_json,
)
from catalog_enrichment.infrastructure.registry import DEFAULT_TOOLS, ToolRegistry

__all__ = [
    "DEFAULT_TOOLS",
    "ExecutorConfig",
    "LoopConfig",
    "PlannerConfig",
    "ToolRegistry",
    "get_default_constraints",
    "load_config_from_json",
]
