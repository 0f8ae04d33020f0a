"""Tool registry for the catalog enrichment engine.

``ToolRegistry`` is an immutable catalogue of ``ToolMetadata`` keyed by
``ToolType``.  It is built explicitly and injected into the planner; there
is no process-wide registry.  Iteration order is registration order, which
the planner relies on for its first-seen tie rule.

Usage::

    registry = ToolRegistry.default()
    planner = ResearchPlanner(registry)

    # a copy with a cheaper web search
    tuned = registry.with_tool(replace(registry.get(ToolType.WEB_SEARCH_GENERAL), base_cost=0.01))
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from types import MappingProxyType

from catalog_enrichment.domain.enums import ServiceKind, ToolType
from catalog_enrichment.domain.values import ToolMetadata

logger = logging.getLogger(__name__)


# ===================================================================== #
#  Default catalogue                                                     #
# ===================================================================== #

DEFAULT_TOOLS: tuple[ToolMetadata, ...] = (
    ToolMetadata(
        tool=ToolType.BARCODE_LOOKUP,
        display_name="Barcode Database Lookup",
        base_cost=0.001,
        base_time_ms=500,
        can_provide=("brand", "title", "description", "category"),
        priority=95,
        confidence_weight=0.95,
        requires_service=ServiceKind.IDENTIFIER_LOOKUP,
        requires_fields=("upc",),
    ),
    ToolMetadata(
        tool=ToolType.PRICE_HISTORY,
        display_name="Price History Lookup",
        base_cost=0.01,
        base_time_ms=1000,
        can_provide=("brand", "title", "category", "price_reference", "demand_indicator"),
        priority=85,
        confidence_weight=0.90,
        requires_service=ServiceKind.PRICE_HISTORY,
        requires_fields=("upc", "brand", "model"),
    ),
    ToolMetadata(
        tool=ToolType.OCR,
        display_name="Label Text Recognition",
        base_cost=0.005,
        base_time_ms=1500,
        can_provide=(
            "upc", "brand", "model", "mpn", "size", "material", "color",
            "capacity", "country_of_manufacture", "year_manufactured",
        ),
        priority=80,
        confidence_weight=0.75,
        requires_service=ServiceKind.OCR,
        requires_images=True,
    ),
    ToolMetadata(
        tool=ToolType.VISION,
        display_name="Image Analysis",
        base_cost=0.01,
        base_time_ms=2000,
        can_provide=(
            "brand", "model", "color", "material", "condition", "size",
            "style", "pattern",
        ),
        priority=75,
        confidence_weight=0.70,
        requires_service=ServiceKind.VISION,
        requires_images=True,
    ),
    ToolMetadata(
        tool=ToolType.WEB_SEARCH_TARGETED,
        display_name="Targeted Web Search",
        base_cost=0.02,
        base_time_ms=3000,
        can_provide=(
            "brand", "model", "mpn", "title", "description", "category",
            "color", "material", "size", "weight", "dimensions", "capacity",
        ),
        priority=70,
        confidence_weight=0.65,
        requires_service=ServiceKind.WEB_SEARCH,
        requires_fields=("brand", "model", "upc", "mpn"),
    ),
    ToolMetadata(
        tool=ToolType.WEB_SEARCH_GENERAL,
        display_name="General Web Search",
        base_cost=0.03,
        base_time_ms=4000,
        can_provide=("*",),
        priority=50,
        confidence_weight=0.55,
        requires_service=ServiceKind.WEB_SEARCH,
    ),
)


class ToolRegistry:
    """Read-only catalogue of research tools.

    Parameters
    ----------
    tools:
        ``ToolMetadata`` entries.  A tool type may appear only once.
    """

    def __init__(self, tools: Iterable[ToolMetadata]) -> None:
        catalogue: dict[ToolType, ToolMetadata] = {}
        for meta in tools:
            if meta.tool in catalogue:
                raise ValueError(f"Tool '{meta.tool.value}' registered twice")
            catalogue[meta.tool] = meta
        self._tools = MappingProxyType(catalogue)

    @classmethod
    def default(cls) -> ToolRegistry:
        """Registry holding the standard six-tool catalogue."""
        return cls(DEFAULT_TOOLS)

    # ------------------------------------------------------------------ #
    #  Lookup                                                              #
    # ------------------------------------------------------------------ #

    def get(self, tool: ToolType) -> ToolMetadata:
        """Return the metadata of *tool*.

        Raises ``KeyError`` if not registered.
        """
        try:
            return self._tools[tool]
        except KeyError:
            available = [t.value for t in self._tools]
            raise KeyError(
                f"Tool '{tool.value}' not registered. Available: {available}"
            ) from None

    def get_or_none(self, tool: ToolType) -> ToolMetadata | None:
        return self._tools.get(tool)

    def has(self, tool: ToolType) -> bool:
        return tool in self._tools

    def tools_for_field(self, field_name: str) -> list[ToolMetadata]:
        """All tools that can provide *field_name*, in registration order."""
        return [meta for meta in self._tools.values() if meta.provides(field_name)]

    # ------------------------------------------------------------------ #
    #  Derivation                                                          #
    # ------------------------------------------------------------------ #

    def with_tool(self, meta: ToolMetadata) -> ToolRegistry:
        """Return a new registry where *meta* replaces (or adds) its tool."""
        catalogue = dict(self._tools)
        catalogue[meta.tool] = meta
        logger.debug("ToolRegistry: derived registry with '%s'", meta.tool.value)
        return ToolRegistry(catalogue.values())

    def without(self, *tools: ToolType) -> ToolRegistry:
        """Return a new registry lacking *tools*."""
        return ToolRegistry(m for t, m in self._tools.items() if t not in tools)

    # ------------------------------------------------------------------ #
    #  Dunder helpers                                                      #
    # ------------------------------------------------------------------ #

    def __iter__(self) -> Iterator[ToolMetadata]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, tool: object) -> bool:
        return tool in self._tools

    def __repr__(self) -> str:
        return f"ToolRegistry({[t.value for t in self._tools]})"
