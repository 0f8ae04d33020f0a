"""Catalog enrichment engine.

Adaptive, budget-constrained research of catalog item fields: a
confidence ledger tracks every field, a planner picks the cheapest
promising tool, and a LangGraph loop runs it until the item is ready
to publish or the budget runs out.
"""

__version__ = "0.1.0"

from catalog_enrichment.graph import (
    ResearchGraphBuilder,
    ResearchState,
    build_research_graph,
    run_research,
)

__all__ = [
    "build_research_graph",
    "ResearchGraphBuilder",
    "ResearchState",
    "run_research",
]
