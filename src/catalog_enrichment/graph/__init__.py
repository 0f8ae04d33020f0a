"""LangGraph-native research loop.

Public API
----------
build_research_graph
    Build and compile the initialize / extract / lookup / adaptive-loop /
    persist graph.
ResearchState
    The TypedDict state flowing through the graph.
ResearchGraphBuilder
    Fluent builder producing a compiled graph and its initial state.
run_research
    Invoke a compiled graph, salvaging partial results on abnormal exit.
"""

from catalog_enrichment.graph.builder import ResearchGraphBuilder, run_research
from catalog_enrichment.graph.edges import route_after_plan, should_continue_research
from catalog_enrichment.graph.graph import build_research_graph
from catalog_enrichment.graph.nodes import (
    apply_updates,
    make_evaluate_node,
    make_execute_node,
    make_extract_from_images_node,
    make_initialize_node,
    make_persist_node,
    make_plan_node,
    make_quick_lookups_node,
    snapshot_hash,
)
from catalog_enrichment.graph.state import ResearchState

__all__ = [
    "ResearchGraphBuilder",
    "ResearchState",
    "apply_updates",
    "build_research_graph",
    "make_evaluate_node",
    "make_execute_node",
    "make_extract_from_images_node",
    "make_initialize_node",
    "make_persist_node",
    "make_plan_node",
    "make_quick_lookups_node",
    "route_after_plan",
    "run_research",
    "should_continue_research",
    "snapshot_hash",
]
