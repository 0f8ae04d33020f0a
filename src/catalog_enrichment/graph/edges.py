"""Conditional edge functions for the research graph.

These functions determine routing between nodes based on the current state.
"""

from __future__ import annotations

from typing import Any, Literal

from catalog_enrichment.domain.enums import Decision


def route_after_plan(state: dict[str, Any]) -> Literal["execute_research", "evaluate_fields"]:
    """After planning, run the task if one was found.

    With no task the loop goes straight to evaluation, which either stops
    the run or counts the iteration as one without progress.
    """
    if state.get("current_task") is None:
        return "evaluate_fields"
    return "execute_research"


def should_continue_research(
    state: dict[str, Any],
) -> Literal["plan_next_research", "persist_results"]:
    """After evaluation, loop back for another task or finish the run."""
    if state.get("done") or state.get("decision") not in (None, Decision.CONTINUE):
        return "persist_results"
    return "plan_next_research"
