"""Build the research StateGraph.

``build_research_graph()`` wires the initialization and parallel lookup
phases in front of the adaptive plan-execute-evaluate loop and the final
persistence step.
"""

from typing import Any

from langgraph.graph import END, START, StateGraph

from catalog_enrichment.graph.edges import route_after_plan, should_continue_research
from catalog_enrichment.graph.nodes import (
    make_evaluate_node,
    make_execute_node,
    make_extract_from_images_node,
    make_initialize_node,
    make_persist_node,
    make_plan_node,
    make_quick_lookups_node,
)
from catalog_enrichment.graph.state import ResearchState
from catalog_enrichment.infrastructure.config import ExecutorConfig, LoopConfig
from catalog_enrichment.services.activity import ActivityLogger
from catalog_enrichment.services.executor import TaskExecutor
from catalog_enrichment.services.ledger import ConfidenceLedger
from catalog_enrichment.services.planner import ResearchPlanner
from catalog_enrichment.services.repository import ResearchRepository


def build_research_graph(
    ledger: ConfidenceLedger | None,
    planner: ResearchPlanner,
    executor: TaskExecutor | None,
    repository: ResearchRepository | None = None,
    activity: ActivityLogger | None = None,
    loop_config: LoopConfig | None = None,
    checkpointer: Any | None = None,
    interrupt_before: list[str] | None = None,
) -> Any:
    """Build and compile the research StateGraph.

    Parameters
    ----------
    ledger:
        Confidence ledger.  ``None`` raises ``ConfigurationError``.
    planner:
        Research planner used for evaluation and task selection.
    executor:
        Task executor.  ``None`` raises ``ConfigurationError``.
    repository:
        Optional repository; evidence is checkpointed to it as the run
        progresses and the final research record is saved to it.
    activity:
        Optional activity logger for user-visible progress.
    loop_config:
        Default mode used when the initial state carries no constraints.
    checkpointer:
        Optional LangGraph checkpointer for persistence.
    interrupt_before:
        Node names to interrupt before (human-in-the-loop).

    Returns
    -------
    CompiledStateGraph
        A compiled graph ready for ``.invoke()`` or ``.stream()``.
    """
    initialize = make_initialize_node(ledger, executor, loop_config, activity)
    executor_config = executor.config if executor is not None else ExecutorConfig()

    graph = StateGraph(ResearchState)
    graph.add_node("initialize_field_states", initialize)
    graph.add_node(
        "extract_from_images",
        make_extract_from_images_node(
            planner, executor, ledger, executor_config, activity, repository
        ),
    )
    graph.add_node(
        "quick_lookups",
        make_quick_lookups_node(executor, ledger, executor_config, activity, repository),
    )
    graph.add_node("plan_next_research", make_plan_node(planner, activity))
    graph.add_node("execute_research", make_execute_node(executor, ledger, activity, repository))
    graph.add_node("evaluate_fields", make_evaluate_node(planner, activity))
    graph.add_node("persist_results", make_persist_node(ledger, repository, activity))

    graph.add_edge(START, "initialize_field_states")
    graph.add_edge("initialize_field_states", "extract_from_images")
    graph.add_edge("extract_from_images", "quick_lookups")
    graph.add_edge("quick_lookups", "plan_next_research")
    graph.add_conditional_edges(
        "plan_next_research",
        route_after_plan,
        {"execute_research": "execute_research", "evaluate_fields": "evaluate_fields"},
    )
    graph.add_edge("execute_research", "evaluate_fields")
    graph.add_conditional_edges(
        "evaluate_fields",
        should_continue_research,
        {"plan_next_research": "plan_next_research", "persist_results": "persist_results"},
    )
    graph.add_edge("persist_results", END)

    compile_kwargs: dict[str, Any] = {}
    if checkpointer is not None:
        compile_kwargs["checkpointer"] = checkpointer
    if interrupt_before:
        compile_kwargs["interrupt_before"] = interrupt_before

    return graph.compile(**compile_kwargs)
