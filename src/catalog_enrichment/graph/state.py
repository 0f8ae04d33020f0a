"""LangGraph state definition for the research loop.

Defines ``ResearchState``, a ``TypedDict`` that flows through the LangGraph
``StateGraph``.  Append-only channels use ``Annotated[list, operator.add]``
so that each node can emit new items without overwriting previous entries.

Note: We intentionally do NOT use ``from __future__ import annotations`` because
LangGraph needs to resolve type hints at runtime via ``get_type_hints()``.
"""

import operator
from typing import Annotated, Any, TypedDict

from catalog_enrichment.domain.enums import Decision, ServiceKind
from catalog_enrichment.domain.fields import FieldRequirement
from catalog_enrichment.domain.values import (
    FieldEvaluation,
    FieldUpdate,
    ItemFieldStates,
    ReadinessReport,
    ResearchConstraints,
    ResearchRecord,
    ResearchTask,
    TaskHistory,
    TaskResult,
)


class ResearchState(TypedDict, total=False):
    """Full state of one research run.

    Input keys (supplied by the caller):
        item_id, run_id, required_fields, recommended_fields, seed_data,
        target_marketplaces, image_urls, constraints (optional).

    Ledger:
        field_states -- the current ``ItemFieldStates`` snapshot.

    Loop bookkeeping:
        iteration, total_cost, task_history, current_task, evaluation,
        decision, done.

    Accumulation channels (append-only via ``operator.add``):
        task_results, evidence, warnings.

    Output:
        readiness, research_record.
    """

    # -- Inputs --
    item_id: str
    run_id: str
    required_fields: list[str | FieldRequirement]
    recommended_fields: list[str | FieldRequirement]
    seed_data: dict[str, Any]
    target_marketplaces: list[str]
    image_urls: list[str]
    constraints: ResearchConstraints

    # -- Ledger --
    field_states: ItemFieldStates
    configured_services: frozenset[ServiceKind]

    # -- Loop bookkeeping --
    iteration: int
    total_cost: float
    task_history: TaskHistory
    current_task: ResearchTask | None
    evaluation: FieldEvaluation | None
    decision: Decision | None
    done: bool

    # -- Accumulation channels --
    task_results: Annotated[list[TaskResult], operator.add]
    evidence: Annotated[list[FieldUpdate], operator.add]
    warnings: Annotated[list[str], operator.add]

    # -- Output --
    readiness: ReadinessReport | None
    research_record: ResearchRecord | None
