"""Research planner: tool scoring, selection and the macro stop decision.

``ResearchPlanner`` answers two questions every loop iteration:

1. ``evaluate_field_states`` -- should the run continue at all?  Cheap; it
   only looks at budget, iteration count and field readiness.
2. ``plan_next_task`` -- if so, which tool should run next and for which
   fields?  Scores every eligible tool in the injected ``ToolRegistry``
   against the most urgent researchable field.

Scoring
-------
::

    score = priority
          + 20                       if the tool names the field explicitly
          + confidence_weight * 30
          - base_cost * 50
          - base_time_ms / 1000
          + context bonus            (see ``_CONTEXT_BONUSES``)
          - 10 * field.attempts

The highest strictly greater score wins, so on exact ties the tool that
comes first in the registry is kept.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from catalog_enrichment.domain.enums import Decision, ServiceKind, ToolType
from catalog_enrichment.domain.values import (
    FieldEvaluation,
    FieldState,
    ItemFieldStates,
    ResearchConstraints,
    ResearchContext,
    ResearchTask,
    TaskHistory,
    ToolMetadata,
)
from catalog_enrichment.infrastructure.config import PlannerConfig
from catalog_enrichment.infrastructure.registry import ToolRegistry
from catalog_enrichment.services.ledger import ConfidenceLedger

logger = logging.getLogger(__name__)

BUDGET_EPSILON = 0.001
EXACT_FIELD_BONUS = 20.0
CONFIDENCE_WEIGHT_FACTOR = 30.0
COST_PENALTY_FACTOR = 50.0
ATTEMPT_PENALTY = 10.0

_CONTEXT_BONUSES: dict[ToolType, tuple[Callable[[ResearchContext], bool], float]] = {
    ToolType.BARCODE_LOOKUP: (lambda ctx: ctx.has_upc, 50.0),
    ToolType.PRICE_HISTORY: (lambda ctx: ctx.has_upc, 40.0),
    ToolType.VISION: (lambda ctx: ctx.image_count > 1, 15.0),
    ToolType.WEB_SEARCH_TARGETED: (lambda ctx: ctx.has_brand and ctx.has_model, 25.0),
}


@dataclass(frozen=True)
class CostEstimate:
    estimated_cost: float
    estimated_iterations: int
    fields_covered: tuple[str, ...] = ()


def build_research_context(
    states: ItemFieldStates,
    image_urls: Iterable[str] = (),
    configured_services: Iterable[ServiceKind] = (),
) -> ResearchContext:
    """Derive the planner's ``ResearchContext`` from the current ledger."""
    images = tuple(image_urls)
    return ResearchContext(
        has_upc=states.value_of("upc") is not None,
        has_brand=states.value_of("brand") is not None,
        has_model=states.value_of("model") is not None,
        has_category=states.value_of("category") is not None,
        has_images=bool(images),
        image_count=len(images),
        configured_services=frozenset(configured_services),
    )


class ResearchPlanner:
    """Chooses the next research task.

    Parameters
    ----------
    registry:
        Tool catalogue to choose from.
    ledger:
        Ledger used for readiness checks and field ordering.
    config:
        Attempt caps and stuck thresholds.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        ledger: ConfidenceLedger | None = None,
        config: PlannerConfig | None = None,
    ) -> None:
        self._registry = registry
        self._ledger = ledger or ConfidenceLedger()
        self._config = config or PlannerConfig()
        self._config.validate()

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def config(self) -> PlannerConfig:
        return self._config

    @property
    def ledger(self) -> ConfidenceLedger:
        return self._ledger

    # ------------------------------------------------------------------ #
    #  Macro decision                                                      #
    # ------------------------------------------------------------------ #

    def evaluate_field_states(
        self,
        states: ItemFieldStates,
        constraints: ResearchConstraints,
        spent_cost: float,
        iteration: int,
    ) -> FieldEvaluation:
        """Decide whether to continue, complete or stop with warnings.

        Checked in order: budget, iterations, readiness, researchable fields.
        """
        budget_remaining = constraints.max_cost_usd - spent_cost
        iterations_remaining = constraints.max_iterations - iteration
        readiness = self._ledger.check_readiness(states, constraints.required_confidence)
        researchable = self.get_researchable_fields(states, constraints)

        def result(decision: Decision, reason: str) -> FieldEvaluation:
            return FieldEvaluation(
                decision=decision,
                reason=reason,
                fields_needing_research=tuple(f.name for f in researchable),
                completion_score=states.completion_score,
                budget_remaining=budget_remaining,
                iterations_remaining=iterations_remaining,
            )

        def stop(reason: str) -> FieldEvaluation:
            if readiness.ready:
                return result(Decision.COMPLETE, reason)
            unmet = len(readiness.missing_fields) + len(readiness.low_confidence_fields)
            return result(
                Decision.STOP_WITH_WARNINGS,
                f"{reason}; {unmet} required field(s) still unmet",
            )

        if budget_remaining <= BUDGET_EPSILON:
            return stop(
                f"Budget exhausted (${spent_cost:.3f} of ${constraints.max_cost_usd:.2f})"
            )
        if iterations_remaining <= 0:
            return stop(f"Maximum iterations reached ({constraints.max_iterations})")
        if readiness.ready:
            return result(Decision.COMPLETE, "All required fields meet confidence threshold")
        if not researchable:
            return stop("No more fields can be researched")
        return result(
            Decision.CONTINUE,
            f"{len(researchable)} field(s) need research",
        )

    def get_researchable_fields(
        self, states: ItemFieldStates, constraints: ResearchConstraints
    ) -> list[FieldState]:
        """Fields still worth researching, in research order.

        Fields that stayed under ``stale_confidence`` after
        ``stale_attempts`` tries are dropped.
        """
        needing = self._ledger.get_fields_needing_research(
            states, constraints.required_confidence, constraints.recommended_confidence
        )
        return [
            f
            for f in needing
            if not (
                f.attempts >= self._config.stale_attempts
                and f.confidence.value < self._config.stale_confidence
            )
        ]

    # ------------------------------------------------------------------ #
    #  Micro planning                                                      #
    # ------------------------------------------------------------------ #

    def plan_next_task(
        self,
        states: ItemFieldStates,
        constraints: ResearchConstraints,
        context: ResearchContext,
        spent_cost: float,
        iteration: int,
        task_history: TaskHistory | None = None,
    ) -> ResearchTask | None:
        """Plan a single task for the most urgent researchable field.

        Returns ``None`` when iterations, progress or budget are exhausted,
        or when no eligible tool can serve the top field.
        """
        history = task_history or TaskHistory()
        budget_remaining = constraints.max_cost_usd - spent_cost

        if iteration >= constraints.max_iterations:
            logger.debug("plan_next_task: iteration cap %d reached", constraints.max_iterations)
            return None
        if history.consecutive_no_progress >= self._config.max_consecutive_no_progress:
            logger.debug(
                "plan_next_task: %d iterations without progress",
                history.consecutive_no_progress,
            )
            return None
        if budget_remaining <= BUDGET_EPSILON:
            logger.debug("plan_next_task: budget exhausted")
            return None

        researchable = self.get_researchable_fields(states, constraints)
        if not researchable:
            return None

        top = researchable[0]
        selection = self.select_best_tool(top, states, context, budget_remaining, history)
        if selection is None:
            logger.debug("plan_next_task: no eligible tool for '%s'", top.name)
            return None

        meta, score = selection
        task = self._build_task(meta, score, top, researchable, context)
        logger.info(
            "plan_next_task: %s for %s (score=%.1f)",
            meta.tool.value,
            list(task.target_fields),
            score,
        )
        return task

    def plan_parallel_tasks(
        self,
        states: ItemFieldStates,
        constraints: ResearchConstraints,
        context: ResearchContext,
        spent_cost: float,
        task_history: TaskHistory | None = None,
        max_tasks: int | None = None,
    ) -> list[ResearchTask]:
        """Greedily plan up to *max_tasks* tasks using distinct tools.

        The cumulative estimated cost stays within the remaining budget.
        """
        history = task_history or TaskHistory()
        limit = max_tasks if max_tasks is not None else self._config.max_parallel_tasks
        budget_remaining = constraints.max_cost_usd - spent_cost
        researchable = self.get_researchable_fields(states, constraints)

        tasks: list[ResearchTask] = []
        used: set[ToolType] = set()
        allocated = 0.0
        for state in researchable:
            if len(tasks) >= limit or allocated >= budget_remaining:
                break
            selection = self.select_best_tool(
                state, states, context, budget_remaining - allocated, history, exclude=used
            )
            if selection is None:
                continue
            meta, score = selection
            used.add(meta.tool)
            allocated += meta.base_cost
            tasks.append(self._build_task(meta, score, state, researchable, context))
        return tasks

    def select_best_tool(
        self,
        state: FieldState,
        states: ItemFieldStates,
        context: ResearchContext,
        budget_remaining: float,
        task_history: TaskHistory | None = None,
        exclude: Iterable[ToolType] = (),
    ) -> tuple[ToolMetadata, float] | None:
        """Best eligible tool for *state* and its score, or ``None``."""
        history = task_history or TaskHistory()
        excluded = set(exclude)
        best: ToolMetadata | None = None
        best_score = float("-inf")

        for meta in self._registry:
            if meta.tool in excluded or meta.tool in history.failed_tools:
                continue
            if history.attempts_for(meta.tool) >= self._config.max_attempts_per_tool:
                continue
            if meta.base_cost > budget_remaining:
                continue
            if not meta.provides(state.name):
                continue
            if not self.prerequisites_met(meta, states, context):
                continue
            score = self.score_tool(meta, state, context)
            if score > best_score:
                best, best_score = meta, score

        if best is None:
            return None
        return best, best_score

    def score_tool(
        self, meta: ToolMetadata, state: FieldState, context: ResearchContext
    ) -> float:
        score = float(meta.priority)
        if state.name in meta.can_provide:
            score += EXACT_FIELD_BONUS
        score += meta.confidence_weight * CONFIDENCE_WEIGHT_FACTOR
        score -= meta.base_cost * COST_PENALTY_FACTOR
        score -= meta.base_time_ms / 1000
        bonus = _CONTEXT_BONUSES.get(meta.tool)
        if bonus is not None and bonus[0](context):
            score += bonus[1]
        score -= state.attempts * ATTEMPT_PENALTY
        return score

    @staticmethod
    def prerequisites_met(
        meta: ToolMetadata, states: ItemFieldStates, context: ResearchContext
    ) -> bool:
        if meta.requires_service is not None and not context.is_configured(meta.requires_service):
            return False
        if meta.requires_images and not context.has_images:
            return False
        if meta.requires_fields and not any(
            states.value_of(name) is not None for name in meta.requires_fields
        ):
            return False
        return True

    def estimate_remaining_cost(
        self,
        states: ItemFieldStates,
        constraints: ResearchConstraints,
        context: ResearchContext,
    ) -> CostEstimate:
        """Rough cost of covering every researchable field once.

        Each distinct tool chosen for some field is counted once; the
        result is capped by the run's budget and iteration limit.
        """
        researchable = self.get_researchable_fields(states, constraints)
        if not researchable:
            return CostEstimate(0.0, 0)

        total = 0.0
        used: set[ToolType] = set()
        covered: list[str] = []
        for state in researchable:
            selection = self.select_best_tool(state, states, context, float("inf"))
            if selection is None:
                continue
            meta = selection[0]
            if meta.tool not in used:
                used.add(meta.tool)
                total += meta.base_cost
            covered.append(state.name)

        iterations = -(-len(researchable) // 3)
        return CostEstimate(
            estimated_cost=min(total, constraints.max_cost_usd),
            estimated_iterations=min(iterations, constraints.max_iterations),
            fields_covered=tuple(covered),
        )

    # ------------------------------------------------------------------ #
    #  Internals                                                           #
    # ------------------------------------------------------------------ #

    def _build_task(
        self,
        meta: ToolMetadata,
        score: float,
        top: FieldState,
        researchable: list[FieldState],
        context: ResearchContext,
    ) -> ResearchTask:
        targets = [top.name] + [
            f.name for f in researchable if f.name != top.name and meta.provides(f.name)
        ]
        if meta.is_wildcard:
            targets = targets[: self._config.max_wildcard_fields]
        return ResearchTask(
            tool=meta.tool,
            target_fields=tuple(targets),
            priority=score,
            estimated_cost=meta.base_cost,
            estimated_time_ms=meta.base_time_ms,
            reasoning=_reasoning(meta, top, context),
        )


def _reasoning(meta: ToolMetadata, state: FieldState, context: ResearchContext) -> str:
    parts = [f'Using {meta.display_name} for "{state.display_name}"']
    if state.required:
        parts.append("(required field)")
    if state.confidence.value > 0:
        parts.append(f"Current confidence: {round(state.confidence.value * 100)}%")
    if meta.tool is ToolType.BARCODE_LOOKUP and context.has_upc:
        parts.append("UPC available for lookup")
    if meta.tool is ToolType.PRICE_HISTORY:
        parts.append("Using marketplace price history")
    if state.attempts > 0:
        parts.append(f"Attempt {state.attempts + 1}")
    return " - ".join(parts)
