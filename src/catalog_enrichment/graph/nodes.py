"""LangGraph node functions for the research loop.

Each ``make_*_node`` factory closes over the services a node needs and
returns a function that takes a ``ResearchState`` and returns a partial
update dict.  Nodes only read the state they are given, so re-running a
node against an unchanged state reproduces the same decision.

Phases
------
1. ``initialize_field_states`` -- build the ledger from the item.
2. ``extract_from_images`` -- OCR and vision in parallel.
3. ``quick_lookups`` -- barcode and price-history lookups in parallel.
4. ``plan_next_research`` / ``execute_research`` / ``evaluate_fields`` --
   the adaptive single-task loop, with stuck detection in evaluate.
5. ``persist_results`` -- save the research record and evidence.
"""

from __future__ import annotations

import concurrent.futures
import hashlib
import json
import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import replace
from typing import Any

from catalog_enrichment.domain.enums import Decision, ToolType
from catalog_enrichment.domain.exceptions import ConfigurationError
from catalog_enrichment.domain.values import (
    EvidenceBundle,
    ExecutionContext,
    FieldUpdate,
    ItemFieldStates,
    ResearchConstraints,
    ResearchRecord,
    ResearchTask,
    TaskHistory,
    TaskResult,
)
from catalog_enrichment.infrastructure.config import ExecutorConfig, LoopConfig
from catalog_enrichment.services.activity import ActivityLogger, NullActivityLogger
from catalog_enrichment.services.executor import TaskExecutor
from catalog_enrichment.services.ledger import ConfidenceLedger
from catalog_enrichment.services.planner import ResearchPlanner, build_research_context
from catalog_enrichment.services.repository import ResearchRepository

logger = logging.getLogger(__name__)

IMAGE_TOOLS = (ToolType.OCR, ToolType.VISION)

# (tool, target fields, priority, cost, time_ms) for the identifier lookups
_BARCODE_TASK = (
    ToolType.BARCODE_LOOKUP,
    ("brand", "title", "description", "category"),
    100.0,
    0.001,
    500,
)
_PRICE_TASK = (
    ToolType.PRICE_HISTORY,
    ("brand", "title", "category", "price_reference", "demand_indicator"),
    90.0,
    0.01,
    1000,
)


# ===================================================================== #
#  Helpers                                                               #
# ===================================================================== #


def snapshot_hash(states: ItemFieldStates) -> str:
    """MD5 over the sorted ``name:value:confidence`` tuples of every field."""
    parts = sorted(
        f"{name}:{json.dumps(state.value, sort_keys=True, default=str)}:{state.confidence.value}"
        for name, state in states.fields.items()
    )
    return hashlib.md5("|".join(parts).encode("utf-8")).hexdigest()


def apply_updates(
    ledger: ConfidenceLedger,
    states: ItemFieldStates,
    updates: Sequence[FieldUpdate],
    threshold: float,
) -> tuple[ItemFieldStates, list[FieldUpdate]]:
    """Write each update that is strictly better than the field's current confidence.

    Returns the new states and the updates that were written.
    """
    accepted: list[FieldUpdate] = []
    for update in updates:
        if update.value is None:
            continue
        current = states.get(update.field_name)
        if current is None:
            logger.debug("apply_updates: no field '%s', skipped", update.field_name)
            continue
        if update.source.confidence <= current.confidence.value:
            logger.debug(
                "apply_updates: %s %.2f not better than %.2f",
                update.field_name,
                update.source.confidence,
                current.confidence.value,
            )
            continue
        new_states = ledger.update_field(
            states, update.field_name, update.value, update.source, threshold
        )
        if new_states is not states:
            accepted.append(update)
            states = new_states
    return states, accepted


def _safe(call: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Invoke an activity-logger method, never letting it raise."""
    try:
        return call(*args, **kwargs)
    except Exception as exc:
        logger.debug("activity logger call failed: %s", exc)
        return None


@contextmanager
def _operation(
    activity: ActivityLogger, state: dict[str, Any], operation_type: str, title: str
) -> Iterator[str]:
    op_id = _safe(activity.start_operation, state.get("item_id", ""), operation_type, title) or ""
    try:
        yield op_id
    except Exception as exc:
        _safe(activity.fail_operation, op_id, str(exc))
        raise


def _fixed_task(
    lookup: tuple[ToolType, tuple[str, ...], float, float, int],
    targets: list[str],
    reason: str,
) -> ResearchTask:
    tool, _, priority, cost, time_ms = lookup
    return ResearchTask(
        tool=tool,
        target_fields=tuple(targets),
        priority=priority,
        estimated_cost=cost,
        estimated_time_ms=time_ms,
        reasoning=reason,
    )


def _run_parallel(
    executor: TaskExecutor,
    tasks: list[ResearchTask],
    context: ExecutionContext,
    config: ExecutorConfig,
) -> list[TaskResult]:
    """Run sibling tasks concurrently; one failing does not cancel the others.

    The whole phase waits at most ``config.phase_timeout`` seconds.  A task
    still running at the deadline is abandoned: its thread is left to
    finish on its own and the task is charged its full estimated cost,
    since the backing service may still bill for the call.
    """
    results: list[TaskResult] = []
    pool = concurrent.futures.ThreadPoolExecutor(max_workers=config.parallel_workers)
    try:
        futures = [(task, pool.submit(executor.execute_task, task, context)) for task in tasks]
        concurrent.futures.wait([f for _, f in futures], timeout=config.phase_timeout)
        for task, future in futures:
            if future.done():
                results.append(future.result())
                continue
            future.cancel()
            logger.warning(
                "%s timed out after %.1fs, abandoned", task.tool.value, config.phase_timeout
            )
            results.append(
                TaskResult(
                    task=task,
                    success=False,
                    cost=task.estimated_cost,
                    error=(
                        f"Timed out after {config.phase_timeout}s; call abandoned "
                        f"and charged its full estimated cost"
                    ),
                )
            )
    finally:
        pool.shutdown(wait=False, cancel_futures=True)
    return results


def _merge_results(
    ledger: ConfidenceLedger,
    state: dict[str, Any],
    results: list[TaskResult],
) -> dict[str, Any]:
    """Fold task results into ledger, history, cost and evidence."""
    constraints: ResearchConstraints = state["constraints"]
    states: ItemFieldStates = state["field_states"]
    history: TaskHistory = state.get("task_history") or TaskHistory()
    cost = state.get("total_cost", 0.0)
    evidence: list[FieldUpdate] = []
    warnings: list[str] = []

    for result in results:
        states, accepted = apply_updates(
            ledger, states, result.field_updates, constraints.required_confidence
        )
        history = history.record_attempt(result.task.tool, produced_updates=bool(accepted))
        cost += result.cost
        evidence.extend(accepted)
        if not result.success:
            warnings.append(f"{result.task.tool.value} failed: {result.error}")

    return {
        "field_states": states,
        "task_history": history,
        "total_cost": cost,
        "task_results": list(results),
        "evidence": evidence,
        "warnings": warnings,
    }


def _checkpoint_evidence(
    repository: ResearchRepository | None, state: dict[str, Any], new: list[FieldUpdate]
) -> None:
    """Persist the running evidence bundle so an aborted run can be salvaged."""
    if repository is None or not new:
        return
    items = tuple(state.get("evidence", [])) + tuple(new)
    repository.save_evidence_bundle(
        EvidenceBundle(item_id=state.get("item_id", ""), run_id=state.get("run_id", ""), items=items)
    )


def _remaining_budget(state: dict[str, Any]) -> float:
    return state["constraints"].max_cost_usd - state.get("total_cost", 0.0)


# ===================================================================== #
#  Phase 1: initialization                                               #
# ===================================================================== #


def make_initialize_node(
    ledger: ConfidenceLedger | None,
    executor: TaskExecutor | None,
    loop_config: LoopConfig | None = None,
    activity: ActivityLogger | None = None,
) -> Callable[[dict[str, Any]], dict[str, Any]]:
    """Create the ``initialize_field_states`` node.

    Raises ``ConfigurationError`` immediately if the ledger or executor
    is missing.
    """
    if ledger is None:
        raise ConfigurationError("ConfidenceLedger is required", collaborator="ledger")
    if executor is None:
        raise ConfigurationError("TaskExecutor is required", collaborator="executor")
    cfg = loop_config or LoopConfig()
    activity = activity or NullActivityLogger()

    def initialize_field_states(state: dict[str, Any]) -> dict[str, Any]:
        with _operation(activity, state, "initialize_field_states", "Initializing fields") as op:
            constraints = state.get("constraints") or cfg.constraints()
            states = ledger.initialize(
                required_fields=state.get("required_fields", []),
                recommended_fields=state.get("recommended_fields", []),
                seed_data=state.get("seed_data") or {},
                target_marketplaces=state.get("target_marketplaces") or ("ebay",),
                item_id=state.get("item_id", ""),
            )
            logger.info(
                "initialize_field_states: item=%s required=%d recommended=%d mode=%s",
                states.item_id,
                states.required_total,
                states.recommended_total,
                constraints.mode.value,
            )
            _safe(
                activity.complete_operation,
                op,
                "Fields initialized",
                {"required": states.required_total, "recommended": states.recommended_total},
            )
            return {
                "constraints": constraints,
                "field_states": states,
                "configured_services": executor.services.configured(),
                "task_history": TaskHistory(),
                "iteration": 0,
                "total_cost": 0.0,
                "current_task": None,
                "evaluation": None,
                "decision": None,
                "done": False,
            }

    return initialize_field_states


# ===================================================================== #
#  Phase 2: parallel extraction                                          #
# ===================================================================== #


def make_extract_from_images_node(
    planner: ResearchPlanner,
    executor: TaskExecutor,
    ledger: ConfidenceLedger,
    config: ExecutorConfig | None = None,
    activity: ActivityLogger | None = None,
    repository: ResearchRepository | None = None,
) -> Callable[[dict[str, Any]], dict[str, Any]]:
    """Create the ``extract_from_images`` node (OCR and vision in parallel).

    Tasks come from ``plan_parallel_tasks`` on a copy of *planner* whose
    registry holds only the image tools, so each tool targets every
    researchable field it can provide.
    """
    cfg = config or ExecutorConfig()
    activity = activity or NullActivityLogger()
    registry = planner.registry
    image_planner = ResearchPlanner(
        registry.without(*(t for t in ToolType if t not in IMAGE_TOOLS)),
        planner.ledger,
        planner.config,
    )

    def extract_from_images(state: dict[str, Any]) -> dict[str, Any]:
        images = list(state.get("image_urls") or [])
        if not images:
            logger.debug("extract_from_images: no images, skipped")
            return {}

        states: ItemFieldStates = state["field_states"]
        context = build_research_context(
            states, images, state.get("configured_services") or ()
        )
        tasks = image_planner.plan_parallel_tasks(
            states,
            state["constraints"],
            context,
            state.get("total_cost", 0.0),
            state.get("task_history") or TaskHistory(),
            max_tasks=len(IMAGE_TOOLS),
        )
        if not tasks:
            logger.debug("extract_from_images: no image fields to research")
            return {}

        with _operation(activity, state, "extract_from_images", "Extracting from images") as op:
            context = ExecutionContext.from_states(states, tuple(images))
            update = _merge_results(ledger, state, _run_parallel(executor, tasks, context, cfg))
            _checkpoint_evidence(repository, state, update["evidence"])
            logger.info(
                "extract_from_images: %d task(s), %d field update(s)",
                len(tasks),
                len(update["evidence"]),
            )
            _safe(
                activity.complete_operation,
                op,
                "Image extraction finished",
                {"updates": [u.field_name for u in update["evidence"]]},
            )
            return update

    return extract_from_images


def make_quick_lookups_node(
    executor: TaskExecutor,
    ledger: ConfidenceLedger,
    config: ExecutorConfig | None = None,
    activity: ActivityLogger | None = None,
    repository: ResearchRepository | None = None,
) -> Callable[[dict[str, Any]], dict[str, Any]]:
    """Create the ``quick_lookups`` node (identifier lookups in parallel)."""
    cfg = config or ExecutorConfig()
    activity = activity or NullActivityLogger()

    def quick_lookups(state: dict[str, Any]) -> dict[str, Any]:
        states: ItemFieldStates = state["field_states"]
        has_upc = states.value_of("upc") is not None
        has_brand_model = (
            states.value_of("brand") is not None and states.value_of("model") is not None
        )

        budget = _remaining_budget(state)
        tasks: list[ResearchTask] = []
        candidates = []
        if has_upc and executor.is_available(ToolType.BARCODE_LOOKUP):
            candidates.append((_BARCODE_TASK, "Look up the barcode"))
        if (has_upc or has_brand_model) and executor.is_available(ToolType.PRICE_HISTORY):
            candidates.append((_PRICE_TASK, "Fetch marketplace price history"))
        for lookup, reason in candidates:
            targets = [n for n in lookup[1] if n in states.fields]
            if targets and lookup[3] <= budget:
                tasks.append(_fixed_task(lookup, targets, reason))
                budget -= lookup[3]
        if not tasks:
            logger.debug("quick_lookups: no identifiers or lookup services, skipped")
            return {}

        with _operation(activity, state, "quick_lookups", "Quick lookups") as op:
            context = ExecutionContext.from_states(states, tuple(state.get("image_urls") or ()))
            update = _merge_results(ledger, state, _run_parallel(executor, tasks, context, cfg))
            _checkpoint_evidence(repository, state, update["evidence"])
            logger.info(
                "quick_lookups: %d task(s), %d field update(s)",
                len(tasks),
                len(update["evidence"]),
            )
            _safe(
                activity.complete_operation,
                op,
                "Quick lookups finished",
                {"updates": [u.field_name for u in update["evidence"]]},
            )
            return update

    return quick_lookups


# ===================================================================== #
#  Phase 3: adaptive loop                                                #
# ===================================================================== #


def make_plan_node(
    planner: ResearchPlanner,
    activity: ActivityLogger | None = None,
) -> Callable[[dict[str, Any]], dict[str, Any]]:
    """Create the ``plan_next_research`` node."""
    activity = activity or NullActivityLogger()

    def plan_next_research(state: dict[str, Any]) -> dict[str, Any]:
        with _operation(activity, state, "plan_next_research", "Planning research") as op:
            states: ItemFieldStates = state["field_states"]
            context = build_research_context(
                states,
                state.get("image_urls") or (),
                state.get("configured_services") or (),
            )
            task = planner.plan_next_task(
                states,
                state["constraints"],
                context,
                state.get("total_cost", 0.0),
                state.get("iteration", 0),
                state.get("task_history") or TaskHistory(),
            )
            if task is None:
                _safe(activity.complete_operation, op, "No suitable research task found")
            else:
                _safe(
                    activity.complete_operation,
                    op,
                    f"Planned: {task.tool.value} for {', '.join(task.target_fields)}",
                    {"reasoning": task.reasoning, "estimated_cost": task.estimated_cost},
                )
            return {"current_task": task}

    return plan_next_research


def make_execute_node(
    executor: TaskExecutor,
    ledger: ConfidenceLedger,
    activity: ActivityLogger | None = None,
    repository: ResearchRepository | None = None,
) -> Callable[[dict[str, Any]], dict[str, Any]]:
    """Create the ``execute_research`` node."""
    activity = activity or NullActivityLogger()

    def execute_research(state: dict[str, Any]) -> dict[str, Any]:
        task: ResearchTask | None = state.get("current_task")
        if task is None:
            return {}

        with _operation(activity, state, "execute_research", task.reasoning or task.tool.value) as op:
            context = ExecutionContext.from_states(
                state["field_states"], tuple(state.get("image_urls") or ())
            )
            _safe(
                activity.emit_progress,
                op,
                f"Running {task.tool.value} for {', '.join(task.target_fields)}",
            )
            result = executor.execute_task(task, context)
            update = _merge_results(ledger, state, [result])
            _checkpoint_evidence(repository, state, update["evidence"])
            logger.info(
                "execute_research: %s success=%s accepted=%d cost=%.4f",
                task.tool.value,
                result.success,
                len(update["evidence"]),
                result.cost,
            )
            if result.success:
                _safe(
                    activity.complete_operation,
                    op,
                    f"{task.tool.value}: {len(update['evidence'])} field(s) updated",
                )
            else:
                _safe(activity.fail_operation, op, result.error or "task failed")
            update["current_task"] = None
            return update

    return execute_research


def make_evaluate_node(
    planner: ResearchPlanner,
    activity: ActivityLogger | None = None,
) -> Callable[[dict[str, Any]], dict[str, Any]]:
    """Create the ``evaluate_fields`` node, including stuck detection.

    A planner ``continue`` becomes ``stop_with_warnings`` when the field
    snapshot is identical to the previous evaluation and the no-progress
    counter has already reached the planner's threshold.
    """
    activity = activity or NullActivityLogger()
    max_no_progress = planner.config.max_consecutive_no_progress

    def evaluate_fields(state: dict[str, Any]) -> dict[str, Any]:
        with _operation(activity, state, "evaluate_fields", "Evaluating progress") as op:
            states: ItemFieldStates = state["field_states"]
            iteration = state.get("iteration", 0)
            evaluation = planner.evaluate_field_states(
                states, state["constraints"], state.get("total_cost", 0.0), iteration
            )

            history: TaskHistory = state.get("task_history") or TaskHistory()
            current_hash = snapshot_hash(states)
            previous_hash = history.last_snapshot_hash
            unchanged = previous_hash is not None and previous_hash == current_hash

            if (
                unchanged
                and history.consecutive_no_progress >= max_no_progress
                and evaluation.decision is Decision.CONTINUE
            ):
                logger.warning(
                    "evaluate_fields: no progress for %d iterations, stopping",
                    history.consecutive_no_progress,
                )
                evaluation = replace(
                    evaluation,
                    decision=Decision.STOP_WITH_WARNINGS,
                    reason=(
                        f"Research stuck: no field changes in {max_no_progress} "
                        f"consecutive iterations"
                    ),
                )

            if previous_hash is None:
                counter = history.consecutive_no_progress
            elif unchanged:
                counter = history.consecutive_no_progress + 1
            else:
                counter = 0
            history = replace(
                history, consecutive_no_progress=counter, last_snapshot_hash=current_hash
            )

            done = evaluation.decision is not Decision.CONTINUE
            logger.debug(
                "evaluate_fields: iteration=%d decision=%s reason=%s",
                iteration,
                evaluation.decision.value,
                evaluation.reason,
            )
            _safe(
                activity.complete_operation,
                op,
                f"{evaluation.decision.value}: {evaluation.reason}",
                {
                    "completion_score": evaluation.completion_score,
                    "budget_remaining": evaluation.budget_remaining,
                    "iterations_remaining": evaluation.iterations_remaining,
                    "fields_needing_research": list(evaluation.fields_needing_research[:5]),
                },
            )
            update: dict[str, Any] = {
                "evaluation": evaluation,
                "decision": evaluation.decision,
                "done": done,
                "iteration": iteration + 1,
                "task_history": history,
                "field_states": replace(states, iterations=iteration + 1),
            }
            if evaluation.decision is Decision.STOP_WITH_WARNINGS:
                update["warnings"] = [evaluation.reason]
            return update

    return evaluate_fields


# ===================================================================== #
#  Phase 4: persistence                                                  #
# ===================================================================== #


def make_persist_node(
    ledger: ConfidenceLedger,
    repository: ResearchRepository | None = None,
    activity: ActivityLogger | None = None,
) -> Callable[[dict[str, Any]], dict[str, Any]]:
    """Create the ``persist_results`` node.

    Without a repository the research record is still built and returned
    in the state, just not saved.
    """
    activity = activity or NullActivityLogger()

    def persist_results(state: dict[str, Any]) -> dict[str, Any]:
        with _operation(activity, state, "persist_results", "Saving research") as op:
            states: ItemFieldStates = state["field_states"]
            constraints: ResearchConstraints = state["constraints"]
            readiness = ledger.check_readiness(states, constraints.required_confidence)
            summary = ledger.get_summary(states, constraints.required_confidence)
            summary["total_cost"] = state.get("total_cost", 0.0)
            summary["warnings"] = list(state.get("warnings", []))
            record = ResearchRecord(
                item_id=state.get("item_id", ""),
                run_id=state.get("run_id", ""),
                fields=summary,
                readiness=readiness,
                decision=state.get("decision"),
            )
            if repository is not None:
                repository.save_evidence_bundle(
                    EvidenceBundle(
                        item_id=record.item_id,
                        run_id=record.run_id,
                        items=tuple(state.get("evidence", [])),
                    )
                )
                repository.save_research(record)
            else:
                logger.debug("persist_results: no repository, record not saved")

            logger.info(
                "persist_results: item=%s ready=%s score=%.2f cost=%.4f",
                record.item_id,
                readiness.ready,
                readiness.completion_score,
                summary["total_cost"],
            )
            _safe(
                activity.complete_operation,
                op,
                "Research saved",
                {"ready": readiness.ready, "missing": list(readiness.missing_fields)},
            )
            return {"readiness": readiness, "research_record": record}

    return persist_results
