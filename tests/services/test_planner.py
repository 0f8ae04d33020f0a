"""Tests for ResearchPlanner: macro decisions, tool scoring and task planning."""

from __future__ import annotations

from dataclasses import replace

import pytest

from catalog_enrichment.domain.enums import Decision, FieldStatus, ServiceKind, ToolType
from catalog_enrichment.domain.values import (
    ItemFieldStates,
    ResearchConstraints,
    ResearchContext,
    TaskHistory,
    ToolMetadata,
)
from catalog_enrichment.infrastructure.config import PlannerConfig
from catalog_enrichment.infrastructure.registry import ToolRegistry
from catalog_enrichment.services.ledger import ConfidenceLedger
from catalog_enrichment.services.planner import ResearchPlanner, build_research_context

ALL_SERVICES = frozenset(ServiceKind)


def _context(**overrides: object) -> ResearchContext:
    defaults: dict[str, object] = {
        "has_upc": True,
        "has_images": True,
        "image_count": 1,
        "configured_services": ALL_SERVICES,
    }
    defaults.update(overrides)
    return ResearchContext(**defaults)  # type: ignore[arg-type]


@pytest.fixture
def upc_states(ledger: ConfidenceLedger) -> ItemFieldStates:
    """Brand required, upc already known, colour and material recommended."""
    return ledger.initialize(
        required_fields=["brand"],
        recommended_fields=["upc", "color", "material"],
        seed_data={"upc": "012345678905"},
        item_id="item-7",
    )


def _with_field(states: ItemFieldStates, name: str, **changes: object) -> ItemFieldStates:
    fields = dict(states.fields)
    fields[name] = replace(fields[name], **changes)
    return replace(states, fields=fields)


# ===================================================================== #
#  evaluate_field_states                                                 #
# ===================================================================== #


class TestEvaluateFieldStates:

    def test_continue_while_fields_need_research(
        self, planner: ResearchPlanner, item_states: ItemFieldStates, balanced: ResearchConstraints
    ) -> None:
        evaluation = planner.evaluate_field_states(item_states, balanced, 0.0, 0)
        assert evaluation.decision is Decision.CONTINUE
        assert evaluation.budget_remaining == pytest.approx(0.50)
        assert evaluation.iterations_remaining == 10
        assert set(evaluation.fields_needing_research) == {
            "title", "brand", "condition", "color", "material"
        }

    def test_budget_exhausted(
        self, planner: ResearchPlanner, item_states: ItemFieldStates, balanced: ResearchConstraints
    ) -> None:
        evaluation = planner.evaluate_field_states(item_states, balanced, 0.4995, 2)
        assert evaluation.decision is Decision.STOP_WITH_WARNINGS
        assert evaluation.reason.startswith("Budget exhausted")
        assert evaluation.reason.endswith("3 required field(s) still unmet")

    def test_budget_checked_before_iterations(
        self, planner: ResearchPlanner, item_states: ItemFieldStates, balanced: ResearchConstraints
    ) -> None:
        evaluation = planner.evaluate_field_states(item_states, balanced, 0.5, 10)
        assert evaluation.reason.startswith("Budget exhausted")

    def test_iteration_cap(
        self, planner: ResearchPlanner, item_states: ItemFieldStates, balanced: ResearchConstraints
    ) -> None:
        evaluation = planner.evaluate_field_states(item_states, balanced, 0.0, 10)
        assert evaluation.decision is Decision.STOP_WITH_WARNINGS
        assert evaluation.reason.startswith("Maximum iterations reached (10)")

    def test_complete_when_ready(
        self, planner: ResearchPlanner, ledger: ConfidenceLedger, balanced: ResearchConstraints
    ) -> None:
        states = ledger.initialize(["brand"], seed_data={"brand": "Nike"})
        evaluation = planner.evaluate_field_states(states, balanced, 0.0, 1)
        assert evaluation.decision is Decision.COMPLETE
        assert evaluation.reason == "All required fields meet confidence threshold"

    def test_ready_item_completes_even_at_hard_stop(
        self, planner: ResearchPlanner, ledger: ConfidenceLedger, balanced: ResearchConstraints
    ) -> None:
        states = ledger.initialize(["brand"], seed_data={"brand": "Nike"})
        evaluation = planner.evaluate_field_states(states, balanced, 0.0, 10)
        assert evaluation.decision is Decision.COMPLETE
        assert "still unmet" not in evaluation.reason

    def test_nothing_left_to_research(
        self, planner: ResearchPlanner, ledger: ConfidenceLedger, balanced: ResearchConstraints
    ) -> None:
        states = ledger.initialize(["brand", "title"])
        states = ledger.mark_as_user_required(states, "brand")
        states = ledger.mark_as_user_required(states, "title")
        evaluation = planner.evaluate_field_states(states, balanced, 0.0, 0)
        assert evaluation.decision is Decision.STOP_WITH_WARNINGS
        assert evaluation.reason == (
            "No more fields can be researched; 2 required field(s) still unmet"
        )

    def test_stale_fields_are_not_researchable(
        self, planner: ResearchPlanner, ledger: ConfidenceLedger, balanced: ResearchConstraints
    ) -> None:
        states = ledger.initialize(["brand"])
        states = _with_field(states, "brand", attempts=3)
        assert planner.get_researchable_fields(states, balanced) == []
        evaluation = planner.evaluate_field_states(states, balanced, 0.0, 3)
        assert evaluation.decision is Decision.STOP_WITH_WARNINGS


# ===================================================================== #
#  Scoring and selection                                                 #
# ===================================================================== #


class TestScoreTool:

    @pytest.mark.parametrize(
        "tool,expected",
        [
            (ToolType.BARCODE_LOOKUP, 192.95),
            (ToolType.PRICE_HISTORY, 170.5),
            (ToolType.OCR, 120.75),
            (ToolType.VISION, 113.5),
            (ToolType.WEB_SEARCH_TARGETED, 105.5),
            (ToolType.WEB_SEARCH_GENERAL, 61.0),
        ],
    )
    def test_brand_scores(
        self,
        planner: ResearchPlanner,
        registry: ToolRegistry,
        upc_states: ItemFieldStates,
        tool: ToolType,
        expected: float,
    ) -> None:
        score = planner.score_tool(registry.get(tool), upc_states.fields["brand"], _context())
        assert score == pytest.approx(expected)

    def test_context_bonuses(
        self, planner: ResearchPlanner, registry: ToolRegistry, upc_states: ItemFieldStates
    ) -> None:
        brand = upc_states.fields["brand"]
        ctx = _context(has_brand=True, has_model=True, image_count=3)
        targeted = planner.score_tool(registry.get(ToolType.WEB_SEARCH_TARGETED), brand, ctx)
        vision = planner.score_tool(registry.get(ToolType.VISION), brand, ctx)
        assert targeted == pytest.approx(130.5)
        assert vision == pytest.approx(128.5)

    def test_attempt_penalty(
        self, planner: ResearchPlanner, registry: ToolRegistry, upc_states: ItemFieldStates
    ) -> None:
        brand = replace(upc_states.fields["brand"], attempts=2)
        score = planner.score_tool(registry.get(ToolType.BARCODE_LOOKUP), brand, _context())
        assert score == pytest.approx(172.95)


class TestSelectBestTool:

    def test_barcode_wins_with_upc(
        self, planner: ResearchPlanner, upc_states: ItemFieldStates
    ) -> None:
        meta, score = planner.select_best_tool(
            upc_states.fields["brand"], upc_states, _context(), 0.5
        )
        assert meta.tool is ToolType.BARCODE_LOOKUP
        assert score == pytest.approx(192.95)

    def test_unconfigured_service_is_ineligible(
        self, planner: ResearchPlanner, upc_states: ItemFieldStates
    ) -> None:
        ctx = _context(configured_services=ALL_SERVICES - {ServiceKind.IDENTIFIER_LOOKUP})
        meta, _ = planner.select_best_tool(upc_states.fields["brand"], upc_states, ctx, 0.5)
        assert meta.tool is ToolType.PRICE_HISTORY

    def test_failed_tool_is_ineligible(
        self, planner: ResearchPlanner, upc_states: ItemFieldStates
    ) -> None:
        history = TaskHistory().record_attempt(ToolType.BARCODE_LOOKUP, produced_updates=False)
        meta, _ = planner.select_best_tool(
            upc_states.fields["brand"], upc_states, _context(), 0.5, history
        )
        assert meta.tool is ToolType.PRICE_HISTORY

    def test_attempt_cap_per_tool(
        self, planner: ResearchPlanner, upc_states: ItemFieldStates
    ) -> None:
        history = TaskHistory()
        history = history.record_attempt(ToolType.BARCODE_LOOKUP, True)
        history = history.record_attempt(ToolType.BARCODE_LOOKUP, True)
        meta, _ = planner.select_best_tool(
            upc_states.fields["brand"], upc_states, _context(), 0.5, history
        )
        assert meta.tool is ToolType.PRICE_HISTORY

    def test_image_tools_need_images(
        self, planner: ResearchPlanner, upc_states: ItemFieldStates
    ) -> None:
        ctx = _context(has_images=False, image_count=0)
        meta, _ = planner.select_best_tool(upc_states.fields["color"], upc_states, ctx, 0.5)
        assert meta.tool is ToolType.WEB_SEARCH_TARGETED

    def test_required_fields_prerequisite(
        self, planner: ResearchPlanner, ledger: ConfidenceLedger
    ) -> None:
        states = ledger.initialize(["brand"])
        ctx = _context(has_upc=False, has_images=False, image_count=0)
        meta, _ = planner.select_best_tool(states.fields["brand"], states, ctx, 0.5)
        assert meta.tool is ToolType.WEB_SEARCH_GENERAL

    def test_cost_must_fit_budget(
        self, planner: ResearchPlanner, upc_states: ItemFieldStates
    ) -> None:
        ctx = _context(configured_services=ALL_SERVICES - {ServiceKind.IDENTIFIER_LOOKUP})
        assert planner.select_best_tool(upc_states.fields["brand"], upc_states, ctx, 0.004) is None

    def test_first_registered_wins_ties(self, ledger: ConfidenceLedger) -> None:
        twin = {
            "display_name": "Twin",
            "base_cost": 0.01,
            "base_time_ms": 1000,
            "can_provide": ("brand",),
            "priority": 50,
            "confidence_weight": 0.5,
        }
        registry = ToolRegistry([
            ToolMetadata(tool=ToolType.VISION, **twin),  # type: ignore[arg-type]
            ToolMetadata(tool=ToolType.OCR, **twin),  # type: ignore[arg-type]
        ])
        planner = ResearchPlanner(registry, ledger)
        states = ledger.initialize(["brand"])
        meta, _ = planner.select_best_tool(states.fields["brand"], states, ResearchContext(), 1.0)
        assert meta.tool is ToolType.VISION


# ===================================================================== #
#  plan_next_task                                                        #
# ===================================================================== #


class TestPlanNextTask:

    def test_plans_for_top_field(
        self, planner: ResearchPlanner, upc_states: ItemFieldStates, balanced: ResearchConstraints
    ) -> None:
        task = planner.plan_next_task(upc_states, balanced, _context(), 0.0, 0)
        assert task is not None
        assert task.tool is ToolType.BARCODE_LOOKUP
        assert task.target_fields == ("brand",)
        assert task.estimated_cost == pytest.approx(0.001)
        assert task.priority == pytest.approx(192.95)
        assert task.reasoning.startswith('Using Barcode Database Lookup for "Brand"')
        assert "UPC available for lookup" in task.reasoning

    def test_secondary_targets_follow_research_order(
        self, planner: ResearchPlanner, ledger: ConfidenceLedger, balanced: ResearchConstraints
    ) -> None:
        states = ledger.initialize(
            ["brand"], ["upc", "color", "material", "condition"], seed_data={"upc": "1"}
        )
        ctx = _context(configured_services=frozenset({ServiceKind.VISION}))
        task = planner.plan_next_task(states, balanced, ctx, 0.0, 0)
        assert task.tool is ToolType.VISION
        assert task.target_fields == ("brand", "color", "material", "condition")

    def test_wildcard_targets_are_capped(
        self, planner: ResearchPlanner, ledger: ConfidenceLedger, balanced: ResearchConstraints
    ) -> None:
        names = [f"custom_{i}" for i in range(8)]
        states = ledger.initialize(names)
        ctx = ResearchContext(configured_services=ALL_SERVICES)
        task = planner.plan_next_task(states, balanced, ctx, 0.0, 0)
        assert task.tool is ToolType.WEB_SEARCH_GENERAL
        assert task.target_fields == tuple(names[:5])

    def test_none_at_iteration_cap(
        self, planner: ResearchPlanner, upc_states: ItemFieldStates, balanced: ResearchConstraints
    ) -> None:
        assert planner.plan_next_task(upc_states, balanced, _context(), 0.0, 10) is None

    def test_none_when_stuck(
        self, planner: ResearchPlanner, upc_states: ItemFieldStates, balanced: ResearchConstraints
    ) -> None:
        history = TaskHistory(consecutive_no_progress=3)
        assert planner.plan_next_task(upc_states, balanced, _context(), 0.0, 1, history) is None

    def test_none_when_budget_spent(
        self, planner: ResearchPlanner, upc_states: ItemFieldStates, balanced: ResearchConstraints
    ) -> None:
        assert planner.plan_next_task(upc_states, balanced, _context(), 0.4995, 1) is None

    def test_none_when_no_tool_serves_top_field(
        self, planner: ResearchPlanner, upc_states: ItemFieldStates, balanced: ResearchConstraints
    ) -> None:
        ctx = ResearchContext(configured_services=frozenset())
        assert planner.plan_next_task(upc_states, balanced, ctx, 0.0, 0) is None

    def test_failed_status_field_is_skipped(
        self, planner: ResearchPlanner, upc_states: ItemFieldStates, balanced: ResearchConstraints
    ) -> None:
        states = _with_field(upc_states, "brand", status=FieldStatus.FAILED)
        task = planner.plan_next_task(states, balanced, _context(), 0.0, 0)
        assert task.target_fields[0] != "brand"


class TestPlanParallelTasks:

    def test_distinct_tools(
        self, planner: ResearchPlanner, upc_states: ItemFieldStates, balanced: ResearchConstraints
    ) -> None:
        tasks = planner.plan_parallel_tasks(upc_states, balanced, _context(), 0.0)
        assert [t.tool for t in tasks] == [
            ToolType.BARCODE_LOOKUP,
            ToolType.OCR,
            ToolType.VISION,
        ]
        assert tasks[1].target_fields[0] == "color"
        assert tasks[2].target_fields[0] == "material"

    def test_respects_budget(
        self, planner: ResearchPlanner, upc_states: ItemFieldStates, balanced: ResearchConstraints
    ) -> None:
        tight = replace(balanced, max_cost_usd=0.007)
        tasks = planner.plan_parallel_tasks(upc_states, tight, _context(), 0.0)
        assert [t.tool for t in tasks] == [ToolType.BARCODE_LOOKUP, ToolType.OCR]
        assert sum(t.estimated_cost for t in tasks) <= 0.007

    def test_max_tasks(
        self, planner: ResearchPlanner, upc_states: ItemFieldStates, balanced: ResearchConstraints
    ) -> None:
        tasks = planner.plan_parallel_tasks(upc_states, balanced, _context(), 0.0, max_tasks=1)
        assert len(tasks) == 1

    def test_uses_config_limit(
        self, registry: ToolRegistry, ledger: ConfidenceLedger,
        upc_states: ItemFieldStates, balanced: ResearchConstraints,
    ) -> None:
        planner = ResearchPlanner(registry, ledger, PlannerConfig(max_parallel_tasks=2))
        assert len(planner.plan_parallel_tasks(upc_states, balanced, _context(), 0.0)) == 2


class TestEstimateRemainingCost:

    def test_counts_each_tool_once(
        self, planner: ResearchPlanner, upc_states: ItemFieldStates, balanced: ResearchConstraints
    ) -> None:
        estimate = planner.estimate_remaining_cost(upc_states, balanced, _context())
        # brand -> barcode, color and material -> OCR
        assert estimate.estimated_cost == pytest.approx(0.006)
        assert estimate.estimated_iterations == 1
        assert estimate.fields_covered == ("brand", "color", "material")

    def test_nothing_to_do(
        self, planner: ResearchPlanner, ledger: ConfidenceLedger, balanced: ResearchConstraints
    ) -> None:
        states = ledger.initialize(["brand"], seed_data={"brand": "Nike"})
        estimate = planner.estimate_remaining_cost(states, balanced, _context())
        assert estimate.estimated_cost == 0.0
        assert estimate.estimated_iterations == 0


class TestBuildResearchContext:

    def test_flags_from_ledger(self, upc_states: ItemFieldStates) -> None:
        ctx = build_research_context(
            upc_states, ["a.jpg", "b.jpg"], [ServiceKind.OCR]
        )
        assert ctx.has_upc is True
        assert ctx.has_brand is False
        assert ctx.image_count == 2
        assert ctx.has_images is True
        assert ctx.is_configured(ServiceKind.OCR)
        assert not ctx.is_configured(ServiceKind.VISION)
