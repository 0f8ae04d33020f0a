"""Tests for configuration dataclasses and mode defaults."""

from __future__ import annotations

import json

import pytest

from catalog_enrichment.domain.enums import ResearchMode
from catalog_enrichment.infrastructure.config import (
    ExecutorConfig,
    LoopConfig,
    PlannerConfig,
    get_default_constraints,
    load_config_from_json,
)


class TestModeDefaults:

    @pytest.mark.parametrize(
        "mode,cost,iterations,required,recommended",
        [
            (ResearchMode.FAST, 0.10, 3, 0.60, 0.40),
            (ResearchMode.BALANCED, 0.50, 10, 0.70, 0.50),
            (ResearchMode.THOROUGH, 1.00, 20, 0.85, 0.65),
        ],
    )
    def test_mode_table(
        self,
        mode: ResearchMode,
        cost: float,
        iterations: int,
        required: float,
        recommended: float,
    ) -> None:
        c = get_default_constraints(mode)
        assert c.mode is mode
        assert c.max_cost_usd == pytest.approx(cost)
        assert c.max_iterations == iterations
        assert c.required_confidence == pytest.approx(required)
        assert c.recommended_confidence == pytest.approx(recommended)

    def test_accepts_string_mode(self) -> None:
        assert get_default_constraints("fast").mode is ResearchMode.FAST

    def test_overrides(self) -> None:
        c = get_default_constraints("balanced", max_cost_usd=0.05)
        assert c.max_cost_usd == pytest.approx(0.05)
        assert c.max_iterations == 10

    def test_unknown_mode(self) -> None:
        with pytest.raises(ValueError):
            get_default_constraints("reckless")


class TestExecutorConfig:

    def test_defaults_valid(self) -> None:
        cfg = ExecutorConfig()
        cfg.validate()
        assert cfg.failure_cost_ratio == 0.5

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_retries": -1},
            {"base_retry_delay": -0.5},
            {"failure_cost_ratio": 1.5},
            {"parallel_workers": 0},
            {"phase_timeout": 0},
        ],
    )
    def test_invalid(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            ExecutorConfig(**kwargs).validate()

    def test_from_dict_ignores_unknown_keys(self) -> None:
        cfg = ExecutorConfig.from_dict({"max_retries": 4, "colour": "blue"})
        assert cfg.max_retries == 4


class TestPlannerConfig:

    def test_defaults(self) -> None:
        cfg = PlannerConfig()
        assert cfg.max_attempts_per_tool == 2
        assert cfg.max_consecutive_no_progress == 3
        assert cfg.max_wildcard_fields == 5

    def test_invalid(self) -> None:
        with pytest.raises(ValueError, match="max_attempts_per_tool"):
            PlannerConfig(max_attempts_per_tool=0).validate()

    def test_round_trip(self) -> None:
        cfg = PlannerConfig(stale_attempts=5)
        assert PlannerConfig.from_dict(cfg.to_dict()) == cfg


class TestLoopConfig:

    def test_constraints_uses_mode_and_overrides(self) -> None:
        cfg = LoopConfig(mode="thorough", constraint_overrides={"max_iterations": 7})
        c = cfg.constraints()
        assert c.mode is ResearchMode.THOROUGH
        assert c.max_iterations == 7

    def test_invalid_mode(self) -> None:
        with pytest.raises(ValueError, match="mode"):
            LoopConfig(mode="reckless").validate()


class TestLoadConfigFromJson:

    def test_sections_are_typed(self) -> None:
        raw = json.dumps(
            {
                "executor": {"max_retries": 1},
                "planner": {"max_parallel_tasks": 2},
                "loop": {"mode": "fast"},
                "extra": {"kept": True},
            }
        )
        result = load_config_from_json(raw)
        assert isinstance(result["executor"], ExecutorConfig)
        assert result["executor"].max_retries == 1
        assert result["planner"].max_parallel_tasks == 2
        assert result["loop"].constraints().mode is ResearchMode.FAST
        assert result["extra"] == {"kept": True}

    def test_top_level_must_be_object(self) -> None:
        with pytest.raises(ValueError, match="object"):
            load_config_from_json("[1, 2]")

    def test_invalid_section_values_raise(self) -> None:
        with pytest.raises(ValueError):
            load_config_from_json('{"executor": {"parallel_workers": 0}}')
