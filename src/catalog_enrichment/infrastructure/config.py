"""Configuration dataclasses for the catalog enrichment engine.

Each config is a plain ``dataclass`` with a ``validate()`` method that raises
``ValueError`` on invalid combinations.  Configs are **frozen** so a single
instance can be shared by every node of a compiled graph.

``get_default_constraints()`` holds the per-mode research budgets.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any

from catalog_enrichment.domain.enums import ResearchMode
from catalog_enrichment.domain.values import ResearchConstraints

# ===================================================================== #
#  Research mode defaults                                                #
# ===================================================================== #

_MODE_DEFAULTS: dict[ResearchMode, dict[str, Any]] = {
    ResearchMode.FAST: {
        "max_cost_usd": 0.10,
        "max_iterations": 3,
        "required_confidence": 0.60,
        "recommended_confidence": 0.40,
    },
    ResearchMode.BALANCED: {
        "max_cost_usd": 0.50,
        "max_iterations": 10,
        "required_confidence": 0.70,
        "recommended_confidence": 0.50,
    },
    ResearchMode.THOROUGH: {
        "max_cost_usd": 1.00,
        "max_iterations": 20,
        "required_confidence": 0.85,
        "recommended_confidence": 0.65,
    },
}


def get_default_constraints(
    mode: ResearchMode | str = ResearchMode.BALANCED,
    **overrides: Any,
) -> ResearchConstraints:
    """Return the ``ResearchConstraints`` for *mode*, with optional overrides.

    Parameters
    ----------
    mode:
        A ``ResearchMode`` or its string value.
    **overrides:
        Any ``ResearchConstraints`` field to replace (e.g. ``max_cost_usd``).
    """
    mode = ResearchMode(mode)
    constraints = ResearchConstraints(mode=mode, **_MODE_DEFAULTS[mode])
    if overrides:
        constraints = replace(constraints, **overrides)
    return constraints


# ===================================================================== #
#  Executor Configuration                                                #
# ===================================================================== #

@dataclass(frozen=True)
class ExecutorConfig:
    """Parameters of the task executor boundary.

    Attributes
    ----------
    max_retries:
        Extra attempts granted to a task that fails with a retryable error.
    base_retry_delay:
        First backoff delay in seconds; doubles on every retry.
    failure_cost_ratio:
        Share of the estimated cost charged when a task fails.
    parallel_workers:
        Thread pool size for the parallel extraction and lookup phases.
    phase_timeout:
        Seconds to wait for a parallel phase before abandoning stragglers.
        An abandoned task is charged its full estimated cost.
    """

    max_retries: int = 2
    base_retry_delay: float = 1.0
    failure_cost_ratio: float = 0.5
    parallel_workers: int = 2
    phase_timeout: float = 60.0

    def validate(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_retry_delay < 0:
            raise ValueError(
                f"base_retry_delay must be >= 0, got {self.base_retry_delay}"
            )
        if not (0.0 <= self.failure_cost_ratio <= 1.0):
            raise ValueError(
                f"failure_cost_ratio must be in [0, 1], got {self.failure_cost_ratio}"
            )
        if self.parallel_workers < 1:
            raise ValueError(
                f"parallel_workers must be >= 1, got {self.parallel_workers}"
            )
        if self.phase_timeout <= 0:
            raise ValueError(f"phase_timeout must be > 0, got {self.phase_timeout}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutorConfig:
        valid_keys = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  Planner Configuration                                                 #
# ===================================================================== #

@dataclass(frozen=True)
class PlannerConfig:
    """Limits applied by the research planner and the stuck detector.

    Attributes
    ----------
    max_attempts_per_tool:
        A tool is no longer scheduled once it has run this many times.
    max_consecutive_no_progress:
        Evaluations without any field change before the run is declared stuck.
    max_wildcard_fields:
        Cap on the target fields handed to a wildcard tool.
    max_parallel_tasks:
        Upper bound for ``plan_parallel_tasks``.
    stale_attempts:
        Fields tried this often while still under ``stale_confidence`` are
        no longer researched.
    stale_confidence:
        See ``stale_attempts``.
    """

    max_attempts_per_tool: int = 2
    max_consecutive_no_progress: int = 3
    max_wildcard_fields: int = 5
    max_parallel_tasks: int = 3
    stale_attempts: int = 3
    stale_confidence: float = 0.3

    def validate(self) -> None:
        for name in (
            "max_attempts_per_tool",
            "max_consecutive_no_progress",
            "max_wildcard_fields",
            "max_parallel_tasks",
            "stale_attempts",
        ):
            value = getattr(self, name)
            if value < 1:
                raise ValueError(f"{name} must be >= 1, got {value}")
        if not (0.0 <= self.stale_confidence <= 1.0):
            raise ValueError(
                f"stale_confidence must be in [0, 1], got {self.stale_confidence}"
            )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlannerConfig:
        valid_keys = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  Loop Configuration                                                    #
# ===================================================================== #

@dataclass(frozen=True)
class LoopConfig:
    """Parameters of the research graph as a whole.

    Attributes
    ----------
    mode:
        Default research mode when the caller supplies no constraints.
    recursion_limit:
        LangGraph recursion limit passed to ``invoke``; a run hitting it is
        an abnormal termination handled by salvage recovery.
    constraint_overrides:
        Per-field overrides merged into the mode defaults.
    """

    mode: str = "balanced"
    recursion_limit: int = 100
    constraint_overrides: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.constraint_overrides is None:
            object.__setattr__(self, "constraint_overrides", {})

    def validate(self) -> None:
        valid_modes = {m.value for m in ResearchMode}
        if self.mode not in valid_modes:
            raise ValueError(
                f"mode must be one of {sorted(valid_modes)}, got '{self.mode}'"
            )
        if self.recursion_limit < 1:
            raise ValueError(
                f"recursion_limit must be >= 1, got {self.recursion_limit}"
            )
        self.constraints()

    def constraints(self) -> ResearchConstraints:
        """Build the ``ResearchConstraints`` this loop config describes."""
        return get_default_constraints(self.mode, **self.constraint_overrides)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoopConfig:
        valid_keys = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  Unified config loader                                                 #
# ===================================================================== #

_CONFIG_MAP: dict[str, type] = {
    "executor": ExecutorConfig,
    "planner": PlannerConfig,
    "loop": LoopConfig,
}


def load_config_from_json(json_str: str) -> dict[str, Any]:
    """Parse a JSON string into a dict of typed config objects.

    The JSON is expected to be an object whose top-level keys correspond to
    config section names (``executor``, ``planner``, ``loop``).  Unknown
    sections are preserved as raw dicts.
    """
    raw = json.loads(json_str)
    if not isinstance(raw, dict):
        raise ValueError("Top-level JSON must be an object")
    result: dict[str, Any] = {}
    for section, data in raw.items():
        cls = _CONFIG_MAP.get(section)
        if cls is not None and isinstance(data, dict):
            result[section] = cls.from_dict(data)
        else:
            result[section] = data
    return result
