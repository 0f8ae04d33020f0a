"""Fluent builder for assembling a compiled research graph.

``ResearchGraphBuilder`` wires the ledger, planner, executor and optional
persistence into ``build_research_graph()`` and prepares the matching
initial state::

    app, initial = (
        ResearchGraphBuilder("item-42")
        .with_services(services)
        .with_required_fields("title", "brand", "condition")
        .with_recommended_fields("color", "material")
        .with_seed_data(upc="012345678905")
        .with_images("https://example.com/front.jpg")
        .with_mode("fast")
        .build()
    )
    final = run_research(app, initial)

``run_research`` invokes the graph with the configured recursion limit and
falls back to salvage recovery when the run terminates abnormally.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from typing import Any

from langgraph.errors import GraphRecursionError

from catalog_enrichment.domain.enums import ResearchMode
from catalog_enrichment.domain.exceptions import ConfigurationError
from catalog_enrichment.domain.fields import FieldRequirement
from catalog_enrichment.domain.values import ResearchConstraints
from catalog_enrichment.graph.graph import build_research_graph
from catalog_enrichment.infrastructure.config import (
    ExecutorConfig,
    LoopConfig,
    PlannerConfig,
    get_default_constraints,
)
from catalog_enrichment.infrastructure.registry import ToolRegistry
from catalog_enrichment.services.activity import ActivityLogger
from catalog_enrichment.services.collaborators import ResearchServices
from catalog_enrichment.services.executor import TaskExecutor
from catalog_enrichment.services.ledger import ConfidenceLedger
from catalog_enrichment.services.planner import ResearchPlanner
from catalog_enrichment.services.repository import ResearchRepository
from catalog_enrichment.services.salvage import SalvageRecovery

logger = logging.getLogger(__name__)


class ResearchGraphBuilder:
    """Fluent builder for one item's research run."""

    def __init__(self, item_id: str) -> None:
        self._item_id = item_id
        self._run_id: str | None = None
        self._services: ResearchServices | None = None
        self._registry: ToolRegistry | None = None
        self._ledger: ConfidenceLedger | None = None
        self._required: list[str | FieldRequirement] = []
        self._recommended: list[str | FieldRequirement] = []
        self._seed: dict[str, Any] = {}
        self._images: list[str] = []
        self._marketplaces: tuple[str, ...] = ("ebay",)
        self._constraints: ResearchConstraints | None = None
        self._executor_config: ExecutorConfig | None = None
        self._planner_config: PlannerConfig | None = None
        self._loop_config = LoopConfig()
        self._repository: ResearchRepository | None = None
        self._activity: ActivityLogger | None = None
        self._checkpointer: Any | None = None

    # -- collaborators --------------------------------------------------------

    def with_services(self, services: ResearchServices) -> ResearchGraphBuilder:
        """Set the external lookup, OCR, vision and search services."""
        self._services = services
        return self

    def with_registry(self, registry: ToolRegistry) -> ResearchGraphBuilder:
        self._registry = registry
        return self

    def with_ledger(self, ledger: ConfidenceLedger) -> ResearchGraphBuilder:
        self._ledger = ledger
        return self

    def with_repository(self, repository: ResearchRepository) -> ResearchGraphBuilder:
        """Persist evidence checkpoints and the final research record."""
        self._repository = repository
        return self

    def with_activity_logger(self, activity: ActivityLogger) -> ResearchGraphBuilder:
        self._activity = activity
        return self

    def with_checkpointer(self, checkpointer: Any) -> ResearchGraphBuilder:
        self._checkpointer = checkpointer
        return self

    # -- item -----------------------------------------------------------------

    def with_run_id(self, run_id: str) -> ResearchGraphBuilder:
        self._run_id = run_id
        return self

    def with_required_fields(
        self, *fields: str | FieldRequirement
    ) -> ResearchGraphBuilder:
        self._required.extend(fields)
        return self

    def with_recommended_fields(
        self, *fields: str | FieldRequirement
    ) -> ResearchGraphBuilder:
        self._recommended.extend(fields)
        return self

    def with_seed_data(
        self, data: Mapping[str, Any] | None = None, **values: Any
    ) -> ResearchGraphBuilder:
        """Existing catalog values, trusted as user hints."""
        if data:
            self._seed.update(data)
        self._seed.update(values)
        return self

    def with_images(self, *urls: str) -> ResearchGraphBuilder:
        self._images.extend(urls)
        return self

    def with_target_marketplaces(self, *marketplaces: str) -> ResearchGraphBuilder:
        self._marketplaces = tuple(marketplaces)
        return self

    # -- limits ---------------------------------------------------------------

    def with_mode(
        self, mode: ResearchMode | str, **overrides: Any
    ) -> ResearchGraphBuilder:
        """Use the budget and thresholds of *mode*, optionally overridden."""
        self._constraints = get_default_constraints(mode, **overrides)
        return self

    def with_constraints(self, constraints: ResearchConstraints) -> ResearchGraphBuilder:
        self._constraints = constraints
        return self

    def with_executor_config(self, config: ExecutorConfig) -> ResearchGraphBuilder:
        self._executor_config = config
        return self

    def with_planner_config(self, config: PlannerConfig) -> ResearchGraphBuilder:
        self._planner_config = config
        return self

    def with_loop_config(self, config: LoopConfig) -> ResearchGraphBuilder:
        self._loop_config = config
        return self

    # -- build ----------------------------------------------------------------

    def build(self) -> tuple[Any, dict[str, Any]]:
        """Validate and build the compiled graph + initial state.

        Returns
        -------
        tuple[CompiledStateGraph, dict]
            The compiled graph and the initial state dict.

        Raises
        ------
        ConfigurationError
            If no research services were provided.
        ValueError
            If no fields to research were specified.
        """
        if self._services is None:
            raise ConfigurationError(
                "ResearchGraphBuilder requires research services. "
                "Call .with_services(...) before .build().",
                collaborator="services",
            )
        if not self._required and not self._recommended:
            raise ValueError(
                "ResearchGraphBuilder requires at least one field. "
                "Call .with_required_fields(...) or .with_recommended_fields(...)."
            )

        for config in (self._executor_config, self._planner_config, self._loop_config):
            if config is not None:
                config.validate()

        ledger = self._ledger or ConfidenceLedger()
        planner = ResearchPlanner(
            self._registry or ToolRegistry.default(), ledger, self._planner_config
        )
        executor = TaskExecutor(self._services, self._executor_config)

        app = build_research_graph(
            ledger,
            planner,
            executor,
            repository=self._repository,
            activity=self._activity,
            loop_config=self._loop_config,
            checkpointer=self._checkpointer,
        )

        initial_state: dict[str, Any] = {
            "item_id": self._item_id,
            "run_id": self._run_id or uuid.uuid4().hex,
            "required_fields": list(self._required),
            "recommended_fields": list(self._recommended),
            "seed_data": dict(self._seed),
            "target_marketplaces": list(self._marketplaces),
            "image_urls": list(self._images),
            "constraints": self._constraints or self._loop_config.constraints(),
            "task_results": [],
            "evidence": [],
            "warnings": [],
        }
        logger.debug(
            "ResearchGraphBuilder: built run %s for item %s",
            initial_state["run_id"],
            self._item_id,
        )
        return app, initial_state

    @property
    def recursion_limit(self) -> int:
        return self._loop_config.recursion_limit

    def __repr__(self) -> str:
        parts = [f"item_id={self._item_id!r}"]
        parts.append(f"required={len(self._required)}")
        parts.append(f"recommended={len(self._recommended)}")
        if self._constraints is not None:
            parts.append(f"mode={self._constraints.mode.value}")
        return f"ResearchGraphBuilder({', '.join(parts)})"


def run_research(
    app: Any,
    initial_state: dict[str, Any],
    repository: ResearchRepository | None = None,
    recursion_limit: int = 100,
    config: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Invoke *app* and return its final state.

    When the graph hits its recursion limit and a *repository* is given,
    the persisted research or evidence is salvaged instead and returned
    as ``{"item_id", "run_id", "salvage", "warnings"}``.  Without a
    repository the ``GraphRecursionError`` propagates.  ``SalvageError``
    propagates when there is nothing to salvage.
    """
    run_config: dict[str, Any] = dict(config or {})
    run_config.setdefault("recursion_limit", recursion_limit)
    try:
        return app.invoke(initial_state, config=run_config)
    except GraphRecursionError as exc:
        if repository is None:
            raise
        item_id = initial_state.get("item_id", "")
        run_id = initial_state.get("run_id", "")
        logger.error(
            "run_research: item=%s run=%s hit recursion limit %d, salvaging",
            item_id,
            run_id,
            run_config["recursion_limit"],
        )
        result = SalvageRecovery(repository).salvage(item_id, run_id)
        return {
            "item_id": item_id,
            "run_id": run_id,
            "salvage": result,
            "warnings": [f"Run aborted: {exc}", *result.warnings],
        }
