"""Shared fixtures for the catalog enrichment test suite."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from catalog_enrichment.domain.enums import ResearchMode, SourceType
from catalog_enrichment.domain.values import (
    FieldDataSource,
    ItemFieldStates,
    ResearchConstraints,
    ResearchContext,
)
from catalog_enrichment.infrastructure.config import PlannerConfig, get_default_constraints
from catalog_enrichment.infrastructure.registry import ToolRegistry
from catalog_enrichment.services.ledger import ConfidenceLedger
from catalog_enrichment.services.planner import ResearchPlanner

# ---------------------------------------------------------------------------
# Core services
# ---------------------------------------------------------------------------


@pytest.fixture
def ledger() -> ConfidenceLedger:
    """Ledger with a fixed clock."""
    return ConfidenceLedger(clock=lambda: 1_700_000_000.0)


@pytest.fixture
def registry() -> ToolRegistry:
    return ToolRegistry.default()


@pytest.fixture
def planner(registry: ToolRegistry, ledger: ConfidenceLedger) -> ResearchPlanner:
    return ResearchPlanner(registry, ledger, PlannerConfig())


# ---------------------------------------------------------------------------
# Constraints / context
# ---------------------------------------------------------------------------


@pytest.fixture
def balanced() -> ResearchConstraints:
    """Balanced mode: $0.50, 10 iterations, 0.70 / 0.50 thresholds."""
    return get_default_constraints(ResearchMode.BALANCED)


@pytest.fixture
def fast() -> ResearchConstraints:
    return get_default_constraints(ResearchMode.FAST)


@pytest.fixture
def empty_context() -> ResearchContext:
    return ResearchContext()


# ---------------------------------------------------------------------------
# Field states
# ---------------------------------------------------------------------------


@pytest.fixture
def item_states(ledger: ConfidenceLedger) -> ItemFieldStates:
    """Three required and two recommended fields, nothing known yet."""
    return ledger.initialize(
        required_fields=["title", "brand", "condition"],
        recommended_fields=["color", "material"],
        item_id="item-1",
    )


@pytest.fixture
def source() -> Callable[..., FieldDataSource]:
    """Factory: ``source(SourceType.OCR, 0.8, cost=0.01)``."""

    def _make(
        source_type: SourceType, confidence: float, cost: float | None = None
    ) -> FieldDataSource:
        return FieldDataSource(
            type=source_type, confidence=confidence, timestamp=1_700_000_000.0, cost=cost
        )

    return _make
