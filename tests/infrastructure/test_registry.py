"""Tests for ToolRegistry."""

from __future__ import annotations

from dataclasses import replace

import pytest

from catalog_enrichment.domain.enums import ServiceKind, ToolType
from catalog_enrichment.infrastructure.registry import DEFAULT_TOOLS, ToolRegistry


class TestToolRegistry:
    """Lookup, derivation and ordering of the tool catalogue."""

    def test_default_has_every_tool_in_order(self) -> None:
        reg = ToolRegistry.default()
        assert [m.tool for m in reg] == [
            ToolType.BARCODE_LOOKUP,
            ToolType.PRICE_HISTORY,
            ToolType.OCR,
            ToolType.VISION,
            ToolType.WEB_SEARCH_TARGETED,
            ToolType.WEB_SEARCH_GENERAL,
        ]
        assert len(reg) == 6

    def test_default_metadata(self) -> None:
        reg = ToolRegistry.default()
        barcode = reg.get(ToolType.BARCODE_LOOKUP)
        assert barcode.base_cost == pytest.approx(0.001)
        assert barcode.priority == 95
        assert barcode.requires_service is ServiceKind.IDENTIFIER_LOOKUP
        assert reg.get(ToolType.OCR).requires_images
        assert reg.get(ToolType.WEB_SEARCH_GENERAL).is_wildcard

    def test_get_missing_raises(self) -> None:
        reg = ToolRegistry.default().without(ToolType.OCR)
        with pytest.raises(KeyError, match="not registered"):
            reg.get(ToolType.OCR)

    def test_get_or_none_and_has(self) -> None:
        reg = ToolRegistry.default().without(ToolType.VISION)
        assert reg.get_or_none(ToolType.VISION) is None
        assert not reg.has(ToolType.VISION)
        assert ToolType.OCR in reg

    def test_duplicate_registration_raises(self) -> None:
        with pytest.raises(ValueError, match="registered twice"):
            ToolRegistry([DEFAULT_TOOLS[0], DEFAULT_TOOLS[0]])

    def test_tools_for_field_includes_wildcard(self) -> None:
        reg = ToolRegistry.default()
        tools = [m.tool for m in reg.tools_for_field("condition")]
        assert tools == [ToolType.VISION, ToolType.WEB_SEARCH_GENERAL]

    def test_with_tool_replaces_without_mutating(self) -> None:
        reg = ToolRegistry.default()
        cheaper = replace(reg.get(ToolType.WEB_SEARCH_GENERAL), base_cost=0.01)
        derived = reg.with_tool(cheaper)
        assert derived.get(ToolType.WEB_SEARCH_GENERAL).base_cost == pytest.approx(0.01)
        assert reg.get(ToolType.WEB_SEARCH_GENERAL).base_cost == pytest.approx(0.03)

    def test_repr_lists_tools(self) -> None:
        assert "barcode_lookup" in repr(ToolRegistry.default())
