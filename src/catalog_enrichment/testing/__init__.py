"""Test doubles shipped with the package."""

from catalog_enrichment.testing.mock_llm import MockVisionModel

__all__ = ["MockVisionModel"]
