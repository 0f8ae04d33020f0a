"""Domain exceptions for the catalog enrichment engine.

All domain-specific exceptions inherit from ``EnrichmentError`` so callers
can catch the full family with a single ``except`` clause when needed.

Data-quality conditions (unknown fields, empty candidates) are never raised;
the ledger logs and ignores them.  Only missing collaborators, tool failures
at the executor boundary and unrecoverable salvage surface as exceptions.
"""

from __future__ import annotations

from typing import Any


class EnrichmentError(Exception):
    """Base exception for all catalog enrichment errors."""

    def __init__(self, message: str = "", details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = details or {}


class ConfigurationError(EnrichmentError):
    """Raised when a required collaborator is missing.

    Fatal: thrown immediately and never retried.
    """

    def __init__(
        self,
        message: str = "Required collaborator is not configured",
        collaborator: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.collaborator = collaborator


class ToolExecutionError(EnrichmentError):
    """Raised by a tool routine when its backing service fails."""

    def __init__(
        self,
        message: str = "Tool execution failed",
        tool: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.tool = tool


class RetryableToolError(ToolExecutionError):
    """A transient tool failure (rate limiting, network blip).

    The task executor retries these with exponential backoff; every other
    exception fails the task on the first attempt.
    """


class SalvageError(EnrichmentError):
    """Raised when an aborted run left nothing worth preserving."""

    def __init__(
        self,
        message: str = "Nothing to salvage",
        item_id: str = "",
        run_id: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.item_id = item_id
        self.run_id = run_id
