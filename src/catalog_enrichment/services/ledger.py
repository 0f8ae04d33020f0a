"""Confidence ledger: the merge function of record for field research.

The ledger owns per-field value, confidence, attempts and status.  Every
operation takes an ``ItemFieldStates`` and returns a *new* instance; inputs
are never modified.

Two rules govern an update:

* **Confidence** is the weighted average of the self-reported confidence of
  every source ever attached to the field, weighted by a fixed per-source
  trust constant (``SOURCE_WEIGHTS``).  Early low-confidence sources keep
  pulling the average down until enough high-trust sources outweigh them.
* **Value** is replaced only when the field is empty, or when the new
  source's weighted confidence beats the best weighted confidence on record
  by more than ``REPLACEMENT_MARGIN``.

The two rules are independent: confidence can rise while the value stays,
and the value can change while the average barely moves.

Classes
-------
ConfidenceLedger
    Initialization, merging, readiness and research-ordering queries.
MarketplaceMapping
    Result of mapping a value onto a marketplace's allowed values.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any

import numpy as np

from catalog_enrichment.domain.enums import FieldDataType, FieldStatus, SourceType
from catalog_enrichment.domain.fields import (
    CANONICAL_FIELDS,
    FieldRequirement,
    canonical_field_name,
)
from catalog_enrichment.domain.values import (
    FieldConfidence,
    FieldDataSource,
    FieldState,
    FieldUpdate,
    ItemFieldStates,
    ReadinessReport,
)

logger = logging.getLogger(__name__)

SOURCE_WEIGHTS: Mapping[SourceType, float] = MappingProxyType({
    SourceType.USER_INPUT: 1.0,
    SourceType.BARCODE_LOOKUP: 0.95,
    SourceType.PRICE_HISTORY: 0.90,
    SourceType.MARKETPLACE_API: 0.90,
    SourceType.AMAZON_CATALOG: 0.88,
    SourceType.USER_HINT: 0.85,
    SourceType.OCR: 0.75,
    SourceType.VISION: 0.70,
    SourceType.WEB_SEARCH: 0.65,
    SourceType.UNKNOWN: 0.5,
})

REPLACEMENT_MARGIN = 1.1
USER_HINT_CONFIDENCE = 0.85
DEFAULT_REQUIRED_THRESHOLD = 0.70
DEFAULT_RECOMMENDED_THRESHOLD = 0.50
REQUIRED_SHARE = 0.7
RECOMMENDED_SHARE = 0.3


def source_weight(source_type: SourceType) -> float:
    return SOURCE_WEIGHTS.get(source_type, SOURCE_WEIGHTS[SourceType.UNKNOWN])


def weighted_confidence(source: FieldDataSource) -> float:
    """Self-reported confidence discounted by the source's trust weight."""
    return source.confidence * source_weight(source.type)


def is_empty_value(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def research_order_key(state: FieldState) -> tuple[int, float, int]:
    """Sort key: required first, then lowest confidence, then fewest attempts."""
    return (0 if state.required else 1, state.confidence.value, state.attempts)


@dataclass(frozen=True)
class MarketplaceMapping:
    mapped_value: Any
    confidence: float
    valid: bool


class ConfidenceLedger:
    """Per-field confidence bookkeeping.

    Parameters
    ----------
    clock:
        Returns the current time as epoch seconds; used for
        ``last_updated`` and seed-source timestamps.
    """

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.time

    # ------------------------------------------------------------------ #
    #  Initialization                                                      #
    # ------------------------------------------------------------------ #

    def initialize(
        self,
        required_fields: Iterable[str | FieldRequirement],
        recommended_fields: Iterable[str | FieldRequirement] = (),
        seed_data: Mapping[str, Any] | None = None,
        target_marketplaces: Sequence[str] = ("ebay",),
        item_id: str = "",
    ) -> ItemFieldStates:
        """Create empty field states, pre-populated from existing catalog data.

        Seed values are attached as a ``user_hint`` source at confidence
        0.85 and marked complete.  Seed keys that match no tracked field
        are ignored.
        """
        marketplaces = tuple(target_marketplaces)
        fields: dict[str, FieldState] = {}

        for req in required_fields:
            req = _as_requirement(req)
            name = canonical_field_name(req.name)
            if name in fields:
                existing = fields[name]
                fields[name] = replace(
                    existing,
                    allowed_values=req.allowed_values or existing.allowed_values,
                )
                continue
            fields[name] = _new_field(name, req, required=True, required_by=marketplaces)

        for rec in recommended_fields:
            rec = _as_requirement(rec)
            name = canonical_field_name(rec.name)
            if name not in fields:
                fields[name] = _new_field(name, rec, required=False, required_by=())

        now = self._clock()
        for key, value in (seed_data or {}).items():
            name = canonical_field_name(key)
            if name not in fields or is_empty_value(value):
                continue
            hint = FieldDataSource(
                type=SourceType.USER_HINT,
                confidence=USER_HINT_CONFIDENCE,
                timestamp=now,
            )
            fields[name] = replace(
                fields[name],
                value=value,
                confidence=FieldConfidence(
                    value=USER_HINT_CONFIDENCE, sources=(hint,), last_updated=now
                ),
                status=FieldStatus.COMPLETE,
            )

        states = ItemFieldStates(item_id=item_id, target_marketplaces=marketplaces)
        logger.debug(
            "ConfidenceLedger.initialize: item=%s fields=%d seeded=%d",
            item_id,
            len(fields),
            sum(1 for f in fields.values() if f.has_value),
        )
        return self._with_fields(states, fields, DEFAULT_REQUIRED_THRESHOLD)

    # ------------------------------------------------------------------ #
    #  Merging                                                             #
    # ------------------------------------------------------------------ #

    def merge_confidence(
        self, existing: FieldConfidence, source: FieldDataSource
    ) -> FieldConfidence:
        """Append *source* and recompute the weighted average over all sources."""
        sources = existing.sources + (source,)
        confidences = np.array([s.confidence for s in sources], dtype=float)
        weights = np.array([source_weight(s.type) for s in sources], dtype=float)
        total = weights.sum()
        merged = float(np.dot(confidences, weights) / total) if total > 0 else 0.0
        return FieldConfidence(
            value=min(1.0, max(0.0, merged)),
            sources=sources,
            last_updated=self._clock(),
        )

    def should_replace_value(self, state: FieldState, source: FieldDataSource) -> bool:
        """True if the field is empty or *source* clears the best on record by 10%."""
        if not state.has_value:
            return True
        best = max(
            (weighted_confidence(s) for s in state.confidence.sources), default=0.0
        )
        return weighted_confidence(source) > best * REPLACEMENT_MARGIN

    def update_field(
        self,
        states: ItemFieldStates,
        field_name: str,
        candidate_value: Any,
        source: FieldDataSource,
        threshold: float = DEFAULT_REQUIRED_THRESHOLD,
    ) -> ItemFieldStates:
        """Merge one candidate value into the ledger.

        Unknown fields and empty candidates leave *states* unchanged.
        """
        state = states.fields.get(field_name)
        if state is None:
            logger.warning("ConfidenceLedger: update for unknown field '%s' ignored", field_name)
            return states
        if is_empty_value(candidate_value):
            return states

        confidence = self.merge_confidence(state.confidence, source)
        replace_value = self.should_replace_value(state, source)
        if not replace_value:
            logger.debug(
                "ConfidenceLedger: kept value of '%s' (%s %.2f not > best x %.1f)",
                field_name,
                source.type.value,
                weighted_confidence(source),
                REPLACEMENT_MARGIN,
            )

        updated = replace(
            state,
            value=candidate_value if replace_value else state.value,
            confidence=confidence,
            attempts=state.attempts + 1,
            status=_status_for(confidence.value, threshold),
        )
        fields = dict(states.fields)
        fields[field_name] = updated
        return self._with_fields(
            states, fields, threshold, cost=states.total_cost + (source.cost or 0.0)
        )

    def update_multiple_fields(
        self,
        states: ItemFieldStates,
        updates: Iterable[FieldUpdate],
        threshold: float = DEFAULT_REQUIRED_THRESHOLD,
    ) -> ItemFieldStates:
        """Apply *updates* in order, each against the result of the previous one."""
        for update in updates:
            states = self.update_field(
                states, update.field_name, update.value, update.source, threshold
            )
        return states

    # ------------------------------------------------------------------ #
    #  Escape hatches                                                      #
    # ------------------------------------------------------------------ #

    def mark_as_user_required(self, states: ItemFieldStates, field_name: str) -> ItemFieldStates:
        """Take *field_name* out of automated research."""
        state = states.fields.get(field_name)
        if state is None:
            logger.warning("ConfidenceLedger: cannot mark unknown field '%s'", field_name)
            return states
        fields = dict(states.fields)
        fields[field_name] = replace(state, status=FieldStatus.USER_REQUIRED)
        return replace(states, fields=fields)

    def set_user_value(
        self,
        states: ItemFieldStates,
        field_name: str,
        value: Any,
        threshold: float = DEFAULT_REQUIRED_THRESHOLD,
    ) -> ItemFieldStates:
        """Inject a user-provided value that always replaces the current one.

        The ``user_input`` source joins the confidence average like any
        other source.
        """
        state = states.fields.get(field_name)
        if state is None:
            logger.warning("ConfidenceLedger: user value for unknown field '%s' ignored", field_name)
            return states
        if is_empty_value(value):
            return states

        source = FieldDataSource(
            type=SourceType.USER_INPUT, confidence=1.0, timestamp=self._clock()
        )
        confidence = self.merge_confidence(state.confidence, source)
        fields = dict(states.fields)
        fields[field_name] = replace(
            state,
            value=value,
            confidence=confidence,
            attempts=state.attempts + 1,
            status=_status_for(confidence.value, threshold),
        )
        return self._with_fields(states, fields, threshold)

    # ------------------------------------------------------------------ #
    #  Queries                                                             #
    # ------------------------------------------------------------------ #

    def check_readiness(
        self, states: ItemFieldStates, threshold: float = DEFAULT_REQUIRED_THRESHOLD
    ) -> ReadinessReport:
        """Ready iff every required field has a value at or above *threshold*."""
        missing: list[str] = []
        low: list[tuple[str, float]] = []
        complete = 0
        total = 0
        for name, state in states.fields.items():
            if not state.required:
                continue
            total += 1
            if not state.has_value:
                missing.append(name)
            elif state.confidence.value < threshold:
                low.append((name, state.confidence.value))
            else:
                complete += 1

        return ReadinessReport(
            ready=not missing and not low,
            completion_score=complete / total if total else 1.0,
            missing_fields=tuple(missing),
            low_confidence_fields=tuple(low),
            required_complete=complete,
            required_total=total,
        )

    def get_fields_needing_research(
        self,
        states: ItemFieldStates,
        required_threshold: float = DEFAULT_REQUIRED_THRESHOLD,
        recommended_threshold: float = DEFAULT_RECOMMENDED_THRESHOLD,
    ) -> list[FieldState]:
        """Fields that are empty or under their class threshold.

        Failed and user-required fields are excluded.  Ordered required
        first, then lowest confidence, then fewest attempts.
        """
        needing: list[FieldState] = []
        for state in states.fields.values():
            if state.status in (FieldStatus.FAILED, FieldStatus.USER_REQUIRED):
                continue
            threshold = required_threshold if state.required else recommended_threshold
            if not state.has_value or state.confidence.value < threshold:
                needing.append(state)
        return sorted(needing, key=research_order_key)

    def calculate_completion_score(
        self,
        states: ItemFieldStates,
        required_threshold: float = DEFAULT_REQUIRED_THRESHOLD,
    ) -> float:
        return _metrics(states.fields, required_threshold)["completion_score"]

    def get_summary(
        self, states: ItemFieldStates, required_threshold: float = DEFAULT_REQUIRED_THRESHOLD
    ) -> dict[str, Any]:
        """Plain-dict summary of every field plus the aggregate metrics."""
        complete = 0
        user_required: list[str] = []
        missing: list[FieldState] = []
        needing: list[FieldState] = []
        for name, state in states.fields.items():
            if state.status is FieldStatus.COMPLETE:
                complete += 1
                continue
            if state.status is FieldStatus.USER_REQUIRED:
                user_required.append(name)
            if not state.has_value:
                missing.append(state)
            if state.status not in (FieldStatus.USER_REQUIRED, FieldStatus.FAILED):
                needing.append(state)

        missing.sort(key=lambda s: not s.required)
        needing.sort(key=lambda s: not s.required)
        metrics = _metrics(states.fields, required_threshold)

        return {
            "item_id": states.item_id,
            "total_fields": len(states.fields),
            "complete_fields": complete,
            "incomplete_fields": len(states.fields) - complete,
            "user_required_fields": user_required,
            "top_missing_fields": [s.name for s in missing[:5]],
            "fields_needing_research": [
                {"name": s.name, "required": s.required} for s in needing
            ],
            "fields": {
                name: {
                    "value": state.value,
                    "confidence": state.confidence.value,
                    "status": state.status.value,
                    "attempts": state.attempts,
                    "required": state.required,
                    "sources": [s.type.value for s in state.confidence.sources],
                }
                for name, state in states.fields.items()
            },
            "total_cost": states.total_cost,
            "iterations": states.iterations,
            **metrics,
        }

    def map_to_marketplace(
        self, value: Any, allowed_values: Sequence[str] | None = None
    ) -> MarketplaceMapping:
        """Map *value* onto a marketplace's allowed values.

        Exact (case-insensitive) matches score 1.0, containment 0.8, and
        word overlap ``0.5 + 0.3 * overlap ratio``.  Without allowed
        values the value passes through unchanged.
        """
        if value is None:
            return MarketplaceMapping(None, 0.0, False)
        if not allowed_values or not isinstance(value, str):
            return MarketplaceMapping(value, 1.0, True)

        needle = value.lower().strip()
        for allowed in allowed_values:
            if allowed.lower() == needle:
                return MarketplaceMapping(allowed, 1.0, True)
        for allowed in allowed_values:
            candidate = allowed.lower()
            if needle in candidate or candidate in needle:
                return MarketplaceMapping(allowed, 0.8, True)

        words = set(needle.split())
        best, best_overlap = None, 0
        for allowed in allowed_values:
            overlap = len(words & set(allowed.lower().split()))
            if overlap > best_overlap:
                best, best_overlap = allowed, overlap
        if best is not None:
            ratio = best_overlap / max(len(words), 1)
            return MarketplaceMapping(best, 0.5 + ratio * 0.3, True)
        return MarketplaceMapping(None, 0.0, False)

    # ------------------------------------------------------------------ #
    #  Internals                                                           #
    # ------------------------------------------------------------------ #

    def _with_fields(
        self,
        states: ItemFieldStates,
        fields: dict[str, FieldState],
        threshold: float,
        cost: float | None = None,
    ) -> ItemFieldStates:
        metrics = _metrics(fields, threshold)
        return replace(
            states,
            fields=fields,
            total_cost=states.total_cost if cost is None else cost,
            **metrics,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _as_requirement(req: str | FieldRequirement) -> FieldRequirement:
    return FieldRequirement(name=req) if isinstance(req, str) else req


def _new_field(
    name: str, req: FieldRequirement, required: bool, required_by: tuple[str, ...]
) -> FieldState:
    canonical = CANONICAL_FIELDS.get(name)
    display = (canonical.display_name if canonical else None) or req.display_name
    data_type = (canonical.data_type if canonical else None) or req.data_type
    return FieldState(
        name=name,
        display_name=display or name.replace("_", " ").title(),
        required=required,
        required_by=required_by,
        data_type=data_type or FieldDataType.STRING,
        allowed_values=req.allowed_values,
    )


def _status_for(confidence: float, threshold: float) -> FieldStatus:
    return FieldStatus.COMPLETE if confidence >= threshold else FieldStatus.PENDING


def _metrics(fields: Mapping[str, FieldState], required_threshold: float) -> dict[str, Any]:
    req_complete = req_total = rec_complete = rec_total = 0
    for state in fields.values():
        if state.required:
            req_total += 1
            if state.has_value and state.confidence.value >= required_threshold:
                req_complete += 1
        else:
            rec_total += 1
            if state.has_value and state.confidence.value >= DEFAULT_RECOMMENDED_THRESHOLD:
                rec_complete += 1

    ratios = np.array([
        req_complete / req_total if req_total else 1.0,
        rec_complete / rec_total if rec_total else 1.0,
    ])
    score = float(np.dot(ratios, [REQUIRED_SHARE, RECOMMENDED_SHARE]))
    return {
        "required_complete": req_complete,
        "required_total": req_total,
        "recommended_complete": rec_complete,
        "recommended_total": rec_total,
        "completion_score": score,
        "ready_to_publish": req_complete == req_total,
    }
