"""Task executor: run one planned research task against its backing service.

``TaskExecutor.execute_task`` dispatches on ``ResearchTask.tool`` to a
tool-specific routine.  Each routine reads its own service's result shape,
decides which of the task's target fields that result can fill, and
attaches a ``FieldDataSource`` whose confidence is the tool's base
confidence discounted by a per-field multiplier.

Failure handling lives at this boundary:

* a missing collaborator raises ``ConfigurationError`` (never retried);
* ``RetryableToolError`` is retried with exponential backoff;
* any other exception turns into a failed ``TaskResult`` charged at
  ``failure_cost_ratio`` of the estimated cost.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import asdict, replace
from typing import Any

from catalog_enrichment.domain.enums import SourceType, ToolType
from catalog_enrichment.domain.exceptions import ConfigurationError, RetryableToolError
from catalog_enrichment.domain.fields import normalize_field_name
from catalog_enrichment.domain.values import (
    BarcodePayload,
    ExecutionContext,
    FieldDataSource,
    FieldUpdate,
    OcrPayload,
    PriceHistoryPayload,
    ProductQuery,
    ResearchTask,
    SourcePayload,
    TaskResult,
    VisionPayload,
    WebSearchPayload,
)
from catalog_enrichment.infrastructure.config import ExecutorConfig
from catalog_enrichment.services.collaborators import ResearchServices
from catalog_enrichment.services.ledger import is_empty_value
from catalog_enrichment.services.vision import build_vision_prompt, normalize_condition

logger = logging.getLogger(__name__)

MAX_IMAGES = 4

# -- Base confidences ---------------------------------------------------------
BARCODE_CONFIDENCE = 0.95
PRICE_HISTORY_CONFIDENCE = 0.92
VISION_CONFIDENCE = 0.70
TARGETED_SEARCH_CONFIDENCE = 0.65
GENERAL_SEARCH_CONFIDENCE = 0.55
TARGETED_MIN_SYNTHESIS = 0.3
GENERAL_MIN_SYNTHESIS = 0.2

# OCR label key fragment -> field.  First matching fragment wins.
_LABEL_FIELDS: tuple[tuple[str, str], ...] = (
    ("made in", "country_of_manufacture"),
    ("country", "country_of_manufacture"),
    ("capacity", "capacity"),
    ("material", "material"),
    ("fabric", "material"),
    ("colour", "color"),
    ("color", "color"),
    ("size", "size"),
    ("year", "year_manufactured"),
)

_SPEC_FIELDS = ("color", "material", "size", "weight", "dimensions", "capacity")
_VISION_FIELDS = ("brand", "model", "color", "material", "condition", "size", "style", "pattern")


class _Collector:
    """Accumulates at most one update per target field."""

    def __init__(self, targets: tuple[str, ...], source_type: SourceType, payload: SourcePayload) -> None:
        self._targets = set(targets)
        self._type = source_type
        self._payload = payload
        self.updates: dict[str, FieldUpdate] = {}

    def add(self, field_name: str, value: Any, confidence: float) -> None:
        if field_name not in self._targets or field_name in self.updates:
            return
        if is_empty_value(value):
            return
        source = FieldDataSource(
            type=self._type,
            confidence=min(1.0, max(0.0, confidence)),
            payload=self._payload,
        )
        self.updates[field_name] = FieldUpdate(field_name, value, source)

    def result(self) -> list[FieldUpdate]:
        return list(self.updates.values())


class TaskExecutor:
    """Executes ``ResearchTask`` objects.

    Parameters
    ----------
    services:
        Backing collaborators.
    config:
        Retry and failure-cost settings.
    sleep:
        Called with the backoff delay between retries.
    clock:
        Monotonic time source used to measure ``time_ms``.
    """

    def __init__(
        self,
        services: ResearchServices,
        config: ExecutorConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._services = services
        self._config = config or ExecutorConfig()
        self._config.validate()
        self._sleep = sleep
        self._clock = clock
        self._routines: dict[ToolType, Callable[[ResearchTask, ExecutionContext], list[FieldUpdate]]] = {
            ToolType.BARCODE_LOOKUP: self._barcode_lookup,
            ToolType.PRICE_HISTORY: self._price_history,
            ToolType.OCR: self._ocr,
            ToolType.VISION: self._vision,
            ToolType.WEB_SEARCH_TARGETED: self._web_search_targeted,
            ToolType.WEB_SEARCH_GENERAL: self._web_search_general,
        }

    @property
    def services(self) -> ResearchServices:
        return self._services

    @property
    def config(self) -> ExecutorConfig:
        return self._config

    def is_available(self, tool: ToolType) -> bool:
        """True when *tool*'s backing service is present and configured."""
        svc = self._services
        if tool is ToolType.BARCODE_LOOKUP:
            return svc.identifier_lookup is not None
        if tool is ToolType.PRICE_HISTORY:
            return svc.price_history is not None and svc.price_history.is_configured()
        if tool is ToolType.OCR:
            return svc.ocr is not None
        if tool is ToolType.VISION:
            return svc.vision is not None
        return svc.web_search is not None and svc.web_search.is_configured()

    # ------------------------------------------------------------------ #
    #  Public API                                                          #
    # ------------------------------------------------------------------ #

    def execute_task(self, task: ResearchTask, context: ExecutionContext) -> TaskResult:
        """Run *task* and normalise its outcome into field updates."""
        routine = self._routines.get(task.tool)
        if routine is None:
            raise ConfigurationError(
                f"No routine registered for tool '{task.tool.value}'",
                collaborator=task.tool.value,
            )
        logger.debug(
            "execute_task: %s %s for %s", task.id[:8], task.tool.value, list(task.target_fields)
        )

        start = self._clock()
        try:
            updates = self._run_with_retry(routine, task, context)
        except ConfigurationError:
            raise
        except Exception as exc:
            elapsed = self._elapsed_ms(start)
            logger.warning("execute_task: %s (%s) failed: %s", task.id[:8], task.tool.value, exc)
            return TaskResult(
                task=task,
                success=False,
                cost=task.estimated_cost * self._config.failure_cost_ratio,
                time_ms=elapsed,
                error=str(exc) or type(exc).__name__,
            )

        cost = task.estimated_cost
        if updates:
            share = cost / len(updates)
            updates = [
                replace(u, source=replace(u.source, cost=share)) for u in updates
            ]
        return TaskResult(
            task=task,
            success=True,
            field_updates=tuple(updates),
            cost=cost,
            time_ms=self._elapsed_ms(start),
        )

    # ------------------------------------------------------------------ #
    #  Retry                                                               #
    # ------------------------------------------------------------------ #

    def _run_with_retry(
        self,
        routine: Callable[[ResearchTask, ExecutionContext], list[FieldUpdate]],
        task: ResearchTask,
        context: ExecutionContext,
    ) -> list[FieldUpdate]:
        max_retries = self._config.max_retries
        for attempt in range(max_retries + 1):
            try:
                return routine(task, context)
            except RetryableToolError as exc:
                if attempt >= max_retries:
                    raise
                delay = self._config.base_retry_delay * (2 ** attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s. Retrying in %.1fs",
                    task.tool.value,
                    attempt + 1,
                    max_retries + 1,
                    exc,
                    delay,
                )
                self._sleep(delay)
        return []

    def _elapsed_ms(self, start: float) -> int:
        return int((self._clock() - start) * 1000)

    def _require(self, service: Any, name: str) -> Any:
        if service is None:
            raise ConfigurationError(f"{name} service is not configured", collaborator=name)
        return service

    # ------------------------------------------------------------------ #
    #  Tool routines                                                       #
    # ------------------------------------------------------------------ #

    def _barcode_lookup(self, task: ResearchTask, ctx: ExecutionContext) -> list[FieldUpdate]:
        lookup = self._require(self._services.identifier_lookup, "identifier_lookup")
        if not ctx.upc:
            return []
        result = lookup.lookup(ctx.upc)
        if not result.found:
            logger.debug("barcode lookup: no record for %s", ctx.upc)
            return []

        c = BARCODE_CONFIDENCE
        out = _Collector(task.target_fields, SourceType.BARCODE_LOOKUP, BarcodePayload(ctx.upc, result))
        out.add("brand", result.brand, c)
        out.add("title", result.name, c * 0.9)
        out.add("description", result.description, c * 0.85)
        out.add("category", result.category, c * 0.8)
        return out.result()

    def _price_history(self, task: ResearchTask, ctx: ExecutionContext) -> list[FieldUpdate]:
        service = self._require(self._services.price_history, "price_history")
        if not service.is_configured():
            return []

        product_id = service.search_by_identifier(ctx.upc) if ctx.upc else None
        if product_id is None and ctx.brand and ctx.model:
            candidates = service.search_by_keyword(f"{ctx.brand} {ctx.model}", limit=1)
            product_id = candidates[0] if candidates else None
        if product_id is None:
            return []
        product = service.get_product(product_id)
        if product is None:
            return []

        c = PRICE_HISTORY_CONFIDENCE
        out = _Collector(task.target_fields, SourceType.PRICE_HISTORY, PriceHistoryPayload(product))
        out.add("brand", product.brand, c)
        out.add("title", product.title, c * 0.9)
        out.add("category", product.category, c * 0.85)
        if product.price_stats is not None:
            out.add("price_reference", asdict(product.price_stats), c * 0.9)
        demand = {
            "sales_rank": product.sales_rank,
            "trend": product.sales_rank_trend,
            "review_count": product.review_count,
            "rating": product.rating,
        }
        if any(v is not None for v in demand.values()):
            out.add("demand_indicator", demand, c * 0.9)
        return out.result()

    def _ocr(self, task: ResearchTask, ctx: ExecutionContext) -> list[FieldUpdate]:
        ocr = self._require(self._services.ocr, "ocr")
        images = ctx.image_urls[:MAX_IMAGES]
        if not images:
            return []
        result = ocr.extract_text(images)
        c = result.confidence

        out = _Collector(task.target_fields, SourceType.OCR, OcrPayload(result))
        ids = {k.lower(): v for k, v in result.identifiers.items()}
        out.add("upc", ids.get("upc"), c * 0.9)
        out.add("mpn", ids.get("mpn"), c * 0.9)
        out.add("model", ids.get("model"), c * 0.85)
        out.add("brand", ids.get("brand"), c * 0.85)

        for key, value in result.labels.items():
            label = key.lower().strip()
            if "brand" in label or "manufacturer" in label:
                out.add("brand", value, c * 0.85)
                continue
            if "model" in label:
                out.add("model", value, c * 0.85)
                continue
            for fragment, field_name in _LABEL_FIELDS:
                if fragment in label:
                    out.add(field_name, value, c * 0.7)
                    break
        return out.result()

    def _vision(self, task: ResearchTask, ctx: ExecutionContext) -> list[FieldUpdate]:
        vision = self._require(self._services.vision, "vision")
        images = ctx.image_urls[:MAX_IMAGES]
        if not images:
            return []
        prompt = build_vision_prompt(task.target_fields, ctx)
        attributes = dict(vision.analyze(images, prompt) or {})

        c = VISION_CONFIDENCE
        out = _Collector(task.target_fields, SourceType.VISION, VisionPayload(attributes))
        for name in _VISION_FIELDS:
            value = attributes.get(name)
            if name == "condition" and isinstance(value, str) and value.strip():
                out.add(name, normalize_condition(value), c * 0.9)
            else:
                out.add(name, value, c)
        return out.result()

    def _web_search_targeted(self, task: ResearchTask, ctx: ExecutionContext) -> list[FieldUpdate]:
        query = ProductQuery(
            brand=ctx.brand, model=ctx.model, upc=ctx.upc, mpn=ctx.mpn, category=ctx.category
        )
        if not query.is_targeted():
            return []
        return self._web_search(
            task, query, TARGETED_SEARCH_CONFIDENCE, TARGETED_MIN_SYNTHESIS,
            multipliers={"title": 0.9, "description": 0.85, "category": 0.8},
            spec_multiplier=0.7,
        )

    def _web_search_general(self, task: ResearchTask, ctx: ExecutionContext) -> list[FieldUpdate]:
        query = ProductQuery(
            brand=ctx.brand,
            model=ctx.model,
            upc=ctx.upc,
            mpn=ctx.mpn,
            category=ctx.category,
            title=ctx.title,
        )
        if not any(asdict(query).values()):
            return []
        return self._web_search(
            task, query, GENERAL_SEARCH_CONFIDENCE, GENERAL_MIN_SYNTHESIS,
            multipliers={"title": 0.85, "description": 0.8, "category": 0.75},
            spec_multiplier=0.65,
        )

    def _web_search(
        self,
        task: ResearchTask,
        query: ProductQuery,
        base: float,
        min_synthesis: float,
        multipliers: dict[str, float],
        spec_multiplier: float,
    ) -> list[FieldUpdate]:
        search = self._require(self._services.web_search, "web_search")
        if not search.is_configured():
            return []
        hits = search.search(query)
        if not hits:
            return []
        synthesized = search.synthesize(hits, query)
        if synthesized.confidence < min_synthesis:
            logger.debug(
                "web search: synthesis confidence %.2f below %.2f",
                synthesized.confidence,
                min_synthesis,
            )
            return []

        c = base * synthesized.confidence
        payload = WebSearchPayload(query, synthesized, hit_count=len(hits))
        out = _Collector(task.target_fields, SourceType.WEB_SEARCH, payload)
        out.add("brand", synthesized.brand, c)
        out.add("model", synthesized.model, c)
        out.add("mpn", synthesized.mpn, c)
        out.add("title", synthesized.title, c * multipliers["title"])
        out.add("description", synthesized.description, c * multipliers["description"])
        out.add("category", synthesized.category, c * multipliers["category"])

        specs = {normalize_field_name(k): v for k, v in synthesized.specifications.items()}
        for name in _SPEC_FIELDS:
            out.add(name, specs.get(name), c * spec_multiplier)
        if task.tool is ToolType.WEB_SEARCH_GENERAL:
            for name, value in specs.items():
                out.add(name, value, c * spec_multiplier)
        return out.result()
