"""Vision analysis via LangChain structured output.

``LLMVisionAnalyzer`` implements the ``VisionAnalyzer`` contract on top of
any multimodal ``BaseChatModel``: the product images are sent as
``image_url`` content blocks and the answer is parsed into
``VisionAttributes`` with ``model.with_structured_output()``.

``build_vision_prompt`` and ``normalize_condition`` are shared with the
task executor, which builds the field-specific prompt and post-processes
the returned condition.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage
from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder
from pydantic import BaseModel, Field

from catalog_enrichment.domain.exceptions import ToolExecutionError
from catalog_enrichment.domain.values import ExecutionContext
from catalog_enrichment.services.collaborators import VisionAnalyzer

logger = logging.getLogger(__name__)


# -- Structured output schema -------------------------------------------------


class VisionAttributes(BaseModel):
    """Attributes a vision model can read off product photos."""

    brand: str | None = Field(default=None, description="Brand name on the product or packaging")
    model: str | None = Field(default=None, description="Model number or name")
    color: str | None = Field(default=None, description="Primary color(s)")
    material: str | None = Field(default=None, description="Main material")
    condition: str | None = Field(
        default=None, description="new, like_new, very_good, good or acceptable"
    )
    size: str | None = Field(default=None, description="Size or dimensions if visible")
    style: str | None = Field(default=None, description="Style or design type")
    pattern: str | None = Field(default=None, description="Pattern, e.g. solid or striped")


# -- Prompt helpers -------------------------------------------------------------

FIELD_DESCRIPTIONS: dict[str, str] = {
    "brand": "Brand name visible on the product or packaging",
    "model": "Model number or name",
    "color": "Primary color(s) of the item",
    "material": "What material is the item made of (e.g., leather, plastic, metal, fabric)",
    "condition": "Visible condition: new, like_new, very_good, good, acceptable",
    "size": "Size if visible (e.g., Small, Medium, Large, or dimensions)",
    "style": "Style or design type",
    "pattern": "Pattern if any (e.g., solid, striped, floral)",
}

_CONDITIONS: dict[str, str] = {
    "new": "new",
    "brand new": "new",
    "sealed": "new",
    "like new": "used_like_new",
    "like_new": "used_like_new",
    "open box": "used_like_new",
    "excellent": "used_very_good",
    "very good": "used_very_good",
    "very_good": "used_very_good",
    "good": "used_good",
    "fair": "used_acceptable",
    "acceptable": "used_acceptable",
    "poor": "used_acceptable",
}


def normalize_condition(condition: str) -> str:
    """Map free-text condition onto the canonical condition vocabulary.

    Unrecognised descriptions default to ``used_good``.
    """
    return _CONDITIONS.get(condition.lower().strip(), "used_good")


def build_vision_prompt(target_fields: Sequence[str], context: ExecutionContext) -> str:
    """Extraction prompt listing the requested fields and what is already known."""
    wanted = "\n".join(
        f"- {name}: {FIELD_DESCRIPTIONS[name]}"
        for name in target_fields
        if name in FIELD_DESCRIPTIONS
    )
    return (
        "Analyze these product images and extract the following information:\n\n"
        f"{wanted}\n\n"
        "Context:\n"
        f"- Category: {context.category or 'Unknown'}\n"
        f"- Brand (if known): {context.brand or 'Unknown'}\n"
        f"- Model (if known): {context.model or 'Unknown'}\n\n"
        "Only include fields you can confidently identify."
    )


_VISION_PROMPT = ChatPromptTemplate.from_messages(
    [
        (
            "system",
            "You are a product cataloguing assistant. You look at photos of a "
            "single item offered for resale and report only attributes that are "
            "clearly visible. Leave an attribute empty rather than guess.",
        ),
        ("human", "{instructions}"),
        MessagesPlaceholder("images"),
    ]
)


# -- LLMVisionAnalyzer --------------------------------------------------------


class LLMVisionAnalyzer(VisionAnalyzer):
    """Vision analysis backed by a multimodal chat model.

    Parameters
    ----------
    model:
        A LangChain chat model that accepts ``image_url`` content blocks.
    prompt:
        Optional custom ``ChatPromptTemplate`` with an ``instructions``
        variable and an ``images`` messages placeholder.
    max_images:
        Images beyond this count are not sent.
    """

    def __init__(
        self,
        model: BaseChatModel,
        prompt: ChatPromptTemplate | None = None,
        max_images: int = 4,
    ) -> None:
        self.model = model
        self.max_images = max_images
        self._prompt = prompt or _VISION_PROMPT
        self._chain = self._build_chain()

    def _build_chain(self) -> Any:
        structured_model = self.model.with_structured_output(VisionAttributes)
        return self._prompt | structured_model

    def analyze(self, image_urls: Sequence[str], prompt: str) -> Mapping[str, Any]:
        """Return the attributes the model identified, omitting empty ones.

        Raises ``ToolExecutionError`` when the model call fails.
        """
        urls = list(image_urls)[: self.max_images]
        if not urls:
            return {}
        images = HumanMessage(
            content=[{"type": "image_url", "image_url": {"url": url}} for url in urls]
        )
        try:
            result: VisionAttributes = self._chain.invoke(
                {"instructions": prompt, "images": [images]}
            )
        except Exception as exc:
            logger.warning("LLMVisionAnalyzer: analysis failed: %s", exc)
            raise ToolExecutionError(f"Vision analysis failed: {exc}", tool="vision") from exc

        attributes = result.model_dump(exclude_none=True)
        logger.debug("LLMVisionAnalyzer: %d attribute(s) from %d image(s)", len(attributes), len(urls))
        return {k: v for k, v in attributes.items() if v != ""}
