from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.prompts.system_prompts import (
    language_rule,
    merchant_instructions_block,
    product_context_block,
    store_assistant_prompt,
    tool_usage_prompt,
)
from app.schemas.ai_settings import AISettingsConfig
from app.services.catalog.catalog_repository import CatalogRepository
from app.services.search.product_search import ProductMatch

logger = get_logger(__name__)

WORDS_PER_TOKEN = 0.75


@dataclass(frozen=True)
class ProductMatchInfo:
    has_relevant_results: bool
    top_score: Optional[float] = None

    @classmethod
    def from_matches(cls, matches: Sequence[ProductMatch]) -> "ProductMatchInfo":
        if not matches:
            return cls(has_relevant_results=False)
        return cls(has_relevant_results=True, top_score=max(m.score for m in matches))


@dataclass
class OptimizedPrompt:
    system_prompt: str
    user_prompt: str
    product_context: Optional[str]
    token_estimate: int
    messages_for_ai: List[Dict[str, str]] = field(default_factory=list)

    @property
    def model_system_prompt(self) -> str:
        if not self.product_context:
            return self.system_prompt
        return self.system_prompt + product_context_block(self.product_context)


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text.split()) / WORDS_PER_TOKEN)


def build_product_context(matches: Sequence[ProductMatch]) -> Optional[str]:
    lines = [
        f"{m.metadata.get('title')}: ${m.metadata.get('price')}"
        for m in matches
        if m.metadata.get("type") == "PRODUCT"
    ]
    return "\n".join(lines) or None


def history_for_model(history: Sequence[Dict[str, Any]]) -> List[Dict[str, str]]:
    return [
        {"role": str(entry.get("role")), "content": str(entry.get("content") or "")}
        for entry in history
        if entry.get("role") in ("user", "assistant")
    ]


class PromptOptimizer:
    """Builds the scoped system prompt and context for one AI turn."""

    def __init__(self, db: AsyncSession):
        self.catalog = CatalogRepository(db)

    async def _top_categories(self, shop: str) -> List[str]:
        try:
            return await self.catalog.top_categories(shop)
        except Exception as e:
            logger.error(f"Category lookup for prompt failed ({shop}): {e}")
            return []

    async def optimize(
        self,
        shop: str,
        user_message: str,
        history: Sequence[Dict[str, Any]],
        ai_settings: AISettingsConfig,
        search_matches: Sequence[ProductMatch],
        match_info: Optional[ProductMatchInfo] = None,
    ) -> OptimizedPrompt:
        categories = await self._top_categories(shop)
        system_prompt = store_assistant_prompt(
            categories,
            tone=ai_settings.tone,
            shipping_policy=ai_settings.policies.shipping,
            no_matches=match_info is not None and not match_info.has_relevant_results,
        )
        system_prompt += "\n" + tool_usage_prompt(shop)
        language = ai_settings.language_settings
        system_prompt += "\n" + language_rule(language.primary_language, language.auto_detect) + "\n"
        if ai_settings.ai_instructions.strip():
            system_prompt += merchant_instructions_block(ai_settings.ai_instructions)
        if ai_settings.response_tone.custom_instructions.strip():
            system_prompt += merchant_instructions_block(ai_settings.response_tone.custom_instructions)

        # Without fresh matches the model must resolve "it"/"that" from history
        product_context = None
        if match_info is not None and match_info.has_relevant_results and search_matches:
            product_context = build_product_context(search_matches)

        messages = history_for_model(history)
        text_block = (
            system_prompt
            + " " + user_message
            + " " + (product_context or "")
            + " " + " ".join(m["content"] for m in messages)
        )
        return OptimizedPrompt(
            system_prompt=system_prompt,
            user_prompt=user_message,
            product_context=product_context,
            token_estimate=estimate_tokens(text_block),
            messages_for_ai=messages,
        )
