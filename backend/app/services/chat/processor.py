from __future__ import annotations

import math
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import QUOTA_EXCEEDED, InvalidChatRequestException, LLMBackendError, QuotaExceededError
from app.core.logging import get_logger
from app.models.chat import MessageRole
from app.models.credit import RequestType
from app.schemas.ai_settings import AISettingsConfig
from app.schemas.chat import ChatMessageOut, ChatProduct, ChatResponse, PerformanceInfo
from app.services.ai.backends import ChatBackend, get_chat_backend
from app.services.ai.orchestrator import AgentOrchestrator
from app.services.ai.prompt_optimizer import ProductMatchInfo, PromptOptimizer, estimate_tokens
from app.services.ai.tool_registry import ToolRegistry
from app.services.chat.keyword_router import PRICE_KEYWORDS, KeywordRouter
from app.services.chat.session_store import ChatSessionStore
from app.services.credit_service import CreditCheckResult, CreditService, UsageMetrics
from app.services.search.product_search import ProductMatch, ProductSearchService

logger = get_logger(__name__)

HANDOFF_MESSAGE = "I'm currently unavailable. Please contact support."
QUOTA_FALLBACK_MESSAGE = (
    "I'm having trouble answering right now. Please try again later or contact our support team."
)
ERROR_FALLBACK_MESSAGE = "I encountered an internal error. Please try again."
SYSTEM_ERROR_MESSAGE = "An unexpected error occurred. Please try again."
CREDITS_EXHAUSTED = "CREDITS_EXHAUSTED"
SYSTEM_ERROR = "SYSTEM_ERROR"
AI_ERROR = "AI_ERROR"

SHORT_QUERY_CHARS = 10
PRONOUN_FOLLOW_UP_MAX_WORDS = 5
REFERENCE_PATTERN = re.compile(r"\b(it|that|this|them|those|one|ones)\b", re.IGNORECASE)

PRODUCT_QUERY_KEYWORDS = (
    "show me", "looking for", "need a", "want to buy", "shopping for",
    "find", "search for", "do you have", "do you sell", "available",
    "tell me about", "tell me any", "which", "what products",
    "show products", "browse", "catalog", "inventory", "items",
    "what do you have", "what can i buy", "what items", "see products",
    "product", "products", "item", "merchandise",
)

PRODUCT_QUERY_CATEGORIES = (
    "clothing", "clothes", "apparel", "fashion", "shirt", "dress", "shoes",
    "electronics", "phone", "laptop", "computer", "tablet",
    "furniture", "home", "kitchen", "bedroom", "sofa", "chair",
    "beauty", "skincare", "makeup", "cosmetics", "jewelry", "jewellery",
    "sport", "outdoor", "fitness", "gym", "sneakers", "boots", "jacket",
)


def is_product_query(message: str) -> bool:
    lower = (message or "").lower().strip()
    return (
        any(k in lower for k in PRODUCT_QUERY_KEYWORDS)
        or any(k in lower for k in PRICE_KEYWORDS)
        or any(k in lower for k in PRODUCT_QUERY_CATEGORIES)
    )


def is_pronoun_follow_up(message: str) -> bool:
    """Short follow-ups like "how much is it?" resolve from history, not search."""
    return (
        bool(REFERENCE_PATTERN.search(message))
        and len(message.split(" ")) < PRONOUN_FOLLOW_UP_MAX_WORDS
        and not is_product_query(message)
    )


def retrieval_query(message: str, history: Sequence[Dict[str, Any]]) -> str:
    if len(message) >= SHORT_QUERY_CHARS:
        return message
    previous = [m["content"] for m in history if m.get("role") == "user"]
    if not previous:
        return message
    return f"{message} {previous[-1]}"


def validate_chat_request(shop: Optional[str], message: Optional[str]) -> str:
    if not shop or not message or not message.strip():
        raise InvalidChatRequestException()
    return message.strip()


@dataclass
class _Turn:
    """Mutable per-request state shared by the branches of process_chat."""

    shop: str
    message: str
    started: float = field(default_factory=time.monotonic)
    session_id: Optional[str] = None
    customer_id: Optional[str] = None

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


class ChatProcessor:
    """Entry point shared by the HTTP and WebSocket transports."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        backend: Optional[ChatBackend] = None,
        search: Optional[ProductSearchService] = None,
        channel: str = "http",
    ):
        self.db = db
        self.channel = channel
        self.sessions = ChatSessionStore(db)
        self.credits = CreditService(db)
        self.keywords = KeywordRouter(db)
        self.optimizer = PromptOptimizer(db)
        self.search = search or ProductSearchService(db=db)
        self._backend = backend

    @property
    def backend(self) -> ChatBackend:
        if self._backend is None:
            self._backend = get_chat_backend()
        return self._backend

    async def process_chat(
        self,
        shop: str,
        cust_mail: Optional[str],
        message: str,
        session_id: Optional[str] = None,
    ) -> ChatResponse:
        turn = _Turn(shop=shop, message=message)
        try:
            customer = await self.sessions.resolve_customer(shop, cust_mail)
            session = await self.sessions.resolve_session(shop, customer, session_id)
            turn.session_id = session.id
            turn.customer_id = customer.id if customer is not None else None

            # Budget gate runs before any embedding or completion call
            credit = await self.credits.check_credits_available(shop)
            if not credit.can_process_request:
                return await self._handoff(turn, credit)

            keyword = await self.keywords.route(shop, message)
            if keyword.is_keyword_match and keyword.bypass_ai:
                return await self._keyword_reply(turn, credit, keyword.response or "", keyword.product_data or [], keyword.credits_used)

            return await self._ai_reply(turn, credit)
        except Exception as e:
            logger.error(
                f"Chat processing failed: {e}",
                extra={"shop": shop, "query": message[:50]},
                exc_info=True,
            )
            await self.db.rollback()
            await self._record(
                turn,
                UsageMetrics(
                    credits_used=0.0,
                    request_type=RequestType.AI_CHAT,
                    was_successful=False,
                    response_time=turn.elapsed_ms,
                    error_message=str(e)[:500],
                ),
            )
            return ChatResponse(
                success=False,
                session_id=turn.session_id,
                response_type="ERROR",
                error=SYSTEM_ERROR,
                error_message=SYSTEM_ERROR_MESSAGE,
            )

    async def _record(self, turn: _Turn, metrics: UsageMetrics) -> None:
        await self.credits.record_usage(
            turn.shop,
            metrics,
            session_id=turn.session_id,
            customer_id=turn.customer_id,
            user_message=turn.message,
        )

    async def _persist(
        self,
        turn: _Turn,
        reply_text: str,
        *,
        reply_role: MessageRole = MessageRole.ASSISTANT,
        products: Sequence[Dict[str, Any]] = (),
    ) -> tuple[ChatMessageOut, ChatMessageOut]:
        user_row, reply_row = await self.sessions.save_turn(
            turn.session_id,
            turn.message,
            reply_text,
            reply_role=reply_role,
            products=products,
        )
        return (
            ChatMessageOut(id=str(user_row.id), role="user", content=turn.message),
            ChatMessageOut(id=str(reply_row.id), role=reply_role.value, content=reply_text),
        )

    async def _handoff(self, turn: _Turn, credit: CreditCheckResult) -> ChatResponse:
        user_out, reply_out = await self._persist(turn, HANDOFF_MESSAGE, reply_role=MessageRole.SYSTEM)
        await self._record(
            turn,
            UsageMetrics(
                credits_used=0.0,
                request_type=RequestType.MANUAL_HANDOFF,
                was_successful=False,
                response_time=turn.elapsed_ms,
                error_message=credit.reason,
            ),
        )
        return ChatResponse(
            success=False,
            session_id=turn.session_id,
            response_type="MANUAL_HANDOFF",
            user_message=user_out,
            assistant_message=reply_out,
            remaining_credits=credit.remaining_credits,
            credits_used=0.0,
            handoff_to_manual=True,
            error=CREDITS_EXHAUSTED,
        )

    async def _keyword_reply(
        self,
        turn: _Turn,
        credit: CreditCheckResult,
        response: str,
        products: List[Dict[str, Any]],
        credits_used: float,
    ) -> ChatResponse:
        user_out, reply_out = await self._persist(turn, response, products=products)
        response_time = turn.elapsed_ms
        await self._record(
            turn,
            UsageMetrics(
                credits_used=credits_used,
                request_type=RequestType.KEYWORD_RESPONSE,
                was_successful=True,
                response_time=response_time,
            ),
        )
        return ChatResponse(
            success=True,
            session_id=turn.session_id,
            response_type="KEYWORD",
            user_message=user_out,
            assistant_message=reply_out,
            products=[ChatProduct.model_validate(p) for p in products],
            remaining_credits=credit.remaining_credits - credits_used,
            credits_used=credits_used,
            performance=PerformanceInfo(response_time=response_time, products_found=len(products)),
        )

    async def _retrieve(self, shop: str, message: str, history: Sequence[Dict[str, Any]]) -> List[ProductMatch]:
        if is_pronoun_follow_up(message):
            return []
        result = await self.search.search(shop, retrieval_query(message, history))
        return result.matches

    async def _ai_reply(self, turn: _Turn, credit: CreditCheckResult) -> ChatResponse:
        history = await self.sessions.get_history(turn.session_id, limit=settings.CHAT_HISTORY_LIMIT)
        ai_settings = await self.keywords.load_ai_settings(turn.shop)

        matches = await self._retrieve(turn.shop, turn.message, history)
        optimized = await self.optimizer.optimize(
            turn.shop,
            turn.message,
            history,
            ai_settings,
            matches,
            ProductMatchInfo.from_matches(matches),
        )
        credits_used = float(math.ceil(optimized.token_estimate / 1000))

        orchestrator = AgentOrchestrator(
            backend=self.backend,
            registry=ToolRegistry(self.search, shop=turn.shop),
            run_id=uuid.uuid4().hex,
            channel=self.channel,
        )
        try:
            result = await orchestrator.run(
                system_prompt=optimized.model_system_prompt,
                history=optimized.messages_for_ai,
                user_text=turn.message,
            )
        except QuotaExceededError:
            logger.warning("LLM quota exceeded, switching to handoff", extra={"shop": turn.shop})
            return await self._ai_failure(
                turn, credit, QUOTA_FALLBACK_MESSAGE,
                response_type="MANUAL_HANDOFF", error=QUOTA_EXCEEDED, credits_used=0.0,
            )
        except LLMBackendError as e:
            logger.error(f"LLM backend error: {e}", extra={"shop": turn.shop})
            return await self._ai_failure(
                turn, credit, ERROR_FALLBACK_MESSAGE,
                response_type="ERROR", error=AI_ERROR, credits_used=credits_used,
            )

        final_matches = result.products if result.used_tools else matches
        products = [m.to_product() for m in final_matches]
        user_out, reply_out = await self._persist(turn, result.final_reply, products=products)

        response_time = turn.elapsed_ms
        await self._record(
            turn,
            UsageMetrics(
                credits_used=credits_used,
                request_type=RequestType.AI_CHAT,
                was_successful=True,
                tokens_used=estimate_tokens(f"{optimized.system_prompt} {turn.message} {result.final_reply}"),
                response_time=response_time,
            ),
        )
        return ChatResponse(
            success=True,
            session_id=turn.session_id,
            response_type="AI",
            user_message=user_out,
            assistant_message=reply_out,
            products=[ChatProduct.model_validate(p) for p in products],
            remaining_credits=credit.remaining_credits - credits_used,
            credits_used=credits_used,
            performance=PerformanceInfo(
                response_time=response_time,
                products_found=len(products),
                token_estimate=optimized.token_estimate,
                is_product_query=is_product_query(turn.message),
            ),
        )

    async def _ai_failure(
        self,
        turn: _Turn,
        credit: CreditCheckResult,
        fallback: str,
        *,
        response_type: str,
        error: str,
        credits_used: float,
    ) -> ChatResponse:
        user_out, reply_out = await self._persist(turn, fallback, reply_role=MessageRole.SYSTEM)
        await self._record(
            turn,
            UsageMetrics(
                credits_used=credits_used,
                request_type=RequestType.AI_CHAT,
                was_successful=False,
                response_time=turn.elapsed_ms,
                error_message=error,
            ),
        )
        return ChatResponse(
            success=False,
            session_id=turn.session_id,
            response_type=response_type,
            user_message=user_out,
            assistant_message=reply_out,
            remaining_credits=credit.remaining_credits,
            credits_used=credits_used,
            handoff_to_manual=True if response_type == "MANUAL_HANDOFF" else None,
            error=error,
        )
