from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import LLMBackendError, SessionAccessDeniedException
from app.core.logging import get_logger
from app.models.chat import ChatSession, Message
from app.prompts.system_prompts import session_summary_prompt
from app.schemas.chat import SessionSummary
from app.services.ai.llm_service import LLMService, llm_service

logger = get_logger(__name__)


def fallback_summary() -> SessionSummary:
    return SessionSummary(
        overview="Failed to generate summary.",
        intent="Error",
        sentiment="Neutral",
        sentiment_score=50,
        priority="Medium",
        tags=["Error"],
        key_quotes=[],
        suggested_action="Check logs for details.",
        resolution_status="Informational",
    )


def conversation_text(messages: Sequence[Dict[str, Any]]) -> str:
    return "\n".join(f"{m['role']}: {m['content']}" for m in messages)


class SessionSummaryService:
    def __init__(self, db: AsyncSession, *, llm: Optional[LLMService] = None):
        self.db = db
        self.llm = llm or llm_service

    async def load_transcript(self, shop: str, session_id: str) -> List[Dict[str, Any]]:
        session = await self.db.get(ChatSession, session_id)
        if session is None:
            return []
        if session.shop != shop:
            raise SessionAccessDeniedException()
        result = await self.db.execute(
            select(Message).where(Message.session_id == session_id).order_by(Message.id)
        )
        return [{"role": m.role, "content": m.content} for m in result.scalars().all()]

    async def summarize(self, messages: Sequence[Dict[str, Any]]) -> SessionSummary:
        """Ask the chat model for a structured summary; any failure yields the neutral fallback."""
        try:
            data = await self.llm.generate_chat_json(
                [{"role": "user", "content": session_summary_prompt(conversation_text(messages))}],
                model=settings.SUMMARY_MODEL,
            )
            return SessionSummary.model_validate(data)
        except (LLMBackendError, ValidationError, ValueError) as e:
            logger.error(f"Error summarizing conversation: {e}")
            return fallback_summary()

    async def summarize_session(self, shop: str, session_id: str) -> Optional[SessionSummary]:
        """None when the session has no messages."""
        messages = await self.load_transcript(shop, session_id)
        if not messages:
            return None
        return await self.summarize(messages)
