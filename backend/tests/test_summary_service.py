import pytest

pytest.importorskip("sqlalchemy")

from fastapi import HTTPException

from app.core.exceptions import LLMBackendError
from app.services.chat.session_store import ChatSessionStore
from app.services.chat.summary_service import SessionSummaryService, conversation_text, fallback_summary

SHOP = "cool-kicks.myshopify.com"


class FakeLLM:
    def __init__(self, result):
        self.result = result
        self.prompts = []

    async def generate_chat_json(self, messages, model=None, **kwargs):
        self.prompts.append(messages[0]["content"])
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


async def _session_with_turn(db):
    store = ChatSessionStore(db)
    session = await store.resolve_session(SHOP, None, None)
    await store.save_turn(session.id, "where are my boots?", "Let me check that for you.")
    return session


def test_conversation_text_is_role_prefixed() -> None:
    text = conversation_text([{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}])
    assert text == "user: hi\nassistant: hello"


@pytest.mark.asyncio
async def test_summary_is_validated_from_model_json(db_session) -> None:
    session = await _session_with_turn(db_session)
    llm = FakeLLM(
        {
            "overview": "Customer asked about a delayed boot order.",
            "intent": "Order status",
            "sentiment": "Negative",
            "sentimentScore": 30,
            "priority": "High",
            "tags": ["order", "delay"],
            "keyQuotes": ["where are my boots?"],
            "suggestedAction": "Share tracking link.",
            "resolutionStatus": "Unresolved",
        }
    )

    summary = await SessionSummaryService(db_session, llm=llm).summarize_session(SHOP, session.id)

    assert summary.priority == "High"
    assert summary.sentiment_score == 30
    assert "user: where are my boots?" in llm.prompts[0]


@pytest.mark.asyncio
async def test_model_failure_returns_fallback(db_session) -> None:
    session = await _session_with_turn(db_session)
    service = SessionSummaryService(db_session, llm=FakeLLM(LLMBackendError("down")))

    summary = await service.summarize_session(SHOP, session.id)

    assert summary == fallback_summary()
    assert summary.tags == ["Error"]


@pytest.mark.asyncio
async def test_empty_or_unknown_session_has_no_summary(db_session) -> None:
    service = SessionSummaryService(db_session, llm=FakeLLM({}))
    assert await service.summarize_session(SHOP, "missing") is None

    store = ChatSessionStore(db_session)
    empty = await store.resolve_session(SHOP, None, None)
    assert await service.summarize_session(SHOP, empty.id) is None


@pytest.mark.asyncio
async def test_other_shops_session_is_forbidden(db_session) -> None:
    session = await _session_with_turn(db_session)
    service = SessionSummaryService(db_session, llm=FakeLLM({}))

    with pytest.raises(HTTPException) as exc_info:
        await service.summarize_session("other-shop.myshopify.com", session.id)
    assert exc_info.value.status_code == 403
