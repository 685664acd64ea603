import math

import pytest

pytest.importorskip("sqlalchemy")

from sqlalchemy import select

from app.core.exceptions import InvalidChatRequestException, LLMBackendError, QuotaExceededError
from app.models.chat import Message, MessageProduct
from app.models.credit import MerchantCredits, UsageLog
from app.services.ai.backends import BackendReply, ToolCall
from app.services.chat import processor as processor_module
from app.services.chat.keyword_router import COST_SMALL_TALK, KeywordRouter
from app.services.chat.processor import (
    HANDOFF_MESSAGE,
    SYSTEM_ERROR_MESSAGE,
    ChatProcessor,
    is_product_query,
    is_pronoun_follow_up,
    retrieval_query,
    validate_chat_request,
)
from app.services.credit_service import CreditService
from app.services.search.product_search import ProductMatch, SearchDebug, SearchResult

SHOP = "cool-kicks.myshopify.com"


class ScriptedBackend:
    name = "scripted"

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = 0

    async def generate(self, system_prompt, messages, tools=None):
        self.calls += 1
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeSearch:
    def __init__(self, matches=None):
        self.matches = matches or []
        self.queries = []

    async def search(self, shop, query, min_price=None, max_price=None, sort=None, boost_attribute=None):
        self.queries.append(query)
        return SearchResult(matches=list(self.matches), debug=SearchDebug(query=query))


def _product(pid, title, price):
    return ProductMatch(
        id=f"shopify_{pid}",
        score=0.7,
        metadata={"type": "PRODUCT", "product_id": f"gid://shopify/Product/{pid}", "title": title,
                  "price": str(price), "handle": title.lower().replace(" ", "-")},
        price=float(price),
    )


def _processor(db, replies=(), matches=None):
    backend = ScriptedBackend(replies)
    search = FakeSearch(matches)
    return ChatProcessor(db, backend=backend, search=search), backend, search


async def _logs(db):
    return (await db.execute(select(UsageLog))).scalars().all()


def test_request_validation() -> None:
    assert validate_chat_request(SHOP, "  hi ") == "hi"
    with pytest.raises(InvalidChatRequestException):
        validate_chat_request(SHOP, "   ")
    with pytest.raises(InvalidChatRequestException):
        validate_chat_request("", "hello")


def test_retrieval_helpers() -> None:
    assert is_pronoun_follow_up("is it waterproof?")
    assert not is_pronoun_follow_up("do you have this in a cheaper price range")
    assert is_product_query("show me jackets")
    assert not is_product_query("thanks a lot")

    history = [{"role": "user", "content": "running shoes"}, {"role": "assistant", "content": "Sure"}]
    assert retrieval_query("blue", history) == "blue running shoes"
    assert retrieval_query("blue", []) == "blue"
    assert retrieval_query("waterproof hiking boots", history) == "waterproof hiking boots"


@pytest.mark.asyncio
async def test_keyword_path_is_charged_and_persisted(db_session) -> None:
    processor, backend, search = _processor(db_session)

    response = await processor.process_chat(SHOP, "guest", "hello")
    wire = response.to_wire()

    assert wire["success"] is True
    assert wire["responseType"] == "KEYWORD"
    assert wire["creditsUsed"] == COST_SMALL_TALK
    assert wire["remainingCredits"] == pytest.approx(1000 - COST_SMALL_TALK)
    assert wire["userMessage"]["content"] == "hello"
    assert wire["assistantMessage"]["role"] == "assistant"
    assert wire["performance"]["productsFound"] == 0
    assert backend.calls == 0 and search.queries == []

    messages = (await db_session.execute(select(Message).order_by(Message.id))).scalars().all()
    assert [(m.role, m.content) for m in messages][0] == ("user", "hello")
    logs = await _logs(db_session)
    assert [(l.request_type, l.was_successful) for l in logs] == [("KEYWORD_RESPONSE", True)]


@pytest.mark.asyncio
async def test_ai_path_uses_pre_retrieval_products_without_tool_call(db_session) -> None:
    processor, backend, search = _processor(
        db_session,
        replies=[BackendReply(content="The Trail Boot is great in the rain.")],
        matches=[_product(1, "Trail Boot", 120)],
    )

    response = await processor.process_chat(SHOP, "ann@example.com", "I need something for a rainy hike")

    assert response.success is True
    assert response.response_type == "AI"
    assert response.assistant_message.content == "The Trail Boot is great in the rain."
    assert [p.title for p in response.products] == ["Trail Boot"]
    assert search.queries == ["I need something for a rainy hike"]
    assert response.credits_used == math.ceil(response.performance.token_estimate / 1000)
    assert response.remaining_credits == pytest.approx(1000 - response.credits_used)

    credits = (await db_session.execute(select(MerchantCredits))).scalars().one()
    assert credits.remaining_credits == pytest.approx(1000 - response.credits_used)
    assert credits.total_users == 1
    log = (await _logs(db_session))[0]
    assert log.request_type == "AI_CHAT" and log.was_successful and log.tokens_used > 0


@pytest.mark.asyncio
async def test_ai_path_returns_tool_products(db_session) -> None:
    call = ToolCall.from_raw(id="c1", name="recommend_products", raw_arguments='{"search_query": "rain jacket"}')
    processor, backend, search = _processor(
        db_session,
        replies=[BackendReply(tool_calls=[call]), BackendReply(content="Two jackets for you.")],
        matches=[_product(7, "Storm Shell", 150), _product(8, "Light Anorak", 80)],
    )

    response = await processor.process_chat(SHOP, "guest", "what should I wear in heavy rain")

    assert backend.calls == 2
    assert search.queries == ["what should I wear in heavy rain", "rain jacket"]
    assert [p.id for p in response.products] == ["gid://shopify/Product/7", "gid://shopify/Product/8"]
    rows = (await db_session.execute(select(MessageProduct))).scalars().all()
    assert sorted(r.title for r in rows) == ["Light Anorak", "Storm Shell"]


@pytest.mark.asyncio
async def test_pronoun_follow_up_skips_retrieval(db_session) -> None:
    processor, backend, search = _processor(db_session, replies=[BackendReply(content="Yes, fully waterproof.")])
    response = await processor.process_chat(SHOP, "guest", "is it waterproof?")
    assert response.response_type == "AI"
    assert search.queries == []
    assert response.products == []


@pytest.mark.asyncio
async def test_exhausted_credits_hand_off_without_model_call(db_session) -> None:
    await CreditService(db_session).check_credits_available(SHOP)
    credits = (await db_session.execute(select(MerchantCredits))).scalars().one()
    credits.remaining_credits = 0
    await db_session.commit()

    processor, backend, search = _processor(db_session)
    response = await processor.process_chat(SHOP, "guest", "show me boots")
    wire = response.to_wire()

    assert wire["success"] is False
    assert wire["responseType"] == "MANUAL_HANDOFF"
    assert wire["handoffToManual"] is True
    assert wire["error"] == "CREDITS_EXHAUSTED"
    assert wire["creditsUsed"] == 0
    assert wire["assistantMessage"] == {"id": wire["assistantMessage"]["id"], "role": "system", "content": HANDOFF_MESSAGE}
    assert backend.calls == 0 and search.queries == []

    log = (await _logs(db_session))[0]
    assert (log.request_type, log.credits_used, log.was_successful) == ("MANUAL_HANDOFF", 0, False)


@pytest.mark.asyncio
async def test_quota_exceeded_degrades_to_handoff(db_session) -> None:
    processor, _, _ = _processor(db_session, replies=[QuotaExceededError()])
    response = await processor.process_chat(SHOP, "guest", "tell me about your waterproof range")

    assert response.success is False
    assert response.response_type == "MANUAL_HANDOFF"
    assert response.error == "QUOTA_EXCEEDED"
    assert response.assistant_message.role == "system"
    assert response.remaining_credits == 1000

    log = (await _logs(db_session))[0]
    assert (log.credits_used, log.was_successful, log.error_message) == (0, False, "QUOTA_EXCEEDED")
    credits = (await db_session.execute(select(MerchantCredits))).scalars().one()
    assert credits.remaining_credits == 1000


@pytest.mark.asyncio
async def test_backend_error_is_reported_as_ai_error(db_session) -> None:
    processor, _, _ = _processor(db_session, replies=[LLMBackendError("boom")])
    response = await processor.process_chat(SHOP, "guest", "tell me about your waterproof range")

    assert response.response_type == "ERROR"
    assert response.error == "AI_ERROR"
    log = (await _logs(db_session))[0]
    assert log.was_successful is False
    assert log.credits_used > 0
    assert response.credits_used == log.credits_used
    credits = (await db_session.execute(select(MerchantCredits))).scalars().one()
    assert credits.remaining_credits == 1000


@pytest.mark.asyncio
async def test_unexpected_failure_returns_system_error(db_session, monkeypatch: pytest.MonkeyPatch) -> None:
    async def broken_route(self, shop, message):
        raise RuntimeError("router exploded")

    monkeypatch.setattr(KeywordRouter, "route", broken_route)
    processor, _, _ = _processor(db_session)

    response = await processor.process_chat(SHOP, "guest", "hello")

    assert response.success is False
    assert response.error == processor_module.SYSTEM_ERROR
    assert response.error_message == SYSTEM_ERROR_MESSAGE
    assert response.session_id is not None
    log = (await _logs(db_session))[0]
    assert log.was_successful is False
    assert "router exploded" in log.error_message


@pytest.mark.asyncio
async def test_gemini_connection_failure_takes_the_ai_error_branch(db_session, monkeypatch: pytest.MonkeyPatch) -> None:
    httpx = pytest.importorskip("httpx")
    pytest.importorskip("google.genai")
    from types import SimpleNamespace

    from app.services.ai import backends
    from app.services.ai.backends import GeminiChatBackend

    monkeypatch.setattr(backends.settings, "LLM_MAX_ATTEMPTS", 1)

    class UnreachableModels:
        async def generate_content(self, *, model, contents, config):
            raise httpx.ConnectError("connection refused")

    backend = GeminiChatBackend(client=SimpleNamespace(aio=SimpleNamespace(models=UnreachableModels())), model="gemini-test")
    processor = ChatProcessor(db_session, backend=backend, search=FakeSearch())

    response = await processor.process_chat(SHOP, "guest", "what is the weather like")

    assert response.response_type == "ERROR"
    assert response.error == "AI_ERROR"
    messages = (await db_session.execute(select(Message).order_by(Message.id))).scalars().all()
    assert [m.role for m in messages] == ["user", "system"]
