import asyncio
import json

import pytest

pytest.importorskip("pydantic_settings")

from app.core.config import settings
from app.core.exceptions import QuotaExceededError
from app.services.ai.backends import BackendReply, ToolCall
from app.services.ai.orchestrator import EMPTY_REPLY_FALLBACK, AgentOrchestrator
from app.services.ai.tool_registry import RecommendProductsArgs, ToolRegistry
from app.services.search.product_search import ProductMatch, SearchDebug, SearchResult


class ScriptedBackend:
    name = "scripted"

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    async def generate(self, system_prompt, messages, tools=None):
        self.calls.append({"messages": [dict(m) for m in messages], "tools": tools})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeSearch:
    def __init__(self, matches=None, delay=0.0):
        self.matches = matches or []
        self.delay = delay
        self.calls = []

    async def search(self, shop, query, min_price=None, max_price=None, sort=None, boost_attribute=None):
        self.calls.append(
            {"shop": shop, "query": query, "min_price": min_price, "max_price": max_price,
             "sort": sort, "boost_attribute": boost_attribute}
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        return SearchResult(matches=self.matches, debug=SearchDebug(query=query))


def _product(pid, title, price=10.0):
    return ProductMatch(
        id=f"shopify_{pid}",
        score=0.9,
        metadata={"product_id": f"gid://shopify/Product/{pid}", "title": title, "handle": title.lower(), "description": "long"},
        price=price,
    )


def _orchestrator(backend, search):
    return AgentOrchestrator(backend=backend, registry=ToolRegistry(search, shop="s.myshopify.com"), run_id="run-1")


@pytest.mark.asyncio
async def test_plain_reply_skips_tools() -> None:
    backend = ScriptedBackend([BackendReply(content="Hi! How can I help?")])
    result = await _orchestrator(backend, FakeSearch()).run(system_prompt="sys", history=[], user_text="hello")

    assert result.final_reply == "Hi! How can I help?"
    assert result.used_tools is False
    assert len(backend.calls) == 1
    assert backend.calls[0]["tools"][0]["function"]["name"] == "recommend_products"


@pytest.mark.asyncio
async def test_one_tool_round_then_final_answer_without_tools() -> None:
    call = ToolCall.from_raw(
        id="call_1",
        name="recommend_products",
        raw_arguments=json.dumps({"search_query": " boots ", "max_price": 100, "sort": "price_asc", "boost_attribute": "black"}),
    )
    backend = ScriptedBackend([BackendReply(tool_calls=[call]), BackendReply(content="Here are some boots.")])
    search = FakeSearch([_product(1, "Trail Boot"), _product(1, "Trail Boot"), _product(2, "City Boot")])

    result = await _orchestrator(backend, search).run(
        system_prompt="sys",
        history=[{"role": "user", "content": "hi"}, {"role": "system", "content": "skip"}],
        user_text="black boots under 100",
    )

    assert search.calls == [
        {"shop": "s.myshopify.com", "query": "boots", "min_price": None, "max_price": 100.0,
         "sort": "price_asc", "boost_attribute": "black"}
    ]
    assert result.final_reply == "Here are some boots."
    assert result.used_tools is True
    assert [m.product_id for m in result.products] == ["gid://shopify/Product/1", "gid://shopify/Product/2"]
    assert result.trace[0]["status"] == "ok"

    second = backend.calls[1]
    assert second["tools"] is None
    roles = [m["role"] for m in second["messages"]]
    assert roles == ["user", "user", "assistant", "tool"]
    tool_message = second["messages"][-1]
    assert tool_message["tool_call_id"] == "call_1"
    payload = json.loads(tool_message["content"])
    assert payload[0]["title"] == "Trail Boot"
    assert "description" not in payload[0]


@pytest.mark.asyncio
async def test_invalid_arguments_are_reported_to_the_model() -> None:
    bad_json = ToolCall.from_raw(id="c1", name="recommend_products", raw_arguments="{not json")
    empty_query = ToolCall.from_raw(id="c2", name="recommend_products", raw_arguments='{"search_query": "   "}')
    backend = ScriptedBackend([BackendReply(tool_calls=[bad_json, empty_query]), BackendReply(content="")])
    search = FakeSearch([_product(1, "X")])

    result = await _orchestrator(backend, search).run(system_prompt="sys", history=[], user_text="?")

    assert search.calls == []
    assert [t["status"] for t in result.trace] == ["invalid_arguments", "invalid_arguments"]
    assert result.final_reply == EMPTY_REPLY_FALLBACK
    tool_messages = [m for m in backend.calls[1]["messages"] if m["role"] == "tool"]
    assert all("error" in json.loads(m["content"]) for m in tool_messages)


@pytest.mark.asyncio
async def test_unknown_tool_and_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "AGENTIC_TOOL_TIMEOUT_MS", 100)
    calls = [
        ToolCall.from_raw(id="c1", name="delete_store", raw_arguments="{}"),
        ToolCall.from_raw(id="c2", name="recommend_products", raw_arguments='{"search_query": "mugs"}'),
    ]
    backend = ScriptedBackend([BackendReply(content="Let me look.", tool_calls=calls), BackendReply(content="")])

    result = await _orchestrator(backend, FakeSearch([_product(1, "Mug")], delay=1.0)).run(
        system_prompt="sys", history=[], user_text="mugs"
    )

    assert [t["status"] for t in result.trace] == ["error", "timeout"]
    assert result.products == []
    assert result.final_reply == "Let me look."


@pytest.mark.asyncio
async def test_quota_errors_propagate() -> None:
    backend = ScriptedBackend([QuotaExceededError()])
    with pytest.raises(QuotaExceededError):
        await _orchestrator(backend, FakeSearch()).run(system_prompt="sys", history=[], user_text="hi")


def test_recommend_products_args_defaults() -> None:
    args = RecommendProductsArgs.model_validate({"search_query": " rings ", "sort": None, "boost_attribute": "  "})
    assert args.search_query == "rings"
    assert args.sort == "relevance"
    assert args.boost_attribute is None

    with pytest.raises(ValueError):
        RecommendProductsArgs.model_validate({"search_query": "rings", "max_price": -1})
