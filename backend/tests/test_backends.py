from types import SimpleNamespace

import pytest

pytest.importorskip("google.genai")

from app.core.exceptions import LLMBackendError, QuotaExceededError
from app.services.ai import backends
from app.services.ai.backends import (
    GeminiChatBackend,
    OpenAIChatBackend,
    ToolCall,
    get_chat_backend,
    to_gemini_contents,
    to_gemini_schema,
    to_gemini_tools,
    to_openai_messages,
)
from app.services.ai.tool_registry import ToolRegistry


def _history():
    call = ToolCall.from_raw(id="call_1", name="recommend_products", raw_arguments='{"search_query": "rings"}')
    return [
        {"role": "user", "content": "rings?"},
        {"role": "assistant", "content": "", "tool_calls": [call]},
        {"role": "tool", "tool_call_id": "call_1", "name": "recommend_products", "content": "[]"},
    ]


def test_tool_call_parsing() -> None:
    ok = ToolCall.from_raw(id=None, name="recommend_products", raw_arguments='{"search_query": "hats"}')
    assert ok.arguments == {"search_query": "hats"}
    assert ok.id.startswith("call_")
    assert ToolCall.from_raw(id="x", name="t", raw_arguments="[1]").argument_error
    assert ToolCall.from_raw(id="x", name="t", raw_arguments="{").argument_error


def test_openai_message_mapping() -> None:
    messages = to_openai_messages("sys", _history())
    assert messages[0] == {"role": "system", "content": "sys"}
    assert messages[2]["tool_calls"][0] == {
        "id": "call_1",
        "type": "function",
        "function": {"name": "recommend_products", "arguments": '{"search_query": "rings"}'},
    }
    assert messages[3] == {"role": "tool", "tool_call_id": "call_1", "content": "[]"}


@pytest.mark.asyncio
async def test_openai_backend_parses_tool_calls() -> None:
    class FakeService:
        async def generate_chat_with_tools(self, messages, tools=None, **kwargs):
            self.messages = messages
            function = SimpleNamespace(name="recommend_products", arguments='{"search_query": "caps"}')
            return SimpleNamespace(content=None, tool_calls=[SimpleNamespace(id="c9", function=function)])

    reply = await OpenAIChatBackend(FakeService()).generate("sys", [{"role": "user", "content": "caps"}], [])
    assert reply.content == ""
    assert reply.tool_calls[0].id == "c9"
    assert reply.tool_calls[0].arguments == {"search_query": "caps"}


def test_gemini_schema_and_tools() -> None:
    schema = to_gemini_schema(ToolRegistry.tool_definitions()[0]["function"]["parameters"])
    assert schema["type"] == "OBJECT"
    assert schema["properties"]["max_price"]["type"] == "NUMBER"
    assert schema["properties"]["sort"]["enum"] == ["price_asc", "price_desc", "relevance"]
    assert schema["required"] == ["search_query"]

    tools = to_gemini_tools(ToolRegistry.tool_definitions())
    assert tools[0].function_declarations[0].name == "recommend_products"
    assert to_gemini_tools(None) is None


def test_gemini_contents_mapping() -> None:
    contents = to_gemini_contents(_history())
    assert [c.role for c in contents] == ["user", "model", "user"]
    assert contents[1].parts[0].function_call.name == "recommend_products"
    assert contents[1].parts[0].function_call.args == {"search_query": "rings"}
    assert contents[2].parts[0].function_response.response == {"content": "[]"}


class _FakeModels:
    def __init__(self, outcome):
        self.outcome = outcome

    async def generate_content(self, *, model, contents, config):
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _gemini(outcome) -> GeminiChatBackend:
    client = SimpleNamespace(aio=SimpleNamespace(models=_FakeModels(outcome)))
    return GeminiChatBackend(client=client, model="gemini-test")


@pytest.mark.asyncio
async def test_gemini_reply_parsing() -> None:
    parts = [
        SimpleNamespace(text="Looking now. ", function_call=None),
        SimpleNamespace(text=None, function_call=SimpleNamespace(id=None, name="recommend_products", args={"search_query": "hats"})),
    ]
    response = SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=parts))])

    reply = await _gemini(response).generate("sys", [{"role": "user", "content": "hats"}], ToolRegistry.tool_definitions())

    assert reply.content == "Looking now."
    assert reply.tool_calls[0].arguments == {"search_query": "hats"}


@pytest.mark.asyncio
async def test_gemini_errors_are_mapped(monkeypatch: pytest.MonkeyPatch) -> None:
    from google.genai import errors

    monkeypatch.setattr(backends.settings, "LLM_MAX_ATTEMPTS", 1)
    quota = errors.ClientError(429, {"error": {"code": 429, "status": "RESOURCE_EXHAUSTED", "message": "quota"}})
    with pytest.raises(QuotaExceededError):
        await _gemini(quota).generate("sys", [{"role": "user", "content": "x"}])

    bad = errors.ClientError(400, {"error": {"code": 400, "status": "INVALID_ARGUMENT", "message": "bad"}})
    with pytest.raises(LLMBackendError) as exc_info:
        await _gemini(bad).generate("sys", [{"role": "user", "content": "x"}])
    assert not isinstance(exc_info.value, QuotaExceededError)



class _FlakyModels:
    def __init__(self, failures, response):
        self.failures = list(failures)
        self.response = response
        self.calls = 0

    async def generate_content(self, *, model, contents, config):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.response


@pytest.mark.asyncio
async def test_gemini_connection_errors_are_retried_then_mapped(monkeypatch: pytest.MonkeyPatch) -> None:
    httpx = pytest.importorskip("httpx")
    monkeypatch.setattr(backends.settings, "LLM_MAX_ATTEMPTS", 2)
    monkeypatch.setattr(backends.settings, "LLM_RETRY_MIN_SECONDS", 0)
    monkeypatch.setattr(backends.settings, "LLM_RETRY_MAX_SECONDS", 0)

    response = SimpleNamespace(
        candidates=[SimpleNamespace(content=SimpleNamespace(parts=[SimpleNamespace(text="Back online.", function_call=None)]))]
    )
    models = _FlakyModels([httpx.ConnectError("connection refused")], response)
    backend = GeminiChatBackend(client=SimpleNamespace(aio=SimpleNamespace(models=models)), model="gemini-test")
    reply = await backend.generate("sys", [{"role": "user", "content": "x"}])
    assert reply.content == "Back online."
    assert models.calls == 2

    down = _FlakyModels([httpx.ConnectError("refused"), httpx.ReadTimeout("slow")], response)
    backend = GeminiChatBackend(client=SimpleNamespace(aio=SimpleNamespace(models=down)), model="gemini-test")
    with pytest.raises(LLMBackendError) as exc_info:
        await backend.generate("sys", [{"role": "user", "content": "x"}])
    assert not isinstance(exc_info.value, QuotaExceededError)
    assert down.calls == 2


def test_unknown_provider_is_rejected() -> None:
    with pytest.raises(ValueError):
        get_chat_backend("llama")
    assert get_chat_backend("openai") is get_chat_backend("openai")
