from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from app.core.config import settings
from app.core.exceptions import LLMBackendError, QuotaExceededError
from app.core.logging import get_logger
from app.services.ai.llm_service import LLMService, llm_service
from app.utils.retry import async_retrying

logger = get_logger(__name__)


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    raw_arguments: str = "{}"
    argument_error: Optional[str] = None

    @classmethod
    def from_raw(cls, *, id: Optional[str], name: str, raw_arguments: Optional[str]) -> "ToolCall":
        raw = raw_arguments or "{}"
        try:
            parsed = json.loads(raw)
        except ValueError as e:
            return cls(id=id or _call_id(), name=name, raw_arguments=raw, argument_error=str(e))
        if not isinstance(parsed, dict):
            return cls(id=id or _call_id(), name=name, raw_arguments=raw, argument_error="arguments must be an object")
        return cls(id=id or _call_id(), name=name, arguments=parsed, raw_arguments=raw)


@dataclass
class BackendReply:
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)


class ChatBackend(Protocol):
    """One chat-completion provider. History uses the flat role/content shape.

    Messages may carry ``tool_calls`` (assistant) or ``tool_call_id``/``name`` (tool);
    each backend maps them into its native representation right before the call.
    """

    name: str

    async def generate(
        self,
        system_prompt: str,
        messages: Sequence[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> BackendReply:
        ...


def _call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


def to_openai_messages(system_prompt: str, messages: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    output: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    for message in messages:
        role = message.get("role")
        if role == "assistant" and message.get("tool_calls"):
            output.append(
                {
                    "role": "assistant",
                    "content": message.get("content") or "",
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": call.raw_arguments},
                        }
                        for call in message["tool_calls"]
                    ],
                }
            )
        elif role == "tool":
            output.append(
                {
                    "role": "tool",
                    "tool_call_id": message.get("tool_call_id"),
                    "content": message.get("content") or "",
                }
            )
        elif role in ("user", "assistant"):
            output.append({"role": role, "content": message.get("content") or ""})
    return output


class OpenAIChatBackend:
    name = "openai"

    def __init__(self, service: Optional[LLMService] = None):
        self.service = service or llm_service

    async def generate(
        self,
        system_prompt: str,
        messages: Sequence[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> BackendReply:
        message = await self.service.generate_chat_with_tools(
            messages=to_openai_messages(system_prompt, messages),
            tools=tools,
        )
        calls = [
            ToolCall.from_raw(id=call.id, name=call.function.name, raw_arguments=call.function.arguments)
            for call in (getattr(message, "tool_calls", None) or [])
        ]
        return BackendReply(content=(message.content or "").strip(), tool_calls=calls)


def to_gemini_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """JSON-schema subset to the Gemini schema dialect (uppercase type names)."""
    output: Dict[str, Any] = {}
    if "type" in schema:
        output["type"] = str(schema["type"]).upper()
    for key in ("description", "enum", "required"):
        if key in schema:
            output[key] = schema[key]
    if "properties" in schema:
        output["properties"] = {name: to_gemini_schema(sub) for name, sub in schema["properties"].items()}
    if "items" in schema:
        output["items"] = to_gemini_schema(schema["items"])
    return output


def to_gemini_tools(tools: Optional[List[Dict[str, Any]]]) -> Optional[List[types.Tool]]:
    if not tools:
        return None
    declarations = []
    for tool in tools:
        function = tool.get("function") or {}
        declarations.append(
            types.FunctionDeclaration(
                name=function.get("name"),
                description=function.get("description"),
                parameters=to_gemini_schema(function.get("parameters") or {}),
            )
        )
    return [types.Tool(function_declarations=declarations)]


def to_gemini_contents(messages: Sequence[Dict[str, Any]]) -> List[types.Content]:
    contents: List[types.Content] = []
    for message in messages:
        role = message.get("role")
        text = message.get("content") or ""
        if role == "assistant":
            parts = []
            if text:
                parts.append(types.Part(text=text))
            for call in message.get("tool_calls") or []:
                parts.append(types.Part(function_call=types.FunctionCall(name=call.name, args=call.arguments)))
            if parts:
                contents.append(types.Content(role="model", parts=parts))
        elif role == "tool":
            contents.append(
                types.Content(
                    role="user",
                    parts=[
                        types.Part(
                            function_response=types.FunctionResponse(
                                name=message.get("name") or "recommend_products",
                                response={"content": text},
                            )
                        )
                    ],
                )
            )
        elif role == "user":
            contents.append(types.Content(role="user", parts=[types.Part(text=text)]))
    return contents


def _is_gemini_quota(exc: BaseException) -> bool:
    return isinstance(exc, genai_errors.APIError) and (
        exc.code == 429 or (exc.status or "") == "RESOURCE_EXHAUSTED"
    )


def _is_transient_gemini_error(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if not isinstance(exc, genai_errors.APIError):
        return False
    return _is_gemini_quota(exc) or (exc.code or 0) >= 500


class GeminiChatBackend:
    name = "gemini"

    def __init__(self, client: Optional[genai.Client] = None, model: Optional[str] = None):
        self._client = client
        self.model = model or settings.GEMINI_MODEL

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            if settings.GEMINI_USE_VERTEX:
                self._client = genai.Client(
                    vertexai=True,
                    project=settings.GOOGLE_CLOUD_PROJECT,
                    location=settings.GOOGLE_CLOUD_LOCATION,
                )
            else:
                self._client = genai.Client(api_key=settings.GEMINI_API_KEY)
        return self._client

    async def generate(
        self,
        system_prompt: str,
        messages: Sequence[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> BackendReply:
        config = types.GenerateContentConfig(
            system_instruction=system_prompt,
            tools=to_gemini_tools(tools),
            temperature=settings.CHAT_TEMPERATURE,
            max_output_tokens=settings.CHAT_MAX_TOKENS,
            automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
        )
        contents = to_gemini_contents(messages)

        response = None
        try:
            async for attempt in async_retrying(
                max_attempts=settings.LLM_MAX_ATTEMPTS,
                min_wait=settings.LLM_RETRY_MIN_SECONDS,
                max_wait=settings.LLM_RETRY_MAX_SECONDS,
                should_retry=_is_transient_gemini_error,
            ):
                with attempt:
                    response = await self.client.aio.models.generate_content(
                        model=self.model,
                        contents=contents,
                        config=config,
                    )
        except (genai_errors.APIError, httpx.HTTPError) as e:
            if _is_gemini_quota(e):
                raise QuotaExceededError() from e
            raise LLMBackendError(f"Gemini request failed: {e}") from e

        return self._parse(response)

    @staticmethod
    def _parse(response: Any) -> BackendReply:
        reply = BackendReply()
        candidates = getattr(response, "candidates", None) or []
        if not candidates or candidates[0].content is None:
            return reply
        texts = []
        for part in candidates[0].content.parts or []:
            if getattr(part, "text", None):
                texts.append(part.text)
            call = getattr(part, "function_call", None)
            if call is not None and call.name:
                args = dict(call.args or {})
                reply.tool_calls.append(
                    ToolCall(
                        id=getattr(call, "id", None) or _call_id(),
                        name=call.name,
                        arguments=args,
                        raw_arguments=json.dumps(args),
                    )
                )
        reply.content = "".join(texts).strip()
        return reply


_backends: Dict[str, ChatBackend] = {}


def get_chat_backend(provider: Optional[str] = None) -> ChatBackend:
    provider = (provider or settings.LLM_PROVIDER or "openai").lower()
    if provider not in _backends:
        if provider == "gemini":
            _backends[provider] = GeminiChatBackend()
        elif provider == "openai":
            _backends[provider] = OpenAIChatBackend()
        else:
            raise ValueError(f"Unknown LLM provider: {provider}")
    return _backends[provider]
