from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from app.core.config import settings
from app.core.logging import get_logger
from app.services.ai.backends import ChatBackend, ToolCall
from app.services.ai.tool_registry import SUPPORTED_TOOLS, ToolRegistry
from app.services.search.product_search import ProductMatch
from app.utils.debug_log import debug_log as _debug_log

logger = get_logger(__name__)

EMPTY_REPLY_FALLBACK = "I apologize, but I couldn't generate a response."


@dataclass
class AgentRunResult:
    final_reply: str
    used_tools: bool
    products: List[ProductMatch] = field(default_factory=list)
    trace: List[Dict[str, Any]] = field(default_factory=list)


class AgentOrchestrator:
    """Send, run at most one round of tool calls, send again without tools."""

    def __init__(self, *, backend: ChatBackend, registry: ToolRegistry, run_id: str, channel: str = "http"):
        self.backend = backend
        self.registry = registry
        self.run_id = run_id
        self.channel = channel
        self.timeout_seconds = max(0.1, settings.AGENTIC_TOOL_TIMEOUT_MS / 1000.0)

    @staticmethod
    def _sanitize_for_trace(value: Any, *, depth: int = 2, max_str: int = 200) -> Any:
        if depth <= 0:
            if isinstance(value, str):
                return value[:max_str]
            return value
        if isinstance(value, dict):
            return {
                str(key): AgentOrchestrator._sanitize_for_trace(item, depth=depth - 1, max_str=max_str)
                for key, item in value.items()
            }
        if isinstance(value, list):
            return [
                AgentOrchestrator._sanitize_for_trace(item, depth=depth - 1, max_str=max_str)
                for item in value[:10]
            ]
        if isinstance(value, str):
            return value[:max_str]
        return value

    def _log_tool_event(self, *, tool_name: str, args: Dict[str, Any], status: str, duration_ms: int, result_count: int) -> None:
        _debug_log(
            {
                "runId": self.run_id,
                "location": "orchestrator.tool_call",
                "message": "tool call",
                "data": {
                    "tool": tool_name,
                    "args": self._sanitize_for_trace(args),
                    "status": status,
                    "duration_ms": duration_ms,
                    "result_count": result_count,
                    "channel": self.channel,
                },
                "timestamp": int(time.time() * 1000),
            }
        )

    @staticmethod
    def format_tool_result(matches: Sequence[ProductMatch]) -> str:
        payload = []
        for match in matches:
            product = match.to_product()
            product.pop("description", None)
            payload.append(product)
        return json.dumps(payload, ensure_ascii=True)

    async def _execute(self, call: ToolCall) -> tuple[str, List[ProductMatch], Dict[str, Any]]:
        """Returns (status, matches, payload for the model)."""
        if call.argument_error:
            return "invalid_arguments", [], {"error": f"Invalid arguments: {call.argument_error}"}
        if call.name not in SUPPORTED_TOOLS:
            return "error", [], {"error": f"Unsupported tool: {call.name}"}
        try:
            matches = await asyncio.wait_for(
                self.registry.execute_tool(call.name, call.arguments),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            return "timeout", [], {"error": f"Tool timeout for {call.name}"}
        except ValidationError as exc:
            return "invalid_arguments", [], {"error": f"Invalid arguments: {exc.error_count()} error(s)"}
        return "ok", matches, {}

    async def run(
        self,
        *,
        system_prompt: str,
        history: Sequence[Dict[str, Any]],
        user_text: str,
    ) -> AgentRunResult:
        messages: List[Dict[str, Any]] = [
            {"role": entry["role"], "content": entry["content"]}
            for entry in history
            if entry.get("role") in ("user", "assistant") and entry.get("content")
        ]
        messages.append({"role": "user", "content": user_text})

        first = await self.backend.generate(system_prompt, messages, self.registry.tool_definitions())
        if not first.tool_calls:
            return AgentRunResult(final_reply=first.content or EMPTY_REPLY_FALLBACK, used_tools=False)

        messages.append({"role": "assistant", "content": first.content, "tool_calls": first.tool_calls})

        products: Dict[str, ProductMatch] = {}
        trace: List[Dict[str, Any]] = []
        for call in first.tool_calls:
            started = time.monotonic()
            status, matches, error_payload = await self._execute(call)
            duration_ms = int((time.monotonic() - started) * 1000)
            self._log_tool_event(
                tool_name=call.name,
                args=call.arguments,
                status=status,
                duration_ms=duration_ms,
                result_count=len(matches),
            )
            trace.append(
                {
                    "tool": call.name,
                    "status": status,
                    "duration_ms": duration_ms,
                    "result_count": len(matches),
                    "args": self._sanitize_for_trace(call.arguments),
                }
            )
            for match in matches:
                products.setdefault(match.product_id, match)

            content = self.format_tool_result(matches) if status == "ok" else json.dumps(error_payload)
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": call.id,
                    "name": call.name,
                    "content": content,
                }
            )

        # Single tool round: the follow-up call gets no tool definitions
        second = await self.backend.generate(system_prompt, messages, None)
        return AgentRunResult(
            final_reply=second.content or first.content or EMPTY_REPLY_FALLBACK,
            used_tools=True,
            products=list(products.values()),
            trace=trace,
        )
