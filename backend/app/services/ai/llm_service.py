import hashlib
import json
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import openai
from openai import AsyncOpenAI

from app.core.config import settings
from app.core.exceptions import LLMBackendError, QuotaExceededError
from app.core.logging import get_logger
from app.utils.retry import async_retrying

logger = get_logger(__name__)

T = TypeVar("T")


class _EmbeddingCache:
    def __init__(self, *, max_items: int, ttl_seconds: float):
        self.max_items = max(0, int(max_items))
        self.ttl_seconds = float(ttl_seconds)
        self._data: OrderedDict[str, tuple[float, List[float]]] = OrderedDict()

    def get(self, key: str) -> Optional[List[float]]:
        if not key or self.max_items <= 0:
            return None
        item = self._data.get(key)
        if not item:
            return None
        expires_at, value = item
        if expires_at and expires_at < time.time():
            self._data.pop(key, None)
            return None
        self._data.move_to_end(key)
        return value

    def set(self, key: str, value: List[float]) -> None:
        if not key or self.max_items <= 0:
            return
        expires_at = 0.0
        if self.ttl_seconds > 0:
            expires_at = time.time() + self.ttl_seconds
        self._data[key] = (expires_at, value)
        self._data.move_to_end(key)
        while len(self._data) > self.max_items:
            self._data.popitem(last=False)


def is_insufficient_quota(exc: BaseException) -> bool:
    return isinstance(exc, openai.APIStatusError) and getattr(exc, "code", None) == "insufficient_quota"


def is_transient_openai_error(exc: BaseException) -> bool:
    if is_insufficient_quota(exc):
        return False
    return isinstance(
        exc,
        (openai.RateLimitError, openai.APIConnectionError, openai.APITimeoutError, openai.InternalServerError),
    )


class LLMService:
    """Service for interacting with OpenAI chat completions and embeddings."""

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self._client = client
        self.model = settings.OPENAI_MODEL
        self.embedding_model = settings.EMBEDDING_MODEL
        self.max_attempts = settings.LLM_MAX_ATTEMPTS
        self.retry_min_seconds = settings.LLM_RETRY_MIN_SECONDS
        self.retry_max_seconds = settings.LLM_RETRY_MAX_SECONDS
        self._embedding_cache = _EmbeddingCache(
            max_items=settings.EMBEDDING_CACHE_MAX_ITEMS,
            ttl_seconds=settings.EMBEDDING_CACHE_TTL_SECONDS,
        )

    @property
    def client(self) -> AsyncOpenAI:
        # Retries are owned by tenacity below, not the SDK
        if self._client is None:
            self._client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY, max_retries=0)
        return self._client

    def _embedding_cache_key(self, text: str) -> str:
        if text is None:
            text = ""
        payload = f"{self.embedding_model}:{text}"
        digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
        return f"{self.embedding_model}:{digest}"

    async def _call(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run an OpenAI call with capped backoff and map quota failures."""
        try:
            async for attempt in async_retrying(
                max_attempts=self.max_attempts,
                min_wait=self.retry_min_seconds,
                max_wait=self.retry_max_seconds,
                should_retry=is_transient_openai_error,
            ):
                with attempt:
                    return await fn()
        except openai.RateLimitError as e:
            # insufficient_quota, or a 429 that outlived every retry
            raise QuotaExceededError() from e
        except openai.OpenAIError as e:
            raise LLMBackendError(str(e)) from e
        raise LLMBackendError("OpenAI call produced no result")

    async def generate_embedding(self, text: str) -> List[float]:
        """Generate embedding for a text."""
        cache_key = self._embedding_cache_key(text)
        cached = self._embedding_cache.get(cache_key)
        if cached is not None:
            return cached
        try:
            response = await self._call(
                lambda: self.client.embeddings.create(model=self.embedding_model, input=text)
            )
        except LLMBackendError as e:
            logger.error(f"Error generating embedding: {e}")
            raise
        embedding = response.data[0].embedding
        self._embedding_cache.set(cache_key, embedding)
        return embedding

    async def generate_embeddings_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts, preserving input order."""
        if not texts:
            return []
        try:
            response = await self._call(
                lambda: self.client.embeddings.create(model=self.embedding_model, input=texts)
            )
        except LLMBackendError as e:
            logger.error(f"Error generating batch embeddings: {e}")
            raise
        ordered = sorted(response.data, key=lambda item: item.index)
        return [item.embedding for item in ordered]

    async def generate_chat_with_tools(
        self,
        messages: List[dict],
        tools: Optional[List[dict]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
    ) -> Any:
        """Return the first choice's message (content plus optional tool_calls)."""
        kwargs: Dict[str, Any] = {
            "model": model or self.model,
            "messages": messages,
            "temperature": settings.CHAT_TEMPERATURE if temperature is None else temperature,
            "max_tokens": max_tokens or settings.CHAT_MAX_TOKENS,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        response = await self._call(lambda: self.client.chat.completions.create(**kwargs))
        return response.choices[0].message

    async def generate_chat_json(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: Optional[int] = 600,
    ) -> Dict[str, Any]:
        """Generate strict JSON output using response_format=json_object."""
        response = await self._call(
            lambda: self.client.chat.completions.create(
                model=model or self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
            )
        )
        content = response.choices[0].message.content or "{}"
        return json.loads(content)


# Singleton instance
llm_service = LLMService()
