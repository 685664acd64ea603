from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx

from app.core.config import settings
from app.core.exceptions import VectorIndexError
from app.core.logging import get_logger
from app.utils.retry import async_retrying

logger = get_logger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}

MetadataValue = Any


@dataclass
class IndexMatch:
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorRecord:
    id: str
    values: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return {"id": self.id, "values": self.values, "metadata": sanitize_metadata(self.metadata)}


def sanitize_metadata(metadata: Dict[str, Any]) -> Dict[str, MetadataValue]:
    """Flatten metadata to what the index accepts: scalars and lists of strings.

    Nested objects and mixed lists are JSON-stringified, None values are dropped.
    """
    clean: Dict[str, MetadataValue] = {}
    for key, value in (metadata or {}).items():
        if value is None:
            continue
        if isinstance(value, (str, bool, int, float)):
            clean[key] = value
        elif isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
            clean[key] = list(value)
        else:
            clean[key] = json.dumps(value, ensure_ascii=False, default=str)
    return clean


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    return isinstance(exc, VectorIndexError) and exc.status_code in RETRYABLE_STATUS


class VectorIndexClient:
    """Thin async client for the Pinecone data-plane REST API, one namespace per shop."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        host: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        retry_min_seconds: Optional[float] = None,
        retry_max_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        host = host if host is not None else settings.PINECONE_INDEX_HOST
        if host and not host.startswith("http"):
            host = f"https://{host}"
        self.host = host.rstrip("/")
        self.api_key = api_key if api_key is not None else settings.PINECONE_API_KEY
        self.api_version = api_version or settings.PINECONE_API_VERSION
        self.timeout = timeout if timeout is not None else settings.PINECONE_TIMEOUT_SECONDS
        self.max_attempts = max_attempts if max_attempts is not None else settings.PINECONE_MAX_ATTEMPTS
        self.retry_min_seconds = (
            retry_min_seconds if retry_min_seconds is not None else settings.PINECONE_RETRY_MIN_SECONDS
        )
        self.retry_max_seconds = (
            retry_max_seconds if retry_max_seconds is not None else settings.PINECONE_RETRY_MAX_SECONDS
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def configured(self) -> bool:
        return bool(self.host and self.api_key)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.host,
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Api-Key": self.api_key,
                    "X-Pinecone-Api-Version": self.api_version,
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.configured:
            raise VectorIndexError("Vector index is not configured")

        client = self._get_client()
        async for attempt in async_retrying(
            max_attempts=self.max_attempts,
            min_wait=self.retry_min_seconds,
            max_wait=self.retry_max_seconds,
            should_retry=_is_transient,
        ):
            with attempt:
                response = await client.post(path, json=payload)
                if response.status_code >= 400:
                    raise VectorIndexError(
                        f"Vector index {path} failed: {response.status_code} {response.text[:200]}",
                        status_code=response.status_code,
                    )
                if not response.content:
                    return {}
                try:
                    return response.json()
                except ValueError as e:
                    raise VectorIndexError(f"Vector index {path} returned invalid JSON") from e
        return {}

    async def query(
        self,
        namespace: str,
        vector: Sequence[float],
        *,
        top_k: int,
        include_metadata: bool = True,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[IndexMatch]:
        payload: Dict[str, Any] = {
            "namespace": namespace,
            "vector": list(vector),
            "topK": int(top_k),
            "includeMetadata": include_metadata,
        }
        if filter:
            payload["filter"] = filter
        data = await self._post("/query", payload)
        matches = []
        for raw in data.get("matches") or []:
            matches.append(
                IndexMatch(
                    id=str(raw.get("id", "")),
                    score=float(raw.get("score") or 0.0),
                    metadata=dict(raw.get("metadata") or {}),
                )
            )
        return matches

    async def upsert(self, namespace: str, records: Sequence[VectorRecord]) -> int:
        if not records:
            return 0
        data = await self._post(
            "/vectors/upsert",
            {"namespace": namespace, "vectors": [r.to_payload() for r in records]},
        )
        return int(data.get("upsertedCount", len(records)))

    async def delete(self, namespace: str, ids: Sequence[str]) -> None:
        if not ids:
            return
        await self._post("/vectors/delete", {"namespace": namespace, "ids": list(ids)})


vector_index_client = VectorIndexClient()
