from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import get_logger
from app.models.product import Product
from app.services.ai.llm_service import llm_service
from app.services.catalog.catalog_repository import CatalogRepository
from app.services.search.vector_index import IndexMatch, VectorIndexClient, vector_index_client
from app.utils.shop import namespace_for_shop

logger = get_logger(__name__)

PRICE_SORTS = ("price_asc", "price_desc")
DB_SORTS = ("newest", "best_selling")
DB_SORT_LIMIT = 10

GENERIC_QUERY_TERMS = (
    "products", "items", "stuff", "gift", "gifts", "shop", "collection",
    "anything", "something", "best selling", "recommended",
)

_PRICE_CHARS = re.compile(r"[^0-9.]")


@dataclass(frozen=True)
class SearchTuning:
    top_k_default: int = 50
    top_k_price_sort: int = 100
    result_limit: int = 6
    threshold_default: float = 0.40
    threshold_boosted: float = 0.20
    threshold_generic: float = 0.10
    bonus_title: float = 0.25
    bonus_attribute: float = 0.30
    bonus_tag: float = 0.15

    @classmethod
    def from_settings(cls) -> "SearchTuning":
        return cls(
            top_k_default=settings.SEARCH_TOPK_DEFAULT,
            top_k_price_sort=settings.SEARCH_TOPK_PRICE_SORT,
            result_limit=settings.SEARCH_RESULT_LIMIT,
            threshold_default=settings.SEARCH_THRESHOLD_DEFAULT,
            threshold_boosted=settings.SEARCH_THRESHOLD_BOOSTED,
            threshold_generic=settings.SEARCH_THRESHOLD_GENERIC,
            bonus_title=settings.SEARCH_BONUS_TITLE,
            bonus_attribute=settings.SEARCH_BONUS_ATTRIBUTE,
            bonus_tag=settings.SEARCH_BONUS_TAG,
        )


@dataclass
class ProductMatch:
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    price: float = 0.0
    bonus: float = 0.0

    @property
    def product_id(self) -> str:
        return str(self.metadata.get("product_id") or self.id)

    @property
    def title(self) -> str:
        return str(self.metadata.get("title") or "")

    def to_product(self) -> Dict[str, Any]:
        return {
            "id": self.product_id,
            "title": self.title,
            "price": self.price,
            "handle": self.metadata.get("handle") or None,
            "image": self.metadata.get("image") or None,
            "score": round(self.score, 4),
            "description": self.metadata.get("description") or None,
        }


@dataclass
class SearchDebug:
    query: str
    index_matches: int = 0
    dropped_count: int = 0
    error: Optional[str] = None


@dataclass
class SearchResult:
    matches: List[ProductMatch]
    debug: SearchDebug


def parse_price(metadata: Dict[str, Any]) -> float:
    raw = metadata.get("price_val")
    if raw is None or raw == "":
        raw = metadata.get("price")
    if isinstance(raw, (int, float)):
        return float(raw)
    # "19.99 - 29.99" and "$19.99" both normalize to the leading number
    text = str(raw or "0").split("-")[0]
    try:
        return float(_PRICE_CHARS.sub("", text) or 0)
    except ValueError:
        return 0.0


def _string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return [part.strip() for part in value.split(",") if part.strip()]
        value = parsed
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None]
    return [str(value)]


def is_generic_query(query: str) -> bool:
    lower = (query or "").lower()
    return any(term in lower for term in GENERIC_QUERY_TERMS)


def keyword_bonus(match: IndexMatch, query: str, boost_attribute: Optional[str], tuning: SearchTuning) -> float:
    metadata = match.metadata or {}
    lower_query = (query or "").lower().strip()
    title = str(metadata.get("title") or "").lower()
    tags = [t.lower() for t in _string_list(metadata.get("tags"))]
    collections = [c.lower() for c in _string_list(metadata.get("collections"))]
    description = str(metadata.get("description") or "").lower()

    bonus = 0.0
    if lower_query and lower_query in title:
        bonus += tuning.bonus_title
    if boost_attribute:
        attribute = boost_attribute.lower().strip()
        haystack = " ".join([title, " ".join(tags), " ".join(collections), description])
        if attribute and attribute in haystack:
            bonus += tuning.bonus_attribute
    if lower_query and any(tag and tag in lower_query for tag in tags):
        bonus += tuning.bonus_tag
    return bonus


def filter_and_rank(
    matches: Sequence[IndexMatch],
    *,
    query: str,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort: Optional[str] = None,
    boost_attribute: Optional[str] = None,
    tuning: Optional[SearchTuning] = None,
    debug: Optional[SearchDebug] = None,
) -> List[ProductMatch]:
    """Price filter, hybrid scoring, adaptive threshold and ordering. Pure."""
    tuning = tuning or SearchTuning()
    debug = debug if debug is not None else SearchDebug(query=query)
    generic = is_generic_query(query)

    kept: List[ProductMatch] = []
    for match in matches:
        if not match.metadata:
            continue
        price = parse_price(match.metadata)
        if min_price is not None and price < min_price:
            continue
        if max_price is not None and price > max_price:
            continue

        bonus = keyword_bonus(match, query, boost_attribute, tuning)
        score = float(match.score or 0.0) + bonus

        threshold = tuning.threshold_default
        if bonus > 0:
            threshold = tuning.threshold_boosted
        if generic:
            threshold = min(threshold, tuning.threshold_generic)
        if score < threshold:
            debug.dropped_count += 1
            continue

        kept.append(ProductMatch(id=match.id, score=score, metadata=dict(match.metadata), price=price, bonus=bonus))

    if sort == "price_asc":
        kept.sort(key=lambda m: m.price)
    elif sort == "price_desc":
        kept.sort(key=lambda m: m.price, reverse=True)
    else:
        kept.sort(key=lambda m: m.score, reverse=True)
    return kept


def match_from_product(product: Product) -> ProductMatch:
    metadata = {
        "type": "PRODUCT",
        "product_id": product.prod_id,
        "title": product.title,
        "price": product.price,
        "price_val": product.price,
        "handle": product.handle or "",
        "image": product.image or "",
        "description": product.description or "",
        "inventory_status": "instock" if (product.stock or 0) > 0 else "outofstock",
    }
    return ProductMatch(id=product.prod_id, score=1.0, metadata=metadata, price=float(product.price or 0.0))


class ProductSearchService:
    """Hybrid product search: vector similarity plus keyword corroboration."""

    def __init__(
        self,
        db: Optional[AsyncSession] = None,
        index_client: Optional[VectorIndexClient] = None,
        embed: Optional[Callable[[str], Awaitable[List[float]]]] = None,
        tuning: Optional[SearchTuning] = None,
    ):
        self.db = db
        self.index_client = index_client or vector_index_client
        self.embed = embed or llm_service.generate_embedding
        self.tuning = tuning or SearchTuning.from_settings()

    async def search(
        self,
        shop: str,
        query: str,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        sort: Optional[str] = None,
        boost_attribute: Optional[str] = None,
    ) -> SearchResult:
        debug = SearchDebug(query=query)
        sort = sort or "relevance"

        if sort in DB_SORTS and self.db is not None:
            try:
                matches = await self._database_sort(shop, query, min_price, max_price, sort)
                return SearchResult(matches=matches, debug=debug)
            except Exception as e:
                logger.error(f"{sort} sort failed for {shop}, using vector search: {e}")
                sort = "relevance"

        try:
            vector = await self.embed(query)
            if not vector:
                return SearchResult(matches=[], debug=debug)

            top_k = self.tuning.top_k_price_sort if sort in PRICE_SORTS else self.tuning.top_k_default
            raw = await self.index_client.query(namespace_for_shop(shop), vector, top_k=top_k)
            debug.index_matches = len(raw)

            ranked = filter_and_rank(
                raw,
                query=query,
                min_price=min_price,
                max_price=max_price,
                sort=sort,
                boost_attribute=boost_attribute,
                tuning=self.tuning,
                debug=debug,
            )
            return SearchResult(matches=ranked[: self.tuning.result_limit], debug=debug)
        except Exception as e:
            logger.error(
                f"Product search failed: {e}",
                extra={"shop": shop, "query": (query or "")[:50]},
            )
            debug.error = str(e)
            return SearchResult(matches=[], debug=debug)

    async def _database_sort(
        self,
        shop: str,
        query: str,
        min_price: Optional[float],
        max_price: Optional[float],
        sort: str,
    ) -> List[ProductMatch]:
        catalog = CatalogRepository(self.db)
        if sort == "best_selling":
            result = await catalog.best_sellers(shop, limit=DB_SORT_LIMIT)
            if result.items:
                return [match_from_product(item.product) for item in result.items]
        products = await catalog.newest_products(
            shop,
            limit=DB_SORT_LIMIT,
            title_contains=query or None,
            min_price=min_price,
            max_price=max_price,
        )
        return [match_from_product(p) for p in products]
