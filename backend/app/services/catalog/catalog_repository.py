from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence, Set

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.product import Order, OrderItem, Product

INTERNAL_CATEGORY_MARKERS = ("automated", "collection")


@dataclass(frozen=True)
class BestSellerItem:
    product: Product
    total_sold: int


@dataclass
class BestSellerResult:
    items: List[BestSellerItem] = field(default_factory=list)
    has_catalog: bool = True
    all_time_fallback: bool = False


def _labels(product: Product) -> Iterable[str]:
    for value in list(product.tags or []) + list(product.collections or []):
        if isinstance(value, str) and len(value) > 2:
            yield value.lower()


class CatalogRepository:
    """Read-side catalog queries shared by the keyword router, search and prompt builder."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def category_terms(self, shop: str, *, limit: int = 100) -> Set[str]:
        """Terms this shop actually carries: tags, collections and longer title words."""
        result = await self.db.execute(
            select(Product).where(Product.shop == shop).limit(limit)
        )
        terms: Set[str] = set()
        for product in result.scalars().all():
            terms.update(_labels(product))
            for word in (product.title or "").lower().split():
                if 4 < len(word) < 20:
                    terms.add(word)
        return terms

    async def contains_category(self, shop: str, message: str) -> bool:
        lower = (message or "").lower()
        terms = await self.category_terms(shop)
        return any(term in lower for term in terms)

    async def top_categories(self, shop: str, *, sample: int = 200, top_n: int = 5) -> List[str]:
        result = await self.db.execute(
            select(Product).where(Product.shop == shop).limit(sample)
        )
        counts: Counter[str] = Counter()
        for product in result.scalars().all():
            counts.update(_labels(product))
        top = [label for label, _ in counts.most_common(top_n)]
        # Shopify admin labels like "Automated Collection" never reach shoppers
        return [
            label for label in top
            if not any(marker in label for marker in INTERNAL_CATEGORY_MARKERS)
        ]

    async def products_by_price(self, shop: str, *, descending: bool = False, limit: int = 5) -> List[Product]:
        order = desc(Product.price) if descending else Product.price
        result = await self.db.execute(
            select(Product).where(Product.shop == shop).order_by(order).limit(limit)
        )
        return list(result.scalars().all())

    async def newest_products(
        self,
        shop: str,
        *,
        limit: int = 6,
        title_contains: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
    ) -> List[Product]:
        stmt = select(Product).where(Product.shop == shop)
        if title_contains:
            stmt = stmt.where(Product.title.ilike(f"%{title_contains}%"))
        if min_price is not None:
            stmt = stmt.where(Product.price >= min_price)
        if max_price is not None:
            stmt = stmt.where(Product.price <= max_price)
        stmt = stmt.order_by(desc(Product.created_at), desc(Product.id)).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def products_by_external_ids(self, shop: str, prod_ids: Sequence[str]) -> List[Product]:
        if not prod_ids:
            return []
        result = await self.db.execute(
            select(Product).where(Product.shop == shop, Product.prod_id.in_(list(prod_ids)))
        )
        return list(result.scalars().all())

    async def _sales_totals(self, shop: str, *, since: Optional[datetime], limit: int) -> List[tuple]:
        total = func.sum(OrderItem.quantity).label("total_sold")
        stmt = (
            select(OrderItem.product_id, total)
            .join(Order, Order.id == OrderItem.order_id)
            .join(Product, (Product.prod_id == OrderItem.product_id) & (Product.shop == shop))
            .where(Order.shop == shop)
            .group_by(OrderItem.product_id)
            .order_by(desc(total))
            .limit(limit)
        )
        if since is not None:
            stmt = stmt.where(Order.created_at >= since)
        result = await self.db.execute(stmt)
        return [(row[0], int(row[1] or 0)) for row in result.all()]

    async def best_sellers(self, shop: str, *, window_days: int = 90, limit: int = 8) -> BestSellerResult:
        """Top sellers over the recent window, falling back to all-time sales."""
        has_catalog = await self.db.scalar(
            select(func.count()).select_from(Product).where(Product.shop == shop)
        )
        if not has_catalog:
            return BestSellerResult(has_catalog=False)

        since = datetime.now(timezone.utc) - timedelta(days=window_days)
        totals = await self._sales_totals(shop, since=since, limit=limit)
        all_time = False
        if not totals:
            totals = await self._sales_totals(shop, since=None, limit=limit)
            all_time = True
        if not totals:
            return BestSellerResult(all_time_fallback=all_time)

        sold_by_id = dict(totals)
        products = await self.products_by_external_ids(shop, list(sold_by_id))
        items = sorted(
            (BestSellerItem(product=p, total_sold=sold_by_id.get(p.prod_id, 0)) for p in products),
            key=lambda item: item.total_sold,
            reverse=True,
        )
        return BestSellerResult(items=items, all_time_fallback=all_time)
