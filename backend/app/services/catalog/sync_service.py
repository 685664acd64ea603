from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import get_logger
from app.models.product import Product
from app.schemas.catalog import CatalogDeleteResult, CatalogProductIn, CatalogSyncResult
from app.services.ai.llm_service import llm_service
from app.services.search.vector_index import VectorIndexClient, VectorRecord, vector_index_client
from app.utils.shop import namespace_for_shop

logger = get_logger(__name__)

PRODUCT_RECORD_TYPE = "PRODUCT"


@dataclass
class PreparedRecord:
    vector_id: str
    text: str
    metadata: Dict[str, Any]


def vector_id_for(product_id: str) -> str:
    """gid://shopify/Product/123 -> shopify_123"""
    return f"shopify_{product_id.rstrip('/').split('/')[-1]}"


def _format_price(value: float) -> str:
    return f"{value:g}"


def price_range(product: CatalogProductIn) -> tuple[float, float]:
    prices = [v.price for v in product.variants]
    if not prices:
        return 0.0, 0.0
    return min(prices), max(prices)


def total_inventory(product: CatalogProductIn) -> int:
    return sum(v.inventory_quantity or 0 for v in product.variants)


def prepare_record(product: CatalogProductIn) -> PreparedRecord:
    min_price, max_price = price_range(product)
    price_display = (
        _format_price(min_price)
        if min_price == max_price
        else f"{_format_price(min_price)} - {_format_price(max_price)}"
    )
    status = "instock" if total_inventory(product) > 0 else "outofstock"

    text = "\n".join(
        [
            f"Product: {product.title}",
            f"Vendor: {product.vendor}",
            f"Type: {product.product_type}",
            f"Description: {product.description}",
            f"Tags: {', '.join(product.tags)}",
            f"Collections: {', '.join(product.collections)}",
            f"Price: {price_display}",
            f"In Stock: {status}",
        ]
    )
    text = re.sub(r"\s+", " ", text).strip()

    variants = [v.model_dump(by_alias=True) for v in product.variants]
    metadata = {
        "type": PRODUCT_RECORD_TYPE,
        "product_id": product.id,
        "title": product.title,
        "vendor": product.vendor,
        "productType": product.product_type,
        "handle": product.handle,
        "image": product.image or "",
        "price": price_display,
        "price_val": min_price,
        "inventory_status": status,
        "collections": list(product.collections),
        "tags": list(product.tags),
        "description": product.description,
        "options": json.dumps(product.options),
        "variants": json.dumps(variants),
    }
    return PreparedRecord(vector_id=vector_id_for(product.id), text=text, metadata=metadata)


class CatalogSyncService:
    """Keeps the relational catalog and the shop's vector namespace in step."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        index_client: Optional[VectorIndexClient] = None,
        embed_batch: Optional[Callable[[List[str]], Awaitable[List[List[float]]]]] = None,
        batch_size: Optional[int] = None,
        concurrency: Optional[int] = None,
        pause_seconds: Optional[float] = None,
    ):
        self.db = db
        self.index_client = index_client or vector_index_client
        self.embed_batch = embed_batch or llm_service.generate_embeddings_batch
        self.batch_size = max(1, batch_size or settings.CATALOG_SYNC_BATCH_SIZE)
        self.concurrency = max(1, concurrency or settings.CATALOG_SYNC_CONCURRENCY)
        self.pause_seconds = settings.CATALOG_SYNC_BATCH_PAUSE_SECONDS if pause_seconds is None else pause_seconds

    async def save_products(self, shop: str, products: Sequence[CatalogProductIn]) -> int:
        """Upsert relational rows keyed by (shop, external id)."""
        if not products:
            return 0
        ids = [p.id for p in products]
        result = await self.db.execute(
            select(Product).where(Product.shop == shop, Product.prod_id.in_(ids))
        )
        existing = {row.prod_id: row for row in result.scalars().all()}

        for product in products:
            row = existing.get(product.id)
            if row is None:
                row = Product(shop=shop, prod_id=product.id)
                self.db.add(row)
                existing[product.id] = row
            row.title = product.title
            row.description = product.description
            row.handle = product.handle or None
            row.image = product.image
            row.vendor = product.vendor or None
            row.product_type = product.product_type or None
            row.price = price_range(product)[0]
            row.stock = total_inventory(product)
            row.tags = list(product.tags)
            row.collections = list(product.collections)
            row.variants = [v.model_dump(by_alias=True) for v in product.variants]

        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return len(products)

    async def _upsert_chunk(self, namespace: str, chunk: List[PreparedRecord], start: int) -> int:
        try:
            vectors = await self.embed_batch([record.text for record in chunk])
            records = [
                VectorRecord(id=record.vector_id, values=vector, metadata=record.metadata)
                for record, vector in zip(chunk, vectors)
            ]
            return await self.index_client.upsert(namespace, records)
        except Exception as e:
            logger.error(
                f"Catalog sync chunk failed at index {start}: {e}",
                extra={"namespace": namespace, "size": len(chunk)},
            )
            return -1

    async def sync_products(self, shop: str, products: Sequence[CatalogProductIn]) -> CatalogSyncResult:
        saved = await self.save_products(shop, products)

        prepared: List[PreparedRecord] = []
        skipped = 0
        for product in products:
            try:
                prepared.append(prepare_record(product))
            except Exception as e:
                logger.warning(f"Skipping malformed product {product.id}: {e}", extra={"shop": shop})
                skipped += 1

        namespace = namespace_for_shop(shop)
        chunks = [
            (start, prepared[start:start + self.batch_size])
            for start in range(0, len(prepared), self.batch_size)
        ]

        upserted = 0
        failed = 0
        for wave_start in range(0, len(chunks), self.concurrency):
            if wave_start:
                await asyncio.sleep(self.pause_seconds)
            wave = chunks[wave_start:wave_start + self.concurrency]
            counts = await asyncio.gather(
                *(self._upsert_chunk(namespace, chunk, start) for start, chunk in wave)
            )
            for count in counts:
                if count < 0:
                    failed += 1
                else:
                    upserted += count
            logger.info(f"Catalog sync: {upserted} / {len(prepared)} upserted", extra={"shop": shop})

        return CatalogSyncResult(saved=saved, upserted=upserted, skipped=skipped, failed_batches=failed)

    async def delete_product(self, shop: str, product_id: str) -> CatalogDeleteResult:
        result = await self.db.execute(
            select(Product).where(Product.shop == shop, Product.prod_id == product_id)
        )
        row = result.scalars().first()
        if row is not None:
            await self.db.delete(row)
            await self.db.commit()

        vector_id = vector_id_for(product_id)
        await self.index_client.delete(namespace_for_shop(shop), [vector_id])
        return CatalogDeleteResult(product_id=product_id, row_deleted=row is not None, vector_id=vector_id)
