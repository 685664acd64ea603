from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.dependencies import get_db
from app.schemas.catalog import CatalogDeleteResult, CatalogSyncRequest, CatalogSyncResult
from app.services.catalog.sync_service import CatalogSyncService

router = APIRouter()
logger = get_logger(__name__)


@router.post("/{shop}/products", response_model=CatalogSyncResult)
async def sync_products(
    shop: str,
    request: CatalogSyncRequest,
    db: AsyncSession = Depends(get_db),
):
    """Save products and refresh their vectors in the shop namespace."""
    result = await CatalogSyncService(db).sync_products(shop, request.products)
    logger.info(
        f"Catalog sync finished: saved={result.saved} upserted={result.upserted} "
        f"skipped={result.skipped} failed_batches={result.failed_batches}",
        extra={"shop": shop},
    )
    return result


@router.delete("/{shop}/products/{product_id:path}", response_model=CatalogDeleteResult)
async def delete_product(
    shop: str,
    product_id: str,
    db: AsyncSession = Depends(get_db),
):
    return await CatalogSyncService(db).delete_product(shop, product_id)
