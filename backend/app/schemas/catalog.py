from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _CatalogModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class VariantIn(_CatalogModel):
    id: str
    title: str = ""
    price: float = 0.0
    sku: Optional[str] = None
    inventory_quantity: int = 0
    image: Optional[str] = None
    selected_options: List[Dict[str, Any]] = []

    @field_validator("price", mode="before")
    @classmethod
    def parse_price(cls, value: Any) -> float:
        if value is None or value == "":
            return 0.0
        return float(value)


class CatalogProductIn(_CatalogModel):
    id: str = Field(min_length=1, description="External id, e.g. gid://shopify/Product/123")
    title: str = Field(min_length=1)
    description: str = ""
    vendor: str = ""
    product_type: str = ""
    handle: str = ""
    image: Optional[str] = None
    tags: List[str] = []
    collections: List[str] = []
    options: List[Dict[str, Any]] = []
    variants: List[VariantIn] = []


class CatalogSyncRequest(_CatalogModel):
    products: List[CatalogProductIn]


class CatalogSyncResult(_CatalogModel):
    saved: int = 0
    upserted: int = 0
    skipped: int = 0
    failed_batches: int = 0


class CatalogDeleteResult(_CatalogModel):
    product_id: str
    row_deleted: bool
    vector_id: str
