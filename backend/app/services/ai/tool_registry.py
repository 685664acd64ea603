from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.services.search.product_search import ProductMatch, ProductSearchService

TOOL_RECOMMEND_PRODUCTS = "recommend_products"

SUPPORTED_TOOLS = {TOOL_RECOMMEND_PRODUCTS}


class RecommendProductsArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    search_query: str = Field(min_length=1, max_length=200)
    max_price: Optional[float] = Field(default=None, ge=0)
    min_price: Optional[float] = Field(default=None, ge=0)
    sort: Literal["price_asc", "price_desc", "relevance"] = "relevance"
    boost_attribute: Optional[str] = Field(default=None, max_length=100)

    @field_validator("search_query")
    @classmethod
    def validate_query(cls, value: str) -> str:
        clean = value.strip()
        if not clean:
            raise ValueError("search_query cannot be empty")
        return clean

    @field_validator("sort", mode="before")
    @classmethod
    def default_sort(cls, value: Any) -> Any:
        return value or "relevance"

    @field_validator("boost_attribute")
    @classmethod
    def validate_boost(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        clean = value.strip()
        return clean or None


class ToolRegistry:
    def __init__(self, search: ProductSearchService, *, shop: str):
        self.search = search
        self.shop = shop

    @staticmethod
    def tool_definitions() -> List[Dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": TOOL_RECOMMEND_PRODUCTS,
                    "description": "Search for products based on user intent.",
                    "parameters": {
                        "type": "object",
                        "properties": {
                            "search_query": {"type": "string", "description": "Main keywords"},
                            "max_price": {"type": "number"},
                            "min_price": {"type": "number"},
                            "sort": {
                                "type": "string",
                                "enum": ["price_asc", "price_desc", "relevance"],
                                "description": "Sort order",
                            },
                            "boost_attribute": {"type": "string"},
                        },
                        "required": ["search_query"],
                    },
                },
            }
        ]

    async def recommend_products(self, args: RecommendProductsArgs) -> List[ProductMatch]:
        result = await self.search.search(
            self.shop,
            args.search_query,
            min_price=args.min_price,
            max_price=args.max_price,
            sort=args.sort,
            boost_attribute=args.boost_attribute,
        )
        return result.matches

    async def execute_tool(self, tool_name: str, args: Dict[str, Any]) -> List[ProductMatch]:
        if tool_name == TOOL_RECOMMEND_PRODUCTS:
            return await self.recommend_products(RecommendProductsArgs.model_validate(args))
        raise ValueError(f"Unsupported tool: {tool_name}")
