from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ResponseType = Literal["AI", "KEYWORD", "MANUAL_HANDOFF", "ERROR"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatRequest(CamelModel):
    message: Optional[str] = None
    session_id: Optional[str] = Field(default=None, description="Continue an existing session")


class ChatMessageOut(CamelModel):
    id: Optional[str] = None
    role: Literal["user", "assistant", "system"]
    content: str
    created_at: Optional[str] = None


class ChatProduct(CamelModel):
    id: Optional[str] = None
    title: Optional[str] = None
    price: Optional[float] = None
    handle: Optional[str] = None
    image: Optional[str] = None
    score: Optional[float] = None
    description: Optional[str] = None


class PerformanceInfo(CamelModel):
    response_time: int = 0
    products_found: int = 0
    token_estimate: Optional[int] = None
    is_product_query: Optional[bool] = None


class ChatResponse(CamelModel):
    success: bool
    session_id: Optional[str] = None
    response_type: ResponseType = "ERROR"
    user_message: Optional[ChatMessageOut] = None
    assistant_message: Optional[ChatMessageOut] = None
    products: Optional[List[ChatProduct]] = None
    remaining_credits: Optional[float] = None
    credits_used: Optional[float] = None
    performance: Optional[PerformanceInfo] = None
    error: Optional[str] = None
    error_message: Optional[str] = None
    handoff_to_manual: Optional[bool] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class SessionOut(CamelModel):
    id: str
    shop: str
    customer_id: Optional[str] = None
    is_guest: bool


class CustomerOut(CamelModel):
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class ChatHistoryResponse(CamelModel):
    session: Optional[SessionOut] = None
    messages: List[ChatMessageOut] = []
    customer: Optional[CustomerOut] = None


class SessionSummary(CamelModel):
    customer_name: Optional[str] = None
    overview: str = ""
    intent: str = ""
    sentiment: str = "Neutral"
    sentiment_score: int = 50
    priority: str = "Medium"
    tags: List[str] = []
    key_quotes: List[str] = []
    suggested_action: str = ""
    resolution_status: str = "Informational"
