from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.dependencies import get_connection_registry, get_db
from app.schemas.chat import ChatHistoryResponse, ChatRequest, ChatResponse, SessionSummary
from app.services.chat.connection_registry import ConnectionRegistry
from app.services.chat.processor import SYSTEM_ERROR, ChatProcessor, validate_chat_request
from app.services.chat.session_store import ChatSessionStore
from app.services.chat.summary_service import SessionSummaryService

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/{shop}/{cust_mail}",
    response_model=ChatResponse,
    response_model_exclude_none=True,
)
async def chat(
    shop: str,
    cust_mail: str,
    request: ChatRequest,
    db: AsyncSession = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_connection_registry),
):
    """
    Storefront chat endpoint.

    Credit gate, keyword fast path, then retrieval plus the LLM with the
    ``recommend_products`` tool. Every outcome is a ChatResponse.
    """
    message = validate_chat_request(shop, request.message)

    processor = ChatProcessor(db, channel="http")
    response = await processor.process_chat(shop, cust_mail, message, request.session_id)
    payload = response.to_wire()

    await registry.broadcast(shop, cust_mail, payload)

    if response.error == SYSTEM_ERROR:
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=payload)
    return response


@router.get(
    "/{shop}/{cust_mail}",
    response_model=ChatHistoryResponse,
)
async def chat_history(
    shop: str,
    cust_mail: str,
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    db: AsyncSession = Depends(get_db),
):
    """Messages of the requested session, or the customer's most recent one."""
    store = ChatSessionStore(db)
    return await store.load_history_view(shop, cust_mail, session_id)


@router.get(
    "/{shop}/sessions/{session_id}/summary",
    response_model=SessionSummary,
)
async def session_summary(
    shop: str,
    session_id: str,
    db: AsyncSession = Depends(get_db),
):
    summary = await SessionSummaryService(db).summarize_session(shop, session_id)
    if summary is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No messages found for this session",
        )
    return summary
