import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.logging import get_logger
from app.dependencies import get_session_factory, get_ws_connection_registry
from app.services.chat.connection_registry import ConnectionRegistry
from app.services.chat.processor import ChatProcessor

router = APIRouter()
logger = get_logger(__name__)

INVALID_REQUEST = "INVALID_REQUEST"


def parse_frame(raw: str) -> Dict[str, Any]:
    """JSON ``{message, sessionId?}``; anything else is the message text itself."""
    try:
        data = json.loads(raw)
    except ValueError:
        return {"message": raw}
    if isinstance(data, dict):
        return data
    return {"message": raw}


@router.websocket("/ws/chat")
async def chat_socket(
    websocket: WebSocket,
    shop: Optional[str] = Query(default=None),
    cust_mail: Optional[str] = Query(default=None, alias="custMail"),
    registry: ConnectionRegistry = Depends(get_ws_connection_registry),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    if not shop or not cust_mail:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Missing credentials")
        return

    await websocket.accept()
    registry.register(shop, cust_mail, websocket)

    try:
        while True:
            frame = parse_frame(await websocket.receive_text())
            message = frame.get("message")
            if not isinstance(message, str) or not message.strip():
                await websocket.send_json(
                    {
                        "success": False,
                        "error": INVALID_REQUEST,
                        "errorMessage": "Message is required",
                    }
                )
                continue

            async with session_factory() as db:
                processor = ChatProcessor(db, channel="ws")
                response = await processor.process_chat(
                    shop, cust_mail, message.strip(), frame.get("sessionId")
                )
            payload = response.to_wire()

            await websocket.send_json(payload)
            await registry.broadcast(shop, cust_mail, payload, exclude=websocket)
    except WebSocketDisconnect:
        logger.info("Chat socket disconnected", extra={"shop": shop})
    except Exception as e:
        logger.error(f"Chat socket error: {e}", extra={"shop": shop})
    finally:
        registry.unregister(shop, cust_mail, websocket)
