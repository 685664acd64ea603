from typing import AsyncGenerator

from fastapi import Request, WebSocket
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.session import AsyncSessionLocal
from app.services.chat.connection_registry import ConnectionRegistry


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for database session."""
    async with AsyncSessionLocal() as session:
        yield session


def get_session_factory() -> async_sessionmaker:
    """Long-lived sockets open one session per frame instead of holding one."""
    return AsyncSessionLocal


def get_connection_registry(request: Request) -> ConnectionRegistry:
    """Registry created by the application lifespan."""
    return request.app.state.connection_registry


def get_ws_connection_registry(websocket: WebSocket) -> ConnectionRegistry:
    return websocket.app.state.connection_registry
