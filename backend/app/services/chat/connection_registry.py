from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, Tuple

from app.core.logging import get_logger

logger = get_logger(__name__)

ConnectionKey = Tuple[str, str]


class ChatTransport(Protocol):
    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None: ...


def connection_key(shop: str, cust_mail: str) -> ConnectionKey:
    return shop, (cust_mail or "").strip().lower()


class ConnectionRegistry:
    """Active chat socket per (shop, customer). Lives on app.state for the process lifetime."""

    def __init__(self):
        self._connections: Dict[ConnectionKey, ChatTransport] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def register(self, shop: str, cust_mail: str, transport: ChatTransport) -> None:
        key = connection_key(shop, cust_mail)
        # A reconnect replaces the previous socket
        self._connections[key] = transport
        logger.info("Chat socket registered", extra={"shop": shop})

    def unregister(self, shop: str, cust_mail: str, transport: Optional[ChatTransport] = None) -> None:
        """Drop the entry. With ``transport`` given, only if it is still the registered one."""
        key = connection_key(shop, cust_mail)
        current = self._connections.get(key)
        if current is None:
            return
        if transport is not None and current is not transport:
            return
        del self._connections[key]
        logger.info("Chat socket unregistered", extra={"shop": shop})

    def get(self, shop: str, cust_mail: str) -> Optional[ChatTransport]:
        return self._connections.get(connection_key(shop, cust_mail))

    async def broadcast(
        self,
        shop: str,
        cust_mail: str,
        payload: Dict[str, Any],
        *,
        exclude: Optional[ChatTransport] = None,
    ) -> bool:
        """Best-effort send to the registered socket. A failed send prunes it."""
        transport = self.get(shop, cust_mail)
        if transport is None or transport is exclude:
            return False
        try:
            await transport.send_json(payload)
            return True
        except Exception as e:
            logger.warning(f"Dropping stale chat socket: {e}", extra={"shop": shop})
            self.unregister(shop, cust_mail, transport)
            return False

    async def close_all(self) -> None:
        connections = list(self._connections.values())
        self._connections.clear()
        for transport in connections:
            try:
                await transport.close(code=1001)
            except Exception as e:
                logger.debug(f"Error closing chat socket: {e}")
