import pytest

from app.services.chat.connection_registry import ConnectionRegistry, connection_key

SHOP = "cool-kicks.myshopify.com"


class FakeSocket:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []
        self.closed_with = None

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(data)

    async def close(self, code=1000, reason=None):
        self.closed_with = code


def test_key_ignores_email_case() -> None:
    assert connection_key(SHOP, " Ann@Example.com ") == (SHOP, "ann@example.com")


def test_reconnect_replaces_previous_socket() -> None:
    registry = ConnectionRegistry()
    first, second = FakeSocket(), FakeSocket()
    registry.register(SHOP, "ann@example.com", first)
    registry.register(SHOP, "ANN@example.com", second)

    assert len(registry) == 1
    assert registry.get(SHOP, "ann@example.com") is second

    # the stale socket's cleanup must not evict its replacement
    registry.unregister(SHOP, "ann@example.com", first)
    assert registry.get(SHOP, "ann@example.com") is second

    registry.unregister(SHOP, "ann@example.com", second)
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_broadcast_delivers_and_respects_exclude() -> None:
    registry = ConnectionRegistry()
    socket = FakeSocket()
    registry.register(SHOP, "ann@example.com", socket)

    assert await registry.broadcast(SHOP, "ann@example.com", {"success": True}) is True
    assert socket.sent == [{"success": True}]
    assert await registry.broadcast(SHOP, "ann@example.com", {"x": 1}, exclude=socket) is False
    assert await registry.broadcast(SHOP, "bob@example.com", {"x": 1}) is False
    assert len(socket.sent) == 1


@pytest.mark.asyncio
async def test_failed_broadcast_prunes_socket() -> None:
    registry = ConnectionRegistry()
    registry.register(SHOP, "ann@example.com", FakeSocket(fail=True))

    assert await registry.broadcast(SHOP, "ann@example.com", {"x": 1}) is False
    assert registry.get(SHOP, "ann@example.com") is None


@pytest.mark.asyncio
async def test_close_all_uses_going_away_code() -> None:
    registry = ConnectionRegistry()
    sockets = [FakeSocket(), FakeSocket()]
    registry.register(SHOP, "a@example.com", sockets[0])
    registry.register(SHOP, "b@example.com", sockets[1])

    await registry.close_all()

    assert len(registry) == 0
    assert [s.closed_with for s in sockets] == [1001, 1001]
