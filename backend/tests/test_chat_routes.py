import pytest

pytest.importorskip("sqlalchemy")
pytest.importorskip("aiosqlite")

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from starlette.websockets import WebSocketDisconnect

from app.db.base import Base
from app.dependencies import get_db, get_session_factory
from app.main import app
from app.services.ai.backends import BackendReply
from app.services.chat import processor as processor_module
from app.services.search.product_search import SearchDebug, SearchResult

SHOP = "cool-kicks.myshopify.com"


class ScriptedBackend:
    name = "scripted"

    async def generate(self, system_prompt, messages, tools=None):
        return BackendReply(content="Happy to help with that.")


class EmptySearch:
    def __init__(self, db=None):
        pass

    async def search(self, shop, query, **kwargs):
        return SearchResult(matches=[], debug=SearchDebug(query=query))


@pytest.fixture
def client(tmp_path, monkeypatch: pytest.MonkeyPatch):
    # File database: the schema is created synchronously, connections open inside the client's loop
    path = tmp_path / "chat.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()

    engine = create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    async def override_get_db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: factory
    monkeypatch.setattr(processor_module, "get_chat_backend", lambda: ScriptedBackend())
    monkeypatch.setattr(processor_module, "ProductSearchService", EmptySearch)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_post_without_message_is_rejected(client) -> None:
    response = client.post(f"/api/chat/{SHOP}/guest", json={"message": "   "})
    assert response.status_code == 400


def test_post_then_fetch_history(client) -> None:
    response = client.post(f"/api/chat/{SHOP}/ann@example.com", json={"message": "hello"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["responseType"] == "KEYWORD"
    assert "error" not in body

    history = client.get(f"/api/chat/{SHOP}/ann@example.com").json()
    assert history["session"]["id"] == body["sessionId"]
    assert history["customer"]["email"] == "ann@example.com"
    assert [m["role"] for m in history["messages"]] == ["user", "assistant"]

    follow_up = client.post(
        f"/api/chat/{SHOP}/ann@example.com",
        json={"message": "what should I wear in heavy rain", "sessionId": body["sessionId"]},
    ).json()
    assert follow_up["responseType"] == "AI"
    assert follow_up["sessionId"] == body["sessionId"]
    assert follow_up["assistantMessage"]["content"] == "Happy to help with that."


def test_history_for_unknown_guest_is_empty(client) -> None:
    response = client.get(f"/api/chat/{SHOP}/guest")
    assert response.status_code == 200
    assert response.json() == {"session": None, "messages": [], "customer": None}


def test_history_of_other_shops_session_is_forbidden(client) -> None:
    session_id = client.post(f"/api/chat/{SHOP}/guest", json={"message": "hello"}).json()["sessionId"]
    response = client.get("/api/chat/other-shop.myshopify.com/guest", params={"sessionId": session_id})
    assert response.status_code == 403


def test_summary_of_missing_session_is_404(client) -> None:
    response = client.get(f"/api/chat/{SHOP}/sessions/nope/summary")
    assert response.status_code == 404


def test_socket_without_credentials_is_closed(client) -> None:
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect(f"/ws/chat?shop={SHOP}") as ws:
            ws.receive_json()
    assert exc_info.value.code == 1008


def test_socket_chat_roundtrip(client) -> None:
    with client.websocket_connect(f"/ws/chat?shop={SHOP}&custMail=ann@example.com") as ws:
        ws.send_text('{"message": ""}')
        assert ws.receive_json()["error"] == "INVALID_REQUEST"

        ws.send_text("hello")
        reply = ws.receive_json()
        assert reply["success"] is True
        assert reply["responseType"] == "KEYWORD"

        ws.send_json({"message": "what should I wear in heavy rain", "sessionId": reply["sessionId"]})
        second = ws.receive_json()
        assert second["responseType"] == "AI"
        assert second["sessionId"] == reply["sessionId"]


def test_http_reply_is_pushed_to_open_socket(client) -> None:
    with client.websocket_connect(f"/ws/chat?shop={SHOP}&custMail=ann@example.com") as ws:
        client.post(f"/api/chat/{SHOP}/ann@example.com", json={"message": "hello"})
        pushed = ws.receive_json()
        assert pushed["responseType"] == "KEYWORD"
