"""
Test configuration and fixtures for HiveChat tests.

Provides:
- An in-memory store and a ChatServer wired to a scripted assistant
- ``any_store``, which runs a test once per Store backend
- Fake sockets that record every frame sent to them
- Token generation for the authentication tests
"""

import asyncio
import json
import time
from dataclasses import dataclass
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import jwt
import pytest
from websockets.protocol import State

from HiveChat.config import config
from HiveChat.core.server.interfaces import AssistantAnswer, Citation
from HiveChat.core.server.models import Principal
from HiveChat.core.server.storage_memory import InMemoryStore
from HiveChat.core.server.storage_sqlite import SQLiteStore
from HiveChat.core.server.transport import WebSocketConnection
from HiveChat.core.server.websocket_manager import ChatServer


@dataclass
class TestConfig:
    """Configuration for integration tests."""
    host: str = "localhost"
    port: int = 0
    timeout: float = 5.0


class FakeWebSocket:
    """Stands in for a websockets ServerConnection and records outbound frames."""

    def __init__(self, inbound: Optional[List[str]] = None, path: str = "/", headers: Optional[Dict[str, str]] = None):
        self.sent: List[Dict[str, Any]] = []
        self.state = State.OPEN
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None
        self._inbound = list(inbound or [])
        self.request = SimpleNamespace(path=path, headers=headers or {})

    async def send(self, frame: str) -> None:
        if self.state is not State.OPEN:
            raise ConnectionError("socket is closed")
        self.sent.append(json.loads(frame))

    async def recv(self) -> str:
        if not self._inbound:
            await asyncio.sleep(3600)
        return self._inbound.pop(0)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.state = State.CLOSED
        self.close_code = code
        self.close_reason = reason

    def events(self, name: Optional[str] = None) -> List[Dict[str, Any]]:
        """Frames received so far, optionally only those of one event."""
        return [f for f in self.sent if name is None or f["event"] == name]

    def data(self, name: str) -> List[Dict[str, Any]]:
        return [f["data"] for f in self.events(name)]

    def clear(self) -> None:
        self.sent.clear()


class ScriptedAssistant:
    """Assistant double: answers with fixed text, or raises, optionally after a gate opens."""

    def __init__(self, text: str = "The answer", citations: Optional[List[Citation]] = None, error: Exception = None):
        self.text = text
        self.citations = citations or []
        self.error = error
        self.gate: Optional[asyncio.Event] = None
        self.queries: List[str] = []

    async def answer(self, query: str) -> AssistantAnswer:
        self.queries.append(query)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return AssistantAnswer(text=self.text, citations=list(self.citations))


def frame(event: str, **data: Any) -> str:
    """Serialize an inbound frame."""
    return json.dumps({"event": event, "data": data})


def generate_jwt_token(principal: Principal, secret: str = None, expires_in: int = 3600) -> str:
    """Generate a test JWT token using the config secret."""
    now = int(time.time())
    payload = {
        "sub": principal.id,
        "name": principal.display_name,
        "guest": principal.is_ephemeral,
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, secret or config.JWT_SECRET, algorithm="HS256")


async def connect(server: ChatServer, principal: Principal) -> WebSocketConnection:
    """Open an authenticated session for ``principal`` on a fake socket."""
    connection = WebSocketConnection(FakeWebSocket(), principal)
    await server.open_session(connection)
    return connection


def socket_of(connection: WebSocketConnection) -> FakeWebSocket:
    return connection.raw_websocket


@pytest.fixture(scope="session")
def test_config() -> TestConfig:
    """Provide test configuration."""
    return TestConfig()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore(retention=config.CHANNEL_RETENTION)


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    """Each Store backend in turn."""
    if request.param == "memory":
        yield InMemoryStore(retention=None)
    else:
        store = SQLiteStore(str(tmp_path / "hivechat.db"))
        yield store
        store.close()


@pytest.fixture
def assistant() -> ScriptedAssistant:
    return ScriptedAssistant()


@pytest.fixture
def server(store, assistant) -> ChatServer:
    return ChatServer(store, assistant=assistant)


@pytest.fixture
def alice(store) -> Principal:
    return store.create_principal("alice")


@pytest.fixture
def bob(store) -> Principal:
    return store.create_principal("bob")


@pytest.fixture
def carol(store) -> Principal:
    return store.create_principal("carol")


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
