"""
WebSocket server that composes all realtime components.

This is the main entry point that wires authentication, membership,
presence, the message/thread/reaction engines and the router together, and
owns the lifecycle of every connection.

Architecture:
    ┌──────────────────────────────────────────────────────────────────┐
    │                            ChatServer                            │
    │  ┌──────────────┐  ┌──────────────┐  ┌────────────────────────┐  │
    │  │ Connection   │  │ Connection   │  │ PresenceTracker        │  │
    │  │ Authenticator│  │ Registry     │  │                        │  │
    │  └──────────────┘  └──────────────┘  └────────────────────────┘  │
    │  ┌──────────────┐  ┌──────────────┐  ┌────────────────────────┐  │
    │  │ Channel      │  │ Message /    │  │ MessageRouter          │  │
    │  │ Membership   │  │ Thread /     │  │  + DeliveryService     │  │
    │  │              │  │ Reaction     │  │  + assistant tasks     │  │
    │  └──────────────┘  └──────────────┘  └────────────────────────┘  │
    └──────────────────────────────────────────────────────────────────┘

Connection lifecycle:
    1. authenticate (refused with 1008 on failure)
    2. register, join general, subscribe to every member channel
    3. mark online (announced to everybody)
    4. send ``initialize``
    5. read loop -> MessageRouter
    6. on close: unregister, drop thread views, mark offline when the last
       connection is gone, remove an ephemeral principal
    7. in the background: sweep guests that never connected and whose token
       has expired
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from HiveChat.config import config
from HiveChat.core.logging.utils import RequestLogger
from HiveChat.core.message.protocol import EventType, make_event
from HiveChat.core.server.assistant import create_assistant
from HiveChat.core.server.auth import ConnectionAuthenticator, JWTAuthenticator
from HiveChat.core.server.errors import AuthenticationError
from HiveChat.core.server.interfaces import Assistant, Authenticator, Store
from HiveChat.core.server.membership import ChannelMembership
from HiveChat.core.server.messages import MessageService
from HiveChat.core.server.models import (
    ASSISTANT_DISPLAY_NAME,
    ASSISTANT_PRINCIPAL_ID,
    Principal,
)
from HiveChat.core.server.presence import PresenceTracker
from HiveChat.core.server.reactions import ReactionEngine
from HiveChat.core.server.routing import MessageRouter
from HiveChat.core.server.routing.delivery import DeliveryService
from HiveChat.core.server.storage_memory import InMemoryStore
from HiveChat.core.server.storage_sqlite import SQLiteStore
from HiveChat.core.server.threads import ThreadEngine
from HiveChat.core.server.transport import WebSocketConnection, WebSocketConnectionRegistry

logger = logging.getLogger(__name__)


class ChatServer:
    """
    The realtime chat server.

    Example:
        server = ChatServer(InMemoryStore())

        async with server.run("localhost", 8765):
            await asyncio.Future()
    """

    def __init__(
        self,
        store: Store,
        assistant: Optional[Assistant] = None,
        authenticator: Optional[Authenticator] = None,
        assistant_prefix: Optional[str] = None,
        connect_timeout: Optional[float] = None,
    ):
        """
        Initialize the server.

        Args:
            store: Persistence for principals, channels, messages and reactions
            assistant: Assistant collaborator (built from configuration if None)
            authenticator: Token verifier (JWTAuthenticator if None)
            assistant_prefix: Text prefix that invokes the assistant
            connect_timeout: Seconds to wait for a ``connect`` frame
        """
        self._store = store

        self._registry = WebSocketConnectionRegistry()
        self._delivery = DeliveryService(self._registry)
        self._presence = PresenceTracker(self._delivery)
        self._membership = ChannelMembership(store, self._registry)
        self._messages = MessageService(store)
        self._threads = ThreadEngine(store, self._messages)
        self._reactions = ReactionEngine(store)
        self._messages.reply_counter = self._threads.reply_count

        self._membership.ensure_general()
        self._assistant_principal = self._ensure_assistant_principal()
        self._assistant = assistant if assistant is not None else create_assistant(store)

        self._authenticator = ConnectionAuthenticator(
            authenticator or JWTAuthenticator(), store, connect_timeout
        )
        self._router = MessageRouter(
            store=store,
            delivery=self._delivery,
            membership=self._membership,
            messages=self._messages,
            threads=self._threads,
            reactions=self._reactions,
            assistant=self._assistant,
            assistant_principal=self._assistant_principal,
            assistant_prefix=assistant_prefix,
        )
        if isinstance(store, InMemoryStore):
            store.on_evict = self._router.messages_evicted
        self._request_logger = RequestLogger(logger)

        self._guest_ttl = config.GUEST_TOKEN_HOURS * 3600
        self._sweep_interval = config.GUEST_SWEEP_INTERVAL

        self._server: Optional[Server] = None
        self._sweep_task: Optional[asyncio.Task] = None
        self._running = False

        logger.info("ChatServer initialized")

    def _ensure_assistant_principal(self) -> Principal:
        principal = self._store.get_principal(ASSISTANT_PRINCIPAL_ID)
        if principal is None:
            principal = self._store.create_principal(
                ASSISTANT_DISPLAY_NAME, principal_id=ASSISTANT_PRINCIPAL_ID
            )
        return principal

    @property
    def store(self) -> Store:
        return self._store

    @property
    def registry(self) -> WebSocketConnectionRegistry:
        return self._registry

    @property
    def router(self) -> MessageRouter:
        return self._router

    @property
    def presence(self) -> PresenceTracker:
        return self._presence

    @property
    def membership(self) -> ChannelMembership:
        return self._membership

    @property
    def threads(self) -> ThreadEngine:
        return self._threads

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def port(self) -> Optional[int]:
        """Port actually bound (useful when started on port 0)."""
        if self._server is None:
            return None
        for sock in self._server.sockets:
            return sock.getsockname()[1]
        return None

    # ----------------------------- lifecycle -----------------------------
    @asynccontextmanager
    async def run(self, host: str = "localhost", port: int = 8765):
        """
        Run the WebSocket server as an async context manager.

        Yields:
            The server instance
        """
        await self.start(host, port)
        try:
            yield self
        finally:
            await self.stop()

    async def start(self, host: str = "localhost", port: int = 8765) -> None:
        self._server = await serve(self._handle_connection, host, port)
        self._running = True
        self._sweep_task = asyncio.create_task(self._guest_sweep_loop())
        logger.info("WebSocket server started on ws://%s:%s", host, self.port)

    async def stop(self) -> None:
        self._running = False

        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        for conn in self._registry.all_connections():
            await conn.close(1001, "Server shutting down")

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        await self.drain()
        close = getattr(self._assistant, "close", None)
        if close is not None:
            await close()

        logger.info("WebSocket server stopped")

    async def drain(self) -> None:
        """Wait for in-flight assistant answers."""
        await self._router.drain()

    # ----------------------------- guests -----------------------------
    def sweep_guests(self, now: Optional[float] = None) -> List[str]:
        """
        Remove guests that are not connected and whose token has expired.

        A guest is normally removed when its last connection closes; this
        catches guests created over HTTP that never opened a connection.

        Returns:
            Ids of the removed principals
        """
        now = time.time() if now is None else now
        removed = []
        for principal in self._store.list_principals():
            if not principal.is_ephemeral or self._registry.is_connected(principal.id):
                continue
            if now - principal.created_at < self._guest_ttl:
                continue
            if self._store.delete_principal(principal.id):
                self._presence.forget(principal.id)
                removed.append(principal.id)
                logger.info("Swept guest %s (%s)", principal.display_name, principal.id)
        return removed

    async def _guest_sweep_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._sweep_interval)
                self.sweep_guests()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception("Guest sweep error: %s", e)

    # ----------------------------- connections -----------------------------
    async def _handle_connection(self, websocket: ServerConnection) -> None:
        try:
            principal = await self._authenticator.authenticate(websocket)
        except AuthenticationError as e:
            await self._refuse(websocket, e)
            return
        except ConnectionClosed:
            logger.debug("Connection closed before authentication")
            return

        connection = WebSocketConnection(websocket, principal)
        try:
            await self.open_session(connection)
            async for raw in websocket:
                await self._router.handle_frame(connection, raw)
        except ConnectionClosed:
            logger.debug("Connection closed for %s", principal.id)
        except Exception as e:
            logger.exception("Error handling connection for %s: %s", principal.id, e)
        finally:
            await self.close_session(connection)

    async def _refuse(self, websocket: ServerConnection, error: AuthenticationError) -> None:
        logger.warning("Refused connection: %s (%s)", error.message, error.code)
        try:
            await websocket.send(make_event(EventType.ERROR, **error.to_payload("connection")))
            await websocket.close(code=1008, reason=error.code or "Unauthorized")
        except ConnectionClosed:
            pass

    async def open_session(self, connection: WebSocketConnection) -> None:
        """Steps 2-4 of the lifecycle for an authenticated connection."""
        principal = connection.principal
        self._registry.register(connection)
        self._membership.ensure_member(principal.id, self._membership.general_channel)
        self._membership.subscribe_all(connection)
        await self._presence.mark_online(principal.id)
        await self._delivery.send(
            connection, make_event(EventType.INITIALIZE, **self.initial_state(principal))
        )
        self._request_logger.log_websocket_event(
            "connect", principal.id, {"conn_id": connection.conn_id, "name": principal.display_name}
        )

    async def close_session(self, connection: WebSocketConnection) -> None:
        principal = connection.principal
        self._registry.unregister(connection)
        self._threads.drop_connection(connection.conn_id)

        if not self._registry.is_connected(principal.id):
            await self._presence.mark_offline(principal.id)
            if principal.is_ephemeral:
                self._store.delete_principal(principal.id)
                self._presence.forget(principal.id)
                logger.info("Removed guest %s (%s)", principal.display_name, principal.id)

        self._request_logger.log_websocket_event(
            "disconnect", principal.id, {"conn_id": connection.conn_id}
        )

    def initial_state(self, principal: Principal) -> Dict[str, Any]:
        online = set(self._presence.online_principals())
        users = []
        for p in self._store.list_principals():
            p.online = p.id in online
            users.append(p.to_dict())
        current = self._store.get_principal(principal.id) or principal
        current.online = principal.id in online
        general = self._membership.general_channel
        return {
            "channels": [c.to_dict() for c in self._membership.list_visible_channels(principal.id)],
            "currentPrincipal": current.to_dict(),
            "users": users,
            "onlineUsers": sorted(online),
            "recentMessages": self._messages.views(self._messages.recent(general)),
        }


def create_store(backend: Optional[str] = None) -> Store:
    """Build the store the configuration asks for."""
    backend = (backend or config.STORAGE_BACKEND).lower()
    if backend == "sqlite":
        logger.info("Using SQLite store at %s", config.SQLITE_DB_FILE)
        return SQLiteStore(config.SQLITE_DB_FILE)
    if backend != "memory":
        logger.warning("Unknown storage backend '%s', using memory", backend)
    return InMemoryStore(retention=config.CHANNEL_RETENTION)


def create_server(store: Optional[Store] = None, **kwargs) -> ChatServer:
    """
    Factory function to create a configured chat server.

    Args:
        store: Store to use (built from configuration if None)
        **kwargs: Additional arguments passed to ChatServer

    Returns:
        Configured ChatServer instance
    """
    return ChatServer(store if store is not None else create_store(), **kwargs)
