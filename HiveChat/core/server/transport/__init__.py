"""
Transport layer abstraction for WebSocket connections.

Wraps the websockets connection objects and tracks which connection belongs
to which principal and which channels it is subscribed to.
"""

import logging
import uuid
from typing import Dict, List, Optional, Set

from websockets.asyncio.server import ServerConnection
from websockets.protocol import State

from HiveChat.core.server.interfaces import ConnectionRegistry
from HiveChat.core.server.models import Principal

logger = logging.getLogger(__name__)


class WebSocketConnection:
    """
    Wrapper around ServerConnection that implements TransportConnection.

    One principal may hold several of these at once (several tabs or
    devices); each has its own ``conn_id``.
    """

    def __init__(self, websocket: ServerConnection, principal: Principal):
        """
        Initialize WebSocket connection wrapper.

        Args:
            websocket: Underlying WebSocket connection
            principal: Authenticated principal
        """
        self._websocket = websocket
        self.principal = principal
        self._closed = False
        self.conn_id: str = uuid.uuid4().hex

    @property
    def principal_id(self) -> str:
        return self.principal.id

    @property
    def raw_websocket(self) -> ServerConnection:
        """Get underlying WebSocket connection."""
        return self._websocket

    async def send(self, message: str) -> bool:
        """
        Send a frame through the connection.

        Returns:
            True if the frame was handed to the socket
        """
        if self._closed:
            return False

        try:
            await self._websocket.send(message)
            return True
        except Exception as e:
            logger.debug("Failed to send to %s (%s): %s", self.principal_id, self.conn_id, e)
            return False

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if not self._closed:
            self._closed = True
            try:
                await self._websocket.close(code=code, reason=reason)
            except Exception as e:
                logger.debug("Error closing connection for %s: %s", self.principal_id, e)

    def is_open(self) -> bool:
        if self._closed:
            return False
        return self._websocket.state is State.OPEN


class WebSocketConnectionRegistry(ConnectionRegistry):
    """
    Registry of live connections and their channel subscriptions.

    Only touched from the event loop thread, so plain dictionaries suffice.
    """

    def __init__(self):
        # principal -> conn_id -> connection
        self._connections: Dict[str, Dict[str, WebSocketConnection]] = {}
        # channel -> conn_id -> connection
        self._subscriptions: Dict[str, Dict[str, WebSocketConnection]] = {}

    def register(self, connection: WebSocketConnection) -> None:
        conns = self._connections.setdefault(connection.principal.id, {})
        conns[connection.conn_id] = connection
        logger.debug("Registered connection for %s (%s)", connection.principal.id, connection.conn_id)

    def unregister(self, connection: WebSocketConnection) -> None:
        """Drop a connection and all of its subscriptions."""
        pid = connection.principal.id
        conns = self._connections.get(pid)
        if conns:
            conns.pop(connection.conn_id, None)
            if not conns:
                self._connections.pop(pid, None)
        for channel_id in list(self._subscriptions):
            subs = self._subscriptions[channel_id]
            subs.pop(connection.conn_id, None)
            if not subs:
                self._subscriptions.pop(channel_id, None)
        logger.debug("Unregistered connection for %s (%s)", pid, connection.conn_id)

    def connections_for(self, principal_id: str) -> List[WebSocketConnection]:
        return list((self._connections.get(principal_id) or {}).values())

    def all_connections(self) -> List[WebSocketConnection]:
        out: List[WebSocketConnection] = []
        for conns in self._connections.values():
            out.extend(conns.values())
        return out

    def get_connection(self, conn_id: str) -> Optional[WebSocketConnection]:
        for conns in self._connections.values():
            if conn_id in conns:
                return conns[conn_id]
        return None

    def subscribe(self, connection: WebSocketConnection, channel_id: str) -> None:
        self._subscriptions.setdefault(channel_id, {})[connection.conn_id] = connection

    def subscribe_principal(self, principal_id: str, channel_id: str) -> int:
        """Subscribe every connection of a principal. Returns how many were subscribed."""
        conns = self.connections_for(principal_id)
        for connection in conns:
            self.subscribe(connection, channel_id)
        return len(conns)

    def subscribers(self, channel_id: str) -> List[WebSocketConnection]:
        return list((self._subscriptions.get(channel_id) or {}).values())

    def subscribed_channels(self, connection: WebSocketConnection) -> Set[str]:
        return {cid for cid, subs in self._subscriptions.items() if connection.conn_id in subs}

    def is_connected(self, principal_id: str) -> bool:
        """True if the principal has at least one registered connection."""
        return bool(self._connections.get(principal_id))


__all__ = ['WebSocketConnection', 'WebSocketConnectionRegistry']
