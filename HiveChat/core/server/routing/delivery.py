"""
Frame delivery to connections.

Handles fan-out of serialized events to one connection, to every connection
of a principal, to every subscriber of a channel, or to everybody.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, Iterable, Optional

from HiveChat.core.server.transport import WebSocketConnection, WebSocketConnectionRegistry

logger = logging.getLogger(__name__)


class DeliveryStatus(Enum):
    """Status of frame delivery."""
    DELIVERED = auto()
    FAILED = auto()
    CLOSED = auto()


@dataclass
class DeliveryResult:
    """Result of a delivery attempt to one connection."""
    status: DeliveryStatus
    conn_id: str
    error: Optional[str] = None


class DeliveryService:
    """
    Sends frames to connections.

    A failed send never raises; it is reported in the DeliveryResult and
    the connection is cleaned up by its own read loop.
    """

    def __init__(self, connection_registry: WebSocketConnectionRegistry):
        self._registry = connection_registry

    @property
    def registry(self) -> WebSocketConnectionRegistry:
        return self._registry

    async def send(self, connection: WebSocketConnection, frame: str) -> DeliveryResult:
        """Send a frame to a single connection."""
        if not connection.is_open():
            return DeliveryResult(DeliveryStatus.CLOSED, connection.conn_id)
        try:
            if await connection.send(frame):
                return DeliveryResult(DeliveryStatus.DELIVERED, connection.conn_id)
            return DeliveryResult(DeliveryStatus.FAILED, connection.conn_id, error="Send failed")
        except Exception as e:
            logger.exception("Error sending frame to %s: %s", connection.conn_id, e)
            return DeliveryResult(DeliveryStatus.FAILED, connection.conn_id, error=str(e))

    async def send_many(
        self,
        connections: Iterable[WebSocketConnection],
        frame: str
    ) -> Dict[str, DeliveryResult]:
        """Send a frame to several connections concurrently."""
        targets = list(connections)
        if not targets:
            return {}
        results = await asyncio.gather(*(self.send(c, frame) for c in targets))
        return {r.conn_id: r for r in results}

    async def send_to_principal(self, principal_id: str, frame: str) -> Dict[str, DeliveryResult]:
        """Send a frame to every connection of a principal."""
        return await self.send_many(self._registry.connections_for(principal_id), frame)

    async def send_to_channel(self, channel_id: str, frame: str) -> Dict[str, DeliveryResult]:
        """Send a frame to every connection subscribed to a channel."""
        results = await self.send_many(self._registry.subscribers(channel_id), frame)
        logger.debug("Delivered to %d subscriber(s) of %s", len(results), channel_id)
        return results

    async def broadcast(self, frame: str) -> Dict[str, DeliveryResult]:
        """Send a frame to every registered connection."""
        return await self.send_many(self._registry.all_connections(), frame)


__all__ = ['DeliveryService', 'DeliveryResult', 'DeliveryStatus']
