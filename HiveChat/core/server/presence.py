"""Presence tracking for HiveChat.

Tracks which principals are online. A principal is online while it holds at
least one connection; the server decides when the last one is gone and calls
``mark_offline`` then.

Design:
- State lives in the tracker instance, one per server.
- mark_online / mark_offline are idempotent. Only an actual transition is
  announced, to every connection, as ``presence-changed``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional, Set

from HiveChat.core.message.protocol import EventType, make_event

if TYPE_CHECKING:
    from HiveChat.core.server.routing.delivery import DeliveryService

logger = logging.getLogger(__name__)


class PresenceTracker:

    def __init__(self, delivery: Optional[DeliveryService] = None):
        self._online: Set[str] = set()
        self._delivery = delivery

    def is_online(self, principal_id: str) -> bool:
        return principal_id in self._online

    def online_principals(self) -> List[str]:
        return sorted(self._online)

    async def mark_online(self, principal_id: str) -> bool:
        """Returns True if the principal was offline before."""
        if principal_id in self._online:
            return False
        self._online.add(principal_id)
        logger.info("Principal %s is online", principal_id)
        await self._announce(principal_id, True)
        return True

    async def mark_offline(self, principal_id: str) -> bool:
        """Returns True if the principal was online before."""
        if principal_id not in self._online:
            return False
        self._online.discard(principal_id)
        logger.info("Principal %s is offline", principal_id)
        await self._announce(principal_id, False)
        return True

    def forget(self, principal_id: str) -> None:
        """Drop all state for a removed principal without announcing anything."""
        self._online.discard(principal_id)

    async def _announce(self, principal_id: str, online: bool) -> None:
        if self._delivery is None:
            return
        await self._delivery.broadcast(
            make_event(EventType.PRESENCE_CHANGED, principalId=principal_id, online=online)
        )
