"""Channel membership for HiveChat.

Who may read and write which channel. Persistent channels are open to every
principal (joining is just recording the membership); a direct-message
channel belongs to exactly the two principals encoded in its id and is
created the first time either of them asks for it.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from HiveChat.config import Config
from HiveChat.core.server.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from HiveChat.core.server.interfaces import Store
from HiveChat.core.server.models import Channel, ChannelKind, dm_channel_id, dm_participants
from HiveChat.core.server.transport import WebSocketConnection, WebSocketConnectionRegistry

logger = logging.getLogger(__name__)


class ChannelMembership:

    def __init__(
        self,
        store: Store,
        registry: WebSocketConnectionRegistry,
        general_channel: str = Config.GENERAL_CHANNEL,
        max_name_length: int = Config.MAX_CHANNEL_NAME_LENGTH,
    ):
        self._store = store
        self._registry = registry
        self.general_channel = general_channel
        self._max_name_length = max_name_length

    def ensure_general(self) -> Channel:
        """Create the general channel if it does not exist yet."""
        channel = self._store.get_channel(self.general_channel)
        if channel is not None:
            return channel
        try:
            channel = self._store.create_channel(
                self.general_channel, ChannelKind.PERSISTENT, channel_id=self.general_channel
            )
            logger.info("Created channel '%s'", self.general_channel)
        except ConflictError:
            channel = self._store.get_channel(self.general_channel)
            if channel is None:
                raise
        return channel

    def ensure_member(self, principal_id: str, channel_id: str) -> bool:
        """Record the membership. Returns True if it is new."""
        return self._store.add_membership(principal_id, channel_id)

    def require_member(self, principal_id: str, channel_id: str) -> Channel:
        """
        Raises:
            NotFoundError: the channel does not exist
            AuthorizationError: the principal is not a member
        """
        channel = self._store.get_channel(channel_id)
        if channel is None:
            raise NotFoundError(f"Channel '{channel_id}' not found")
        if principal_id not in channel.member_ids:
            raise AuthorizationError(f"Not a member of channel '{channel.name}'")
        return channel

    def list_visible_channels(self, principal_id: str) -> List[Channel]:
        """Every persistent channel plus the direct channels the principal is in."""
        return [
            c for c in self._store.list_channels()
            if not c.is_direct or principal_id in c.member_ids
        ]

    def subscribe_all(self, connection: WebSocketConnection) -> List[str]:
        """Subscribe a connection to every channel its principal belongs to."""
        channel_ids = self._store.list_memberships(connection.principal.id)
        for channel_id in channel_ids:
            self._registry.subscribe(connection, channel_id)
        return channel_ids

    def join_channel(self, connection: WebSocketConnection, channel_id: str) -> Tuple[Channel, bool]:
        """
        Join and subscribe to a channel.

        ``channel_id`` may name an existing persistent channel or a direct
        channel id, in which case the direct channel is created on demand.
        Returns the channel and whether a direct channel was created.
        """
        principal_id = connection.principal.id
        channel = self._store.get_channel(channel_id)
        created = False

        if channel is not None and not channel.is_direct:
            self.ensure_member(principal_id, channel_id)
        else:
            participants = dm_participants(channel_id)
            if participants is None:
                raise NotFoundError(f"Channel '{channel_id}' not found")
            if principal_id not in participants:
                raise AuthorizationError("Not a participant of this direct channel")
            other = participants[1] if participants[0] == principal_id else participants[0]
            channel, created = self.open_direct(principal_id, other)

        self._registry.subscribe(connection, channel_id)
        return self._store.get_channel(channel_id) or channel, created

    def open_direct(self, principal_a: str, principal_b: str) -> Tuple[Channel, bool]:
        """Return the direct channel of two principals, creating it if needed."""
        if principal_a == principal_b:
            raise ValidationError("Cannot open a direct channel with yourself")
        channel_id = dm_channel_id(principal_a, principal_b)
        channel = self._store.get_channel(channel_id)
        if channel is not None:
            return channel, False

        a = self._store.get_principal(principal_a)
        b = self._store.get_principal(principal_b)
        if a is None or b is None:
            raise NotFoundError("Principal not found")

        created = True
        name = ", ".join(sorted((a.display_name, b.display_name)))
        try:
            self._store.create_channel(name, ChannelKind.DIRECT, channel_id=channel_id)
        except ConflictError:
            created = False
        self._store.add_membership(principal_a, channel_id)
        self._store.add_membership(principal_b, channel_id)
        if created:
            logger.info("Opened direct channel %s", channel_id)
        return self._store.get_channel(channel_id), created

    def create_channel(self, name: str, creator_id: Optional[str] = None) -> Channel:
        """
        Create a persistent channel; the creator becomes its first member.

        Raises:
            ValidationError: empty, too long or already taken name
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Channel name must not be empty")
        if len(name) > self._max_name_length:
            raise ValidationError(f"Channel name exceeds {self._max_name_length} characters")
        if self._store.get_channel_by_name(name) is not None:
            raise ConflictError(f"Channel '{name}' already exists")

        channel = self._store.create_channel(name, ChannelKind.PERSISTENT)
        if creator_id is not None:
            self._store.add_membership(creator_id, channel.id)
        logger.info("Created channel '%s' (%s)", name, channel.id)
        return self._store.get_channel(channel.id) or channel
