"""
Server module for HiveChat.

This package holds the realtime core and its collaborators:

Architecture Overview:
---------------------

1. **Authentication** (`auth/`)
   - JWTAuthenticator: Verifies JWT tokens
   - TokenIssuer: Mints tokens for the HTTP API
   - ConnectionAuthenticator: Turns a new connection into a Principal

2. **Transport Layer** (`transport/`)
   - WebSocketConnection: Connection wrapper
   - WebSocketConnectionRegistry: Connections and channel subscriptions

3. **Message Routing** (`routing/`)
   - MessageRouter: Parses inbound events and runs their handlers
   - DeliveryService: Fan-out to connections, channels and everybody

4. **Engines**
   - ChannelMembership (`membership.py`)
   - PresenceTracker (`presence.py`)
   - MessageService (`messages.py`)
   - ThreadEngine (`threads.py`)
   - ReactionEngine (`reactions.py`)

5. **Collaborators**
   - InMemoryStore / SQLiteStore (`storage_memory.py`, `storage_sqlite.py`)
   - LocalBlobStore (`blobstore.py`)
   - HTTPAssistant / UnavailableAssistant (`assistant/`)

6. **Server** (`websocket_manager.py`)
   - ChatServer: Composes everything and owns the connection lifecycle

    from HiveChat.core.server.websocket_manager import create_server

    server = create_server()
    async with server.run("localhost", 8765):
        await asyncio.Future()
"""

from HiveChat.core.server.errors import (
    AuthenticationError,
    AuthorizationError,
    ChatError,
    ConflictError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from HiveChat.core.server.models import (
    Channel,
    ChannelKind,
    FileRef,
    Message,
    Principal,
    ThreadView,
    dm_channel_id,
)

__all__ = [
    'AuthenticationError',
    'AuthorizationError',
    'ChatError',
    'ConflictError',
    'NotFoundError',
    'UpstreamError',
    'ValidationError',
    'Channel',
    'ChannelKind',
    'FileRef',
    'Message',
    'Principal',
    'ThreadView',
    'dm_channel_id',
]
