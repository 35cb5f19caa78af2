"""
Contracts between the realtime core and its collaborators.

The core only talks to authentication, persistence, uploads and the
assistant through these protocols, so each can be swapped without touching
the router.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Set, Tuple, runtime_checkable

from HiveChat.core.server.models import Channel, ChannelKind, FileRef, Message, Principal


@dataclass
class AuthResult:
    """Result of an authentication attempt."""
    success: bool
    principal_id: Optional[str] = None
    display_name: Optional[str] = None
    is_ephemeral: bool = False
    error_message: Optional[str] = None
    error_code: Optional[str] = None


@dataclass
class Citation:
    """A piece of chat history the assistant based its answer on."""
    author: str
    text: str
    score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"author": self.author, "text": self.text, "score": self.score}


@dataclass
class AssistantAnswer:
    text: str
    citations: List[Citation] = field(default_factory=list)


@runtime_checkable
class Authenticator(Protocol):
    """Verifies a credential token (the AuthService collaborator)."""

    @abstractmethod
    async def authenticate(self, token: str) -> AuthResult:
        ...

    @abstractmethod
    def extract_token(self, transport_context: object) -> Optional[str]:
        ...


@runtime_checkable
class Store(Protocol):
    """
    Persistence for principals, channels, messages and reactions.

    Calls are synchronous and individually atomic. The router serializes
    multi-call mutations per channel.
    """

    # principals
    def create_principal(
        self,
        display_name: str,
        password_hash: Optional[str] = None,
        is_ephemeral: bool = False,
        principal_id: Optional[str] = None,
    ) -> Principal: ...

    def get_principal(self, principal_id: str) -> Optional[Principal]: ...

    def find_principal(self, display_name: str) -> Optional[Principal]: ...

    def get_password_hash(self, display_name: str) -> Optional[str]: ...

    def delete_principal(self, principal_id: str) -> bool: ...

    def list_principals(self) -> List[Principal]: ...

    # channels and membership
    def create_channel(
        self,
        name: str,
        kind: ChannelKind = ChannelKind.PERSISTENT,
        channel_id: Optional[str] = None,
    ) -> Channel: ...

    def get_channel(self, channel_id: str) -> Optional[Channel]: ...

    def get_channel_by_name(self, name: str) -> Optional[Channel]: ...

    def list_channels(self) -> List[Channel]: ...

    def add_membership(self, principal_id: str, channel_id: str) -> bool: ...

    def is_member(self, principal_id: str, channel_id: str) -> bool: ...

    def list_memberships(self, principal_id: str) -> List[str]: ...

    def list_members(self, channel_id: str) -> Set[str]: ...

    def remove_memberships(self, principal_id: str) -> int: ...

    # messages
    def create_message(
        self,
        channel_id: str,
        author_id: str,
        author_name: str,
        text: str,
        file_ref: Optional[FileRef] = None,
        parent_id: Optional[str] = None,
    ) -> Message: ...

    def get_message(self, message_id: str) -> Optional[Message]: ...

    def list_messages(self, channel_id: str, limit: int = 50) -> List[Message]: ...

    def list_replies(self, parent_id: str) -> List[Message]: ...

    def count_replies(self, parent_id: str) -> int: ...

    def delete_message(self, message_id: str) -> List[Message]: ...

    # reactions
    def create_reaction(self, message_id: str, principal_id: str, emoji: str) -> bool: ...

    def delete_reaction(self, message_id: str, principal_id: str, emoji: str) -> bool: ...

    def list_reactions(self, message_id: str) -> List[Tuple[str, str]]: ...


@runtime_checkable
class BlobStore(Protocol):
    """Receives uploaded files and returns where they are served from."""

    @abstractmethod
    async def store(self, filename: str, content_type: str, data: bytes) -> FileRef:
        ...


@runtime_checkable
class Assistant(Protocol):
    """The retrieval-augmented assistant."""

    @abstractmethod
    async def answer(self, query: str) -> AssistantAnswer:
        ...


@runtime_checkable
class TransportConnection(Protocol):
    """A single client connection."""

    conn_id: str
    principal: Principal

    @abstractmethod
    async def send(self, message: str) -> bool:
        ...

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None:
        ...

    @abstractmethod
    def is_open(self) -> bool:
        ...


class ConnectionRegistry(ABC):
    """Tracks open connections and their channel subscriptions."""

    @abstractmethod
    def register(self, connection: TransportConnection) -> None:
        pass

    @abstractmethod
    def unregister(self, connection: TransportConnection) -> None:
        pass

    @abstractmethod
    def connections_for(self, principal_id: str) -> List[TransportConnection]:
        pass

    @abstractmethod
    def all_connections(self) -> List[TransportConnection]:
        pass

    @abstractmethod
    def subscribe(self, connection: TransportConnection, channel_id: str) -> None:
        pass

    @abstractmethod
    def subscribers(self, channel_id: str) -> List[TransportConnection]:
        pass

    @abstractmethod
    def is_connected(self, principal_id: str) -> bool:
        pass


__all__ = [
    'AuthResult',
    'Citation',
    'AssistantAnswer',
    'Authenticator',
    'Store',
    'BlobStore',
    'Assistant',
    'TransportConnection',
    'ConnectionRegistry',
]
