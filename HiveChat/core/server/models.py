"""
Domain records shared by the stores, the engines and the router.

Records are plain dataclasses. ``to_dict`` produces the camelCase wire form
sent to clients.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from HiveChat.core.server.errors import ValidationError

DM_SEPARATOR = "-"
ASSISTANT_PRINCIPAL_ID = "assistant"
ASSISTANT_DISPLAY_NAME = "Assistant"


def new_id() -> str:
    """Opaque 32-char hex id. Never contains DM_SEPARATOR."""
    return uuid.uuid4().hex


def dm_channel_id(principal_a: str, principal_b: str) -> str:
    """Deterministic direct-message channel id for an unordered pair."""
    return DM_SEPARATOR.join(sorted((principal_a, principal_b)))


def dm_participants(channel_id: str) -> Optional[Tuple[str, str]]:
    """Return the two participants encoded in a DM channel id, or None."""
    parts = channel_id.split(DM_SEPARATOR)
    if len(parts) != 2 or not all(parts) or parts[0] > parts[1]:
        return None
    return parts[0], parts[1]


class ChannelKind(Enum):
    PERSISTENT = "persistent"
    DIRECT = "direct"


@dataclass
class Principal:
    id: str
    display_name: str
    is_ephemeral: bool = False
    online: bool = False
    created_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "displayName": self.display_name,
            "isEphemeral": self.is_ephemeral,
            "online": self.online,
        }


@dataclass
class Channel:
    id: str
    name: str
    kind: ChannelKind = ChannelKind.PERSISTENT
    member_ids: Set[str] = field(default_factory=set)

    @property
    def is_direct(self) -> bool:
        return self.kind is ChannelKind.DIRECT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "memberIds": sorted(self.member_ids),
        }


@dataclass(frozen=True)
class FileRef:
    url: str
    type: str
    name: str
    size: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Any) -> 'FileRef':
        if not isinstance(data, dict):
            raise ValidationError("fileRef must be an object")
        url, ftype, name = data.get("url"), data.get("type"), data.get("name")
        if not all(isinstance(v, str) and v for v in (url, ftype, name)):
            raise ValidationError("fileRef requires non-empty url, type and name")
        size = data.get("size")
        if size is not None and (not isinstance(size, int) or size < 0):
            raise ValidationError("fileRef.size must be a non-negative integer")
        return cls(url=url, type=ftype, name=name, size=size)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"url": self.url, "type": self.type, "name": self.name}
        if self.size is not None:
            out["size"] = self.size
        return out


@dataclass(frozen=True)
class Message:
    """
    A stored chat message.

    ``author_name`` is the author's display name at send time, so a message
    stays attributed after an ephemeral author is removed.
    """
    id: str
    channel_id: str
    author_id: str
    author_name: str
    text: str
    created_at: float = field(default_factory=time.time)
    file_ref: Optional[FileRef] = None
    parent_id: Optional[str] = None

    @property
    def is_reply(self) -> bool:
        return self.parent_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "channelId": self.channel_id,
            "authorId": self.author_id,
            "authorName": self.author_name,
            "text": self.text,
            "createdAt": self.created_at,
            "fileRef": self.file_ref.to_dict() if self.file_ref else None,
            "parentId": self.parent_id,
        }


@dataclass
class ThreadView:
    parent: Message
    replies: List[Message]

    @property
    def reply_count(self) -> int:
        return len(self.replies)


def aggregate_reactions(pairs: Iterable[Tuple[str, str]]) -> Dict[str, List[str]]:
    """
    Fold (principal_id, emoji) pairs into the broadcast view.

    Returns a fresh ``emoji -> sorted principal ids`` mapping; emojis are
    ordered by first appearance so repeated calls produce identical output.
    """
    grouped: Dict[str, Set[str]] = {}
    for principal_id, emoji in pairs:
        grouped.setdefault(emoji, set()).add(principal_id)
    return {emoji: sorted(ids) for emoji, ids in grouped.items()}
