"""In-memory Store for HiveChat.

The default backend. Everything lives in per-instance dictionaries guarded by
one lock; nothing is reachable outside the store object. Records handed out
are copies, so callers can never mutate stored state by accident.

Retention: a channel keeps at most ``retention`` root messages. Evicting the
oldest root also drops its whole reply tree and their reactions, and reports
the dropped messages through ``on_evict``.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Set, Tuple

from HiveChat.core.server.errors import ConflictError, NotFoundError
from HiveChat.core.server.models import (
    Channel,
    ChannelKind,
    FileRef,
    Message,
    Principal,
    new_id,
)

logger = logging.getLogger(__name__)

EvictCallback = Callable[[List[Message]], None]


class InMemoryStore:
    """A dictionary-backed store with per-channel root-message retention."""

    def __init__(self, retention: Optional[int] = 50, on_evict: Optional[EvictCallback] = None):
        self._lock = threading.RLock()
        self._retention = retention
        self.on_evict = on_evict

        self._principals: Dict[str, Principal] = {}
        self._names: Dict[str, str] = {}
        self._password_hashes: Dict[str, str] = {}

        self._channels: Dict[str, Channel] = {}

        self._messages: Dict[str, Message] = {}
        self._roots: Dict[str, List[str]] = {}
        self._children: Dict[str, List[str]] = {}
        self._reactions: Dict[str, List[Tuple[str, str]]] = {}

    # --------------------------- principals ---------------------------
    def create_principal(
        self,
        display_name: str,
        password_hash: Optional[str] = None,
        is_ephemeral: bool = False,
        principal_id: Optional[str] = None,
    ) -> Principal:
        with self._lock:
            if display_name in self._names:
                raise ConflictError(f"Name '{display_name}' is already taken")
            pid = principal_id or new_id()
            if pid in self._principals:
                raise ConflictError(f"Principal '{pid}' already exists")
            principal = Principal(
                id=pid, display_name=display_name, is_ephemeral=is_ephemeral, created_at=time.time()
            )
            self._principals[pid] = principal
            self._names[display_name] = pid
            if password_hash is not None:
                self._password_hashes[display_name] = password_hash
            return dataclasses.replace(principal)

    def get_principal(self, principal_id: str) -> Optional[Principal]:
        with self._lock:
            p = self._principals.get(principal_id)
            return dataclasses.replace(p) if p else None

    def find_principal(self, display_name: str) -> Optional[Principal]:
        with self._lock:
            pid = self._names.get(display_name)
            return self.get_principal(pid) if pid else None

    def get_password_hash(self, display_name: str) -> Optional[str]:
        with self._lock:
            return self._password_hashes.get(display_name)

    def delete_principal(self, principal_id: str) -> bool:
        """Remove a principal and its memberships. Its messages stay."""
        with self._lock:
            principal = self._principals.pop(principal_id, None)
            if principal is None:
                return False
            self._names.pop(principal.display_name, None)
            self._password_hashes.pop(principal.display_name, None)
            self.remove_memberships(principal_id)
            return True

    def list_principals(self) -> List[Principal]:
        with self._lock:
            return [dataclasses.replace(p) for p in self._principals.values()]

    # ----------------------- channels / membership -----------------------
    def create_channel(
        self,
        name: str,
        kind: ChannelKind = ChannelKind.PERSISTENT,
        channel_id: Optional[str] = None,
    ) -> Channel:
        with self._lock:
            cid = channel_id or new_id()
            if cid in self._channels:
                raise ConflictError(f"Channel '{cid}' already exists")
            if kind is ChannelKind.PERSISTENT and self._find_persistent(name):
                raise ConflictError(f"Channel '{name}' already exists")
            channel = Channel(id=cid, name=name, kind=kind)
            self._channels[cid] = channel
            self._roots[cid] = []
            return self._copy_channel(channel)

    def get_channel(self, channel_id: str) -> Optional[Channel]:
        with self._lock:
            channel = self._channels.get(channel_id)
            return self._copy_channel(channel) if channel else None

    def get_channel_by_name(self, name: str) -> Optional[Channel]:
        with self._lock:
            channel = self._find_persistent(name)
            return self._copy_channel(channel) if channel else None

    def list_channels(self) -> List[Channel]:
        with self._lock:
            return [self._copy_channel(c) for c in self._channels.values()]

    def add_membership(self, principal_id: str, channel_id: str) -> bool:
        with self._lock:
            channel = self._channels.get(channel_id)
            if channel is None:
                raise NotFoundError(f"Channel '{channel_id}' not found")
            if principal_id in channel.member_ids:
                return False
            channel.member_ids.add(principal_id)
            return True

    def is_member(self, principal_id: str, channel_id: str) -> bool:
        with self._lock:
            channel = self._channels.get(channel_id)
            return channel is not None and principal_id in channel.member_ids

    def list_memberships(self, principal_id: str) -> List[str]:
        with self._lock:
            return [cid for cid, c in self._channels.items() if principal_id in c.member_ids]

    def list_members(self, channel_id: str) -> Set[str]:
        with self._lock:
            channel = self._channels.get(channel_id)
            return set(channel.member_ids) if channel else set()

    def remove_memberships(self, principal_id: str) -> int:
        with self._lock:
            removed = 0
            for channel in self._channels.values():
                if principal_id in channel.member_ids:
                    channel.member_ids.discard(principal_id)
                    removed += 1
            return removed

    # ----------------------------- messages -----------------------------
    def create_message(
        self,
        channel_id: str,
        author_id: str,
        author_name: str,
        text: str,
        file_ref: Optional[FileRef] = None,
        parent_id: Optional[str] = None,
    ) -> Message:
        with self._lock:
            if channel_id not in self._channels:
                raise NotFoundError(f"Channel '{channel_id}' not found")
            if parent_id is not None and parent_id not in self._messages:
                raise NotFoundError(f"Message '{parent_id}' not found")
            message = Message(
                id=new_id(),
                channel_id=channel_id,
                author_id=author_id,
                author_name=author_name,
                text=text,
                created_at=time.time(),
                file_ref=file_ref,
                parent_id=parent_id,
            )
            self._messages[message.id] = message
            self._reactions[message.id] = []
            self._children[message.id] = []
            if parent_id is None:
                self._roots[channel_id].append(message.id)
            else:
                self._children[parent_id].append(message.id)

            evicted: List[Message] = []
            if parent_id is None and self._retention is not None:
                roots = self._roots[channel_id]
                while len(roots) > self._retention:
                    evicted.extend(self._remove_tree_locked(roots[0]))

        if evicted:
            logger.debug("Retention evicted %d message(s) from %s", len(evicted), channel_id)
            if self.on_evict:
                self.on_evict(evicted)
        return message

    def get_message(self, message_id: str) -> Optional[Message]:
        with self._lock:
            return self._messages.get(message_id)

    def list_messages(self, channel_id: str, limit: int = 50) -> List[Message]:
        """Latest ``limit`` root messages of a channel, oldest first."""
        with self._lock:
            roots = self._roots.get(channel_id, [])
            window = roots[-limit:] if limit > 0 else []
            return [self._messages[mid] for mid in window]

    def list_replies(self, parent_id: str) -> List[Message]:
        with self._lock:
            return [self._messages[mid] for mid in self._children.get(parent_id, [])]

    def count_replies(self, parent_id: str) -> int:
        with self._lock:
            return len(self._children.get(parent_id, []))

    def delete_message(self, message_id: str) -> List[Message]:
        """Delete a message and every reply below it. Returns the removed messages."""
        with self._lock:
            if message_id not in self._messages:
                return []
            return self._remove_tree_locked(message_id)

    # ----------------------------- reactions -----------------------------
    def create_reaction(self, message_id: str, principal_id: str, emoji: str) -> bool:
        with self._lock:
            pairs = self._reactions.get(message_id)
            if pairs is None:
                raise NotFoundError(f"Message '{message_id}' not found")
            if (principal_id, emoji) in pairs:
                return False
            pairs.append((principal_id, emoji))
            return True

    def delete_reaction(self, message_id: str, principal_id: str, emoji: str) -> bool:
        with self._lock:
            pairs = self._reactions.get(message_id)
            if not pairs or (principal_id, emoji) not in pairs:
                return False
            pairs.remove((principal_id, emoji))
            return True

    def list_reactions(self, message_id: str) -> List[Tuple[str, str]]:
        with self._lock:
            return list(self._reactions.get(message_id, []))

    # ----------------------------- internals -----------------------------
    def _find_persistent(self, name: str) -> Optional[Channel]:
        for channel in self._channels.values():
            if channel.kind is ChannelKind.PERSISTENT and channel.name == name:
                return channel
        return None

    @staticmethod
    def _copy_channel(channel: Channel) -> Channel:
        return dataclasses.replace(channel, member_ids=set(channel.member_ids))

    def _remove_tree_locked(self, message_id: str) -> List[Message]:
        root = self._messages[message_id]
        if root.parent_id is None:
            self._roots[root.channel_id].remove(message_id)
        else:
            siblings = self._children.get(root.parent_id)
            if siblings and message_id in siblings:
                siblings.remove(message_id)

        removed: List[Message] = []
        pending = [message_id]
        while pending:
            mid = pending.pop(0)
            message = self._messages.pop(mid, None)
            if message is None:
                continue
            removed.append(message)
            pending.extend(self._children.pop(mid, []))
            self._reactions.pop(mid, None)
        return removed
