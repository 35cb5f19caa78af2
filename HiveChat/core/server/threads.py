"""Threaded replies for HiveChat.

A thread is a parent message plus the replies whose ``parent_id`` points at
it. Reply counts are served from an in-memory counter per parent: seeded
from the store the first time a parent is asked about, then kept current as
replies are created and removed, so ``reply_count`` never scans the store
twice for the same parent.

The engine also remembers which connections have a thread open, so the
router can tell them when the thread goes away.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Set

from HiveChat.core.server.errors import NotFoundError, ValidationError
from HiveChat.core.server.interfaces import Store
from HiveChat.core.server.messages import MessageService
from HiveChat.core.server.models import FileRef, Message, Principal, ThreadView

logger = logging.getLogger(__name__)


class ThreadEngine:

    def __init__(self, store: Store, messages: MessageService):
        self._store = store
        self._messages = messages
        self._counts: Dict[str, int] = {}
        # parent_id -> conn_ids with the thread open, and the reverse index
        self._observers: Dict[str, Set[str]] = {}
        self._views: Dict[str, Set[str]] = {}

    # ----------------------------- replies -----------------------------
    def create_reply(
        self,
        channel_id: str,
        parent_id: str,
        author: Principal,
        text: str,
        file_ref: Optional[FileRef] = None,
    ) -> Message:
        """
        Persist a reply and bump the parent's counter.

        Raises:
            NotFoundError: the parent does not exist
            ValidationError: the parent lives in another channel, or the
                reply itself is invalid
        """
        parent = self._store.get_message(parent_id)
        if parent is None:
            raise NotFoundError(f"Message '{parent_id}' not found")
        if parent.channel_id != channel_id:
            raise ValidationError("Reply must be in the same channel as its parent")

        reply = self._messages.create(channel_id, author, text, file_ref, parent_id=parent_id)
        if parent_id in self._counts:
            self._counts[parent_id] += 1
        return reply

    def get_thread(self, parent_id: str) -> ThreadView:
        parent = self._messages.get(parent_id)
        replies = self._store.list_replies(parent_id)
        self._counts[parent_id] = len(replies)
        return ThreadView(parent=parent, replies=replies)

    def reply_count(self, parent_id: str) -> int:
        count = self._counts.get(parent_id)
        if count is None:
            count = self._store.count_replies(parent_id)
            self._counts[parent_id] = count
        return count

    def reply_removed(self, parent_id: str) -> int:
        """A direct reply of ``parent_id`` was deleted. Returns the new count."""
        if parent_id in self._counts:
            self._counts[parent_id] = max(0, self._counts[parent_id] - 1)
            return self._counts[parent_id]
        return self.reply_count(parent_id)

    def forget(self, message_id: str) -> Set[str]:
        """
        Drop all state for a removed message.

        Returns the connections that had its thread open.
        """
        self._counts.pop(message_id, None)
        observers = self._observers.pop(message_id, set())
        for conn_id in observers:
            views = self._views.get(conn_id)
            if views is not None:
                views.discard(message_id)
                if not views:
                    self._views.pop(conn_id, None)
        return observers

    def forget_many(self, messages: Iterable[Message]) -> Dict[str, Set[str]]:
        """Drop state for several removed messages; maps each observed one to its observers."""
        closed: Dict[str, Set[str]] = {}
        for message in messages:
            observers = self.forget(message.id)
            if observers:
                closed[message.id] = observers
        return closed

    # ----------------------------- observers -----------------------------
    def open_view(self, conn_id: str, parent_id: str) -> None:
        self._observers.setdefault(parent_id, set()).add(conn_id)
        self._views.setdefault(conn_id, set()).add(parent_id)

    def close_view(self, conn_id: str, parent_id: str) -> bool:
        observers = self._observers.get(parent_id)
        if not observers or conn_id not in observers:
            return False
        observers.discard(conn_id)
        if not observers:
            self._observers.pop(parent_id, None)
        views = self._views.get(conn_id)
        if views is not None:
            views.discard(parent_id)
            if not views:
                self._views.pop(conn_id, None)
        return True

    def observers(self, parent_id: str) -> Set[str]:
        return set(self._observers.get(parent_id, ()))

    def drop_connection(self, conn_id: str) -> None:
        for parent_id in self._views.pop(conn_id, set()):
            observers = self._observers.get(parent_id)
            if observers is not None:
                observers.discard(conn_id)
                if not observers:
                    self._observers.pop(parent_id, None)
