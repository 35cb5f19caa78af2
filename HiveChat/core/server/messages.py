"""Message access for HiveChat.

Validation and persistence of messages, and the wire view clients receive
(message fields plus the reaction aggregate and reply count).
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from HiveChat.config import Config
from HiveChat.core.server.errors import NotFoundError, ValidationError
from HiveChat.core.server.interfaces import Store
from HiveChat.core.server.models import FileRef, Message, Principal, aggregate_reactions


class MessageService:

    def __init__(self, store: Store, max_length: int = Config.MAX_MESSAGE_LENGTH):
        self._store = store
        self.max_length = max_length
        # Swapped for ThreadEngine.reply_count once the engines are wired.
        self.reply_counter: Callable[[str], int] = store.count_replies

    def validate(self, text: str, file_ref: Optional[FileRef]) -> None:
        if not text.strip() and file_ref is None:
            raise ValidationError("Message must have text or a file")
        if len(text) > self.max_length:
            raise ValidationError(f"Message exceeds {self.max_length} characters")

    def create(
        self,
        channel_id: str,
        author: Principal,
        text: str,
        file_ref: Optional[FileRef] = None,
        parent_id: Optional[str] = None,
    ) -> Message:
        self.validate(text, file_ref)
        return self._store.create_message(
            channel_id=channel_id,
            author_id=author.id,
            author_name=author.display_name,
            text=text,
            file_ref=file_ref,
            parent_id=parent_id,
        )

    def get(self, message_id: str) -> Message:
        message = self._store.get_message(message_id)
        if message is None:
            raise NotFoundError(f"Message '{message_id}' not found")
        return message

    def recent(self, channel_id: str, limit: int = Config.RECENT_MESSAGES_LIMIT) -> List[Message]:
        """Latest root messages of a channel, oldest first."""
        return self._store.list_messages(channel_id, limit)

    def view(self, message: Message) -> Dict[str, Any]:
        data = message.to_dict()
        data["reactions"] = aggregate_reactions(self._store.list_reactions(message.id))
        data["replyCount"] = self.reply_counter(message.id)
        return data

    def views(self, messages: List[Message]) -> List[Dict[str, Any]]:
        return [self.view(m) for m in messages]
