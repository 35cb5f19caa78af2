"""Emoji reactions for HiveChat.

A reaction is the triple (message, principal, emoji); toggling adds it when
absent and removes it when present. Clients only ever see the aggregate.
"""

from __future__ import annotations

from typing import Dict, List, Tuple

from HiveChat.core.server.errors import NotFoundError, ValidationError
from HiveChat.core.server.interfaces import Store
from HiveChat.core.server.models import aggregate_reactions

MAX_EMOJI_LENGTH = 32


class ReactionEngine:

    def __init__(self, store: Store):
        self._store = store

    def toggle(self, message_id: str, principal_id: str, emoji: str) -> Tuple[bool, Dict[str, List[str]]]:
        """
        Flip one reaction.

        Returns:
            (added, aggregate) where ``added`` is False when the reaction
            was removed

        Raises:
            ValidationError: empty or oversized emoji
            NotFoundError: the message does not exist
        """
        emoji = (emoji or "").strip()
        if not emoji:
            raise ValidationError("Emoji must not be empty")
        if len(emoji) > MAX_EMOJI_LENGTH:
            raise ValidationError("Emoji is too long")
        if self._store.get_message(message_id) is None:
            raise NotFoundError(f"Message '{message_id}' not found")

        added = False
        if not self._store.delete_reaction(message_id, principal_id, emoji):
            added = self._store.create_reaction(message_id, principal_id, emoji)
        return added, self.aggregate(message_id)

    def aggregate(self, message_id: str) -> Dict[str, List[str]]:
        return aggregate_reactions(self._store.list_reactions(message_id))
