"""
Wire protocol for HiveChat.

Every frame is a JSON object ``{"event": <name>, "data": {...}}``. Inbound
frames are parsed once, here, into a tagged variant; handlers downstream
never look at raw dictionaries or re-check the assistant prefix.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from HiveChat.core.server.errors import ValidationError
from HiveChat.core.server.models import FileRef


class EventType(Enum):
    """
    Enumeration of event names used between client and server.
    """
    # inbound
    CONNECT = "connect"
    SEND_MESSAGE = "send-message"
    TOGGLE_REACTION = "toggle-reaction"
    DELETE_MESSAGE = "delete-message"
    JOIN_CHANNEL = "join-channel"
    GET_THREAD = "get-thread"
    CLOSE_THREAD = "close-thread"
    CREATE_CHANNEL = "create-channel"
    DIRECT_MESSAGE = "direct-message"

    # outbound
    INITIALIZE = "initialize"
    MESSAGE_CREATED = "message-created"
    THREAD_UPDATED = "thread-updated"
    REACTION_UPDATED = "reaction-updated"
    MESSAGE_DELETED = "message-deleted"
    THREAD_CLOSED = "thread-closed"
    CHANNEL_HISTORY = "channel-history"
    THREAD = "thread"
    CHANNEL_CREATED = "channel-created"
    PRESENCE_CHANGED = "presence-changed"
    ERROR = "error"


@dataclass
class Envelope:
    """
    One protocol frame.

    Attributes:
        event (EventType): Event name
        data (dict): Event payload
    """
    event: EventType
    data: Dict[str, Any] = field(default_factory=dict)

    def serialize(self) -> str:
        return json.dumps({"event": self.event.value, "data": self.data})

    @classmethod
    def deserialize(cls, raw: Union[str, bytes]) -> 'Envelope':
        """
        Create an Envelope from a JSON frame.

        Raises:
            ValidationError: if the frame is not JSON, not an object, or names
                an unknown event
        """
        try:
            obj = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Malformed frame: {e}")
        if not isinstance(obj, dict):
            raise ValidationError("Frame must be a JSON object")

        name = obj.get("event")
        try:
            event = EventType(name)
        except ValueError:
            raise ValidationError(f"Unknown event: {name!r}")

        data = obj.get("data")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValidationError("Event data must be an object")
        return cls(event=event, data=data)


def make_event(event: EventType, /, **data: Any) -> str:
    """Serialize an outbound event in one call."""
    return Envelope(event, data).serialize()


# ---------------------------------------------------------------------------
# Inbound variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PlainSend:
    channel_id: str
    text: str
    file_ref: Optional[FileRef] = None
    parent_id: Optional[str] = None


@dataclass(frozen=True)
class AssistantSend:
    """A send whose text carried the assistant prefix.

    ``text`` is the message as typed and is persisted as the question;
    ``query`` is what the assistant is asked.
    """
    channel_id: str
    text: str
    query: str
    file_ref: Optional[FileRef] = None
    parent_id: Optional[str] = None


@dataclass(frozen=True)
class ToggleReaction:
    message_id: str
    emoji: str


@dataclass(frozen=True)
class DeleteMessage:
    message_id: str


@dataclass(frozen=True)
class JoinChannel:
    channel_id: str


@dataclass(frozen=True)
class GetThread:
    parent_id: str


@dataclass(frozen=True)
class CloseThread:
    parent_id: str


@dataclass(frozen=True)
class CreateChannel:
    name: str


@dataclass(frozen=True)
class DirectMessage:
    """A send addressed to a principal; the DM channel is resolved later.

    ``query`` is set when the text carried the assistant prefix.
    """
    recipient_id: str
    text: str
    file_ref: Optional[FileRef] = None
    parent_id: Optional[str] = None
    query: Optional[str] = None

    def to_send(self, channel_id: str) -> Union[PlainSend, AssistantSend]:
        if self.query is not None:
            return AssistantSend(channel_id, self.text, self.query, self.file_ref, self.parent_id)
        return PlainSend(channel_id, self.text, self.file_ref, self.parent_id)


Inbound = Union[
    PlainSend, AssistantSend, ToggleReaction, DeleteMessage, JoinChannel,
    GetThread, CloseThread, CreateChannel, DirectMessage,
]


def _require_str(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{key}' must be a non-empty string")
    return value


def _optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ValidationError(f"'{key}' must be a non-empty string")
    return value


def _text(data: Dict[str, Any]) -> str:
    value = data.get("text", "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("'text' must be a string")
    return value


def _file_ref(data: Dict[str, Any]) -> Optional[FileRef]:
    raw = data.get("fileRef")
    return FileRef.from_dict(raw) if raw is not None else None


def split_assistant_query(text: str, prefix: str) -> Optional[str]:
    """
    Return the assistant query if ``text`` starts with ``prefix`` followed by
    whitespace, else None.

    Raises:
        ValidationError: the prefix is present but the query is empty
    """
    if not prefix or not text.startswith(prefix):
        return None
    rest = text[len(prefix):]
    if not rest or not rest[0].isspace():
        return None
    query = rest.strip()
    if not query:
        raise ValidationError("Assistant query is empty")
    return query


def parse_inbound(envelope: Envelope, assistant_prefix: str) -> Inbound:
    """
    Turn an inbound envelope into its variant.

    Raises:
        ValidationError: missing or malformed fields, or an event that is not
            accepted after the connection is established
    """
    data = envelope.data
    event = envelope.event

    if event is EventType.SEND_MESSAGE:
        channel_id = _require_str(data, "channelId")
        text = _text(data)
        file_ref = _file_ref(data)
        parent_id = _optional_str(data, "parentId")
        query = split_assistant_query(text, assistant_prefix)
        if query is not None:
            return AssistantSend(channel_id, text, query, file_ref, parent_id)
        return PlainSend(channel_id, text, file_ref, parent_id)

    if event is EventType.DIRECT_MESSAGE:
        text = _text(data)
        return DirectMessage(
            recipient_id=_require_str(data, "principalId"),
            text=text,
            file_ref=_file_ref(data),
            parent_id=_optional_str(data, "parentId"),
            query=split_assistant_query(text, assistant_prefix),
        )

    if event is EventType.TOGGLE_REACTION:
        emoji = data.get("emoji")
        if not isinstance(emoji, str):
            raise ValidationError("'emoji' must be a string")
        return ToggleReaction(_require_str(data, "messageId"), emoji)

    if event is EventType.DELETE_MESSAGE:
        return DeleteMessage(_require_str(data, "messageId"))

    if event is EventType.JOIN_CHANNEL:
        return JoinChannel(_require_str(data, "channelId"))

    if event is EventType.GET_THREAD:
        return GetThread(_require_str(data, "parentId"))

    if event is EventType.CLOSE_THREAD:
        return CloseThread(_require_str(data, "parentId"))

    if event is EventType.CREATE_CHANNEL:
        name = data.get("name")
        if not isinstance(name, str):
            raise ValidationError("'name' must be a string")
        return CreateChannel(name)

    raise ValidationError(f"Event '{event.value}' is not accepted here")
