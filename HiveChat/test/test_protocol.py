"""
Unit tests for the wire protocol and the domain records.

Tests cover:
- Envelope parsing and rejection of malformed frames
- Inbound variants, including assistant prefix detection
- camelCase wire views of records
- Direct channel ids and reaction aggregation
"""

import json

import pytest

from HiveChat.core.message.protocol import (
    AssistantSend,
    CreateChannel,
    DirectMessage,
    Envelope,
    EventType,
    JoinChannel,
    PlainSend,
    ToggleReaction,
    make_event,
    parse_inbound,
    split_assistant_query,
)
from HiveChat.core.server.errors import ConflictError, NotFoundError, ValidationError
from HiveChat.core.server.models import (
    Channel,
    ChannelKind,
    FileRef,
    Message,
    aggregate_reactions,
    dm_channel_id,
    dm_participants,
    new_id,
)

PREFIX = "/askAI"


def parse(event: str, **data):
    raw = json.dumps({"event": event, "data": data})
    return parse_inbound(Envelope.deserialize(raw), PREFIX)


class TestEnvelope:

    def test_make_event_round_trips(self):
        raw = make_event(EventType.MESSAGE_DELETED, channelId="general", messageId="m1")
        envelope = Envelope.deserialize(raw)
        assert envelope.event is EventType.MESSAGE_DELETED
        assert envelope.data == {"channelId": "general", "messageId": "m1"}

    def test_missing_data_defaults_to_empty(self):
        envelope = Envelope.deserialize('{"event": "join-channel"}')
        assert envelope.data == {}

    @pytest.mark.parametrize("raw", [
        "not json",
        "[1, 2]",
        '{"event": "shout", "data": {}}',
        '{"event": "send-message", "data": "hello"}',
    ])
    def test_rejects_malformed_frames(self, raw):
        with pytest.raises(ValidationError):
            Envelope.deserialize(raw)


class TestParseInbound:

    def test_plain_send(self):
        command = parse("send-message", channelId="general", text="hello")
        assert command == PlainSend("general", "hello")

    def test_assistant_send_keeps_full_text(self):
        command = parse("send-message", channelId="general", text="/askAI what did bob say?")
        assert isinstance(command, AssistantSend)
        assert command.text == "/askAI what did bob say?"
        assert command.query == "what did bob say?"

    def test_prefix_must_be_followed_by_whitespace(self):
        command = parse("send-message", channelId="general", text="/askAIx nope")
        assert isinstance(command, PlainSend)

    def test_empty_assistant_query_is_rejected(self):
        with pytest.raises(ValidationError):
            parse("send-message", channelId="general", text="/askAI    ")

    def test_reply_with_file(self):
        command = parse(
            "send-message",
            channelId="general",
            text="",
            parentId="p1",
            fileRef={"url": "/uploads/a.png", "type": "image/png", "name": "a.png", "size": 3},
        )
        assert command.parent_id == "p1"
        assert command.file_ref == FileRef("/uploads/a.png", "image/png", "a.png", 3)

    def test_send_requires_channel(self):
        with pytest.raises(ValidationError):
            parse("send-message", text="hello")

    def test_bad_file_ref(self):
        with pytest.raises(ValidationError):
            parse("send-message", channelId="general", text="x", fileRef={"url": "/u"})

    def test_direct_message_with_assistant_prefix(self):
        command = parse("direct-message", principalId="p2", text="/askAI summarize")
        assert isinstance(command, DirectMessage)
        send = command.to_send("c1")
        assert isinstance(send, AssistantSend)
        assert send.channel_id == "c1"
        assert send.query == "summarize"

    def test_other_variants(self):
        assert parse("toggle-reaction", messageId="m1", emoji="👍") == ToggleReaction("m1", "👍")
        assert parse("join-channel", channelId="general") == JoinChannel("general")
        assert parse("create-channel", name="random") == CreateChannel("random")

    @pytest.mark.parametrize("event", ["connect", "initialize", "message-created"])
    def test_events_not_accepted_after_connect(self, event):
        with pytest.raises(ValidationError):
            parse(event)

    def test_split_assistant_query(self):
        assert split_assistant_query("hello", PREFIX) is None
        assert split_assistant_query("/askAI\thi there ", PREFIX) == "hi there"


class TestModels:

    def test_dm_channel_id_is_order_independent(self):
        a, b = new_id(), new_id()
        assert dm_channel_id(a, b) == dm_channel_id(b, a)
        assert dm_participants(dm_channel_id(a, b)) == tuple(sorted((a, b)))

    def test_dm_participants_rejects_other_ids(self):
        assert dm_participants("general") is None
        assert dm_participants("b-a") is None

    def test_message_wire_view(self):
        message = Message(
            id="m1", channel_id="general", author_id="p1", author_name="alice",
            text="hi", created_at=1.5, parent_id="m0",
        )
        assert message.to_dict() == {
            "id": "m1",
            "channelId": "general",
            "authorId": "p1",
            "authorName": "alice",
            "text": "hi",
            "createdAt": 1.5,
            "fileRef": None,
            "parentId": "m0",
        }
        assert message.is_reply

    def test_channel_wire_view(self):
        channel = Channel(id="c1", name="alice, bob", kind=ChannelKind.DIRECT, member_ids={"b", "a"})
        assert channel.is_direct
        assert channel.to_dict()["memberIds"] == ["a", "b"]

    def test_aggregate_reactions(self):
        pairs = [("p2", "👍"), ("p1", "🎉"), ("p1", "👍")]
        assert aggregate_reactions(pairs) == {"👍": ["p1", "p2"], "🎉": ["p1"]}
        assert aggregate_reactions([]) == {}


class TestErrors:

    def test_payload(self):
        payload = NotFoundError("Message 'x' not found", code="NOPE").to_payload("sender", "delete-message")
        assert payload == {
            "scope": "sender",
            "kind": "NotFoundError",
            "message": "Message 'x' not found",
            "code": "NOPE",
            "event": "delete-message",
        }

    def test_conflict_reports_as_validation(self):
        error = ConflictError("taken")
        assert isinstance(error, ValidationError)
        assert error.to_payload()["kind"] == "ValidationError"
