"""
Unit tests for the engines behind the router.

Tests cover:
- Connection registry and frame delivery
- Channel membership and direct channels
- Thread reply counts and observers
- Reaction toggling
- Presence transitions
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from HiveChat.core.server.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from HiveChat.core.server.membership import ChannelMembership
from HiveChat.core.server.messages import MessageService
from HiveChat.core.server.models import dm_channel_id
from HiveChat.core.server.presence import PresenceTracker
from HiveChat.core.server.reactions import ReactionEngine
from HiveChat.core.server.routing.delivery import DeliveryService, DeliveryStatus
from HiveChat.core.server.threads import ThreadEngine
from HiveChat.core.server.transport import WebSocketConnection, WebSocketConnectionRegistry
from HiveChat.test.conftest import FakeWebSocket


@pytest.fixture
def registry():
    return WebSocketConnectionRegistry()


@pytest.fixture
def membership(store, registry):
    membership = ChannelMembership(store, registry)
    membership.ensure_general()
    return membership


@pytest.fixture
def messages(store, membership):
    return MessageService(store)


@pytest.fixture
def threads(store, messages):
    engine = ThreadEngine(store, messages)
    messages.reply_counter = engine.reply_count
    return engine


def open_connection(registry, principal):
    connection = WebSocketConnection(FakeWebSocket(), principal)
    registry.register(connection)
    return connection


class TestRegistryAndDelivery:

    def test_several_connections_per_principal(self, registry, alice):
        first = open_connection(registry, alice)
        second = open_connection(registry, alice)

        assert registry.is_connected(alice.id)
        assert {c.conn_id for c in registry.connections_for(alice.id)} == {first.conn_id, second.conn_id}

        registry.unregister(first)
        assert registry.is_connected(alice.id)
        registry.unregister(second)
        assert not registry.is_connected(alice.id)

    def test_unregister_drops_subscriptions(self, registry, alice):
        connection = open_connection(registry, alice)
        registry.subscribe(connection, "general")
        assert registry.subscribed_channels(connection) == {"general"}

        registry.unregister(connection)
        assert registry.subscribers("general") == []

    def test_subscribe_principal(self, registry, alice):
        open_connection(registry, alice)
        open_connection(registry, alice)
        assert registry.subscribe_principal(alice.id, "c1") == 2
        assert len(registry.subscribers("c1")) == 2

    @pytest.mark.asyncio
    async def test_send_to_channel_skips_closed(self, registry, alice, bob):
        delivery = DeliveryService(registry)
        live = open_connection(registry, alice)
        dead = open_connection(registry, bob)
        registry.subscribe(live, "general")
        registry.subscribe(dead, "general")
        await dead.close()

        results = await delivery.send_to_channel("general", '{"event": "x", "data": {}}')

        assert results[live.conn_id].status is DeliveryStatus.DELIVERED
        assert results[dead.conn_id].status is DeliveryStatus.CLOSED
        assert len(live.raw_websocket.sent) == 1


class TestMembership:

    def test_general_is_created_once(self, store, membership):
        assert membership.ensure_general().id == "general"
        assert [c.id for c in store.list_channels()] == ["general"]

    def test_require_member(self, store, membership, alice):
        with pytest.raises(AuthorizationError):
            membership.require_member(alice.id, "general")
        membership.ensure_member(alice.id, "general")
        assert membership.require_member(alice.id, "general").id == "general"
        with pytest.raises(NotFoundError):
            membership.require_member(alice.id, "nope")

    def test_join_persistent_channel(self, store, registry, membership, alice):
        channel = membership.create_channel("random")
        connection = open_connection(registry, alice)

        joined, created = membership.join_channel(connection, channel.id)

        assert not created
        assert alice.id in joined.member_ids
        assert registry.subscribers(channel.id) == [connection]

    def test_join_unknown_channel(self, registry, membership, alice):
        with pytest.raises(NotFoundError):
            membership.join_channel(open_connection(registry, alice), "nope")

    def test_join_direct_channel_creates_it(self, store, registry, membership, alice, bob):
        connection = open_connection(registry, alice)
        cid = dm_channel_id(alice.id, bob.id)

        channel, created = membership.join_channel(connection, cid)

        assert created
        assert channel.is_direct
        assert channel.member_ids == {alice.id, bob.id}
        assert channel.name == "alice, bob"
        assert membership.join_channel(connection, cid)[1] is False

    def test_direct_channel_of_others_is_refused(self, registry, membership, alice, bob, carol):
        with pytest.raises(AuthorizationError):
            membership.join_channel(open_connection(registry, carol), dm_channel_id(alice.id, bob.id))

    def test_direct_channel_with_self(self, membership, alice):
        with pytest.raises(ValidationError):
            membership.open_direct(alice.id, alice.id)

    def test_visible_channels_hide_foreign_direct(self, membership, alice, bob, carol):
        membership.open_direct(alice.id, bob.id)
        assert [c.id for c in membership.list_visible_channels(carol.id)] == ["general"]
        assert len(membership.list_visible_channels(alice.id)) == 2

    def test_create_channel_validation(self, membership, alice):
        channel = membership.create_channel("  random  ", alice.id)
        assert channel.name == "random"
        assert channel.member_ids == {alice.id}
        with pytest.raises(ConflictError):
            membership.create_channel("random")
        with pytest.raises(ValidationError):
            membership.create_channel("   ")
        with pytest.raises(ValidationError):
            membership.create_channel("x" * 81)


class TestThreads:

    def test_reply_counts(self, store, messages, threads, alice):
        parent = messages.create("general", alice, "question")
        assert threads.reply_count(parent.id) == 0

        threads.create_reply("general", parent.id, alice, "one")
        threads.create_reply("general", parent.id, alice, "two")

        assert threads.reply_count(parent.id) == 2
        assert threads.get_thread(parent.id).reply_count == 2
        assert messages.view(parent)["replyCount"] == 2

    def test_reply_validation(self, store, membership, messages, threads, alice):
        other = membership.create_channel("random")
        parent = messages.create("general", alice, "question")
        with pytest.raises(NotFoundError):
            threads.create_reply("general", "missing", alice, "x")
        with pytest.raises(ValidationError):
            threads.create_reply(other.id, parent.id, alice, "x")

    def test_reply_removed(self, store, messages, threads, alice):
        parent = messages.create("general", alice, "question")
        replies = [threads.create_reply("general", parent.id, alice, t) for t in ("one", "two", "three")]
        threads.reply_count(parent.id)

        store.delete_message(replies[1].id)

        assert threads.reply_removed(parent.id) == 2
        view = threads.get_thread(parent.id)
        assert [r.id for r in view.replies] == [replies[0].id, replies[2].id]
        assert view.reply_count == 2

    def test_observers(self, threads):
        threads.open_view("c1", "m1")
        threads.open_view("c2", "m1")
        threads.open_view("c1", "m2")

        assert threads.observers("m1") == {"c1", "c2"}
        assert threads.close_view("c2", "m1")
        assert not threads.close_view("c2", "m1")

        threads.drop_connection("c1")
        assert threads.observers("m1") == set()
        assert threads.observers("m2") == set()

    def test_forget_returns_observers(self, threads):
        threads.open_view("c1", "m1")
        assert threads.forget("m1") == {"c1"}
        assert threads.forget("m1") == set()

    def test_forget_many_reports_observed_threads(self, messages, threads, alice):
        first = messages.create("general", alice, "one")
        second = messages.create("general", alice, "two")
        threads.open_view("c1", first.id)
        threads.open_view("c2", first.id)

        assert threads.forget_many([first, second]) == {first.id: {"c1", "c2"}}
        assert threads.observers(first.id) == set()


class TestReactions:

    def test_toggle(self, store, messages, alice, bob):
        engine = ReactionEngine(store)
        message = messages.create("general", alice, "hello")

        assert engine.toggle(message.id, alice.id, "👍") == (True, {"👍": [alice.id]})
        added, aggregate = engine.toggle(message.id, bob.id, "👍")
        assert added
        assert aggregate == {"👍": sorted([alice.id, bob.id])}
        assert engine.toggle(message.id, alice.id, "👍") == (False, {"👍": [bob.id]})
        assert messages.view(message)["reactions"] == {"👍": [bob.id]}

    def test_toggle_validation(self, store, messages, alice):
        engine = ReactionEngine(store)
        message = messages.create("general", alice, "hello")
        with pytest.raises(ValidationError):
            engine.toggle(message.id, alice.id, " ")
        with pytest.raises(ValidationError):
            engine.toggle(message.id, alice.id, "x" * 33)
        with pytest.raises(NotFoundError):
            engine.toggle("missing", alice.id, "👍")


class TestMessageService:

    def test_validation(self, messages, alice):
        with pytest.raises(ValidationError):
            messages.create("general", alice, "   ")
        with pytest.raises(ValidationError):
            messages.create("general", alice, "x" * 4001)

    def test_author_name_snapshot(self, messages, alice):
        message = messages.create("general", alice, "hello")
        assert message.author_name == "alice"
        assert messages.get(message.id) == message
        with pytest.raises(NotFoundError):
            messages.get("missing")


class TestPresence:

    @pytest.mark.asyncio
    async def test_only_transitions_are_announced(self, registry, alice, bob):
        presence = PresenceTracker(DeliveryService(registry))
        watcher = open_connection(registry, bob)

        assert await presence.mark_online(alice.id)
        assert not await presence.mark_online(alice.id)
        assert presence.is_online(alice.id)
        assert await presence.mark_offline(alice.id)
        assert not await presence.mark_offline(alice.id)

        assert watcher.raw_websocket.data("presence-changed") == [
            {"principalId": alice.id, "online": True},
            {"principalId": alice.id, "online": False},
        ]

    @pytest.mark.asyncio
    async def test_forget_is_silent(self, registry, alice):
        presence = PresenceTracker()
        await presence.mark_online(alice.id)
        presence.forget(alice.id)
        assert presence.online_principals() == []


class TestDeliveryFailures:

    @pytest.mark.asyncio
    async def test_failing_connection_is_reported_not_raised(self, registry):
        broken = MagicMock()
        broken.conn_id = "c1"
        broken.is_open.return_value = True
        broken.send = AsyncMock(side_effect=RuntimeError("socket exploded"))

        result = await DeliveryService(registry).send(broken, "{}")

        assert result.status is DeliveryStatus.FAILED
        assert "socket exploded" in result.error

    @pytest.mark.asyncio
    async def test_send_returning_false(self, registry):
        flaky = MagicMock()
        flaky.conn_id = "c2"
        flaky.is_open.return_value = True
        flaky.send = AsyncMock(return_value=False)

        result = await DeliveryService(registry).send(flaky, "{}")
        assert result.status is DeliveryStatus.FAILED
