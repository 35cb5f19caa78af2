"""
Event routing for the realtime core.

``MessageRouter`` takes a raw inbound frame from an authenticated
connection, parses it into its variant once, runs the matching handler and
fans the results out through ``DeliveryService``.

Ordering: every mutation of a channel and the broadcasts it causes run under
that channel's lock, so subscribers see events in commit order and one
send's consequences arrive as message-created followed by thread-updated.
The assistant call itself runs outside any lock in a detached task; its
answer re-enters the same path as an ordinary reply.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from HiveChat.config import config
from HiveChat.core.logging.utils import LogTimer, RequestLogger
from HiveChat.core.message.protocol import (
    AssistantSend,
    CloseThread,
    CreateChannel,
    DeleteMessage,
    DirectMessage,
    Envelope,
    EventType,
    GetThread,
    Inbound,
    JoinChannel,
    PlainSend,
    ToggleReaction,
    make_event,
    parse_inbound,
)
from HiveChat.core.server.assistant import format_answer
from HiveChat.core.server.errors import (
    AuthorizationError,
    ChatError,
    NotFoundError,
    UpstreamError,
)
from HiveChat.core.server.interfaces import Assistant, Store
from HiveChat.core.server.membership import ChannelMembership
from HiveChat.core.server.messages import MessageService
from HiveChat.core.server.models import Channel, Message, Principal
from HiveChat.core.server.reactions import ReactionEngine
from HiveChat.core.server.routing.delivery import DeliveryResult, DeliveryService, DeliveryStatus
from HiveChat.core.server.threads import ThreadEngine
from HiveChat.core.server.transport import WebSocketConnection

logger = logging.getLogger(__name__)

Send = Union[PlainSend, AssistantSend]


class MessageRouter:
    """
    Dispatches inbound events to their handlers.

    Handler failures never escape: a ChatError becomes an ``error`` event
    for the sender, anything else is logged with its traceback and reported
    as an UpstreamError.
    """

    def __init__(
        self,
        store: Store,
        delivery: DeliveryService,
        membership: ChannelMembership,
        messages: MessageService,
        threads: ThreadEngine,
        reactions: ReactionEngine,
        assistant: Assistant,
        assistant_principal: Principal,
        assistant_prefix: Optional[str] = None,
    ):
        self._store = store
        self._delivery = delivery
        self._registry = delivery.registry
        self._membership = membership
        self._messages = messages
        self._threads = threads
        self._reactions = reactions
        self._assistant = assistant
        self._assistant_principal = assistant_principal
        self._assistant_prefix = assistant_prefix or config.ASSISTANT_PREFIX

        self._channel_locks: Dict[str, asyncio.Lock] = {}
        self._assistant_tasks: Set[asyncio.Task] = set()
        # channel_id -> {evicted message id -> observing conn_ids}
        self._evicted: Dict[str, Dict[str, Set[str]]] = {}
        self._request_logger = RequestLogger(logger)

        self._handlers: Dict[type, Callable[[WebSocketConnection, Any], Awaitable[None]]] = {
            PlainSend: self._handle_send,
            AssistantSend: self._handle_send,
            DirectMessage: self._handle_direct_message,
            ToggleReaction: self._handle_toggle_reaction,
            DeleteMessage: self._handle_delete_message,
            JoinChannel: self._handle_join_channel,
            GetThread: self._handle_get_thread,
            CloseThread: self._handle_close_thread,
            CreateChannel: self._handle_create_channel,
        }

    @property
    def pending_assistant_tasks(self) -> int:
        return len(self._assistant_tasks)

    def channel_lock(self, channel_id: str) -> asyncio.Lock:
        lock = self._channel_locks.get(channel_id)
        if lock is None:
            lock = self._channel_locks[channel_id] = asyncio.Lock()
        return lock

    # ----------------------------- entry -----------------------------
    async def handle_frame(self, connection: WebSocketConnection, raw: Union[str, bytes]) -> None:
        """Process one inbound frame from an authenticated connection."""
        event_name: Optional[str] = None
        try:
            envelope = Envelope.deserialize(raw)
            event_name = envelope.event.value
            self._request_logger.log_websocket_event(
                event_name, connection.principal.id, {"conn_id": connection.conn_id}
            )
            command = parse_inbound(envelope, self._assistant_prefix)
            await self.dispatch(connection, command)
        except ChatError as e:
            logger.info(
                "Rejected %s from %s: %s %s",
                event_name or "frame", connection.principal.id, e.kind, e.message
            )
            await self.send_error(connection, e, event_name)
        except Exception as e:
            logger.exception("Unhandled error processing %s from %s", event_name, connection.principal.id)
            await self.send_error(connection, UpstreamError(f"Internal error: {e}"), event_name)

    async def dispatch(self, connection: WebSocketConnection, command: Inbound) -> None:
        handler = self._handlers.get(type(command))
        if handler is None:
            raise NotFoundError(f"No handler for {type(command).__name__}")
        await handler(connection, command)

    async def send_error(
        self,
        connection: WebSocketConnection,
        error: ChatError,
        event: Optional[str] = None
    ) -> DeliveryResult:
        frame = make_event(EventType.ERROR, **error.to_payload("sender", event))
        return await self._delivery.send(connection, frame)

    # ----------------------------- sends -----------------------------
    async def _handle_send(self, connection: WebSocketConnection, command: Send) -> None:
        principal = connection.principal
        async with self.channel_lock(command.channel_id):
            self._membership.require_member(principal.id, command.channel_id)
            message = self._persist(
                command.channel_id, principal, command.text, command.file_ref, command.parent_id
            )
            await self._announce_created(message)
            await self._close_threads(command.channel_id, self._evicted.pop(command.channel_id, {}))

        if isinstance(command, AssistantSend):
            self._spawn_assistant(connection, message, command.query)

    def _persist(
        self,
        channel_id: str,
        author: Principal,
        text: str,
        file_ref=None,
        parent_id: Optional[str] = None,
    ) -> Message:
        if parent_id is not None:
            return self._threads.create_reply(channel_id, parent_id, author, text, file_ref)
        return self._messages.create(channel_id, author, text, file_ref)

    async def _announce_created(self, message: Message) -> None:
        """Broadcast a committed message; a reply is followed by its thread update."""
        await self._delivery.send_to_channel(
            message.channel_id,
            make_event(
                EventType.MESSAGE_CREATED,
                channelId=message.channel_id,
                message=self._messages.view(message),
            ),
        )
        if message.parent_id is not None:
            await self._delivery.send_to_channel(
                message.channel_id,
                make_event(
                    EventType.THREAD_UPDATED,
                    channelId=message.channel_id,
                    parentId=message.parent_id,
                    replyCount=self._threads.reply_count(message.parent_id),
                    latestReply=self._messages.view(message),
                ),
            )

    async def _handle_direct_message(self, connection: WebSocketConnection, command: DirectMessage) -> None:
        principal = connection.principal
        recipient = self._store.get_principal(command.recipient_id)
        if recipient is None:
            raise NotFoundError(f"Principal '{command.recipient_id}' not found")

        channel, created = self._membership.open_direct(principal.id, recipient.id)
        await self._attach_direct(channel, created, (principal.id, recipient.id))
        await self._handle_send(connection, command.to_send(channel.id))

    async def _attach_direct(self, channel: Channel, created: bool, participants) -> None:
        """Subscribe both participants' connections; announce a new channel to them."""
        for principal_id in participants:
            self._registry.subscribe_principal(principal_id, channel.id)
        if created:
            frame = make_event(EventType.CHANNEL_CREATED, channel=channel.to_dict())
            for principal_id in participants:
                await self._delivery.send_to_principal(principal_id, frame)

    # ----------------------------- assistant -----------------------------
    def _spawn_assistant(self, connection: WebSocketConnection, question: Message, query: str) -> None:
        task = asyncio.create_task(self._run_assistant(connection, question, query))
        self._assistant_tasks.add(task)
        task.add_done_callback(self._assistant_tasks.discard)

    async def _run_assistant(self, connection: WebSocketConnection, question: Message, query: str) -> None:
        """Ask the assistant and post its answer as a reply to the question."""
        event = EventType.SEND_MESSAGE.value
        try:
            with LogTimer("assistant.answer", logger, logging.INFO):
                answer = await self._assistant.answer(query)
        except ChatError as e:
            await self.send_error(connection, e, event)
            return
        except Exception as e:
            logger.exception("Assistant failed for message %s", question.id)
            await self.send_error(connection, UpstreamError(f"Assistant failed: {e}"), event)
            return

        text = format_answer(answer)[:self._messages.max_length]
        try:
            async with self.channel_lock(question.channel_id):
                if self._store.get_message(question.id) is None:
                    logger.info("Question %s was removed before the answer arrived", question.id)
                    return
                reply = self._threads.create_reply(
                    question.channel_id, question.id, self._assistant_principal, text
                )
                await self._announce_created(reply)
        except ChatError as e:
            await self.send_error(connection, e, event)
        except Exception as e:
            logger.exception("Could not post assistant answer for %s", question.id)
            await self.send_error(connection, UpstreamError(f"Could not post answer: {e}"), event)

    async def drain(self) -> None:
        """Wait until every in-flight assistant task has finished."""
        while self._assistant_tasks:
            await asyncio.gather(*list(self._assistant_tasks), return_exceptions=True)

    # ----------------------------- reactions -----------------------------
    async def _handle_toggle_reaction(self, connection: WebSocketConnection, command: ToggleReaction) -> None:
        principal = connection.principal
        channel_id = self._messages.get(command.message_id).channel_id
        async with self.channel_lock(channel_id):
            self._membership.require_member(principal.id, channel_id)
            added, aggregate = self._reactions.toggle(command.message_id, principal.id, command.emoji)
            logger.debug(
                "%s %s %s on %s", principal.id, "added" if added else "removed", command.emoji, command.message_id
            )
            await self._delivery.send_to_channel(
                channel_id,
                make_event(
                    EventType.REACTION_UPDATED,
                    channelId=channel_id,
                    messageId=command.message_id,
                    aggregate=aggregate,
                ),
            )

    # ----------------------------- deletion -----------------------------
    async def _handle_delete_message(self, connection: WebSocketConnection, command: DeleteMessage) -> None:
        principal = connection.principal
        channel_id = self._messages.get(command.message_id).channel_id
        async with self.channel_lock(channel_id):
            message = self._messages.get(command.message_id)
            if message.author_id != principal.id:
                raise AuthorizationError("Only the author may delete a message")

            removed = self._store.delete_message(message.id)
            new_count = None
            if message.parent_id is not None:
                new_count = self._threads.reply_removed(message.parent_id)

            closed = self._threads.forget_many(removed)

            await self._delivery.send_to_channel(
                channel_id,
                make_event(
                    EventType.MESSAGE_DELETED,
                    channelId=channel_id,
                    messageId=message.id,
                    parentId=message.parent_id,
                ),
            )
            if message.parent_id is not None:
                replies = self._store.list_replies(message.parent_id)
                await self._delivery.send_to_channel(
                    channel_id,
                    make_event(
                        EventType.THREAD_UPDATED,
                        channelId=channel_id,
                        parentId=message.parent_id,
                        replyCount=new_count,
                        latestReply=self._messages.view(replies[-1]) if replies else None,
                    ),
                )
            await self._close_threads(channel_id, closed)
        logger.info("%s deleted message %s (%d removed)", principal.id, message.id, len(removed))

    def messages_evicted(self, messages: List[Message]) -> None:
        """
        Store callback for retention evictions.

        Runs synchronously inside the store write; the ``thread-closed``
        events go out after the send that caused the eviction is announced.
        """
        for channel_id in {m.channel_id for m in messages}:
            closed = self._threads.forget_many(m for m in messages if m.channel_id == channel_id)
            if closed:
                self._evicted.setdefault(channel_id, {}).update(closed)

    async def _close_threads(self, channel_id: str, closed: Dict[str, Set[str]]) -> None:
        """Tell every observer of a removed thread that it is gone."""
        for parent_id, observers in closed.items():
            frame = make_event(EventType.THREAD_CLOSED, channelId=channel_id, parentId=parent_id)
            targets = [c for c in map(self._registry.get_connection, observers) if c is not None]
            await self._delivery.send_many(targets, frame)

    # ----------------------------- channels -----------------------------
    async def _handle_join_channel(self, connection: WebSocketConnection, command: JoinChannel) -> None:
        channel, created = self._membership.join_channel(connection, command.channel_id)
        if channel.is_direct:
            await self._attach_direct(channel, created, sorted(channel.member_ids))
        await self._delivery.send(
            connection,
            make_event(
                EventType.CHANNEL_HISTORY,
                channelId=channel.id,
                channel=channel.to_dict(),
                messages=self._messages.views(self._messages.recent(channel.id)),
            ),
        )

    async def _handle_create_channel(self, connection: WebSocketConnection, command: CreateChannel) -> None:
        principal = connection.principal
        channel = self._membership.create_channel(command.name, principal.id)
        self._registry.subscribe_principal(principal.id, channel.id)
        await self._delivery.broadcast(make_event(EventType.CHANNEL_CREATED, channel=channel.to_dict()))

    # ----------------------------- threads -----------------------------
    async def _handle_get_thread(self, connection: WebSocketConnection, command: GetThread) -> None:
        view = self._threads.get_thread(command.parent_id)
        self._membership.require_member(connection.principal.id, view.parent.channel_id)
        self._threads.open_view(connection.conn_id, command.parent_id)
        await self._delivery.send(
            connection,
            make_event(
                EventType.THREAD,
                channelId=view.parent.channel_id,
                parentId=command.parent_id,
                parent=self._messages.view(view.parent),
                replies=self._messages.views(view.replies),
                replyCount=view.reply_count,
            ),
        )

    async def _handle_close_thread(self, connection: WebSocketConnection, command: CloseThread) -> None:
        self._threads.close_view(connection.conn_id, command.parent_id)


__all__ = [
    'MessageRouter',
    'DeliveryService',
    'DeliveryResult',
    'DeliveryStatus',
]
