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
    split_assistant_query,
)

__all__ = [
    'AssistantSend',
    'CloseThread',
    'CreateChannel',
    'DeleteMessage',
    'DirectMessage',
    'Envelope',
    'EventType',
    'GetThread',
    'Inbound',
    'JoinChannel',
    'PlainSend',
    'ToggleReaction',
    'make_event',
    'parse_inbound',
    'split_assistant_query',
]
