# Protocolo ESL: framing e modelo de mensagens

from .message import (
    ApiResponse,
    BasicMessage,
    CallState,
    ChannelState,
    CommandReply,
    ContentType,
    DisconnectNotice,
    EventMessage,
    build_message,
)
from .parser import MessageParser, parse_header_block, split_event_body

__all__ = [
    "ApiResponse",
    "BasicMessage",
    "CallState",
    "ChannelState",
    "CommandReply",
    "ContentType",
    "DisconnectNotice",
    "EventMessage",
    "build_message",
    "MessageParser",
    "parse_header_block",
    "split_event_body",
]
