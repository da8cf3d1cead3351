# ESL Outbound - FreeSWITCH Event Socket (modo outbound) sobre asyncio
#
# Componentes:
# - protocol/: framing e modelo de mensagens (sem I/O)
# - broadcast.py: fan-out para múltiplos assinantes
# - connection.py: loop de leitura, despacho e ciclo de vida
# - outbound.py: OutboundSocket (handshake 'connect')
# - listener.py: OutboundListener (accept + dispose em cascata)
#
# Referências:
# - https://freeswitch.org/confluence/display/FREESWITCH/mod_event_socket

from .broadcast import Broadcast, Subscription
from .connection import Connection, ConnectionState
from .errors import (
    ConnectionClosedError,
    ESLError,
    FramingError,
    HandshakeError,
    StreamCompletedError,
)
from .listener import OutboundListener
from .outbound import HandshakeState, OutboundSocket
from .protocol import (
    ApiResponse,
    BasicMessage,
    CallState,
    ChannelState,
    CommandReply,
    ContentType,
    DisconnectNotice,
    EventMessage,
    MessageParser,
)
from .settings import ESLSettings, get_esl_settings

__version__ = "0.1.0"

__all__ = [
    # Streams
    "Broadcast",
    "Subscription",
    # Conexões
    "Connection",
    "ConnectionState",
    "OutboundSocket",
    "HandshakeState",
    "OutboundListener",
    # Mensagens
    "ApiResponse",
    "BasicMessage",
    "CallState",
    "ChannelState",
    "CommandReply",
    "ContentType",
    "DisconnectNotice",
    "EventMessage",
    "MessageParser",
    # Erros
    "ESLError",
    "FramingError",
    "ConnectionClosedError",
    "HandshakeError",
    "StreamCompletedError",
    # Config
    "ESLSettings",
    "get_esl_settings",
]
