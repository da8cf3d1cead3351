"""
Modelo de mensagens ESL.

Cada unidade do protocolo é um bloco de headers seguido de um body opcional
com exatamente Content-Length bytes. O Content-Type define a interpretação:

    command/reply           -> CommandReply
    api/response            -> ApiResponse
    text/event-plain        -> EventMessage (body é outro bloco de headers)
    text/disconnect-notice  -> DisconnectNotice
    (qualquer outro)        -> BasicMessage

Referências:
- https://freeswitch.org/confluence/display/FREESWITCH/mod_event_socket
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Optional
from urllib.parse import unquote

from ..errors import FramingError


class ContentType:
    """Content-Types conhecidos."""
    COMMAND_REPLY = "command/reply"
    API_RESPONSE = "api/response"
    EVENT_PLAIN = "text/event-plain"
    DISCONNECT_NOTICE = "text/disconnect-notice"
    AUTH_REQUEST = "auth/request"
    LOG_DATA = "log/data"
    RUDE_REJECTION = "text/rude-rejection"


class ChannelState(Enum):
    """
    Estado do canal, lido do header canônico Channel-State.

    Channel-Call-State é outro header (estado da chamada) e fica em
    CallState; os dois nunca são convertidos um no outro.
    """
    NEW = "CS_NEW"
    INIT = "CS_INIT"
    ROUTING = "CS_ROUTING"
    SOFT_EXECUTE = "CS_SOFT_EXECUTE"
    EXECUTE = "CS_EXECUTE"
    EXCHANGE_MEDIA = "CS_EXCHANGE_MEDIA"
    PARK = "CS_PARK"
    CONSUME_MEDIA = "CS_CONSUME_MEDIA"
    HIBERNATE = "CS_HIBERNATE"
    RESET = "CS_RESET"
    HANGUP = "CS_HANGUP"
    REPORTING = "CS_REPORTING"
    DESTROY = "CS_DESTROY"
    NONE = "CS_NONE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ChannelState":
        if not value:
            return cls.UNKNOWN
        value = value.strip().upper()
        if not value.startswith("CS_"):
            value = f"CS_{value}"
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class CallState(Enum):
    """Estado da chamada (header Channel-Call-State)."""
    DOWN = "DOWN"
    DIALING = "DIALING"
    RINGING = "RINGING"
    EARLY = "EARLY"
    ACTIVE = "ACTIVE"
    HELD = "HELD"
    RING_WAIT = "RING_WAIT"
    HANGUP = "HANGUP"
    UNHELD = "UNHELD"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Optional[str]) -> "CallState":
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.UNKNOWN


def _freeze(headers: Mapping[str, str]) -> Mapping[str, str]:
    return MappingProxyType(dict(headers))


@dataclass(frozen=True)
class BasicMessage:
    """Mensagem ESL parseada (imutável)."""
    headers: Mapping[str, str]
    body: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", _freeze(self.headers))

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name, default)

    @property
    def content_type(self) -> str:
        return self.headers.get("Content-Type", "")

    @property
    def content_length(self) -> Optional[int]:
        value = self.headers.get("Content-Length")
        return int(value) if value is not None else None

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(content_type={self.content_type!r}, "
            f"headers={dict(self.headers)!r}, body={self.body[:80]!r})"
        )


@dataclass(frozen=True, repr=False)
class CommandReply(BasicMessage):
    """Resposta a um comando (Content-Type: command/reply)."""

    @property
    def reply_text(self) -> str:
        return self.headers.get("Reply-Text", "")

    @property
    def success(self) -> bool:
        return self.reply_text.startswith("+OK")

    @property
    def error_text(self) -> Optional[str]:
        if self.reply_text.startswith("-ERR"):
            return self.reply_text[4:].strip()
        return None


@dataclass(frozen=True, repr=False)
class ApiResponse(BasicMessage):
    """Resposta a 'api <comando>' (Content-Type: api/response)."""

    @property
    def success(self) -> bool:
        return not self.body.startswith("-ERR")

    @property
    def error_text(self) -> Optional[str]:
        if self.body.startswith("-ERR"):
            return self.body[4:].strip()
        return None


@dataclass(frozen=True, repr=False)
class DisconnectNotice(BasicMessage):
    """Aviso de que o FreeSWITCH vai fechar o socket."""
    pass


@dataclass(frozen=True, repr=False)
class EventMessage(BasicMessage):
    """
    Evento ESL (Content-Type: text/event-plain).

    O body do envelope é um segundo bloco de headers (event_headers), com
    valores URL-encoded. Alguns eventos (BACKGROUND_JOB, CUSTOM) trazem um
    body próprio, delimitado pelo Content-Length dentro de event_headers.
    """
    event_headers: Mapping[str, str] = field(default_factory=dict)
    event_body: str = ""

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.event_headers:
            raise FramingError("Event body has no headers")
        object.__setattr__(self, "event_headers", _freeze(self.event_headers))

    @classmethod
    def from_envelope(cls, headers: Mapping[str, str], body: str) -> "EventMessage":
        from .parser import split_event_body

        event_headers, event_body = split_event_body(body)
        return cls(
            headers=headers,
            body=body,
            event_headers=event_headers,
            event_body=event_body,
        )

    @classmethod
    def from_command_reply(cls, reply: BasicMessage) -> "EventMessage":
        """
        Monta os dados do canal a partir da resposta ao 'connect'.

        Se a resposta tem body, ele é o bloco de headers do evento. Sem body
        (forma enviada pelo FreeSWITCH real), os próprios headers da resposta
        são as variáveis do canal (URL-encoded, como num evento).
        """
        if reply.body:
            return cls.from_envelope(reply.headers, reply.body)
        event_headers = {name: unquote(value) for name, value in reply.headers.items()}
        return cls(headers=reply.headers, body="", event_headers=event_headers)

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Busca primeiro nos headers do evento, depois no envelope."""
        value = self.event_headers.get(name)
        if value is None:
            value = self.headers.get(name, default)
        return value

    @property
    def event_name(self) -> Optional[str]:
        return self.event_headers.get("Event-Name")

    @property
    def unique_id(self) -> Optional[str]:
        return self.event_headers.get("Unique-ID")

    @property
    def channel_state(self) -> ChannelState:
        return ChannelState.parse(self.event_headers.get("Channel-State"))

    @property
    def call_state(self) -> CallState:
        return CallState.parse(self.event_headers.get("Channel-Call-State"))

    @property
    def answer_state(self) -> Optional[str]:
        return self.event_headers.get("Answer-State")

    @property
    def hangup_cause(self) -> Optional[str]:
        return self.event_headers.get("Hangup-Cause")

    @property
    def caller_id_number(self) -> Optional[str]:
        return self.event_headers.get("Caller-Caller-ID-Number")

    @property
    def destination_number(self) -> Optional[str]:
        return self.event_headers.get("Caller-Destination-Number")

    def __repr__(self) -> str:
        return (
            f"EventMessage(event_name={self.event_name!r}, "
            f"unique_id={self.unique_id!r}, channel_state={self.channel_state.name})"
        )


_MESSAGE_TYPES: Dict[str, type] = {
    ContentType.COMMAND_REPLY: CommandReply,
    ContentType.API_RESPONSE: ApiResponse,
    ContentType.DISCONNECT_NOTICE: DisconnectNotice,
}


def build_message(headers: Mapping[str, str], body: str = "") -> BasicMessage:
    """Cria a mensagem tipada conforme o Content-Type."""
    content_type = headers.get("Content-Type", "")
    if content_type == ContentType.EVENT_PLAIN:
        return EventMessage.from_envelope(headers, body)
    message_cls = _MESSAGE_TYPES.get(content_type, BasicMessage)
    return message_cls(headers=headers, body=body)
