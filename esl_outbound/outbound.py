"""
OutboundSocket - conexão iniciada pelo FreeSWITCH (ESL Outbound).

Fluxo típico:
1. Dialplan executa <action application="socket" data="host:8084 async full"/>
2. OutboundListener aceita e cria o OutboundSocket
3. Aplicação chama connect() -> recebe os dados do canal
4. myevents()/linger() e controle da chamada
5. Hangup -> disconnect-notice -> socket fechado
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

from .connection import Connection
from .errors import ESLError, HandshakeError
from .protocol import CommandReply, EventMessage

logger = logging.getLogger(__name__)


class HandshakeState(Enum):
    NOT_CONNECTED = "not_connected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class OutboundSocket(Connection):
    """
    Conexão outbound com handshake 'connect'.

    Propriedades após connect():
    - channel_data: EventMessage com as variáveis do canal
    - unique_id: UUID do canal FreeSWITCH
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, **kwargs):
        super().__init__(reader, writer, **kwargs)
        self._channel_data: Optional[EventMessage] = None
        self._handshake_state = HandshakeState.NOT_CONNECTED
        self._handshake_lock = asyncio.Lock()

    @property
    def channel_data(self) -> Optional[EventMessage]:
        return self._channel_data

    @property
    def handshake_state(self) -> HandshakeState:
        return self._handshake_state

    @property
    def unique_id(self) -> Optional[str]:
        if self._channel_data is None:
            return None
        return self._channel_data.unique_id

    async def connect(self) -> EventMessage:
        """
        Executa o handshake 'connect'.

        Sem timeout próprio: quem chama aplica asyncio.wait_for se precisar.
        Chamadas após sucesso retornam os dados em cache; após falha, tentam
        de novo.

        Raises:
            HandshakeError: conexão fechou antes da resposta ou resposta inválida
        """
        async with self._handshake_lock:
            if self._channel_data is not None:
                return self._channel_data

            self._handshake_state = HandshakeState.CONNECTING
            logger.debug(f"[{self.name}] Sending connect")
            try:
                reply = await self.send_command("connect")
                channel_data = self._parse_channel_data(reply)
            except asyncio.CancelledError:
                self._handshake_state = HandshakeState.FAILED
                raise
            except ESLError as e:
                self._handshake_state = HandshakeState.FAILED
                self._metrics.handshake("failed")
                logger.warning(f"[{self.name}] Connect handshake failed: {e}")
                raise HandshakeError(f"[{self.name}] Connect handshake failed: {e}") from e

            self._channel_data = channel_data
            self._handshake_state = HandshakeState.CONNECTED
            self._metrics.handshake("connected")

            logger.info(
                f"[{self.name}] Channel connected - "
                f"uuid={channel_data.unique_id}, state={channel_data.channel_state.name}, "
                f"caller={channel_data.caller_id_number}",
            )
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(f"[{self.name}] Channel vars", extra={
                    "channel_vars": dict(channel_data.event_headers),
                })
            return channel_data

    def _parse_channel_data(self, reply: CommandReply) -> EventMessage:
        if reply.error_text is not None:
            raise HandshakeError(f"Switch rejected connect: {reply.reply_text}")
        return EventMessage.from_command_reply(reply)

    # =========================================================================
    # Controle da sessão outbound
    # =========================================================================

    async def myevents(self) -> CommandReply:
        """Assina os eventos deste canal."""
        return await self.send_command("myevents")

    async def linger(self, seconds: Optional[int] = None) -> CommandReply:
        """Mantém o socket aberto após o hangup para receber os eventos finais."""
        command = "linger" if seconds is None else f"linger {seconds}"
        return await self.send_command(command)

    async def nolinger(self) -> CommandReply:
        return await self.send_command("nolinger")

    async def exit(self) -> CommandReply:
        """Pede ao FreeSWITCH para encerrar o socket."""
        return await self.send_command("exit")
