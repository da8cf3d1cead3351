"""
Connection - uma conexão Event Socket sobre asyncio streams.

Responsabilidades:
- Loop de leitura do socket (task própria)
- Framing/parsing via MessageParser
- Publicação em `messages` (todas) e `events` (text/event-plain)
- Ciclo de vida OPEN -> CLOSING -> CLOSED com término único dos streams

Gatilhos de fechamento (todos passam por _shutdown, executado uma vez):
- close() local
- EOF / reset do peer
- text/disconnect-notice (após entrega aos assinantes)
- erro de framing (streams terminam com erro)
"""

import asyncio
import logging
import threading
from enum import Enum
from typing import Callable, Optional, Type, TypeVar

from .broadcast import Broadcast
from .errors import ConnectionClosedError, FramingError, StreamCompletedError
from .metrics import get_metrics
from .protocol import (
    ApiResponse,
    BasicMessage,
    CommandReply,
    DisconnectNotice,
    EventMessage,
    MessageParser,
)
from .settings import get_esl_settings

logger = logging.getLogger(__name__)

ReplyT = TypeVar("ReplyT", bound=BasicMessage)


class ConnectionState(Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


def _peer_name(writer: asyncio.StreamWriter) -> str:
    peer = writer.get_extra_info("peername")
    if isinstance(peer, tuple) and len(peer) >= 2:
        return f"{peer[0]}:{peer[1]}"
    return str(peer or "esl")


class Connection:
    """
    Conexão ESL (modo inbound ou outbound).

    Uso:
        connection = Connection(reader, writer)
        connection.messages.subscribe(on_next=handle, on_completed=done)
        connection.open()

        reply = await connection.send_command("myevents")
        event = await connection.wait_for_event("CHANNEL_ANSWER", timeout=30)

        connection.close()
        await connection.wait_closed()

    Deve ser criada dentro de um loop asyncio em execução.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        name: Optional[str] = None,
        read_size: Optional[int] = None,
    ):
        self.name = name or _peer_name(writer)

        self._reader = reader
        self._writer = writer
        self._read_size = read_size or get_esl_settings().ESL_READ_CHUNK_SIZE
        self._parser = MessageParser()
        self._loop = asyncio.get_running_loop()

        self._state = ConnectionState.OPEN
        self._state_lock = threading.Lock()
        self._closed = asyncio.Event()
        self._receive_task: Optional[asyncio.Task] = None
        self._close_error: Optional[BaseException] = None

        # Serializa comando -> resposta
        self._command_lock = asyncio.Lock()

        self.messages: Broadcast[BasicMessage] = Broadcast(f"{self.name}.messages")
        self.events: Broadcast[EventMessage] = Broadcast(f"{self.name}.events")

        self._metrics = get_metrics()

    # =========================================================================
    # Estado
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def close_error(self) -> Optional[BaseException]:
        """Erro que encerrou a conexão (None se fechou normalmente)."""
        return self._close_error

    def open(self) -> None:
        """Inicia o loop de leitura e retorna imediatamente."""
        if self._receive_task is not None or not self.is_open:
            return
        self._metrics.connection_opened()
        self._receive_task = self._loop.create_task(
            self._receive_loop(), name=f"esl-receive-{self.name}"
        )
        logger.debug(f"[{self.name}] Receive loop started")

    def close(self) -> None:
        """
        Fecha a conexão. Idempotente; pode ser chamado de outra thread.

        Garante o término de `messages` e `events` para todos os assinantes.
        """
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._shutdown()
        elif not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._shutdown)

    async def wait_closed(self) -> None:
        """Aguarda o estado CLOSED e o fechamento do transporte."""
        await self._closed.wait()
        try:
            await self._writer.wait_closed()
        except OSError as e:
            logger.debug(f"[{self.name}] Transport closed with error: {e}")

    async def __aenter__(self) -> "Connection":
        self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()
        await self.wait_closed()

    def _shutdown(self, error: Optional[BaseException] = None) -> None:
        """Transição única OPEN -> CLOSING -> CLOSED."""
        with self._state_lock:
            if self._state is not ConnectionState.OPEN:
                return
            self._state = ConnectionState.CLOSING

        task = self._receive_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        try:
            self._writer.close()
        except (OSError, RuntimeError) as e:
            logger.debug(f"[{self.name}] Error closing transport: {e}")

        self._state = ConnectionState.CLOSED
        self._close_error = error
        self._closed.set()

        if self._receive_task is not None:
            self._metrics.connection_closed(framing_error=isinstance(error, FramingError))

        if error is not None:
            logger.warning(f"[{self.name}] Connection closed with error: {error}")
            self.messages.error(error)
            self.events.error(error)
        else:
            logger.info(f"[{self.name}] Connection closed")
            self.messages.complete()
            self.events.complete()

    # =========================================================================
    # Leitura
    # =========================================================================

    async def _receive_loop(self) -> None:
        error: Optional[BaseException] = None
        try:
            while self._state is ConnectionState.OPEN:
                data = await self._reader.read(self._read_size)
                if not data:
                    if self._parser.has_partial:
                        error = FramingError(
                            f"Stream ended mid-message ({self._parser.buffered} bytes buffered)"
                        )
                    else:
                        logger.debug(f"[{self.name}] Remote end closed the socket")
                    break

                self._parser.append(data)
                if self._dispatch():
                    break

        except FramingError as e:
            error = e
        except OSError as e:
            logger.info(f"[{self.name}] Socket read failed: {e}")
        except asyncio.CancelledError:
            logger.debug(f"[{self.name}] Receive loop cancelled")
        finally:
            self._shutdown(error)

    def _dispatch(self) -> bool:
        """
        Publica as mensagens completas do buffer.

        Returns:
            True se a conexão deve ser encerrada (disconnect-notice)
        """
        for message in self._parser.drain():
            self._metrics.message_received(message.content_type)
            self.messages.publish(message)

            if isinstance(message, EventMessage):
                self.events.publish(message)

            elif isinstance(message, DisconnectNotice):
                # Com linger o FreeSWITCH ainda envia eventos até fechar o socket
                if message.header("Content-Disposition") == "linger":
                    logger.info(f"[{self.name}] Disconnect notice (linger), waiting for remote close")
                    continue
                logger.info(f"[{self.name}] Disconnect notice received")
                return True

        return False

    # =========================================================================
    # Escrita / comandos
    # =========================================================================

    async def send(self, command: str) -> None:
        """
        Envia um comando (acrescenta a linha em branco final).

        Raises:
            ConnectionClosedError: conexão não está aberta ou escrita falhou
        """
        if not self.is_open:
            raise ConnectionClosedError(f"[{self.name}] Connection is {self._state.value}")

        payload = command.rstrip("\r\n") + "\n\n"
        logger.debug(f"[{self.name}] >> {command.splitlines()[0] if command else ''}")
        try:
            self._writer.write(payload.encode("utf-8"))
            await self._writer.drain()
        except OSError as e:
            raise ConnectionClosedError(f"[{self.name}] Write failed: {e}") from e

    async def _request(self, command: str, reply_type: Type[ReplyT]) -> ReplyT:
        async with self._command_lock:
            waiter = self.messages.first(lambda m: isinstance(m, reply_type))
            try:
                await self.send(command)
                return await waiter
            except StreamCompletedError as e:
                raise ConnectionClosedError(
                    f"[{self.name}] Connection closed waiting for reply to '{command.split()[0]}'"
                ) from e
            finally:
                waiter.cancel()

    async def send_command(self, command: str) -> CommandReply:
        """Envia comando e aguarda o próximo command/reply."""
        return await self._request(command, CommandReply)

    async def api(self, command: str) -> ApiResponse:
        """Executa 'api <command>' e aguarda o api/response."""
        return await self._request(f"api {command}", ApiResponse)

    async def wait_for_event(
        self,
        *event_names: str,
        predicate: Optional[Callable[[EventMessage], bool]] = None,
        timeout: Optional[float] = None,
    ) -> EventMessage:
        """
        Aguarda evento específico.

        Args:
            event_names: Nomes aceitos (vazio = qualquer evento)
            predicate: Filtro adicional
            timeout: Timeout em segundos (None = sem timeout)

        Raises:
            asyncio.TimeoutError: timeout (a assinatura é removida)
            ConnectionClosedError: conexão encerrou antes do evento
        """
        def matches(event: EventMessage) -> bool:
            if event_names and event.event_name not in event_names:
                return False
            return predicate is None or predicate(event)

        waiter = self.events.first(matches)
        try:
            return await asyncio.wait_for(waiter, timeout)
        except StreamCompletedError as e:
            raise ConnectionClosedError(
                f"[{self.name}] Connection closed waiting for {event_names or 'event'}"
            ) from e

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, state={self._state.value})"
