"""
OutboundListener - servidor TCP que recebe as conexões do FreeSWITCH.

Cada conexão aceita vira um OutboundSocket (já com o loop de leitura
iniciado) e é publicada em `connections`. O listener só rastreia os
sockets para o fechamento em massa no dispose(); o ciclo de vida de cada
chamada é da aplicação.
"""

import asyncio
import logging
import threading
from typing import Dict, List, Optional

from .broadcast import Broadcast
from .outbound import OutboundSocket
from .settings import get_esl_settings

logger = logging.getLogger(__name__)


class OutboundListener:
    """
    Listener ESL Outbound.

    Uso:
        listener = OutboundListener(port=0)
        listener.connections.subscribe(on_next=handle_socket)
        await listener.start()
        print(listener.port)  # porta efetiva (0 = efêmera)
        ...
        await listener.stop()
    """

    def __init__(self, port: Optional[int] = None, host: Optional[str] = None):
        settings = get_esl_settings()
        self.host = host if host is not None else settings.ESL_LISTEN_HOST
        self._requested_port = port if port is not None else settings.ESL_LISTEN_PORT
        self._read_size = settings.ESL_READ_CHUNK_SIZE
        self._check_interval = settings.ESL_LISTENER_CHECK_INTERVAL_SECONDS

        self._server: Optional[asyncio.AbstractServer] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._bound_port: Optional[int] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._stopped = asyncio.Event()

        # Registry não-proprietário: id(socket) -> socket
        self._sockets: Dict[int, OutboundSocket] = {}
        self._disposed = False
        self._dispose_lock = threading.Lock()

        self.connections: Broadcast[OutboundSocket] = Broadcast("connections")

    @property
    def port(self) -> int:
        """Porta efetiva após start()."""
        if self._bound_port is None:
            return self._requested_port
        return self._bound_port

    @property
    def is_running(self) -> bool:
        return self._server is not None and not self._disposed

    @property
    def active_connections(self) -> List[OutboundSocket]:
        return list(self._sockets.values())

    async def start(self, port: Optional[int] = None) -> None:
        """
        Inicia o servidor (bind + accept).

        Args:
            port: Sobrescreve a porta do construtor (0 = efêmera)
        """
        if self._disposed:
            raise RuntimeError("Listener already disposed")
        if self._server is not None:
            return
        if port is not None:
            self._requested_port = port

        self._loop = asyncio.get_running_loop()
        self._server = await asyncio.start_server(
            self._handle_connection,
            self.host,
            self._requested_port,
        )
        sockets = self._server.sockets or ()
        if sockets:
            self._bound_port = sockets[0].getsockname()[1]

        logger.info(f"ESL outbound listener started on {self.host}:{self.port}")
        self._watch_task = self._loop.create_task(
            self._watch_listening_socket(), name="esl-listener-watch"
        )

    def dispose(self) -> None:
        """
        Para de aceitar conexões e fecha todos os sockets rastreados.

        Idempotente; pode ser chamado de outra thread.
        """
        loop = self._loop
        if loop is not None:
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is not loop:
                if not loop.is_closed():
                    loop.call_soon_threadsafe(self.dispose)
                return

        with self._dispose_lock:
            if self._disposed:
                return
            self._disposed = True

        if self._server is not None:
            self._server.close()

        watch_task = self._watch_task
        if watch_task is not None and watch_task is not asyncio.current_task():
            watch_task.cancel()
        self._stopped.set()

        sockets = list(self._sockets.values())
        self._sockets.clear()
        for socket in sockets:
            socket.close()

        self.connections.complete()
        logger.info(f"ESL outbound listener disposed ({len(sockets)} connections closed)")

    async def stop(self) -> None:
        """dispose() + aguarda o fechamento do servidor."""
        sockets = self.active_connections
        self.dispose()
        for socket in sockets:
            await socket.wait_closed()
        if self._server is not None:
            await self._server.wait_closed()

    async def serve_forever(self) -> None:
        """Executa o listener até ser cancelado ou descartado (dispose)."""
        await self.start()
        try:
            await self._stopped.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> "OutboundListener":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handler para novas conexões do FreeSWITCH."""
        if self._disposed:
            writer.close()
            return

        try:
            socket = OutboundSocket(reader, writer, read_size=self._read_size)
        except Exception as e:
            logger.error(f"Failed to accept ESL connection: {e}", exc_info=True)
            writer.close()
            return

        key = id(socket)
        self._sockets[key] = socket
        socket.messages.subscribe(
            on_error=lambda _: self._forget(key),
            on_completed=lambda: self._forget(key),
        )
        socket.open()

        logger.info("ESL outbound connection accepted", extra={
            "peer": socket.name,
            "active_connections": len(self._sockets),
        })
        self.connections.publish(socket)

        # Mantém o handler vivo enquanto a conexão existir
        await socket.wait_closed()

    def _forget(self, key: int) -> None:
        self._sockets.pop(key, None)

    def _listening_socket_usable(self) -> bool:
        server = self._server
        if server is None or not server.is_serving():
            return False
        return all(sock.fileno() != -1 for sock in server.sockets)

    async def _watch_listening_socket(self) -> None:
        """Descarta o listener se o socket de escuta deixar de funcionar."""
        while not self._disposed:
            await asyncio.sleep(self._check_interval)
            if self._disposed:
                return
            if not self._listening_socket_usable():
                logger.error(
                    f"ESL listening socket on {self.host}:{self.port} is no longer usable, "
                    f"disposing listener"
                )
                self.dispose()
                return
