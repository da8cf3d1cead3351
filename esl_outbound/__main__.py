"""
Entrypoint do servidor ESL Outbound.

Para cada chamada que o FreeSWITCH entrega ao socket:
connect -> myevents -> linger (opcional) -> log dos eventos até o hangup.

Uso:
    ESL_LISTEN_PORT=8084 python -m esl_outbound
"""

import asyncio
import logging
import signal

from .errors import ESLError
from .listener import OutboundListener
from .metrics import get_metrics
from .outbound import OutboundSocket
from .settings import get_esl_settings

# Logger
logger = logging.getLogger(__name__)


def setup_logging(debug: bool = False) -> None:
    """Configura logging baseado em DEBUG."""
    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Reduzir verbosidade de algumas libs
    logging.getLogger("asyncio").setLevel(logging.WARNING)


async def handle_call(socket: OutboundSocket) -> None:
    """Sessão de uma chamada: handshake e log de eventos."""
    settings = get_esl_settings()
    try:
        channel = await asyncio.wait_for(
            socket.connect(),
            timeout=settings.ESL_HANDSHAKE_TIMEOUT_SECONDS,
        )
        await socket.myevents()
        if settings.ESL_LINGER:
            await socket.linger()
    except asyncio.TimeoutError:
        logger.error(f"[{socket.name}] Connect handshake timed out")
        socket.close()
        return
    except ESLError as e:
        logger.error(f"[{socket.name}] Session setup failed: {e}")
        socket.close()
        return

    uuid = channel.unique_id
    try:
        async for event in socket.events:
            logger.info(f"[{uuid}] {event.event_name}", extra={
                "channel_state": event.channel_state.name,
                "call_state": event.call_state.name,
            })
    except ESLError as e:
        logger.error(f"[{uuid}] Event stream failed: {e}")

    logger.info(f"[{uuid}] Call session ended")


async def run() -> None:
    settings = get_esl_settings()
    if settings.ENABLE_PROMETHEUS and settings.METRICS_PORT:
        get_metrics().serve(settings.METRICS_PORT)

    listener = OutboundListener()
    tasks = set()

    def on_connection(socket: OutboundSocket) -> None:
        # Uma task por chamada para não serializar os handshakes
        task = asyncio.create_task(handle_call(socket))
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    listener.connections.subscribe(on_next=on_connection)

    loop = asyncio.get_running_loop()
    serve_task = asyncio.create_task(listener.serve_forever())
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, serve_task.cancel)

    await serve_task
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
    logger.info("ESL outbound server stopped")


def main() -> None:
    """Entry point principal."""
    settings = get_esl_settings()
    setup_logging(settings.DEBUG)

    logger.info("=" * 60)
    logger.info("ESL Outbound Server")
    logger.info(f"Listen: {settings.ESL_LISTEN_HOST}:{settings.ESL_LISTEN_PORT}")
    logger.info("=" * 60)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")


if __name__ == "__main__":
    main()
