"""
Pytest configuration and fixtures.
"""

import asyncio

import pytest
import pytest_asyncio

# Dados de canal enviados pelo FreeSWITCH em resposta ao 'connect'
CHANNEL_DATA_HEADERS = [
    ("Event-Name", "CHANNEL_DATA"),
    ("Core-UUID", "4ee5b4b1-2b1f-4c3c-9e6a-1b6c0f1f2a3b"),
    ("Unique-ID", "c4d2a3e1-6f7b-4d4c-8f2e-0a1b2c3d4e5f"),
    ("Channel-State", "CS_EXECUTE"),
    ("Channel-Call-State", "RINGING"),
    ("Answer-State", "ringing"),
    ("Call-Direction", "inbound"),
    ("Caller-Caller-ID-Number", "1001"),
    ("Caller-Destination-Number", "5000"),
    ("variable_domain_uuid", "a1b2c3d4"),
]


def encode_message(headers, body: str = "") -> bytes:
    """Monta um pacote ESL (headers + linha em branco + body)."""
    lines = [f"{name}: {value}" for name, value in headers]
    if body:
        lines.append(f"Content-Length: {len(body.encode('utf-8'))}")
    return ("\n".join(lines) + "\n\n" + body).encode("utf-8")


def encode_event(event_headers, event_body: str = "") -> bytes:
    """Monta um text/event-plain."""
    lines = [f"{name}: {value}" for name, value in event_headers]
    if event_body:
        lines.append(f"Content-Length: {len(event_body.encode('utf-8'))}")
    body = "\n".join(lines) + "\n\n" + event_body
    return encode_message([("Content-Type", "text/event-plain")], body)


def encode_command_reply(reply_text: str = "+OK", body: str = "") -> bytes:
    return encode_message(
        [("Content-Type", "command/reply"), ("Reply-Text", reply_text)],
        body,
    )


class FakeFreeSwitch:
    """
    Peer TCP que se comporta como o FreeSWITCH no modo outbound.

    Conecta ao listener e permite enviar pacotes e ler os comandos recebidos.
    """

    def __init__(self, port: int, host: str = "127.0.0.1"):
        self.host = host
        self.port = port
        self.reader: asyncio.StreamReader = None
        self.writer: asyncio.StreamWriter = None

    async def connect(self) -> "FakeFreeSwitch":
        self.reader, self.writer = await asyncio.open_connection(self.host, self.port)
        return self

    async def send(self, data: bytes) -> None:
        self.writer.write(data)
        await self.writer.drain()

    async def read_command(self, timeout: float = 5.0) -> str:
        """Lê um comando terminado por linha em branco."""
        raw = await asyncio.wait_for(self.reader.readuntil(b"\n\n"), timeout)
        return raw.decode("utf-8").strip()

    async def send_channel_data(self, headers=CHANNEL_DATA_HEADERS) -> None:
        """Responde ao 'connect' com os dados do canal no body."""
        body = "\n".join(f"{name}: {value}" for name, value in headers) + "\n"
        await self.send(encode_command_reply("+OK", body))

    async def answer_connect(self, headers=CHANNEL_DATA_HEADERS) -> str:
        command = await self.read_command()
        await self.send_channel_data(headers)
        return command

    async def close(self) -> None:
        if self.writer is None:
            return
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError:
            pass


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> None:
    """Aguarda predicate() ficar verdadeiro (equivalente ao ThreadUtils.WaitUntil)."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(interval)


@pytest_asyncio.fixture
async def listener():
    """OutboundListener em porta efêmera."""
    from esl_outbound.listener import OutboundListener

    listener = OutboundListener(port=0, host="127.0.0.1")
    await listener.start()
    yield listener
    await listener.stop()


@pytest_asyncio.fixture
async def fake_switch_factory(listener):
    """Cria peers FakeFreeSwitch conectados ao listener."""
    peers = []

    async def factory() -> FakeFreeSwitch:
        peer = await FakeFreeSwitch(listener.port).connect()
        peers.append(peer)
        return peer

    yield factory

    for peer in peers:
        await peer.close()


@pytest_asyncio.fixture
async def connection_pair():
    """
    (Connection, peer) sobre loopback TCP, sem listener.

    Retorna factory para criar Connection ou OutboundSocket.
    """
    from esl_outbound.connection import Connection

    accepted = asyncio.Queue()

    async def on_client(reader, writer):
        await accepted.put((reader, writer))

    server = await asyncio.start_server(on_client, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    created = []

    async def factory(connection_cls=Connection, **kwargs):
        peer = await FakeFreeSwitch(port).connect()
        reader, writer = await asyncio.wait_for(accepted.get(), 5.0)
        connection = connection_cls(reader, writer, **kwargs)
        created.append((connection, peer))
        return connection, peer

    yield factory

    for connection, peer in created:
        connection.close()
        await peer.close()
    server.close()
