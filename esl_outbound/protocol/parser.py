"""
Framer/parser do stream ESL.

Formato:
    Header: Value\\n
    Header2: Value2\\n
    \\n
    [Body com Content-Length bytes, se o header existir]

O parser não faz I/O: recebe bytes via feed() e devolve as mensagens
completas, mantendo no buffer o que ainda não chegou inteiro.
"""

import re
from typing import Dict, Iterator, List, Optional, Tuple
from urllib.parse import unquote

from ..errors import FramingError
from .message import BasicMessage, build_message

# Fim do bloco de headers: linha em branco (LF ou CRLF)
HEADER_TERMINATOR = re.compile(rb"\r?\n\r?\n")

_LINE_BREAKS = b"\r\n"


def parse_header_block(text: str, decode: bool = False) -> Dict[str, str]:
    """
    Parseia linhas 'Nome: valor'.

    Args:
        text: Bloco de headers (sem a linha em branco final)
        decode: URL-decode dos valores (usado nos headers de evento)

    Raises:
        FramingError: linha sem ':' ou com nome vazio
    """
    headers: Dict[str, str] = {}
    for line in text.split("\n"):
        line = line.rstrip("\r")
        if not line.strip():
            continue
        name, sep, value = line.partition(":")
        name = name.strip()
        if not sep or not name:
            raise FramingError(f"Malformed header line: {line!r}")
        # Só o espaço após ":" é separador; o resto do valor é literal
        if value.startswith(" "):
            value = value[1:]
        headers[name] = unquote(value) if decode else value
    return headers


def _parse_content_length(headers: Dict[str, str]) -> Optional[int]:
    raw = headers.get("Content-Length")
    if raw is None:
        return None
    try:
        length = int(raw)
    except ValueError:
        raise FramingError(f"Invalid Content-Length: {raw!r}") from None
    if length < 0:
        raise FramingError(f"Negative Content-Length: {raw!r}")
    return length


def split_event_body(body: str) -> Tuple[Dict[str, str], str]:
    """
    Separa o body de um text/event-plain em (event_headers, event_body).

    O event_body só existe quando os headers do evento trazem Content-Length.
    """
    match = HEADER_TERMINATOR.search(body.encode("utf-8"))
    if match is None:
        return parse_header_block(body, decode=True), ""

    raw = body.encode("utf-8")
    event_headers = parse_header_block(raw[:match.start()].decode("utf-8"), decode=True)
    length = _parse_content_length(event_headers)
    rest = raw[match.end():]
    if length is None:
        # Sem Content-Length, o que vier depois ainda é bloco de headers
        if rest.strip():
            event_headers.update(parse_header_block(rest.decode("utf-8"), decode=True))
        return event_headers, ""
    if len(rest) < length:
        raise FramingError(
            f"Event body truncated: expected {length} bytes, got {len(rest)}"
        )
    return event_headers, rest[:length].decode("utf-8", "replace")


class MessageParser:
    """
    Transforma bytes brutos do socket em mensagens ESL.

    Uso:
        parser = MessageParser()
        for message in parser.feed(data):
            ...
    """

    def __init__(self):
        self._buffer = bytearray()
        # Headers já parseados aguardando o body
        self._pending_headers: Optional[Dict[str, str]] = None
        self._pending_length = 0

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    @property
    def has_partial(self) -> bool:
        """True se há uma mensagem incompleta no buffer."""
        if self._pending_headers is not None:
            return True
        return bool(self._buffer.strip(_LINE_BREAKS))

    def reset(self) -> None:
        self._buffer.clear()
        self._pending_headers = None
        self._pending_length = 0

    def append(self, data: bytes) -> None:
        if data:
            self._buffer.extend(data)

    def drain(self) -> Iterator[BasicMessage]:
        """
        Gera as mensagens completas do buffer, uma a uma.

        Mensagens anteriores a um erro de framing já foram entregues
        quando o FramingError é levantado.
        """
        while True:
            message = self._next_message()
            if message is None:
                return
            yield message

    def feed(self, data: bytes) -> List[BasicMessage]:
        """
        Adiciona bytes ao buffer e retorna as mensagens completas.

        Raises:
            FramingError: headers malformados ou Content-Length inválido
        """
        self.append(data)
        return list(self.drain())

    def _next_message(self) -> Optional[BasicMessage]:
        if self._pending_headers is None:
            # Linhas em branco entre mensagens não contam
            skip = len(self._buffer) - len(self._buffer.lstrip(_LINE_BREAKS))
            if skip:
                del self._buffer[:skip]

            match = HEADER_TERMINATOR.search(self._buffer)
            if match is None:
                return None

            text = self._buffer[:match.start()].decode("utf-8", "replace")
            del self._buffer[:match.end()]

            headers = parse_header_block(text)
            self._pending_headers = headers
            self._pending_length = _parse_content_length(headers) or 0

        if len(self._buffer) < self._pending_length:
            return None

        body = bytes(self._buffer[:self._pending_length]).decode("utf-8", "replace")
        del self._buffer[:self._pending_length]

        headers = self._pending_headers
        self._pending_headers = None
        self._pending_length = 0

        return build_message(headers, body)
