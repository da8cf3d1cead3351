"""
Exceções do protocolo Event Socket.
"""


class ESLError(Exception):
    """Erro genérico do ESL."""
    pass


class FramingError(ESLError):
    """Bloco de headers ou body inválido no stream (fatal para a conexão)."""
    pass


class ConnectionClosedError(ESLError):
    """Operação em conexão que não está mais aberta."""
    pass


class HandshakeError(ESLError):
    """Falha no handshake 'connect' do modo outbound."""
    pass


class StreamCompletedError(ESLError):
    """Stream terminou antes de produzir o item aguardado."""
    pass
