"""
Configurações do servidor ESL Outbound.

Carregadas de variáveis de ambiente ou arquivo .env.
"""

from typing import Optional

from pydantic_settings import BaseSettings


class ESLSettings(BaseSettings):
    """
    Configurações do listener e das conexões ESL.
    """

    # Listener (FreeSWITCH conecta aqui via <action application="socket"/>)
    ESL_LISTEN_HOST: str = "0.0.0.0"
    ESL_LISTEN_PORT: int = 8084

    # Tamanho máximo de cada leitura do socket
    ESL_READ_CHUNK_SIZE: int = 4096

    # Usado apenas pelo entrypoint; o core não aplica timeout no handshake
    ESL_HANDSHAKE_TIMEOUT_SECONDS: float = 5.0

    # Intervalo da verificação do socket de escuta (listener para se ele cair)
    ESL_LISTENER_CHECK_INTERVAL_SECONDS: float = 1.0

    # Mantém o socket aberto após o hangup para receber os eventos finais
    ESL_LINGER: bool = True

    DEBUG: bool = False

    # Metrics
    ENABLE_PROMETHEUS: bool = True
    METRICS_PORT: int = 0  # 0 = não expor HTTP

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Singleton
_settings: Optional[ESLSettings] = None


def get_esl_settings() -> ESLSettings:
    global _settings
    if _settings is None:
        _settings = ESLSettings()
    return _settings


def reset_esl_settings() -> None:
    """Descarta o singleton (recarrega do ambiente na próxima chamada)."""
    global _settings
    _settings = None
