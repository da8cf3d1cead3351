"""
Métricas Prometheus do servidor ESL.

Registry próprio para não colidir com outras métricas do processo.
"""

import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server

from .settings import get_esl_settings

logger = logging.getLogger(__name__)


class ESLMetrics:
    """Contadores de conexões, mensagens e handshakes."""

    def __init__(self, enabled: bool = True, registry: Optional[CollectorRegistry] = None):
        self.enabled = enabled
        self.registry = registry or CollectorRegistry()

        self.connections_total = Counter(
            'esl_outbound_connections_total', 'Accepted outbound connections',
            registry=self.registry,
        )
        self.active_connections = Gauge(
            'esl_outbound_active_connections', 'Connections currently open',
            registry=self.registry,
        )
        self.messages_total = Counter(
            'esl_outbound_messages_total', 'Parsed messages', ['content_type'],
            registry=self.registry,
        )
        self.framing_errors = Counter(
            'esl_outbound_framing_errors_total', 'Connections closed by framing errors',
            registry=self.registry,
        )
        self.handshakes_total = Counter(
            'esl_outbound_handshakes_total', 'Connect handshakes', ['outcome'],
            registry=self.registry,
        )

    def connection_opened(self) -> None:
        if not self.enabled:
            return
        self.connections_total.inc()
        self.active_connections.inc()

    def connection_closed(self, framing_error: bool = False) -> None:
        if not self.enabled:
            return
        self.active_connections.dec()
        if framing_error:
            self.framing_errors.inc()

    def message_received(self, content_type: str) -> None:
        if self.enabled:
            self.messages_total.labels(content_type=content_type or "none").inc()

    def handshake(self, outcome: str) -> None:
        if self.enabled:
            self.handshakes_total.labels(outcome=outcome).inc()

    def serve(self, port: int) -> None:
        """Expõe /metrics via HTTP."""
        start_http_server(port, registry=self.registry)
        logger.info(f"Prometheus metrics exposed on port {port}")


_metrics: Optional[ESLMetrics] = None


def get_metrics() -> ESLMetrics:
    global _metrics
    if _metrics is None:
        _metrics = ESLMetrics(enabled=get_esl_settings().ENABLE_PROMETHEUS)
    return _metrics
