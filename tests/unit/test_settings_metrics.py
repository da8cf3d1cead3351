"""
Tests for ESLSettings and ESLMetrics.
"""

import pytest
from prometheus_client import CollectorRegistry

from esl_outbound.metrics import ESLMetrics
from esl_outbound.settings import get_esl_settings, reset_esl_settings


@pytest.fixture
def fresh_settings():
    reset_esl_settings()
    yield
    reset_esl_settings()


class TestSettings:

    def test_defaults(self, fresh_settings, monkeypatch):
        for name in ("ESL_LISTEN_HOST", "ESL_LISTEN_PORT", "ESL_LINGER"):
            monkeypatch.delenv(name, raising=False)

        settings = get_esl_settings()

        assert settings.ESL_LISTEN_PORT == 8084
        assert settings.ESL_READ_CHUNK_SIZE == 4096
        assert settings.ESL_LINGER is True

    def test_environment_override(self, fresh_settings, monkeypatch):
        monkeypatch.setenv("ESL_LISTEN_PORT", "9090")
        monkeypatch.setenv("ESL_LINGER", "false")

        settings = get_esl_settings()

        assert settings.ESL_LISTEN_PORT == 9090
        assert settings.ESL_LINGER is False

    def test_singleton(self, fresh_settings):
        assert get_esl_settings() is get_esl_settings()


class TestMetrics:

    def test_connection_counters(self):
        registry = CollectorRegistry()
        metrics = ESLMetrics(registry=registry)

        metrics.connection_opened()
        metrics.connection_opened()
        metrics.connection_closed(framing_error=True)

        assert registry.get_sample_value("esl_outbound_connections_total") == 2
        assert registry.get_sample_value("esl_outbound_active_connections") == 1
        assert registry.get_sample_value("esl_outbound_framing_errors_total") == 1

    def test_labels(self):
        registry = CollectorRegistry()
        metrics = ESLMetrics(registry=registry)

        metrics.message_received("text/event-plain")
        metrics.message_received(None)
        metrics.handshake("connected")

        assert registry.get_sample_value(
            "esl_outbound_messages_total", {"content_type": "text/event-plain"}
        ) == 1
        assert registry.get_sample_value(
            "esl_outbound_messages_total", {"content_type": "none"}
        ) == 1
        assert registry.get_sample_value(
            "esl_outbound_handshakes_total", {"outcome": "connected"}
        ) == 1

    def test_disabled_records_nothing(self):
        registry = CollectorRegistry()
        metrics = ESLMetrics(enabled=False, registry=registry)

        metrics.connection_opened()
        metrics.handshake("failed")

        assert registry.get_sample_value("esl_outbound_connections_total") == 0
