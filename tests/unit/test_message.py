"""
Tests for the ESL message model.
"""

import dataclasses

import pytest

from esl_outbound.errors import FramingError
from esl_outbound.protocol import (
    ApiResponse,
    BasicMessage,
    CallState,
    ChannelState,
    CommandReply,
    ContentType,
    DisconnectNotice,
    EventMessage,
    build_message,
)


class TestChannelState:
    """Classificação pelo header canônico Channel-State."""

    @pytest.mark.parametrize("raw,expected", [
        ("CS_NEW", ChannelState.NEW),
        ("CS_EXECUTE", ChannelState.EXECUTE),
        ("CS_HANGUP", ChannelState.HANGUP),
        ("cs_routing", ChannelState.ROUTING),
        ("EXCHANGE_MEDIA", ChannelState.EXCHANGE_MEDIA),
        ("CS_SOMETHING_NEW", ChannelState.UNKNOWN),
        (None, ChannelState.UNKNOWN),
        ("", ChannelState.UNKNOWN),
    ])
    def test_parse(self, raw, expected):
        assert ChannelState.parse(raw) is expected

    def test_call_state_is_independent(self):
        event = EventMessage(
            headers={"Content-Type": ContentType.EVENT_PLAIN},
            event_headers={"Channel-State": "CS_EXECUTE", "Channel-Call-State": "RINGING"},
        )
        assert event.channel_state is ChannelState.EXECUTE
        assert event.call_state is CallState.RINGING

    def test_missing_channel_state_ignores_call_state(self):
        event = EventMessage(
            headers={"Content-Type": ContentType.EVENT_PLAIN},
            event_headers={"Channel-Call-State": "HANGUP"},
        )
        assert event.channel_state is ChannelState.UNKNOWN
        assert event.call_state is CallState.HANGUP


class TestReplies:
    """Testes para CommandReply e ApiResponse."""

    def test_command_reply_ok(self):
        reply = CommandReply(headers={"Content-Type": "command/reply", "Reply-Text": "+OK accepted"})
        assert reply.success
        assert reply.reply_text == "+OK accepted"
        assert reply.error_text is None

    def test_command_reply_error(self):
        reply = CommandReply(headers={"Content-Type": "command/reply", "Reply-Text": "-ERR invalid"})
        assert not reply.success
        assert reply.error_text == "invalid"

    def test_api_response(self):
        ok = ApiResponse(headers={"Content-Type": "api/response"}, body="+OK")
        err = ApiResponse(headers={"Content-Type": "api/response"}, body="-ERR no such channel\n")

        assert ok.success
        assert not err.success
        assert err.error_text == "no such channel"


class TestBuildMessage:
    """Despacho por Content-Type."""

    @pytest.mark.parametrize("content_type,expected", [
        ("command/reply", CommandReply),
        ("api/response", ApiResponse),
        ("text/disconnect-notice", DisconnectNotice),
        ("auth/request", BasicMessage),
        ("log/data", BasicMessage),
    ])
    def test_dispatch(self, content_type, expected):
        assert type(build_message({"Content-Type": content_type})) is expected

    def test_event(self):
        message = build_message(
            {"Content-Type": "text/event-plain", "Content-Length": "40"},
            "Event-Name: DTMF\nDTMF-Digit: 5\n\n",
        )
        assert isinstance(message, EventMessage)
        assert message.event_name == "DTMF"
        assert message.header("DTMF-Digit") == "5"
        assert message.header("Content-Type") == "text/event-plain"

    def test_content_length_property(self):
        message = build_message({"Content-Type": "api/response", "Content-Length": "3"}, "+OK")
        assert message.content_length == 3
        assert build_message({"Content-Type": "auth/request"}).content_length is None


class TestImmutability:
    """Mensagens não mudam depois de criadas."""

    def test_fields_are_frozen(self):
        message = BasicMessage(headers={"Content-Type": "auth/request"})
        with pytest.raises(dataclasses.FrozenInstanceError):
            message.body = "changed"

    def test_headers_are_read_only(self):
        source = {"Content-Type": "auth/request"}
        message = BasicMessage(headers=source)

        with pytest.raises(TypeError):
            message.headers["Content-Type"] = "other"

        source["Content-Type"] = "changed"
        assert message.content_type == "auth/request"

    def test_event_headers_are_read_only(self):
        event = EventMessage(
            headers={"Content-Type": ContentType.EVENT_PLAIN},
            event_headers={"Event-Name": "HEARTBEAT"},
        )
        with pytest.raises(TypeError):
            event.event_headers["Event-Name"] = "OTHER"

    def test_event_requires_headers(self):
        with pytest.raises(FramingError):
            EventMessage(headers={"Content-Type": ContentType.EVENT_PLAIN}, event_headers={})


class TestChannelData:
    """EventMessage.from_command_reply (resposta ao 'connect')."""

    def test_body_form(self):
        reply = CommandReply(
            headers={"Content-Type": "command/reply", "Reply-Text": "+OK", "Content-Length": "60"},
            body="Unique-ID: abc\nChannel-State: CS_EXECUTE\nChannel-Call-State: RINGING\n",
        )
        channel = EventMessage.from_command_reply(reply)

        assert channel.unique_id == "abc"
        assert channel.channel_state is ChannelState.EXECUTE
        assert channel.event_headers["Channel-Call-State"] == "RINGING"
        assert channel.headers["Reply-Text"] == "+OK"

    def test_headers_form(self):
        """FreeSWITCH real manda as variáveis do canal nos próprios headers."""
        reply = CommandReply(headers={
            "Content-Type": "command/reply",
            "Reply-Text": "+OK",
            "Unique-ID": "def",
            "Channel-State": "CS_EXECUTE",
            "Caller-Caller-ID-Number": "1001",
        })
        channel = EventMessage.from_command_reply(reply)

        assert channel.unique_id == "def"
        assert channel.caller_id_number == "1001"
        assert channel.channel_state is ChannelState.EXECUTE

    def test_both_forms_decode_values(self):
        encoded = "sofia/internal/1001%40example.com"
        headers_form = CommandReply(headers={
            "Content-Type": "command/reply",
            "Reply-Text": "+OK",
            "Channel-Name": encoded,
        })
        body_form = CommandReply(
            headers={"Content-Type": "command/reply", "Reply-Text": "+OK"},
            body=f"Channel-Name: {encoded}\n",
        )

        from_headers = EventMessage.from_command_reply(headers_form)
        from_body = EventMessage.from_command_reply(body_form)

        assert from_headers.event_headers["Channel-Name"] == "sofia/internal/1001@example.com"
        assert from_headers.event_headers["Channel-Name"] == from_body.event_headers["Channel-Name"]
        # O envelope continua como veio do socket
        assert from_headers.headers["Channel-Name"] == encoded

    def test_invalid_body_raises(self):
        reply = CommandReply(
            headers={"Content-Type": "command/reply", "Reply-Text": "+OK"},
            body="not a header block",
        )
        with pytest.raises(FramingError):
            EventMessage.from_command_reply(reply)
