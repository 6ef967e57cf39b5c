#!/usr/bin/env python3
"""
Testes unitários para o encaminhamento manual ao collector.
"""

from types import SimpleNamespace

import pytest

from coolhand.dispatch import InlineDispatcher
from coolhand.webhooks import StreamingResponseForwarder, WebhookForwarder
from helpers import RecordingCollector, make_config


class TestWebhookForwarder:
    """Testes para a classe WebhookForwarder."""

    def setup_method(self):
        """Configuração para cada teste."""
        self.collector = RecordingCollector()
        self.config = make_config()
        self.forwarder = WebhookForwarder(config=self.config, client=self.collector, dispatcher=InlineDispatcher())

    def test_forward_builds_record(self):
        """Testa registro montado a partir do webhook."""
        result = self.forwarder.forward_webhook(
            {"event": "call.ended", "transcript": "olá"},
            "elevenlabs",
            event_type="post_call",
            headers={"X-Webhook-Secret": "abc", "Content-Type": "application/json"},
            conversation_id="conv-1"
        )

        assert result is True
        data = self.collector.records[0]
        assert self.collector.collection_methods == ["auto-monitor"]
        assert data["url"] == "webhook://elevenlabs/post_call"
        assert data["source"] == "elevenlabs_webhook"
        assert data["method"] == "POST"
        assert data["status_code"] == 200
        assert data["headers"]["x-webhook-secret"] == "[REDACTED]"
        assert data["headers"]["content-type"] == "application/json"
        assert data["conversation_id"] == "conv-1"
        assert "metadata" not in data

    def test_binary_fields_stripped_for_source(self):
        """Testa remoção de áudio do body."""
        self.forwarder.forward_webhook({"transcript": "ok", "full_audio": "AAAA"}, "elevenlabs")

        assert self.collector.records[0]["request_body"] == {"transcript": "ok"}

    def test_url_without_event_type(self):
        """Testa URL sem tipo de evento."""
        self.forwarder.forward_webhook({"a": 1}, "stripe")

        assert self.collector.records[0]["url"] == "webhook://stripe"

    @pytest.mark.parametrize("body,source", [(None, "stripe"), ({}, "stripe"), ({"a": 1}, ""), ({"a": 1}, None)])
    def test_missing_arguments_raise(self, body, source):
        """Testa argumentos obrigatórios."""
        with pytest.raises(ValueError):
            self.forwarder.forward_webhook(body, source)

        assert self.collector.records == []

    def test_missing_arguments_in_silent_mode(self):
        """Testa modo silencioso."""
        self.config.update(silent=True)

        assert self.forwarder.forward_webhook(None, "stripe") is False
        assert self.collector.records == []


class TestStreamingResponseForwarder:
    """Testes para a classe StreamingResponseForwarder."""

    def setup_method(self):
        """Configuração para cada teste."""
        self.collector = RecordingCollector()
        self.forwarder = StreamingResponseForwarder(client=self.collector, dispatcher=InlineDispatcher())

    def test_correlation_id_from_response(self):
        """Testa id extraído do objeto de resposta."""
        response = SimpleNamespace(id="msg_9", content=[{"type": "text", "text": "oi"}], model="claude-test")

        correlation_id = self.forwarder.forward_response({"model": "claude-test"}, response, response_headers={"x": "1"})

        assert correlation_id == "msg_9"
        raw = self.collector.responses[0]
        assert raw["response_headers"] == {"x": "1"}
        assert raw["response_body"]["content"] == [{"type": "text", "text": "oi"}]

    def test_explicit_correlation_id(self):
        """Testa id informado pelo chamador."""
        assert self.forwarder.forward_response({}, {"id": "ignored"}, correlation_id="corr-1") == "corr-1"

    def test_unknown_correlation_id(self):
        """Testa resposta sem id."""
        correlation_id = self.forwarder.forward_response({}, {"text": "oi"})

        assert correlation_id.startswith("unknown_")
        assert len(correlation_id) == len("unknown_") + 8
