#!/usr/bin/env python3
"""
Testes unitários para o endpoint de webhooks.
"""

import json

from fastapi import FastAPI
from fastapi.testclient import TestClient

from coolhand.webhooks import WebhookValidator, compute_signature, create_webhook_router
from helpers import make_config

SECRET = "plain-test-secret"


class FakeProcessor:
    def __init__(self):
        self.events = []

    def process(self, event_data):
        self.events.append(event_data)
        return 0


def signed(payload):
    body = json.dumps(payload).encode("utf-8")
    signature = compute_signature(SECRET, "msg_1", "1700000000", body)
    headers = {
        "webhook-id": "msg_1",
        "webhook-timestamp": "1700000000",
        "webhook-signature": f"v1,{signature}",
        "content-type": "application/json",
    }
    return body, headers


class TestWebhookRouter:
    """Testes para o router criado por create_webhook_router."""

    def setup_method(self):
        """Configuração para cada teste."""
        self.processor = FakeProcessor()
        self.factory_calls = 0

        def factory():
            self.factory_calls += 1
            return self.processor

        validator = WebhookValidator(SECRET, config=make_config(environment="production"))
        app = FastAPI()
        app.include_router(create_webhook_router(validator=validator, processor_factory=factory))
        self.client = TestClient(app)

    def test_batch_event_accepted(self):
        """Testa evento batch.completed processado em background."""
        body, headers = signed({"type": "batch.completed", "data": {"id": "batch_1"}})

        response = self.client.post("/webhooks/openai", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"status": "accepted", "event_type": "batch.completed"}
        assert self.processor.events == [{"id": "batch_1"}]

    def test_processor_built_once(self):
        """Testa construção preguiçosa e única do processador."""
        for _ in range(2):
            body, headers = signed({"type": "batch.failed", "data": {"id": "batch_2"}})
            self.client.post("/webhooks/openai", content=body, headers=headers)

        assert self.factory_calls == 1
        assert len(self.processor.events) == 2

    def test_other_events_ignored(self):
        """Testa eventos que não são de lote."""
        body, headers = signed({"type": "response.completed", "data": {}})

        response = self.client.post("/webhooks/openai", content=body, headers=headers)

        assert response.json() == {"status": "ignored", "event_type": "response.completed"}
        assert self.factory_calls == 0

    def test_invalid_signature_unauthorized(self):
        """Testa assinatura inválida."""
        body, headers = signed({"type": "batch.completed", "data": {"id": "batch_1"}})
        headers["webhook-signature"] = "v1,AAAA"

        response = self.client.post("/webhooks/openai", content=body, headers=headers)

        assert response.status_code == 401
        assert self.processor.events == []

    def test_invalid_json_bad_request(self):
        """Testa payload que não é JSON."""
        body = b"not json"
        signature = compute_signature(SECRET, "msg_1", "1700000000", body)
        headers = {
            "webhook-id": "msg_1",
            "webhook-timestamp": "1700000000",
            "webhook-signature": f"v1,{signature}",
        }

        response = self.client.post("/webhooks/openai", content=body, headers=headers)

        assert response.status_code == 400
