#!/usr/bin/env python3
"""
Testes unitários para validação de assinatura de webhooks.
"""

import base64

import pytest

from coolhand.webhooks import WebhookValidator, compute_signature
from coolhand.webhooks.validator import decode_secret
from helpers import make_config

SECRET = "whsec_" + base64.b64encode(b"super-secret-key").decode("ascii")
BODY = b'{"type": "batch.completed", "data": {"id": "batch_1"}}'


def signed_headers(body=BODY, secret=SECRET, prefix="webhook"):
    signature = compute_signature(secret, "msg_1", "1700000000", body)
    return {
        f"{prefix}-id": "msg_1",
        f"{prefix}-timestamp": "1700000000",
        f"{prefix}-signature": f"v1,{signature}",
    }


class TestWebhookValidator:
    """Testes para a classe WebhookValidator."""

    def setup_method(self):
        """Configuração para cada teste."""
        self.production = make_config(environment="production")
        self.development = make_config(environment="development")
        self.validator = WebhookValidator(SECRET, config=self.production)

    def test_valid_signature(self):
        """Testa assinatura correta."""
        result = self.validator.validate(BODY, signed_headers())

        assert result.valid is True
        assert result.errors == []
        assert result.payload == BODY

    def test_header_names_case_insensitive(self):
        """Testa headers com capitalização diferente."""
        headers = {k.title(): v for k, v in signed_headers().items()}

        assert self.validator.validate(BODY, headers)

    def test_openai_prefixed_headers(self):
        """Testa headers openai-*."""
        assert self.validator.validate(BODY, signed_headers(prefix="openai")).valid is True

    def test_string_body(self):
        """Testa body em texto."""
        assert self.validator.validate(BODY.decode("utf-8"), signed_headers()).valid is True

    @pytest.mark.parametrize("position", [0, 10, len(BODY) - 1])
    def test_bit_flip_rejected(self, position):
        """Testa que qualquer alteração no body invalida a assinatura."""
        tampered = bytearray(BODY)
        tampered[position] ^= 0x01

        result = self.validator.validate(bytes(tampered), signed_headers())

        assert result.valid is False
        assert "verification failed" in result.error_message

    def test_wrong_secret_rejected(self):
        """Testa assinatura gerada com outro segredo."""
        headers = signed_headers(secret="whsec_" + base64.b64encode(b"other").decode("ascii"))

        assert self.validator.validate(BODY, headers).valid is False

    def test_missing_version_prefix_rejected(self):
        """Testa assinatura sem o prefixo v1,."""
        headers = signed_headers()
        headers["webhook-signature"] = headers["webhook-signature"][3:]

        assert self.validator.validate(BODY, headers).valid is False

    def test_missing_headers_rejected_in_production(self):
        """Testa headers ausentes em ambiente estrito."""
        result = self.validator.validate(BODY, {})

        assert result.valid is False
        assert "rejecting webhook in production" in result.error_message

    def test_missing_headers_allowed_in_development(self):
        """Testa headers ausentes fora de ambiente estrito."""
        validator = WebhookValidator(SECRET, config=self.development)

        assert validator.validate(BODY, {}).valid is True

    def test_missing_secret(self):
        """Testa segredo não configurado."""
        assert WebhookValidator(config=self.production).validate(BODY, signed_headers()).valid is False
        assert WebhookValidator(config=self.development).validate(BODY, signed_headers()).valid is True

    def test_empty_body_rejected_in_production(self):
        """Testa payload vazio."""
        assert self.validator.validate(b"", signed_headers()).valid is False

    def test_secret_from_config(self):
        """Testa segredo lido das configurações."""
        config = make_config(environment="production", webhook_secret=SECRET)

        assert WebhookValidator(config=config).validate(BODY, signed_headers()).valid is True

    def test_malformed_secret_rejected(self):
        """Testa segredo whsec_ com base64 inválido."""
        validator = WebhookValidator("whsec_***", config=self.production)

        result = validator.validate(BODY, signed_headers())

        assert result.valid is False
        assert "Invalid webhook secret" in result.error_message


class TestDecodeSecret:
    """Testes para decodificação do segredo."""

    def test_prefixed_secret_is_base64(self):
        """Testa segredo com prefixo whsec_."""
        assert decode_secret(SECRET) == b"super-secret-key"

    def test_plain_secret_used_raw(self):
        """Testa segredo sem prefixo."""
        assert decode_secret("plain") == b"plain"
        assert decode_secret(b"raw") == b"raw"
