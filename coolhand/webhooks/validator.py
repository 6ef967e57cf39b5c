"""
Validação de assinatura de webhooks (esquema Standard Webhooks / OpenAI)
"""
import base64
import binascii
import hashlib
import hmac
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union
import structlog

from ..config import ConfigManager, config_manager as default_config_manager

logger = structlog.get_logger(__name__)

SECRET_PREFIX = "whsec_"
SIGNATURE_VERSION = "v1,"

SIGNATURE_HEADERS = ("webhook-signature", "openai-signature")
TIMESTAMP_HEADERS = ("webhook-timestamp", "openai-timestamp")
ID_HEADERS = ("webhook-id", "openai-id")


@dataclass
class WebhookValidationResult:
    """Resultado da validação: válido ou lista de erros"""
    valid: bool
    errors: List[str] = field(default_factory=list)
    payload: Optional[bytes] = None

    @property
    def error_message(self) -> str:
        return ", ".join(self.errors)

    def __bool__(self) -> bool:
        return self.valid


def decode_secret(secret: Union[str, bytes]) -> bytes:
    """Segredo whsec_<base64> é decodificado; os demais são usados como bytes brutos"""
    if isinstance(secret, bytes):
        return secret
    if secret.startswith(SECRET_PREFIX):
        return base64.b64decode(secret[len(SECRET_PREFIX):], validate=True)
    return secret.encode('utf-8')


def compute_signature(secret: Union[str, bytes], webhook_id: str, timestamp: str, payload: Union[str, bytes]) -> str:
    """base64(HMAC-SHA256(segredo, "<id>.<timestamp>.<body>"))"""
    if isinstance(payload, str):
        payload = payload.encode('utf-8')
    signed_payload = f"{webhook_id}.{timestamp}.".encode('utf-8') + payload
    digest = hmac.new(decode_secret(secret), signed_payload, hashlib.sha256).digest()
    return base64.b64encode(digest).decode('ascii')


class WebhookValidator:
    """Valida webhooks recebidos contra o segredo compartilhado

    Em production/staging qualquer ausência (payload, segredo, headers)
    rejeita o webhook. Nos demais ambientes a verificação é pulada com um
    aviso, o que permite testar localmente com webhooks não assinados.
    """

    def __init__(self, secret: Optional[Union[str, bytes]] = None, config: Optional[ConfigManager] = None):
        self.config = config or default_config_manager
        self.secret = secret if secret is not None else self.config.settings.webhook_secret

    def validate(self, body: Union[bytes, str, None], headers: Any) -> WebhookValidationResult:
        if isinstance(body, str):
            body = body.encode('utf-8')

        if not body:
            return self._lenient(body, "Empty webhook payload")

        if not self.secret:
            return self._lenient(body, "Webhook secret not configured")

        signature = self._header(headers, SIGNATURE_HEADERS)
        timestamp = self._header(headers, TIMESTAMP_HEADERS)
        webhook_id = self._header(headers, ID_HEADERS) or ""

        if not signature or not timestamp:
            return self._lenient(body, "Missing webhook signature or timestamp headers")

        try:
            expected = compute_signature(self.secret, webhook_id, timestamp, body)
        except (binascii.Error, ValueError) as e:
            return self._reject(body, f"Invalid webhook secret: {str(e)}")

        if signature.startswith(SIGNATURE_VERSION) and hmac.compare_digest(
            signature[len(SIGNATURE_VERSION):].encode('utf-8'),
            expected.encode('utf-8')
        ):
            return WebhookValidationResult(valid=True, payload=body)

        return self._reject(body, "Webhook signature verification failed")

    def _lenient(self, body: Optional[bytes], reason: str) -> WebhookValidationResult:
        """Falha fechada em ambientes estritos, aberta com aviso nos demais"""
        environment = self.config.settings.environment
        if self.config.is_strict_environment():
            return self._reject(body, f"{reason} - rejecting webhook in {environment}")

        logger.warning("Verificação de webhook ignorada", reason=reason, environment=environment)
        return WebhookValidationResult(valid=True, payload=body)

    def _reject(self, body: Optional[bytes], message: str) -> WebhookValidationResult:
        logger.error("Webhook rejeitado", error=message)
        return WebhookValidationResult(valid=False, errors=[message], payload=body)

    def _header(self, headers: Any, names) -> Optional[str]:
        if not headers:
            return None
        lowered = {str(k).lower(): v for k, v in headers.items()}
        for name in names:
            value = lowered.get(name)
            if value:
                return str(value)
        return None
