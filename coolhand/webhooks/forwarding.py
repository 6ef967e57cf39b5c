"""
Encaminhamento manual de webhooks e de respostas de streaming ao collector
"""
import secrets
import uuid
from typing import Dict, Any, Optional
import structlog

from ..config import ConfigManager, config_manager as default_config_manager
from ..delivery import CollectorClient
from ..dispatch import Dispatcher
from ..records import ResponseExtractor, utcnow
from ..sanitizer import DataSanitizer, default_sanitizer

logger = structlog.get_logger(__name__)

# Opções repassadas ao registro quando informadas
PASSTHROUGH_OPTIONS = ('metadata', 'conversation_id', 'agent_id')


class WebhookForwarder:
    """Converte um webhook recebido pela aplicação em registro do collector"""

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        client: Optional[CollectorClient] = None,
        dispatcher: Optional[Dispatcher] = None,
        sanitizer: Optional[DataSanitizer] = None
    ):
        self.config = config or default_config_manager
        self.client = client or CollectorClient(config=self.config)
        self.dispatcher = dispatcher or Dispatcher()
        self.sanitizer = sanitizer or default_sanitizer

    def forward_webhook(
        self,
        webhook_body: Any,
        source: Optional[str],
        event_type: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None,
        **options: Any
    ) -> bool:
        if not webhook_body:
            return self._invalid("webhook_body is required and cannot be empty")

        if source is None or not str(source).strip():
            return self._invalid("source is required and cannot be empty")

        webhook_data = {
            'id': options.get('id') or str(uuid.uuid4()),
            'timestamp': options.get('timestamp') or utcnow().strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            'method': options.get('method') or "POST",
            'url': options.get('url') or self.build_webhook_url(source, event_type),
            'headers': self.sanitizer.sanitize_webhook_headers(headers),
            'request_body': self.sanitizer.strip_binary_fields(
                webhook_body, self.sanitizer.binary_fields_for(source)
            ),
            'response_body': options.get('response_body'),
            'response_headers': options.get('response_headers'),
            'status_code': options.get('status_code') or 200,
            'source': f"{source}_webhook"
        }
        for option in PASSTHROUGH_OPTIONS:
            if option in options:
                webhook_data[option] = options[option]

        logger.info("Encaminhando webhook", source=source, event_type=event_type, id=webhook_data['id'])
        self.dispatcher.submit(self.client.send_request_log, webhook_data, "auto-monitor")
        return True

    @staticmethod
    def build_webhook_url(source: str, event_type: Optional[str] = None) -> str:
        base = f"webhook://{source}"
        return f"{base}/{event_type}" if event_type else base

    def _invalid(self, message: str) -> bool:
        if self.config.settings.silent:
            logger.warning("Webhook não encaminhado", error=message)
            return False
        raise ValueError(message)


class StreamingResponseForwarder:
    """Envia a resposta final de um streaming consumido pela aplicação

    Útil quando o SDK do provedor só expõe a mensagem completa depois que
    a aplicação percorreu o stream.
    """

    def __init__(
        self,
        client: Optional[CollectorClient] = None,
        dispatcher: Optional[Dispatcher] = None,
        extractor: Optional[ResponseExtractor] = None
    ):
        self.client = client or CollectorClient()
        self.dispatcher = dispatcher or Dispatcher()
        self.extractor = extractor or ResponseExtractor()

    def forward_response(
        self,
        request_data: Any,
        response: Any,
        correlation_id: Optional[str] = None,
        response_headers: Optional[Dict[str, Any]] = None
    ) -> str:
        correlation_id = correlation_id or self.extract_correlation_id(response)

        raw_response = {
            'response_body': self.extractor.extract(response),
            'response_headers': response_headers or {}
        }

        logger.debug("Encaminhando resposta de streaming", correlation_id=correlation_id)
        self.dispatcher.submit(self.client.send_llm_response, raw_response)
        return correlation_id

    @staticmethod
    def extract_correlation_id(response: Any) -> str:
        response_id = None
        if isinstance(response, dict):
            response_id = response.get('id')
        else:
            response_id = getattr(response, 'id', None)

        if response_id:
            return str(response_id)
        return f"unknown_{secrets.token_hex(4)}"
