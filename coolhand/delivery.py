"""
Cliente para a API do collector Coolhand
Monta os envelopes, envia o POST e nunca propaga falhas para a aplicação
"""
import json
import threading
from dataclasses import dataclass
from typing import Dict, Any, Optional, Union
import httpx
import structlog
from pydantic import BaseModel, ConfigDict

from . import __version__, codec
from .config import ConfigManager, config_manager as default_config_manager
from .context import CorrelationStore, default_store
from .errors import DeliveryError
from .metrics import DELIVERY_FAILURES, PerformanceTimer
from .records import CapturedCall
from .sanitizer import DataSanitizer, PAYLOAD_BINARY_FIELDS, default_sanitizer

logger = structlog.get_logger(__name__)

SDK_NAME = "coolhand-python"
COLLECTION_METHODS = ("manual", "auto-monitor")

REQUEST_LOGS_ENDPOINT = "v2/llm_request_logs"
FEEDBACKS_ENDPOINT = "v2/llm_request_log_feedbacks"
LLM_RESPONSES_ENDPOINT = "v2/llm_responses"


def collector_tag(collection_method: Optional[str] = None) -> str:
    """Identificação do SDK: coolhand-python-X.Y.Z[-método]"""
    base = f"{SDK_NAME}-{__version__}"
    if collection_method in COLLECTION_METHODS:
        return f"{base}-{collection_method}"
    return base


@dataclass
class DeliveryEnvelope:
    """Dados de um registro mais a tag do collector"""
    record_kind: str
    body: Dict[str, Any]
    collector: str

    def to_payload(self) -> Dict[str, Any]:
        return {self.record_kind: {**self.body, 'collector': self.collector}}


class Feedback(BaseModel):
    """Feedback de qualidade sobre uma resposta de LLM (todos os campos opcionais)"""

    model_config = ConfigDict(extra='allow')

    llm_request_log_id: Optional[Union[int, str]] = None
    llm_provider_unique_id: Optional[str] = None
    original_output: Optional[str] = None
    revised_output: Optional[str] = None
    client_unique_id: Optional[str] = None
    creator_unique_id: Optional[str] = None
    explanation: Optional[str] = None
    like: Optional[bool] = None


class CollectorClient:
    """Cliente HTTP do collector"""

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        http_client: Optional[httpx.Client] = None,
        sanitizer: Optional[DataSanitizer] = None,
        store: Optional[CorrelationStore] = None
    ):
        self.config = config or default_config_manager
        self.sanitizer = sanitizer or default_sanitizer
        self.store = store or default_store
        self._client = http_client
        self._client_lock = threading.Lock()

        self.stats = {
            'records_sent': 0,
            'feedbacks_sent': 0,
            'responses_sent': 0,
            'requests_failed': 0,
            'last_error': None
        }

    @property
    def client(self) -> httpx.Client:
        with self._client_lock:
            if self._client is None:
                timeout = self.config.settings.collector_timeout
                if timeout is None:
                    self._client = httpx.Client()
                else:
                    self._client = httpx.Client(timeout=httpx.Timeout(timeout))
            return self._client

    def close(self):
        """Fecha o cliente HTTP"""
        with self._client_lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    def send_request_log(
        self,
        call: Union[CapturedCall, Dict[str, Any]],
        collection_method: Optional[str] = "auto-monitor"
    ) -> Optional[str]:
        """Envia um registro de request/response completo"""
        raw_request = call.to_dict() if isinstance(call, CapturedCall) else dict(call)
        self._log_request_summary(raw_request)

        envelope = DeliveryEnvelope(
            record_kind='llm_request_log',
            body={'raw_request': raw_request},
            collector=collector_tag(collection_method)
        )
        result = self.send(envelope, REQUEST_LOGS_ENDPOINT)
        if result is not None:
            self.stats['records_sent'] += 1
        return result

    def create_feedback(
        self,
        feedback: Optional[Union[Feedback, Dict[str, Any]]] = None,
        collection_method: Optional[str] = "manual",
        **fields: Any
    ) -> Optional[str]:
        """Envia feedback sobre uma resposta registrada"""
        if feedback is None:
            feedback = Feedback(**fields)
        elif not isinstance(feedback, Feedback):
            feedback = Feedback(**{**dict(feedback), **fields})

        data = feedback.model_dump(exclude_none=True)

        if data.get('llm_request_log_id'):
            logger.info("Criando feedback", llm_request_log_id=data['llm_request_log_id'], like=data.get('like'))
        elif data.get('llm_provider_unique_id'):
            logger.info("Criando feedback", llm_provider_unique_id=data['llm_provider_unique_id'], like=data.get('like'))
        else:
            logger.info("Criando feedback", like=data.get('like'))

        envelope = DeliveryEnvelope(
            record_kind='llm_request_log_feedback',
            body=data,
            collector=collector_tag(collection_method)
        )
        result = self.send(envelope, FEEDBACKS_ENDPOINT)
        if result is not None:
            self.stats['feedbacks_sent'] += 1
        return result

    def send_llm_response(self, raw_response: Dict[str, Any]) -> Optional[str]:
        """Envia a resposta final de um streaming concluído fora da chamada original"""
        envelope = DeliveryEnvelope(
            record_kind='llm_response',
            body={'raw_response': raw_response},
            collector=collector_tag()
        )
        result = self.send(envelope, LLM_RESPONSES_ENDPOINT)
        if result is not None:
            self.stats['responses_sent'] += 1
        return result

    def send(self, envelope: DeliveryEnvelope, endpoint: str) -> Optional[str]:
        """POST de um envelope; devolve o id criado ou None em qualquer falha"""
        try:
            payload = self.sanitizer.strip_binary_fields(envelope.to_payload(), PAYLOAD_BINARY_FIELDS)
        except Exception as e:
            logger.warning("Erro ao sanitizar payload", error=str(e), endpoint=endpoint)
            payload = envelope.to_payload()

        if self.config.settings.debug_mode:
            logger.info(
                "Debug mode - payload montado mas não enviado",
                endpoint=endpoint,
                payload=json.dumps(payload, indent=2, default=str, ensure_ascii=False)
            )
            return None

        url = self.config.collector_url(endpoint)

        try:
            body = codec.encode(payload)

            # O próprio POST de log nunca é interceptado
            with self.store.claim(), PerformanceTimer(endpoint):
                response = self.client.post(url, content=body, headers=self._headers())

            if not response.is_success:
                raise DeliveryError(
                    f"Erro HTTP {response.status_code}: {self._error_excerpt(response.text)}",
                    status_code=response.status_code
                )

            try:
                result = response.json()
            except ValueError as e:
                raise DeliveryError(f"Resposta JSON inválida: {str(e)}", status_code=response.status_code) from e

            record_id = result.get('id') if isinstance(result, dict) else None
            logger.info("Registro enviado ao collector", endpoint=endpoint, id=record_id)
            return record_id

        except DeliveryError as e:
            self._record_failure(endpoint, str(e))
            return None

        except httpx.HTTPError as e:
            self._record_failure(endpoint, f"Erro de conexão: {str(e)}")
            return None

        except Exception as e:
            self._record_failure(endpoint, f"Erro inesperado: {str(e)}")
            return None

    def _headers(self) -> Dict[str, str]:
        return {
            'Content-Type': 'application/json',
            'X-API-Key': self.config.settings.api_key or ''
        }

    def _record_failure(self, endpoint: str, error_msg: str):
        self.stats['requests_failed'] += 1
        self.stats['last_error'] = error_msg
        DELIVERY_FAILURES.labels(endpoint=endpoint).inc()
        logger.error("Erro ao enviar para o collector", endpoint=endpoint, error=error_msg)

    def _error_excerpt(self, body: Optional[str]) -> str:
        if not body:
            return ""
        # Páginas de erro HTML são truncadas
        if "<!DOCTYPE html>" in body:
            return f"{body[:200]}... [HTML error page truncated]"
        return body

    def _log_request_summary(self, raw_request: Dict[str, Any]):
        request_body = raw_request.get('request_body')
        model = request_body.get('model') if isinstance(request_body, dict) else None
        messages = request_body.get('messages') if isinstance(request_body, dict) else None

        logger.debug(
            "Registrando chamada de LLM",
            call_id=raw_request.get('id'),
            method=raw_request.get('method'),
            url=raw_request.get('url'),
            status=raw_request.get('status_code'),
            duration_ms=raw_request.get('duration_ms'),
            model=model,
            messages=len(messages) if isinstance(messages, list) else None
        )
