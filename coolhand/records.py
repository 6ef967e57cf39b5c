"""
Montagem dos registros de request/response capturados
Aplica sanitização, decodificação de bodies e cálculo de duração
"""
import dataclasses
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List, Callable
from collections.abc import Mapping
import structlog

from . import codec
from .errors import SanitizationError
from .sanitizer import DataSanitizer, default_sanitizer

logger = structlog.get_logger(__name__)

EVENT_STREAM = "text/event-stream"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_call_id() -> str:
    return str(uuid.uuid4())


def duration_ms(start_time: datetime, end_time: datetime) -> float:
    return round((end_time - start_time).total_seconds() * 1000, 2)


@dataclass
class RequestCapture:
    """Lado da request de uma chamada interceptada (ainda sem resposta)"""
    id: str
    method: str
    url: str
    headers: Dict[str, str]
    body: Any
    start_time: datetime
    is_streaming: bool = False
    end_time: Optional[datetime] = None


@dataclass(frozen=True)
class CapturedCall:
    """Registro canônico de uma chamada, imutável depois de montado"""
    id: str
    method: str
    url: str
    request_headers: Dict[str, str]
    request_body: Any
    response_headers: Dict[str, str]
    response_body: Any
    status_code: Optional[int]
    start_time: datetime
    end_time: datetime
    duration_ms: float
    is_streaming: bool
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Formato raw_request aceito pelo collector"""
        data = {
            'id': self.id,
            'timestamp': self.start_time.isoformat(),
            'method': self.method,
            'url': self.url,
            'headers': self.request_headers,
            'request_body': self.request_body,
            'response_headers': self.response_headers,
            'response_body': self.response_body,
            'status_code': self.status_code,
            'duration_ms': self.duration_ms,
            'completed_at': self.end_time.isoformat(),
            'is_streaming': self.is_streaming,
        }
        data.update(self.extra)
        return data


class ResponseExtractor:
    """Extrai estrutura serializável de objetos de resposta heterogêneos

    As estratégias são tentadas em ordem: mapeamento pronto, conversão
    para dict exposta pelo objeto, adaptadores registrados pelo usuário,
    objetos de streaming, atributos conhecidos de SDKs de LLM. Quando nada
    se aplica o resultado é o texto do objeto com o nome da classe.
    """

    CONVERSION_METHODS = ('to_dict', 'model_dump', 'dict', '_asdict')
    KNOWN_ATTRIBUTES = ('content', 'usage', 'model', 'role', 'id', 'stop_reason')

    def __init__(self, adapters: Optional[List[Callable[[Any], Any]]] = None):
        self.adapters: List[Callable[[Any], Any]] = list(adapters or [])

    def register(self, adapter: Callable[[Any], Any]):
        """Adapter recebe a resposta e devolve um dict, ou None se não reconhecer"""
        self.adapters.append(adapter)

    def extract(self, response: Any) -> Any:
        if response is None or isinstance(response, (str, int, float, bool)):
            return response

        if isinstance(response, Mapping):
            return dict(response)

        if isinstance(response, (list, tuple)):
            return [self.extract(item) for item in response]

        try:
            converted = self._convert(response)
        except SanitizationError as e:
            return self._serialization_fallback(response, e)
        if converted is not None:
            return converted

        for adapter in self.adapters:
            try:
                result = adapter(response)
            except Exception as e:
                logger.debug("Adapter de resposta falhou", adapter=repr(adapter), error=str(e))
                continue
            if result is not None:
                return result

        if self._looks_like_stream(response):
            return {
                'response_type': 'streaming',
                'class': type(response).__name__,
                'note': 'Streaming response - content captured during enumeration'
            }

        return self._from_attributes(response)

    def _convert(self, response: Any) -> Optional[Any]:
        if dataclasses.is_dataclass(response) and not isinstance(response, type):
            try:
                return dataclasses.asdict(response)
            except Exception as e:
                raise SanitizationError(str(e)) from e

        for method_name in self.CONVERSION_METHODS:
            method = getattr(response, method_name, None)
            if not callable(method):
                continue
            try:
                converted = method()
            except Exception as e:
                raise SanitizationError(str(e)) from e
            if isinstance(converted, Mapping):
                return dict(converted)

        return None

    def _looks_like_stream(self, response: Any) -> bool:
        if 'Stream' in type(response).__name__:
            return True
        return hasattr(response, '__iter__') or hasattr(response, '__aiter__')

    def _from_attributes(self, response: Any) -> Dict[str, Any]:
        data: Dict[str, Any] = {}

        for attribute in self.KNOWN_ATTRIBUTES:
            if not hasattr(response, attribute):
                continue
            value = getattr(response, attribute)
            if attribute == 'usage':
                value = self.extract_usage(value)
            elif attribute == 'content' and isinstance(value, (list, tuple)):
                value = [self.extract(block) for block in value]
            data[attribute] = value

        if not data:
            return {'raw_response': str(response), 'class': type(response).__name__}

        data['class'] = type(response).__name__
        return data

    def extract_usage(self, usage: Any) -> Any:
        if usage is None or isinstance(usage, Mapping):
            return dict(usage) if usage is not None else None

        try:
            converted = self._convert(usage)
        except SanitizationError:
            converted = None
        if converted is not None:
            return converted

        usage_data = {}
        for name in ('input_tokens', 'output_tokens'):
            if hasattr(usage, name):
                usage_data[name] = getattr(usage, name)
        usage_data['total_tokens'] = int(usage_data.get('input_tokens') or 0) + int(usage_data.get('output_tokens') or 0)
        return usage_data

    def _serialization_fallback(self, response: Any, error: Exception) -> Dict[str, Any]:
        logger.debug("Resposta não serializável", error=str(error), response_class=type(response).__name__)
        try:
            raw = str(response)
        except Exception:
            raw = repr(response)
        return {
            'serialization_error': str(error),
            'class': type(response).__name__,
            'raw_response': raw
        }


class RecordBuilder:
    """Constrói registros CapturedCall a partir das partes capturadas pelos interceptadores"""

    def __init__(self, sanitizer: Optional[DataSanitizer] = None, extractor: Optional[ResponseExtractor] = None):
        self.sanitizer = sanitizer or default_sanitizer
        self.extractor = extractor or ResponseExtractor()

    def start(
        self,
        method: str,
        url: str,
        headers: Any = None,
        body: Any = None,
        streaming_hint: bool = False,
        call_id: Optional[str] = None,
        decode_body: bool = True
    ) -> RequestCapture:
        """Captura o lado da request no início da chamada"""
        sanitized_headers = self.sanitizer.sanitize_headers(headers)
        request_body = codec.decode(body) if decode_body else body

        return RequestCapture(
            id=call_id or new_call_id(),
            method=str(method).lower(),
            url=str(url),
            headers=sanitized_headers,
            body=request_body,
            start_time=utcnow(),
            is_streaming=self.detect_streaming(request_body, sanitized_headers, streaming_hint)
        )

    def finish(
        self,
        capture: RequestCapture,
        response_headers: Any = None,
        response_body: Any = None,
        status_code: Optional[int] = None,
        end_time: Optional[datetime] = None,
        body_is_streaming: bool = False,
        decode_body: bool = True
    ) -> CapturedCall:
        """Completa o registro com os dados da resposta"""
        end_time = end_time or capture.end_time or utcnow()

        return CapturedCall(
            id=capture.id,
            method=capture.method,
            url=capture.url,
            request_headers=capture.headers,
            request_body=capture.body,
            response_headers=self.sanitizer.sanitize_headers(response_headers),
            response_body=codec.decode(response_body) if decode_body else response_body,
            status_code=int(status_code) if status_code is not None else None,
            start_time=capture.start_time,
            end_time=end_time,
            duration_ms=duration_ms(capture.start_time, end_time),
            is_streaming=capture.is_streaming or body_is_streaming
        )

    def finish_with_error(
        self,
        capture: RequestCapture,
        error: BaseException,
        end_time: Optional[datetime] = None
    ) -> CapturedCall:
        """Registro de erro: a chamada original levantou exceção"""
        return self.finish(
            capture,
            response_headers={},
            response_body={
                'error': {
                    'message': str(error),
                    'class': type(error).__name__
                }
            },
            status_code=None,
            end_time=end_time,
            decode_body=False
        )

    def finish_with_response_object(
        self,
        capture: RequestCapture,
        response: Any,
        response_headers: Any = None,
        status_code: Optional[int] = None,
        end_time: Optional[datetime] = None
    ) -> CapturedCall:
        """Completa o registro a partir de um objeto de resposta de SDK"""
        return self.finish(
            capture,
            response_headers=response_headers,
            response_body=self.extractor.extract(response),
            status_code=status_code,
            end_time=end_time,
            decode_body=False
        )

    def from_batch_item(
        self,
        method: str,
        url: str,
        request_body: Any,
        response_body: Any,
        status_code: Optional[int],
        start_time: Optional[datetime],
        end_time: Optional[datetime],
        call_id: Optional[str] = None
    ) -> CapturedCall:
        """Converte um par request/response de lote em registro"""
        end_time = end_time or utcnow()
        start_time = start_time or end_time

        return CapturedCall(
            id=call_id or new_call_id(),
            method=str(method or 'post').lower(),
            url=str(url),
            request_headers={},
            request_body=request_body,
            response_headers={},
            response_body=response_body,
            status_code=int(status_code) if status_code is not None else None,
            start_time=start_time,
            end_time=end_time,
            duration_ms=duration_ms(start_time, end_time),
            is_streaming=False
        )

    @staticmethod
    def detect_streaming(body: Any = None, headers: Optional[Dict[str, str]] = None, body_shape: bool = False) -> bool:
        """Streaming se o formato do body, o parâmetro stream ou o Accept indicarem"""
        if body_shape:
            return True

        if isinstance(body, Mapping) and body.get('stream') is True:
            return True

        for key, value in (headers or {}).items():
            if key.lower() == 'accept' and EVENT_STREAM in str(value).lower():
                return True

        return False
