"""
Módulo de sanitização de dados sensíveis
Remove credenciais de headers e campos binários de estruturas JSON aninhadas
"""
import re
from collections.abc import Mapping
from typing import Dict, Any, List, Optional, Iterable
import structlog

logger = structlog.get_logger(__name__)

REDACTED = "[REDACTED]"

DEFAULT_SENSITIVE_HEADERS = [
    "authorization",
    "x-api-key",
    "api-key",
    "openai-api-key",
    "anthropic-api-key",
    "x-goog-api-key",
    "xi-api-key",
]

# Campos conhecidos por carregar dados binários, por provedor
BINARY_DATA_FILTERS: Dict[str, List[str]] = {
    'elevenlabs': [
        'full_audio', 'audio', 'audio_data', 'raw_audio',
        'audio_base64', 'voice_sample', 'audio_url'
    ],
    'openai': ['file_content', 'audio_data', 'image_data', 'binary_content'],
    'twilio': ['recording_url', 'media_url'],
}

DEFAULT_BINARY_FIELDS = ['audio_data', 'image_data', 'file_content', 'binary_content']

# Usado no envio ao collector como última barreira
PAYLOAD_BINARY_FIELDS = sorted({
    field
    for source in ('elevenlabs', 'openai')
    for field in BINARY_DATA_FILTERS[source]
})

BEARER_PATTERN = re.compile(r'\ABearer\s+', re.IGNORECASE)
WEBHOOK_SECRET_PATTERN = re.compile(r'key|token|secret|authorization', re.IGNORECASE)


class DataSanitizer:
    """Sanitizador de headers e payloads capturados"""

    def __init__(
        self,
        sensitive_headers: Optional[List[str]] = None,
        binary_filters: Optional[Dict[str, List[str]]] = None,
        default_binary_fields: Optional[List[str]] = None
    ):
        self.sensitive_headers = [h.lower() for h in (sensitive_headers or DEFAULT_SENSITIVE_HEADERS)]
        self.binary_filters = {
            source.lower(): [f.lower() for f in fields]
            for source, fields in (binary_filters or BINARY_DATA_FILTERS).items()
        }
        self.default_binary_fields = [f.lower() for f in (default_binary_fields or DEFAULT_BINARY_FIELDS)]

    def sanitize_headers(self, headers: Any) -> Dict[str, str]:
        """Normaliza headers para um dict plano e oculta credenciais"""
        sanitized = {}

        for key, value in self.normalize_headers(headers).items():
            key_lower = key.lower()

            if key_lower == 'authorization':
                if BEARER_PATTERN.match(value):
                    sanitized[key] = f"Bearer {REDACTED}"
                else:
                    sanitized[key] = REDACTED
            elif key_lower in self.sensitive_headers:
                sanitized[key] = REDACTED
            else:
                sanitized[key] = value

        return sanitized

    def sanitize_webhook_headers(self, headers: Any) -> Dict[str, str]:
        """Sanitiza headers de webhooks encaminhados manualmente"""
        sanitized = {}

        for key, value in self.normalize_headers(headers).items():
            if not key or value is None or value == "":
                continue

            # Headers no estilo CGI (HTTP_X_FOO) viram x-foo
            clean_key = re.sub(r'^HTTP_', '', key).replace('_', '-').lower()
            sanitized[clean_key] = REDACTED if WEBHOOK_SECRET_PATTERN.search(clean_key) else value

        return sanitized

    def normalize_headers(self, headers: Any) -> Dict[str, str]:
        """Converte qualquer formato de headers para Dict[str, str]"""
        if headers is None:
            return {}

        pairs: Iterable
        if isinstance(headers, Mapping):
            pairs = headers.items()
        elif hasattr(headers, 'items') and callable(headers.items):
            pairs = headers.items()
        elif isinstance(headers, (str, bytes)):
            return {'raw': self._header_text(headers)}
        else:
            try:
                pairs = list(headers)
            except TypeError:
                return {'raw': str(headers)}

        normalized: Dict[str, str] = {}
        try:
            for key, value in pairs:
                key = self._header_text(key)
                value = self._normalize_header_value(value)
                if key in normalized:
                    # Headers repetidos são unidos como em HTTP
                    normalized[key] = f"{normalized[key]}, {value}"
                else:
                    normalized[key] = value
        except (TypeError, ValueError) as e:
            logger.debug("Formato de headers não reconhecido", error=str(e))
            return {'raw': str(headers)}

        return normalized

    def _normalize_header_value(self, value: Any) -> str:
        if isinstance(value, (list, tuple)):
            return ", ".join(self._header_text(v) for v in value)
        return self._header_text(value)

    def _header_text(self, value: Any) -> str:
        if isinstance(value, bytes):
            return value.decode('latin-1')
        return str(value)

    def binary_fields_for(self, source: Optional[str] = None) -> List[str]:
        """Retorna o conjunto de campos binários para uma origem"""
        if not source:
            return list(self.default_binary_fields)
        return list(self.binary_filters.get(str(source).lower(), self.default_binary_fields))

    def strip_binary_fields(self, value: Any, field_names: Optional[List[str]] = None) -> Any:
        """Remove recursivamente chaves que contêm nomes de campos binários"""
        fields = [f.lower() for f in (field_names if field_names is not None else self.default_binary_fields)]
        return self._strip_recursive(value, fields)

    def _strip_recursive(self, data: Any, fields: List[str]) -> Any:
        if isinstance(data, Mapping):
            stripped = {}
            for key, value in data.items():
                key_lower = str(key).lower()

                if any(field in key_lower for field in fields):
                    continue

                stripped[key] = self._strip_recursive(value, fields)
            return stripped

        elif isinstance(data, (list, tuple)):
            return [self._strip_recursive(item, fields) for item in data]

        else:
            return data


default_sanitizer = DataSanitizer()
