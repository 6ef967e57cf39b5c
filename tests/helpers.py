"""
Dublês compartilhados pelos testes.
"""

import io
from typing import Any, Dict, List, Optional

import httpx
import requests
from requests.adapters import HTTPAdapter
from requests.structures import CaseInsensitiveDict

from coolhand.config import ConfigManager
from coolhand.context import CorrelationStore
from coolhand.dispatch import InlineDispatcher


def make_config(**overrides) -> ConfigManager:
    """ConfigManager isolado com API key de teste."""
    overrides.setdefault("api_key", "test-api-key")
    return ConfigManager(**overrides)


class RecordingCollector:
    """Cliente de entrega que apenas guarda o que recebeu."""

    def __init__(self):
        self.records: List[Any] = []
        self.collection_methods: List[str] = []
        self.responses: List[Dict[str, Any]] = []
        self.feedbacks: List[Any] = []
        self.stats: Dict[str, Any] = {}

    def send_request_log(self, call, collection_method="auto-monitor"):
        self.records.append(call)
        self.collection_methods.append(collection_method)
        return f"log-{len(self.records)}"

    def send_llm_response(self, raw_response):
        self.responses.append(raw_response)
        return f"response-{len(self.responses)}"

    def create_feedback(self, feedback=None, collection_method="manual", **fields):
        self.feedbacks.append(feedback if feedback is not None else fields)
        return f"feedback-{len(self.feedbacks)}"

    def close(self):
        pass


def interceptor_components(config: Optional[ConfigManager] = None, collector: Optional[RecordingCollector] = None,
                           store: Optional[CorrelationStore] = None) -> Dict[str, Any]:
    """Dependências de um interceptador com despacho síncrono."""
    return {
        "config": config or make_config(intercept_addresses=["api.example.com"]),
        "store": store or CorrelationStore(),
        "client": collector if collector is not None else RecordingCollector(),
        "dispatcher": InlineDispatcher(),
    }


class StubAdapter(HTTPAdapter):
    """Adapter do requests que responde sem rede."""

    def __init__(self, status_code: int = 200, body: bytes = b"", headers: Optional[Dict[str, str]] = None,
                 error: Optional[Exception] = None):
        super().__init__()
        self.status_code = status_code
        self.body = body
        self.headers = headers or {"Content-Type": "application/json"}
        self.error = error
        self.sent: List[requests.PreparedRequest] = []

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        self.sent.append(request)
        if self.error is not None:
            raise self.error

        response = requests.Response()
        response.status_code = self.status_code
        response.headers = CaseInsensitiveDict(self.headers)
        response.raw = io.BytesIO(self.body)
        response.url = request.url
        response.request = request
        response.reason = "OK"
        response.encoding = "utf-8"
        response.connection = self
        return response


def session_with(adapter: StubAdapter) -> requests.Session:
    session = requests.Session()
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


class ChunkedStream(httpx.SyncByteStream, httpx.AsyncByteStream):
    """Body de resposta entregue em partes, como um transport real."""

    def __init__(self, chunks: List[bytes]):
        self.chunks = chunks
        self.closed = False

    def __iter__(self):
        for chunk in self.chunks:
            yield chunk

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk

    def close(self):
        self.closed = True

    async def aclose(self):
        self.closed = True
