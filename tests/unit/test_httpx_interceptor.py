#!/usr/bin/env python3
"""
Testes unitários para o interceptador do httpx.
"""

import gzip

import httpx
import pytest

from coolhand.interceptors import HttpxInterceptor, InterceptingTransport, AsyncInterceptingTransport
from coolhand.interceptors.httpx_interceptor import decode_content
from helpers import ChunkedStream, RecordingCollector, interceptor_components


def chat_handler(request):
    return httpx.Response(200, json={"msg": "hi"})


class TestHttpxInterceptor:
    """Testes para a classe HttpxInterceptor."""

    def setup_method(self):
        """Configuração para cada teste."""
        self.collector = RecordingCollector()
        self.components = interceptor_components(collector=self.collector)
        self.interceptor = HttpxInterceptor(**self.components)

    def teardown_method(self):
        """Limpeza após cada teste."""
        self.interceptor.unpatch()

    def client(self, handler=chat_handler):
        return httpx.Client(transport=self.interceptor.wrap_transport(httpx.MockTransport(handler)))

    def test_buffered_response_recorded(self):
        """Testa registro de resposta bufferizada."""
        with self.client() as client:
            response = client.post(
                "https://api.example.com/v1/chat",
                json={"model": "gpt-4o"},
                headers={"x-api-key": "sk-secret"}
            )

        assert response.json() == {"msg": "hi"}
        assert len(self.collector.records) == 1
        call = self.collector.records[0]
        assert call.method == "post"
        assert call.request_body == {"model": "gpt-4o"}
        assert call.request_headers["x-api-key"] == "[REDACTED]"
        assert call.response_body == {"msg": "hi"}
        assert call.status_code == 200

    def test_non_matching_call_passes_through(self):
        """Testa que chamadas fora dos endereços não geram registro."""
        with self.client() as client:
            response = client.get("https://other.example.com/v1/chat")

        assert response.status_code == 200
        assert self.collector.records == []

    def test_streamed_chunks_accumulated(self):
        """Testa acúmulo de chunks lidos pela aplicação."""
        chunks = [b'data: {"delta": "Ol"}\n\n', b'data: {"delta": "a"}\n\n', b"data: [DONE]\n\n"]
        stream = ChunkedStream(chunks)

        def handler(request):
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, stream=stream)

        with self.client(handler) as client:
            with client.stream("POST", "https://api.example.com/v1/chat", json={"stream": True}) as response:
                assert self.collector.records == []
                lines = [line for line in response.iter_lines() if line]

        assert lines[-1] == "data: [DONE]"
        assert stream.closed is True
        assert len(self.collector.records) == 1
        call = self.collector.records[0]
        assert call.response_body == b"".join(chunks).decode("utf-8")
        assert call.is_streaming is True

    def test_buffered_read_of_chunked_body(self):
        """Testa body em partes lido por completo pelo cliente."""
        stream = ChunkedStream([b'{"msg": ', b'"hi"}'])

        with self.client(lambda request: httpx.Response(200, stream=stream)) as client:
            client.get("https://api.example.com/v1/chat")

        assert self.collector.records[0].response_body == {"msg": "hi"}

    def test_error_recorded_and_reraised(self):
        """Testa que a exceção original chega ao chamador e é registrada."""
        def handler(request):
            raise httpx.ConnectTimeout("timed out")

        with self.client(handler) as client:
            with pytest.raises(httpx.ConnectTimeout):
                client.get("https://api.example.com/v1/chat")

        assert len(self.collector.records) == 1
        assert self.collector.records[0].response_body["error"]["class"] == "ConnectTimeout"

    def test_suppressed_when_another_layer_claimed(self):
        """Testa repasse quando outra camada já registra a chamada."""
        with self.client() as client:
            with self.components["store"].claim():
                client.get("https://api.example.com/v1/chat")

        assert self.collector.records == []

    def test_instrument_client_is_idempotent(self):
        """Testa que o transport nunca é envolvido duas vezes."""
        client = httpx.Client(transport=httpx.MockTransport(chat_handler))

        self.interceptor.instrument_client(client)
        first = client._transport
        self.interceptor.instrument_client(client)

        assert isinstance(first, InterceptingTransport)
        assert client._transport is first

        client.get("https://api.example.com/v1/chat")
        assert len(self.collector.records) == 1

    def test_patch_instruments_new_clients(self):
        """Testa instrumentação automática de clientes novos."""
        assert self.interceptor.patch() is True
        assert self.interceptor.patch() is False

        client = httpx.Client(transport=httpx.MockTransport(chat_handler))
        async_client = httpx.AsyncClient(transport=httpx.MockTransport(chat_handler))

        assert isinstance(client._transport, InterceptingTransport)
        assert isinstance(async_client._transport, AsyncInterceptingTransport)

    def test_unpatch_stops_interception(self):
        """Testa que clientes já instrumentados passam a repassar."""
        self.interceptor.patch()
        client = httpx.Client(transport=httpx.MockTransport(chat_handler))
        self.interceptor.unpatch()

        client.get("https://api.example.com/v1/chat")

        assert self.collector.records == []

    @pytest.mark.asyncio
    async def test_async_client_recorded(self):
        """Testa cliente assíncrono."""
        stream = ChunkedStream([b'{"msg": ', b'"hi"}'])
        transport = self.interceptor.wrap_async_transport(
            httpx.MockTransport(lambda request: httpx.Response(200, stream=stream))
        )

        async with httpx.AsyncClient(transport=transport) as client:
            response = await client.post("https://api.example.com/v1/chat", json={"q": 1})

        assert response.json() == {"msg": "hi"}
        assert len(self.collector.records) == 1
        assert self.collector.records[0].response_body == {"msg": "hi"}
        assert self.collector.records[0].request_body == {"q": 1}


class TestDecodeContent:
    """Testes para remoção do Content-Encoding."""

    def test_gzip_body_decoded(self):
        """Testa body comprimido."""
        raw = gzip.compress(b'{"msg": "hi"}')
        response = httpx.Response(200, headers={"content-encoding": "gzip"}, stream=ChunkedStream([raw]))

        assert decode_content(response, raw) == b'{"msg": "hi"}'

    def test_plain_body_unchanged(self):
        """Testa body sem codificação."""
        response = httpx.Response(200, stream=ChunkedStream([b"x"]))

        assert decode_content(response, b"x") == b"x"
        assert decode_content(response, None) is None

    def test_corrupt_body_falls_back_to_raw(self):
        """Testa body corrompido."""
        response = httpx.Response(200, headers={"content-encoding": "gzip"}, stream=ChunkedStream([b"nope"]))

        assert decode_content(response, b"nope") == b"nope"
