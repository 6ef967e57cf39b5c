"""
Interceptador para httpx
Transports encadeados (sync e async) que observam cada chamada e acumulam
o body da resposta conforme ele é lido pela aplicação.
"""
import functools
from typing import Any, Callable, Optional, Iterator, AsyncIterator
import httpx
import structlog

from .base import BaseInterceptor
from ..context import RequestContext

logger = structlog.get_logger(__name__)


class TappedSyncStream(httpx.SyncByteStream):
    """Repassa os chunks originais guardando uma cópia no contexto"""

    def __init__(self, stream: httpx.SyncByteStream, ctx: RequestContext, on_close: Callable[[], None]):
        self._stream = stream
        self._ctx = ctx
        self._on_close = on_close

    def __iter__(self) -> Iterator[bytes]:
        for chunk in self._stream:
            self._ctx.append_chunk(chunk)
            yield chunk

    def close(self):
        try:
            close = getattr(self._stream, 'close', None)
            if close is not None:
                close()
        finally:
            self._on_close()


class TappedAsyncStream(httpx.AsyncByteStream):
    """Versão assíncrona de TappedSyncStream"""

    def __init__(self, stream: httpx.AsyncByteStream, ctx: RequestContext, on_close: Callable[[], None]):
        self._stream = stream
        self._ctx = ctx
        self._on_close = on_close

    async def __aiter__(self) -> AsyncIterator[bytes]:
        async for chunk in self._stream:
            self._ctx.append_chunk(chunk)
            yield chunk

    async def aclose(self):
        try:
            aclose = getattr(self._stream, 'aclose', None)
            if aclose is not None:
                await aclose()
        finally:
            self._on_close()


class InterceptingTransport(httpx.BaseTransport):
    """Transport que envolve outro transport httpx"""

    def __init__(self, transport: httpx.BaseTransport, interceptor: "HttpxInterceptor"):
        self._transport = transport
        self.interceptor = interceptor

    @property
    def wrapped(self) -> httpx.BaseTransport:
        return self._transport

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        return self.interceptor.handle(self._transport, request)

    def close(self):
        self._transport.close()


class AsyncInterceptingTransport(httpx.AsyncBaseTransport):
    """Transport assíncrono que envolve outro transport httpx"""

    def __init__(self, transport: httpx.AsyncBaseTransport, interceptor: "HttpxInterceptor"):
        self._transport = transport
        self.interceptor = interceptor

    @property
    def wrapped(self) -> httpx.AsyncBaseTransport:
        return self._transport

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self.interceptor.handle_async(self._transport, request)

    async def aclose(self):
        await self._transport.aclose()


class HttpxInterceptor(BaseInterceptor):
    """Instrumenta clientes httpx trocando seus transports"""

    transport = "httpx"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._original_inits = {}

    @property
    def patched(self) -> bool:
        return bool(self._original_inits)

    def patch(self) -> bool:
        """Instrumenta todo httpx.Client/AsyncClient construído a partir daqui"""
        with self._lock:
            self.enabled = True
            if self._original_inits:
                return False

            for client_class in (httpx.Client, httpx.AsyncClient):
                original_init = client_class.__init__
                client_class.__init__ = self._instrumenting_init(original_init)
                self._original_inits[client_class] = original_init

        logger.info("Interceptador httpx instalado")
        return True

    def unpatch(self) -> bool:
        """Restaura os construtores; clientes já instrumentados passam a repassar direto"""
        with self._lock:
            self.enabled = False
            if not self._original_inits:
                return False
            for client_class, original_init in self._original_inits.items():
                client_class.__init__ = original_init
            self._original_inits = {}

        logger.info("Interceptador httpx removido")
        return True

    def _instrumenting_init(self, original_init: Callable[..., None]) -> Callable[..., None]:
        interceptor = self

        @functools.wraps(original_init)
        def client_init(client, *args, **kwargs):
            original_init(client, *args, **kwargs)
            interceptor.instrument_client(client)

        return client_init

    def instrument_client(self, client: Any) -> Any:
        """Envolve o transport do cliente; nunca envolve duas vezes"""
        if isinstance(client, httpx.AsyncClient):
            wrap = self._wrap_async
        elif isinstance(client, httpx.Client):
            wrap = self._wrap_sync
        else:
            raise TypeError(f"Cliente httpx esperado, recebido {type(client).__name__}")

        client._transport = wrap(client._transport)
        mounts = getattr(client, '_mounts', None)
        if mounts:
            for pattern, transport in list(mounts.items()):
                if transport is not None:
                    mounts[pattern] = wrap(transport)

        return client

    def wrap_transport(self, transport: httpx.BaseTransport) -> httpx.BaseTransport:
        """Transport interceptado para uso direto em httpx.Client(transport=...)"""
        return self._wrap_sync(transport)

    def wrap_async_transport(self, transport: httpx.AsyncBaseTransport) -> httpx.AsyncBaseTransport:
        """Transport interceptado para uso direto em httpx.AsyncClient(transport=...)"""
        return self._wrap_async(transport)

    def _wrap_sync(self, transport: httpx.BaseTransport) -> httpx.BaseTransport:
        if isinstance(transport, InterceptingTransport):
            return transport
        return InterceptingTransport(transport, self)

    def _wrap_async(self, transport: httpx.AsyncBaseTransport) -> httpx.AsyncBaseTransport:
        if isinstance(transport, AsyncInterceptingTransport):
            return transport
        return AsyncInterceptingTransport(transport, self)

    # Ciclo de vida da chamada

    def handle(self, transport: httpx.BaseTransport, request: httpx.Request) -> httpx.Response:
        if not self.should_intercept(request.url):
            return transport.handle_request(request)

        with self.store.claim() as claimed:
            if not claimed:
                return transport.handle_request(request)

            ctx = self._begin_request(request)

            try:
                response = transport.handle_request(request)
            except Exception as e:
                self.fail(ctx, e)
                raise

            return self._attach(ctx, response, TappedSyncStream)

    async def handle_async(self, transport: httpx.AsyncBaseTransport, request: httpx.Request) -> httpx.Response:
        if not self.should_intercept(request.url):
            return await transport.handle_async_request(request)

        with self.store.claim() as claimed:
            if not claimed:
                return await transport.handle_async_request(request)

            ctx = self._begin_request(request)

            try:
                response = await transport.handle_async_request(request)
            except Exception as e:
                self.fail(ctx, e)
                raise

            return self._attach(ctx, response, TappedAsyncStream)

    def _attach(self, ctx: RequestContext, response: httpx.Response, tapped_class) -> httpx.Response:
        # Body já carregado em memória (ByteStream): o cliente não volta a iterar nem fechar o stream
        if isinstance(response.stream, httpx.ByteStream):
            self.complete(
                ctx,
                response_headers=response.headers,
                response_body=response.read(),
                status_code=response.status_code,
                body_is_streaming=self.is_event_stream(response.headers)
            )
            return response

        response.stream = tapped_class(response.stream, ctx, functools.partial(self._finish, ctx, response))
        return response

    def _begin_request(self, request: httpx.Request) -> RequestContext:
        try:
            body: Optional[bytes] = request.content
        except httpx.RequestNotRead:
            body = None

        return self.begin(request.method, request.url, request.headers, body)

    def _finish(self, ctx: RequestContext, response: httpx.Response):
        """Chamado quando o stream da resposta é fechado"""
        raw = ctx.drain_buffer()
        self.complete(
            ctx,
            response_headers=response.headers,
            response_body=decode_content(response, raw),
            status_code=response.status_code,
            body_is_streaming=self.is_event_stream(response.headers)
        )


def decode_content(response: httpx.Response, raw: Optional[bytes]) -> Optional[bytes]:
    """Remove o Content-Encoding (gzip, deflate...) do body bruto acumulado"""
    if raw is None:
        return None

    if not response.headers.get('content-encoding'):
        return raw

    try:
        return httpx.Response(response.status_code, headers=response.headers, content=raw).content
    except httpx.DecodingError as e:
        logger.debug("Falha ao decodificar body comprimido", error=str(e))
        return raw
