"""
Interceptador para requests (respostas bufferizadas e stream=True)
"""
import functools
from typing import Any, Optional
import requests
import structlog

from .base import BaseInterceptor
from ..context import RequestContext

logger = structlog.get_logger(__name__)


class RequestsInterceptor(BaseInterceptor):
    """Envolve requests.Session.send"""

    transport = "requests"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._original_send = None

    @property
    def patched(self) -> bool:
        return self._original_send is not None

    def patch(self) -> bool:
        with self._lock:
            if self._original_send is not None:
                return False

            original_send = requests.Session.send
            interceptor = self

            @functools.wraps(original_send)
            def send(session, request, **kwargs):
                return interceptor.intercept(original_send, session, request, **kwargs)

            requests.Session.send = send
            self._original_send = original_send

        logger.info("Interceptador requests instalado")
        return True

    def unpatch(self) -> bool:
        with self._lock:
            if self._original_send is None:
                return False
            requests.Session.send = self._original_send
            self._original_send = None

        logger.info("Interceptador requests removido")
        return True

    def intercept(self, send, session: requests.Session, request: requests.PreparedRequest, **kwargs):
        if not self.should_intercept(request.url):
            return send(session, request, **kwargs)

        with self.store.claim() as claimed:
            # Outra camada já registra esta chamada (ou é um redirect interno)
            if not claimed:
                return send(session, request, **kwargs)

            ctx = self.begin(request.method, request.url, request.headers, self._request_body(request))

            try:
                response = send(session, request, **kwargs)
            except Exception as e:
                self.fail(ctx, e)
                raise

            if kwargs.get('stream'):
                self._tap_stream(ctx, response)
            else:
                self.complete(
                    ctx,
                    response_headers=response.headers,
                    response_body=response.content,
                    status_code=response.status_code,
                    body_is_streaming=self.is_event_stream(response.headers)
                )

            return response

    def _tap_stream(self, ctx: RequestContext, response: requests.Response):
        """Acumula os chunks lidos e finaliza ao esgotar ou fechar a resposta"""
        original_iter_content = response.iter_content
        original_close = response.close
        interceptor = self

        def finish():
            interceptor.complete(
                ctx,
                response_headers=response.headers,
                response_body=None,
                status_code=response.status_code,
                body_is_streaming=interceptor.is_event_stream(response.headers)
            )

        @functools.wraps(original_iter_content)
        def iter_content(*args, **kwargs):
            try:
                for chunk in original_iter_content(*args, **kwargs):
                    ctx.append_chunk(chunk)
                    yield chunk
            except Exception as e:
                interceptor.fail(ctx, e)
                raise
            finish()

        @functools.wraps(original_close)
        def close():
            try:
                original_close()
            finally:
                finish()

        # Atributos de instância têm precedência sobre os métodos da classe
        response.iter_content = iter_content
        response.close = close

    def _request_body(self, request: requests.PreparedRequest) -> Optional[Any]:
        body = request.body
        if isinstance(body, (str, bytes)):
            return body
        return None
