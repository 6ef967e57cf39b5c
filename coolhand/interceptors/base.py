"""
Máquina de estados comum a todos os interceptadores
Armado -> em voo -> concluído (sucesso ou erro) -> despacho
"""
import threading
from typing import Any, Optional
import structlog

from ..config import ConfigManager, config_manager as default_config_manager
from ..context import CorrelationStore, RequestContext, default_store
from ..delivery import CollectorClient
from ..dispatch import Dispatcher
from ..metrics import RECORDS_DISPATCHED, Stats
from ..records import CapturedCall, RecordBuilder, EVENT_STREAM

logger = structlog.get_logger(__name__)


class BaseInterceptor:
    """Base dos interceptadores de transporte

    Subclasses decidem como envolver a chamada original; esta classe
    monta o registro, garante a finalização única e entrega ao despacho.
    """

    transport = "base"

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        store: Optional[CorrelationStore] = None,
        builder: Optional[RecordBuilder] = None,
        client: Optional[CollectorClient] = None,
        dispatcher: Optional[Dispatcher] = None
    ):
        self.config = config or default_config_manager
        self.store = store or default_store
        self.builder = builder or RecordBuilder()
        self.client = client or CollectorClient(config=self.config, store=self.store)
        self.dispatcher = dispatcher or Dispatcher()
        self.enabled = True
        self._lock = threading.Lock()

    # Instalação

    def patch(self) -> bool:
        raise NotImplementedError

    def unpatch(self) -> bool:
        raise NotImplementedError

    @property
    def patched(self) -> bool:
        raise NotImplementedError

    # Estados

    def should_intercept(self, url: Any) -> bool:
        return self.enabled and self.config.should_intercept(str(url) if url is not None else None)

    def begin(
        self,
        method: str,
        url: Any,
        headers: Any = None,
        body: Any = None,
        streaming_hint: bool = False,
        decode_body: bool = True
    ) -> RequestContext:
        """Captura o lado da request e abre o contexto da chamada"""
        capture = self.builder.start(
            method, url, headers, body,
            streaming_hint=streaming_hint,
            decode_body=decode_body
        )
        Stats.increment_intercepted_calls(self.transport)
        logger.debug("Chamada interceptada", transport=self.transport, call_id=capture.id, url=capture.url)
        return self.store.open(capture)

    def complete(
        self,
        ctx: RequestContext,
        response_headers: Any = None,
        response_body: Any = None,
        status_code: Optional[int] = None,
        body_is_streaming: bool = False
    ) -> Optional[CapturedCall]:
        """Finaliza com a resposta, preferindo o buffer de streaming acumulado"""
        if not ctx.mark_finished():
            return None

        try:
            buffered = ctx.drain_buffer()
            call = self.builder.finish(
                ctx.capture,
                response_headers=response_headers,
                response_body=buffered if buffered is not None else response_body,
                status_code=status_code,
                body_is_streaming=body_is_streaming
            )
        except Exception as e:
            logger.error("Erro ao montar registro", transport=self.transport, call_id=ctx.capture.id, error=str(e))
            return None

        self.dispatch(call)
        return call

    def complete_with_object(
        self,
        ctx: RequestContext,
        response: Any,
        response_headers: Any = None,
        status_code: Optional[int] = None
    ) -> Optional[CapturedCall]:
        """Finaliza a partir de um objeto de resposta de SDK"""
        if not ctx.mark_finished():
            return None

        try:
            call = self.builder.finish_with_response_object(
                ctx.capture, response,
                response_headers=response_headers,
                status_code=status_code
            )
        except Exception as e:
            logger.error("Erro ao montar registro", transport=self.transport, call_id=ctx.capture.id, error=str(e))
            return None

        self.dispatch(call)
        return call

    def fail(self, ctx: RequestContext, error: BaseException) -> Optional[CapturedCall]:
        """Registro de erro; quem chama relança a exceção original"""
        if not ctx.mark_finished():
            return None

        try:
            call = self.builder.finish_with_error(ctx.capture, error)
        except Exception as e:
            logger.error("Erro ao montar registro de erro", transport=self.transport, call_id=ctx.capture.id, error=str(e))
            return None

        self.dispatch(call)
        return call

    def dispatch(self, call: CapturedCall, collection_method: str = "auto-monitor"):
        """Entrega o registro sem bloquear a chamada original"""
        RECORDS_DISPATCHED.labels(transport=self.transport).inc()
        logger.debug(
            "Registro despachado",
            transport=self.transport,
            call_id=call.id,
            status=call.status_code,
            duration_ms=call.duration_ms
        )
        self.dispatcher.submit(self.client.send_request_log, call, collection_method)

    @staticmethod
    def is_event_stream(headers: Any) -> bool:
        """Resposta em Server-Sent Events"""
        if not headers:
            return False
        try:
            content_type = headers.get('content-type') or headers.get('Content-Type') or ''
        except AttributeError:
            return False
        return EVENT_STREAM in str(content_type).lower()
