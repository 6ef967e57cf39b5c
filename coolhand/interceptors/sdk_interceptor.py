"""
Interceptador na camada de SDK de provedor (ex.: anthropic)

Envolve o método de request do SDK, reivindica a chamada para que o
transport HTTP por baixo apenas repasse, e registra o objeto de resposta
já interpretado pelo SDK. Chamadas de streaming ficam pendentes até que a
mensagem final acumulada seja informada.
"""
import functools
import importlib
import inspect
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, Optional, Tuple
import structlog

from .base import BaseInterceptor
from ..records import CapturedCall, utcnow

logger = structlog.get_logger(__name__)

# describe(instance, args, kwargs) -> {'method', 'url', 'headers', 'body', 'stream'} ou None
Describer = Callable[[Any, Tuple[Any, ...], Dict[str, Any]], Optional[Dict[str, Any]]]

# Atributo gravado no objeto de stream devolvido pelo SDK com o id do registro pendente
STREAM_CALL_ID_ATTR = "_coolhand_call_id"


class SdkInterceptor(BaseInterceptor):
    """Instrumenta métodos de SDKs por substituição no atributo da classe"""

    transport = "sdk"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._originals: List[Tuple[Any, str, Any]] = []

    @property
    def patched(self) -> bool:
        return bool(self._originals)

    def patch(self) -> bool:
        """Instala os SDKs conhecidos que estiverem disponíveis"""
        return patch_anthropic(self)

    def unpatch(self) -> bool:
        with self._lock:
            if not self._originals:
                return False
            for owner, name, original in reversed(self._originals):
                setattr(owner, name, original)
            self._originals = []

        logger.info("Interceptador de SDK removido")
        return True

    def is_method_patched(self, owner: Any, method_name: str) -> bool:
        return any(o is owner and n == method_name for o, n, _ in self._originals)

    def patch_request_method(self, owner: Any, describe: Describer, method_name: str = "request") -> bool:
        """Envolve owner.method_name (sync ou async) com a máquina de estados"""
        with self._lock:
            if self.is_method_patched(owner, method_name):
                return False

            original = getattr(owner, method_name)
            interceptor = self

            if inspect.iscoroutinefunction(original):
                @functools.wraps(original)
                async def wrapper(instance, *args, **kwargs):
                    call = interceptor._describe(describe, instance, args, kwargs)
                    if call is None:
                        return await original(instance, *args, **kwargs)

                    with interceptor.store.claim() as claimed:
                        if not claimed:
                            return await original(instance, *args, **kwargs)

                        ctx = interceptor._begin_call(call)
                        try:
                            response = await original(instance, *args, **kwargs)
                        except Exception as e:
                            interceptor.fail(ctx, e)
                            raise

                        interceptor._on_response(ctx, response)
                        return response
            else:
                @functools.wraps(original)
                def wrapper(instance, *args, **kwargs):
                    call = interceptor._describe(describe, instance, args, kwargs)
                    if call is None:
                        return original(instance, *args, **kwargs)

                    with interceptor.store.claim() as claimed:
                        if not claimed:
                            return original(instance, *args, **kwargs)

                        ctx = interceptor._begin_call(call)
                        try:
                            response = original(instance, *args, **kwargs)
                        except Exception as e:
                            interceptor.fail(ctx, e)
                            raise

                        interceptor._on_response(ctx, response)
                        return response

            setattr(owner, method_name, wrapper)
            self._originals.append((owner, method_name, original))

        logger.debug("Método de SDK instrumentado", owner=getattr(owner, '__name__', repr(owner)), method=method_name)
        return True

    def patch_completion_method(self, owner: Any, method_name: str = "get_final_message") -> bool:
        """Envolve o método que devolve a mensagem final de um streaming"""
        with self._lock:
            if self.is_method_patched(owner, method_name):
                return False

            original = getattr(owner, method_name)
            interceptor = self

            if inspect.iscoroutinefunction(original):
                @functools.wraps(original)
                async def wrapper(instance, *args, **kwargs):
                    message = await original(instance, *args, **kwargs)
                    interceptor.complete_streaming(message, call_id=stream_call_id(instance))
                    return message
            else:
                @functools.wraps(original)
                def wrapper(instance, *args, **kwargs):
                    message = original(instance, *args, **kwargs)
                    interceptor.complete_streaming(message, call_id=stream_call_id(instance))
                    return message

            setattr(owner, method_name, wrapper)
            self._originals.append((owner, method_name, original))

        return True

    def complete_streaming(self, final_message: Any, call_id: Optional[str] = None) -> Optional[CapturedCall]:
        """Completa o streaming pendente desta unidade de execução com a mensagem final"""
        capture = self.store.take_parked(call_id)
        if capture is None:
            logger.debug("Nenhum streaming pendente para concluir", call_id=call_id)
            return None

        try:
            call = self.builder.finish_with_response_object(
                capture, final_message,
                response_headers={},
                status_code=None,
                end_time=capture.end_time
            )
        except Exception as e:
            logger.error("Erro ao registrar conclusão de streaming", call_id=capture.id, error=str(e))
            return None

        self.dispatch(call)
        return call

    def _describe(self, describe: Describer, instance: Any, args, kwargs) -> Optional[Dict[str, Any]]:
        try:
            call = describe(instance, args, kwargs)
        except Exception as e:
            logger.debug("Não foi possível descrever a chamada do SDK", error=str(e))
            return None

        if not call or not self.should_intercept(call.get('url')):
            return None
        return call

    def _begin_call(self, call: Dict[str, Any]):
        return self.begin(
            call.get('method', 'post'),
            call['url'],
            call.get('headers'),
            call.get('body'),
            streaming_hint=bool(call.get('stream')),
            decode_body=False
        )

    def _on_response(self, ctx, response: Any):
        if ctx.capture.is_streaming:
            # A mensagem completa só existe depois que a aplicação consome o stream
            if ctx.mark_finished():
                ctx.capture.end_time = utcnow()
                self.store.park(ctx.capture)
                tag_stream(response, ctx.capture.id)
            return

        self.complete_with_object(ctx, response, response_headers={}, status_code=None)


def tag_stream(stream: Any, call_id: str):
    """Associa o objeto de stream ao registro pendente"""
    try:
        setattr(stream, STREAM_CALL_ID_ATTR, call_id)
    except (AttributeError, TypeError):
        # Sem atributo: a conclusão usa o pendente da unidade de execução
        logger.debug("Stream do SDK não aceita atributos", stream_type=type(stream).__name__)


def stream_call_id(stream: Any) -> Optional[str]:
    """Id pendente do stream, olhando também o stream bruto que o MessageStream envolve"""
    for candidate in (stream, getattr(stream, "_raw_stream", None)):
        call_id = getattr(candidate, STREAM_CALL_ID_ATTR, None)
        if isinstance(call_id, str):
            return call_id
    return None


def describe_anthropic_request(client: Any, args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Extrai método, URL, headers e body de SyncAPIClient/AsyncAPIClient.request"""
    options = kwargs.get('options')
    if options is None and len(args) > 1:
        options = args[1]
    if options is None:
        return None

    path = str(getattr(options, 'url', '') or '')
    if path.startswith('http://') or path.startswith('https://'):
        url = path
    else:
        url = f"{str(client.base_url).rstrip('/')}/{path.lstrip('/')}"

    headers = {}
    default_headers = getattr(client, 'default_headers', None)
    if isinstance(default_headers, Mapping):
        headers.update(default_headers)
    option_headers = getattr(options, 'headers', None)
    if isinstance(option_headers, Mapping):
        headers.update(option_headers)

    body = getattr(options, 'json_data', None)
    if not isinstance(body, (Mapping, list, str)):
        body = None

    return {
        'method': getattr(options, 'method', 'post'),
        'url': url,
        'headers': {k: v for k, v in headers.items() if isinstance(v, str)},
        'body': dict(body) if isinstance(body, Mapping) else body,
        'stream': bool(kwargs.get('stream'))
    }


def patch_anthropic(interceptor: SdkInterceptor) -> bool:
    """Instrumenta o SDK anthropic; sem efeito quando o pacote não está instalado"""
    try:
        base_client = importlib.import_module('anthropic._base_client')
    except ImportError:
        logger.debug("Pacote anthropic não instalado, interceptador de SDK inativo")
        return False

    installed = False
    for class_name in ('SyncAPIClient', 'AsyncAPIClient'):
        owner = getattr(base_client, class_name, None)
        if owner is not None:
            installed = interceptor.patch_request_method(owner, describe_anthropic_request) or installed

    try:
        streaming = importlib.import_module('anthropic.lib.streaming')
    except ImportError:
        streaming = None

    if streaming is not None:
        for class_name in ('MessageStream', 'AsyncMessageStream'):
            owner = getattr(streaming, class_name, None)
            if owner is not None and hasattr(owner, 'get_final_message'):
                installed = interceptor.patch_completion_method(owner) or installed

    if installed:
        logger.info("Interceptador anthropic instalado")
    return installed
