"""
Despacho fire-and-forget dos registros para o cliente de entrega
"""
import threading
from typing import Callable, Any
import structlog

logger = structlog.get_logger(__name__)


class Dispatcher:
    """Executa cada envio em uma thread própria, nunca aguardada"""

    def __init__(self, thread_name_prefix: str = "coolhand-dispatch"):
        self.thread_name_prefix = thread_name_prefix

    def submit(self, fn: Callable[..., Any], *args, **kwargs):
        thread = threading.Thread(
            target=self._run,
            args=(fn, args, kwargs),
            name=f"{self.thread_name_prefix}-{_task_name(fn)}",
            daemon=True
        )
        thread.start()
        return thread

    def _run(self, fn: Callable[..., Any], args, kwargs):
        try:
            fn(*args, **kwargs)
        except Exception as e:
            # Falhas de entrega nunca chegam à aplicação
            logger.error("Erro no despacho em background", task=_task_name(fn), error=str(e))


class InlineDispatcher(Dispatcher):
    """Executa o envio na própria thread chamadora (testes e scripts curtos)"""

    def submit(self, fn: Callable[..., Any], *args, **kwargs):
        self._run(fn, args, kwargs)
        return None


def _task_name(fn: Callable[..., Any]) -> str:
    return getattr(fn, '__name__', type(fn).__name__)
