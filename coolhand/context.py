"""
Armazenamento de correlação por unidade de execução
Buffers de streaming, requests de streaming pendentes e flag de supressão entre camadas
"""
import threading
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Dict, Any, Optional, Iterator, List
import structlog

from .metrics import PARKED_STREAMS, PARKED_STREAMS_EVICTED
from .records import RequestCapture

logger = structlog.get_logger(__name__)


class RequestContext:
    """Estado explícito de uma chamada em andamento

    Acumula os chunks lidos do body da resposta e garante que o registro
    da chamada seja finalizado uma única vez.
    """

    def __init__(self, capture: RequestCapture):
        self.capture = capture
        self._chunks: List[bytes] = []
        self._finished = False
        self._lock = threading.Lock()

    def append_chunk(self, chunk: Any):
        if not chunk:
            return
        if isinstance(chunk, str):
            chunk = chunk.encode('utf-8', errors='replace')
        self._chunks.append(bytes(chunk))

    def drain_buffer(self) -> Optional[bytes]:
        """Devolve e limpa o buffer; None quando nada foi acumulado"""
        if not self._chunks:
            return None
        data = b"".join(self._chunks)
        self._chunks = []
        return data

    def mark_finished(self) -> bool:
        """True apenas na primeira chamada"""
        with self._lock:
            if self._finished:
                return False
            self._finished = True
            return True

    @property
    def finished(self) -> bool:
        return self._finished


class CorrelationStore:
    """Slots isolados por thread/task via contextvars"""

    def __init__(self, pending_ttl: int = 300):
        self.pending_ttl = pending_ttl
        self._suppressed: ContextVar[bool] = ContextVar(f"coolhand_suppressed_{id(self)}", default=False)
        self._pending_id: ContextVar[Optional[str]] = ContextVar(f"coolhand_pending_{id(self)}", default=None)
        self._pending: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def open(self, capture: RequestCapture) -> RequestContext:
        return RequestContext(capture)

    # Flag de supressão entre camadas

    def is_suppressed(self) -> bool:
        return self._suppressed.get()

    @contextmanager
    def claim(self) -> Iterator[bool]:
        """Reivindica a chamada atual; produz False se outra camada já o fez"""
        if self._suppressed.get():
            yield False
            return

        token = self._suppressed.set(True)
        try:
            yield True
        finally:
            self._suppressed.reset(token)

    # Requests de streaming aguardando conclusão externa

    def park(self, capture: RequestCapture):
        """Guarda um registro parcial até o sinal de conclusão"""
        self.cleanup_expired()

        with self._lock:
            self._pending[capture.id] = {
                'capture': capture,
                'parked_at': time.monotonic()
            }
            PARKED_STREAMS.set(len(self._pending))

        self._pending_id.set(capture.id)
        logger.debug("Streaming pendente registrado", call_id=capture.id, url=capture.url)

    def take_parked(self, call_id: Optional[str] = None) -> Optional[RequestCapture]:
        """Remove e devolve o registro pendente desta unidade de execução (ou do id informado)"""
        self.cleanup_expired()

        current_id = self._pending_id.get()
        call_id = call_id or current_id
        if not call_id:
            return None

        with self._lock:
            entry = self._pending.pop(call_id, None)
            PARKED_STREAMS.set(len(self._pending))

        if call_id == current_id:
            self._pending_id.set(None)

        return entry['capture'] if entry else None

    def peek_parked(self) -> Optional[RequestCapture]:
        call_id = self._pending_id.get()
        if not call_id:
            return None
        with self._lock:
            entry = self._pending.get(call_id)
        return entry['capture'] if entry else None

    def cleanup_expired(self) -> int:
        """Descarta streamings pendentes que nunca receberam conclusão"""
        now = time.monotonic()
        expired_keys = []

        with self._lock:
            for key, entry in self._pending.items():
                if now - entry['parked_at'] > self.pending_ttl:
                    expired_keys.append(key)

            for key in expired_keys:
                del self._pending[key]

            PARKED_STREAMS.set(len(self._pending))

        for key in expired_keys:
            PARKED_STREAMS_EVICTED.inc()
            logger.warning("Streaming pendente expirado sem conclusão", call_id=key, ttl=self.pending_ttl)

        return len(expired_keys)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def clear(self):
        with self._lock:
            self._pending.clear()
            PARKED_STREAMS.set(0)
        self._pending_id.set(None)


# Instância compartilhada pelos interceptadores e pelo cliente de entrega
default_store = CorrelationStore()
