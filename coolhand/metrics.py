"""
Módulo de métricas e estatísticas
Contadores de interceptação, despacho e entrega ao collector
"""
import threading
import time
from typing import Dict, Any, Optional
from prometheus_client import Counter, Histogram, Gauge

# Métricas de interceptação
INTERCEPTED_CALLS = Counter(
    'coolhand_intercepted_calls_total', 'Outbound LLM calls intercepted', ['transport']
)
RECORDS_DISPATCHED = Counter(
    'coolhand_records_dispatched_total', 'Records handed to the delivery path', ['transport']
)

# Métricas de entrega
DELIVERY_FAILURES = Counter(
    'coolhand_delivery_failures_total', 'Collector deliveries that failed', ['endpoint']
)
DELIVERY_LATENCY = Histogram(
    'coolhand_delivery_seconds', 'Time spent posting to the collector', ['endpoint']
)

# Streaming pendente
PARKED_STREAMS = Gauge('coolhand_parked_streams', 'Streaming records waiting for completion')
PARKED_STREAMS_EVICTED = Counter(
    'coolhand_parked_streams_evicted_total', 'Streaming records dropped after the pending TTL'
)


class Stats:
    """Contador thread-safe de chamadas interceptadas"""

    _intercepted_calls = 0
    _lock = threading.Lock()

    @classmethod
    def increment_intercepted_calls(cls, transport: str = "unknown"):
        with cls._lock:
            cls._intercepted_calls += 1
        INTERCEPTED_CALLS.labels(transport=transport).inc()

    @classmethod
    def intercepted_calls(cls) -> int:
        with cls._lock:
            return cls._intercepted_calls

    @classmethod
    def get(cls, config_manager=None) -> Dict[str, Any]:
        """Retorna estatísticas atuais"""
        if config_manager is None:
            from .config import config_manager

        return {
            'intercepted_calls': cls.intercepted_calls(),
            'environment': config_manager.settings.environment,
            'base_url': config_manager.settings.base_url
        }


class PerformanceTimer:
    """Context manager para medir tempo de entrega ao collector"""

    def __init__(self, endpoint: Optional[str] = None):
        self.endpoint = endpoint
        self.start_time = None
        self.end_time = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end_time = time.perf_counter()

        if self.endpoint:
            DELIVERY_LATENCY.labels(endpoint=self.endpoint).observe(self.duration)

    @property
    def duration(self) -> float:
        """Retorna a duração em segundos"""
        if self.start_time is not None and self.end_time is not None:
            return self.end_time - self.start_time
        return 0.0
