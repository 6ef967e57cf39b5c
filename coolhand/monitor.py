"""
Raiz de composição do SDK
Liga configuração, interceptadores, cliente de entrega e encaminhadores
"""
import threading
from contextlib import contextmanager
from typing import Dict, Any, List, Optional, Iterator
import structlog

from .config import ConfigManager, config_manager as default_config_manager
from .context import CorrelationStore, default_store
from .delivery import CollectorClient, Feedback
from .dispatch import Dispatcher
from .interceptors import BaseInterceptor, RequestsInterceptor, HttpxInterceptor, SdkInterceptor
from .logging_config import configure_logging
from .metrics import Stats
from .records import CapturedCall, RecordBuilder
from .webhooks.forwarding import WebhookForwarder, StreamingResponseForwarder

logger = structlog.get_logger(__name__)


class PatchRegistry:
    """Registro único das instalações por transporte (set-once, read-many)"""

    def __init__(self):
        self._installed: Dict[str, BaseInterceptor] = {}
        self._lock = threading.Lock()

    def install(self, name: str, interceptor: BaseInterceptor) -> bool:
        """True somente quando esta chamada instalou o transporte"""
        with self._lock:
            if name in self._installed:
                return False
            interceptor.patch()
            if not interceptor.patched:
                return False
            self._installed[name] = interceptor
            return True

    def uninstall(self, name: str) -> bool:
        with self._lock:
            interceptor = self._installed.pop(name, None)
        if interceptor is None:
            return False
        interceptor.unpatch()
        return True

    def uninstall_all(self) -> List[str]:
        names = self.installed
        for name in names:
            self.uninstall(name)
        return names

    def is_installed(self, name: str) -> bool:
        with self._lock:
            return name in self._installed

    @property
    def installed(self) -> List[str]:
        with self._lock:
            return list(self._installed)


class Monitor:
    """Ponto de entrada do SDK"""

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        store: Optional[CorrelationStore] = None,
        client: Optional[CollectorClient] = None,
        dispatcher: Optional[Dispatcher] = None
    ):
        self.config = config or default_config_manager
        self.store = store or default_store
        self.client = client or CollectorClient(config=self.config, store=self.store)
        self.dispatcher = dispatcher or Dispatcher()
        self.builder = RecordBuilder()

        components = dict(
            config=self.config,
            store=self.store,
            builder=self.builder,
            client=self.client,
            dispatcher=self.dispatcher
        )
        self.interceptors: Dict[str, BaseInterceptor] = {
            'sdk': SdkInterceptor(**components),
            'requests': RequestsInterceptor(**components),
            'httpx': HttpxInterceptor(**components),
        }

        self.registry = PatchRegistry()
        self.webhook_forwarder = WebhookForwarder(config=self.config, client=self.client, dispatcher=self.dispatcher)
        self.streaming_forwarder = StreamingResponseForwarder(client=self.client, dispatcher=self.dispatcher)

    def configure(self, **settings: Any) -> "Monitor":
        """Valida a configuração, configura logging e instala os transportes habilitados"""
        if settings:
            self.config.update(**settings)
        self.config.validate()

        current = self.config.settings
        configure_logging(current.log_level, current.log_format, current.silent)
        self.store.pending_ttl = current.pending_stream_ttl
        # Timeout do collector pode ter mudado
        self.client.close()

        installed = self.start()
        logger.info(
            "Coolhand pronto",
            base_url=current.base_url,
            intercept_addresses=current.intercept_addresses,
            transports=installed,
            debug_mode=current.debug_mode
        )
        return self

    def start(self) -> List[str]:
        """Instala os transportes habilitados; devolve os que foram instalados agora"""
        current = self.config.settings
        enabled = {
            'sdk': current.patch_sdk,
            'requests': current.patch_requests,
            'httpx': current.patch_httpx,
        }

        installed = []
        for name, interceptor in self.interceptors.items():
            if enabled[name] and self.registry.install(name, interceptor):
                installed.append(name)
        return installed

    def stop(self) -> List[str]:
        return self.registry.uninstall_all()

    @contextmanager
    def capture(self) -> Iterator["Monitor"]:
        """Intercepta apenas durante o bloco (mantém o que já estava instalado)"""
        installed = self.start()
        try:
            yield self
        finally:
            for name in installed:
                self.registry.uninstall(name)

    def create_feedback(self, feedback: Optional[Feedback] = None, **fields: Any) -> Optional[str]:
        return self.client.create_feedback(feedback, **fields)

    def log_streaming_completion(self, final_message: Any, call_id: Optional[str] = None) -> Optional[CapturedCall]:
        return self.interceptors['sdk'].complete_streaming(final_message, call_id)

    def forward_webhook(self, webhook_body: Any, source: str, event_type: Optional[str] = None,
                        headers: Optional[Dict[str, Any]] = None, **options: Any) -> bool:
        return self.webhook_forwarder.forward_webhook(webhook_body, source, event_type, headers, **options)

    def forward_streaming_response(self, request_data: Any, response: Any, **kwargs: Any) -> str:
        return self.streaming_forwarder.forward_response(request_data, response, **kwargs)

    def get_stats(self) -> Dict[str, Any]:
        stats = Stats.get(self.config)
        stats.update({
            'transports': self.registry.installed,
            'pending_streams': self.store.pending_count,
            'delivery': dict(self.client.stats)
        })
        return stats


_monitor: Optional[Monitor] = None
_monitor_lock = threading.Lock()


def get_monitor() -> Monitor:
    """Instância única usada pelas funções de nível de pacote"""
    global _monitor
    with _monitor_lock:
        if _monitor is None:
            _monitor = Monitor()
        return _monitor
