"""
Coolhand - monitoramento de chamadas a APIs de LLM
Observa requests a provedores, sanitiza e envia os registros ao collector
"""

__version__ = "1.0.0"
__author__ = "Coolhand Team"
__description__ = "LLM API call monitoring SDK for the Coolhand collector"

from typing import Any, Optional

from .config import ConfigManager, CoolhandSettings, config_manager
from .errors import CoolhandError, ConfigurationError, DeliveryError, SanitizationError
from .delivery import CollectorClient, Feedback, collector_tag
from .monitor import Monitor, PatchRegistry, get_monitor


def configure(**settings: Any) -> Monitor:
    """Configura o SDK e instala os interceptadores habilitados"""
    return get_monitor().configure(**settings)


def capture():
    """Context manager: intercepta chamadas apenas dentro do bloco"""
    return get_monitor().capture()


def create_feedback(feedback: Optional[Feedback] = None, **fields: Any) -> Optional[str]:
    return get_monitor().create_feedback(feedback, **fields)


def log_streaming_completion(final_message: Any, call_id: Optional[str] = None):
    """Informa a mensagem final de um streaming iniciado nesta thread/task"""
    return get_monitor().log_streaming_completion(final_message, call_id)


def forward_webhook(webhook_body: Any, source: str, event_type: Optional[str] = None, headers=None, **options: Any) -> bool:
    return get_monitor().forward_webhook(webhook_body, source, event_type, headers, **options)


def forward_streaming_response(request_data: Any, response: Any, **kwargs: Any) -> str:
    return get_monitor().forward_streaming_response(request_data, response, **kwargs)


__all__ = [
    '__version__',
    'configure',
    'capture',
    'create_feedback',
    'log_streaming_completion',
    'forward_webhook',
    'forward_streaming_response',
    'get_monitor',
    'Monitor',
    'PatchRegistry',
    'ConfigManager',
    'CoolhandSettings',
    'config_manager',
    'CollectorClient',
    'Feedback',
    'collector_tag',
    'CoolhandError',
    'ConfigurationError',
    'DeliveryError',
    'SanitizationError',
]
