"""
Webhooks: validação de assinatura, processamento de lotes e encaminhamento
"""
from .validator import WebhookValidator, WebhookValidationResult, compute_signature, decode_secret
from .batch import OpenAIBatchProcessor, VertexBatchProcessor
from .forwarding import WebhookForwarder, StreamingResponseForwarder
from .router import create_webhook_router

__all__ = [
    'WebhookValidator',
    'WebhookValidationResult',
    'compute_signature',
    'decode_secret',
    'OpenAIBatchProcessor',
    'VertexBatchProcessor',
    'WebhookForwarder',
    'StreamingResponseForwarder',
    'create_webhook_router',
]
