"""
Interceptadores de chamadas HTTP para provedores de LLM
"""
from .base import BaseInterceptor
from .requests_interceptor import RequestsInterceptor
from .httpx_interceptor import (
    HttpxInterceptor,
    InterceptingTransport,
    AsyncInterceptingTransport,
)
from .sdk_interceptor import SdkInterceptor, describe_anthropic_request, patch_anthropic

__all__ = [
    'BaseInterceptor',
    'RequestsInterceptor',
    'HttpxInterceptor',
    'InterceptingTransport',
    'AsyncInterceptingTransport',
    'SdkInterceptor',
    'describe_anthropic_request',
    'patch_anthropic',
]
