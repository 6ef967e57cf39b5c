"""
Hierarquia de erros do SDK
Apenas ConfigurationError chega ao código da aplicação
"""


class CoolhandError(Exception):
    """Erro base do SDK"""


class ConfigurationError(CoolhandError):
    """Configuração inválida detectada no setup (fatal)"""


class DeliveryError(CoolhandError):
    """Falha no envio para o collector (sempre tratada na fronteira do cliente)"""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class SanitizationError(CoolhandError):
    """Valor que não pôde ser convertido para uma representação serializável"""
