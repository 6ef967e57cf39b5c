"""
Configuração de logging estruturado do SDK
"""
import logging
import structlog

LOGGER_NAMESPACE = "coolhand"


def configure_logging(log_level: str = "INFO", log_format: str = "json", silent: bool = False):
    """Configura structlog sobre o logging da stdlib"""
    renderer = (
        structlog.dev.ConsoleRenderer()
        if log_format == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    sdk_logger = logging.getLogger(LOGGER_NAMESPACE)
    if silent:
        # Nenhum diagnóstico do SDK chega ao console
        sdk_logger.setLevel(logging.CRITICAL + 1)
    else:
        sdk_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    if not sdk_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        sdk_logger.addHandler(handler)
        sdk_logger.propagate = False
