"""
Configurações do SDK Coolhand
Gerencia credenciais do collector, endereços interceptados e flags de funcionamento
"""
import json
import os
from typing import Annotated, List, Optional, Any, Dict
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict, SettingsError
import structlog
import yaml

from .errors import ConfigurationError

logger = structlog.get_logger(__name__)


DEFAULT_INTERCEPT_ADDRESSES = [
    "api.openai.com",
    "api.anthropic.com",
    "api.elevenlabs.io",
    ":generateContent",
]

STRICT_ENVIRONMENTS = ("production", "staging")


def _split_addresses(value: str) -> List[str]:
    """Lista JSON, valores separados por vírgula ou um único endereço"""
    value = value.strip()
    if value.startswith('['):
        try:
            parsed = json.loads(value)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return parsed
    return value.split(',')


def _build_settings(**values: Any) -> "CoolhandSettings":
    """Instancia as configurações convertendo falhas em ConfigurationError"""
    try:
        return CoolhandSettings(**values)
    except (ValidationError, SettingsError) as e:
        raise ConfigurationError(str(e)) from e


class CoolhandSettings(BaseSettings):
    """Configurações principais do SDK"""

    model_config = SettingsConfigDict(env_prefix="COOLHAND_", case_sensitive=False)

    # Credenciais e destino do collector
    api_key: Optional[str] = Field(default=None, description="API key do collector")
    base_url: str = Field(default="https://coolhandlabs.com/api", description="URL base do collector")
    collector_timeout: Optional[float] = Field(
        default=None,
        description="Timeout do POST ao collector em segundos (None usa o padrão do httpx)"
    )

    # Endereços observados
    # Variável de ambiente aceita lista JSON, valores separados por vírgula ou endereço único
    intercept_addresses: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_INTERCEPT_ADDRESSES),
        description="Substrings de URL que ativam a interceptação"
    )

    # Flags de funcionamento
    silent: bool = Field(default=False, description="Suprimir diagnósticos no console")
    debug_mode: bool = Field(default=False, description="Montar payloads sem enviar ao collector")
    environment: str = Field(default="production", description="Ambiente de execução")

    # Configurações de logging
    log_level: str = Field(default="INFO", description="Nível de log")
    log_format: str = Field(default="json", description="Formato do log (json ou console)")

    # Transportes a instrumentar
    patch_requests: bool = Field(default=True, description="Instrumentar requests.Session")
    patch_httpx: bool = Field(default=True, description="Instrumentar clientes httpx")
    patch_sdk: bool = Field(default=True, description="Instrumentar SDKs de provedores instalados")

    # Webhooks e streaming
    webhook_secret: Optional[str] = Field(default=None, description="Segredo compartilhado dos webhooks")
    pending_stream_ttl: int = Field(
        default=300,
        description="Segundos que um streaming pendente aguarda o sinal de conclusão"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level deve ser um de: {valid_levels}')
        return v.upper()

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v):
        if v.lower() not in ('json', 'console'):
            raise ValueError('log_format deve ser json ou console')
        return v.lower()

    @field_validator('intercept_addresses', mode='before')
    @classmethod
    def validate_intercept_addresses(cls, v):
        # Lista vazia ou ausente volta para os padrões, nunca fica vazia
        if v is None:
            return list(DEFAULT_INTERCEPT_ADDRESSES)
        if isinstance(v, str):
            v = _split_addresses(v)

        addresses = []
        for address in v:
            address = str(address).strip()
            if address and address not in addresses:
                addresses.append(address)

        return addresses or list(DEFAULT_INTERCEPT_ADDRESSES)

    @field_validator('pending_stream_ttl')
    @classmethod
    def validate_pending_stream_ttl(cls, v):
        if v < 1:
            raise ValueError('pending_stream_ttl deve ser de pelo menos 1 segundo')
        return v


class ConfigManager:
    """Gerenciador de configurações com suporte a arquivos YAML"""

    def __init__(self, config_path: Optional[str] = None, defer_errors: bool = False, **overrides):
        self.load_error: Optional[str] = None

        try:
            self.settings = _build_settings(**overrides)
            if config_path and os.path.exists(config_path):
                self._load_config_file(config_path)
        except ConfigurationError as e:
            if not defer_errors:
                raise
            # Erro reaparece em validate(), no momento da configuração
            logger.warning("Configuração inválida no ambiente", error=str(e))
            self.load_error = str(e)
            self.settings = CoolhandSettings.model_construct()

    def _load_config_file(self, config_path: str):
        """Carrega configurações de arquivo YAML"""
        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

        section = config_data.get('coolhand') or {}
        if section:
            self.update(**section)

    def update(self, **changes: Any) -> CoolhandSettings:
        """Substitui as configurações inteiras, revalidando todos os campos"""
        values: Dict[str, Any] = self.settings.model_dump()
        for key, value in changes.items():
            if key not in CoolhandSettings.model_fields:
                raise ConfigurationError(f"Opção de configuração desconhecida: {key}")
            values[key] = value

        self.settings = _build_settings(**values)
        return self.settings

    def validate(self):
        """Valida a configuração antes de instalar os interceptadores"""
        if self.load_error:
            raise ConfigurationError(self.load_error)

        if not self.settings.api_key:
            raise ConfigurationError("API Key is required")

        if not self.settings.intercept_addresses:
            raise ConfigurationError("Intercept addresses cannot be empty")

        if not self.settings.base_url:
            raise ConfigurationError("Base URL is required")

    def should_intercept(self, url: Optional[str]) -> bool:
        """Verifica se uma URL contém algum dos endereços configurados"""
        if not url:
            return False

        url = str(url)
        return any(address in url for address in self.settings.intercept_addresses)

    def is_strict_environment(self) -> bool:
        """Ambientes onde validações de webhook falham fechadas"""
        return self.settings.environment.lower() in STRICT_ENVIRONMENTS

    def collector_url(self, endpoint: str) -> str:
        """Constrói URL de um endpoint do collector"""
        base_url = self.settings.base_url.rstrip('/')
        endpoint = endpoint.lstrip('/')
        return f"{base_url}/{endpoint}"


# Instância global do gerenciador de configurações
config_manager = ConfigManager(config_path=os.getenv('COOLHAND_CONFIG_PATH'), defer_errors=True)
