"""
Configurações do núcleo de tracing.
Carrega variáveis de ambiente (prefixo TRACECORE_) e define padrões.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TracingSettings(BaseSettings):
    """Configurações de tracing carregadas do ambiente."""

    model_config = SettingsConfigDict(
        env_prefix="TRACECORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Serviço
    service_name: str = "tracecore"
    service_version: str = "1.0.0"
    environment: str = "development"
    log_level: str = "INFO"

    # Tracing
    sampled: bool = Field(
        default=True,
        description="Valor do flag de amostragem para novos traces raiz"
    )
    strict_mode: bool = Field(
        default=False,
        description="Lança exceção em erros de uso (detach inválido, escrita após end) em vez de só logar"
    )

    # Pipeline de spans finalizados
    exporter: Literal["logging", "memory", "none"] = "logging"
    processor: Literal["simple", "batch"] = "simple"
    batch_max_size: int = Field(default=512, gt=0)

    # Middleware HTTP
    excluded_paths: list[str] = ["/health", "/api/health"]

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Nível de log inválido: {value}")
        return level


@lru_cache()
def get_settings() -> TracingSettings:
    """
    Retorna instância cacheada das configurações.
    Use esta função para obter as configurações em qualquer lugar da aplicação.
    """
    return TracingSettings()
