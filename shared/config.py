"""
Shared configuration management for the Budget Ledger API.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings.

    Every field can be overridden with a ``BUDGET_``-prefixed environment
    variable, e.g. ``BUDGET_POSTGRES_DSN`` or ``BUDGET_COGNITO_CLIENT_ID``.
    """

    model_config = SettingsConfigDict(
        env_prefix="BUDGET_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Persistence
    postgres_dsn: str = Field(default="postgresql://localhost:5432/budgets")
    postgres_min_pool_size: int = Field(default=2, ge=1)
    postgres_max_pool_size: int = Field(default=10, ge=1)
    postgres_command_timeout: float = Field(default=30.0, gt=0)

    # Identity provider (Cognito user pool)
    cognito_user_pool_id: str = Field(default="us-east-1_example")
    cognito_client_id: str = Field(default="budget-api-client")
    cognito_region: Optional[str] = Field(default=None)
    cognito_token_use: str = Field(default="id", pattern="^(id|access)$")
    jwks_cache_ttl: int = Field(default=3600, ge=0)
    http_timeout: float = Field(default=5.0, gt=0)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port)
