"""
Order Settlement Service
Centralized Configuration Management

This module provides configuration management using Pydantic settings with
environment variable support, validation, and type safety.
"""

from functools import lru_cache
from typing import Optional, List
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Order Store Database Configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="order_settlement", description="Database name")
    user: str = Field(default="settlement", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")
    url: Optional[str] = Field(default=None, description="Full async database URL (overrides host/port)")
    create_tables: bool = Field(default=False, description="Create schema on startup")

    @property
    def async_url(self) -> str:
        """Async database URL - uses the explicit url if set, otherwise asyncpg"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class GatewaySettings(BaseSettings):
    """Payment Gateway Configuration"""

    model_config = SettingsConfigDict(env_prefix="GATEWAY_")

    api_base: str = Field(default="https://api.stripe.com/v1", description="Gateway REST base URL")
    secret_key: SecretStr = Field(default="sk_test_change_me", description="Gateway secret API key")
    currency: str = Field(default="jpy", description="Order currency")
    minimum_charge: int = Field(default=50, description="Smallest nonzero amount the gateway accepts")
    timeout_seconds: float = Field(default=10.0, description="Gateway request timeout")


class ErpSettings(BaseSettings):
    """External ERP / Fulfillment Backend Configuration"""

    model_config = SettingsConfigDict(env_prefix="ERP_")

    base_url: str = Field(default="http://localhost:9000/api/", description="ERP API base URL")
    api_key: SecretStr = Field(default="erp-key-change-me", description="ERP subscription key")
    api_key_header: str = Field(default="X-Api-Key", description="Header carrying the ERP key")
    order_endpoint: str = Field(default="orders", description="Endpoint receiving settlements")
    order_number_prefix: str = Field(default="ORD-", description="Prefix of order numbers sent to the ERP")
    callback_key: SecretStr = Field(default="erp-callback-change-me", description="Key the ERP presents on callbacks")
    timeout_seconds: float = Field(default=10.0, description="ERP request timeout")


class NotificationSettings(BaseSettings):
    """Order Confirmation Messaging Configuration"""

    model_config = SettingsConfigDict(env_prefix="NOTIFY_")

    backend: str = Field(default="log", description="Notification backend: log or http")
    url: Optional[str] = Field(default=None, description="Mail relay endpoint for the http backend")
    api_key: Optional[SecretStr] = Field(default=None, description="Mail relay API key")
    sender: str = Field(default="orders@example.com", description="Sender address")
    timeout_seconds: float = Field(default=5.0, description="Mail relay timeout")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate backend value"""
        allowed = ["log", "http"]
        if v.lower() not in allowed:
            raise ValueError(f"Notification backend must be one of: {allowed}")
        return v.lower()


class SecuritySettings(BaseSettings):
    """Security Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    # CORS
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )


class MonitoringSettings(BaseSettings):
    """Monitoring and Observability Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or text")

    # Metrics
    enable_metrics: bool = Field(default=True, alias="ENABLE_METRICS", description="Expose Prometheus metrics")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="order-settlement", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", alias="API_HOST", description="API host")
    api_port: int = Field(default=8000, alias="API_PORT", description="API port")
    api_workers: int = Field(default=4, alias="API_WORKERS", description="API workers")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    erp: ErpSettings = Field(default_factory=ErpSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development"""
        return self.app_env == "development"

    @property
    def stamps_refund_time(self) -> bool:
        """Non-production environments record refund timestamps for audit"""
        return not self.is_production


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
