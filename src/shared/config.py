"""
Shared Configuration - Application Settings and Environment Management
Centralized configuration management for Hookline.

This module provides:
- Environment-based configuration
- Type-safe settings with validation
- Database connection settings
- Webhook delivery tuning
- API and security configuration
"""
from typing import Annotated, Optional, List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode
from enum import Enum


class Environment(str, Enum):
    """Application environment types."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class DatabaseSettings(BaseSettings):
    """Database configuration settings."""

    # Primary database URL (takes precedence if set)
    database_url: Optional[str] = None

    # Individual database components (used if DATABASE_URL not set)
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "hookline"
    db_user: str = "hookline"
    db_password: str = "hookline_dev_password"

    # Connection pool settings
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_echo: bool = False

    @field_validator("db_port")
    @classmethod
    def validate_port(cls, v):
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator("db_pool_size")
    @classmethod
    def validate_pool_size(cls, v):
        if v < 1:
            raise ValueError("Pool size must be at least 1")
        return v

    def get_database_url(self) -> str:
        """Get the complete database URL."""
        if self.database_url:
            return self.database_url

        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    class Config:
        env_file = ".env"
        case_sensitive = False


class WebhookSettings(BaseSettings):
    """Outbound webhook delivery settings."""

    # Transport
    webhook_request_timeout: float = Field(30.0, description="Per-attempt HTTP timeout in seconds")
    webhook_user_agent: str = "Hookline-Webhooks/1.0"
    webhook_response_body_limit: int = 1000
    webhook_max_concurrent_deliveries: int = 10

    # Retry policy
    webhook_max_backoff_ms: int = 60000
    webhook_retry_interval: int = Field(300, description="Seconds between retry scans")
    webhook_retry_batch_size: int = 100
    webhook_retry_enabled: bool = True
    webhook_retry_lease_margin: int = Field(60, description="Seconds a claimed retry is held beyond the request timeout")

    @field_validator("webhook_request_timeout")
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("Request timeout must be positive")
        return v

    @field_validator(
        "webhook_max_concurrent_deliveries", "webhook_retry_batch_size",
        "webhook_retry_interval", "webhook_retry_lease_margin"
    )
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False


class APISettings(BaseSettings):
    """API configuration settings."""

    api_version: str = "v1"
    api_title: str = "Hookline Webhooks API"
    api_description: str = "Outbound webhook registration and delivery"

    # CORS settings
    cors_origins: Annotated[List[str], NoDecode] = ["*"]
    cors_methods: Annotated[List[str], NoDecode] = ["GET", "POST", "PUT", "DELETE"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("cors_methods", mode="before")
    @classmethod
    def parse_cors_methods(cls, v):
        if isinstance(v, str):
            return [method.strip() for method in v.split(",")]
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False


class MonitoringSettings(BaseSettings):
    """Monitoring and logging configuration settings."""

    log_level: LogLevel = LogLevel.INFO
    log_format: str = "json"
    log_file: Optional[str] = None

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        if v not in ("json", "colored", "simple"):
            raise ValueError("Log format must be one of: json, colored, simple")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False


class SecuritySettings(BaseSettings):
    """Security configuration settings."""

    secret_key: str = "dev-secret-key-change-in-production"
    algorithm: str = "HS256"

    # Roles allowed to create, change or delete webhooks
    webhook_admin_roles: Annotated[List[str], NoDecode] = ["owner", "accountant"]

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v):
        if len(v) < 32:
            raise ValueError("Secret key must be at least 32 characters long")
        return v

    @field_validator("webhook_admin_roles", mode="before")
    @classmethod
    def parse_admin_roles(cls, v):
        if isinstance(v, str):
            return [role.strip().lower() for role in v.split(",")]
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False


class Settings(BaseSettings):
    """Main application settings."""

    # Application settings
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = True
    app_name: str = "Hookline Webhooks"
    app_version: str = "1.0.0"

    # Component settings
    database: DatabaseSettings = DatabaseSettings()
    webhooks: WebhookSettings = WebhookSettings()
    api: APISettings = APISettings()
    monitoring: MonitoringSettings = MonitoringSettings()
    security: SecuritySettings = SecuritySettings()

    @field_validator("debug")
    @classmethod
    def validate_debug_in_production(cls, v, info):
        if hasattr(info, 'data') and info.data.get("environment") == Environment.PRODUCTION and v:
            raise ValueError("Debug mode should not be enabled in production")
        return v

    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEVELOPMENT

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment == Environment.TESTING

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "allow"


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """
    Get application settings.
    This function can be used as a FastAPI dependency.
    """
    return settings

