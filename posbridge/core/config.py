"""
Application Configuration Module

Centralizes all configuration using environment variables with Pydantic Settings.
Supports three modes:
    - DEVELOPMENT: Mock alert notifications (no SendGrid/Twilio keys needed)
    - STAGING: Real notification providers with test credentials
    - PRODUCTION: Real notification providers

Delivery timings (webhook timeout, SSE polling, connection sweep) default to
the values POS clients were built against and should rarely be changed.

Usage:
    from posbridge.core.config import get_settings

    settings = get_settings()
    timeout = settings.webhook_timeout_seconds
"""

import logging
import sys
from enum import Enum
from typing import Optional
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvironmentMode(str, Enum):
    """
    Application environment modes.

    Attributes:
        DEVELOPMENT: Local testing with mock notification services
        PRODUCTION: Live environment with real notification providers
        STAGING: Pre-production testing with real providers but test keys
    """
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    STAGING = "staging"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or .env file.
    Secrets (database password, admin token, provider keys) should NEVER be
    committed to version control.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================

    env_mode: EnvironmentMode = Field(
        default=EnvironmentMode.DEVELOPMENT,
        description="Application environment mode"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging and error details"
    )

    # ==========================================================================
    # APPLICATION
    # ==========================================================================

    app_name: str = Field(
        default="POS Bridge",
        description="Application display name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host"
    )
    api_port: int = Field(
        default=9010,
        description="API server port"
    )

    # ==========================================================================
    # DATABASE
    # ==========================================================================

    database_url: Optional[str] = Field(
        default=None,
        description="Full SQLAlchemy URL; overrides the DB_* parts when set"
    )
    db_host: str = Field(default="localhost", description="Database host")
    db_port: int = Field(default=5432, description="Database port")
    db_user: str = Field(default="posbridge", description="Database user")
    db_password: str = Field(default="", description="Database password")
    db_name: str = Field(default="posbridge", description="Database name")
    db_echo: bool = Field(
        default=False,
        description="Log all SQL statements"
    )

    # ==========================================================================
    # REDIS / CELERY
    # ==========================================================================

    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL"
    )

    # ==========================================================================
    # ADMIN ACCESS
    # ==========================================================================

    admin_api_token: Optional[str] = Field(
        default=None,
        description="Bearer token required by /api/admin and /api/super-admin"
    )

    # ==========================================================================
    # DELIVERY FABRIC TIMINGS
    # ==========================================================================

    webhook_timeout_seconds: float = Field(
        default=10.0,
        description="Hard timeout for an outbound POS webhook call"
    )
    sse_poll_interval_seconds: float = Field(
        default=2.0,
        description="How often an SSE stream polls for new orders"
    )
    sse_lookback_seconds: int = Field(
        default=30,
        description="Orders created within this window are streamed"
    )
    sse_heartbeat_interval_seconds: float = Field(
        default=10.0,
        description="Interval between SSE heartbeat events"
    )
    connection_sweep_interval_seconds: float = Field(
        default=30.0,
        description="Interval of the stale connection sweep"
    )
    connection_stale_after_seconds: float = Field(
        default=60.0,
        description="A connection silent for longer than this is reaped"
    )
    device_heartbeat_interval_seconds: float = Field(
        default=60.0,
        description="Minimum spacing of heartbeat writes for a device on a live session"
    )

    # ==========================================================================
    # HEALTH / ALERTING
    # ==========================================================================

    device_online_window_minutes: int = Field(
        default=10,
        description="A device seen within this window is online"
    )
    unprinted_alert_minutes: int = Field(
        default=15,
        description="Unprinted orders older than this raise a critical alert"
    )
    pull_default_limit: int = Field(
        default=50,
        description="Default page size of the pull-orders endpoint"
    )
    sync_log_retention_days: int = Field(
        default=30,
        description="pos_sync_logs rows older than this are purged"
    )

    # ==========================================================================
    # ALERT NOTIFICATIONS (SENDGRID / TWILIO)
    # ==========================================================================

    alert_email: Optional[str] = Field(
        default=None,
        description="Operator email receiving print failure alerts"
    )
    alert_phone: Optional[str] = Field(
        default=None,
        description="Operator phone receiving print failure alerts"
    )
    sendgrid_api_key: Optional[str] = Field(
        default=None,
        description="SendGrid API Key"
    )
    sendgrid_from_email: str = Field(
        default="alerts@posbridge.local",
        description="From email address for SendGrid"
    )
    twilio_account_sid: Optional[str] = Field(
        default=None,
        description="Twilio Account SID"
    )
    twilio_auth_token: Optional[str] = Field(
        default=None,
        description="Twilio Auth Token"
    )
    twilio_phone_number: Optional[str] = Field(
        default=None,
        description="Twilio phone number for sending SMS"
    )

    # ==========================================================================
    # VALIDATORS
    # ==========================================================================

    @field_validator("env_mode", mode="before")
    @classmethod
    def validate_env_mode(cls, v: str) -> EnvironmentMode:
        """Convert string to EnvironmentMode enum."""
        if isinstance(v, EnvironmentMode):
            return v
        try:
            return EnvironmentMode(v.lower())
        except ValueError:
            valid = [e.value for e in EnvironmentMode]
            raise ValueError(f"Invalid env_mode. Must be one of: {valid}")

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.env_mode == EnvironmentMode.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.env_mode == EnvironmentMode.PRODUCTION

    @property
    def use_real_services(self) -> bool:
        """Check if real notification providers should be used."""
        return self.env_mode in (EnvironmentMode.PRODUCTION, EnvironmentMode.STAGING)

    @property
    def sqlalchemy_url(self) -> str:
        """Resolve the async database URL from DATABASE_URL or the DB_* parts."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # ==========================================================================
    # VALIDATION METHODS
    # ==========================================================================

    def validate_production_config(self) -> list[str]:
        """
        Validate that all required production settings are configured.

        Returns:
            List of missing configuration keys (empty if all present)
        """
        missing = []

        if not self.admin_api_token:
            missing.append("ADMIN_API_TOKEN")

        if self.use_real_services:
            if self.alert_email and not self.sendgrid_api_key:
                missing.append("SENDGRID_API_KEY")
            if self.alert_phone and not self.twilio_account_sid:
                missing.append("TWILIO_ACCOUNT_SID")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once per process; call ``get_settings.cache_clear()``
    after changing the environment in tests.

    Returns:
        Settings: Configured application settings
    """
    return Settings()


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure application-wide logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured package logger
    """
    settings = get_settings()

    if settings.debug:
        level = logging.DEBUG

    log_format = "%(asctime)s │ %(levelname)-8s │ %(name)-25s │ %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    logging.basicConfig(
        level=level,
        format=log_format,
        datefmt=date_format,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return logging.getLogger("posbridge")

