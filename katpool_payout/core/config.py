"""
Configuration management using Pydantic Settings.

Two sources feed the service:
- environment / ``.env`` for secrets, endpoints and logging (``Settings``)
- a JSON config file for network identity and payout cadence (``PayoutConfig``)
"""

import json
from pathlib import Path
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings with environment-based configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Katpool Payment App"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "production"

    # Config file with network, payoutsPerDay and node
    config_path: str = "config/config.json"

    # Secrets and operational endpoints
    treasury_private_key: Optional[str] = Field(default=None, repr=False)
    pushgateway: Optional[str] = None
    database_url: Optional[str] = Field(default=None, repr=False)

    # Dotted path "package.module:ClassName" of the transaction manager
    transaction_manager: Optional[str] = None

    # Node RPC
    rpc_timeout: float = 30.0  # seconds
    rpc_connect_retries: int = 0
    rpc_retry_delay: float = 1.0  # seconds, doubled after every attempt

    # Scheduler settings
    heartbeat_interval: int = 600  # seconds

    # Metrics
    metrics_job_name: str = "katpool_payments"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console
    log_file: Optional[str] = None

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = ["development", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("rpc_connect_retries")
    @classmethod
    def validate_connect_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("rpc_connect_retries cannot be negative")
        return v

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


class PayoutConfig(BaseModel):
    """Contents of config.json."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    network: Optional[str] = None
    payouts_per_day: Optional[int] = Field(default=None, alias="payoutsPerDay")
    node: List[str] = Field(default_factory=list)

    @field_validator("node", mode="before")
    @classmethod
    def coerce_node(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v


def load_payout_config(path: str) -> PayoutConfig:
    """Read and parse the JSON config file."""
    config_file = Path(path)
    if not config_file.is_file():
        raise ConfigurationError(
            f"Config file not found: {config_file}",
            {"path": str(config_file)}
        )

    try:
        with open(config_file, "r") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Config file is not valid JSON: {e}", {"path": str(config_file)})

    if not isinstance(raw, dict):
        raise ConfigurationError("Config file must contain a JSON object", {"path": str(config_file)})

    try:
        return PayoutConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config file: {e}", {"path": str(config_file)})


# Global settings instance
settings = Settings()


class DatabaseConfig:
    """Database-specific configuration."""

    @staticmethod
    def validate_database_url(url: str) -> str:
        """Check that the persistence endpoint parses as a database URL."""
        try:
            make_url(url)
        except ArgumentError as e:
            raise ConfigurationError(
                f"DATABASE_URL is not a valid database URL: {e}",
                {"setting": "DATABASE_URL"}
            )
        return url

    @staticmethod
    def masked_database_url(url: str) -> str:
        """Database URL safe for logging."""
        try:
            return make_url(url).render_as_string(hide_password=True)
        except ArgumentError:
            return "<invalid>"
