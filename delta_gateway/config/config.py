"""
Configuration models for the Delta Exchange gateway.

Uses Pydantic for validation and type safety.
"""
import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from delta_gateway.constants import (
    DEFAULT_API_TIMEOUT,
    DEFAULT_LARGE_SKEW_THRESHOLD_SECONDS,
    DEFAULT_MAX_DRAWDOWN_PCT,
    DEFAULT_RESYNC_INTERVAL_SECONDS,
    DEFAULT_RETRY_BUFFER_STEP_SECONDS,
    DEFAULT_SAFETY_BUFFER_SECONDS,
    DEFAULT_SKEW_SAFETY_MARGIN_SECONDS,
    DELTA_BASE_URL,
    LEDGER_REFRESH_INTERVAL,
    MAX_SIGNATURE_RETRIES,
    RETRY_BASE_DELAY_SECONDS,
    RETRY_MAX_DELAY_SECONDS,
)
from delta_gateway.domain.models import Credential

# Environment variables that win over YAML values
ENV_OVERRIDES = {
    "DELTA_API_KEY": "api_key",
    "DELTA_API_SECRET": "api_secret",
    "DELTA_BASE_URL": "base_url",
}

_ENV_PATTERN = re.compile(r'\$\{([^}]+)\}|\$([a-zA-Z_][a-zA-Z0-9_]*)')


class ExchangeConfig(BaseSettings):
    """Venue endpoint and credentials."""
    model_config = SettingsConfigDict(env_prefix="DELTA_", extra="ignore")

    base_url: str = DELTA_BASE_URL

    # Credentials (loaded from env or yaml)
    api_key: Optional[str] = None
    api_secret: Optional[str] = None

    request_timeout_seconds: float = Field(default=DEFAULT_API_TIMEOUT, gt=0, le=120)

    def to_credential(self) -> Credential:
        """
        Build the validated credential.

        Raises:
            InvalidCredentialFormat: Missing, unexpanded or malformed values
        """
        return Credential(key=self.api_key or "", secret=self.api_secret or "", base_url=self.base_url)


class ClockConfig(BaseSettings):
    """Timestamp buffer and server time resync policy."""
    model_config = SettingsConfigDict(extra="ignore")

    safety_buffer_seconds: int = Field(default=DEFAULT_SAFETY_BUFFER_SECONDS, ge=0, le=60)
    resync_interval_seconds: int = Field(default=DEFAULT_RESYNC_INTERVAL_SECONDS, ge=10, le=3600)
    retry_buffer_step_seconds: int = Field(default=DEFAULT_RETRY_BUFFER_STEP_SECONDS, ge=0, le=60)
    large_skew_threshold_seconds: int = Field(default=DEFAULT_LARGE_SKEW_THRESHOLD_SECONDS, ge=1, le=600)
    skew_safety_margin_seconds: int = Field(default=DEFAULT_SKEW_SAFETY_MARGIN_SECONDS, ge=0, le=60)


class RetryConfig(BaseSettings):
    """Expired-signature retry bound and backoff."""
    model_config = SettingsConfigDict(extra="ignore")

    max_retries: int = Field(default=MAX_SIGNATURE_RETRIES, ge=0, le=10, description="Retries after the first attempt")
    base_delay_seconds: float = Field(default=RETRY_BASE_DELAY_SECONDS, ge=0.0, le=10.0)
    max_delay_seconds: float = Field(default=RETRY_MAX_DELAY_SECONDS, ge=0.0, le=60.0)

    @model_validator(mode="after")
    def validate_delay_cap(self):
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must not be below base_delay_seconds")
        return self


class RiskConfig(BaseSettings):
    """Drawdown gate."""
    model_config = SettingsConfigDict(extra="ignore")

    max_drawdown_pct: float = Field(default=DEFAULT_MAX_DRAWDOWN_PCT, gt=0.0, le=100.0)


class PollingConfig(BaseSettings):
    """Background ledger refresh."""
    model_config = SettingsConfigDict(extra="ignore")

    enabled: bool = True
    refresh_interval_seconds: float = Field(default=LEDGER_REFRESH_INTERVAL, gt=0.0, le=300.0)


class MonitoringConfig(BaseSettings):
    """Logging configuration. Alert webhooks come from ALERT_WEBHOOK_URL / ALERT_CHAT_ID."""
    model_config = SettingsConfigDict(extra="ignore")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Optional[str] = None
    alerts_enabled: bool = True


class GatewayConfig(BaseSettings):
    """Main configuration class."""
    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        extra="ignore",
    )

    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    clock: ClockConfig = Field(default_factory=ClockConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    environment: Literal["dev", "paper", "prod"] = "prod"

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> "GatewayConfig":
        """Load configuration from YAML file, expanding ${VAR} references."""
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, "r") as f:
            raw_content = f.read()

        def replace_match(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))  # unresolved stays visible

        config_dict = yaml.safe_load(_ENV_PATTERN.sub(replace_match, raw_content)) or {}

        exchange = config_dict.setdefault("exchange", {}) or {}
        config_dict["exchange"] = exchange
        for env_name, field_name in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                exchange[field_name] = value

        if "ENVIRONMENT" in os.environ:
            config_dict["environment"] = os.environ["ENVIRONMENT"]

        return cls(**config_dict)


def load_config(config_path: str | Path | None = None) -> GatewayConfig:
    """
    Load and validate configuration.

    Args:
        config_path: Path to a YAML file. If None, uses the packaged config.yaml

    Raises:
        FileNotFoundError: If config file not found
        pydantic.ValidationError: If a value is out of range
    """
    if config_path is None:
        config_path = Path(__file__).parent / "config.yaml"
    return GatewayConfig.from_yaml(config_path)
