"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with CHATRELAY_ prefix.
No YAML files — env vars (12-factor app style), plus an optional .env
file in the working directory for local development.
"""

from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All app configuration. Set via CHATRELAY_* env vars."""

    # Server
    environment: str = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 3000

    # CORS
    cors_origins: list[str] = ["*"]

    # Browser client (served at / when set)
    static_dir: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Relay
    send_timeout_seconds: float = 5.0
    max_channels_per_connection: int = 100
    max_channel_name_length: int = 164
    max_payload_bytes: int = 10240  # 10 KB per event
    notify_subscription_count: bool = True

    model_config = {"env_prefix": "CHATRELAY_", "env_file": ".env", "extra": "ignore"}

    @model_validator(mode="after")
    def validate_production_settings(self):
        """Wildcard CORS is only acceptable in development."""
        if self.environment != "development" and "*" in self.cors_origins:
            raise ValueError(
                "CHATRELAY_CORS_ORIGINS must list explicit origins in "
                "non-development environments"
            )
        return self


def get_settings() -> Settings:
    """Load settings from the current environment."""
    return Settings()
