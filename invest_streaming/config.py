"""
Configuration loader from environment variables.
Streaming endpoint, credentials and logging switches with sensible defaults.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Any


class Settings(BaseSettings):
    """
    Client settings loaded from environment variables (or a local .env file).
    """

    @field_validator("LOG_JSON", mode="before")
    @classmethod
    def strip_whitespace(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("INVEST_SECRET_TOKEN", mode="before")
    @classmethod
    def strip_token(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ==========================================================================
    # Runtime
    # ==========================================================================
    ENVIRONMENT: str = "development"  # "development", "staging", "production"

    # ==========================================================================
    # Streaming Upstream
    # ==========================================================================
    INVEST_STREAMING_URL: str = "wss://api-invest.tinkoff.ru/openapi/md/v1/md-openapi/ws"
    INVEST_SECRET_TOKEN: str = ""

    # Liveness ping period while the socket is open
    INVEST_PING_INTERVAL: float = 15.0

    # ==========================================================================
    # Logging
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    LOG_JSON: bool = False  # Set True for production JSON logs

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


# Global settings instance
settings = Settings()
