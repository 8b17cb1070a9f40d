"""Configuration management using pydantic-settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from pathlib import Path
from typing import List, Optional
import os

from .paths import default_summaries_path


def _default_cors_origins() -> List[str]:
    """Build CORS defaults, honoring FRONTEND_PORT when set."""
    frontend_port = os.getenv("FRONTEND_PORT", "").strip()
    origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    if frontend_port:
        origins = [
            f"http://localhost:{frontend_port}",
            f"http://127.0.0.1:{frontend_port}",
            *origins,
        ]
    return origins


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Personas and summaries
    personas_config_path: Optional[Path] = None
    summaries_path: Optional[Path] = Field(default_factory=default_summaries_path)

    # Text generation
    llm_api_key: Optional[str] = None
    llm_base_url: Optional[str] = None
    default_model_id: str = "gpt-4o-mini"
    default_temperature: float = 0.7

    # Turn timing (seconds, 0 disables)
    min_think_seconds: float = 10.0
    inactivity_timeout_seconds: float = 30.0
    session_deadline_seconds: float = 720.0
    generation_timeout_seconds: float = 60.0
    max_consecutive_compensations: int = 2

    # CORS Configuration
    cors_origins: List[str] = Field(default_factory=_default_cors_origins)

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("summaries_path", mode="before")
    @classmethod
    def parse_summaries_path(cls, value):
        if value in (None, ""):
            return None
        if isinstance(value, str):
            return Path(os.path.expandvars(value)).expanduser()
        return value

    @field_validator(
        "min_think_seconds",
        "inactivity_timeout_seconds",
        "session_deadline_seconds",
        "generation_timeout_seconds",
        "max_consecutive_compensations",
    )
    @classmethod
    def non_negative(cls, value):
        if value < 0:
            raise ValueError("timing values must be >= 0")
        return value


# Global settings instance
settings = Settings()
