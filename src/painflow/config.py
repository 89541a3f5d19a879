"""Configuration management for painflow."""

from pathlib import Path

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings, loaded from env vars and optionally overridden by a YAML config file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Local LLM endpoint (LM Studio / any OpenAI-compatible server)
    llm_base_url: str = "http://localhost:1234"
    llm_model: str = "local-model"
    llm_api_key: str = "lm-studio"
    llm_temperature: float = 0.2
    llm_request_timeout_seconds: float = Field(default=1800.0, gt=0)
    llm_health_timeout_seconds: float = Field(default=5.0, gt=0)
    llm_max_attempts: int = Field(default=1, ge=1)
    llm_backoff_seconds: float = 1.0

    # Analysis
    analysis_batch_size: int = Field(default=50, ge=1)
    item_char_limit: int = Field(default=1200, ge=1)
    status_history_limit: int = Field(default=5, ge=0)

    # Storage
    database_url: str = "sqlite:///data/painflow.db"
    database_echo: bool = False

    # Runtime
    environment: str = "development"
    log_level: str = "INFO"

    @classmethod
    def from_yaml(cls, config_path: str | Path, **overrides) -> "Settings":
        """Load settings from a YAML config file, with env vars and overrides applied on top."""
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                yaml_config = yaml.safe_load(f) or {}
        else:
            yaml_config = {}
        merged = {**yaml_config, **overrides}
        return cls(**merged)

    def resolved_llm_api_base(self) -> str:
        """Return the OpenAI-compatible API root, always ending in `/v1`."""

        normalized = self.llm_base_url.strip().rstrip("/")
        if not normalized.endswith("/v1"):
            normalized = f"{normalized}/v1"
        return normalized

    def resolved_models_url(self) -> str:
        """Return the cheap models-list endpoint used as a reachability probe."""

        return f"{self.resolved_llm_api_base()}/models"

    def exposes_internal_errors(self) -> bool:
        """Return whether internal error details may be shown to callers."""

        return self.environment.strip().lower() != "production"

    def sqlite_path(self) -> Path | None:
        """Return the on-disk SQLite file for file-backed SQLite URLs."""

        prefix = "sqlite:///"
        if not self.database_url.startswith(prefix):
            return None
        raw = self.database_url[len(prefix) :]
        if not raw or raw == ":memory:":
            return None
        return Path(raw)
