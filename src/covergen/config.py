from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Covergen"
    app_env: str = "development"
    app_host: str = "127.0.0.1"
    app_port: int = 8788
    log_level: str = "INFO"

    database_url: str = "sqlite:///./data/covergen.db"
    data_dir: Path = Path("./data")
    export_dir: Path = Path("./data/exports")

    # Used when no provider settings record has been saved yet.
    default_provider: str = ""
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.1:8b"
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"

    llm_timeout_sec: float = 30.0
    default_temperature: float = 0.7
    default_max_tokens: int = 8192

    rate_limit_max_requests: int = 10
    rate_limit_window_sec: float = 60.0

    pdf_render_url: str = "http://localhost:8080/"
    pdf_timeout_sec: float = 5.0
    pdf_max_attempts: int = 3
    pdf_retry_delay_sec: float = 1.0
    pdf_wakeup_debounce_sec: int = 600

    worker_autostart: bool = True
    cors_origins: str = "http://127.0.0.1:8788"

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, value: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if value not in allowed:
            raise ValueError(f"app_env must be one of {sorted(allowed)}")
        return value

    @field_validator("rate_limit_max_requests")
    @classmethod
    def validate_rate_limit(cls, value: int) -> int:
        if value < 1:
            raise ValueError("rate_limit_max_requests must be at least 1")
        return value

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
