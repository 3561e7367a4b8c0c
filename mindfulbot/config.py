from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "sqlite+pysqlite:///./mindfulbot.db"
    storage_key: str = "mindfulbot_chat_sessions_v2"
    frontend_url: str = "http://localhost:5173"
    dev_mode: bool = False

    llm_provider: Literal["sealion", "openai", "ollama", "mock"] = "sealion"
    sealion_base_url: str = "https://api.sea-lion.ai/v1"
    sealion_api_key: str | None = None
    sealion_model: str = "aisingapore/Gemma-SEA-LION-v4-27B-IT"
    openai_api_key: str | None = None
    openai_chat_model: str = "gpt-4o-mini"
    ollama_base_url: str = "http://ollama:11434"
    ollama_model: str = "gemma2:2b"

    # Sampling
    llm_max_tokens: int = 200
    llm_temperature: float = 0.7
    llm_top_p: float = 0.9

    # Resilience
    llm_timeout_seconds: float = 30.0  # single attempt, no retry
    persist_max_attempts: int = 3  # sqlite "database is locked" retries

    # Conversation
    context_window_messages: int = 8
    title_max_chars: int = 20

    # Structured logging
    log_level: str = "INFO"
    log_format: str = "json"  # "json" for production, "text" for local dev


settings = Settings()
