"""
Configuration Settings.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings."""

    # App info
    app_name: str = "AI Editor Server"
    app_version: str = "1.0.0"
    debug: bool = True

    # Security
    secret_key: str = "your-secret-key-change-this-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7  # 7 days

    # Storage
    local_storage_path: str = "./data"

    # Completion provider
    llm_provider: str = "openai"
    llm_api_key: Optional[str] = None
    llm_model: Optional[str] = None  # uses provider default if not set
    llm_base_url: Optional[str] = None  # uses provider default if not set
    llm_temperature: float = 0.7
    llm_max_tokens: Optional[int] = None
    llm_request_timeout_seconds: float = 120.0
    llm_token_timeout_seconds: float = 60.0  # max wait between two streamed tokens

    # Legacy key name (still accepted)
    openai_api_key: Optional[str] = None

    # Completion websocket liveness
    liveness_tick_seconds: float = 1.0
    liveness_timeout_seconds: float = 10.0

    # CORS
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:8080",
        "http://127.0.0.1:3000",
    ]

    # Logging configuration
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file_path: str = "./logs/ai_editor.log"
    log_file_enabled: bool = True
    log_console_enabled: bool = True
    log_json_format: bool = True  # JSON format for files, human-readable for console
    log_api_requests: bool = True  # Log all API requests/responses
    log_llm_calls: bool = True  # Log every completion stream with token counts

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
