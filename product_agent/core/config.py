"""
Application configuration management using Pydantic Settings.
Handles environment-based configuration for model providers, run defaults, workspace storage and logging.
"""
import os
from typing import Optional, List
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application settings
    APP_NAME: str = "Product Agent Orchestrator API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Server settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # CORS settings
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
    ]
    ALLOWED_METHODS: List[str] = ["GET", "POST", "OPTIONS"]
    ALLOWED_HEADERS: List[str] = ["*"]

    # AI Provider settings
    GEMINI_API_KEY: Optional[str] = os.getenv("GEMINI_API_KEY")
    GROQ_API_KEY: Optional[str] = os.getenv("GROQ_API_KEY")
    OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
    OPENROUTER_API_KEY: Optional[str] = os.getenv("OPENROUTER_API_KEY")
    OPENROUTER_BASE_URL: str = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")

    # Provider failover order
    PRIMARY_AI_PROVIDER: str = "openrouter"
    SECONDARY_AI_PROVIDER: str = "openai"
    TERTIARY_AI_PROVIDER: str = "gemini"

    # Model names (configurable via env)
    GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
    GROQ_MODEL: str = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    OPENROUTER_MODEL: str = os.getenv("OPENROUTER_MODEL", "qwen/qwen-2.5-72b-instruct")

    # Run defaults (overridable per run through input.settings)
    DEFAULT_MODEL: str = os.getenv("ORCHESTRATOR_MODEL", "openrouter/qwen/qwen-2.5-72b-instruct")
    AI_MAX_TOKENS: int = 8000
    AI_TEMPERATURE: float = 0.2
    AI_TIMEOUT_SECONDS: int = 60

    # Generation retry / repair policy
    GENERATION_RETRY_ATTEMPTS: int = 3
    GENERATION_RETRY_BACKOFF_MS: int = 500
    GENERATION_FALLBACK_MODEL: Optional[str] = os.getenv("GENERATION_FALLBACK_MODEL")

    # Workspace settings
    WORKSPACE_BACKEND: str = os.getenv("WORKSPACE_BACKEND", "filesystem")  # 'filesystem' or 'memory'
    WORKSPACE_ROOT: str = os.getenv("WORKSPACE_ROOT", "./data/runs")
    WORKSPACE_PERSIST_ARTIFACTS: bool = True
    WORKSPACE_TEMP_SUBDIR: str = "tmp"

    # Progress streaming
    PROGRESS_STREAM_ENABLED: bool = True
    # Finished runs whose progress history stays available for replay
    PROGRESS_HISTORY_FINISHED_RUNS: int = 50

    # Finished run summaries kept in memory for lookup and resume
    RUN_HISTORY_LIMIT: int = 100

    # Logging settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @field_validator("AI_TEMPERATURE")
    def validate_temperature(cls, v):
        """Keep the default temperature inside the range every provider accepts."""
        if v < 0 or v > 2:
            raise ValueError("AI_TEMPERATURE must be between 0 and 2")
        return v

    @field_validator("AI_MAX_TOKENS")
    def validate_max_tokens(cls, v):
        """Ensure the token budget leaves room for a structured response."""
        if v < 128:
            raise ValueError("AI_MAX_TOKENS must be at least 128")
        return v

    @field_validator("GENERATION_RETRY_ATTEMPTS")
    def validate_retry_attempts(cls, v):
        if v < 1:
            raise ValueError("GENERATION_RETRY_ATTEMPTS must be at least 1")
        return v

    @field_validator("RUN_HISTORY_LIMIT", "PROGRESS_HISTORY_FINISHED_RUNS")
    def validate_history_limits(cls, v):
        if v < 1:
            raise ValueError("history limits must be at least 1")
        return v

    @field_validator("WORKSPACE_BACKEND")
    def validate_workspace_backend(cls, v):
        """Validate workspace backend name."""
        allowed = ("filesystem", "memory")
        if v not in allowed:
            raise ValueError(f"WORKSPACE_BACKEND must be one of: {allowed}")
        return v

    @field_validator("LOG_LEVEL")
    def validate_log_level(cls, v):
        """Normalize and validate the logging level name."""
        level = (v or "").upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError("LOG_LEVEL must be a standard logging level name")
        return level

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()
