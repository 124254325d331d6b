"""Application configuration using Pydantic Settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./taskforge.db"

    # Worker
    WORKER_POLL_INTERVAL: float = 5
    WORKER_COUNT: int = 1
    MAX_JOB_RETRIES: int = 3

    # In-attempt retries (retry_agent), 0 disables
    AGENT_INLINE_RETRIES: int = 0
    AGENT_RETRY_DELAY_MS: int = 1000

    # API
    JOB_LIST_MAX_LIMIT: int = 50

    # Monitoring
    PERSIST_EXECUTION_LOGS: bool = True
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


# Global settings instance
settings = Settings()
