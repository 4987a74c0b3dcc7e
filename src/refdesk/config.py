"""Configuration settings for the application."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # LLM Configuration
    LLM_PROVIDER: str = "openai"  # Options: openai, anthropic, tgi
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-latest"
    TGI_ENDPOINT: str = "http://tgi:8080/generate"
    SUMMARY_MODEL: str | None = None  # Falls back to the provider's default model
    LLM_TEMPERATURE: float = 0.0

    # Agent loop / memory
    LLM_CALL_LIMIT: int = 5
    MAX_CONTEXT_WINDOW: int | None = 6
    CONVERSATION_BUFFER_SIZE: int | None = 3
    SUMMARIZATION_ENABLED: bool = True

    # Resilience (retry + circuit breaker)
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_MS: int = 1000
    RETRY_MAX_DELAY_MS: int = 10000
    RETRY_BACKOFF_MULTIPLIER: float = 2.0
    RETRY_TIMEOUT_MS: int = 30000
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_RECOVERY_TIMEOUT_MS: int = 60000

    # LibCal API (opening hours and room availability tools)
    LIBCAL_OAUTH_URL: str | None = None
    LIBCAL_CLIENT_ID: str | None = None
    LIBCAL_CLIENT_SECRET: str | None = None
    LIBCAL_GRANT_TYPE: str = "client_credentials"
    LIBCAL_HOUR_URL: str | None = None
    LIBCAL_LOCATION_ID: str = "8113"
    LIBCAL_SEARCH_AVAILABLE_URL: str | None = None
    LIBCAL_BUILDING_ID: str | None = None

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
