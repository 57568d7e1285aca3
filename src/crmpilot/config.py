"""Configuration settings for the application."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = False
    DATA_DIR: str = "./data"
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # LLM Configuration
    LLM_PROVIDER: str = "anthropic"  # Options: anthropic, openai
    ANTHROPIC_API_KEY: str | None = None
    OPENAI_API_KEY: str | None = None
    PLANNER_MODEL: str = "claude-3-5-haiku-20241022"
    JUDGE_MODEL: str = "claude-3-5-haiku-20241022"
    LLM_MAX_TOKENS: int = 1000
    LLM_TIMEOUT_SECONDS: float = 60.0

    # Orchestration
    MAX_ITERATIONS: int = 10
    TOOL_TIMEOUT_SECONDS: float = 30.0

    # Remote tool broker
    COMPOSIO_API_KEY: str | None = None
    COMPOSIO_USER_ID: str = "default"

    # Integrations
    ATTIO_AUTH_TOKEN: str | None = None
    SLACK_WEBHOOK: str | None = None
    SMARTLEAD_API_KEY: str | None = None
    STRIPE_API_KEY: str | None = None
    STRIPE_SIGNING_SECRET: str | None = None

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
