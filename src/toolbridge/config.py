"""Configuration settings for the application."""

from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 3001
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Session transport
    MCP_SERVER_URL: str = "http://localhost:3001/mcp"
    SESSION_IDLE_TIMEOUT: float = 1800.0  # seconds, 0 disables idle reaping
    SESSION_REAP_INTERVAL: float = 60.0
    SSE_KEEPALIVE: float = 15.0

    # Tool execution
    TOOL_TIMEOUT: float = 15.0
    HTTP_TIMEOUT: float = 10.0
    NEWS_MAX_ITEMS: int = 5

    # LLM Configuration
    PLANNER: str = "openai"  # Options: openai, anthropic, tgi, rules
    PLANNER_FALLBACK: bool = True
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-latest"
    TGI_ENDPOINT: str = "http://tgi:8080/generate"

    # Other API Keys
    GITHUB_TOKEN: str | None = None
    TWITTER_BEARER_TOKEN: str | None = None

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
