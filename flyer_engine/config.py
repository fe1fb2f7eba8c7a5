"""
Configuration settings for the Flyer Engine
"""
import os
import logging
from typing import Optional
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()

# Configure basic logger for config module
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings"""

    # Environment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    # API Keys
    ANTHROPIC_API_KEY: str = os.getenv("ANTHROPIC_API_KEY", "")
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")

    # Provider used when the stored setting is missing or unreadable
    DEFAULT_AI_PROVIDER: str = "anthropic"

    # Redis holds the admin-selected provider setting
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    REDIS_ENABLED: bool = True
    PROVIDER_SETTING_KEY: str = "app_settings:ai_provider"

    # External Services - default to localhost for local development
    PLAYWRIGHT_SERVICE_URL: str = os.getenv(
        "PLAYWRIGHT_SERVICE_URL",
        "http://localhost:3001"
    )
    CUSTOMIZATIONS_API_URL: str = os.getenv(
        "CUSTOMIZATIONS_API_URL",
        "http://localhost:3000/api"
    )

    # Monitoring
    SENTRY_DSN: Optional[str] = os.getenv("SENTRY_DSN")
    SENTRY_ENVIRONMENT: str = os.getenv("SENTRY_ENVIRONMENT", "development")
    SENTRY_TRACES_SAMPLE_RATE: float = float(
        os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")
    )

    # Claude Models
    CLAUDE_TEXT_MODEL: str = "claude-3-5-haiku-20241022"
    CLAUDE_VISION_MODEL: str = "claude-sonnet-4-20250514"
    CLAUDE_TOOL_MODEL: str = "claude-sonnet-4-20250514"

    # OpenAI Models
    OPENAI_TEXT_MODEL: str = "gpt-4o-mini"
    OPENAI_VISION_MODEL: str = "gpt-4o"
    OPENAI_TOOL_MODEL: str = "gpt-4o"

    # Generation Settings
    MAX_TOKENS: int = 16000
    STREAM_MAX_TOKENS: int = 8000
    TOOL_MAX_TOKENS: int = 1024
    MIN_HTML_LENGTH: int = 50  # Shorter completions are treated as degenerate

    # Provider call policy
    LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "120"))
    LLM_MAX_RETRIES: int = int(os.getenv("LLM_MAX_RETRIES", "2"))

    # Customization sessions
    AUTOSAVE_DELAY_SECONDS: float = 5.0
    CHANGE_DESCRIPTION_MAX_CHARS: int = 50
    DEFAULT_PAGE_SIZE: str = "8.5x11 inches"

    # CORS - comma-separated list of allowed origins
    CORS_ORIGINS: str = os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000"
    )

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()


def get_redis_client():
    """Build the shared async Redis client, or None when Redis is disabled.

    Connections are opened lazily, so a Redis outage at start-up only
    affects the calls made while it lasts.
    """
    if not settings.REDIS_ENABLED:
        return None

    import redis.asyncio as redis
    return redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=2
    )


def validate_required_config():
    """Validate required configuration on startup"""
    errors = []

    # Check for at least one AI API key
    if not settings.ANTHROPIC_API_KEY and not settings.OPENAI_API_KEY:
        errors.append("Either ANTHROPIC_API_KEY or OPENAI_API_KEY must be configured")

    if settings.DEFAULT_AI_PROVIDER not in ("anthropic", "openai"):
        errors.append(f"DEFAULT_AI_PROVIDER must be 'anthropic' or 'openai', got '{settings.DEFAULT_AI_PROVIDER}'")

    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        if settings.ENVIRONMENT == "production":
            raise ValueError(f"Missing required configuration: {', '.join(errors)}")

    return len(errors) == 0
