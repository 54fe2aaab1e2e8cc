"""Configuration management for the Note Augment Engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Anthropic credential. Optional at load time: it is validated per request
    # so that a bad key surfaces as a ConfigurationError, not a startup crash.
    ANTHROPIC_API_KEY: str | None = Field(default=None, description="Anthropic API key")
    CREDENTIAL_PREFIX: str = Field(default="sk-ant-", description="Required API key prefix")
    CREDENTIAL_MIN_LENGTH: int = Field(default=40, description="Minimum API key length")

    # Environment
    AUGMENT_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")

    # Generation
    NOTE_MODEL: str = Field(default="claude-sonnet-4-5", description="Model for both phases")
    GENERATION_TEMPERATURE: float = Field(
        default=0.3, description="Temperature when extended thinking is off"
    )
    STRUCTURE_REASONING_BUDGET: int = Field(
        default=12288, description="Thinking budget for the structured-document round"
    )
    NARRATIVE_REASONING_BUDGET: int = Field(
        default=20480, description="Thinking budget for narrative rounds"
    )
    STRUCTURE_MAX_TOKENS: int = Field(default=32000, description="Max output tokens, phase 1")
    NARRATIVE_MAX_TOKENS: int = Field(default=64000, description="Max output tokens, phase 2")
    WEB_SEARCH_ENABLED: bool = Field(default=True, description="Allow server-side web search")

    # Retry / pacing
    RETRY_MAX_ATTEMPTS: int = Field(default=3, description="Attempts per producer call")
    RETRY_BASE_DELAY_SECONDS: float = Field(default=1.0, description="Backoff base delay")
    PHASE_COOLDOWN_SECONDS: float = Field(
        default=1.5, description="Pause between the structured and narrative phases"
    )
    EMPTY_OUTPUT_COOLDOWN_SECONDS: float = Field(
        default=2.0, description="Pause before re-asking after an empty stream"
    )

    # Continuation
    MAX_CONTINUATIONS: int = Field(default=2, description="Extra narrative rounds allowed")
    NARRATIVE_HARD_CAP: int = Field(
        default=100_000, description="Buffer length that stops continuation"
    )

    # Post-processing
    TOPIC_CACHE_MAX_ENTRIES: int = Field(
        default=256, description="Narratives whose topics are kept per assembler"
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance
    """
    return Settings()
