"""Configuration management for the SentinelHub pipeline.

Loads service endpoints, AI provider keys and pipeline policy from environment
variables using Pydantic. Secrets belong in .env, never in code.

Nothing is required: every collaborator degrades gracefully when its settings
are absent, so the package imports cleanly on a bare machine.

Usage:
    from sentinelhub.config import settings

    print(settings.gateway_base_url)
    print(settings.pipeline_timeout_seconds)
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """SentinelHub pipeline configuration from environment variables.

    Attributes:
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR)
        gateway_base_url: Base URL of the API gateway hosting the scanners
        gateway_rate_limit: Requests/second towards the gateway
        scan_timeout_seconds: HTTP timeout for a single scan call
        github_token: Token forwarded to the repository scanner
        pipeline_timeout_seconds: Watchdog delay before the timeout notice fires
        history_limit: Number of finished runs kept in memory
        snapshot_dir: Directory for persisted Parquet snapshots
        notify_enabled: Whether the watchdog may send timeout notices
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore unknown env vars
    )

    # System Settings
    log_level: str = Field(default="INFO", description="Logging level")

    # Scanner gateway
    gateway_base_url: str = Field(
        default="http://localhost:5000",
        description="API gateway base URL (scanners + notifications)",
    )
    gateway_rate_limit: int = Field(default=5, ge=1, description="Gateway requests/second")
    scan_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="HTTP timeout for one scan request",
    )
    github_token: str | None = Field(
        default=None,
        description="GitHub token forwarded to the repository scanner",
    )

    # Pipeline policy
    pipeline_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Seconds before the long-running scan notice fires",
    )
    history_limit: int = Field(
        default=50,
        ge=1,
        le=10_000,
        description="Finished runs kept in the in-memory history",
    )
    snapshot_dir: str = Field(default="data/snapshots", description="Parquet snapshot directory")

    # Notifications (optional)
    notify_enabled: bool = Field(default=True, description="Send long-running scan notices")

    # AI enrichment (optional, stages degrade if absent)
    ai_provider: str | None = Field(
        default=None,
        description="Text generation provider: 'gemini', 'openai', 'anthropic' or 'ollama'",
    )
    gemini_api_key: str | None = Field(default=None, description="Google Gemini API key")
    openai_api_key: str | None = Field(default=None, description="OpenAI API key")
    anthropic_api_key: str | None = Field(default=None, description="Anthropic API key")
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama base URL for local generation",
    )
    ai_model: str | None = Field(default=None, description="Model override (default per provider)")
    ai_max_tokens: int = Field(
        default=600,
        ge=64,
        le=4096,
        description="Maximum tokens for enrichment responses",
    )
    ai_timeout_seconds: float = Field(default=30.0, gt=0, description="AI HTTP timeout")

    @field_validator("ai_provider")
    @classmethod
    def validate_ai_provider(cls, v: str | None) -> str | None:
        """Ensure AI provider is one we can call."""
        if v is None or v == "":
            return None
        v_lower = v.lower()
        if v_lower not in {"gemini", "openai", "anthropic", "ollama"}:
            raise ValueError(
                f"ai_provider must be 'gemini', 'openai', 'anthropic' or 'ollama', got '{v}'"
            )
        return v_lower

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid:
            raise ValueError(f"log_level must be one of {valid}, got {v}")
        return v_upper

    @field_validator("gateway_base_url", "ollama_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs so paths can be appended verbatim."""
        return v.rstrip("/")

    def ai_api_key(self) -> str | None:
        """Return the API key matching the configured provider."""
        return {
            "gemini": self.gemini_api_key,
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
        }.get(self.ai_provider or "")


# Global settings instance, loaded once at import
settings = Settings()
