"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Secure defaults (no API keys or SMTP passwords in code)
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables from .env file
load_dotenv()


class AIProviderConfig(BaseModel):
    """AI provider configuration with secure defaults."""

    openai_api_key: str | None = Field(None, description="OpenAI API key")
    advice_model: str = Field(
        default="openai:gpt-4o-mini", description="Model used to generate blood pressure advice"
    )

    temperature: float = Field(default=0.3, ge=0.0, le=1.0, description="Sampling temperature")
    max_tokens: int = Field(default=400, gt=0, description="Max tokens in a single advice reply")
    timeout_seconds: float = Field(
        default=30.0, gt=0.0, description="Upper bound on a single inference call"
    )

    @field_validator("openai_api_key")
    def validate_api_key(cls, v):
        if not v:
            return None
        if v == "your-openai-api-key-here":
            raise ValueError("AI provider API key must be set in environment or .env file")
        if not v.startswith("sk-"):
            raise ValueError("AI provider API key must start with 'sk-'")
        return v


class AdviceConfig(BaseModel):
    """Tuning for the advice pipeline: cache, rate limiter and retry policy."""

    cache_ttl_seconds: float = Field(
        default=3600.0, gt=0.0, description="Lifetime of a cached advice entry"
    )
    cache_max_entries: int = Field(
        default=1024, gt=0, description="Oldest entries are evicted beyond this size"
    )
    cache_sweep_interval_seconds: float = Field(
        default=300.0, gt=0.0, description="Interval of the background expired-entry sweep"
    )
    min_call_interval_seconds: float = Field(
        default=1.0, ge=0.0, description="Minimum spacing between inference call starts"
    )
    max_attempts: int = Field(
        default=3, gt=0, description="Attempts per advice request, including the first"
    )
    base_delay_seconds: float = Field(
        default=2.0, ge=0.0, description="Backoff before the first retry"
    )
    backoff_multiplier: float = Field(
        default=2.0, ge=1.0, description="Backoff growth factor per retry"
    )


class DatabaseConfig(BaseModel):
    """Database configuration."""

    url: str = Field(
        default="sqlite+aiosqlite:///./bp_tracker.db", description="SQLAlchemy async database URL"
    )
    echo: bool = Field(default=False, description="Log emitted SQL statements")


class EmailConfig(BaseModel):
    """Email delivery configuration."""

    backend: Literal["console", "smtp"] = Field(default="console", description="Email backend")
    smtp_host: str | None = None
    smtp_port: int = Field(default=587, gt=0, lt=65536)
    smtp_user: str | None = None
    smtp_password: str | None = None
    from_email: str | None = Field(None, description="Sender address, defaults to smtp_user")
    use_tls: bool = True

    @model_validator(mode="after")
    def smtp_requires_credentials(self) -> "EmailConfig":
        if self.backend == "smtp" and not all([self.smtp_host, self.smtp_user, self.smtp_password]):
            raise ValueError("SMTP backend requires smtp_host, smtp_user and smtp_password")
        return self

    @property
    def sender(self) -> str:
        return self.from_email or self.smtp_user or "noreply@localhost"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    ai_provider: AIProviderConfig = Field(default_factory=AIProviderConfig)
    advice: AdviceConfig = Field(default_factory=AdviceConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    def _parse_bool(val: str | None, default: bool) -> bool:
        if val is None:
            return default
        return val.strip().lower() in {"1", "true", "yes", "on"}

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    ai_config = AIProviderConfig(
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        advice_model=os.getenv("ADVICE_MODEL", "openai:gpt-4o-mini"),
        temperature=float(os.getenv("AI_TEMPERATURE", "0.3")),
        max_tokens=int(os.getenv("AI_MAX_TOKENS", "400")),
        timeout_seconds=float(os.getenv("AI_TIMEOUT_SECONDS", "30.0")),
    )

    advice_config = AdviceConfig(
        cache_ttl_seconds=float(os.getenv("ADVICE_CACHE_TTL_SECONDS", "3600")),
        cache_max_entries=int(os.getenv("ADVICE_CACHE_MAX_ENTRIES", "1024")),
        cache_sweep_interval_seconds=float(
            os.getenv("ADVICE_CACHE_SWEEP_INTERVAL_SECONDS", "300")
        ),
        min_call_interval_seconds=float(os.getenv("ADVICE_MIN_CALL_INTERVAL_SECONDS", "1.0")),
        max_attempts=int(os.getenv("ADVICE_MAX_ATTEMPTS", "3")),
        base_delay_seconds=float(os.getenv("ADVICE_BASE_DELAY_SECONDS", "2.0")),
        backoff_multiplier=float(os.getenv("ADVICE_BACKOFF_MULTIPLIER", "2.0")),
    )

    database_config = DatabaseConfig(
        url=os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./bp_tracker.db"),
        echo=_parse_bool(os.getenv("DATABASE_ECHO"), False),
    )

    email_backend = os.getenv("EMAIL_BACKEND", "console").strip().lower()
    email_config = EmailConfig(
        backend="smtp" if email_backend == "smtp" else "console",
        smtp_host=os.getenv("SMTP_HOST"),
        smtp_port=int(os.getenv("SMTP_PORT", "587")),
        smtp_user=os.getenv("SMTP_USER"),
        smtp_password=os.getenv("SMTP_PASS"),
        from_email=os.getenv("SMTP_FROM_EMAIL"),
        use_tls=_parse_bool(os.getenv("SMTP_USE_TLS"), True),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        ai_provider=ai_config,
        advice=advice_config,
        database=database_config,
        email=email_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def validate_config() -> None:
    """Validate configuration at startup."""
    try:
        config = get_config()
        print(f"✅ Configuration loaded for {config.environment} environment")

        if config.ai_provider.openai_api_key:
            print("✅ OpenAI API key configured")
        else:
            print("⚠️  No OpenAI API key configured, advice will fall back")

    except Exception as e:
        print(f"❌ Configuration validation failed: {e}")
        raise


def print_config_summary() -> None:
    """Print configuration summary for debugging."""
    config = get_config()

    print("\n🔧 CONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")

    print("\n🤖 AI CONFIGURATION")
    print(f"Advice Model: {config.ai_provider.advice_model}")
    print(f"Temperature: {config.ai_provider.temperature}")
    print(f"Max Tokens: {config.ai_provider.max_tokens}")
    print(f"Timeout: {config.ai_provider.timeout_seconds}s")

    print("\n🩺 ADVICE PIPELINE")
    print(f"Cache TTL: {config.advice.cache_ttl_seconds}s ({config.advice.cache_max_entries} max)")
    print(f"Min Call Interval: {config.advice.min_call_interval_seconds}s")
    print(
        f"Retry: {config.advice.max_attempts} attempts, "
        f"{config.advice.base_delay_seconds}s base x{config.advice.backoff_multiplier}"
    )

    print("\n💾 STORAGE & EMAIL")
    print(f"Database: {config.database.url}")
    print(f"Email Backend: {config.email.backend}")


if __name__ == "__main__":
    validate_config()
    print_config_summary()
