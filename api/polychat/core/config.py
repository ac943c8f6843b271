import logging
import os
from functools import lru_cache
from pathlib import Path

from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # API settings
    DEBUG: bool = False
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Polychat"

    # CORS settings - accepts string or list, normalized to list[str] by validator
    CORS_ORIGINS: str | list[str] = "*"

    # Directory settings
    DATA_DIR: str = "api/data"

    # Translation endpoint (any OpenAI-compatible chat completion API)
    TRANSLATION_API_URL: str = "https://api.featherless.ai/v1"
    TRANSLATION_API_KEY: str = ""
    TRANSLATION_MODEL: str = "meta-llama/Meta-Llama-3.1-8B-Instruct"
    TRANSLATION_TEMPERATURE: float = 0.1  # Low for deterministic output
    TRANSLATION_TIMEOUT_SECONDS: float = 10.0  # Per external call
    TRANSLATION_MAX_RETRIES: int = 3  # Total attempts, including the first
    TRANSLATION_RETRY_BASE_DELAY: float = 1.0  # Seconds
    TRANSLATION_RETRY_MAX_DELAY: float = 10.0  # Seconds
    TRANSLATION_RATE_LIMIT_MIN_DELAY: float = 5.0  # Floor for 429 backoff
    TRANSLATION_RATE_LIMIT_MAX_DELAY: float = 30.0  # Cap on honored Retry-After
    TRANSLATION_MAX_TEXT_LENGTH: int = 5000  # Characters

    # Translation cache
    TRANSLATION_CACHE_MAX_ENTRIES: int = 1000  # Fast tier capacity
    TRANSLATION_CACHE_MAX_AGE_SECONDS: int = 86400  # 24 hours
    TRANSLATION_CACHE_SWEEP_SECONDS: int = 300  # Expired entry sweep interval
    TRANSLATION_CACHE_DB_ENABLED: bool = True  # Durable SQLite tier

    # Realtime push channel
    REALTIME_HEARTBEAT_SECONDS: float = 30.0
    REALTIME_QUEUE_SIZE: int = 256  # Pending frames per connection

    # Fan-out
    FANOUT_RECIPIENT_TIMEOUT_SECONDS: float = 45.0  # Upper bound per recipient
    FANOUT_MIN_CONFIDENCE: float = 0.0  # Translations must score above this

    # Environment settings
    ENVIRONMENT: str = "development"

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="allow",
    )

    @property
    def TRANSLATION_CACHE_DB_PATH(self) -> str:
        """Complete path to the durable translation cache database"""
        return os.path.join(self.DATA_DIR, "translation_cache.db")

    @field_validator("TRANSLATION_API_URL")
    @classmethod
    def validate_translation_api_url(cls, v: str) -> str:
        """Require an http(s) base URL and drop any trailing slash."""
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("TRANSLATION_API_URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("TRANSLATION_TEMPERATURE")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        """Validate temperature is within the range accepted by chat APIs.

        Args:
            v: Temperature value

        Returns:
            Validated temperature value

        Raises:
            ValueError: If temperature is outside 0.0-2.0
        """
        if not 0.0 <= v <= 2.0:
            raise ValueError(f"TRANSLATION_TEMPERATURE must be 0.0-2.0, got {v}")
        return v

    @field_validator("TRANSLATION_MAX_RETRIES", "TRANSLATION_CACHE_MAX_ENTRIES")
    @classmethod
    def validate_positive_int(cls, v: int, info: ValidationInfo) -> int:
        if v < 1:
            raise ValueError(f"{info.field_name} must be at least 1, got {v}")
        return v

    @field_validator(
        "TRANSLATION_TIMEOUT_SECONDS",
        "TRANSLATION_RATE_LIMIT_MAX_DELAY",
        "REALTIME_HEARTBEAT_SECONDS",
        "FANOUT_RECIPIENT_TIMEOUT_SECONDS",
    )
    @classmethod
    def validate_positive_seconds(cls, v: float, info: ValidationInfo) -> float:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got {v}")
        return v

    @field_validator("FANOUT_MIN_CONFIDENCE")
    @classmethod
    def validate_min_confidence(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"FANOUT_MIN_CONFIDENCE must be 0.0-1.0, got {v}")
        return v

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        """Parse comma-separated CORS origins into a list.

        Args:
            v: Either "*", a comma-separated string, or a list

        Returns:
            List of origin strings
        """
        if isinstance(v, list):
            return [origin.strip() for origin in v if origin.strip()]
        if not v or v.strip() == "*":
            return ["*"]
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    @field_validator("CORS_ORIGINS")
    @classmethod
    def validate_cors_in_production(cls, v: list[str], info: ValidationInfo) -> list[str]:
        """Warn when wildcard CORS is used in production."""
        # ENVIRONMENT is declared after CORS_ORIGINS, so it may not be validated yet
        environment = str(
            info.data.get("ENVIRONMENT") or os.getenv("ENVIRONMENT", "development")
        ).lower()
        if environment == "production" and "*" in v:
            logger.warning(
                "CORS_ORIGINS allows all origins in production. "
                "Set CORS_ORIGINS to the web client's origin."
            )
        return v

    def ensure_data_dirs(self) -> None:
        """Create data directories if they don't exist.

        Called during application startup (lifespan) to avoid
        import-time side effects and I/O operations.
        """
        Path(self.DATA_DIR).mkdir(parents=True, exist_ok=True)


# Thread-safe lazy initialization using lru_cache
@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings instance with lazy initialization.

    Settings are only created once on first access, then cached for subsequent calls.
    This prevents module-level side effects and allows testing without environment variables.

    Returns:
        Settings: Application settings object
    """
    return Settings()


def reset_settings() -> None:
    """Reset the cached settings instance.

    Useful for testing when you need to reload settings with different values.
    """
    get_settings.cache_clear()
