from datetime import timedelta
from functools import lru_cache
import logging
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing or invalid."""
    pass


def to_seconds(value: float | timedelta | None) -> float | None:
    """Normalize a duration given as seconds or a timedelta."""
    if value is None:
        return None
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def validate_durations(refresh_period: float | None, validity: float | None) -> list[str]:
    """Check refresh/validity durations.

    Returns a list of error messages; empty when both durations are usable.
    A validity of None means no grace tier and is allowed.
    """
    errors: list[str] = []

    if refresh_period is None or refresh_period <= 0:
        errors.append(f"REFRESH_PERIOD_SECONDS must be positive, got {refresh_period}")

    if validity is not None and validity <= 0:
        errors.append(
            f"VALIDITY_SECONDS must be positive or unset, got {validity}"
        )

    return errors


class Settings(BaseSettings):
    """Cache configuration pulled from environment variables or .env file."""

    refresh_period_seconds: float = 60.0
    # Unset disables the grace tier: a failed refresh evicts immediately
    validity_seconds: float | None = 300.0

    timer_daemon: bool = True

    model_config = SettingsConfigDict(
        env_prefix="REFRESH_CACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def validate_required(self) -> list[str]:
        """Validate configuration settings.

        Returns a list of error messages for invalid settings.
        """
        errors = validate_durations(self.refresh_period_seconds, self.validity_seconds)

        if self.validity_seconds is None:
            logger.warning(
                "Config warning: VALIDITY_SECONDS not set, a failed refresh evicts the cached value"
            )

        return errors


def validate_config_on_startup(settings: Settings) -> None:
    """Validate configuration and raise if settings are invalid."""
    errors = settings.validate_required()

    if errors:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

    logger.info("Configuration validated successfully")


@lru_cache
def get_settings() -> Settings:
    return Settings()
