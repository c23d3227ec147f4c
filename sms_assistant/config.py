from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration - required from .env
    DATABASE_URL: str

    # Logging Configuration - required from .env
    LOG_LEVEL: str

    # Webhook Security - required from .env (Twilio signing key)
    WEBHOOK_SECRET: str
    SKIP_SIGNATURE_VALIDATION: bool = False
    # Public URL Twilio posts to, when running behind a proxy
    PUBLIC_BASE_URL: str = ""

    # Admin endpoints (/status, /messages)
    ADMIN_API_KEY: str = ""
    APP_ENV: str = "development"

    # Twilio SMS delivery
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_PHONE_NUMBER: str = ""

    # Intent classification
    ANTHROPIC_API_KEY: str = ""
    CLASSIFIER_MODEL: str = "claude-sonnet-4-20250514"
    CLASSIFIER_MAX_TOKENS: int = 1024
    CLASSIFIER_TEMPERATURE: float = 0.3

    # Geocoding / directions
    GOOGLE_MAPS_API_KEY: str = ""

    # Upper bound for every outbound HTTP call
    HTTP_TIMEOUT_SECONDS: float = 10.0

    SMS_CHAR_LIMIT: int = 1600

    # Seeding
    PRIMARY_USER_PHONE: str = ""
    PRIMARY_USER_NAME: str = "Owner"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
