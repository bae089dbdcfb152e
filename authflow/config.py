"""Application configuration management using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "authflow"
    app_version: str = "0.1.0"
    debug: bool = False

    # Phone verification
    phone_verification_timeout_seconds: int = 60
    resend_cooldown_seconds: int = 60

    # Firebase Identity Toolkit
    firebase_api_key: str = ""
    identity_toolkit_url: str = "https://identitytoolkit.googleapis.com/v1"
    federated_request_uri: str = "http://localhost"
    http_timeout_seconds: float = 10.0

    # Last-used sign-in method
    credential_store_path: str = ".authflow/last_method.json"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
