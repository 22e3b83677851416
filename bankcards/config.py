"""
Runtime settings for the Bank Cards API.

Values come from the process environment first, then from a local .env
file, then from the defaults below. Two secrets have no default and must
be supplied: SECRET_KEY (token signing) and CARD_ENCRYPTION_KEY (card
numbers at rest). .env.example lists every variable.

    from bankcards.config import settings
    settings.ACCESS_TOKEN_EXPIRE_MINUTES
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed view of the environment. SECRET_KEY and CARD_ENCRYPTION_KEY are required."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "Bank Cards API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # --- Database ---
    # SQLite for local runs; swap to a postgresql+asyncpg URL for production
    DATABASE_URL: str = "sqlite+aiosqlite:///./bankcards.db"

    # --- Authentication ---
    # Required, no default
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # --- Card Encryption ---
    # REQUIRED: exactly 32 bytes once UTF-8 encoded (AES-256)
    # Generate with: python -c "import secrets; print(secrets.token_hex(16))"
    CARD_ENCRYPTION_KEY: str

    # --- Bootstrap admin ---
    # Users never self-register, so the first admin is provisioned at startup.
    # Leave unset to skip.
    BOOTSTRAP_ADMIN_USERNAME: str | None = None
    BOOTSTRAP_ADMIN_PASSWORD: str | None = None

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # --- CORS ---
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]

    @field_validator("CARD_ENCRYPTION_KEY")
    @classmethod
    def card_key_must_be_32_bytes(cls, value: str) -> str:
        if len(value.encode("utf-8")) != 32:
            raise ValueError("CARD_ENCRYPTION_KEY must be exactly 32 bytes (AES-256)")
        return value

    @field_validator("LOG_LEVEL")
    @classmethod
    def log_level_must_be_known(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown LOG_LEVEL: {value}")
        return level


# Shared instance; modules import this rather than building their own.
settings = Settings()
