"""Application settings and configuration.

This module defines all configuration options for the SecureChat server.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="SecureChat", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")

    # Security and authentication
    secret_key: str = Field(alias="SECRET_KEY")
    debug: bool = Field(default=False, alias="DEBUG")

    # Database configuration
    database_url: str = Field(default="sqlite:///./securechat.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # JWT authentication settings
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24 * 7,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )
    auth_challenge_ttl_seconds: int = Field(default=300, alias="AUTH_CHALLENGE_TTL_SECONDS")

    # Background sweeps for scheduled delivery and self-destruct
    sweeps_enabled: bool = Field(default=True, alias="SWEEPS_ENABLED")
    scheduled_sweep_interval_seconds: float = Field(
        default=60.0,
        alias="SCHEDULED_SWEEP_INTERVAL_SECONDS",
    )
    self_destruct_sweep_interval_seconds: float = Field(
        default=60.0,
        alias="SELF_DESTRUCT_SWEEP_INTERVAL_SECONDS",
    )

    # One-time prekey management
    prekey_batch_max: int = Field(default=100, alias="PREKEY_BATCH_MAX")
    prekey_low_watermark: int = Field(default=5, alias="PREKEY_LOW_WATERMARK")
    prekey_claim_retries: int = Field(default=5, alias="PREKEY_CLAIM_RETRIES")

    # Encrypted file uploads (size of the decoded ciphertext)
    max_file_bytes: int = Field(default=50 * 1024 * 1024, alias="MAX_FILE_BYTES")

    # Sealed key store copies kept for device sync
    max_key_store_bytes: int = Field(default=1024 * 1024, alias="MAX_KEY_STORE_BYTES")

    # Group membership
    rotate_on_member_removal: bool = Field(default=True, alias="ROTATE_ON_MEMBER_REMOVAL")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url


settings = Settings()  # type: ignore[call-arg]
