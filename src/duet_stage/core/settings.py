"""Application settings and configuration.

This module defines all configuration options for the Duet Stage service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Duet Stage", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")

    # Security and authentication
    secret_key: str = Field(alias="SECRET_KEY")
    debug: bool = Field(default=False, alias="DEBUG")

    # Database configuration
    database_url: str = Field(default="sqlite:///./duet.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # JWT verification of inbound connections
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24 * 7,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )

    # Messaging limits
    message_max_length: int = Field(default=5000, alias="MESSAGE_MAX_LENGTH")
    message_history_default_limit: int = Field(
        default=50,
        alias="MESSAGE_HISTORY_DEFAULT_LIMIT",
    )
    message_history_max_limit: int = Field(default=100, alias="MESSAGE_HISTORY_MAX_LIMIT")
    reply_preview_length: int = Field(default=150, alias="REPLY_PREVIEW_LENGTH")
    allowed_reactions: list[str] = Field(
        default=["\U0001F44D", "❤️", "\U0001F602", "\U0001F62E", "\U0001F622", "\U0001F525"],
        alias="ALLOWED_REACTIONS",
    )

    # Media is stored by a third party; messages only carry URLs matching this pattern.
    media_url_pattern: str = Field(
        default=r"^https://res\.cloudinary\.com/[a-zA-Z0-9_-]+/(video|image)/upload/.+",
        alias="MEDIA_URL_PATTERN",
    )

    # Out-of-band cleanup of disappearing messages
    expired_sweep_enabled: bool = Field(default=True, alias="EXPIRED_SWEEP_ENABLED")
    expired_sweep_interval_seconds: float = Field(
        default=60.0,
        alias="EXPIRED_SWEEP_INTERVAL_SECONDS",
    )

    # Observability
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
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
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides.

        Returns:
            The active database URL (test database if in testing mode, otherwise production)
        """
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    @property
    def is_sqlite(self) -> bool:
        """Return True when the active database is SQLite."""
        return self.effective_database_url.startswith("sqlite")


settings = Settings()  # type: ignore[call-arg]
