"""Application configuration loaded from environment variables.

Settings for the database, API, outbound email, and the verification token
lifecycle. Uses pydantic-settings for validation and .env file support.
"""

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "ciepi_dev_password"  # nosec B105


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "ciepi"
    database_user: str = "ciepi_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # API
    # 0.0.0.0 binds to all network interfaces (required for Docker containers)
    api_host: str = "0.0.0.0"  # nosec B104
    api_port: int = 8000

    # CORS (Security)
    # Default allows localhost:3000 for the portal frontend in development
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    environment: str = "development"

    # Email
    email_from: str = "noreply@inadeh.edu.pa"
    resend_api_key: SecretStr = SecretStr("")

    # Public portal URL (verification links point at the portal pages)
    public_base_url: str = "http://localhost:3000"

    # Verification tokens
    verification_token_ttl_minutes: int = Field(default=15, ge=1, le=1440)
    verification_poll_interval_seconds: int = Field(default=3, ge=1)
    verification_token_retention_days: int = Field(default=7, ge=0)

    # Rate Limiting (Security)
    # Format: "count/period" (e.g., "10/minute", "100/hour")
    rate_limit_issue: str = "5/minute"  # /verificacion/generar, /reenviar
    rate_limit_status_poll: str = "30/minute"  # /verificacion/estado
    rate_limit_consume: str = "10/minute"  # /verificacion/validar
    rate_limit_enabled: bool = True  # Disable for testing

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def database_url_sync(self) -> str:
        """Sync database URL for Alembic."""
        return (
            f"postgresql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate production security requirements.

        Checks:
        - CORS must not use wildcard origin (incompatible with credentials)
        - Database password must not be the default in production
        - Public base URL must use HTTPS in production (links carry tokens)
        """
        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "This application uses credentials which are "
                "incompatible with wildcard CORS origins."
            )
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            if not self.public_base_url.startswith("https://"):
                msg = (
                    "PUBLIC_BASE_URL must use https:// in production. "
                    f"Got: {self.public_base_url}"
                )
                raise ValueError(msg)

        return self


settings = Settings()
