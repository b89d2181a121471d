"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    A single instance is built at the application edge and handed to every
    client and service at construction time.
    """

    # Public address of this service (used for the success redirect)
    base_url: str = Field(
        default="http://localhost:5000/",
        validation_alias=AliasChoices("base_url", "heroku_url"),
        description="Public base URL of the service, ends with '/'",
    )

    # QIWI Configuration
    qiwi_secret_key: str = Field(..., description="QIWI P2P secret key (bills + notifications)")
    qiwi_public_key: str = Field(default="", description="QIWI P2P public key")
    qiwi_edge_token: str = Field(..., description="QIWI wallet API token (rates, payouts)")
    qiwi_bill_api_url: str = Field(
        default="https://api.qiwi.com/partner/bill/v1/bills/",
        description="QIWI bill payments API base URL",
    )
    qiwi_edge_api_url: str = Field(
        default="https://edge.qiwi.com/", description="QIWI wallet API base URL"
    )
    qiwi_theme_code: str = Field(default="", description="Payment form theme code")
    qiwi_http_timeout: float = Field(default=30.0, description="QIWI HTTP timeout (seconds)")
    bill_lifetime_hours: int = Field(default=24, gt=0, description="Bill expiration hint (hours)")

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./bills.db", description="SQLAlchemy async database URL"
    )
    database_pool_size: int = Field(default=5, description="Database connection pool size")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Redis Configuration
    redis_url: Optional[str] = Field(
        default=None, description="Redis URL for payout locks (in-process locks if unset)"
    )
    lock_timeout: int = Field(
        default=90,
        gt=0,
        description="Payout lock TTL (seconds), must outlast both QIWI calls of a payout",
    )

    # Payouts
    payout_enabled: bool = Field(default=False, description="Pay confirmed bills out")
    payout_account: str = Field(default="", description="Destination QIWI wallet (+7...)")
    payout_provider_id: int = Field(default=99, description="QIWI provider id for transfers")

    # Application Configuration
    app_name: str = Field(default="qiwi-checkout", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(
        default=5000,
        validation_alias=AliasChoices("api_port", "port"),
        description="API port",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("base_url", "qiwi_bill_api_url", "qiwi_edge_api_url")
    @classmethod
    def ensure_trailing_slash(cls, v: str) -> str:
        """URLs are joined by plain concatenation, so they must end with '/'."""
        return v if v.endswith("/") else v + "/"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @model_validator(mode="after")
    def validate_lock_timeout(self) -> "Settings":
        """
        The payout lock must outlive the commission and payment calls it guards.

        An expired lock lets a second worker into the payout of the same bill.
        """
        if self.lock_timeout <= 2 * self.qiwi_http_timeout:
            raise ValueError(
                f"lock_timeout ({self.lock_timeout}s) must exceed twice "
                f"qiwi_http_timeout ({self.qiwi_http_timeout}s)"
            )
        return self

    @property
    def success_url(self) -> str:
        """Where the payment form sends the customer after paying."""
        return self.base_url + "success"

    @property
    def payouts_configured(self) -> bool:
        """Check if the payout step should run."""
        return self.payout_enabled and bool(self.payout_account)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
