"""Application settings using Pydantic for environment-based configuration."""
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Paystack Configuration
    paystack_secret_key: str = Field(..., description="Paystack secret API key (sk_test_...)")
    paystack_base_url: str = Field(
        default="https://api.paystack.co", description="Paystack API base URL"
    )
    paystack_timeout_seconds: float = Field(
        default=15.0, description="Timeout for each Paystack API call (seconds)"
    )
    payout_currency: str = Field(default="GHS", description="Settlement currency code")

    # Database Configuration
    database_url: str = Field(..., description="Ledger database connection URL")
    database_pool_size: int = Field(default=10, description="Database connection pool size")
    database_max_overflow: int = Field(default=20, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Redis Configuration
    redis_url: Optional[str] = Field(
        default=None, description="Redis URL for the webhook de-duplication cache"
    )
    webhook_dedup_ttl_seconds: int = Field(
        default=86400 * 7, description="How long processed webhook deliveries are remembered"
    )

    # Authentication
    auth_jwt_secret: str = Field(..., description="Identity provider JWT signing secret")
    auth_jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    auth_jwt_audience: Optional[str] = Field(
        default="authenticated", description="Expected JWT audience"
    )
    admin_api_key: Optional[str] = Field(
        default=None, description="API key for operator endpoints (distribution retries)"
    )
    api_key_header: str = Field(default="X-API-Key", description="API key header name")

    # Commission split
    direct_admin_rate: Decimal = Field(default=Decimal("0.10"), description="Platform share without affiliate")
    direct_seller_rate: Decimal = Field(default=Decimal("0.90"), description="Seller share without affiliate")
    affiliate_rate: Decimal = Field(default=Decimal("0.08"), description="Affiliate share")
    affiliate_admin_rate: Decimal = Field(default=Decimal("0.02"), description="Platform share with affiliate")
    affiliate_seller_rate: Decimal = Field(default=Decimal("0.90"), description="Seller share with affiliate")
    assign_rounding_residue_to_platform: bool = Field(
        default=True, description="Fold rounding residue into the platform share"
    )
    settle_on_transfer_initiation: bool = Field(
        default=False,
        description="Mark commissions paid as soon as a transfer is accepted",
    )
    minimum_withdrawal: Decimal = Field(
        default=Decimal("10"), description="Minimum withdrawal amount (major units)"
    )

    # Application Configuration
    app_name: str = Field(default="marketplace-settlement", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=4, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="CORS allowed origins (comma-separated)"
    )
    public_base_url: str = Field(
        default="http://localhost:8000", description="Public URL used for payment callbacks"
    )

    # Workers
    distribution_sweep_interval_seconds: float = Field(
        default=300.0, description="Interval between pending-commission sweeps"
    )
    distribution_sweep_batch_size: int = Field(
        default=100, description="Transactions read per sweep page"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("paystack_secret_key")
    @classmethod
    def validate_paystack_key(cls, v: str) -> str:
        """Validate that the Paystack secret key has a known prefix."""
        if not v.startswith("sk_test_") and not v.startswith("sk_live_"):
            raise ValueError(
                "Invalid Paystack secret key format. Must start with 'sk_test_' or 'sk_live_'"
            )
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("payout_currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        if len(v) != 3:
            raise ValueError("Currency must be 3-letter code")
        return v.upper()

    @model_validator(mode="after")
    def validate_split_rates(self) -> "Settings":
        """Each split table must distribute exactly the whole amount."""
        direct = self.direct_admin_rate + self.direct_seller_rate
        with_affiliate = self.affiliate_rate + self.affiliate_admin_rate + self.affiliate_seller_rate
        if direct != Decimal("1") or with_affiliate != Decimal("1"):
            raise ValueError("Commission rates must sum to 1 for both split tables")
        return self

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def is_test_mode(self) -> bool:
        """Check if using Paystack test mode."""
        return self.paystack_secret_key.startswith("sk_test_")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
