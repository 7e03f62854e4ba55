"""
Configuration settings for the application
"""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Free-trial length granted by POST /api/billing/trial
TRIAL_DAYS = 7

# A listen only counts as "qualified" after this many seconds of playback
QUALIFIED_LISTEN_SECONDS = 15


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,  # Allow both field name and alias
        extra="ignore",
    )

    # Core authentication and security
    jwt_secret_key: Optional[str] = Field(default=None, alias="JWT_SECRET_KEY")
    allow_uid_param: bool = Field(default=True, alias="ALLOW_UID_PARAM")

    # Stripe billing configuration
    stripe_secret_key: Optional[str] = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: Optional[str] = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")
    stripe_webhook_tolerance: int = Field(default=300, alias="STRIPE_WEBHOOK_TOLERANCE")

    # One Stripe price per paid tier
    stripe_price_adob_sense: Optional[str] = Field(default=None, alias="STRIPE_PRICE_ADOB_SENSE")
    stripe_price_dobe_one: Optional[str] = Field(default=None, alias="STRIPE_PRICE_DOBE_ONE")
    stripe_price_demandx: Optional[str] = Field(default=None, alias="STRIPE_PRICE_DEMANDX")

    # Infrastructure configuration
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    database_url: Optional[str] = Field(default="sqlite+aiosqlite:///./sql_app.db", alias="DATABASE_URL")
    rate_limit_per_minute: int = Field(default=60, alias="RATE_LIMIT_PER_MINUTE")

    # Public URLs (checkout success/cancel and portal return)
    site_url: str = Field(default="http://localhost:3001", alias="SITE_URL")
    frontend_url: Optional[str] = Field(default="http://localhost:3001", alias="FRONTEND_URL")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Render.com deployment configuration
    render: Optional[str] = Field(default=None, alias="RENDER")
    render_external_url: Optional[str] = Field(default=None, alias="RENDER_EXTERNAL_URL")
    render_service_name: Optional[str] = Field(default=None, alias="RENDER_SERVICE_NAME")

    # Environment configuration
    env: Optional[str] = Field(default=None, alias="ENV")

    def tier_price_ids(self) -> dict:
        """Configured price id per paid tier code (unset tiers are omitted)."""
        prices = {
            "ADOB_SENSE": self.stripe_price_adob_sense,
            "DOBE_ONE": self.stripe_price_dobe_one,
            "DEMANDX": self.stripe_price_demandx,
        }
        return {tier: price for tier, price in prices.items() if price}


# Instantiate settings object
settings = Settings()

# Determine if we're in production mode
IS_PRODUCTION = bool(settings.render) or bool(settings.env and settings.env.lower() == "production")
