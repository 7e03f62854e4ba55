"""
Process-wide billing configuration
"""

import logging
from dataclasses import dataclass

from fastapi import Request

from config.settings import Settings
from services.price_tiers import PriceTierMap
from services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)


@dataclass
class BillingContext:
    """
    Everything a billing handler needs from configuration.

    Built once at startup and shared by reference; handlers receive it through
    the `get_billing_context` dependency.
    """

    gateway: StripeGateway
    prices: PriceTierMap
    webhook_secret: str
    webhook_tolerance: int = 300
    site_url: str = "http://localhost:3001"

    @classmethod
    def from_settings(cls, settings: Settings) -> "BillingContext":
        if not settings.stripe_webhook_secret:
            logger.warning("STRIPE_WEBHOOK_SECRET is not set. Webhook deliveries will be rejected.")
        return cls(
            gateway=StripeGateway(settings.stripe_secret_key),
            prices=PriceTierMap(settings.tier_price_ids()),
            webhook_secret=settings.stripe_webhook_secret or "",
            webhook_tolerance=settings.stripe_webhook_tolerance,
            site_url=settings.site_url.rstrip("/"),
        )


def get_billing_context(request: Request) -> BillingContext:
    """Dependency returning the context stored on the app at startup."""
    return request.app.state.billing
