"""
Price -> tier mapping for Stripe subscription prices
"""
import logging
from typing import Dict, Mapping, Optional

from models.subscription import PAID_TIERS, SubscriptionType
from services.billing_errors import UnknownPriceError, UnknownTierError

logger = logging.getLogger(__name__)


class PriceTierMap:
    """
    Two-way lookup between paid tiers and their Stripe price ids.

    Built once from configuration. Every price id belongs to exactly one
    tier; a configuration that reuses a price for two tiers is rejected.
    """

    def __init__(self, tier_prices: Mapping[str, str]):
        self._tier_to_price: Dict[SubscriptionType, str] = {}
        self._price_to_tier: Dict[str, SubscriptionType] = {}

        for tier_code, price_id in tier_prices.items():
            if not price_id:
                continue
            tier = SubscriptionType(tier_code)
            if tier not in PAID_TIERS:
                raise UnknownTierError(f"{tier_code} is not a purchasable tier")
            if price_id in self._price_to_tier:
                raise UnknownPriceError(
                    f"Price {price_id} is configured for both "
                    f"{self._price_to_tier[price_id].value} and {tier.value}"
                )
            self._tier_to_price[tier] = price_id
            self._price_to_tier[price_id] = tier

        missing = [t.value for t in PAID_TIERS if t not in self._tier_to_price]
        if missing:
            logger.warning(f"No Stripe price configured for tiers: {', '.join(missing)}")

    def price_for_tier(self, tier_code: Optional[str]) -> str:
        """
        Get the Stripe price id for a tier code.

        Raises:
            UnknownTierError: If the code is not a paid tier or has no price
        """
        try:
            tier = SubscriptionType(tier_code)
        except ValueError:
            raise UnknownTierError(f"Unknown tier: {tier_code}")

        price_id = self._tier_to_price.get(tier)
        if not price_id:
            raise UnknownTierError(f"Unknown tier: {tier_code}")
        return price_id

    def tier_for_price(self, price_id: Optional[str]) -> Optional[SubscriptionType]:
        """Tier for a price id, or None when the price is not mapped."""
        if not price_id:
            return None
        return self._price_to_tier.get(price_id)

    def __len__(self) -> int:
        return len(self._tier_to_price)
