"""
Billing Service - checkout, customer portal, refunds and cancellation via Stripe
"""

import logging
from typing import Any, Dict, Optional

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from crud.user import UserRepository
from database_models import User
from models.subscription import SubscriptionState
from services.billing_context import BillingContext
from services.billing_errors import (
    AuthenticationRequiredError,
    NoChargeFoundError,
    NoSubscriptionFoundError,
)
from services.stripe_gateway import object_id
from services.trial_service import TrialService
from utils.time_utils import is_active, utcnow

logger = logging.getLogger(__name__)


class BillingService:
    """
    Service class for handling billing-related business logic.
    Local subscription state is only read here; webhooks write it.
    """

    def __init__(self, db: AsyncSession, context: BillingContext):
        """
        Initialize the billing service.

        Args:
            db: AsyncSession instance for database operations
            context: Process-wide billing configuration
        """
        self.db = db
        self.context = context
        self.gateway = context.gateway
        self.user_repo = UserRepository(db)

    async def _require_user(self, uid: Optional[str], email: Optional[str] = None) -> User:
        if not uid:
            raise AuthenticationRequiredError("Auth required")
        return await self.user_repo.get_or_create_user(uid, email)

    async def ensure_customer(self, uid: Optional[str], email: Optional[str] = None) -> str:
        """
        Return the user's Stripe customer id, creating the customer on first use.

        A user never gets a second customer: the stored id is used whenever
        present and a new customer is only created when it is absent.

        Args:
            uid: User ID
            email: Email to attach to a newly created customer

        Returns:
            Stripe customer ID

        Raises:
            AuthenticationRequiredError: If no user ID is supplied
        """
        user = await self._require_user(uid, email)
        if user.stripe_customer_id:
            return user.stripe_customer_id

        customer = await self.gateway.create_customer(user.id, email or user.email)
        customer_id = customer["id"]
        await self.user_repo.merge_subscription_state(user.id, stripe_customer_id=customer_id)
        logger.info(f"Linked Stripe customer {customer_id} to user {user.id}")
        return customer_id

    async def create_checkout_session(self, tier: Optional[str], uid: Optional[str], email: Optional[str] = None) -> str:
        """
        Create a hosted Stripe Checkout session for a subscription tier.

        Args:
            tier: Tier code (ADOB_SENSE, DOBE_ONE, DEMANDX)
            uid: User ID (no anonymous purchases)
            email: Optional email for customer creation

        Returns:
            Checkout session URL

        Raises:
            UnknownTierError: If the tier has no configured price
            AuthenticationRequiredError: If no user ID is supplied
        """
        price_id = self.context.prices.price_for_tier(tier)
        if not uid:
            raise AuthenticationRequiredError("Auth required")

        customer_id = await self.ensure_customer(uid, email)
        site_url = self.context.site_url
        session = await self.gateway.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            uid=uid,
            tier=tier,
            success_url=f"{site_url}/?purchase=success&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{site_url}/?purchase=cancel",
        )
        logger.info(f"Created checkout session {session.get('id')} for user {uid}, tier={tier}")
        return session["url"]

    async def create_billing_portal_session(self, uid: Optional[str], email: Optional[str] = None) -> str:
        """
        Create a Stripe Billing Portal session for the user.

        Returns:
            Portal session URL
        """
        customer_id = await self.ensure_customer(uid, email)
        portal_session = await self.gateway.create_portal_session(customer_id, self.context.site_url)
        return portal_session["url"]

    async def _resolve_charge_id(self, customer_id: str, charge_id: Optional[str]) -> str:
        """
        Pick the charge to refund.

        Preference: explicit charge id, the most recent invoice's charge, the
        most recent charge of the customer. An explicit charge must belong to
        the customer.
        """
        if charge_id:
            try:
                charge = await self.gateway.retrieve_charge(charge_id)
            except stripe.InvalidRequestError as e:
                logger.warning(f"Could not retrieve charge {charge_id}: {e}")
                raise NoChargeFoundError("Charge not found")
            owner = object_id(charge.get("customer"))
            if owner != customer_id:
                logger.warning(f"Refund refused: charge {charge_id} belongs to {owner or '-'}, not {customer_id}")
                raise NoChargeFoundError("Charge not found")
            return charge_id

        invoice = await self.gateway.latest_invoice(customer_id)
        if invoice:
            invoice_charge = object_id(invoice.get("charge"))
            if invoice_charge:
                return invoice_charge

        charge = await self.gateway.latest_charge(customer_id)
        if charge and charge.get("id"):
            return charge["id"]

        raise NoChargeFoundError("No recent charge to refund")

    async def refund_last_charge(
        self,
        uid: Optional[str],
        amount: Optional[int] = None,
        charge_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Refund a charge of the user's customer and record the audit fields.

        Args:
            uid: User ID
            amount: Amount in minor currency units; None refunds the full charge
            charge_id: Specific charge to refund

        Returns:
            The Stripe refund record

        Raises:
            AuthenticationRequiredError: If no user ID is supplied
            NoChargeFoundError: If the user has no customer or no charge resolves
        """
        user = await self._require_user(uid)
        if not user.stripe_customer_id:
            raise NoChargeFoundError("No Stripe customer for this user")

        charge_to_refund = await self._resolve_charge_id(user.stripe_customer_id, charge_id)
        refund = await self.gateway.create_refund(charge_to_refund, amount)

        await self.user_repo.merge_subscription_state(
            user.id,
            last_refund_id=refund.get("id"),
            last_refund_amount=refund.get("amount"),
            last_refund_at=utcnow(),
        )
        logger.info(f"Refund {refund.get('id')} of {refund.get('amount')} on {charge_to_refund} for user {user.id}")
        return refund

    async def cancel_subscription(
        self,
        uid: Optional[str],
        immediate: bool = False,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Cancel the user's subscription at period end, or right away.

        The tier change itself arrives through the subscription webhooks.

        Returns:
            The updated Stripe subscription

        Raises:
            NoSubscriptionFoundError: If the user has no subscription id
        """
        user = await self._require_user(uid)
        if not user.stripe_subscription_id:
            raise NoSubscriptionFoundError("No active subscription to cancel")

        if immediate:
            subscription = await self.gateway.cancel_subscription_now(user.stripe_subscription_id)
        else:
            subscription = await self.gateway.schedule_cancellation(user.stripe_subscription_id, reason)

        await self.user_repo.merge_subscription_state(user.id, last_cancel_reason=reason or None)
        logger.info(f"Cancellation requested for user {user.id} (immediate={immediate})")
        return subscription

    async def get_subscription_state(self, uid: Optional[str]) -> SubscriptionState:
        user = await self._require_user(uid)
        return SubscriptionState(
            user_id=user.id,
            subscription_type=user.subscription_type,
            subscription_status=user.subscription_status,
            subscription_end_date=user.subscription_end_date,
            subscription_cancel_at=user.subscription_cancel_at,
            trial_used=bool(user.trial_used),
            is_active=is_active(user.subscription_end_date),
            trial_active=TrialService(self.db, self.user_repo).is_trial_active(user),
            can_manage=user.stripe_customer_id is not None,
        )
