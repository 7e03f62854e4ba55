"""
Stripe Gateway - thin async wrapper around the Stripe SDK
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import stripe

from services.billing_errors import AuthenticityError, BillingNotConfiguredError

logger = logging.getLogger(__name__)


def to_dict(obj: Any) -> Dict[str, Any]:
    """
    Convert a Stripe SDK object into plain nested dicts.

    StripeObject renders itself as JSON, which is stable across SDK versions
    whether or not it subclasses dict.
    """
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    return json.loads(str(obj))


def object_id(value: Any) -> Optional[str]:
    """Id of an expandable Stripe field that may be an id string or an object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("id")
    return getattr(value, "id", None)


class StripeGateway:
    """
    All outbound Stripe calls go through this class.

    The API key is passed with every request instead of being assigned to the
    module-global `stripe.api_key`. Blocking SDK calls run in a worker thread.
    """

    def __init__(self, api_key: Optional[str]):
        """
        Initialize the gateway.

        Args:
            api_key: Stripe secret key (sk_...). Calls fail with
                BillingNotConfiguredError while it is unset.
        """
        self.api_key = api_key
        if not api_key:
            logger.warning("STRIPE_SECRET_KEY is not set. Stripe functionality will be unavailable.")

    async def _call(self, func, *args, **params) -> Dict[str, Any]:
        if not self.api_key:
            raise BillingNotConfiguredError("STRIPE_SECRET_KEY is not set")
        result = await asyncio.to_thread(func, *args, api_key=self.api_key, **params)
        return to_dict(result)

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    @staticmethod
    def verify_webhook(payload: bytes, signature: Optional[str], secret: str, tolerance: int) -> Dict[str, Any]:
        """
        Verify a webhook delivery and return the parsed event.

        The signature is checked against the raw body exactly as received.

        Args:
            payload: Raw request body
            signature: Value of the Stripe-Signature header
            secret: Endpoint signing secret (whsec_...)
            tolerance: Allowed timestamp skew in seconds

        Returns:
            Event as a plain dict

        Raises:
            AuthenticityError: If the signature cannot be verified
        """
        if not signature:
            raise AuthenticityError("Missing Stripe-Signature header")
        if not secret:
            raise AuthenticityError("Webhook secret not configured")

        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError:
            raise AuthenticityError("Webhook payload is not valid UTF-8")

        try:
            stripe.WebhookSignature.verify_header(text, signature, secret, tolerance)
        except stripe.SignatureVerificationError as e:
            raise AuthenticityError(f"Invalid webhook signature: {e}")

        return json.loads(text)

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    async def create_customer(self, uid: str, email: Optional[str] = None) -> Dict[str, Any]:
        logger.info(f"Creating Stripe customer for user {uid}")
        params = {"metadata": {"uid": uid}}
        if email:
            params["email"] = email
        return await self._call(stripe.Customer.create, **params)

    async def retrieve_customer(self, customer_id: str) -> Dict[str, Any]:
        return await self._call(stripe.Customer.retrieve, customer_id)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return await self._call(stripe.Subscription.retrieve, subscription_id)

    async def schedule_cancellation(self, subscription_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        logger.info(f"Scheduling cancellation of subscription {subscription_id} at period end")
        params = {"cancel_at_period_end": True}
        if reason:
            params["metadata"] = {"cancel_reason": reason}
        return await self._call(stripe.Subscription.modify, subscription_id, **params)

    async def cancel_subscription_now(self, subscription_id: str) -> Dict[str, Any]:
        logger.info(f"Cancelling subscription {subscription_id} immediately")
        return await self._call(stripe.Subscription.cancel, subscription_id)

    # ------------------------------------------------------------------
    # Checkout and portal
    # ------------------------------------------------------------------

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        uid: str,
        tier: str,
        success_url: str,
        cancel_url: str,
    ) -> Dict[str, Any]:
        metadata = {"tier": tier, "uid": uid}
        return await self._call(
            stripe.checkout.Session.create,
            mode="subscription",
            customer=customer_id,
            client_reference_id=uid,
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            subscription_data={"metadata": metadata},
        )

    async def create_portal_session(self, customer_id: str, return_url: str) -> Dict[str, Any]:
        return await self._call(
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )

    async def list_checkout_line_items(self, session_id: str) -> List[Dict[str, Any]]:
        items = await self._call(stripe.checkout.Session.list_line_items, session_id, limit=50)
        return items.get("data") or []

    # ------------------------------------------------------------------
    # Charges and refunds
    # ------------------------------------------------------------------

    async def latest_invoice(self, customer_id: str) -> Optional[Dict[str, Any]]:
        invoices = await self._call(stripe.Invoice.list, customer=customer_id, limit=1)
        data = invoices.get("data") or []
        return data[0] if data else None

    async def latest_charge(self, customer_id: str) -> Optional[Dict[str, Any]]:
        charges = await self._call(stripe.Charge.list, customer=customer_id, limit=1)
        data = charges.get("data") or []
        return data[0] if data else None

    async def retrieve_charge(self, charge_id: str) -> Dict[str, Any]:
        return await self._call(stripe.Charge.retrieve, charge_id)

    async def create_refund(self, charge_id: str, amount: Optional[int] = None) -> Dict[str, Any]:
        params = {"charge": charge_id, "reason": "requested_by_customer"}
        if amount is not None:
            params["amount"] = amount
        logger.info(f"Requesting refund on charge {charge_id} (amount={amount if amount is not None else 'full'})")
        return await self._call(stripe.Refund.create, **params)
