"""
Webhook Service - reconciles Stripe billing events into local user state
"""

import logging
from typing import Any, Dict, Optional

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from crud.library import LibraryRepository
from crud.processed_event import ProcessedEventRepository
from crud.user import UserRepository
from database_models import User
from models.subscription import (
    STATUS_CANCELED,
    STATUS_PAST_DUE,
    STATUS_REFUNDED,
    SubscriptionType,
)
from services.billing_context import BillingContext
from services.billing_errors import UserNotResolvedError
from services.stripe_gateway import object_id
from utils.time_utils import from_unix, utcnow

logger = logging.getLogger(__name__)

DOWNGRADE_REASON_DELETED = "subscription.deleted"


def _first_item(subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _price_id(subscription: Dict[str, Any]) -> Optional[str]:
    return object_id(_first_item(subscription).get("price"))


def _period_end(subscription: Dict[str, Any]) -> Optional[int]:
    # Newer API versions moved current_period_end onto the subscription items
    return subscription.get("current_period_end") or _first_item(subscription).get("current_period_end")


def _metadata_uid(obj: Dict[str, Any]) -> Optional[str]:
    return (obj.get("metadata") or {}).get("uid") or None


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    sub_id = object_id(invoice.get("subscription"))
    if sub_id:
        return sub_id
    details = ((invoice.get("parent") or {}).get("subscription_details") or {})
    return object_id(details.get("subscription"))


class WebhookService:
    """
    Applies verified Stripe events to user records exactly once.

    The event marker is inserted before the handler runs; both share the
    request's database transaction, so a failure while applying rolls the
    marker back as well and Stripe's retry gets a fresh attempt.
    """

    def __init__(self, db: AsyncSession, context: BillingContext):
        """
        Initialize the webhook service.

        Args:
            db: AsyncSession for the current request
            context: Process-wide billing configuration
        """
        self.db = db
        self.context = context
        self.gateway = context.gateway
        self.user_repo = UserRepository(db)
        self.event_repo = ProcessedEventRepository(db)
        self.library_repo = LibraryRepository(db)
        self._handlers = {
            "checkout.session.completed": self._handle_checkout_completed,
            "customer.subscription.created": self._handle_subscription_changed,
            "customer.subscription.updated": self._handle_subscription_changed,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "invoice.payment_succeeded": self._handle_invoice_paid,
            "invoice.payment_failed": self._handle_invoice_failed,
            "charge.refunded": self._handle_refund,
            "charge.refund.updated": self._handle_refund,
            "refund.created": self._handle_refund,
        }

    async def process_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify, deduplicate and apply one webhook delivery.

        Args:
            payload: Raw request body, unparsed
            signature: Stripe-Signature header value

        Returns:
            Acknowledgement dict: event_type, duplicate, applied

        Raises:
            AuthenticityError: If the signature does not verify
            ValueError: If the verified event has no id or type
        """
        event = self.gateway.verify_webhook(
            payload,
            signature,
            self.context.webhook_secret,
            self.context.webhook_tolerance,
        )
        event_id = event.get("id")
        event_type = event.get("type")
        if not event_id or not event_type:
            raise ValueError("Webhook event is missing its id or type")

        if not await self.event_repo.mark_processed(event_id, event_type):
            logger.info(f"Duplicate Stripe event {event_id} ({event_type}) - skipping")
            return {"event_type": event_type, "duplicate": True, "applied": False}

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug(f"Unhandled Stripe event type {event_type}")
            return {"event_type": event_type, "duplicate": False, "applied": False}

        logger.info(f"Processing Stripe event {event_id} ({event_type})")
        try:
            applied = await handler(event)
        except UserNotResolvedError as e:
            # Test-mode or foreign customers have no local user
            logger.warning(f"Stripe event {event_id} ({event_type}) not applied: {e.message}")
            applied = False

        return {"event_type": event_type, "duplicate": False, "applied": applied}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _resolve_user(self, customer_id: Optional[str], metadata_uid: Optional[str] = None) -> User:
        """
        Find the local user for a Stripe customer.

        Lookup order: stored customer id, uid embedded in the event's
        metadata, uid in the Stripe customer's metadata.

        Raises:
            UserNotResolvedError: If none of them leads to an existing user
        """
        user = await self.user_repo.get_user_by_customer_id(customer_id)
        if user is not None:
            return user

        if metadata_uid:
            user = await self.user_repo.get_user_by_id(metadata_uid)
            if user is not None:
                return user

        if customer_id:
            try:
                customer = await self.gateway.retrieve_customer(customer_id)
            except stripe.InvalidRequestError as e:
                logger.warning(f"Could not retrieve Stripe customer {customer_id}: {e}")
                customer = {}
            customer_uid = _metadata_uid(customer)
            if customer_uid and customer_uid != metadata_uid:
                user = await self.user_repo.get_user_by_id(customer_uid)
                if user is not None:
                    return user

        raise UserNotResolvedError(f"No user for customer {customer_id or '-'} (uid={metadata_uid or '-'})")

    def _is_stale(self, user: User, event: Dict[str, Any]) -> bool:
        created = from_unix(event.get("created"))
        if created and user.last_event_at and created < user.last_event_at:
            logger.info(
                f"Ignoring stale {event.get('type')} {event.get('id')} for user {user.id}: "
                f"created {created.isoformat()} < last applied {user.last_event_at.isoformat()}"
            )
            return True
        return False

    async def _apply(self, user: User, event: Dict[str, Any], fields: Dict[str, Any]) -> bool:
        created = from_unix(event.get("created"))
        if created and (user.last_event_at is None or created > user.last_event_at):
            fields["last_event_at"] = created
        await self.user_repo.merge_subscription_state(user.id, **fields)
        logger.info(f"Applied {event.get('type')} {event.get('id')} to user {user.id}: {sorted(fields)}")
        return True

    def _link_customer(self, user: User, customer_id: Optional[str], fields: Dict[str, Any]) -> None:
        if not customer_id:
            return
        if user.stripe_customer_id is None:
            fields["stripe_customer_id"] = customer_id
        elif user.stripe_customer_id != customer_id:
            logger.warning(
                f"User {user.id} is linked to customer {user.stripe_customer_id}, "
                f"event carries {customer_id} - keeping the stored customer"
            )

    def _subscription_fields(self, subscription: Dict[str, Any]) -> Dict[str, Any]:
        """Tier, status and period end taken from a subscription snapshot."""
        price_id = _price_id(subscription)
        fields = {
            "subscription_status": subscription.get("status") or "active",
            "subscription_end_date": from_unix(_period_end(subscription)),
            "subscription_cancel_at": None,
            "stripe_subscription_id": subscription.get("id"),
        }
        tier = self.context.prices.tier_for_price(price_id)
        if tier is not None:
            fields["subscription_type"] = tier
            fields["pending_price_id"] = None
        else:
            # Keep the raw price so the tier can be reconciled once it is configured
            logger.warning(f"Price {price_id} of subscription {subscription.get('id')} maps to no tier")
            fields["pending_price_id"] = price_id
        return fields

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def _handle_checkout_completed(self, event: Dict[str, Any]) -> bool:
        session = event["data"]["object"]
        if session.get("mode") == "payment":
            return await self._record_purchase(session)

        subscription_id = object_id(session.get("subscription"))
        if session.get("mode") != "subscription" or not subscription_id:
            logger.info(f"Checkout session {session.get('id')} has no subscription - nothing to reconcile")
            return False

        customer_id = object_id(session.get("customer"))
        metadata_uid = session.get("client_reference_id") or _metadata_uid(session)
        user = await self._resolve_user(customer_id, metadata_uid)
        if self._is_stale(user, event):
            return False

        subscription = await self.gateway.retrieve_subscription(subscription_id)
        fields = self._subscription_fields(subscription)
        self._link_customer(user, customer_id, fields)
        return await self._apply(user, event, fields)

    async def _record_purchase(self, session: Dict[str, Any]) -> bool:
        """
        Add the line items of a paid one-off checkout to the buyer's library.

        Purchases only add rows, so the stale-event guard does not apply.
        """
        if session.get("payment_status") not in (None, "paid", "no_payment_required"):
            logger.info(f"Checkout session {session.get('id')} is {session.get('payment_status')} - nothing to add")
            return False

        customer_id = object_id(session.get("customer"))
        metadata_uid = session.get("client_reference_id") or _metadata_uid(session)
        user = await self._resolve_user(customer_id, metadata_uid)

        session_product = (session.get("metadata") or {}).get("productId")
        line_items = await self.gateway.list_checkout_line_items(session["id"])
        items = []
        for line_item in line_items:
            price = line_item.get("price")
            price_product = object_id(price.get("product")) if isinstance(price, dict) else None
            items.append({
                "checkout_session_id": session["id"],
                "price_id": object_id(price),
                "product_id": session_product or price_product,
                "description": line_item.get("description"),
                "quantity": line_item.get("quantity") or 1,
            })

        if not items:
            logger.warning(f"Checkout session {session['id']} for user {user.id} has no line items")
            return False

        await self.library_repo.add_items(user.id, items)
        return True

    async def _handle_subscription_changed(self, event: Dict[str, Any]) -> bool:
        subscription = event["data"]["object"]
        customer_id = object_id(subscription.get("customer"))
        user = await self._resolve_user(customer_id, _metadata_uid(subscription))
        if self._is_stale(user, event):
            return False

        if subscription.get("cancel_at_period_end"):
            # Access continues until the period ends; the deleted event downgrades
            period_end = from_unix(_period_end(subscription))
            cancel_at = from_unix(subscription.get("cancel_at")) or period_end
            fields = {
                "subscription_cancel_at": cancel_at,
                "subscription_status": subscription.get("status"),
                "subscription_end_date": period_end or cancel_at,
                "stripe_subscription_id": subscription.get("id"),
            }
        else:
            fields = self._subscription_fields(subscription)

        self._link_customer(user, customer_id, fields)
        return await self._apply(user, event, fields)

    async def _handle_subscription_deleted(self, event: Dict[str, Any]) -> bool:
        subscription = event["data"]["object"]
        user = await self._resolve_user(object_id(subscription.get("customer")), _metadata_uid(subscription))
        if self._is_stale(user, event):
            return False

        return await self._apply(user, event, {
            "subscription_type": SubscriptionType.FREE,
            "subscription_status": STATUS_CANCELED,
            "subscription_end_date": None,
            "subscription_cancel_at": None,
            "last_downgrade_reason": DOWNGRADE_REASON_DELETED,
        })

    async def _handle_invoice_paid(self, event: Dict[str, Any]) -> bool:
        invoice = event["data"]["object"]
        subscription_id = _invoice_subscription_id(invoice)
        if not subscription_id:
            return False

        subscription = await self.gateway.retrieve_subscription(subscription_id)
        customer_id = object_id(subscription.get("customer")) or object_id(invoice.get("customer"))
        user = await self._resolve_user(customer_id, _metadata_uid(subscription))
        if self._is_stale(user, event):
            return False

        fields = self._subscription_fields(subscription)
        self._link_customer(user, customer_id, fields)
        return await self._apply(user, event, fields)

    async def _handle_invoice_failed(self, event: Dict[str, Any]) -> bool:
        invoice = event["data"]["object"]
        subscription_id = _invoice_subscription_id(invoice)
        if not subscription_id:
            return False

        customer_id = object_id(invoice.get("customer"))
        metadata_uid = None
        if not customer_id:
            subscription = await self.gateway.retrieve_subscription(subscription_id)
            customer_id = object_id(subscription.get("customer"))
            metadata_uid = _metadata_uid(subscription)

        user = await self._resolve_user(customer_id, metadata_uid)
        if self._is_stale(user, event):
            return False

        # Grace period: tier and period end stay as they are
        logger.warning(f"Payment failed for user {user.id} (subscription {subscription_id})")
        return await self._apply(user, event, {"subscription_status": STATUS_PAST_DUE})

    async def _handle_refund(self, event: Dict[str, Any]) -> bool:
        obj = event["data"]["object"]
        if obj.get("object") == "refund":
            refund_id = obj.get("id")
            charge = obj.get("charge")
            if not isinstance(charge, dict):
                charge_id = object_id(charge)
                if not charge_id:
                    return False
                charge = await self.gateway.retrieve_charge(charge_id)
        else:
            charge = obj
            refunds = (charge.get("refunds") or {}).get("data") or []
            refund_id = refunds[0].get("id") if refunds else None

        customer_id = object_id(charge.get("customer"))
        if not customer_id:
            return False
        user = await self._resolve_user(customer_id, _metadata_uid(charge))

        amount_refunded = charge.get("amount_refunded") or 0
        fields = {
            "last_refund_amount": amount_refunded,
            "last_refund_at": utcnow(),
        }
        if refund_id:
            fields["last_refund_id"] = refund_id
        if amount_refunded and amount_refunded == charge.get("amount"):
            # Full refund: flag the subscription, the tier is left to Stripe's own events
            fields["subscription_status"] = STATUS_REFUNDED

        await self.user_repo.merge_subscription_state(user.id, **fields)
        logger.info(f"Recorded refund {refund_id} of {amount_refunded} for user {user.id}")
        return True
