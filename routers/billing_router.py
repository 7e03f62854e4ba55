"""
Billing Router - API endpoints for Stripe billing integration
Webhook is defined FIRST to avoid middleware conflicts
"""

import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auth_utils import Identity, get_optional_identity, resolve_uid
from backend.utils.responses import billing_error_response, error_response, success_response
from crud.library import LibraryRepository
from crud.user import UserRepository
from database import get_db
from models.subscription import CancelRequest, CheckoutRequest, RefundRequest, SubscriptionType, UidRequest
from services.billing_context import BillingContext, get_billing_context
from services.billing_errors import AuthenticationRequiredError, AuthenticityError, BillingError
from services.billing_service import BillingService
from services.trial_service import TrialService
from services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

# Create billing router
billing_router = APIRouter(prefix="/api/billing", tags=["billing"])


def _stripe_error_response(e: stripe.StripeError):
    logger.error(f"Stripe API error: {e}")
    return error_response(
        "stripe_error",
        status=502,
        message=getattr(e, "user_message", None) or "Payment provider request failed",
    )


def _email(identity: Optional[Identity]) -> Optional[str]:
    return identity.email if identity else None


# WEBHOOK ENDPOINT - MUST BE DEFINED FIRST TO AVOID MIDDLEWARE CONFLICTS
@billing_router.post("/webhook")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    context: BillingContext = Depends(get_billing_context),
):
    """
    Handle Stripe webhook events with signature verification.

    Verification runs over the raw body exactly as received. Rejected
    deliveries get 400 and leave no trace; failures while applying an event
    propagate, roll the request transaction back and surface as 500 so that
    Stripe retries.

    Args:
        request: FastAPI Request object (for raw body)
        db: Database session dependency
        context: Billing configuration dependency

    Returns:
        JSON envelope with event_type, duplicate and applied flags
    """
    payload = await request.body()
    stripe_signature = request.headers.get("stripe-signature")

    try:
        result = await WebhookService(db, context).process_webhook(payload, stripe_signature)
    except AuthenticityError as e:
        logger.error(f"Stripe webhook rejected: {e.message}")
        return billing_error_response(e)
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        return error_response("invalid_payload", status=400, message="Invalid payload format")

    # Commit before acknowledging; a failed commit must reach Stripe as a 500
    await db.commit()
    return success_response(data={"received": True, **result})


async def _checkout(
    tier: Optional[str],
    uid: Optional[str],
    identity: Optional[Identity],
    db: AsyncSession,
    context: BillingContext,
):
    user_id = resolve_uid(identity, uid)
    return await BillingService(db, context).create_checkout_session(tier, user_id, _email(identity))


@billing_router.get("/checkout")
async def checkout_redirect(
    request: Request,
    tier: str = Query(default=SubscriptionType.ADOB_SENSE.value),
    uid: Optional[str] = Query(default=None),
    identity: Optional[Identity] = Depends(get_optional_identity),
    db: AsyncSession = Depends(get_db),
    context: BillingContext = Depends(get_billing_context),
):
    """
    Start a checkout from a plain link.

    Browsers (Accept: text/html) are redirected to Stripe with 303; API
    clients get the session URL as JSON.
    """
    try:
        url = await _checkout(tier, uid, identity, db, context)
    except BillingError as e:
        return billing_error_response(e)
    except stripe.StripeError as e:
        return _stripe_error_response(e)

    if "text/html" in request.headers.get("accept", ""):
        return RedirectResponse(url, status_code=303)
    return success_response(data={"url": url})


@billing_router.post("/checkout")
async def create_checkout_session(
    body: CheckoutRequest,
    identity: Optional[Identity] = Depends(get_optional_identity),
    db: AsyncSession = Depends(get_db),
    context: BillingContext = Depends(get_billing_context),
):
    """
    Create a Stripe Checkout session for a subscription tier.

    Returns:
        JSON response with checkout session URL
    """
    try:
        url = await _checkout(body.tier, body.uid, identity, db, context)
    except BillingError as e:
        return billing_error_response(e)
    except stripe.StripeError as e:
        return _stripe_error_response(e)
    return success_response(data={"url": url})


@billing_router.post("/refund")
async def refund_last_charge(
    body: RefundRequest,
    identity: Optional[Identity] = Depends(get_optional_identity),
    db: AsyncSession = Depends(get_db),
    context: BillingContext = Depends(get_billing_context),
):
    """Refund the user's latest charge, or the given charge, fully or partially."""
    try:
        refund = await BillingService(db, context).refund_last_charge(
            resolve_uid(identity, body.uid),
            amount=body.amount,
            charge_id=body.charge_id,
        )
    except BillingError as e:
        return billing_error_response(e)
    except stripe.StripeError as e:
        return _stripe_error_response(e)
    return success_response(data={"refund": refund}, message="Refund created")


@billing_router.post("/cancel")
async def cancel_subscription(
    body: CancelRequest,
    identity: Optional[Identity] = Depends(get_optional_identity),
    db: AsyncSession = Depends(get_db),
    context: BillingContext = Depends(get_billing_context),
):
    try:
        subscription = await BillingService(db, context).cancel_subscription(
            resolve_uid(identity, body.uid),
            immediate=body.immediate,
            reason=body.reason,
        )
    except BillingError as e:
        return billing_error_response(e)
    except stripe.StripeError as e:
        return _stripe_error_response(e)
    return success_response(
        data={
            "subscription_id": subscription.get("id"),
            "status": subscription.get("status"),
            "cancel_at_period_end": subscription.get("cancel_at_period_end"),
        },
        message="Cancellation requested",
    )


@billing_router.post("/portal")
async def create_billing_portal_session(
    body: UidRequest,
    identity: Optional[Identity] = Depends(get_optional_identity),
    db: AsyncSession = Depends(get_db),
    context: BillingContext = Depends(get_billing_context),
):
    """
    Create a Stripe Billing Portal session.

    Returns:
        JSON response with portal session URL
    """
    try:
        url = await BillingService(db, context).create_billing_portal_session(
            resolve_uid(identity, body.uid), _email(identity)
        )
    except BillingError as e:
        return billing_error_response(e)
    except stripe.StripeError as e:
        return _stripe_error_response(e)
    return success_response(data={"url": url})


@billing_router.post("/customer")
async def ensure_customer(
    body: UidRequest,
    identity: Optional[Identity] = Depends(get_optional_identity),
    db: AsyncSession = Depends(get_db),
    context: BillingContext = Depends(get_billing_context),
):
    try:
        customer_id = await BillingService(db, context).ensure_customer(
            resolve_uid(identity, body.uid), _email(identity)
        )
    except BillingError as e:
        return billing_error_response(e)
    except stripe.StripeError as e:
        return _stripe_error_response(e)
    return success_response(data={"customer_id": customer_id})


@billing_router.get("/subscription")
async def get_subscription(
    uid: Optional[str] = Query(default=None),
    identity: Optional[Identity] = Depends(get_optional_identity),
    db: AsyncSession = Depends(get_db),
    context: BillingContext = Depends(get_billing_context),
):
    try:
        state = await BillingService(db, context).get_subscription_state(resolve_uid(identity, uid))
    except BillingError as e:
        return billing_error_response(e)
    return success_response(data=state.model_dump(mode="json"))


def _library_item_data(item):
    return {
        "price_id": item.price_id,
        "product_id": item.product_id,
        "description": item.description,
        "quantity": item.quantity,
        "added_at": item.added_at.isoformat(),
    }


@billing_router.get("/library")
async def get_library(
    uid: Optional[str] = Query(default=None),
    identity: Optional[Identity] = Depends(get_optional_identity),
    db: AsyncSession = Depends(get_db),
):
    """Items the user bought through one-off checkouts, newest first."""
    user_id = resolve_uid(identity, uid)
    if not user_id:
        return billing_error_response(AuthenticationRequiredError("Auth required"))
    items = await LibraryRepository(db).list_items(user_id)
    return success_response(data={"items": [_library_item_data(item) for item in items]})


@billing_router.post("/trial")
async def start_trial(
    body: UidRequest,
    identity: Optional[Identity] = Depends(get_optional_identity),
    db: AsyncSession = Depends(get_db),
):
    """Start the one-time free trial."""
    try:
        trial_service = TrialService(db, UserRepository(db))
        trial_end = await trial_service.start_trial(resolve_uid(identity, body.uid), _email(identity))
    except BillingError as e:
        return billing_error_response(e)
    return success_response(
        data={
            "subscription_type": SubscriptionType.TRIAL.value,
            "subscription_end_date": trial_end.isoformat(),
        },
        message="Trial started",
    )
