"""
Tests for refunds and subscription cancellation
"""
from unittest.mock import patch

import pytest
import stripe

from models.subscription import SubscriptionType
from services.billing_errors import NoChargeFoundError, NoSubscriptionFoundError
from services.billing_service import BillingService


def refund_obj(charge="ch_latest", amount=999):
    return {"id": "re_1", "object": "refund", "charge": charge, "amount": amount}


@pytest.mark.asyncio
async def test_refund_prefers_explicit_charge(test_db, billing_context, create_user):
    await create_user("user_1", stripe_customer_id="cus_1")
    service = BillingService(test_db, billing_context)

    with patch("stripe.Charge.retrieve", return_value={"id": "ch_given", "customer": "cus_1"}) as retrieve, \
            patch("stripe.Invoice.list") as list_invoices, \
            patch("stripe.Charge.list") as list_charges, \
            patch("stripe.Refund.create", return_value=refund_obj("ch_given")) as create_refund:
        await service.refund_last_charge("user_1", charge_id="ch_given")

    assert retrieve.call_args.args[0] == "ch_given"
    list_invoices.assert_not_called()
    list_charges.assert_not_called()
    assert create_refund.call_args.kwargs["charge"] == "ch_given"
    assert create_refund.call_args.kwargs["reason"] == "requested_by_customer"
    assert "amount" not in create_refund.call_args.kwargs


@pytest.mark.asyncio
async def test_refund_of_another_customers_charge_is_refused(test_db, billing_context, create_user):
    await create_user("user_1", stripe_customer_id="cus_1")
    service = BillingService(test_db, billing_context)

    with patch("stripe.Charge.retrieve", return_value={"id": "ch_other", "customer": "cus_2"}), \
            patch("stripe.Refund.create") as create_refund:
        with pytest.raises(NoChargeFoundError):
            await service.refund_last_charge("user_1", charge_id="ch_other")

    create_refund.assert_not_called()


@pytest.mark.asyncio
async def test_refund_endpoint_rejects_foreign_or_missing_charge(async_client, create_user, load_user):
    await create_user("user_1", stripe_customer_id="cus_1")

    with patch("stripe.Charge.retrieve", return_value={"id": "ch_other", "customer": {"id": "cus_2"}}), \
            patch("stripe.Refund.create") as create_refund:
        foreign = await async_client.post("/api/billing/refund", json={"uid": "user_1", "charge_id": "ch_other"})

    with patch("stripe.Charge.retrieve", side_effect=stripe.InvalidRequestError("No such charge", "id")), \
            patch("stripe.Refund.create") as create_refund_missing:
        missing = await async_client.post("/api/billing/refund", json={"uid": "user_1", "charge_id": "ch_nope"})

    assert foreign.status_code == 400
    assert foreign.json()["error"] == "no_charge_found"
    assert missing.status_code == 400
    create_refund.assert_not_called()
    create_refund_missing.assert_not_called()
    user = await load_user("user_1")
    assert user.last_refund_id is None


@pytest.mark.asyncio
async def test_refund_uses_latest_invoice_charge(test_db, billing_context, create_user):
    await create_user("user_1", stripe_customer_id="cus_1")
    service = BillingService(test_db, billing_context)

    with patch("stripe.Invoice.list", return_value={"data": [{"id": "in_1", "charge": "ch_invoice"}]}), \
            patch("stripe.Charge.list") as list_charges, \
            patch("stripe.Refund.create", return_value=refund_obj("ch_invoice", 500)) as create_refund:
        refund = await service.refund_last_charge("user_1", amount=500)

    list_charges.assert_not_called()
    assert create_refund.call_args.kwargs["charge"] == "ch_invoice"
    assert create_refund.call_args.kwargs["amount"] == 500
    assert refund["id"] == "re_1"


@pytest.mark.asyncio
async def test_refund_falls_back_to_latest_charge(test_db, billing_context, create_user):
    await create_user("user_1", stripe_customer_id="cus_1")
    service = BillingService(test_db, billing_context)

    with patch("stripe.Invoice.list", return_value={"data": [{"id": "in_1", "charge": None}]}), \
            patch("stripe.Charge.list", return_value={"data": [{"id": "ch_latest"}]}), \
            patch("stripe.Refund.create", return_value=refund_obj()) as create_refund:
        await service.refund_last_charge("user_1")

    assert create_refund.call_args.kwargs["charge"] == "ch_latest"


@pytest.mark.asyncio
async def test_refund_without_charge_raises(test_db, billing_context, create_user):
    await create_user("user_1", stripe_customer_id="cus_1")
    await create_user("user_2")
    service = BillingService(test_db, billing_context)

    with patch("stripe.Invoice.list", return_value={"data": []}), \
            patch("stripe.Charge.list", return_value={"data": []}), \
            patch("stripe.Refund.create") as create_refund:
        with pytest.raises(NoChargeFoundError):
            await service.refund_last_charge("user_1")
        with pytest.raises(NoChargeFoundError):
            await service.refund_last_charge("user_2")

    create_refund.assert_not_called()


@pytest.mark.asyncio
async def test_refund_endpoint_records_audit_fields(async_client, create_user, load_user):
    await create_user("user_1", stripe_customer_id="cus_1")

    with patch("stripe.Invoice.list", return_value={"data": [{"charge": "ch_invoice"}]}), \
            patch("stripe.Refund.create", return_value=refund_obj("ch_invoice", 999)):
        response = await async_client.post("/api/billing/refund", json={"uid": "user_1"})

    assert response.status_code == 200
    assert response.json()["data"]["refund"]["id"] == "re_1"
    user = await load_user("user_1")
    assert user.last_refund_id == "re_1"
    assert user.last_refund_amount == 999
    assert user.last_refund_at is not None


@pytest.mark.asyncio
async def test_refund_endpoint_validation(async_client):
    negative = await async_client.post("/api/billing/refund", json={"uid": "user_1", "amount": -5})
    no_customer = await async_client.post("/api/billing/refund", json={"uid": "user_1"})

    assert negative.status_code == 422
    assert no_customer.status_code == 400
    assert no_customer.json()["error"] == "no_charge_found"


@pytest.mark.asyncio
async def test_cancel_at_period_end(async_client, create_user, load_user):
    await create_user(
        "user_1",
        stripe_customer_id="cus_1",
        stripe_subscription_id="sub_1",
        subscription_type=SubscriptionType.DOBE_ONE.value,
    )
    updated = {"id": "sub_1", "status": "active", "cancel_at_period_end": True}

    with patch("stripe.Subscription.modify", return_value=updated) as modify, \
            patch("stripe.Subscription.cancel") as cancel_now:
        response = await async_client.post(
            "/api/billing/cancel", json={"uid": "user_1", "reason": "too expensive"}
        )

    assert response.status_code == 200
    assert response.json()["data"]["cancel_at_period_end"] is True
    cancel_now.assert_not_called()
    assert modify.call_args.args[0] == "sub_1"
    assert modify.call_args.kwargs["cancel_at_period_end"] is True

    user = await load_user("user_1")
    assert user.last_cancel_reason == "too expensive"
    # The tier changes when Stripe reports the deletion
    assert user.subscription_type == SubscriptionType.DOBE_ONE.value


@pytest.mark.asyncio
async def test_cancel_immediately(test_db, billing_context, create_user):
    await create_user("user_1", stripe_customer_id="cus_1", stripe_subscription_id="sub_1")
    service = BillingService(test_db, billing_context)

    with patch("stripe.Subscription.cancel", return_value={"id": "sub_1", "status": "canceled"}) as cancel_now:
        subscription = await service.cancel_subscription("user_1", immediate=True)

    assert cancel_now.call_args.args[0] == "sub_1"
    assert subscription["status"] == "canceled"


@pytest.mark.asyncio
async def test_cancel_without_subscription_raises(test_db, billing_context, create_user):
    await create_user("user_1")
    service = BillingService(test_db, billing_context)

    with pytest.raises(NoSubscriptionFoundError):
        await service.cancel_subscription("user_1")
