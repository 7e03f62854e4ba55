"""
Subscription request/response models
"""
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class SubscriptionType(str, Enum):
    """Subscription tiers as stored on the user record."""
    FREE = "HIPSESSION"
    TRIAL = "FREETRIAL"
    ADOB_SENSE = "ADOB_SENSE"
    DOBE_ONE = "DOBE_ONE"
    DEMANDX = "DEMANDX"


# Tiers that can be bought through checkout
PAID_TIERS = (SubscriptionType.ADOB_SENSE, SubscriptionType.DOBE_ONE, SubscriptionType.DEMANDX)

# Local statuses that are not Stripe subscription statuses
STATUS_REFUNDED = "refunded"
STATUS_PAST_DUE = "past_due"
STATUS_CANCELED = "canceled"
STATUS_TRIALING = "trialing"


class CheckoutRequest(BaseModel):
    tier: str = SubscriptionType.ADOB_SENSE.value
    uid: Optional[str] = None


class UidRequest(BaseModel):
    uid: Optional[str] = None


class RefundRequest(BaseModel):
    uid: Optional[str] = None
    amount: Optional[int] = Field(default=None, gt=0, description="Minor currency units")
    charge_id: Optional[str] = None


class CancelRequest(BaseModel):
    uid: Optional[str] = None
    immediate: bool = False
    reason: Optional[str] = Field(default=None, max_length=500)


class SubscriptionState(BaseModel):
    user_id: str
    subscription_type: str
    subscription_status: Optional[str] = None
    subscription_end_date: Optional[datetime] = None
    subscription_cancel_at: Optional[datetime] = None
    trial_used: bool = False
    is_active: bool = False
    trial_active: bool = False
    can_manage: bool = False
