from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, JSON, Index
from datetime import datetime
from database import Base
from models.subscription import SubscriptionType


class User(Base):
    """
    Local mirror of a user's subscription state.

    Keyed by the opaque user id issued by the auth provider. Billing webhooks
    merge into this row; it is never deleted by the billing flow.
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True)
    email = Column(String, nullable=True)

    subscription_type = Column(String, nullable=False, default=SubscriptionType.FREE.value)
    subscription_status = Column(String, nullable=True)
    subscription_end_date = Column(DateTime, nullable=True)
    subscription_cancel_at = Column(DateTime, nullable=True)

    stripe_customer_id = Column(String, unique=True, nullable=True, index=True)
    stripe_subscription_id = Column(String, nullable=True)
    # Raw price id of a subscription whose price maps to no known tier
    pending_price_id = Column(String, nullable=True)

    trial_used = Column(Boolean, nullable=False, default=False)
    trial_started_at = Column(DateTime, nullable=True)

    last_refund_id = Column(String, nullable=True)
    last_refund_amount = Column(Integer, nullable=True)
    last_refund_at = Column(DateTime, nullable=True)
    last_downgrade_reason = Column(String, nullable=True)
    last_cancel_reason = Column(String, nullable=True)

    # `created` of the newest billing event applied to this row
    last_event_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ProcessedStripeEvent(Base):
    """Marker row: a Stripe event with this id has already been applied."""
    __tablename__ = "processed_stripe_events"

    event_id = Column(String, primary_key=True)
    event_type = Column(String, nullable=True)
    processed_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ListeningEvent(Base):
    """
    Play analytics. Sound-level and album-level views share the table,
    distinguished by `kind`.
    """
    __tablename__ = "listening_events"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    sound_id = Column(String, nullable=False)
    kind = Column(String, nullable=False, default="sound")
    action = Column(String, nullable=False)
    reason = Column(String, nullable=True)
    played_seconds = Column(Float, nullable=False, default=0.0)
    artists = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_listening_events_sound_action", "sound_id", "action"),
    )


class TrackRating(Base):
    __tablename__ = "track_ratings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    sound_id = Column(String, nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class LibraryItem(Base):
    """One purchased line item from a one-off (payment-mode) checkout."""
    __tablename__ = "library_items"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    checkout_session_id = Column(String, nullable=True)
    price_id = Column(String, nullable=True)
    product_id = Column(String, nullable=True)
    description = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    added_at = Column(DateTime, default=datetime.utcnow, nullable=False)
