"""
UserRepository for database operations on User model
"""

import logging
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from database_models import User
from models.subscription import SubscriptionType
from utils.time_utils import utcnow

logger = logging.getLogger(__name__)

# Fields the merge-writer may touch; everything else on the row is left alone
MERGEABLE_FIELDS = frozenset({
    "email",
    "subscription_type",
    "subscription_status",
    "subscription_end_date",
    "subscription_cancel_at",
    "stripe_customer_id",
    "stripe_subscription_id",
    "pending_price_id",
    "trial_used",
    "trial_started_at",
    "last_refund_id",
    "last_refund_amount",
    "last_refund_at",
    "last_downgrade_reason",
    "last_cancel_reason",
    "last_event_at",
})


class UserRepository:
    """
    Repository class for User database operations.
    Encapsulates all database logic for the User model.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            db: AsyncSession instance for database operations
        """
        self.db = db

    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        """
        Retrieve a user by ID.

        Args:
            user_id: User's opaque ID

        Returns:
            User object if found, None otherwise
        """
        result = await self.db.execute(
            select(User).where(User.id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_user_by_customer_id(self, customer_id: str) -> Optional[User]:
        """
        Retrieve the user linked to a Stripe customer.

        Args:
            customer_id: Stripe customer ID (cus_...)

        Returns:
            User object if found, None otherwise
        """
        if not customer_id:
            return None
        result = await self.db.execute(
            select(User).where(User.stripe_customer_id == customer_id)
        )
        return result.scalar_one_or_none()

    async def get_or_create_user(self, user_id: str, email: Optional[str] = None) -> User:
        """
        Return the user record, creating it on first sight.

        Args:
            user_id: User's opaque ID
            email: Email to store when the record is created or has none yet

        Returns:
            Existing or newly created User object
        """
        user = await self.get_user_by_id(user_id)
        if user is not None:
            if email and not user.email:
                user = await self.update_user(user, {"email": email.lower()})
            return user

        user = User(
            id=user_id,
            email=email.lower() if email else None,
            subscription_type=SubscriptionType.FREE.value,
            trial_used=False,
        )
        self.db.add(user)
        await self.db.flush()  # Flush to surface constraint errors without committing
        await self.db.refresh(user)
        logger.info(f"Created user record {user_id}")
        return user

    async def merge_subscription_state(self, user_id: str, **fields) -> Optional[User]:
        """
        Merge-write subscription fields into a user record.

        Only the given fields are written; unrelated fields keep their values.
        Writing the same values twice leaves the same stored state.
        `trial_used` is one-way: an attempt to reset it to False is ignored.

        Args:
            user_id: User's opaque ID
            **fields: Column values to write

        Returns:
            Updated User object, or None if no such user exists

        Raises:
            ValueError: If a field is not a mergeable subscription field
        """
        unknown = set(fields) - MERGEABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {', '.join(sorted(unknown))}")

        user = await self.get_user_by_id(user_id)
        if user is None:
            return None

        if "trial_used" in fields and not fields["trial_used"]:
            if user.trial_used:
                logger.warning(f"Ignoring attempt to reset trial_used for user {user_id}")
            fields.pop("trial_used")

        if isinstance(fields.get("subscription_type"), SubscriptionType):
            fields["subscription_type"] = fields["subscription_type"].value

        return await self.update_user(user, fields)

    async def update_user(self, user: User, updates: dict) -> User:
        """
        Update user fields.

        Args:
            user: User object to update
            updates: Dictionary of fields to update (e.g., {"subscription_status": "active"})

        Returns:
            Updated User object
        """
        for key, value in updates.items():
            if hasattr(user, key):
                setattr(user, key, value)
        user.updated_at = utcnow()

        await self.db.flush()
        await self.db.refresh(user)
        return user
