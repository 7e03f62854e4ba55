"""
Trial Service for managing the one-time free trial
"""
from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import TRIAL_DAYS
from crud.user import UserRepository
from database_models import User
from models.subscription import STATUS_TRIALING, SubscriptionType
from services.billing_errors import AuthenticationRequiredError, TrialAlreadyUsedError
from utils.time_utils import add_days, utcnow


class TrialService:
    """
    Service for managing user trial periods.
    Handles trial start and validation logic.
    """

    def __init__(self, db: AsyncSession, user_repo: UserRepository):
        """
        Initialize the trial service with database session and user repository.

        Args:
            db: AsyncSession instance for database operations
            user_repo: UserRepository instance for user operations
        """
        self.db = db
        self.user_repo = user_repo

    async def start_trial(self, uid: Optional[str], email: Optional[str] = None) -> datetime:
        """
        Start the free trial for a user.

        The trial can be used once: `trial_used` is set together with the
        trial tier and is never cleared afterwards.

        Args:
            uid: User ID
            email: Optional email for a newly created user record

        Returns:
            End of the trial period

        Raises:
            AuthenticationRequiredError: If no user ID is supplied
            TrialAlreadyUsedError: If the user already had a trial
        """
        if not uid:
            raise AuthenticationRequiredError("Auth required")

        user = await self.user_repo.get_or_create_user(uid, email)
        if user.trial_used:
            raise TrialAlreadyUsedError("Free trial already used.")

        now = utcnow()
        trial_end = add_days(now, TRIAL_DAYS)
        await self.user_repo.merge_subscription_state(
            user.id,
            subscription_type=SubscriptionType.TRIAL,
            subscription_status=STATUS_TRIALING,
            subscription_end_date=trial_end,
            trial_started_at=now,
            trial_used=True,
        )
        return trial_end

    def is_trial_active(self, user: User) -> bool:
        """
        Check if a user's trial is currently active.

        A trial is active if:
        1. The user is on the trial tier
        2. The trial end date lies in the future

        Args:
            user: User object to check

        Returns:
            True if trial is active, False otherwise
        """
        if user.subscription_type != SubscriptionType.TRIAL.value:
            return False
        if user.subscription_end_date is None:
            return False
        return utcnow() < user.subscription_end_date
