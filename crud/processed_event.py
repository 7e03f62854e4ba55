"""
ProcessedEventRepository - event markers for webhook deduplication
"""

import logging
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from database_models import ProcessedStripeEvent

logger = logging.getLogger(__name__)


class ProcessedEventRepository:
    """
    Stores one marker row per applied Stripe event id.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def is_processed(self, event_id: str) -> bool:
        result = await self.db.execute(
            select(ProcessedStripeEvent.event_id).where(ProcessedStripeEvent.event_id == event_id)
        )
        return result.scalar_one_or_none() is not None

    async def mark_processed(self, event_id: str, event_type: str = None) -> bool:
        """
        Insert the marker for an event if it does not exist yet.

        The event id is the primary key, so the insert is a conditional
        create: a concurrent delivery that passed the existence check at the
        same time fails on flush or commit with IntegrityError, its request
        rolls back and Stripe retries it into the duplicate path.

        Args:
            event_id: Stripe event ID (evt_...)
            event_type: Stripe event type, stored for auditing

        Returns:
            True if this call created the marker, False if it already existed

        Raises:
            sqlalchemy.exc.IntegrityError: On a concurrent insert of the same id
        """
        if await self.is_processed(event_id):
            return False

        self.db.add(ProcessedStripeEvent(event_id=event_id, event_type=event_type))
        await self.db.flush()
        return True
