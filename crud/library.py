"""
LibraryRepository - items bought through one-off checkouts
"""

import logging
from typing import Any, Dict, Iterable, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database_models import LibraryItem

logger = logging.getLogger(__name__)


class LibraryRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def add_items(self, user_id: str, items: Iterable[Dict[str, Any]]) -> List[LibraryItem]:
        """
        Add purchased items to a user's library.

        Args:
            user_id: Owner of the library
            items: Dicts with checkout_session_id, price_id, product_id,
                description and quantity

        Returns:
            The flushed LibraryItem rows
        """
        rows = [LibraryItem(user_id=user_id, **item) for item in items]
        self.db.add_all(rows)
        await self.db.flush()
        logger.info(f"Added {len(rows)} library item(s) for user {user_id}")
        return rows

    async def list_items(self, user_id: str) -> List[LibraryItem]:
        result = await self.db.execute(
            select(LibraryItem)
            .where(LibraryItem.user_id == user_id)
            .order_by(LibraryItem.added_at.desc(), LibraryItem.id.desc())
        )
        return list(result.scalars().all())
