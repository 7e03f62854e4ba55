"""
Analytics Service - listening events and track ratings
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import QUALIFIED_LISTEN_SECONDS
from database_models import ListeningEvent, TrackRating
from services.billing_errors import AuthenticationRequiredError

logger = logging.getLogger(__name__)

KIND_SOUND = "sound"
KIND_ALBUM = "album"


class AnalyticsService:
    """Service class for listening analytics business logic"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _record(
        self,
        uid: Optional[str],
        sound_id: str,
        kind: str,
        action: str,
        reason: Optional[str] = None,
        played_seconds: float = 0.0,
        artists: Optional[List[str]] = None,
    ) -> ListeningEvent:
        if not uid:
            raise AuthenticationRequiredError("Auth required")

        event = ListeningEvent(
            user_id=uid,
            sound_id=sound_id,
            kind=kind,
            action=action,
            reason=reason,
            played_seconds=played_seconds,
            artists=list(artists or []),
        )
        self.db.add(event)
        await self.db.flush()
        logger.debug(f"Recorded {kind} {action} for {sound_id} by {uid}")
        return event

    async def start_view(self, uid: Optional[str], sound_id: str, artists: Optional[List[str]] = None) -> ListeningEvent:
        return await self._record(uid, sound_id, KIND_SOUND, "start", artists=artists)

    async def finish_view(
        self,
        uid: Optional[str],
        sound_id: str,
        reason: Optional[str] = None,
        artists: Optional[List[str]] = None,
    ) -> ListeningEvent:
        return await self._record(uid, sound_id, KIND_SOUND, "finish", reason=reason, artists=artists)

    async def log_view_time(
        self,
        uid: Optional[str],
        sound_id: str,
        action: str,
        played_seconds: float,
        reason: Optional[str] = None,
        artists: Optional[List[str]] = None,
    ) -> ListeningEvent:
        """
        Record listening time for a sound.

        Args:
            uid: User ID
            sound_id: Sound being played
            action: "qualified" once the listen passes the threshold, "stop" otherwise
            played_seconds: Seconds played so far
            reason: Why playback stopped, for "stop"
            artists: Artist names credited on the sound

        Returns:
            The stored event

        Raises:
            ValueError: If a qualified listen is below the threshold
        """
        if action == "qualified" and played_seconds < QUALIFIED_LISTEN_SECONDS:
            raise ValueError(
                f"A qualified listen needs at least {QUALIFIED_LISTEN_SECONDS} seconds, got {played_seconds:g}"
            )
        return await self._record(
            uid,
            sound_id,
            KIND_SOUND,
            action,
            reason=reason,
            played_seconds=played_seconds,
            artists=artists,
        )

    async def start_album_view(self, uid: Optional[str], album_id: str, artists: Optional[List[str]] = None) -> ListeningEvent:
        return await self._record(uid, album_id, KIND_ALBUM, "start", artists=artists)

    async def finish_album_view(
        self,
        uid: Optional[str],
        album_id: str,
        reason: Optional[str] = None,
        artists: Optional[List[str]] = None,
    ) -> ListeningEvent:
        return await self._record(uid, album_id, KIND_ALBUM, "finish", reason=reason, artists=artists)

    async def save_rating(self, uid: Optional[str], sound_id: str, rating: int) -> TrackRating:
        """Store a rating, replacing the user's previous rating of the same sound."""
        if not uid:
            raise AuthenticationRequiredError("Auth required")

        result = await self.db.execute(
            select(TrackRating).where(TrackRating.user_id == uid, TrackRating.sound_id == sound_id)
        )
        existing = result.scalar_one_or_none()
        if existing:
            existing.rating = rating
            await self.db.flush()
            return existing

        track_rating = TrackRating(user_id=uid, sound_id=sound_id, rating=rating)
        self.db.add(track_rating)
        await self.db.flush()
        return track_rating

    async def get_sound_summary(self, sound_id: str) -> Dict[str, Any]:
        """
        Aggregate listening stats for a sound.

        Returns:
            Dict with plays, qualified listens, average rating and rating count
        """
        counts = await self.db.execute(
            select(ListeningEvent.action, func.count(ListeningEvent.id))
            .where(ListeningEvent.sound_id == sound_id, ListeningEvent.kind == KIND_SOUND)
            .group_by(ListeningEvent.action)
        )
        by_action = {action: count for action, count in counts.all()}

        ratings = await self.db.execute(
            select(func.avg(TrackRating.rating), func.count(TrackRating.id)).where(TrackRating.sound_id == sound_id)
        )
        average, rating_count = ratings.one()

        return {
            "sound_id": sound_id,
            "plays": by_action.get("start", 0),
            "qualified_listens": by_action.get("qualified", 0),
            "average_rating": round(float(average), 2) if average is not None else None,
            "rating_count": rating_count,
        }
