"""
Analytics Router - API endpoints for listening analytics
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth_utils import Identity, get_optional_identity, resolve_uid
from backend.utils.responses import billing_error_response, error_response, success_response
from database import get_db
from models.analytics import RatingRequest, ViewRequest, ViewTimeRequest
from services.analytics_service import AnalyticsService
from services.billing_errors import BillingError

logger = logging.getLogger(__name__)

# Create router
analytics_router = APIRouter(prefix="/api/analytics", tags=["analytics"])


def _event_data(event):
    return {"id": event.id, "sound_id": event.sound_id, "kind": event.kind, "action": event.action}


@analytics_router.post("/views/start")
async def start_view(
    body: ViewRequest,
    identity: Optional[Identity] = Depends(get_optional_identity),
    db: AsyncSession = Depends(get_db),
):
    """Record that playback of a sound started."""
    try:
        event = await AnalyticsService(db).start_view(resolve_uid(identity, body.uid), body.sound_id, body.artists)
    except BillingError as e:
        return billing_error_response(e)
    return success_response(data=_event_data(event))


@analytics_router.post("/views/finish")
async def finish_view(
    body: ViewRequest,
    identity: Optional[Identity] = Depends(get_optional_identity),
    db: AsyncSession = Depends(get_db),
):
    """Record that playback of a sound ended, with the reason."""
    try:
        event = await AnalyticsService(db).finish_view(
            resolve_uid(identity, body.uid), body.sound_id, reason=body.reason, artists=body.artists
        )
    except BillingError as e:
        return billing_error_response(e)
    return success_response(data=_event_data(event))


@analytics_router.post("/views/time")
async def log_view_time(
    body: ViewTimeRequest,
    identity: Optional[Identity] = Depends(get_optional_identity),
    db: AsyncSession = Depends(get_db),
):
    try:
        event = await AnalyticsService(db).log_view_time(
            resolve_uid(identity, body.uid),
            body.sound_id,
            body.action,
            body.played_seconds,
            reason=body.reason,
            artists=body.artists,
        )
    except BillingError as e:
        return billing_error_response(e)
    except ValueError as e:
        return error_response("invalid_listen", status=400, message=str(e))
    return success_response(data=_event_data(event))


@analytics_router.post("/albums/start")
async def start_album_view(
    body: ViewRequest,
    identity: Optional[Identity] = Depends(get_optional_identity),
    db: AsyncSession = Depends(get_db),
):
    """Record that an album page was opened."""
    try:
        event = await AnalyticsService(db).start_album_view(
            resolve_uid(identity, body.uid), body.sound_id, body.artists
        )
    except BillingError as e:
        return billing_error_response(e)
    return success_response(data=_event_data(event))


@analytics_router.post("/albums/finish")
async def finish_album_view(
    body: ViewRequest,
    identity: Optional[Identity] = Depends(get_optional_identity),
    db: AsyncSession = Depends(get_db),
):
    try:
        event = await AnalyticsService(db).finish_album_view(
            resolve_uid(identity, body.uid), body.sound_id, reason=body.reason, artists=body.artists
        )
    except BillingError as e:
        return billing_error_response(e)
    return success_response(data=_event_data(event))


@analytics_router.post("/ratings")
async def save_rating(
    body: RatingRequest,
    identity: Optional[Identity] = Depends(get_optional_identity),
    db: AsyncSession = Depends(get_db),
):
    """Store the user's 1-5 rating of a sound."""
    try:
        rating = await AnalyticsService(db).save_rating(resolve_uid(identity, body.uid), body.sound_id, body.rating)
    except BillingError as e:
        return billing_error_response(e)
    return success_response(data={"sound_id": rating.sound_id, "rating": rating.rating})


@analytics_router.get("/sounds/{sound_id}")
async def get_sound_summary(sound_id: str, db: AsyncSession = Depends(get_db)):
    summary = await AnalyticsService(db).get_sound_summary(sound_id)
    return success_response(data=summary)
