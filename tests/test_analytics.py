"""
Tests for listening analytics capture
"""
import pytest

from services.analytics_service import AnalyticsService
from services.billing_errors import AuthenticationRequiredError


@pytest.mark.asyncio
async def test_sound_summary_counts(test_db):
    """
    Plays, qualified listens and ratings roll up per sound.
    """
    analytics = AnalyticsService(test_db)
    await analytics.start_view("user_1", "sound_1", ["Artist A"])
    await analytics.start_view("user_2", "sound_1")
    await analytics.log_view_time("user_1", "sound_1", "qualified", 15)
    await analytics.finish_view("user_1", "sound_1", reason="end")
    await analytics.start_view("user_1", "sound_2")
    await analytics.start_album_view("user_1", "sound_1")
    await analytics.save_rating("user_1", "sound_1", 4)
    await analytics.save_rating("user_2", "sound_1", 5)

    summary = await analytics.get_sound_summary("sound_1")

    assert summary["plays"] == 2
    assert summary["qualified_listens"] == 1
    assert summary["average_rating"] == 4.5
    assert summary["rating_count"] == 2


@pytest.mark.asyncio
async def test_rating_is_replaced(test_db):
    analytics = AnalyticsService(test_db)
    await analytics.save_rating("user_1", "sound_1", 2)
    await analytics.save_rating("user_1", "sound_1", 5)

    summary = await analytics.get_sound_summary("sound_1")

    assert summary["rating_count"] == 1
    assert summary["average_rating"] == 5.0


@pytest.mark.asyncio
async def test_short_listen_is_not_qualified(test_db):
    analytics = AnalyticsService(test_db)

    with pytest.raises(ValueError):
        await analytics.log_view_time("user_1", "sound_1", "qualified", 14.9)

    stop = await analytics.log_view_time("user_1", "sound_1", "stop", 3.0, reason="pause")
    assert stop.action == "stop"
    assert stop.reason == "pause"


@pytest.mark.asyncio
async def test_anonymous_events_are_refused(test_db):
    with pytest.raises(AuthenticationRequiredError):
        await AnalyticsService(test_db).start_view(None, "sound_1")


@pytest.mark.asyncio
async def test_analytics_endpoints(async_client):
    start = await async_client.post(
        "/api/analytics/views/start", json={"sound_id": "sound_1", "uid": "user_1", "artists": ["A"]}
    )
    short = await async_client.post(
        "/api/analytics/views/time",
        json={"sound_id": "sound_1", "uid": "user_1", "action": "qualified", "played_seconds": 4},
    )
    bad_rating = await async_client.post(
        "/api/analytics/ratings", json={"sound_id": "sound_1", "uid": "user_1", "rating": 6}
    )
    rating = await async_client.post(
        "/api/analytics/ratings", json={"sound_id": "sound_1", "uid": "user_1", "rating": 3}
    )
    album = await async_client.post(
        "/api/analytics/albums/finish", json={"sound_id": "album_1", "uid": "user_1", "reason": "change"}
    )
    summary = await async_client.get("/api/analytics/sounds/sound_1")

    assert start.status_code == 200
    assert start.json()["data"]["action"] == "start"
    assert short.status_code == 400
    assert short.json()["error"] == "invalid_listen"
    assert bad_rating.status_code == 422
    assert rating.status_code == 200
    assert album.json()["data"]["kind"] == "album"
    assert summary.json()["data"] == {
        "sound_id": "sound_1",
        "plays": 1,
        "qualified_listens": 0,
        "average_rating": 3.0,
        "rating_count": 1,
    }
