"""
Tests for token identity and uid resolution
"""
from unittest.mock import patch

import pytest

from auth_utils import Identity, create_jwt, decode_jwt, resolve_uid
from config.settings import settings


def test_jwt_round_trip():
    token = create_jwt("user_42", email="fan@example.com")
    payload = decode_jwt(token)

    assert payload["sub"] == "user_42"
    assert payload["email"] == "fan@example.com"
    assert decode_jwt(token + "x") is None


def test_token_identity_wins_over_uid_param():
    assert resolve_uid(Identity(user_id="user_1"), "user_2") == "user_1"
    assert resolve_uid(None, "user_2") == "user_2"
    assert resolve_uid(None, None) is None


def test_uid_param_can_be_disabled():
    with patch.object(settings, "allow_uid_param", False):
        assert resolve_uid(None, "user_2") is None
        assert resolve_uid(Identity(user_id="user_1"), None) == "user_1"


@pytest.mark.asyncio
async def test_bearer_token_identifies_user(async_client, load_user):
    token = create_jwt("user_jwt")

    response = await async_client.post(
        "/api/billing/trial", json={}, headers={"Authorization": f"Bearer {token}"}
    )

    assert response.status_code == 200
    user = await load_user("user_jwt")
    assert user.trial_used is True


@pytest.mark.asyncio
async def test_invalid_token_is_rejected(async_client):
    response = await async_client.post(
        "/api/billing/trial", json={"uid": "user_1"}, headers={"Authorization": "Bearer not-a-token"}
    )

    assert response.status_code == 401
    assert response.json()["error"] == "auth_required"


@pytest.mark.asyncio
async def test_health(async_client):
    response = await async_client.get("/health")

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "ok"
    assert response.headers["x-content-type-options"] == "nosniff"
