"""
Authentication utilities: JWT token management and request identity
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import jwt
from fastapi import Cookie, Header

from config.settings import settings
from services.billing_errors import AuthenticationRequiredError

logger = logging.getLogger(__name__)

# JWT configuration
ALGORITHM = "HS256"


@dataclass
class Identity:
    """User identity carried by a verified token."""

    user_id: str
    email: Optional[str] = None


def create_jwt(user_id: str, email: Optional[str] = None) -> str:
    """Create a JWT token for a user"""
    if not settings.jwt_secret_key:
        raise ValueError("JWT_SECRET_KEY is not set. Cannot create JWT token.")

    payload = {
        "sub": user_id,
        "exp": datetime.utcnow() + timedelta(days=7)
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=ALGORITHM)


def decode_jwt(token: str):
    """Decode a JWT token. Returns None if invalid."""
    if not settings.jwt_secret_key:
        raise ValueError("JWT_SECRET_KEY is not set. Cannot decode JWT token.")

    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[ALGORITHM])
        return payload
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


async def get_optional_identity(
    auth_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> Optional[Identity]:
    """
    Dependency returning the caller's identity when a token is presented.

    Authentication priority:
    1. Authorization header (Bearer token)
    2. auth_token cookie
    Returns None when no token is sent. A token that fails verification is
    rejected instead of being ignored.
    """
    token = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization.replace("Bearer ", "").strip()
    elif auth_token:
        token = auth_token

    if not token:
        return None

    if not settings.jwt_secret_key:
        logger.warning("Bearer token received but JWT_SECRET_KEY is not set")
        raise AuthenticationRequiredError("Token authentication is not configured")

    payload = decode_jwt(token)
    if not payload or not payload.get("sub"):
        raise AuthenticationRequiredError("Invalid or expired token")

    return Identity(user_id=str(payload["sub"]), email=payload.get("email"))


def resolve_uid(identity: Optional[Identity], uid: Optional[str]) -> Optional[str]:
    """
    Pick the user id for a request.

    A verified token always wins. The explicit `uid` parameter is only honoured
    while ALLOW_UID_PARAM is enabled.
    """
    if identity:
        if uid and uid != identity.user_id:
            logger.warning(f"Ignoring uid parameter {uid} that differs from token subject {identity.user_id}")
        return identity.user_id
    if uid and settings.allow_uid_param:
        return uid
    return None
