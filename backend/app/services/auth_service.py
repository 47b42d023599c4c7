import logging
import secrets
from datetime import timedelta

import jwt
from fastapi import Depends, Request
from jwt.exceptions import InvalidTokenError as JWTError

from app.config import settings
from app.services.market_engine import MarketEngine
from app.services.market_errors import permission_denied, unauthenticated
from app.utils import utcnow

logger = logging.getLogger("oddsmarket.auth")

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60


def decode_jwt(token: str) -> dict:
    """Decode a JWT, trying the current secret first, then the old one.

    This allows zero-downtime rotation of JWT_SECRET:
    1. Set JWT_SECRET to the new value and JWT_SECRET_OLD to the previous one.
    2. Once every token signed with the old secret has expired, remove JWT_SECRET_OLD.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGORITHM])
    except JWTError:
        if settings.JWT_SECRET_OLD:
            return jwt.decode(token, settings.JWT_SECRET_OLD, algorithms=[ALGORITHM])
        raise


def create_access_token(user_id: str, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    expire = utcnow() + timedelta(minutes=expires_minutes)
    payload = {
        "sub": user_id,
        "exp": expire,
        "type": "access",
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGORITHM)


def _extract_token(request: Request) -> str | None:
    token = request.cookies.get("access_token")
    if token:
        return token
    header = request.headers.get("Authorization") or ""
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


def get_market_engine(request: Request) -> MarketEngine:
    """FastAPI dependency: the engine built at startup."""
    return request.app.state.engine


async def get_current_user_id(request: Request) -> str:
    """FastAPI dependency: authenticated user id from the access token."""
    token = _extract_token(request)
    if not token:
        raise unauthenticated()

    try:
        payload = decode_jwt(token)
    except JWTError:
        raise unauthenticated("Invalid token.")

    if payload.get("type") != "access":
        raise unauthenticated("Invalid token type.")

    user_id = payload.get("sub")
    if not user_id:
        raise unauthenticated("Invalid token.")
    return str(user_id)


async def get_admin_user(
    user_id: str = Depends(get_current_user_id),
    engine: MarketEngine = Depends(get_market_engine),
) -> dict:
    """FastAPI dependency: requires an authenticated admin user."""
    user = await engine.store.get("users", user_id)
    if not user or not user.get("is_admin"):
        raise permission_denied("Admins only.")
    return user
