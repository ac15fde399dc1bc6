# app/core/security.py
import hashlib
import hmac
from typing import Optional

from jose import jwt

from app.core.config import settings

ALGORITHM = settings.JWT_ALGORITHM


def decode_access_token(token: str) -> dict:
    """Decode a bearer token issued by the upstream auth service."""
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])


def create_access_token(subject: str, expires_at: Optional[int] = None) -> str:
    claims = {"sub": str(subject)}
    if expires_at is not None:
        claims["exp"] = expires_at
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=ALGORITHM)


def _channel_signature(channel_id: str, user_id: str) -> str:
    message = f"{channel_id}:{user_id}".encode()
    return hmac.new(settings.SECRET_KEY.encode(), message, hashlib.sha256).hexdigest()


def sign_channel_token(channel_id: str, user_id: str) -> str:
    """
    Token handed to the provider when a push channel is opened.

    The provider echoes it back in ``X-Goog-Channel-Token`` on every
    notification. It carries the user id plus an HMAC over channel and user,
    so a forged notification cannot name a channel it does not know the
    secret for.
    """
    return f"{user_id}.{_channel_signature(channel_id, user_id)}"


def verify_channel_token(token: Optional[str], channel_id: str, user_id: str) -> bool:
    if not token or "." not in token:
        return False
    token_user, signature = token.rsplit(".", 1)
    if not hmac.compare_digest(token_user, user_id):
        return False
    return hmac.compare_digest(signature, _channel_signature(channel_id, user_id))
