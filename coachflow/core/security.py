from datetime import datetime, timedelta, timezone
from typing import Optional, Any
import secrets
import uuid

from jose import JWTError, jwt

from coachflow.config import settings


def create_access_token(
    subject: str | uuid.UUID,
    expires_delta: Optional[timedelta] = None,
    additional_claims: Optional[dict[str, Any]] = None
) -> str:
    """
    Create a JWT access token.

    Args:
        subject: The subject of the token (usually user ID)
        expires_delta: Optional custom expiration time
        additional_claims: Optional additional claims to include (e.g. role)

    Returns:
        Encoded JWT token string
    """
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {
        "sub": str(subject),
        "exp": expire,
        "iat": datetime.now(timezone.utc),
        "jti": str(uuid.uuid4()),
        "type": "access"
    }

    if additional_claims:
        to_encode.update(additional_claims)

    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """
    Decode and validate a JWT token.

    Returns:
        Decoded token payload or None if invalid
    """
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except JWTError:
        return None


def verify_access_token(token: str) -> Optional[dict[str, Any]]:
    """Claims of a valid access token, else None."""
    payload = decode_token(token)
    if payload is None or payload.get("type") != "access" or not payload.get("sub"):
        return None
    return payload


def is_admin(claims: dict[str, Any]) -> bool:
    roles = claims.get("roles") or [claims.get("role")]
    return any(role in settings.ADMIN_ROLES for role in roles if role)


def verify_internal_key(provided: Optional[str]) -> bool:
    """Constant-time check of the internal API key; never true when unset."""
    if not provided or not settings.INTERNAL_API_KEY:
        return False
    return secrets.compare_digest(provided, settings.INTERNAL_API_KEY)
