from dataclasses import dataclass
from typing import Annotated, Optional
import logging

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from coachflow.database import get_db
from coachflow.core.security import verify_access_token, verify_internal_key, is_admin


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme; missing credentials are handled below as 401
security = HTTPBearer(auto_error=False)


@dataclass
class Caller:
    """Authenticated caller of an endpoint."""
    subject: str
    kind: str  # "internal" or "admin"

    @property
    def actor(self) -> str:
        return f"{self.kind}:{self.subject}"


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _admin_from_bearer(credentials: Optional[HTTPAuthorizationCredentials]) -> Caller:
    if credentials is None:
        raise _unauthorized("Not authenticated")

    claims = verify_access_token(credentials.credentials)
    if claims is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise _unauthorized()

    if not is_admin(claims):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return Caller(subject=claims["sub"], kind="admin")


async def require_admin(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Caller:
    """Dependency: an admin bearer token."""
    return _admin_from_bearer(credentials)


async def require_internal_or_admin(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    x_internal_api_key: Annotated[Optional[str], Header()] = None,
) -> Caller:
    """
    Dependency: the internal API key header or an admin bearer token.

    401 when no valid credentials are presented, 403 when a valid token
    belongs to a non-admin.
    """
    if x_internal_api_key is not None:
        if verify_internal_key(x_internal_api_key):
            return Caller(subject="service", kind="internal")
        logger.warning("Rejected request with invalid internal API key")
        raise _unauthorized("Invalid internal API key")

    return _admin_from_bearer(credentials)


# Type aliases for cleaner endpoint signatures
DB = Annotated[AsyncSession, Depends(get_db)]
AdminCaller = Annotated[Caller, Depends(require_admin)]
InternalOrAdmin = Annotated[Caller, Depends(require_internal_or_admin)]
