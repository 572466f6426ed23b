"""
Authentication

Tokens are issued by the platform's auth service; the gateway only verifies
them and extracts the acting user.
"""
from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import BaseModel

from gateway.config import settings
from gateway.core.errors import UnauthorizedError

security = HTTPBearer(auto_error=False)


class Actor(BaseModel):
    """The authenticated user on whose behalf a request runs."""
    user_id: str
    email: str


def verify_token(token: str) -> Optional[Actor]:
    """Verify an access token and return the actor it names."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None

    if payload.get("type", "access") != "access":
        return None
    if not payload.get("sub") or not payload.get("email"):
        return None

    return Actor(user_id=str(payload["sub"]), email=payload["email"])


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Actor:
    """Get the current actor from the bearer token."""
    if credentials is None:
        raise UnauthorizedError("Not authenticated")

    actor = verify_token(credentials.credentials)
    if not actor:
        raise UnauthorizedError("Invalid or expired token")

    return actor
