"""
Bearer auth for the driver console: the token subject is the driver id.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from dispatch_client.config import get_settings

settings = get_settings()
bearer_scheme = HTTPBearer(auto_error=False)

DRIVER_ROLE = "driver"


def create_driver_token(driver_id: str, expires_minutes: Optional[int] = None) -> str:
    """Sign a driver console token; `expires_minutes` defaults to the configured lifetime."""
    minutes = expires_minutes if expires_minutes is not None else settings.access_token_expire_minutes
    claims = {
        "sub": driver_id,
        "role": DRIVER_ROLE,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=minutes),
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_driver(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """Decode the Bearer token and return the driver id it was issued to."""
    if credentials is None:
        raise _unauthorized("Missing Bearer token")
    try:
        claims = jwt.decode(
            credentials.credentials,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        raise _unauthorized("Invalid or expired token")
    driver_id = claims.get("sub")
    if not driver_id or claims.get("role") != DRIVER_ROLE:
        raise _unauthorized("Token is not a driver token")
    return driver_id
