"""Access tokens issued by this API.

Both login paths (World ID proof and wallet) end in ``create_access_token``.
Protected routes depend on ``get_current_user`` which:
1. Extracts the ``Authorization: Bearer <token>`` header.
2. Verifies signature and expiry with the shared ``JWT_SECRET``.
3. Returns the decoded claims without touching the database.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional

import structlog
from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt
from pydantic import ValidationError

from schemas import TokenPayload
from settings import Settings, get_settings

logger = structlog.get_logger(__name__)


def create_access_token(
    user_id: int,
    settings: Settings,
    **claims,
) -> str:
    now = datetime.now(timezone.utc)
    payload = TokenPayload(
        sub=str(user_id),
        exp=int((now + timedelta(hours=settings.jwt_expiration_hours)).timestamp()),
        iat=int(now.timestamp()),
        **claims,
    )
    return jwt.encode(
        payload.model_dump(by_alias=True, exclude_none=True),
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )


def verify_token(token: str, settings: Settings) -> TokenPayload:
    """Verify an access token and return its claims.

    Raises HTTPException(401) on failure.
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        return TokenPayload.model_validate(payload)
    except (JWTError, ValidationError) as exc:
        logger.warning("JWT verification failed", exc=str(exc))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication failed")


def _get_authorization_header(request: Request) -> Optional[str]:
    return request.headers.get("Authorization")


# --- FastAPI dependency ---
async def get_current_user(
    authorization: Annotated[Optional[str], Depends(_get_authorization_header)],
    settings: Settings = Depends(get_settings),
) -> TokenPayload:
    if not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authorization header missing")

    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authorization format")

    return verify_token(parts[1], settings)


CurrentUser = Annotated[TokenPayload, Depends(get_current_user)]
