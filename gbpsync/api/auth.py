"""
Request authentication: user JWTs and the cron shared secret.
"""

import logging
import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError

from .routes import EngineServices, get_services

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def verify_jwt(token: str, secret: str, audience: Optional[str] = None) -> dict:
    """Verify and decode an auth provider JWT.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=audience,
            options={"verify_aud": audience is not None},
        )
    except JWTError as e:
        error_str = str(e).lower()
        if "expired" in error_str:
            raise HTTPException(
                status_code=401,
                detail={"code": "TOKEN_EXPIRED", "message": "Token has expired"},
            )
        raise HTTPException(
            status_code=401,
            detail={"code": "INVALID_TOKEN", "message": "Invalid token"},
        )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    services: EngineServices = Depends(get_services),
) -> dict:
    """FastAPI dependency to get current authenticated user.

    Returns:
        JWT payload; ``sub`` is the user id

    Raises:
        HTTPException: If not authenticated
    """
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "UNAUTHORIZED", "message": "Not authenticated"},
        )

    secret = services.server_config.auth_jwt_secret
    if not secret:
        logger.error("AUTH_JWT_SECRET not configured; rejecting user request")
        raise HTTPException(
            status_code=503,
            detail={"code": "AUTH_NOT_CONFIGURED", "message": "Authentication is not configured"},
        )

    payload = verify_jwt(credentials.credentials, secret, services.server_config.auth_jwt_audience)
    if not payload.get("sub"):
        raise HTTPException(
            status_code=401,
            detail={"code": "INVALID_TOKEN", "message": "Token has no subject"},
        )
    return payload


async def verify_cron_secret(
    request: Request,
    services: EngineServices = Depends(get_services),
) -> None:
    """Require ``Authorization: Bearer <CRON_SECRET>``."""
    expected = services.server_config.cron_secret
    header = request.headers.get("Authorization", "")

    if not expected or not header.startswith("Bearer "):
        logger.warning("Rejected cron trigger without valid credentials")
        raise HTTPException(
            status_code=401,
            detail={"code": "UNAUTHORIZED", "message": "Unauthorized"},
        )
    if not secrets.compare_digest(header[len("Bearer "):].encode(), expected.encode()):
        logger.warning("Rejected cron trigger with wrong secret")
        raise HTTPException(
            status_code=401,
            detail={"code": "UNAUTHORIZED", "message": "Unauthorized"},
        )
