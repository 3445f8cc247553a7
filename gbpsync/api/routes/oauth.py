"""
Google account connection: consent URL and OAuth callback.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ...auth.oauth_flow import GoogleOAuthFlow
from ..auth import get_current_user
from ..models import AccountSummary, AuthUrlResponse, ConnectResponse, ErrorResponse
from . import EngineServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/oauth")


def _get_flow(services: EngineServices) -> GoogleOAuthFlow:
    if services.oauth_flow is None:
        raise HTTPException(
            status_code=503,
            detail={"code": "OAUTH_NOT_CONFIGURED", "message": "Google integration is not configured"},
        )
    return services.oauth_flow


@router.post("/auth-url", response_model=AuthUrlResponse)
async def create_auth_url(
    user: dict = Depends(get_current_user),
    services: EngineServices = Depends(get_services),
):
    """Start connecting a Google account for the caller."""
    auth_url, state = _get_flow(services).generate_auth_url(user["sub"])
    logger.info(f"OAuth flow started for user {user['sub']}")
    return AuthUrlResponse(auth_url=auth_url, state=state)


@router.get(
    "/callback",
    response_model=ConnectResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Consent denied or invalid state"},
        404: {"model": ErrorResponse, "description": "No Business Profile accounts"},
        502: {"model": ErrorResponse, "description": "Google rejected the authorization code"},
    },
)
async def oauth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    services: EngineServices = Depends(get_services),
):
    """Google redirects here after consent. The state identifies the user."""
    flow = _get_flow(services)

    if error:
        logger.warning(f"OAuth consent returned error: {error}")
        raise HTTPException(
            status_code=400,
            detail={"code": "OAUTH_DENIED", "message": f"OAuth error: {error}"},
        )
    if not code or not state:
        raise HTTPException(
            status_code=400,
            detail={"code": "OAUTH_MISSING_PARAMS", "message": "Missing authorization code or state"},
        )

    accounts = await flow.connect(code, state)
    return ConnectResponse(accounts=[AccountSummary.from_account(account) for account in accounts])
