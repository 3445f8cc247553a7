"""
Publishing routes.
"""

import logging

from fastapi import APIRouter, Depends, Path
from fastapi.responses import JSONResponse

from ..auth import get_current_user
from ..models import ErrorResponse, PublishResponse
from . import EngineServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/publish")


@router.post(
    "/{entity_id}",
    response_model=PublishResponse,
    responses={
        401: {"model": PublishResponse, "description": "Account must be reconnected"},
        403: {"model": PublishResponse, "description": "Insufficient OAuth scopes"},
        404: {"model": ErrorResponse, "description": "Entity not found"},
        409: {"model": ErrorResponse, "description": "Already published or in flight"},
        502: {"model": PublishResponse, "description": "Google rejected the request"},
    },
)
async def publish_entity(
    entity_id: str = Path(..., description="Post, reply or answer ID"),
    user: dict = Depends(get_current_user),
    services: EngineServices = Depends(get_services),
):
    """Publish or resubmit one of the caller's entities."""
    result = await services.pipeline.publish(entity_id, user_id=user["sub"])
    response = PublishResponse(**result.to_dict())

    if result.success:
        return response

    if result.error_code == "INSUFFICIENT_SCOPES":
        status_code = 403
    elif result.requires_reconnect:
        status_code = 401
    else:
        status_code = 502
    return JSONResponse(status_code=status_code, content=response.model_dump())
