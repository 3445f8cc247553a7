"""
Scheduled sync trigger for an external cron.
"""

import logging

from fastapi import APIRouter, Depends

from ..auth import verify_cron_secret
from ..models import TickResponse
from . import EngineServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter()


@router.api_route(
    "/api/cron/sync",
    methods=["GET", "POST"],
    response_model=TickResponse,
    dependencies=[Depends(verify_cron_secret)],
)
async def run_scheduled_sync(services: EngineServices = Depends(get_services)):
    """Run one scheduler tick for all due accounts."""
    summary = await services.scheduler.run_tick()
    return summary.to_dict()
