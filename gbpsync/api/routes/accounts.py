"""
Account sync and connection routes.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path

from ...models.account import Account
from ...models.base import utcnow
from ...models.sync import SyncType
from ..auth import get_current_user
from ..models import (
    AccountSummary, DisconnectResponse, ErrorResponse, SyncRequest, SyncResultResponse, SyncStatusResponse,
    TickResponse, TokenStatusResponse
)
from . import EngineServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/accounts")


async def _get_owned_account_or_404(services: EngineServices, account_id: str, user: dict) -> Account:
    """Load an account owned by the caller or raise 404."""
    account = await services.accounts.get_account_for_user(account_id, user["sub"])
    if account is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "NOT_FOUND", "message": "Account not found"},
        )
    return account


@router.get("", response_model=List[AccountSummary])
async def list_accounts(
    user: dict = Depends(get_current_user),
    services: EngineServices = Depends(get_services),
):
    """List the caller's connected accounts, including disconnected ones."""
    accounts = await services.accounts.list_accounts_for_user(user["sub"])
    return [AccountSummary.from_account(account) for account in accounts]


@router.post("/sync-all", response_model=TickResponse)
async def sync_all_accounts(
    body: Optional[SyncRequest] = None,
    user: dict = Depends(get_current_user),
    services: EngineServices = Depends(get_services),
):
    """Sync every active account of the caller, one result per account."""
    sync_type = SyncType((body or SyncRequest()).sync_type)
    logger.info(f"Sync of all accounts requested by {user['sub']}")
    summary = await services.scheduler.sync_user_accounts(user["sub"], sync_type)
    return summary.to_dict()


@router.post(
    "/{account_id}/sync",
    response_model=SyncResultResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Account must be reconnected"},
        403: {"model": ErrorResponse, "description": "Account is disconnected"},
        404: {"description": "Account not found"},
    },
)
async def sync_account(
    account_id: str = Path(..., description="Account ID"),
    body: Optional[SyncRequest] = None,
    user: dict = Depends(get_current_user),
    services: EngineServices = Depends(get_services),
):
    """Run a manual sync for one of the caller's accounts."""
    await _get_owned_account_or_404(services, account_id, user)
    sync_type = SyncType((body or SyncRequest()).sync_type)

    logger.info(f"Manual {sync_type.value} sync requested for account {account_id} by {user['sub']}")
    result = await services.executor.sync_account(account_id, sync_type)
    return result.to_dict()


@router.get("/{account_id}/sync/status", response_model=SyncStatusResponse)
async def get_sync_status(
    account_id: str = Path(..., description="Account ID"),
    user: dict = Depends(get_current_user),
    services: EngineServices = Depends(get_services),
):
    """Last sync time, schedule and reconnect state of an account."""
    account = await _get_owned_account_or_404(services, account_id, user)
    schedule = account.settings.sync_schedule
    return SyncStatusResponse(
        account_id=account.id,
        account_name=account.account_name,
        is_active=account.is_active,
        sync_schedule=schedule.value,
        schedule_description=services.scheduler.anchors.describe(schedule),
        last_sync=account.last_sync,
        requires_reconnect=account.needs_reconnect,
    )


@router.post("/{account_id}/disconnect", response_model=DisconnectResponse)
async def disconnect_account(
    account_id: str = Path(..., description="Account ID"),
    user: dict = Depends(get_current_user),
    services: EngineServices = Depends(get_services),
):
    """Deactivate an account and forget its tokens. Locations are kept."""
    await _get_owned_account_or_404(services, account_id, user)

    now = utcnow()
    disconnected = await services.accounts.deactivate_account(account_id, now)
    await services.action_log.record(
        action="disconnect_account",
        status="success" if disconnected else "failed",
        details={"account_id": account_id},
        user_id=user["sub"],
        account_id=account_id,
    )
    logger.info(f"Account {account_id} disconnected by {user['sub']}")
    return DisconnectResponse(account_id=account_id, disconnected=disconnected, disconnected_at=now)


@router.get("/{account_id}/token", response_model=TokenStatusResponse)
async def get_token_status(
    account_id: str = Path(..., description="Account ID"),
    user: dict = Depends(get_current_user),
    services: EngineServices = Depends(get_services),
):
    """Whether the account's tokens are valid and can be refreshed."""
    await _get_owned_account_or_404(services, account_id, user)
    status = await services.resolver.token_status(account_id)
    return status.to_dict()
