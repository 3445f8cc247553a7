"""
Request and response schemas for the HTTP API.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Error payload returned by the exception handlers."""
    error: str
    message: str
    details: Optional[str] = None
    retryable: bool = False
    requires_reconnect: bool = False


class AccountSummary(BaseModel):
    """Connected account as listed for its owner. Never includes tokens."""
    id: str
    account_name: str
    account_resource: Optional[str] = None
    is_active: bool
    sync_schedule: str
    last_sync: Optional[datetime] = None
    requires_reconnect: bool = False

    @classmethod
    def from_account(cls, account) -> "AccountSummary":
        return cls(
            id=account.id,
            account_name=account.account_name,
            account_resource=account.account_resource,
            is_active=account.is_active,
            sync_schedule=account.settings.sync_schedule.value,
            last_sync=account.last_sync,
            requires_reconnect=account.needs_reconnect,
        )


class SyncRequest(BaseModel):
    """Body of a manual sync request."""
    sync_type: Literal["full", "incremental"] = "full"


class SyncResultResponse(BaseModel):
    """Per-entity outcome of one account sync."""
    account_id: str
    sync_type: str
    status: str
    counts: Dict[str, int] = Field(default_factory=dict)
    errors: Dict[str, List[str]] = Field(default_factory=dict)
    last_sync_updated: bool = False
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    took_ms: int = 0


class SyncStatusResponse(BaseModel):
    """Sync state of one account."""
    account_id: str
    account_name: str
    is_active: bool
    sync_schedule: str
    schedule_description: str
    last_sync: Optional[datetime] = None
    requires_reconnect: bool = False


class TickResponse(BaseModel):
    """Result of one scheduler tick."""
    synced: int
    errors: int
    results: List[Dict[str, Any]] = Field(default_factory=list)
    schedule: str


class DisconnectResponse(BaseModel):
    account_id: str
    disconnected: bool
    disconnected_at: Optional[datetime] = None


class PublishResponse(BaseModel):
    """Outcome of a publish attempt."""
    entity_id: str
    success: bool
    status: str
    provider_resource_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    requires_reconnect: bool = False


class AuthUrlResponse(BaseModel):
    """Google consent URL for starting a connection."""
    auth_url: str
    state: str


class ConnectResponse(BaseModel):
    """Accounts stored by a completed consent flow."""
    accounts: List[AccountSummary] = Field(default_factory=list)


class TokenStatusResponse(BaseModel):
    """Validity of an account's stored tokens. Never includes the tokens."""
    account_id: str
    valid: bool
    can_refresh: bool
    needs_refresh: bool
    expires_in: Optional[int] = None
