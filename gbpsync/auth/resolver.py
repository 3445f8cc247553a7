"""
Access token resolution with lazy, single-flight refresh.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from ..data.base import AccountRepository
from ..exceptions import NoRefreshTokenError, NotFoundError, GBPSyncError, create_error_context
from ..models.account import Account
from ..models.base import BaseModel, utcnow
from .refresher import TokenRefresher

logger = logging.getLogger(__name__)


@dataclass
class TokenStatus(BaseModel):
    """Whether an account's stored credentials are usable right now."""
    account_id: str
    valid: bool
    can_refresh: bool
    needs_refresh: bool
    expires_in: Optional[int] = None


# A token this close to expiry is reported as needing a refresh
REFRESH_SOON = timedelta(hours=1)


class AccessTokenResolver:
    """
    Hands out currently valid access tokens for accounts.

    A stored token whose expiry is strictly in the future is returned
    without any network call. Otherwise the token is refreshed under a
    per-account lock: concurrent callers for the same account wait for the
    first refresh and then reuse the token it stored, so a provider that
    rotates refresh tokens never sees two exchanges racing each other.
    """

    def __init__(self,
                 accounts: AccountRepository,
                 refresher: TokenRefresher,
                 clock: Callable[[], datetime] = utcnow):
        self.accounts = accounts
        self.refresher = refresher
        self._clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _account_lock(self, account_id: str):
        """Hold the refresh lock of one account.

        The lock is dropped from the registry once nobody holds or waits
        for it.
        """
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        self._lock_users[account_id] = self._lock_users.get(account_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[account_id] -= 1
            if not self._lock_users[account_id]:
                del self._lock_users[account_id]
                del self._locks[account_id]

    async def _load(self, account_id: str) -> Account:
        account = await self.accounts.get_account(account_id)
        if account is None:
            raise NotFoundError(
                f"Account {account_id} not found",
                context=create_error_context(operation="resolve_access_token", account_id=account_id),
                user_message="Account not found",
            )
        return account

    async def get_valid_access_token(self, account_id: str) -> str:
        """Return a usable access token, refreshing it if needed.

        Raises:
            NotFoundError: unknown account
            NoRefreshTokenError: token expired and no refresh token stored
            AuthExpiredError: the refresh token was rejected
            TransientNetworkError: the token endpoint stayed unavailable
        """
        account = await self._load(account_id)
        if account.has_valid_access_token(self._clock()):
            return account.access_token

        async with self._account_lock(account_id):
            # Another caller may have refreshed while we waited
            account = await self._load(account_id)
            if account.has_valid_access_token(self._clock()):
                logger.debug(f"Reusing token refreshed concurrently for account {account_id}")
                return account.access_token

            if not account.refresh_token:
                logger.warning(f"Account {account_id} has no refresh token; reconnect required")
                raise NoRefreshTokenError(account_id)

            logger.info(f"Access token for account {account_id} expired or missing, refreshing")
            try:
                token = await self.refresher.refresh(account.refresh_token, account_id=account_id)
            except GBPSyncError as e:
                e.context.account_id = e.context.account_id or account_id
                raise

            expires_at = self._clock() + timedelta(seconds=token.expires_in)
            await self.accounts.update_tokens(
                account_id,
                access_token=token.access_token,
                token_expires_at=expires_at,
                refresh_token=token.refresh_token,
            )
            if token.refresh_token and token.refresh_token != account.refresh_token:
                logger.info(f"Stored rotated refresh token for account {account_id}")

            return token.access_token

    async def token_status(self, account_id: str) -> TokenStatus:
        """Report token validity without refreshing anything.

        Raises:
            NotFoundError: unknown account
        """
        account = await self._load(account_id)
        now = self._clock()
        valid = account.has_valid_access_token(now) and bool(account.refresh_token)
        expires_in = None
        if account.token_expires_at is not None:
            expires_in = int((account.token_expires_at - now).total_seconds())
        return TokenStatus(
            account_id=account.id,
            valid=valid,
            can_refresh=bool(account.refresh_token),
            needs_refresh=not valid or (expires_in is not None and expires_in < REFRESH_SOON.total_seconds()),
            expires_in=max(expires_in, 0) if expires_in is not None else None,
        )
