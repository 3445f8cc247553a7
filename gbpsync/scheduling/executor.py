"""
Sync execution for a single account.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from ..action_log import ActionLog
from ..auth.resolver import AccessTokenResolver
from ..data.base import AccountRepository, LocationRepository, ProviderRecordRepository
from ..exceptions import (
    AuthExpiredError, ForbiddenError, GBPSyncError, InsufficientScopesError,
    NoRefreshTokenError, NotFoundError, create_error_context
)
from ..gateway.client import GoogleBusinessGateway
from ..models.account import Account
from ..models.base import utcnow
from ..models.location import Location
from ..models.sync import (
    DEPENDENT_ENTITIES, EntityType, ProviderRecord, SyncAccountResult, SyncType
)

logger = logging.getLogger(__name__)

# Failures that mean the credentials themselves are unusable
AUTH_ERRORS = (AuthExpiredError, InsufficientScopesError, NoRefreshTokenError)


class SyncExecutor:
    """Pulls one account's data from Google into local storage.

    Locations are the primary entity: they are pulled first and the rest
    of the job depends on them. Reviews, posts, media, metrics and
    questions are then pulled per location, concurrently, and each entity
    type succeeds or fails on its own.
    """

    def __init__(self,
                 accounts: AccountRepository,
                 locations: LocationRepository,
                 records: ProviderRecordRepository,
                 resolver: AccessTokenResolver,
                 gateway: GoogleBusinessGateway,
                 action_log: ActionLog,
                 max_concurrent_pulls: int = 5,
                 clock: Callable = utcnow):
        """Initialize sync executor.

        Args:
            accounts: Credential store
            locations: Location repository
            records: Repository for pulled reviews, posts, media, metrics, questions
            resolver: Access token resolver
            gateway: Google API gateway
            action_log: Audit trail
            max_concurrent_pulls: Bound on in-flight per-location requests
            clock: Source of the current time
        """
        self.accounts = accounts
        self.locations = locations
        self.records = records
        self.resolver = resolver
        self.gateway = gateway
        self.action_log = action_log
        self.max_concurrent_pulls = max(1, max_concurrent_pulls)
        self._clock = clock

    async def sync_account(self,
                           account_id: str,
                           sync_type: SyncType = SyncType.FULL) -> SyncAccountResult:
        """Run one sync job.

        Args:
            account_id: Account to sync
            sync_type: FULL walks every page, INCREMENTAL only the first

        Returns:
            Per-entity counts and errors

        Raises:
            NotFoundError: unknown account
            ForbiddenError: account is disconnected
            NoRefreshTokenError, AuthExpiredError, InsufficientScopesError:
                credentials unusable; nothing was pulled
        """
        result = SyncAccountResult(account_id=account_id, sync_type=sync_type, started_at=self._clock())
        account: Optional[Account] = None
        failure: Optional[GBPSyncError] = None

        try:
            account = await self._load_account(account_id)
            logger.info(f"Starting {sync_type.value} sync for account {account_id}")

            try:
                token = await self.resolver.get_valid_access_token(account_id)
            except GBPSyncError as e:
                result.record_error(EntityType.LOCATIONS, e.user_message)
                raise

            locations = await self._pull_locations(account, token, result)

            if result.succeeded(EntityType.LOCATIONS):
                await self._pull_dependents(account, token, locations, result)
                await self.accounts.update_last_sync(account_id, self._clock())
                result.last_sync_updated = True

            result.completed_at = self._clock()
            logger.info(
                f"Sync for account {account_id} finished with status {result.status.value} "
                f"in {result.duration_ms}ms: {result.counts}"
            )
            return result

        except GBPSyncError as e:
            failure = e
            result.completed_at = self._clock()
            logger.error(f"Sync for account {account_id} aborted: {e}")
            raise

        finally:
            details = result.to_dict()
            if failure is not None:
                details["error"] = failure.to_dict()
            await self.action_log.record(
                action="sync_account",
                status=details["status"],
                details=details,
                user_id=account.user_id if account else None,
                account_id=account_id,
            )

    async def _load_account(self, account_id: str) -> Account:
        account = await self.accounts.get_account(account_id)
        if account is None:
            raise NotFoundError(
                f"Account {account_id} not found",
                context=create_error_context(operation="sync_account", account_id=account_id),
                user_message="Account not found",
            )
        if not account.is_active:
            raise ForbiddenError(
                f"Account {account_id} is disconnected",
                error_code="ACCOUNT_INACTIVE",
                context=create_error_context(operation="sync_account", account_id=account_id),
                user_message="This account is disconnected. Reconnect it to sync again.",
            )
        return account

    async def _ensure_account_resource(self, account: Account, token: str) -> str:
        """Return ``accounts/{n}``, discovering and storing it if unknown."""
        if account.account_resource:
            return account.account_resource

        listed = await self.gateway.list_accounts(token)
        names = [a.get("name") for a in listed if a.get("name")]
        if not names:
            raise NotFoundError(
                "No Google Business accounts are visible to this token",
                error_code="NO_GOOGLE_ACCOUNTS",
                context=create_error_context(operation="discover_account", account_id=account.id),
                user_message="No Google Business Profile account was found for this login.",
            )

        account.account_resource = names[0]
        await self.accounts.update_account_resource(account.id, names[0])
        logger.info(f"Discovered {names[0]} for account {account.id}")
        return names[0]

    async def _pull_locations(self,
                              account: Account,
                              token: str,
                              result: SyncAccountResult) -> List[Location]:
        try:
            account_resource = await self._ensure_account_resource(account, token)
            payloads = await self.gateway.list_locations(
                token,
                account_resource,
                first_page_only=result.sync_type == SyncType.INCREMENTAL,
                account_id=account.id,
            )
            pulled = [Location.from_provider(p, account.id, account.user_id) for p in payloads]
            pulled = [loc for loc in pulled if loc.resource_name]
            await self.locations.upsert_locations(pulled)
        except AUTH_ERRORS as e:
            result.record_error(EntityType.LOCATIONS, e.user_message)
            raise
        except GBPSyncError as e:
            logger.warning(f"Location pull failed for account {account.id}: {e}")
            result.record_error(EntityType.LOCATIONS, e.message)
            return []

        result.record_count(EntityType.LOCATIONS, len(pulled))
        # Re-read so dependents reference the stored local IDs
        return await self.locations.list_locations(account.id)

    async def _pull_dependents(self,
                               account: Account,
                               token: str,
                               locations: List[Location],
                               result: SyncAccountResult) -> None:
        semaphore = asyncio.Semaphore(self.max_concurrent_pulls)

        async def bounded(entity: EntityType, location: Location) -> None:
            async with semaphore:
                await self._pull_entity(account, token, entity, location, result)

        await asyncio.gather(*[
            bounded(entity, location)
            for location in locations
            for entity in DEPENDENT_ENTITIES
        ])

        # Mark attempted even when the account has no locations
        for entity in DEPENDENT_ENTITIES:
            result.record_count(entity, 0)

    async def _pull_entity(self,
                           account: Account,
                           token: str,
                           entity: EntityType,
                           location: Location,
                           result: SyncAccountResult) -> None:
        full_name = location.full_resource_name(account.account_resource)
        first_page_only = result.sync_type == SyncType.INCREMENTAL

        try:
            if entity == EntityType.REVIEWS:
                payloads = await self.gateway.list_reviews(token, full_name, first_page_only, account.id)
            elif entity == EntityType.POSTS:
                payloads = await self.gateway.list_local_posts(token, full_name, first_page_only, account.id)
            elif entity == EntityType.MEDIA:
                payloads = await self.gateway.list_media(token, full_name, first_page_only, account.id)
            elif entity == EntityType.METRICS:
                payloads = await self.gateway.fetch_metrics(
                    token, account.account_resource, full_name, self._clock(), account.id
                )
            elif entity == EntityType.QUESTIONS:
                payloads = await self.gateway.list_questions(
                    token, location.short_resource_name, first_page_only, account.id
                )
            else:
                raise ValueError(f"Unsupported entity type: {entity}")

            records = [
                ProviderRecord(
                    entity_type=entity,
                    account_id=account.id,
                    location_id=location.id,
                    external_id=self._external_id(entity, payload, full_name, index),
                    payload=payload,
                )
                for index, payload in enumerate(payloads)
            ]
            await self.records.upsert_records(records)
            result.record_count(entity, len(records))

        except Exception as e:
            logger.warning(f"Failed to pull {entity.value} for {full_name}: {e}")
            message = e.message if isinstance(e, GBPSyncError) else str(e)
            result.record_error(entity, f"{location.title or full_name}: {message}")

    @staticmethod
    def _external_id(entity: EntityType,
                     payload: Dict[str, Any],
                     location_name: str,
                     index: int) -> str:
        if entity == EntityType.METRICS:
            # One insights snapshot per location, replaced on every sync
            return f"{payload.get('locationName') or location_name}/insights"
        name = payload.get("name")
        if name:
            return name
        return f"{location_name}/{entity.value}/{index}"
