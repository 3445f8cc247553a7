"""
In-memory repository implementations.

Objects are copied on the way in and out so callers observe the same
isolation they would get from a real database. Used by tests and by
``DATABASE_BACKEND=memory`` for throwaway runs.
"""

import copy
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .base import (
    AccountRepository,
    LocationRepository,
    ProviderRecordRepository,
    PublishableRepository,
    ActionLogRepository,
)
from ..models.account import Account
from ..models.action_log import ActionLogEntry
from ..models.base import utcnow
from ..models.location import Location
from ..models.publishable import PublishableEntity, PublishStatus
from ..models.sync import ProviderRecord


class InMemoryAccountRepository(AccountRepository):
    """Account store kept in a dict.

    ``token_writes`` counts calls to :meth:`update_tokens`.
    """

    def __init__(self, accounts: Optional[List[Account]] = None):
        self._accounts: Dict[str, Account] = {}
        self.token_writes = 0
        for account in accounts or []:
            self._accounts[account.id] = copy.deepcopy(account)

    async def save_account(self, account: Account) -> str:
        self._accounts[account.id] = copy.deepcopy(account)
        return account.id

    async def get_account(self, account_id: str) -> Optional[Account]:
        account = self._accounts.get(account_id)
        return copy.deepcopy(account) if account else None

    async def get_account_for_user(self, account_id: str, user_id: str) -> Optional[Account]:
        account = self._accounts.get(account_id)
        if account is None or account.user_id != user_id:
            return None
        return copy.deepcopy(account)

    async def find_account_by_resource(self, user_id: str, account_resource: str) -> Optional[Account]:
        for account in self._accounts.values():
            if account.user_id == user_id and account.account_resource == account_resource:
                return copy.deepcopy(account)
        return None

    async def list_active_accounts(self) -> List[Account]:
        return [copy.deepcopy(a) for a in self._accounts.values() if a.is_active]

    async def list_accounts_for_user(self, user_id: str) -> List[Account]:
        return [copy.deepcopy(a) for a in self._accounts.values() if a.user_id == user_id]

    async def update_tokens(self,
                            account_id: str,
                            access_token: str,
                            token_expires_at: datetime,
                            refresh_token: Optional[str] = None) -> None:
        account = self._accounts.get(account_id)
        if account is None or not account.is_active:
            return
        self.token_writes += 1
        account.access_token = access_token
        account.token_expires_at = token_expires_at
        if refresh_token:
            account.refresh_token = refresh_token
        account.updated_at = utcnow()

    async def update_last_sync(self, account_id: str, when: datetime) -> None:
        account = self._accounts.get(account_id)
        if account:
            account.last_sync = when
            account.updated_at = utcnow()

    async def update_account_resource(self, account_id: str, account_resource: str) -> None:
        account = self._accounts.get(account_id)
        if account:
            account.account_resource = account_resource
            account.updated_at = utcnow()

    async def deactivate_account(self, account_id: str, when: datetime) -> bool:
        account = self._accounts.get(account_id)
        if account is None:
            return False
        account.is_active = False
        account.disconnected_at = when
        account.access_token = None
        account.refresh_token = None
        account.token_expires_at = None
        account.updated_at = when
        return True


class InMemoryLocationRepository(LocationRepository):

    def __init__(self):
        self._locations: Dict[Tuple[str, str], Location] = {}

    async def upsert_locations(self, locations: List[Location]) -> int:
        for location in locations:
            key = (location.account_id, location.resource_name)
            existing = self._locations.get(key)
            stored = copy.deepcopy(location)
            if existing is not None:
                # Keep the local ID stable across re-pulls
                stored = replace(stored, id=existing.id)
            self._locations[key] = stored
        return len(locations)

    async def list_locations(self, account_id: str) -> List[Location]:
        found = [
            copy.deepcopy(loc) for (acct, _), loc in self._locations.items()
            if acct == account_id and loc.is_active
        ]
        return sorted(found, key=lambda loc: loc.title)

    async def get_location(self, location_id: str) -> Optional[Location]:
        for location in self._locations.values():
            if location.id == location_id:
                return copy.deepcopy(location)
        return None


class InMemoryProviderRecordRepository(ProviderRecordRepository):

    def __init__(self):
        self._records: Dict[Tuple[str, str], ProviderRecord] = {}

    async def upsert_records(self, records: List[ProviderRecord]) -> int:
        for record in records:
            self._records[(record.entity_type.value, record.external_id)] = copy.deepcopy(record)
        return len(records)

    async def count_records(self,
                            account_id: str,
                            entity_type: Optional[str] = None) -> int:
        return sum(
            1 for (kind, _), record in self._records.items()
            if record.account_id == account_id and (entity_type is None or kind == entity_type)
        )


class InMemoryPublishableRepository(PublishableRepository):
    """Entity store that also remembers every status it saved."""

    def __init__(self, entities: Optional[List[PublishableEntity]] = None):
        self._entities: Dict[str, PublishableEntity] = {}
        self.saved_statuses: List[str] = []
        for entity in entities or []:
            self._entities[entity.id] = copy.deepcopy(entity)

    async def save_entity(self, entity: PublishableEntity) -> str:
        self._entities[entity.id] = copy.deepcopy(entity)
        self.saved_statuses.append(entity.status.value)
        return entity.id

    async def get_entity(self, entity_id: str) -> Optional[PublishableEntity]:
        entity = self._entities.get(entity_id)
        return copy.deepcopy(entity) if entity else None

    async def claim_for_publish(self,
                                entity_id: str,
                                now: datetime,
                                stale_before: datetime) -> bool:
        entity = self._entities.get(entity_id)
        if entity is None:
            return False
        claimable = entity.status in (PublishStatus.DRAFT, PublishStatus.FAILED) or (
            entity.status == PublishStatus.PENDING and entity.updated_at <= stale_before
        )
        if not claimable:
            return False
        entity.mark_pending(now)
        self.saved_statuses.append(entity.status.value)
        return True


class InMemoryActionLogRepository(ActionLogRepository):

    def __init__(self):
        self.entries: List[ActionLogEntry] = []

    async def append(self, entry: ActionLogEntry) -> None:
        self.entries.append(entry)

    async def list_entries(self,
                           limit: int = 100,
                           action: Optional[str] = None,
                           account_id: Optional[str] = None) -> List[ActionLogEntry]:
        found = [
            e for e in self.entries
            if (action is None or e.action == action)
            and (account_id is None or e.account_id == account_id)
        ]
        found.sort(key=lambda e: e.created_at, reverse=True)
        return found[:limit]
