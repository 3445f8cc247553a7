"""
Abstract repository interfaces for the data access layer.

Concrete backends (SQLite, in-memory) implement these interfaces; the
engine components only ever depend on the abstractions.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models.account import Account
from ..models.action_log import ActionLogEntry
from ..models.location import Location
from ..models.publishable import PublishableEntity
from ..models.sync import ProviderRecord


class AccountRepository(ABC):
    """Credential store and account bookkeeping."""

    @abstractmethod
    async def save_account(self, account: Account) -> str:
        """
        Insert or replace an account, including its tokens.

        Args:
            account: The account to store

        Returns:
            The account ID
        """
        pass

    @abstractmethod
    async def get_account(self, account_id: str) -> Optional[Account]:
        """Get an account by ID, with decrypted tokens.

        Tokens that cannot be decrypted are returned as ``None`` so the
        account reads as needing a reconnect.
        """
        pass

    @abstractmethod
    async def get_account_for_user(self, account_id: str, user_id: str) -> Optional[Account]:
        """Get an account only if it is owned by ``user_id``."""
        pass

    @abstractmethod
    async def find_account_by_resource(self, user_id: str, account_resource: str) -> Optional[Account]:
        """Find the account a user connected for one Google ``accounts/{n}``."""
        pass

    @abstractmethod
    async def list_active_accounts(self) -> List[Account]:
        """List every account with ``is_active`` set."""
        pass

    @abstractmethod
    async def list_accounts_for_user(self, user_id: str) -> List[Account]:
        """List all accounts owned by a user, active or not."""
        pass

    @abstractmethod
    async def update_tokens(self,
                            account_id: str,
                            access_token: str,
                            token_expires_at: datetime,
                            refresh_token: Optional[str] = None) -> None:
        """
        Persist a refreshed access token in a single write.

        Disconnected accounts are left untouched, so a refresh that
        finishes after a disconnect cannot restore the cleared tokens.

        Args:
            account_id: Account to update
            access_token: New access token
            token_expires_at: Absolute expiry of the new token
            refresh_token: Rotated refresh token, if the provider returned one
        """
        pass

    @abstractmethod
    async def update_last_sync(self, account_id: str, when: datetime) -> None:
        """Record the completion time of a successful sync."""
        pass

    @abstractmethod
    async def update_account_resource(self, account_id: str, account_resource: str) -> None:
        """Store the discovered ``accounts/{n}`` resource name."""
        pass

    @abstractmethod
    async def deactivate_account(self, account_id: str, when: datetime) -> bool:
        """
        Soft-delete an account: mark inactive and clear its tokens.

        Returns:
            True if an account was updated
        """
        pass


class LocationRepository(ABC):
    """Locations pulled from Google."""

    @abstractmethod
    async def upsert_locations(self, locations: List[Location]) -> int:
        """Insert or update locations keyed by (account_id, resource_name)."""
        pass

    @abstractmethod
    async def list_locations(self, account_id: str) -> List[Location]:
        """List the stored locations of an account."""
        pass

    @abstractmethod
    async def get_location(self, location_id: str) -> Optional[Location]:
        """Get a location by its local ID."""
        pass


class ProviderRecordRepository(ABC):
    """Opaque provider payloads (reviews, posts, media, metrics, questions)."""

    @abstractmethod
    async def upsert_records(self, records: List[ProviderRecord]) -> int:
        """Insert or update records keyed by (entity_type, external_id)."""
        pass

    @abstractmethod
    async def count_records(self,
                            account_id: str,
                            entity_type: Optional[str] = None) -> int:
        """Count stored records for an account."""
        pass


class PublishableRepository(ABC):
    """Locally authored posts, replies and answers."""

    @abstractmethod
    async def save_entity(self, entity: PublishableEntity) -> str:
        """Insert or replace an entity."""
        pass

    @abstractmethod
    async def get_entity(self, entity_id: str) -> Optional[PublishableEntity]:
        """Get an entity by ID."""
        pass

    @abstractmethod
    async def claim_for_publish(self,
                                entity_id: str,
                                now: datetime,
                                stale_before: datetime) -> bool:
        """
        Atomically move an entity to pending if a publish may start.

        Draft and failed entities are claimable, and so are pending ones
        last touched at or before ``stale_before``. Error fields are cleared.

        Returns:
            True if this caller won the claim
        """
        pass


class ActionLogRepository(ABC):
    """Append-only action log."""

    @abstractmethod
    async def append(self, entry: ActionLogEntry) -> None:
        """Append an entry. Entries are never updated or deleted here."""
        pass

    @abstractmethod
    async def list_entries(self,
                           limit: int = 100,
                           action: Optional[str] = None,
                           account_id: Optional[str] = None) -> List[ActionLogEntry]:
        """List recent entries, newest first."""
        pass


class DatabaseConnection(ABC):
    """Abstract database connection interface."""

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the database."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the database connection."""
        pass

    @abstractmethod
    async def execute(self, query: str, params: Optional[tuple] = None) -> Any:
        """Execute a statement and commit."""
        pass

    @abstractmethod
    async def execute_many(self, query: str, params: List[tuple]) -> None:
        """Execute a statement for each parameter tuple in one transaction."""
        pass

    @abstractmethod
    async def fetch_one(self, query: str, params: Optional[tuple] = None) -> Optional[Dict[str, Any]]:
        """Fetch a single row."""
        pass

    @abstractmethod
    async def fetch_all(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Fetch all rows."""
        pass
