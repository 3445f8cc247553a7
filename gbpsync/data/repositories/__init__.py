"""
Concrete repository wiring.

The factory hands out repository instances for the configured backend
and owns the shared database connection.
"""

from typing import Optional

from ..base import (
    AccountRepository,
    LocationRepository,
    ProviderRecordRepository,
    PublishableRepository,
    ActionLogRepository,
)
from ..memory import (
    InMemoryAccountRepository,
    InMemoryLocationRepository,
    InMemoryProviderRecordRepository,
    InMemoryPublishableRepository,
    InMemoryActionLogRepository,
)
from ..migrations import run_migrations
from ..sqlite import (
    SQLiteConnection,
    SQLiteAccountRepository,
    SQLiteLocationRepository,
    SQLiteProviderRecordRepository,
    SQLitePublishableRepository,
    SQLiteActionLogRepository,
)
from ...auth.crypto import TokenCipher


class RepositoryFactory:
    """Factory for creating repository instances."""

    def __init__(self, backend: str = "sqlite", **config):
        """
        Initialize repository factory.

        Args:
            backend: Database backend to use ('sqlite' or 'memory')
            **config: Backend-specific options (db_path, pool_size, encryption_key)
        """
        self.backend = backend
        self.config = config
        self._connection: Optional[SQLiteConnection] = None
        self._cipher = TokenCipher(config.get("encryption_key"))
        # Memory repositories are shared so every caller sees the same data
        self._memory = {}

    async def get_connection(self) -> SQLiteConnection:
        """Get or create the database connection and bring the schema up to date."""
        if self._connection is None:
            if self.backend == "sqlite":
                db_path = self.config.get("db_path", "data/gbpsync.db")
                pool_size = self.config.get("pool_size", 5)
                self._connection = SQLiteConnection(db_path, pool_size)
                await self._connection.connect()
                await run_migrations(self._connection)
            else:
                raise ValueError(f"Backend {self.backend} has no database connection")

        return self._connection

    def _shared(self, name: str, factory):
        if name not in self._memory:
            self._memory[name] = factory()
        return self._memory[name]

    async def get_account_repository(self) -> AccountRepository:
        """Create and return the credential store."""
        if self.backend == "sqlite":
            return SQLiteAccountRepository(await self.get_connection(), self._cipher)
        elif self.backend == "memory":
            return self._shared("accounts", InMemoryAccountRepository)
        else:
            raise ValueError(f"Unsupported backend: {self.backend}")

    async def get_location_repository(self) -> LocationRepository:
        """Create and return a location repository instance."""
        if self.backend == "sqlite":
            return SQLiteLocationRepository(await self.get_connection())
        elif self.backend == "memory":
            return self._shared("locations", InMemoryLocationRepository)
        else:
            raise ValueError(f"Unsupported backend: {self.backend}")

    async def get_provider_record_repository(self) -> ProviderRecordRepository:
        """Create and return a provider record repository instance."""
        if self.backend == "sqlite":
            return SQLiteProviderRecordRepository(await self.get_connection())
        elif self.backend == "memory":
            return self._shared("records", InMemoryProviderRecordRepository)
        else:
            raise ValueError(f"Unsupported backend: {self.backend}")

    async def get_publishable_repository(self) -> PublishableRepository:
        """Create and return a publishable entity repository instance."""
        if self.backend == "sqlite":
            return SQLitePublishableRepository(await self.get_connection())
        elif self.backend == "memory":
            return self._shared("publishable", InMemoryPublishableRepository)
        else:
            raise ValueError(f"Unsupported backend: {self.backend}")

    async def get_action_log_repository(self) -> ActionLogRepository:
        """Create and return an action log repository instance."""
        if self.backend == "sqlite":
            return SQLiteActionLogRepository(await self.get_connection())
        elif self.backend == "memory":
            return self._shared("action_log", InMemoryActionLogRepository)
        else:
            raise ValueError(f"Unsupported backend: {self.backend}")

    async def close(self) -> None:
        """Close database connections."""
        if self._connection:
            await self._connection.disconnect()
            self._connection = None
