"""
Data access layer for the GBP sync engine.

Public Interface:
    - Repository interfaces for accounts, locations, provider records,
      publishable entities and the action log
    - SQLite and in-memory backends
    - Migration utilities
    - Factory pattern for repository creation

Example Usage:
    ```python
    from gbpsync.data import RepositoryFactory

    factory = RepositoryFactory(backend="sqlite", db_path="data/gbpsync.db")
    accounts = await factory.get_account_repository()
    account = await accounts.get_account(account_id)
    ```
"""

# Abstract base classes
from .base import (
    AccountRepository,
    LocationRepository,
    ProviderRecordRepository,
    PublishableRepository,
    ActionLogRepository,
    DatabaseConnection,
)

# Backends
from .sqlite import (
    SQLiteConnection,
    SQLiteAccountRepository,
    SQLiteLocationRepository,
    SQLiteProviderRecordRepository,
    SQLitePublishableRepository,
    SQLiteActionLogRepository,
)
from .memory import (
    InMemoryAccountRepository,
    InMemoryLocationRepository,
    InMemoryProviderRecordRepository,
    InMemoryPublishableRepository,
    InMemoryActionLogRepository,
)

# Migration utilities
from .migrations import run_migrations

# Repository factory
from .repositories import RepositoryFactory

__all__ = [
    'AccountRepository',
    'LocationRepository',
    'ProviderRecordRepository',
    'PublishableRepository',
    'ActionLogRepository',
    'DatabaseConnection',
    'SQLiteConnection',
    'SQLiteAccountRepository',
    'SQLiteLocationRepository',
    'SQLiteProviderRecordRepository',
    'SQLitePublishableRepository',
    'SQLiteActionLogRepository',
    'InMemoryAccountRepository',
    'InMemoryLocationRepository',
    'InMemoryProviderRecordRepository',
    'InMemoryPublishableRepository',
    'InMemoryActionLogRepository',
    'run_migrations',
    'RepositoryFactory',
]
