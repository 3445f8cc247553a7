"""
Shared fixtures for unit tests.
"""

from datetime import datetime
from typing import Callable

import httpx
import pytest

from gbpsync.action_log import ActionLog
from gbpsync.auth.resolver import AccessTokenResolver
from gbpsync.data.memory import (
    InMemoryAccountRepository,
    InMemoryActionLogRepository,
    InMemoryLocationRepository,
    InMemoryProviderRecordRepository,
    InMemoryPublishableRepository,
)
from gbpsync.gateway.client import GoogleBusinessGateway

from .fakes import NOW, FakeRefresher, GoogleStub


@pytest.fixture
def google() -> GoogleStub:
    return GoogleStub()


@pytest.fixture
def gateway(google: GoogleStub) -> GoogleBusinessGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(google.handler))
    return GoogleBusinessGateway(http_client=client, retry_attempts=3, backoff_seconds=0)


@pytest.fixture
def accounts() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


@pytest.fixture
def locations() -> InMemoryLocationRepository:
    return InMemoryLocationRepository()


@pytest.fixture
def records() -> InMemoryProviderRecordRepository:
    return InMemoryProviderRecordRepository()


@pytest.fixture
def entities() -> InMemoryPublishableRepository:
    return InMemoryPublishableRepository()


@pytest.fixture
def log_repository() -> InMemoryActionLogRepository:
    return InMemoryActionLogRepository()


@pytest.fixture
def action_log(log_repository: InMemoryActionLogRepository) -> ActionLog:
    return ActionLog(log_repository)


@pytest.fixture
def refresher() -> FakeRefresher:
    return FakeRefresher()


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture
def resolver(accounts, refresher, clock) -> AccessTokenResolver:
    return AccessTokenResolver(accounts, refresher, clock=clock)
