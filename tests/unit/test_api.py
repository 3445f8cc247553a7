"""
Tests for the HTTP API.
"""

import asyncio
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt

from gbpsync.action_log import ActionLog
from gbpsync.api import EngineServices, create_app, status_for_error
from gbpsync.auth.oauth_flow import GoogleOAuthFlow
from gbpsync.auth.resolver import AccessTokenResolver
from gbpsync.config.settings import OAuthConfig, ServerConfig
from gbpsync.data.memory import (
    InMemoryAccountRepository,
    InMemoryActionLogRepository,
    InMemoryLocationRepository,
    InMemoryProviderRecordRepository,
    InMemoryPublishableRepository,
)
from gbpsync.exceptions import (
    AuthExpiredError,
    ConfigurationError,
    InsufficientScopesError,
    NotFoundError,
    ProviderError,
    PublishStateError,
    TransientNetworkError,
)
from gbpsync.gateway.client import GoogleBusinessGateway
from gbpsync.models.location import Location
from gbpsync.models.publishable import EntityKind, PublishableEntity
from gbpsync.publishing.pipeline import PublishPipeline
from gbpsync.scheduling.executor import SyncExecutor
from gbpsync.scheduling.scheduler import SyncScheduler

from .fakes import NOW, FakeRefresher, GoogleStub, make_account

CRON_SECRET = "cron-secret-0123456789"
JWT_SECRET = "jwt-secret"


class SpyAccountRepository(InMemoryAccountRepository):
    """Counts how often the scheduler lists accounts."""

    def __init__(self):
        super().__init__()
        self.list_calls = 0

    async def list_active_accounts(self):
        self.list_calls += 1
        return await super().list_active_accounts()


class Harness:
    """In-memory engine behind a TestClient."""

    def __init__(self):
        self.google = GoogleStub()
        self.accounts = SpyAccountRepository()
        self.locations = InMemoryLocationRepository()
        self.entities = InMemoryPublishableRepository()
        self.log_repository = InMemoryActionLogRepository()
        action_log = ActionLog(self.log_repository)
        clock = lambda: NOW  # noqa: E731
        gateway = GoogleBusinessGateway(
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(self.google.handler)),
            backoff_seconds=0,
        )
        resolver = AccessTokenResolver(self.accounts, FakeRefresher(), clock=clock)
        self.oauth_flow = GoogleOAuthFlow(
            OAuthConfig(client_id="client-id", client_secret="client-secret"),
            self.accounts, gateway, action_log,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(self.google.handler)),
            clock=clock,
        )
        executor = SyncExecutor(self.accounts, self.locations, InMemoryProviderRecordRepository(),
                                resolver, gateway, action_log, clock=clock)
        self.services = EngineServices(
            accounts=self.accounts,
            executor=executor,
            scheduler=SyncScheduler(self.accounts, executor, action_log, clock=clock),
            pipeline=PublishPipeline(self.entities, self.locations, self.accounts, resolver,
                                     gateway, action_log, clock=clock),
            action_log=action_log,
            resolver=resolver,
            server_config=ServerConfig(cron_secret=CRON_SECRET, auth_jwt_secret=JWT_SECRET),
            oauth_flow=self.oauth_flow,
        )
        self.client = TestClient(create_app(self.services))

    def user_headers(self, user_id: str = "user-1") -> dict:
        token = jwt.encode({"sub": user_id}, JWT_SECRET, algorithm="HS256")
        return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def harness():
    return Harness()


class TestCronTrigger:
    """The cron endpoint requires the shared secret."""

    def test_missing_secret_rejected(self, harness):
        response = harness.client.post("/api/cron/sync")

        assert response.status_code == 401
        assert harness.accounts.list_calls == 0

    def test_wrong_secret_rejected(self, harness):
        response = harness.client.get("/api/cron/sync", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401
        assert harness.accounts.list_calls == 0

    def test_tick_summary(self, harness):
        response = harness.client.post("/api/cron/sync", headers={"Authorization": f"Bearer {CRON_SECRET}"})

        assert response.status_code == 200
        data = response.json()
        assert set(data) == {"synced", "errors", "results", "schedule"}
        assert data["schedule"] == NOW.isoformat()
        assert harness.accounts.list_calls == 1


class TestAccountRoutes:

    def test_list_own_accounts(self, harness):
        _save(harness, make_account())
        _save(harness, make_account(id="acct-2", user_id="user-2"))
        _save(harness, make_account(id="acct-3", refresh_token=None))

        response = harness.client.get("/api/accounts", headers=harness.user_headers())

        assert response.status_code == 200
        data = response.json()
        assert sorted(a["id"] for a in data) == ["acct-1", "acct-3"]
        assert all("access_token" not in a for a in data)
        reconnect = {a["id"]: a["requires_reconnect"] for a in data}
        assert reconnect == {"acct-1": False, "acct-3": True}

    def test_requires_user_token(self, harness):
        response = harness.client.post("/api/accounts/acct-1/sync")
        assert response.status_code == 401

    def test_invalid_token_rejected(self, harness):
        response = harness.client.post(
            "/api/accounts/acct-1/sync", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "INVALID_TOKEN"

    def test_other_users_account_is_404(self, harness):
        _save(harness, make_account())

        response = harness.client.post("/api/accounts/acct-1/sync", headers=harness.user_headers("user-2"))

        assert response.status_code == 404
        assert harness.google.requests == []

    def test_manual_sync(self, harness):
        _save(harness, make_account())
        harness.google.add("GET", "accounts/111/locations", {"locations": [{"name": "locations/1", "title": "Shop"}]})

        response = harness.client.post(
            "/api/accounts/acct-1/sync",
            json={"sync_type": "incremental"},
            headers=harness.user_headers(),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["sync_type"] == "incremental"
        assert data["status"] == "success"
        assert data["counts"]["locations"] == 1

    def test_sync_status(self, harness):
        _save(harness, make_account())

        response = harness.client.get("/api/accounts/acct-1/sync/status", headers=harness.user_headers())

        assert response.status_code == 200
        data = response.json()
        assert data["sync_schedule"] == "daily"
        assert data["schedule_description"] == "daily at 00:00 UTC"
        assert data["requires_reconnect"] is False

    def test_disconnect(self, harness):
        _save(harness, make_account())

        response = harness.client.post("/api/accounts/acct-1/disconnect", headers=harness.user_headers())

        assert response.status_code == 200
        assert response.json()["disconnected"] is True
        account = asyncio.run(harness.accounts.get_account("acct-1"))
        assert not account.is_active
        assert account.refresh_token is None
        assert [e.action for e in harness.log_repository.entries] == ["disconnect_account"]

    def test_inactive_account_sync_is_403(self, harness):
        _save(harness, make_account(is_active=False))

        response = harness.client.post("/api/accounts/acct-1/sync", headers=harness.user_headers())

        assert response.status_code == 403
        assert response.json()["error"] == "ACCOUNT_INACTIVE"


class TestPublishRoute:

    def _prepare(self, harness):
        _save(harness, make_account())
        asyncio.run(harness.locations.upsert_locations([Location(
            id="loc-1", account_id="acct-1", user_id="user-1", resource_name="locations/1"
        )]))
        asyncio.run(harness.entities.save_entity(PublishableEntity(
            id="ent-1", kind=EntityKind.POST, user_id="user-1", location_id="loc-1",
            payload={"content": "Hello"},
        )))

    def test_publish_success(self, harness):
        self._prepare(harness)
        harness.google.add("POST", "localPosts", {"name": "accounts/111/locations/1/localPosts/9"})

        response = harness.client.post("/api/publish/ent-1", headers=harness.user_headers())

        assert response.status_code == 200
        assert response.json()["status"] == "published"

    def test_scope_failure_is_403(self, harness):
        self._prepare(harness)
        harness.google.add("POST", "localPosts", lambda request: httpx.Response(
            403, json={"error": {"message": "Request had insufficient authentication scopes."}}
        ))

        response = harness.client.post("/api/publish/ent-1", headers=harness.user_headers())

        assert response.status_code == 403
        data = response.json()
        assert data["error_code"] == "INSUFFICIENT_SCOPES"
        assert data["requires_reconnect"] is True

    def test_provider_failure_is_502(self, harness):
        self._prepare(harness)
        harness.google.add("POST", "localPosts", lambda request: httpx.Response(
            409, json={"error": {"message": "conflict"}}
        ))

        response = harness.client.post("/api/publish/ent-1", headers=harness.user_headers())

        assert response.status_code == 502
        assert response.json()["status"] == "failed"

    def test_unknown_entity_is_404(self, harness):
        response = harness.client.post("/api/publish/missing", headers=harness.user_headers())
        assert response.status_code == 404


class TestSyncAllAndTokenStatus:

    def test_sync_all_covers_only_callers_active_accounts(self, harness):
        _save(harness, make_account())
        _save(harness, make_account(id="acct-2", account_resource="accounts/222"))
        _save(harness, make_account(id="acct-3", is_active=False))
        _save(harness, make_account(id="acct-4", user_id="user-2"))

        response = harness.client.post("/api/accounts/sync-all", headers=harness.user_headers())

        assert response.status_code == 200
        data = response.json()
        assert sorted(r["account_id"] for r in data["results"]) == ["acct-1", "acct-2"]
        assert data["synced"] == 2
        assert data["errors"] == 0
        entries = [e for e in harness.log_repository.entries if e.action == "sync_all"]
        assert len(entries) == 1
        assert entries[0].user_id == "user-1"

    def test_sync_all_reports_reconnect_per_account(self, harness):
        _save(harness, make_account())
        _save(harness, make_account(id="acct-2", refresh_token=None, token_expires_at=None))

        data = harness.client.post("/api/accounts/sync-all", headers=harness.user_headers()).json()

        results = {r["account_id"]: r for r in data["results"]}
        assert results["acct-1"]["success"] is True
        assert results["acct-2"]["success"] is False
        assert results["acct-2"]["requires_reconnect"] is True

    def test_token_status_valid(self, harness):
        _save(harness, make_account(token_expires_at=NOW + timedelta(hours=2)))

        response = harness.client.get("/api/accounts/acct-1/token", headers=harness.user_headers())

        assert response.status_code == 200
        assert response.json() == {
            "account_id": "acct-1",
            "valid": True,
            "can_refresh": True,
            "needs_refresh": False,
            "expires_in": 7200,
        }

    def test_token_status_expired_but_refreshable(self, harness):
        _save(harness, make_account(token_expires_at=NOW - timedelta(minutes=5)))

        data = harness.client.get("/api/accounts/acct-1/token", headers=harness.user_headers()).json()

        assert data["valid"] is False
        assert data["can_refresh"] is True
        assert data["needs_refresh"] is True
        assert data["expires_in"] == 0
        assert harness.google.requests == []

    def test_token_status_of_other_users_account_is_404(self, harness):
        _save(harness, make_account())

        response = harness.client.get("/api/accounts/acct-1/token", headers=harness.user_headers("user-2"))

        assert response.status_code == 404


class TestOAuthRoutes:
    """Connecting a Google account through the consent flow."""

    def _start(self, harness) -> str:
        response = harness.client.post("/api/oauth/auth-url", headers=harness.user_headers())
        assert response.status_code == 200
        return response.json()["state"]

    def _stub_google(self, harness, token_body=None, accounts=None):
        harness.google.add("POST", "/token", token_body or {
            "access_token": "new-access", "refresh_token": "new-refresh", "expires_in": 3600,
        })
        harness.google.add("GET", "v4/accounts", {"accounts": accounts if accounts is not None else [
            {"name": "accounts/111", "accountName": "Main Street Bakery"},
        ]})

    def test_auth_url_requires_user(self, harness):
        response = harness.client.post("/api/oauth/auth-url")
        assert response.status_code == 401

    def test_auth_url_asks_for_offline_access(self, harness):
        response = harness.client.post("/api/oauth/auth-url", headers=harness.user_headers())

        data = response.json()
        query = parse_qs(urlparse(data["auth_url"]).query)
        assert query["client_id"] == ["client-id"]
        assert query["access_type"] == ["offline"]
        assert query["prompt"] == ["consent"]
        assert query["state"] == [data["state"]]
        assert "https://www.googleapis.com/auth/business.manage" in query["scope"][0]

    def test_callback_creates_account_for_state_owner(self, harness):
        state = self._start(harness)
        self._stub_google(harness)

        response = harness.client.get("/api/oauth/callback", params={"code": "c0de", "state": state})

        assert response.status_code == 200
        connected = response.json()["accounts"]
        assert [a["account_resource"] for a in connected] == ["accounts/111"]
        assert "access_token" not in connected[0]

        exchange = harness.google.calls_to("/token")[0]
        assert parse_qs(exchange.content.decode())["grant_type"] == ["authorization_code"]

        accounts = asyncio.run(harness.accounts.list_accounts_for_user("user-1"))
        assert len(accounts) == 1
        assert accounts[0].refresh_token == "new-refresh"
        assert accounts[0].token_expires_at == NOW + timedelta(hours=1)
        assert [e.action for e in harness.log_repository.entries] == ["connect_account"]

    def test_state_is_single_use(self, harness):
        state = self._start(harness)
        self._stub_google(harness)
        harness.client.get("/api/oauth/callback", params={"code": "c0de", "state": state})

        response = harness.client.get("/api/oauth/callback", params={"code": "c0de", "state": state})

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_OAUTH_STATE"

    def test_reconnect_reactivates_and_keeps_refresh_token(self, harness):
        _save(harness, make_account(is_active=False, disconnected_at=NOW - timedelta(days=3),
                                    access_token=None, refresh_token="kept"))
        state = self._start(harness)
        self._stub_google(harness, token_body={"access_token": "new-access", "expires_in": 3600})

        response = harness.client.get("/api/oauth/callback", params={"code": "c0de", "state": state})

        assert response.status_code == 200
        account = asyncio.run(harness.accounts.get_account("acct-1"))
        assert account.is_active
        assert account.disconnected_at is None
        assert account.access_token == "new-access"
        assert account.refresh_token == "kept"

    def test_consent_denied(self, harness):
        response = harness.client.get("/api/oauth/callback", params={"error": "access_denied"})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "OAUTH_DENIED"

    def test_no_business_accounts_is_404(self, harness):
        state = self._start(harness)
        self._stub_google(harness, accounts=[])

        response = harness.client.get("/api/oauth/callback", params={"code": "c0de", "state": state})

        assert response.status_code == 404
        assert response.json()["error"] == "NO_GBP_ACCOUNTS"

    def test_rejected_code_keeps_google_response(self, harness):
        state = self._start(harness)
        harness.google.add("POST", "/token", lambda request: httpx.Response(
            400, json={"error": "invalid_grant", "error_description": "Bad Request"}
        ))

        response = harness.client.get("/api/oauth/callback", params={"code": "used", "state": state})

        assert response.status_code == 502
        data = response.json()
        assert data["error"] == "OAUTH_EXCHANGE_FAILED"
        assert "invalid_grant" in data["details"]
        assert asyncio.run(harness.accounts.list_accounts_for_user("user-1")) == []


class TestStatusForError:

    @pytest.mark.parametrize("error,status", [
        (InsufficientScopesError("scopes"), 403),
        (NotFoundError("gone"), 404),
        (PublishStateError("busy"), 409),
        (AuthExpiredError("revoked"), 401),
        (TransientNetworkError("timeout"), 503),
        (ProviderError("odd"), 502),
        (ConfigurationError("no client"), 503),
    ])
    def test_mapping(self, error, status):
        assert status_for_error(error) == status


def _save(harness: Harness, account) -> None:
    asyncio.run(harness.accounts.save_account(account))
