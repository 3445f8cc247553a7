"""
Tests for single-account sync execution.
"""

import httpx
import pytest

from gbpsync.exceptions import AuthExpiredError, ForbiddenError, NotFoundError
from gbpsync.models.sync import EntityType, SyncStatus, SyncType
from gbpsync.scheduling.executor import SyncExecutor

from .fakes import NOW, make_account

LOCATIONS_PATH = "accounts/111/locations"
LOCATION_PAYLOAD = {
    "name": "locations/1",
    "title": "Bakery",
    "storefrontAddress": {"addressLines": ["1 Main St"], "locality": "Springfield"},
    "phoneNumbers": {"primaryPhone": "555-0100"},
    "categories": {"primaryCategory": {"displayName": "Bakery"}},
}


@pytest.fixture
def executor(accounts, locations, records, resolver, gateway, action_log, clock):
    return SyncExecutor(accounts, locations, records, resolver, gateway, action_log, clock=clock)


def fail_with(status: int, body=None):
    return lambda request: httpx.Response(status, json=body or {"error": {"message": "boom"}})


class TestSyncAccount:
    """Tests for SyncExecutor.sync_account."""

    @pytest.mark.asyncio
    async def test_full_sync_stores_locations_and_records(self, accounts, locations, records, google, executor):
        await accounts.save_account(make_account())
        google.add("GET", LOCATIONS_PATH, {"locations": [LOCATION_PAYLOAD]})
        google.add("GET", "locations/1/reviews", {
            "reviews": [{"name": "accounts/111/locations/1/reviews/r1", "starRating": "FIVE"}]
        })
        google.add("GET", "locations/1/questions", {"questions": [{"name": "locations/1/questions/q1"}]})

        result = await executor.sync_account("acct-1")

        assert result.status == SyncStatus.SUCCESS
        assert result.counts["locations"] == 1
        assert result.counts["reviews"] == 1
        assert result.counts["questions"] == 1
        assert result.last_sync_updated

        stored = await locations.list_locations("acct-1")
        assert [loc.title for loc in stored] == ["Bakery"]
        assert stored[0].address == "1 Main St, Springfield"
        assert await records.count_records("acct-1", "reviews") == 1

        account = await accounts.get_account("acct-1")
        assert account.last_sync == NOW

    @pytest.mark.asyncio
    async def test_requests_carry_bearer_token(self, accounts, google, executor):
        await accounts.save_account(make_account())
        google.add("GET", LOCATIONS_PATH, {"locations": [LOCATION_PAYLOAD]})

        await executor.sync_account("acct-1")

        assert google.requests
        assert all(r.headers["Authorization"] == "Bearer valid-token" for r in google.requests)
        listing = google.calls_to(LOCATIONS_PATH)[0]
        assert listing.url.params["readMask"] == "name,title,storefrontAddress,phoneNumbers,websiteUri,categories"
        assert listing.url.params["pageSize"] == "100"

    @pytest.mark.asyncio
    async def test_failing_reviews_do_not_block_last_sync(self, accounts, google, executor, log_repository):
        await accounts.save_account(make_account())
        google.add("GET", LOCATIONS_PATH, {"locations": [LOCATION_PAYLOAD]})
        google.add("GET", "locations/1/reviews", fail_with(500))
        google.add("GET", "locations/1/localPosts", {"localPosts": [{"name": "p1"}]})

        result = await executor.sync_account("acct-1")

        assert result.status == SyncStatus.PARTIAL
        assert "reviews" in result.errors
        assert result.succeeded(EntityType.POSTS)
        assert result.counts["posts"] == 1
        assert result.last_sync_updated
        assert len(google.calls_to("locations/1/reviews")) == 3

        account = await accounts.get_account("acct-1")
        assert account.last_sync == NOW

        entries = await log_repository.list_entries(action="sync_account")
        assert len(entries) == 1
        assert entries[0].status == "partial"
        assert entries[0].details["counts"]["locations"] == 1

    @pytest.mark.asyncio
    async def test_location_failure_keeps_last_sync(self, accounts, google, executor, log_repository):
        await accounts.save_account(make_account())
        google.add("GET", LOCATIONS_PATH, fail_with(500))

        result = await executor.sync_account("acct-1")

        assert result.status == SyncStatus.FAILED
        assert not result.last_sync_updated
        assert google.calls_to("reviews") == []
        account = await accounts.get_account("acct-1")
        assert account.last_sync is None

        entries = await log_repository.list_entries(action="sync_account")
        assert [e.status for e in entries] == ["failed"]

    @pytest.mark.asyncio
    async def test_auth_failure_on_locations_propagates(self, accounts, google, executor, log_repository):
        await accounts.save_account(make_account())
        google.add("GET", LOCATIONS_PATH, fail_with(401))

        with pytest.raises(AuthExpiredError):
            await executor.sync_account("acct-1")

        assert len(google.calls_to(LOCATIONS_PATH)) == 1
        entries = await log_repository.list_entries(action="sync_account")
        assert len(entries) == 1
        assert entries[0].status == "failed"

    @pytest.mark.asyncio
    async def test_incremental_pulls_first_page_only(self, accounts, google, executor):
        await accounts.save_account(make_account())
        google.add("GET", LOCATIONS_PATH, {"locations": [LOCATION_PAYLOAD], "nextPageToken": "page-2"})

        result = await executor.sync_account("acct-1", SyncType.INCREMENTAL)

        assert result.counts["locations"] == 1
        assert len(google.calls_to(LOCATIONS_PATH)) == 1

    @pytest.mark.asyncio
    async def test_full_sync_follows_pagination(self, accounts, google, executor):
        await accounts.save_account(make_account())

        def paged(request):
            if request.url.params.get("pageToken") == "page-2":
                return httpx.Response(200, json={"locations": [dict(LOCATION_PAYLOAD, name="locations/2")]})
            return httpx.Response(200, json={"locations": [LOCATION_PAYLOAD], "nextPageToken": "page-2"})

        google.add("GET", LOCATIONS_PATH, paged)

        result = await executor.sync_account("acct-1", SyncType.FULL)

        assert result.counts["locations"] == 2
        assert len(google.calls_to(LOCATIONS_PATH)) == 2

    @pytest.mark.asyncio
    async def test_discovers_missing_account_resource(self, accounts, google, executor):
        await accounts.save_account(make_account(account_resource=None))
        google.add("GET", "/v4/accounts", {"accounts": [{"name": "accounts/999"}]})
        google.add("GET", "accounts/999/locations", {"locations": [LOCATION_PAYLOAD]})

        result = await executor.sync_account("acct-1")

        assert result.counts["locations"] == 1
        account = await accounts.get_account("acct-1")
        assert account.account_resource == "accounts/999"
        assert google.calls_to("accounts/999/locations/1/reviews")

    @pytest.mark.asyncio
    async def test_token_is_resolved_once_per_job(self, accounts, refresher, google, executor):
        await accounts.save_account(make_account(token_expires_at=None))
        google.add("GET", LOCATIONS_PATH, {"locations": [LOCATION_PAYLOAD]})

        await executor.sync_account("acct-1")

        assert len(refresher.calls) == 1
        assert all(r.headers["Authorization"] == "Bearer fresh-token" for r in google.requests)

    @pytest.mark.asyncio
    async def test_inactive_account_rejected(self, accounts, google, executor):
        await accounts.save_account(make_account(is_active=False))

        with pytest.raises(ForbiddenError):
            await executor.sync_account("acct-1")

        assert google.requests == []

    @pytest.mark.asyncio
    async def test_unknown_account_rejected(self, executor):
        with pytest.raises(NotFoundError):
            await executor.sync_account("missing")
