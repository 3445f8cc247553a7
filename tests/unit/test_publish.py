"""
Tests for the publish pipeline.
"""

import asyncio
from datetime import timedelta

import httpx
import pytest
import pytest_asyncio

from gbpsync.auth.resolver import AccessTokenResolver
from gbpsync.exceptions import (
    ForbiddenError, NotFoundError, PublishStateError, ValidationError
)
from gbpsync.models.base import utcnow
from gbpsync.models.location import Location
from gbpsync.models.publishable import EntityKind, PublishableEntity, PublishStatus
from gbpsync.publishing.pipeline import MAX_POST_SUMMARY, PublishPipeline, build_post_body

from .fakes import FakeRefresher, make_account

REVIEW = "accounts/111/locations/1/reviews/r1"
QUESTION = "locations/1/questions/q1"


@pytest.fixture
def pipeline(entities, locations, accounts, resolver, gateway, action_log, clock):
    return PublishPipeline(entities, locations, accounts, resolver, gateway, action_log, clock=clock)


@pytest_asyncio.fixture
async def location(accounts, locations):
    await accounts.save_account(make_account())
    loc = Location(id="loc-1", account_id="acct-1", user_id="user-1", resource_name="locations/1", title="Bakery")
    await locations.upsert_locations([loc])
    return loc


def make_entity(**overrides) -> PublishableEntity:
    values = dict(
        id="ent-1",
        kind=EntityKind.POST,
        user_id="user-1",
        location_id="loc-1",
        payload={"content": "Fresh bread today"},
    )
    values.update(overrides)
    return PublishableEntity(**values)


class TestPublishSuccess:
    """Successful publishes for each entity kind."""

    @pytest.mark.asyncio
    async def test_post_published(self, location, entities, google, pipeline, log_repository):
        await entities.save_entity(make_entity())
        google.add("POST", "accounts/111/locations/1/localPosts", {"name": "accounts/111/locations/1/localPosts/p9"})

        result = await pipeline.publish("ent-1", user_id="user-1")

        assert result.success
        assert result.provider_resource_id == "accounts/111/locations/1/localPosts/p9"
        stored = await entities.get_entity("ent-1")
        assert stored.status == PublishStatus.PUBLISHED
        assert stored.published_at is not None
        assert entities.saved_statuses == ["draft", "pending", "published"]

        entries = await log_repository.list_entries(action="publish_post")
        assert len(entries) == 1
        assert entries[0].status == "success"

    @pytest.mark.asyncio
    async def test_review_reply(self, location, entities, google, pipeline):
        await entities.save_entity(make_entity(
            kind=EntityKind.REVIEW_REPLY, target_resource=REVIEW, payload={"text": "Thank you!"}
        ))
        google.add("PUT", f"{REVIEW}/reply", {"comment": "Thank you!"})

        result = await pipeline.publish("ent-1")

        assert result.success
        assert result.provider_resource_id == f"{REVIEW}/reply"
        request = google.calls_to(f"{REVIEW}/reply")[0]
        assert google.body_of(request) == {"comment": "Thank you!"}

    @pytest.mark.asyncio
    async def test_question_answer(self, location, entities, google, pipeline):
        await entities.save_entity(make_entity(
            kind=EntityKind.QUESTION_ANSWER, target_resource=QUESTION, payload={"text": "Yes, 9 to 5."}
        ))
        google.add("POST", f"{QUESTION}/answers:upsert", {"name": f"{QUESTION}/answers/a1"})

        result = await pipeline.publish("ent-1")

        assert result.success
        request = google.calls_to(f"{QUESTION}/answers:upsert")[0]
        assert request.url.host == "mybusinessqanda.googleapis.com"
        assert google.body_of(request) == {"answer": {"text": "Yes, 9 to 5."}}

    @pytest.mark.asyncio
    async def test_timestamps_follow_pipeline_clock(self, location, entities, google, pipeline, clock):
        await entities.save_entity(make_entity())
        google.add("POST", "localPosts", {"name": "posts/1"})

        await pipeline.publish("ent-1")

        stored = await entities.get_entity("ent-1")
        assert stored.published_at == clock()
        assert stored.updated_at == clock()

    @pytest.mark.asyncio
    async def test_failed_entity_can_be_resubmitted(self, location, entities, google, pipeline):
        await entities.save_entity(make_entity(status=PublishStatus.FAILED, error_code="PROVIDER_ERROR"))
        google.add("POST", "localPosts", {"name": "posts/1"})

        result = await pipeline.publish("ent-1")

        assert result.success
        stored = await entities.get_entity("ent-1")
        assert stored.error_code is None


class TestPublishFailures:
    """Provider and token failures are stored on the entity."""

    @pytest.mark.asyncio
    async def test_insufficient_scopes(self, location, entities, google, pipeline, log_repository):
        await entities.save_entity(make_entity())
        body = {"error": {"code": 403, "message": "Request had insufficient authentication scopes."}}
        google.add("POST", "localPosts", lambda request: httpx.Response(403, json=body))

        result = await pipeline.publish("ent-1")

        assert not result.success
        assert result.error_code == "INSUFFICIENT_SCOPES"
        assert result.requires_reconnect
        stored = await entities.get_entity("ent-1")
        assert stored.status == PublishStatus.FAILED
        assert stored.error_code == "INSUFFICIENT_SCOPES"
        assert "insufficient authentication scopes" in stored.provider_error

        entries = await log_repository.list_entries(action="publish_post")
        assert entries[0].status == "failed"

    @pytest.mark.asyncio
    async def test_provider_error_kept_and_not_retried(self, location, entities, google, pipeline):
        await entities.save_entity(make_entity())
        google.add("POST", "localPosts", lambda request: httpx.Response(503, text="backend shard 7 overloaded"))

        result = await pipeline.publish("ent-1")

        assert not result.success
        assert result.error_code == "TRANSIENT_NETWORK_ERROR"
        assert len(google.calls_to("localPosts")) == 1
        stored = await entities.get_entity("ent-1")
        assert stored.status == PublishStatus.FAILED
        assert stored.provider_error == "backend shard 7 overloaded"

    @pytest.mark.asyncio
    async def test_rejected_access_token_keeps_raw_body(self, location, entities, google, pipeline):
        await entities.save_entity(make_entity())
        raw = '{"error": {"code": 401, "status": "UNAUTHENTICATED"}}'
        google.add("POST", "localPosts", lambda request: httpx.Response(401, text=raw))

        result = await pipeline.publish("ent-1")

        assert result.requires_reconnect
        stored = await entities.get_entity("ent-1")
        assert stored.error_code == "ACCESS_TOKEN_REJECTED"
        assert stored.provider_error == raw

    @pytest.mark.asyncio
    async def test_rejected_payload_stores_raw_error(self, location, entities, google, pipeline):
        await entities.save_entity(make_entity())
        raw = {"error": {"code": 400, "message": "Invalid summary"}}
        google.add("POST", "localPosts", lambda request: httpx.Response(400, json=raw))

        result = await pipeline.publish("ent-1")

        stored = await entities.get_entity("ent-1")
        assert result.error_code == "VALIDATION_ERROR"
        assert "Invalid summary" in stored.provider_error
        assert "Invalid summary" in stored.error_message

    @pytest.mark.asyncio
    async def test_token_failure_marks_failed_with_reconnect(self, accounts, location, entities, google, gateway,
                                                             locations, action_log, clock):
        await accounts.save_account(make_account(refresh_token=None, token_expires_at=None))
        resolver = AccessTokenResolver(accounts, FakeRefresher(), clock=clock)
        pipeline = PublishPipeline(entities, locations, accounts, resolver, gateway, action_log, clock=clock)
        await entities.save_entity(make_entity())

        result = await pipeline.publish("ent-1")

        assert not result.success
        assert result.requires_reconnect
        assert google.requests == []
        stored = await entities.get_entity("ent-1")
        assert stored.status == PublishStatus.FAILED
        assert "reconnect" in stored.error_message.lower()


class TestPublishPreconditions:
    """Requests rejected before any state change or external call."""

    @pytest.mark.asyncio
    async def test_already_published(self, location, entities, google, pipeline):
        await entities.save_entity(make_entity(status=PublishStatus.PUBLISHED))

        with pytest.raises(PublishStateError):
            await pipeline.publish("ent-1")

        assert google.requests == []
        assert entities.saved_statuses == ["published"]

    @pytest.mark.asyncio
    async def test_pending_in_flight(self, location, entities, google, pipeline, clock):
        await entities.save_entity(make_entity(status=PublishStatus.PENDING, updated_at=clock()))

        with pytest.raises(PublishStateError) as exc_info:
            await pipeline.publish("ent-1")

        assert exc_info.value.error_code == "PUBLISH_IN_FLIGHT"
        assert google.requests == []

    @pytest.mark.asyncio
    async def test_stale_pending_taken_over(self, location, entities, google, pipeline, clock):
        await entities.save_entity(make_entity(
            status=PublishStatus.PENDING, updated_at=clock() - timedelta(hours=1)
        ))
        google.add("POST", "localPosts", {"name": "posts/1"})

        result = await pipeline.publish("ent-1")

        assert result.success

    @pytest.mark.asyncio
    async def test_concurrent_publishes_reach_google_once(self, location, entities, google, pipeline):
        await entities.save_entity(make_entity())
        google.add("POST", "localPosts", {"name": "posts/1"})

        outcomes = await asyncio.gather(
            pipeline.publish("ent-1"), pipeline.publish("ent-1"), pipeline.publish("ent-1"),
            return_exceptions=True,
        )

        assert len(google.calls_to("localPosts")) == 1
        assert sum(1 for o in outcomes if isinstance(o, PublishStateError)) == 2

    @pytest.mark.asyncio
    async def test_inactive_account(self, accounts, location, entities, google, pipeline):
        await accounts.deactivate_account("acct-1", utcnow())
        await entities.save_entity(make_entity())

        with pytest.raises(ForbiddenError):
            await pipeline.publish("ent-1")

        assert google.requests == []

    @pytest.mark.asyncio
    async def test_other_users_entity_not_found(self, location, entities, pipeline):
        await entities.save_entity(make_entity())

        with pytest.raises(NotFoundError):
            await pipeline.publish("ent-1", user_id="someone-else")

    @pytest.mark.asyncio
    async def test_event_posts_rejected(self, location, entities, google, pipeline):
        await entities.save_entity(make_entity(payload={"content": "Party", "post_type": "event"}))

        with pytest.raises(ValidationError):
            await pipeline.publish("ent-1")

        stored = await entities.get_entity("ent-1")
        assert stored.status == PublishStatus.DRAFT
        assert google.requests == []

    @pytest.mark.asyncio
    async def test_empty_reply_rejected(self, location, entities, pipeline):
        await entities.save_entity(make_entity(
            kind=EntityKind.REVIEW_REPLY, target_resource=REVIEW, payload={"text": "  "}
        ))

        with pytest.raises(ValidationError):
            await pipeline.publish("ent-1")


class TestBuildPostBody:

    def test_summary_truncated(self):
        body = build_post_body({"content": "x" * 2000})
        assert len(body["summary"]) == MAX_POST_SUMMARY

    def test_media_and_call_to_action(self):
        body = build_post_body({
            "content": "Hi",
            "media_url": "https://example.com/a.jpg",
            "call_to_action": "LEARN_MORE",
            "call_to_action_url": "https://example.com",
        })
        assert body["media"][0]["sourceUrl"] == "https://example.com/a.jpg"
        assert body["callToAction"] == {"actionType": "LEARN_MORE", "url": "https://example.com"}

    def test_call_to_action_needs_url(self):
        body = build_post_body({"content": "Hi", "call_to_action": "LEARN_MORE"})
        assert "callToAction" not in body

    def test_offer_rejected(self):
        with pytest.raises(ValidationError):
            build_post_body({"content": "Sale", "post_type": "offer"})
