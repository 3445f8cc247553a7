"""
Publishing of locally authored posts, review replies and answers.
"""

import logging
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from ..action_log import ActionLog
from ..auth.resolver import AccessTokenResolver
from ..data.base import AccountRepository, LocationRepository, PublishableRepository
from ..exceptions import (
    RECONNECT_MESSAGE, ForbiddenError, GBPSyncError, InsufficientScopesError,
    NotFoundError, ProviderError, PublishStateError, ValidationError,
    create_error_context
)
from ..gateway.client import GoogleBusinessGateway
from ..models.account import Account
from ..models.base import utcnow
from ..models.location import Location
from ..models.publishable import EntityKind, PublishableEntity, PublishResult, PublishStatus

logger = logging.getLogger(__name__)

MAX_POST_SUMMARY = 1500
UNSUPPORTED_POST_TYPES = ("event", "offer")


def build_post_body(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Translate a stored post into a ``localPosts`` request body.

    Raises:
        ValidationError: unsupported post type or empty content
    """
    post_type = str(payload.get("post_type") or "standard").lower()
    if post_type in UNSUPPORTED_POST_TYPES:
        raise ValidationError(
            f"{post_type.capitalize()} posts cannot be published through the API",
            error_code="UNSUPPORTED_POST_TYPE",
            user_message=f"{post_type.capitalize()} posts are not supported yet. Publish a standard post instead.",
        )

    content = (payload.get("content") or "").strip()
    if not content:
        raise ValidationError("Post content is empty", error_code="EMPTY_CONTENT")

    body: Dict[str, Any] = {
        "languageCode": payload.get("language_code") or "en",
        "summary": content[:MAX_POST_SUMMARY],
        "topicType": "STANDARD",
    }
    if payload.get("media_url"):
        body["media"] = [{"mediaFormat": "PHOTO", "sourceUrl": payload["media_url"]}]
    if payload.get("call_to_action") and payload.get("call_to_action_url"):
        body["callToAction"] = {"actionType": "LEARN_MORE", "url": payload["call_to_action_url"]}
    return body


def _reply_text(entity: PublishableEntity) -> str:
    text = (entity.payload.get("text") or "").strip()
    if not text:
        raise ValidationError(
            f"{entity.kind.value} {entity.id} has no text",
            error_code="EMPTY_CONTENT",
            user_message="Text cannot be empty.",
        )
    if not entity.target_resource:
        raise ValidationError(
            f"{entity.kind.value} {entity.id} has no target resource",
            error_code="MISSING_TARGET",
        )
    return text


class PublishPipeline:
    """Pushes one publishable entity to Google.

    Each publish makes at most one call to Google and never retries it.
    The entity is claimed as pending with a single conditional update
    before the call, so of two concurrent publishes only one reaches
    Google. Its final status is written only after the call has resolved,
    and a crash in between leaves a pending entity that becomes
    publishable again once it is stale.
    """

    def __init__(self,
                 entities: PublishableRepository,
                 locations: LocationRepository,
                 accounts: AccountRepository,
                 resolver: AccessTokenResolver,
                 gateway: GoogleBusinessGateway,
                 action_log: ActionLog,
                 stale_pending_seconds: int = 600,
                 clock: Callable = utcnow):
        self.entities = entities
        self.locations = locations
        self.accounts = accounts
        self.resolver = resolver
        self.gateway = gateway
        self.action_log = action_log
        self.stale_after = timedelta(seconds=stale_pending_seconds)
        self._clock = clock

    async def publish(self, entity_id: str, user_id: Optional[str] = None) -> PublishResult:
        """
        Publish or resubmit an entity.

        Args:
            entity_id: Entity to publish
            user_id: When given, the entity must belong to this user

        Returns:
            Outcome of the attempt. Provider and token failures are reported
            here and stored on the entity rather than raised.

        Raises:
            NotFoundError: entity, location or account missing or not owned
            ForbiddenError: the account is disconnected
            PublishStateError: already published or currently in flight
            ValidationError: the payload cannot be sent
        """
        entity, location, account = await self._load(entity_id, user_id)
        context = create_error_context(
            operation=f"publish_{entity.kind.value}",
            account_id=account.id,
            user_id=entity.user_id,
            entity_id=entity.id,
        )

        if entity.status == PublishStatus.PUBLISHED:
            raise self._already_published(entity, context)
        if not entity.can_publish(self.stale_after, self._clock()):
            raise self._in_flight(entity, context)

        request = self._build_request(entity, location, account)

        # Another request may have claimed the entity since it was loaded
        now = self._clock()
        claimed = await self.entities.claim_for_publish(entity.id, now, now - self.stale_after)
        if not claimed:
            current = await self.entities.get_entity(entity.id)
            if current is not None and current.status == PublishStatus.PUBLISHED:
                raise self._already_published(entity, context)
            raise self._in_flight(entity, context)
        entity.mark_pending(now)

        try:
            token = await self.resolver.get_valid_access_token(account.id)
        except GBPSyncError as e:
            logger.warning(f"Cannot publish {entity.id}: token unavailable ({e.error_code})")
            message = RECONNECT_MESSAGE if e.requires_reconnect else e.user_message
            return await self._fail(
                entity, account, e.error_code, message, e.provider_body or None, e.requires_reconnect
            )

        method, target = request
        try:
            response = await method(token, target, account_id=account.id)
        except InsufficientScopesError as e:
            return await self._fail(
                entity, account, "INSUFFICIENT_SCOPES", e.user_message, e.provider_body, True
            )
        except ProviderError as e:
            return await self._fail(
                entity, account, e.error_code,
                f"Google rejected the {entity.kind.value.replace('_', ' ')}: {e.message}",
                e.provider_body or e.message, False,
            )
        except GBPSyncError as e:
            return await self._fail(
                entity, account, e.error_code, e.user_message,
                e.provider_body or e.message, e.requires_reconnect,
            )

        provider_id = response.get("name")
        if entity.kind == EntityKind.REVIEW_REPLY and not provider_id:
            provider_id = f"{entity.target_resource}/reply"
        entity.mark_published(provider_id, self._clock())
        await self.entities.save_entity(entity)
        logger.info(f"Published {entity.kind.value} {entity.id} as {provider_id}")

        await self.action_log.record(
            action=f"publish_{entity.kind.value}",
            status="success",
            details={"entity_id": entity.id, "provider_resource_id": provider_id},
            user_id=entity.user_id,
            account_id=account.id,
        )
        return PublishResult(
            entity_id=entity.id,
            success=True,
            status=entity.status,
            provider_resource_id=provider_id,
        )

    @staticmethod
    def _already_published(entity: PublishableEntity, context) -> PublishStateError:
        return PublishStateError(
            f"Entity {entity.id} is already published",
            context=context,
            user_message="This item has already been published.",
        )

    @staticmethod
    def _in_flight(entity: PublishableEntity, context) -> PublishStateError:
        return PublishStateError(
            f"Entity {entity.id} is already being published",
            error_code="PUBLISH_IN_FLIGHT",
            context=context,
            user_message="This item is already being published.",
        )

    async def _load(self,
                    entity_id: str,
                    user_id: Optional[str]) -> Tuple[PublishableEntity, Location, Account]:
        context = create_error_context(operation="publish", user_id=user_id, entity_id=entity_id)

        entity = await self.entities.get_entity(entity_id)
        if entity is None or (user_id is not None and entity.user_id != user_id):
            raise NotFoundError(f"Entity {entity_id} not found", context=context, user_message="Item not found")

        location = await self.locations.get_location(entity.location_id)
        if location is None:
            raise NotFoundError(
                f"Location {entity.location_id} not found", context=context, user_message="Location not found"
            )

        account = await self.accounts.get_account_for_user(location.account_id, entity.user_id)
        if account is None:
            raise NotFoundError(
                f"Account {location.account_id} not found", context=context, user_message="Account not found"
            )
        if not account.is_active:
            raise ForbiddenError(
                f"Account {account.id} is disconnected",
                error_code="ACCOUNT_INACTIVE",
                context=context,
                user_message="This account is disconnected. Reconnect it to publish.",
            )
        return entity, location, account

    def _build_request(self, entity: PublishableEntity, location: Location, account: Account):
        """Validate the entity and bind the single gateway call it needs."""
        if entity.kind == EntityKind.POST:
            body = build_post_body(entity.payload)
            target = location.full_resource_name(account.account_resource)

            async def send(token, location_name, account_id=None):
                return await self.gateway.create_local_post(token, location_name, body, account_id=account_id)
            return send, target

        text = _reply_text(entity)
        if entity.kind == EntityKind.REVIEW_REPLY:
            async def send(token, review_name, account_id=None):
                return await self.gateway.reply_to_review(token, review_name, text, account_id=account_id)
            return send, entity.target_resource

        async def send(token, question_name, account_id=None):
            return await self.gateway.upsert_answer(token, question_name, text, account_id=account_id)
        return send, entity.target_resource

    async def _fail(self,
                    entity: PublishableEntity,
                    account: Account,
                    error_code: str,
                    message: str,
                    provider_error: Optional[str],
                    requires_reconnect: bool) -> PublishResult:
        entity.mark_failed(error_code, message, provider_error, self._clock())
        await self.entities.save_entity(entity)
        logger.warning(f"Publishing {entity.kind.value} {entity.id} failed: {error_code}")

        await self.action_log.record(
            action=f"publish_{entity.kind.value}",
            status="failed",
            details={"entity_id": entity.id, "error_code": error_code, "error": message},
            user_id=entity.user_id,
            account_id=account.id,
        )
        return PublishResult(
            entity_id=entity.id,
            success=False,
            status=entity.status,
            error_code=error_code,
            error_message=message,
            requires_reconnect=requires_reconnect,
        )
