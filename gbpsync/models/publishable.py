"""
Locally authored objects that are pushed to Google.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from .base import BaseModel, generate_id, utcnow


class EntityKind(Enum):
    """What a publishable entity becomes on Google."""
    POST = "post"
    REVIEW_REPLY = "review_reply"
    QUESTION_ANSWER = "question_answer"


class PublishStatus(Enum):
    """Lifecycle of a publishable entity."""
    DRAFT = "draft"
    PENDING = "pending"
    PUBLISHED = "published"
    FAILED = "failed"


@dataclass
class PublishableEntity(BaseModel):
    """A post, review reply or question answer waiting to reach Google.

    ``target_resource`` names the review or question being answered and is
    unused for posts. ``error_message`` is the user-facing text while
    ``provider_error`` keeps whatever Google actually returned.
    """
    id: str = field(default_factory=generate_id)
    kind: EntityKind = EntityKind.POST
    user_id: str = ""
    location_id: str = ""
    target_resource: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    status: PublishStatus = PublishStatus.DRAFT
    provider_resource_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    provider_error: Optional[str] = None
    published_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def can_publish(self, stale_after: timedelta, now: Optional[datetime] = None) -> bool:
        """Whether a publish attempt may start from the current state.

        A pending entity is considered in flight until it has not been
        touched for ``stale_after``, after which it can be taken over.
        """
        if self.status in (PublishStatus.DRAFT, PublishStatus.FAILED):
            return True
        if self.status == PublishStatus.PENDING:
            return (now or utcnow()) - self.updated_at >= stale_after
        return False

    def mark_pending(self, now: Optional[datetime] = None) -> None:
        self.status = PublishStatus.PENDING
        self.error_code = None
        self.error_message = None
        self.provider_error = None
        self.updated_at = now or utcnow()

    def mark_published(self,
                       provider_resource_id: Optional[str],
                       now: Optional[datetime] = None) -> None:
        now = now or utcnow()
        self.status = PublishStatus.PUBLISHED
        self.provider_resource_id = provider_resource_id
        self.published_at = now
        self.updated_at = now

    def mark_failed(self,
                    error_code: str,
                    error_message: str,
                    provider_error: Optional[str] = None,
                    now: Optional[datetime] = None) -> None:
        self.status = PublishStatus.FAILED
        self.error_code = error_code
        self.error_message = error_message
        self.provider_error = provider_error
        self.updated_at = now or utcnow()


@dataclass
class PublishResult(BaseModel):
    """Outcome of one publish attempt."""
    entity_id: str
    success: bool
    status: PublishStatus
    provider_resource_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    requires_reconnect: bool = False
