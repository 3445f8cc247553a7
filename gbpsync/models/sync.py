"""
Sync job and result models.

One result object per job, with per-entity counters and error lists.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .base import BaseModel, format_datetime, utcnow


class SyncType(Enum):
    """How much of each paginated collection to pull."""
    FULL = "full"
    INCREMENTAL = "incremental"


class SyncStatus(Enum):
    """Overall status of one account sync."""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class EntityType(Enum):
    """Entity families pulled from Google."""
    LOCATIONS = "locations"
    REVIEWS = "reviews"
    POSTS = "posts"
    MEDIA = "media"
    METRICS = "metrics"
    QUESTIONS = "questions"


DEPENDENT_ENTITIES = (
    EntityType.REVIEWS,
    EntityType.POSTS,
    EntityType.MEDIA,
    EntityType.METRICS,
    EntityType.QUESTIONS,
)


@dataclass
class SyncJob(BaseModel):
    """One unit of work for the executor; never persisted."""
    account_id: str
    sync_type: SyncType = SyncType.FULL


@dataclass
class EntityOutcome(BaseModel):
    """Count and errors accumulated for one entity type."""
    count: int = 0
    errors: List[str] = field(default_factory=list)
    attempted: bool = False

    @property
    def succeeded(self) -> bool:
        return self.attempted and not self.errors


@dataclass
class SyncAccountResult:
    """Result of syncing one account."""
    account_id: str
    sync_type: SyncType = SyncType.FULL
    outcomes: Dict[EntityType, EntityOutcome] = field(
        default_factory=lambda: {t: EntityOutcome() for t in EntityType}
    )
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    last_sync_updated: bool = False

    def record_count(self, entity: EntityType, count: int) -> None:
        outcome = self.outcomes[entity]
        outcome.attempted = True
        outcome.count += count

    def record_error(self, entity: EntityType, message: str) -> None:
        outcome = self.outcomes[entity]
        outcome.attempted = True
        outcome.errors.append(message)

    def succeeded(self, entity: EntityType) -> bool:
        return self.outcomes[entity].succeeded

    @property
    def counts(self) -> Dict[str, int]:
        return {t.value: o.count for t, o in self.outcomes.items()}

    @property
    def errors(self) -> Dict[str, List[str]]:
        return {t.value: list(o.errors) for t, o in self.outcomes.items() if o.errors}

    @property
    def status(self) -> SyncStatus:
        if not self.succeeded(EntityType.LOCATIONS):
            return SyncStatus.FAILED
        if any(o.errors for o in self.outcomes.values()):
            return SyncStatus.PARTIAL
        return SyncStatus.SUCCESS

    @property
    def duration_ms(self) -> int:
        end = self.completed_at or utcnow()
        return int((end - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "sync_type": self.sync_type.value,
            "status": self.status.value,
            "counts": self.counts,
            "errors": self.errors,
            "last_sync_updated": self.last_sync_updated,
            "started_at": format_datetime(self.started_at),
            "completed_at": format_datetime(self.completed_at),
            "took_ms": self.duration_ms,
        }


@dataclass
class ProviderRecord(BaseModel):
    """A pulled provider object stored as opaque JSON."""
    entity_type: EntityType
    account_id: str
    location_id: Optional[str]
    external_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    updated_at: datetime = field(default_factory=utcnow)
