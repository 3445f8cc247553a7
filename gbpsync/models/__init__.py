"""
Domain models for the GBP sync engine.
"""

from .base import BaseModel, generate_id, utcnow, parse_datetime, format_datetime
from .account import Account, AccountSettings, SyncSchedule
from .location import Location, build_location_resource_name
from .publishable import EntityKind, PublishStatus, PublishableEntity, PublishResult
from .sync import (
    SyncJob, SyncType, SyncStatus, EntityType, EntityOutcome,
    SyncAccountResult, ProviderRecord, DEPENDENT_ENTITIES
)
from .action_log import ActionLogEntry

__all__ = [
    'BaseModel',
    'generate_id',
    'utcnow',
    'parse_datetime',
    'format_datetime',

    'Account',
    'AccountSettings',
    'SyncSchedule',

    'Location',
    'build_location_resource_name',

    'EntityKind',
    'PublishStatus',
    'PublishableEntity',
    'PublishResult',

    'SyncJob',
    'SyncType',
    'SyncStatus',
    'EntityType',
    'EntityOutcome',
    'SyncAccountResult',
    'ProviderRecord',
    'DEPENDENT_ENTITIES',

    'ActionLogEntry',
]
