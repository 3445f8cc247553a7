"""
Connected Google account model and its typed per-account settings.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .base import BaseModel, generate_id, parse_datetime, utcnow

logger = logging.getLogger(__name__)


class SyncSchedule(Enum):
    """Automatic sync cadence for an account."""
    MANUAL = "manual"
    HOURLY = "hourly"
    DAILY = "daily"
    TWICE_DAILY = "twice-daily"
    WEEKLY = "weekly"


# Stored settings keep the dashboard's camelCase keys.
_SETTINGS_KEYS = {
    "sync_schedule": "syncSchedule",
    "auto_reply": "autoReply",
    "auto_publish": "autoPublish",
    "review_notifications": "reviewNotifications",
    "email_digest": "emailDigest",
}


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes", "on"):
            return True
        if lowered in ("false", "0", "no", "off"):
            return False
    if isinstance(value, int):
        return bool(value)
    return default


@dataclass
class AccountSettings(BaseModel):
    """Per-account behaviour, validated when read from storage.

    Missing or malformed values fall back to the documented defaults
    instead of failing the read. Keys this class does not recognize are
    kept in ``extra`` so a round-trip never drops them.
    """
    sync_schedule: SyncSchedule = SyncSchedule.MANUAL
    auto_reply: bool = False
    auto_publish: bool = False
    review_notifications: bool = True
    email_digest: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AccountSettings":
        data = dict(data or {})
        defaults = cls()

        raw_schedule = data.pop(_SETTINGS_KEYS["sync_schedule"], None)
        schedule = defaults.sync_schedule
        if raw_schedule is not None:
            try:
                schedule = SyncSchedule(str(raw_schedule).strip().lower())
            except ValueError:
                logger.warning(f"Unknown sync schedule {raw_schedule!r}, using manual")

        values = {}
        for attr in ("auto_reply", "auto_publish", "review_notifications", "email_digest"):
            raw = data.pop(_SETTINGS_KEYS[attr], None)
            values[attr] = _as_bool(raw, getattr(defaults, attr))

        return cls(sync_schedule=schedule, extra=data, **values)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            _SETTINGS_KEYS["sync_schedule"]: self.sync_schedule.value,
            _SETTINGS_KEYS["auto_reply"]: self.auto_reply,
            _SETTINGS_KEYS["auto_publish"]: self.auto_publish,
            _SETTINGS_KEYS["review_notifications"]: self.review_notifications,
            _SETTINGS_KEYS["email_digest"]: self.email_digest,
        })
        return data


@dataclass
class Account(BaseModel):
    """A connected Google identity.

    ``access_token`` is only trustworthy while ``token_expires_at`` is in
    the future. An active account without a refresh token cannot heal
    itself and has to be reconnected by its owner.
    """
    id: str = field(default_factory=generate_id)
    user_id: str = ""
    account_name: str = ""
    account_resource: Optional[str] = None
    is_active: bool = True
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    settings: AccountSettings = field(default_factory=AccountSettings)
    last_sync: Optional[datetime] = None
    disconnected_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def needs_reconnect(self) -> bool:
        return self.is_active and not self.refresh_token

    def has_valid_access_token(self, now: Optional[datetime] = None) -> bool:
        """True when the stored access token may be used as-is."""
        if not self.access_token or self.token_expires_at is None:
            return False
        return self.token_expires_at > (now or utcnow())

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        # Credentials never leave the store through serialization.
        data.pop("access_token")
        data.pop("refresh_token")
        data["settings"] = self.settings.to_dict()
        data["needs_reconnect"] = self.needs_reconnect
        return data

    @classmethod
    def from_row(cls, row: Dict[str, Any], settings: Dict[str, Any]) -> "Account":
        """Build an account from a storage row with decrypted tokens."""
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            account_name=row.get("account_name") or "",
            account_resource=row.get("account_resource"),
            is_active=bool(row.get("is_active", True)),
            access_token=row.get("access_token"),
            refresh_token=row.get("refresh_token"),
            token_expires_at=parse_datetime(row.get("token_expires_at")),
            settings=AccountSettings.from_dict(settings),
            last_sync=parse_datetime(row.get("last_sync")),
            disconnected_at=parse_datetime(row.get("disconnected_at")),
            created_at=parse_datetime(row.get("created_at")) or utcnow(),
            updated_at=parse_datetime(row.get("updated_at")) or utcnow(),
        )
