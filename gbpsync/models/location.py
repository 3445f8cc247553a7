"""
Business location model and Google resource-name helpers.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .base import BaseModel, generate_id, utcnow

_LOCATION_PREFIX = re.compile(r"^(accounts/[^/]+/)?locations/")


def build_location_resource_name(account_resource: str, location_id: str) -> str:
    """Build ``accounts/{a}/locations/{l}`` from loosely formatted ids.

    Both arguments may or may not carry their ``accounts/`` and
    ``locations/`` prefixes.
    """
    clean_account = account_resource
    if clean_account.startswith("accounts/"):
        clean_account = clean_account[len("accounts/"):]
    clean_location = _LOCATION_PREFIX.sub("", location_id)
    return f"accounts/{clean_account}/locations/{clean_location}"


def format_address(address: Optional[Dict[str, Any]]) -> Optional[str]:
    """Flatten a storefront address the way the dashboard displays it."""
    if not address:
        return None
    text = ", ".join(address.get("addressLines") or [])
    if address.get("locality"):
        text += f", {address['locality']}"
    if address.get("administrativeArea"):
        text += f", {address['administrativeArea']}"
    if address.get("postalCode"):
        text += f" {address['postalCode']}"
    return text.lstrip(", ") or None


@dataclass
class Location(BaseModel):
    """A single business listing owned by exactly one account."""
    id: str = field(default_factory=generate_id)
    account_id: str = ""
    user_id: str = ""
    resource_name: str = ""
    title: str = ""
    address: Optional[str] = None
    phone: Optional[str] = None
    category: Optional[str] = None
    website: Optional[str] = None
    is_active: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)
    updated_at: datetime = field(default_factory=utcnow)

    def full_resource_name(self, account_resource: Optional[str]) -> str:
        """The ``accounts/{a}/locations/{l}`` name used by the v4 API."""
        if self.resource_name.startswith("accounts/") or not account_resource:
            return self.resource_name
        return build_location_resource_name(account_resource, self.resource_name)

    @property
    def short_resource_name(self) -> str:
        """The ``locations/{l}`` name used by the v1 APIs."""
        return "locations/" + _LOCATION_PREFIX.sub("", self.resource_name)

    @classmethod
    def from_provider(cls,
                      payload: Dict[str, Any],
                      account_id: str,
                      user_id: str) -> "Location":
        """Minimal normalization of a business information API location."""
        categories = payload.get("categories") or {}
        primary = categories.get("primaryCategory") or {}
        return cls(
            account_id=account_id,
            user_id=user_id,
            resource_name=payload.get("name", ""),
            title=payload.get("title") or "Unnamed Location",
            address=format_address(payload.get("storefrontAddress")),
            phone=(payload.get("phoneNumbers") or {}).get("primaryPhone"),
            category=primary.get("displayName"),
            website=payload.get("websiteUri"),
            metadata=payload,
        )
