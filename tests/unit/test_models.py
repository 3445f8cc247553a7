"""
Tests for domain model helpers.
"""

from datetime import timedelta

from gbpsync.models.location import Location, build_location_resource_name, format_address
from gbpsync.models.publishable import EntityKind, PublishableEntity, PublishStatus

from .fakes import NOW, make_account


class TestLocationNames:

    def test_build_accepts_prefixed_and_bare_ids(self):
        assert build_location_resource_name("accounts/1", "locations/2") == "accounts/1/locations/2"
        assert build_location_resource_name("1", "2") == "accounts/1/locations/2"
        assert build_location_resource_name("accounts/1", "accounts/9/locations/2") == "accounts/1/locations/2"

    def test_full_and_short_names(self):
        location = Location(resource_name="locations/7")

        assert location.full_resource_name("accounts/3") == "accounts/3/locations/7"
        assert location.full_resource_name(None) == "locations/7"
        assert Location(resource_name="accounts/3/locations/7").short_resource_name == "locations/7"

    def test_format_address(self):
        address = {"addressLines": ["1 Main St"], "locality": "Springfield",
                   "administrativeArea": "IL", "postalCode": "62701"}
        assert format_address(address) == "1 Main St, Springfield, IL 62701"
        assert format_address(None) is None


class TestAccount:

    def test_serialization_never_includes_tokens(self):
        data = make_account().to_dict()

        assert "access_token" not in data
        assert "refresh_token" not in data
        assert data["settings"]["syncSchedule"] == "daily"

    def test_needs_reconnect(self):
        assert not make_account().needs_reconnect
        assert make_account(refresh_token=None).needs_reconnect
        assert not make_account(refresh_token=None, is_active=False).needs_reconnect

    def test_token_validity_is_strict(self):
        account = make_account(token_expires_at=NOW)
        assert not account.has_valid_access_token(NOW)
        assert account.has_valid_access_token(NOW - timedelta(seconds=1))


class TestPublishableEntity:

    def test_publishable_states(self):
        stale = timedelta(minutes=10)

        assert PublishableEntity(kind=EntityKind.POST).can_publish(stale, NOW)
        assert PublishableEntity(kind=EntityKind.POST, status=PublishStatus.FAILED).can_publish(stale, NOW)
        assert not PublishableEntity(kind=EntityKind.POST, status=PublishStatus.PUBLISHED).can_publish(stale, NOW)

    def test_mark_failed_then_pending_clears_error(self):
        entity = PublishableEntity(kind=EntityKind.POST)
        entity.mark_failed("PROVIDER_ERROR", "rejected", "raw")
        entity.mark_pending()

        assert entity.status == PublishStatus.PENDING
        assert entity.error_code is None
        assert entity.provider_error is None
