"""
Error taxonomy for the GBP sync engine.

Every error carries a machine-readable ``error_code``, a ``user_message``
suitable for the dashboard, and a ``retryable`` flag that the retry helpers
and the scheduler consult. Errors raised from an HTTP response also keep
the status code and the raw response body so support can diagnose
failures.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


RECONNECT_MESSAGE = "Your Google account needs to be reconnected."


@dataclass
class ErrorContext:
    """Metadata attached to an error for logs and action log entries."""
    operation: str = ""
    account_id: Optional[str] = None
    user_id: Optional[str] = None
    entity_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "operation": self.operation,
            "account_id": self.account_id,
            "user_id": self.user_id,
            "entity_id": self.entity_id,
            "timestamp": self.timestamp.isoformat(),
        }
        data.update(self.extra)
        return {k: v for k, v in data.items() if v is not None}


def create_error_context(operation: str = "",
                         account_id: Optional[str] = None,
                         user_id: Optional[str] = None,
                         entity_id: Optional[str] = None,
                         **extra: Any) -> ErrorContext:
    """Build an ErrorContext from keyword arguments."""
    return ErrorContext(
        operation=operation,
        account_id=account_id,
        user_id=user_id,
        entity_id=entity_id,
        extra=extra,
    )


class GBPSyncError(Exception):
    """Base class for all engine errors."""

    default_code = "GBP_SYNC_ERROR"
    retryable = False
    requires_reconnect = False

    def __init__(self,
                 message: str,
                 error_code: Optional[str] = None,
                 context: Optional[ErrorContext] = None,
                 user_message: Optional[str] = None,
                 cause: Optional[BaseException] = None,
                 status_code: Optional[int] = None,
                 provider_body: str = ""):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.context = context or ErrorContext()
        self.user_message = user_message or message
        self.cause = cause
        # Set for errors derived from an HTTP response: the status and the
        # raw body exactly as the provider sent it.
        self.status_code = status_code
        self.provider_body = provider_body

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.user_message,
            "details": self.message,
            "retryable": self.retryable,
            "requires_reconnect": self.requires_reconnect,
            "context": self.context.to_dict(),
        }

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


class ConfigurationError(GBPSyncError):
    """Missing or invalid configuration such as OAuth client credentials."""
    default_code = "CONFIGURATION_ERROR"


class NoRefreshTokenError(GBPSyncError):
    """The account has no refresh token and cannot refresh itself."""
    default_code = "NO_REFRESH_TOKEN"
    requires_reconnect = True

    def __init__(self, account_id: str, **kwargs: Any):
        kwargs.setdefault("user_message", RECONNECT_MESSAGE)
        kwargs.setdefault("context", create_error_context(
            operation="resolve_access_token", account_id=account_id
        ))
        super().__init__(
            f"Account {account_id} has no refresh token; reconnect required",
            **kwargs,
        )
        self.account_id = account_id


class AuthExpiredError(GBPSyncError):
    """The refresh token was revoked or expired (``invalid_grant``), or the
    provider rejected the access token."""
    default_code = "AUTH_EXPIRED"
    requires_reconnect = True

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("user_message", RECONNECT_MESSAGE)
        super().__init__(message, **kwargs)


class TransientNetworkError(GBPSyncError):
    """Timeouts, connection failures, 5xx and rate-limit responses."""
    default_code = "TRANSIENT_NETWORK_ERROR"
    retryable = True

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault(
            "user_message", "Google is temporarily unavailable. Please try again later."
        )
        super().__init__(message, **kwargs)


class ProviderError(GBPSyncError):
    """Non-2xx provider response that is not otherwise classified."""
    default_code = "PROVIDER_ERROR"


class InsufficientScopesError(ProviderError):
    """403 caused by missing OAuth scopes; the remedy is re-consent."""
    default_code = "INSUFFICIENT_SCOPES"
    requires_reconnect = True

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault(
            "user_message",
            "Insufficient authentication scopes. Please reconnect your Google "
            "Business Profile account with the required permissions.",
        )
        super().__init__(message, **kwargs)


class NotFoundError(ProviderError):
    """The local record or the provider resource does not exist."""
    default_code = "NOT_FOUND"


class ValidationError(ProviderError):
    """Malformed request payload; never retried."""
    default_code = "VALIDATION_ERROR"


class ForbiddenError(GBPSyncError):
    """The operation is not allowed for this account or user."""
    default_code = "FORBIDDEN"


class PublishStateError(GBPSyncError):
    """The entity is in a state that cannot be published."""
    default_code = "INVALID_PUBLISH_STATE"
