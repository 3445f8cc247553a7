"""
Google OAuth 2.0 authorization code flow that connects accounts.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from ..config.settings import OAuthConfig
from ..data.base import AccountRepository
from ..exceptions import (
    ConfigurationError, NotFoundError, ProviderError, TransientNetworkError,
    ValidationError, create_error_context
)
from ..gateway.client import GoogleBusinessGateway
from ..models.account import Account
from ..models.base import utcnow
from .refresher import DEFAULT_EXPIRES_IN, RefreshedToken

if TYPE_CHECKING:
    from ..action_log import ActionLog

logger = logging.getLogger(__name__)


@dataclass
class OAuthState:
    """OAuth state for CSRF protection."""
    state_token: str
    user_id: str
    redirect_uri: str
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, ttl: timedelta, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) - self.created_at > ttl


class GoogleOAuthFlow:
    """
    Handles the Google OAuth 2.0 consent flow for Business Profile access.

    ``generate_auth_url`` starts a flow for a signed-in user. Google sends
    the browser back with a code and the one-time state, and ``connect``
    exchanges the code and stores one account per Business Profile account
    the user manages.
    """

    SCOPES = [
        "https://www.googleapis.com/auth/business.manage",
        "https://www.googleapis.com/auth/userinfo.email",
        "https://www.googleapis.com/auth/userinfo.profile",
        "openid",
    ]

    def __init__(self,
                 oauth: OAuthConfig,
                 accounts: AccountRepository,
                 gateway: GoogleBusinessGateway,
                 action_log: "ActionLog",
                 http_client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 30.0,
                 clock: Callable[[], datetime] = utcnow):
        self.oauth = oauth
        self.accounts = accounts
        self.gateway = gateway
        self.action_log = action_log
        self.state_ttl = timedelta(seconds=oauth.state_ttl_seconds)
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None
        self._clock = clock
        self._pending_states: Dict[str, OAuthState] = {}

    def is_configured(self) -> bool:
        """Check if OAuth is configured."""
        return self.oauth.is_configured()

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if this flow created it."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    def generate_auth_url(self, user_id: str) -> Tuple[str, str]:
        """
        Generate the Google consent URL for a user.

        Args:
            user_id: Dashboard user starting the flow

        Returns:
            Tuple of (auth_url, state_token)

        Raises:
            ConfigurationError: OAuth client credentials are missing
        """
        if not self.is_configured():
            raise ConfigurationError(
                message="Missing Google OAuth configuration (GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET)",
                error_code="OAUTH_NOT_CONFIGURED",
                context=create_error_context(operation="generate_auth_url", user_id=user_id),
                user_message="Google integration is not configured.",
            )

        self._cleanup_expired_states()

        state_token = secrets.token_urlsafe(32)
        self._pending_states[state_token] = OAuthState(
            state_token=state_token,
            user_id=user_id,
            redirect_uri=self.oauth.redirect_uri,
            created_at=self._clock(),
        )

        params = {
            "client_id": self.oauth.client_id,
            "redirect_uri": self.oauth.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.SCOPES),
            "access_type": "offline",  # Get refresh token
            "prompt": "consent",  # Always show consent to get refresh token
            "include_granted_scopes": "true",
            "state": state_token,
        }
        return f"{self.oauth.auth_url}?{urlencode(params)}", state_token

    def validate_state(self, state_token: str) -> Optional[OAuthState]:
        """Consume a state token; ``None`` if unknown, used or expired."""
        state = self._pending_states.pop(state_token, None)
        if state is None:
            return None
        if state.is_expired(self.state_ttl, self._clock()):
            return None
        return state

    async def exchange_code(self, code: str, state: OAuthState) -> RefreshedToken:
        """
        Exchange an authorization code for tokens.

        Codes are single-use, so the exchange is never retried.

        Raises:
            TransientNetworkError: token endpoint unreachable or 5xx
            ProviderError: Google rejected the code
        """
        context = create_error_context(operation="exchange_code", user_id=state.user_id)
        client = await self._get_http_client()

        try:
            response = await client.post(
                self.oauth.token_url,
                data={
                    "client_id": self.oauth.client_id,
                    "client_secret": self.oauth.client_secret,
                    "code": code,
                    "grant_type": "authorization_code",
                    "redirect_uri": state.redirect_uri,
                },
            )
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Token endpoint unreachable: {e}", context=context, cause=e)

        if response.status_code >= 500 or response.status_code == 429:
            raise TransientNetworkError(
                f"Token endpoint returned {response.status_code}",
                status_code=response.status_code,
                provider_body=response.text,
                context=context,
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if not response.is_success or not data.get("access_token"):
            reason = data.get("error_description") or data.get("error") or "no access token returned"
            logger.error(f"Token exchange failed for user {state.user_id}: {response.status_code} {reason}")
            raise ProviderError(
                f"Token exchange failed: {reason}",
                error_code="OAUTH_EXCHANGE_FAILED",
                status_code=response.status_code,
                provider_body=response.text,
                context=context,
                user_message="Google did not accept the authorization. Please try connecting again.",
            )

        return RefreshedToken(
            access_token=data["access_token"],
            expires_in=int(data.get("expires_in") or DEFAULT_EXPIRES_IN),
            refresh_token=data.get("refresh_token") or None,
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope", ""),
        )

    async def connect(self, code: str, state_token: str) -> List[Account]:
        """
        Finish a consent flow and store the user's accounts.

        Existing accounts for the same user and ``accounts/{n}`` are updated
        and reactivated. A refresh token already on file is kept when
        Google does not return a new one.

        Returns:
            The connected accounts

        Raises:
            ValidationError: unknown, used or expired state
            NotFoundError: the Google identity manages no Business Profile accounts
            ProviderError: the code exchange or account listing failed
        """
        state = self.validate_state(state_token)
        if state is None:
            raise ValidationError(
                "Invalid or expired OAuth state",
                error_code="INVALID_OAUTH_STATE",
                context=create_error_context(operation="oauth_callback"),
                user_message="Invalid or expired authorization state. Please try connecting again.",
            )

        token = await self.exchange_code(code, state)
        now = self._clock()
        expires_at = now + timedelta(seconds=token.expires_in)

        google_accounts = await self.gateway.list_accounts(token.access_token)
        if not google_accounts:
            raise NotFoundError(
                f"No Business Profile accounts for user {state.user_id}",
                error_code="NO_GBP_ACCOUNTS",
                context=create_error_context(operation="oauth_callback", user_id=state.user_id),
                user_message="No Google Business Profile accounts were found for this Google login.",
            )

        connected = []
        for google_account in google_accounts:
            resource = google_account.get("name")
            if not resource:
                continue
            name = google_account.get("accountName") or resource

            account = await self.accounts.find_account_by_resource(state.user_id, resource)
            if account is None:
                account = Account(user_id=state.user_id, account_resource=resource, created_at=now)
            account.account_name = name
            account.is_active = True
            account.disconnected_at = None
            account.access_token = token.access_token
            account.refresh_token = token.refresh_token or account.refresh_token
            account.token_expires_at = expires_at
            account.updated_at = now
            await self.accounts.save_account(account)

            if not account.refresh_token:
                logger.warning(f"Google returned no refresh token for account {account.id}; reconnect will be needed")
            logger.info(f"Connected {resource} as account {account.id} for user {state.user_id}")
            await self.action_log.record(
                action="connect_account",
                status="success",
                details={"account_resource": resource, "has_refresh_token": bool(account.refresh_token)},
                user_id=state.user_id,
                account_id=account.id,
            )
            connected.append(account)

        return connected

    def _cleanup_expired_states(self) -> None:
        """Remove expired state tokens."""
        now = self._clock()
        expired = [
            token for token, state in self._pending_states.items()
            if state.is_expired(self.state_ttl, now)
        ]
        for token in expired:
            del self._pending_states[token]
