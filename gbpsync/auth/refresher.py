"""
Exchange of refresh tokens for new Google access tokens.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from ..config.settings import OAuthConfig
from ..exceptions import (
    AuthExpiredError, ConfigurationError, ProviderError, TransientNetworkError,
    create_error_context
)
from ..retry import retry_async

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


@dataclass
class RefreshedToken:
    """Token endpoint response."""
    access_token: str
    expires_in: int = DEFAULT_EXPIRES_IN
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    scope: str = ""


class TokenRefresher:
    """Calls the identity provider's token endpoint.

    Transient failures (timeouts, 5xx, 429) are retried with exponential
    backoff. ``invalid_grant`` means the refresh token itself is dead and
    raises AuthExpiredError immediately.
    """

    def __init__(self,
                 oauth: OAuthConfig,
                 http_client: Optional[httpx.AsyncClient] = None,
                 retry_attempts: int = 3,
                 backoff_seconds: float = 0.5,
                 timeout: float = 30.0):
        self.oauth = oauth
        self.retry_attempts = retry_attempts
        self.backoff_seconds = backoff_seconds
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if this refresher created it."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def refresh(self, refresh_token: str, account_id: Optional[str] = None) -> RefreshedToken:
        """Obtain a new access token for ``refresh_token``.

        Raises:
            ConfigurationError: OAuth client credentials are missing
            AuthExpiredError: the refresh token was revoked or expired
            TransientNetworkError: retries exhausted on a transient failure
            ProviderError: any other non-2xx response
        """
        if not self.oauth.is_configured():
            raise ConfigurationError(
                message="Missing Google OAuth configuration (GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET)",
                error_code="OAUTH_NOT_CONFIGURED",
                context=create_error_context(operation="refresh_token", account_id=account_id),
                user_message="Google integration is not configured.",
            )

        token = await retry_async(
            lambda: self._request(refresh_token, account_id),
            attempts=self.retry_attempts,
            backoff_seconds=self.backoff_seconds,
            operation=f"Token refresh for account {account_id}",
        )
        logger.info(f"Access token refreshed for account {account_id}")
        return token

    async def _request(self, refresh_token: str, account_id: Optional[str]) -> RefreshedToken:
        context = create_error_context(operation="refresh_token", account_id=account_id)
        client = await self._get_http_client()

        try:
            response = await client.post(
                self.oauth.token_url,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": self.oauth.client_id,
                    "client_secret": self.oauth.client_secret,
                },
            )
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"Token endpoint timed out: {e}", context=context, cause=e)
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

        if not response.is_success:
            error = data.get("error", "") if isinstance(data, dict) else ""
            logger.error(f"Token refresh failed for account {account_id}: {response.status_code} {error}")
            if error == "invalid_grant":
                raise AuthExpiredError(
                    "Refresh token is invalid or revoked (invalid_grant)",
                    error_code="INVALID_GRANT",
                    status_code=response.status_code,
                    provider_body=response.text,
                    context=context,
                )
            if error in ("invalid_client", "unauthorized_client"):
                raise ConfigurationError(
                    message=f"OAuth client rejected by token endpoint: {error}",
                    error_code="OAUTH_CLIENT_REJECTED",
                    status_code=response.status_code,
                    provider_body=response.text,
                    context=context,
                )
            raise ProviderError(
                f"Token refresh failed: {error or 'Unknown error'}",
                status_code=response.status_code,
                provider_body=response.text,
                error_code="TOKEN_REFRESH_FAILED",
                context=context,
            )

        if not isinstance(data, dict) or not data.get("access_token"):
            raise ProviderError(
                "Token endpoint response did not contain an access token",
                status_code=response.status_code,
                provider_body=response.text,
                error_code="TOKEN_REFRESH_FAILED",
                context=context,
            )

        return RefreshedToken(
            access_token=data["access_token"],
            expires_in=int(data.get("expires_in") or DEFAULT_EXPIRES_IN),
            refresh_token=data.get("refresh_token") or None,
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope", ""),
        )
