"""
OAuth token lifecycle: consent, refresh, resolution and encryption at rest.
"""

from .crypto import TokenCipher
from .refresher import TokenRefresher, RefreshedToken
from .resolver import AccessTokenResolver, TokenStatus
from .oauth_flow import GoogleOAuthFlow, OAuthState

__all__ = [
    "TokenCipher",
    "TokenRefresher",
    "RefreshedToken",
    "AccessTokenResolver",
    "TokenStatus",
    "GoogleOAuthFlow",
    "OAuthState",
]
