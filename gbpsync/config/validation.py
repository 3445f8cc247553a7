"""
Configuration validation for the GBP sync engine.
"""

from typing import List

from .settings import EngineConfig


class ConfigValidator:
    """Validates configuration settings."""

    @staticmethod
    def validate_config(config: EngineConfig) -> List[str]:
        """Validate the entire configuration."""
        errors = []

        errors.extend(ConfigValidator._validate_oauth(config))
        errors.extend(ConfigValidator._validate_sync(config))
        errors.extend(ConfigValidator._validate_server(config))

        return errors

    @staticmethod
    def _validate_oauth(config: EngineConfig) -> List[str]:
        """OAuth client credentials are required for any token refresh."""
        errors = []

        if not config.oauth.client_id:
            errors.append("GOOGLE_CLIENT_ID is not set")
        if not config.oauth.client_secret:
            errors.append("GOOGLE_CLIENT_SECRET is not set")
        if not config.oauth.token_url.startswith("https://"):
            errors.append(f"Token URL must use https: {config.oauth.token_url}")
        if not config.oauth.redirect_uri.startswith(("http://", "https://")):
            errors.append(f"Invalid OAuth redirect URI: {config.oauth.redirect_uri}")
        if config.oauth.state_ttl_seconds <= 0:
            errors.append("OAuth state lifetime must be positive")

        return errors

    @staticmethod
    def _validate_sync(config: EngineConfig) -> List[str]:
        """Validate concurrency and retry ranges."""
        errors = []
        sync = config.sync

        if sync.max_concurrent_syncs <= 0:
            errors.append("Sync concurrency must be positive")
        if sync.max_concurrent_pulls <= 0:
            errors.append("Pull concurrency must be positive")
        if not (1 <= sync.retry_attempts <= 10):
            errors.append(f"Retry attempts {sync.retry_attempts} not in range (1-10)")
        if sync.retry_backoff_seconds < 0:
            errors.append("Retry backoff cannot be negative")
        if sync.http_timeout_seconds <= 0:
            errors.append("HTTP timeout must be positive")

        return errors

    @staticmethod
    def _validate_server(config: EngineConfig) -> List[str]:
        """Validate server settings."""
        errors = []
        server = config.server

        if not (1 <= server.port <= 65535):
            errors.append(f"Port {server.port} is not in valid range (1-65535)")

        if server.cron_secret is not None and len(server.cron_secret) < 16:
            errors.append("CRON_SECRET should be at least 16 characters")

        for origin in server.cors_origins:
            if origin != "*" and not origin.startswith(("http://", "https://")):
                errors.append(f"Invalid CORS origin: {origin}")

        return errors
