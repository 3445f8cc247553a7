"""
Environment variable handling for the GBP sync engine configuration.
"""

import os
from typing import List

from dotenv import load_dotenv

from .settings import (
    EngineConfig, OAuthConfig, DatabaseConfig, SyncConfig, ServerConfig,
    LogLevel, GOOGLE_AUTH_URL, GOOGLE_TOKEN_URL, DEFAULT_REDIRECT_URI
)


class EnvironmentLoader:
    """Loads configuration from environment variables."""

    @staticmethod
    def load_config(dotenv: bool = True) -> EngineConfig:
        """Load configuration from environment variables."""
        if dotenv:
            load_dotenv()

        oauth = OAuthConfig(
            client_id=os.getenv('GOOGLE_CLIENT_ID', ''),
            client_secret=os.getenv('GOOGLE_CLIENT_SECRET', ''),
            token_url=os.getenv('GOOGLE_TOKEN_URL', GOOGLE_TOKEN_URL),
            auth_url=os.getenv('GOOGLE_AUTH_URL', GOOGLE_AUTH_URL),
            redirect_uri=os.getenv('GOOGLE_REDIRECT_URI', DEFAULT_REDIRECT_URI).rstrip('/'),
            state_ttl_seconds=int(os.getenv('OAUTH_STATE_TTL_SECONDS', '1800')),
        )

        database = DatabaseConfig(
            path=os.getenv('DATABASE_PATH', 'data/gbpsync.db'),
            pool_size=int(os.getenv('DB_POOL_SIZE', '5')),
        )

        sync = SyncConfig(
            max_concurrent_syncs=int(os.getenv('SYNC_MAX_CONCURRENCY', '4')),
            max_concurrent_pulls=int(os.getenv('SYNC_MAX_PULL_CONCURRENCY', '5')),
            retry_attempts=int(os.getenv('SYNC_RETRY_ATTEMPTS', '3')),
            retry_backoff_seconds=float(os.getenv('SYNC_RETRY_BACKOFF_SECONDS', '0.5')),
            http_timeout_seconds=float(os.getenv('HTTP_TIMEOUT_SECONDS', '30')),
            stale_pending_seconds=int(os.getenv('PUBLISH_STALE_PENDING_SECONDS', '600')),
        )

        server = ServerConfig(
            host=os.getenv('HOST', '0.0.0.0'),
            port=int(os.getenv('PORT', '8000')),
            cors_origins=EnvironmentLoader._parse_list(os.getenv('CORS_ORIGINS', '')),
            cron_secret=os.getenv('CRON_SECRET') or None,
            auth_jwt_secret=os.getenv('AUTH_JWT_SECRET') or None,
            auth_jwt_audience=os.getenv('AUTH_JWT_AUDIENCE') or None,
            timer_enabled=os.getenv('SYNC_TIMER_ENABLED', 'false').lower() == 'true',
        )

        log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
        log_level = LogLevel.INFO
        try:
            log_level = LogLevel(log_level_str)
        except ValueError:
            pass

        return EngineConfig(
            oauth=oauth,
            database=database,
            sync=sync,
            server=server,
            token_encryption_key=os.getenv('TOKEN_ENCRYPTION_KEY') or None,
            log_level=log_level,
        )

    @staticmethod
    def _parse_list(value: str, delimiter: str = ',') -> List[str]:
        """Parse a comma-separated string into a list."""
        if not value:
            return []
        return [item.strip() for item in value.split(delimiter) if item.strip()]
