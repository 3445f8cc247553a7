"""
Configuration dataclasses for the GBP sync engine.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
DEFAULT_REDIRECT_URI = "http://localhost:8000/api/oauth/callback"


class LogLevel(Enum):
    """Supported log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class OAuthConfig:
    """Google OAuth client credentials."""
    client_id: str = ""
    client_secret: str = ""
    token_url: str = GOOGLE_TOKEN_URL
    auth_url: str = GOOGLE_AUTH_URL
    redirect_uri: str = DEFAULT_REDIRECT_URI
    state_ttl_seconds: int = 1800

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


@dataclass
class DatabaseConfig:
    """SQLite database settings."""
    path: str = "data/gbpsync.db"
    pool_size: int = 5


@dataclass
class SyncConfig:
    """Concurrency and retry settings for sync and publish."""
    max_concurrent_syncs: int = 4
    max_concurrent_pulls: int = 5
    retry_attempts: int = 3
    retry_backoff_seconds: float = 0.5
    http_timeout_seconds: float = 30.0
    stale_pending_seconds: int = 600


@dataclass
class ServerConfig:
    """HTTP server and request authentication settings."""
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: List[str] = field(default_factory=list)
    cron_secret: Optional[str] = None
    auth_jwt_secret: Optional[str] = None
    auth_jwt_audience: Optional[str] = None
    timer_enabled: bool = False


@dataclass
class EngineConfig:
    """Root configuration object."""
    oauth: OAuthConfig = field(default_factory=OAuthConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    token_encryption_key: Optional[str] = None
    log_level: LogLevel = LogLevel.INFO
