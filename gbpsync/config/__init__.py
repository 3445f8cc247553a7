"""
Configuration for the GBP sync engine.
"""

from .settings import (
    EngineConfig, OAuthConfig, DatabaseConfig, SyncConfig, ServerConfig, LogLevel
)
from .environment import EnvironmentLoader
from .validation import ConfigValidator

__all__ = [
    "EngineConfig",
    "OAuthConfig",
    "DatabaseConfig",
    "SyncConfig",
    "ServerConfig",
    "LogLevel",
    "EnvironmentLoader",
    "ConfigValidator",
]
