"""
HTTP API: cron trigger, account connection, manual sync, disconnect and publish.
"""

from .server import create_app, status_for_error
from .routes import EngineServices

__all__ = [
    "create_app",
    "status_for_error",
    "EngineServices",
]
