"""
API route modules.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException

from ...action_log import ActionLog
from ...auth.oauth_flow import GoogleOAuthFlow
from ...auth.resolver import AccessTokenResolver
from ...config.settings import ServerConfig
from ...data.base import AccountRepository
from ...publishing.pipeline import PublishPipeline
from ...scheduling.executor import SyncExecutor
from ...scheduling.scheduler import SyncScheduler


@dataclass
class EngineServices:
    """Service references the route handlers work with."""
    accounts: AccountRepository
    executor: SyncExecutor
    scheduler: SyncScheduler
    pipeline: PublishPipeline
    action_log: ActionLog
    resolver: AccessTokenResolver
    server_config: ServerConfig
    oauth_flow: Optional[GoogleOAuthFlow] = None


# Set by create_app()
_services: Optional[EngineServices] = None


def set_services(services: Optional[EngineServices]) -> None:
    """Set service references for route handlers."""
    global _services
    _services = services


def get_services() -> EngineServices:
    """Get the engine services, or fail with 503 before startup."""
    if _services is None:
        raise HTTPException(
            status_code=503,
            detail={"code": "SERVICE_UNAVAILABLE", "message": "Sync engine not initialized"},
        )
    return _services


from .cron import router as cron_router  # noqa: E402
from .accounts import router as accounts_router  # noqa: E402
from .publish import router as publish_router  # noqa: E402
from .oauth import router as oauth_router  # noqa: E402

__all__ = [
    "EngineServices",
    "set_services",
    "get_services",
    "cron_router",
    "accounts_router",
    "publish_router",
    "oauth_router",
]
