"""
Application wiring for the GBP sync engine.

This module builds all components from configuration:
- Credential store and repositories (SQLite)
- OAuth consent flow, token refresher and access token resolver
- Google API gateway
- Sync executor, scheduler and publish pipeline
- FastAPI server and the optional hourly timer
"""

import asyncio
import json
import logging
import sys
from typing import Any, Dict, Optional

import httpx
import uvicorn

from .action_log import ActionLog
from .api import EngineServices, create_app
from .auth import AccessTokenResolver, GoogleOAuthFlow, TokenRefresher
from .config import ConfigValidator, EngineConfig, EnvironmentLoader
from .data import RepositoryFactory
from .exceptions import ConfigurationError, create_error_context
from .gateway import GoogleBusinessGateway
from .publishing import PublishPipeline
from .scheduling import SyncExecutor, SyncScheduler

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class GBPSyncApp:
    """Main application class with full component integration."""

    def __init__(self):
        self.config: Optional[EngineConfig] = None
        self.repositories: Optional[RepositoryFactory] = None
        self.http_client: Optional[httpx.AsyncClient] = None
        self.refresher: Optional[TokenRefresher] = None
        self.resolver: Optional[AccessTokenResolver] = None
        self.gateway: Optional[GoogleBusinessGateway] = None
        self.action_log: Optional[ActionLog] = None
        self.executor: Optional[SyncExecutor] = None
        self.scheduler: Optional[SyncScheduler] = None
        self.pipeline: Optional[PublishPipeline] = None
        self.oauth_flow: Optional[GoogleOAuthFlow] = None
        self.services: Optional[EngineServices] = None
        self.server: Optional[uvicorn.Server] = None

        logging.basicConfig(
            level=logging.INFO,
            format=LOG_FORMAT,
            handlers=[logging.StreamHandler(sys.stdout)]
        )
        self.logger = logging.getLogger(__name__)

    async def initialize(self,
                         config: Optional[EngineConfig] = None,
                         backend: str = "sqlite") -> None:
        """Initialize all application components.

        Args:
            config: Configuration to use instead of the environment
            backend: Repository backend ('sqlite' or 'memory')

        Raises:
            ConfigurationError: Google OAuth client credentials are missing
        """
        self.logger.info("Initializing GBP sync engine...")

        self.config = config or EnvironmentLoader.load_config()
        logging.getLogger().setLevel(self.config.log_level.value)

        problems = ConfigValidator.validate_config(self.config)
        for problem in problems:
            self.logger.warning(f"Configuration: {problem}")
        if not self.config.oauth.is_configured():
            raise ConfigurationError(
                message="Missing Google OAuth configuration (GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET)",
                error_code="OAUTH_NOT_CONFIGURED",
                context=create_error_context(operation="initialize"),
                user_message="Google integration is not configured.",
            )

        self.repositories = RepositoryFactory(
            backend,
            db_path=self.config.database.path,
            pool_size=self.config.database.pool_size,
            encryption_key=self.config.token_encryption_key,
        )
        accounts = await self.repositories.get_account_repository()
        locations = await self.repositories.get_location_repository()
        records = await self.repositories.get_provider_record_repository()
        entities = await self.repositories.get_publishable_repository()
        self.action_log = ActionLog(await self.repositories.get_action_log_repository())

        sync = self.config.sync
        self.http_client = httpx.AsyncClient(timeout=sync.http_timeout_seconds)
        self.refresher = TokenRefresher(
            self.config.oauth,
            http_client=self.http_client,
            retry_attempts=sync.retry_attempts,
            backoff_seconds=sync.retry_backoff_seconds,
        )
        self.resolver = AccessTokenResolver(accounts, self.refresher)
        self.gateway = GoogleBusinessGateway(
            http_client=self.http_client,
            retry_attempts=sync.retry_attempts,
            backoff_seconds=sync.retry_backoff_seconds,
        )

        self.executor = SyncExecutor(
            accounts, locations, records, self.resolver, self.gateway, self.action_log,
            max_concurrent_pulls=sync.max_concurrent_pulls,
        )
        self.scheduler = SyncScheduler(
            accounts, self.executor, self.action_log,
            max_concurrent_syncs=sync.max_concurrent_syncs,
        )
        self.pipeline = PublishPipeline(
            entities, locations, accounts, self.resolver, self.gateway, self.action_log,
            stale_pending_seconds=sync.stale_pending_seconds,
        )
        self.oauth_flow = GoogleOAuthFlow(
            self.config.oauth, accounts, self.gateway, self.action_log, http_client=self.http_client,
        )
        self.services = EngineServices(
            accounts=accounts,
            executor=self.executor,
            scheduler=self.scheduler,
            pipeline=self.pipeline,
            action_log=self.action_log,
            resolver=self.resolver,
            server_config=self.config.server,
            oauth_flow=self.oauth_flow,
        )

        self.logger.info("GBP sync engine initialized")

    async def run_tick(self) -> Dict[str, Any]:
        """Run a single scheduler tick."""
        if not self.scheduler:
            raise RuntimeError("Application not initialized. Call initialize() first.")
        summary = await self.scheduler.run_tick()
        return summary.to_dict()

    async def serve(self) -> None:
        """Serve the HTTP API until shutdown."""
        if not self.services:
            raise RuntimeError("Application not initialized. Call initialize() first.")

        server_config = self.config.server
        app = create_app(self.services)
        self.server = uvicorn.Server(uvicorn.Config(
            app,
            host=server_config.host,
            port=server_config.port,
            log_level=self.config.log_level.value.lower(),
        ))

        if server_config.timer_enabled:
            self.scheduler.start_timer()

        self.logger.info(f"API listening on http://{server_config.host}:{server_config.port}")
        try:
            await self.server.serve()
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop the application gracefully, shutting down all services."""
        self.logger.info("Shutting down GBP sync engine...")

        if self.scheduler:
            self.scheduler.stop_timer()
        if self.http_client:
            await self.http_client.aclose()
            self.http_client = None
        if self.repositories:
            await self.repositories.close()
            self.repositories = None

        self.logger.info("GBP sync engine stopped")


async def main() -> None:
    """Initialize the engine and serve the HTTP API."""
    app = GBPSyncApp()
    try:
        await app.initialize()
        await app.serve()
    except ConfigurationError as e:
        logging.error(f"Fatal configuration error: {e}")
        sys.exit(1)


async def tick() -> None:
    """Run one scheduler tick and print its summary as JSON."""
    app = GBPSyncApp()
    try:
        await app.initialize()
        summary = await app.run_tick()
        print(json.dumps(summary, indent=2, default=str))
    finally:
        await app.stop()


if __name__ == "__main__":
    asyncio.run(main())
