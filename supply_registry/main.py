"""Main entry point for the token supply registry.

This module wires and runs the application components:
- Database initialization
- Metadata resolver with pooled RPC connections
- Token list logo discovery
- HTTP API (including the Prometheus /metrics endpoint)

Usage:
    python -m supply_registry.main
"""

import asyncio
import logging
import signal

from aiohttp import web

from supply_registry.api.server import create_app
from supply_registry.config import get_settings
from supply_registry.core.chains import EndpointOverrides
from supply_registry.core.resolver import get_metadata_resolver
from supply_registry.core.tokens import BrandingPreset, TokenService
from supply_registry.database import Database
from supply_registry.services.metrics import update_token_count
from supply_registry.services.token_store import TokenStore
from supply_registry.services.tokenlists import TokenListService

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )


async def run_api_server(app: web.Application, host: str, port: int) -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"API server running on http://{host}:{port}/api")
    return runner


async def main():
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info("Starting token supply registry...")

    database = Database(settings.database_url)
    await database.init_db()
    logger.info("Database initialized")

    store = TokenStore(database)
    update_token_count(await store.count())

    tokenlists = TokenListService(
        urls=settings.get_tokenlist_urls(),
        cache_path=settings.tokenlist_cache_path,
        ttl_seconds=settings.tokenlist_ttl_seconds,
    )
    service = TokenService(
        store=store,
        resolver=get_metadata_resolver(),
        branding=BrandingPreset.from_settings(settings),
        tokenlists=tokenlists,
        overrides=EndpointOverrides.from_settings(settings),
    )
    if not service.overrides.is_empty:
        logger.info("RPC endpoint overrides active")

    runner = await run_api_server(create_app(service, tokenlists), settings.host, settings.port)

    # Setup graceful shutdown
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Shutdown signal received")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    await shutdown_event.wait()

    logger.info("Shutting down...")
    await runner.cleanup()
    await database.close()
    logger.info("Shutdown complete")


def main_sync():
    asyncio.run(main())


if __name__ == "__main__":
    main_sync()
