"""
Indicator Service - Long-running indicator data layer process

- Builds registry, cache, last-known-good store, gateway and engine from config
- Warms configured indicators on start-up
- Logs gateway health and sweeps the cache periodically
- Shuts down gracefully on SIGINT/SIGTERM
"""

import asyncio
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from config.settings import get_settings
from core.models.indicators import FetchResult
from factory.client_factory import (
    create_cache_client,
    create_calculation_engine,
    create_fallback_store,
    create_gateway,
    create_indicator_registry,
)
from services.indicator_service.health import HealthReporter

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Console at `level`, rotating error log under data/logs"""
    os.makedirs("data/logs", exist_ok=True)

    fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(logging.Formatter(fmt))

    error_file = RotatingFileHandler(
        "data/logs/indicator_service_errors.log",
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=3,
    )
    error_file.setLevel(logging.ERROR)
    error_file.setFormatter(logging.Formatter(fmt))

    logging.basicConfig(level=level, handlers=[console, error_file])


class IndicatorService:
    """
    Indicator Service

    Flow:
    1. Connect cache and last-known-good store
    2. Start HealthReporter (health log + cache sweep)
    3. Warm up configured indicators
    4. Serve until stopped
    """

    def __init__(self):
        self.settings = get_settings()
        self.running = False

        # Initialize clients
        logger.info("🔧 Initializing indicator data layer...")
        self.registry = create_indicator_registry()
        self.cache = create_cache_client()
        self.fallback_store = create_fallback_store()

        # Initialize components
        self.gateway = create_gateway(self.registry, self.cache, self.fallback_store)
        self.engine = create_calculation_engine(self.gateway)
        self.reporter = HealthReporter(
            self.gateway,
            interval_seconds=self.settings.HEALTH_LOG_INTERVAL_SECONDS,
            sweep_interval_seconds=self.settings.CACHE_SWEEP_INTERVAL_SECONDS,
        )

    async def resolve(self, indicator_id: str, force_refresh: bool = False) -> FetchResult:
        """Resolve any registered indicator (raw or calculated)"""
        return await self.engine.resolve(indicator_id, force_refresh=force_refresh)

    async def warm_up(self) -> dict[str, FetchResult]:
        """Resolve WARMUP_INDICATORS so the cache is populated before first use"""
        indicator_ids = self.settings.WARMUP_INDICATORS
        if not indicator_ids:
            return {}

        logger.info(f"🔄 Warming up {len(indicator_ids)} indicators...")
        results = await self.engine.resolve_many(indicator_ids)
        ready = sum(1 for result in results.values() if result.ok)
        logger.info(f"✅ Warm-up complete: {ready}/{len(results)} fresh")
        return results

    async def start(self):
        """Start the service and block until stopped"""
        logger.info("=" * 60)
        logger.info("Indicator Service started")
        logger.info("=" * 60)
        logger.info(f"  Indicators: {len(self.registry)} ({', '.join(self.registry.categories())})")
        logger.info(f"  Providers: {', '.join(p.value for p in self.gateway.adapters)}")
        logger.info(f"  Cache: {self.settings.cache_backend}")
        logger.info("=" * 60)

        self.running = True

        try:
            await self.cache.connect()
            await self.fallback_store.connect()
            logger.info("✅ Cache and last-known-good store connected")

            self.reporter.start()
            await self.warm_up()

            while self.running:
                await asyncio.sleep(1)

        except Exception as e:
            logger.error(f"❌ Fatal error: {e}", exc_info=True)
        finally:
            await self.stop()

    async def stop(self):
        """Graceful shutdown"""
        logger.info("🛑 Stopping Indicator Service...")
        self.running = False

        await self.reporter.stop()
        await self.gateway.close()
        await self.cache.close()
        await self.fallback_store.close()

        logger.info("✅ Indicator Service stopped")


def signal_handler(service):
    """Handle SIGINT/SIGTERM"""

    def handler(signum, frame):
        logger.info(f"Received signal {signum}")
        service.running = False

    return handler


async def main():
    """Main entry point"""
    service = IndicatorService()

    signal.signal(signal.SIGINT, signal_handler(service))
    signal.signal(signal.SIGTERM, signal_handler(service))

    await service.start()


if __name__ == "__main__":
    configure_logging(get_settings().LOG_LEVEL)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Goodbye!")
