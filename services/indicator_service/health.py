"""
Periodic health reporting and cache maintenance
"""

import asyncio
import logging

from core.models.indicators import HealthState, HealthStatus
from services.gateway.gateway import ProviderGateway

logger = logging.getLogger(__name__)


class HealthReporter:
    """
    Background tasks owned by the service process

    - Health loop: logs gateway health every `interval_seconds`
      (INFO when healthy, WARNING otherwise)
    - Sweep loop: evicts expired cache entries every `sweep_interval_seconds`

    Started and stopped explicitly; stop() cancels and awaits both tasks.
    """

    def __init__(
        self,
        gateway: ProviderGateway,
        interval_seconds: float = 60.0,
        sweep_interval_seconds: float = 30.0,
    ):
        self.gateway = gateway
        self.interval_seconds = interval_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._health_loop(), name="health-reporter"),
            asyncio.create_task(self._sweep_loop(), name="cache-sweeper"),
        ]
        logger.info(
            f"✓ Health reporter started (health every {self.interval_seconds}s, "
            f"sweep every {self.sweep_interval_seconds}s)"
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("✓ Health reporter stopped")

    async def report_once(self) -> HealthStatus:
        status = await self.gateway.get_health_status()
        message = (
            f"Health: {status.status.value} | requests={status.total_requests} "
            f"error_rate={status.error_rate:.1%} cache={status.cache_size} "
            f"(hit {status.cache_hit_rate:.1%}) avg_latency={status.avg_latency_ms:.0f}ms "
            f"breakers={status.breaker_states or '{}'}"
        )
        if status.status == HealthState.HEALTHY:
            logger.info(f"💚 {message}")
        else:
            logger.warning(f"⚠️ {message}")
        return status

    async def sweep_once(self) -> int:
        evicted = await self.gateway.cache.sweep()
        if evicted:
            logger.debug(f"Swept {evicted} expired cache entries")
        return evicted

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.report_once()
            except Exception as e:
                logger.error(f"Health report failed: {e}", exc_info=True)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error(f"Cache sweep failed: {e}", exc_info=True)
