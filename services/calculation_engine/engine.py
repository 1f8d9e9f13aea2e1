"""
Calculation engine - derived indicators over the provider gateway

RAW ids are delegated to the gateway. CALCULATED ids resolve their
dependencies concurrently (recursively), then apply the named transform.
A calculated value is never produced from partial inputs.
"""

import asyncio
import logging
import math
import time
from collections.abc import Iterable

from core.errors import (
    DataLayerError,
    MissingDependencyError,
    MissingTransformError,
    TransformFailedError,
    UnknownIndicatorError,
)
from core.interfaces.cache import BaseCacheClient
from core.interfaces.fallback_store import BaseFallbackStore
from core.models.indicators import FetchResult, IndicatorDescriptor, IndicatorValue, Priority, ValueSource
from core.utils.concurrency import SingleFlight
from domain.indicators.registry import IndicatorRegistry
from domain.indicators.transforms import Transform, TransformOutput, TransformRegistry
from services.gateway.gateway import ProviderGateway

logger = logging.getLogger(__name__)

CALC_CACHE_PREFIX = "calc:"
ENGINE_PROVIDER = "engine"


def calc_cache_key(indicator_id: str) -> str:
    return f"{CALC_CACHE_PREFIX}{indicator_id}"


class CalculationEngine:
    """
    Resolves any registered indicator id

    Confidence of a calculated value is the minimum confidence of its
    dependencies. A dependency that failed (including one served stale from
    the last-known-good store) fails the calculation with
    MissingDependencyError; the indicator's own last-known-good value is
    then served, if any.

    Example:
        >>> engine = CalculationEngine(gateway, registry, cache)
        >>> result = await engine.resolve("NET_LIQ")
        >>> result.value.current, result.value.source
        (5050.0, <ValueSource.CALCULATED: 'CALCULATED'>)
    """

    def __init__(
        self,
        gateway: ProviderGateway,
        registry: IndicatorRegistry,
        cache: BaseCacheClient,
        *,
        transforms: TransformRegistry | None = None,
        fallback_store: BaseFallbackStore | None = None,
        cache_ttl_seconds: float = 300.0,
        fallback_confidence_penalty: float = 0.8,
    ):
        self.gateway = gateway
        self.registry = registry
        self.cache = cache
        self.transforms = transforms or TransformRegistry()
        self.fallback_store = fallback_store
        self.cache_ttl_seconds = cache_ttl_seconds
        self.fallback_confidence_penalty = fallback_confidence_penalty
        self._flight = SingleFlight()

    def register_indicator(self, descriptor: IndicatorDescriptor) -> None:
        """
        Register a descriptor

        Raises:
            CyclicDependencyError: If it closes a dependency cycle
        """
        self.registry.register(descriptor)
        if descriptor.is_calculated and descriptor.transform not in self.transforms:
            logger.warning(f"⚠️ {descriptor.id} references unregistered transform '{descriptor.transform}'")

    def register_transform(self, name: str, fn: Transform) -> None:
        self.transforms.register(name, fn)

    async def resolve(
        self,
        indicator_id: str,
        force_refresh: bool = False,
        priority: Priority = Priority.NORMAL,
        timeout: float | None = None,
    ) -> FetchResult:
        """
        Resolve a raw or calculated indicator

        Args:
            indicator_id: Registered indicator id
            force_refresh: Bypass cache reads for this id and its dependencies
            priority: Passed to every raw fetch
            timeout: Deadline passed down to every raw fetch

        Returns:
            FetchResult; a calculated value has source CALCULATED (CACHE on a
            cache hit), errors are attached rather than raised
        """
        started = time.perf_counter()
        result = await self._resolve(indicator_id, force_refresh, priority, timeout)
        latency_ms = (time.perf_counter() - started) * 1000
        return result.model_copy(update={"latency_ms": round(latency_ms, 3)})

    async def resolve_many(
        self,
        indicator_ids: Iterable[str],
        force_refresh: bool = False,
        priority: Priority = Priority.NORMAL,
        timeout: float | None = None,
    ) -> dict[str, FetchResult]:
        ids = list(dict.fromkeys(indicator_ids))
        results = await asyncio.gather(*(self.resolve(i, force_refresh, priority, timeout) for i in ids))
        return dict(zip(ids, results))

    async def invalidate(self, indicator_id: str) -> bool:
        """Drop the cached value of a calculated indicator"""
        return await self.cache.delete(calc_cache_key(indicator_id))

    async def _resolve(
        self, indicator_id: str, force_refresh: bool, priority: Priority, timeout: float | None
    ) -> FetchResult:
        descriptor = self.registry.get(indicator_id)
        if descriptor is None:
            return FetchResult(
                indicator_id=indicator_id, error=UnknownIndicatorError(f"Unknown indicator: {indicator_id}")
            )
        if not descriptor.is_calculated:
            return await self.gateway.fetch(
                indicator_id, force_refresh=force_refresh, priority=priority, timeout=timeout
            )

        if not force_refresh:
            cached = await self._from_cache(indicator_id)
            if cached is not None:
                return cached

        return await self._flight.run(
            indicator_id, lambda: self._calculate(descriptor, force_refresh, priority, timeout)
        )

    async def _calculate(
        self,
        descriptor: IndicatorDescriptor,
        force_refresh: bool,
        priority: Priority,
        timeout: float | None,
    ) -> FetchResult:
        dependencies = descriptor.dependencies
        results = await asyncio.gather(
            *(self._resolve(dep, force_refresh, priority, timeout) for dep in dependencies)
        )

        missing = {
            dep: _describe(result.error)
            for dep, result in zip(dependencies, results)
            if result.error is not None
        }
        if missing:
            return await self._serve_last_known_good(
                descriptor.id, MissingDependencyError(descriptor.id, missing)
            )

        try:
            transform = self.transforms.get(descriptor.transform)
        except MissingTransformError as e:
            logger.error(f"✗ {descriptor.id}: {e.message}")
            return FetchResult(indicator_id=descriptor.id, error=e)

        inputs = {dep: result.value for dep, result in zip(dependencies, results)}
        try:
            value = self._to_value(descriptor, transform(inputs), inputs)
        except Exception as e:
            logger.exception(f"✗ Transform '{descriptor.transform}' failed for {descriptor.id}")
            return await self._serve_last_known_good(
                descriptor.id,
                TransformFailedError(f"Transform '{descriptor.transform}' failed for {descriptor.id}: {e}"),
            )

        await self._store(descriptor, value)
        return FetchResult(indicator_id=descriptor.id, value=value)

    def _to_value(
        self,
        descriptor: IndicatorDescriptor,
        output: TransformOutput | float,
        inputs: dict[str, IndicatorValue],
    ) -> IndicatorValue:
        if isinstance(output, TransformOutput):
            current, previous, metadata = output.current, output.previous, dict(output.metadata)
        else:
            current, previous, metadata = float(output), None, {}

        if not math.isfinite(current) or (previous is not None and not math.isfinite(previous)):
            raise ValueError(f"Non-finite result: current={current}, previous={previous}")

        metadata.update(
            {
                "transform": descriptor.transform,
                "dependencies": list(inputs),
            }
        )

        return IndicatorValue.build(
            symbol=descriptor.id,
            current=current,
            previous=previous,
            confidence=min(value.confidence for value in inputs.values()),
            source=ValueSource.CALCULATED,
            provider=ENGINE_PROVIDER,
            metadata=metadata,
        )

    async def _from_cache(self, indicator_id: str) -> FetchResult | None:
        try:
            value = await self.cache.get(calc_cache_key(indicator_id))
        except Exception as e:
            logger.warning(f"Cache read failed for {indicator_id}: {e}")
            return None
        if value is None:
            return None
        return FetchResult(indicator_id=indicator_id, value=value.relabel(ValueSource.CACHE))

    async def _store(self, descriptor: IndicatorDescriptor, value: IndicatorValue) -> None:
        ttl = descriptor.cache_ttl_seconds or self.cache_ttl_seconds
        try:
            await self.cache.set(calc_cache_key(descriptor.id), value, ttl)
        except Exception as e:
            logger.warning(f"Cache write failed for {descriptor.id}: {e}")

        if self.fallback_store is not None:
            try:
                await self.fallback_store.save(descriptor.id, value)
            except Exception as e:
                logger.warning(f"Last-known-good write failed for {descriptor.id}: {e}")

    async def _serve_last_known_good(self, indicator_id: str, error: DataLayerError) -> FetchResult:
        value = None
        if self.fallback_store is not None:
            try:
                value = await self.fallback_store.get_last_known_good(indicator_id)
            except Exception as e:
                logger.warning(f"Last-known-good read failed for {indicator_id}: {e}")

        if value is None:
            logger.error(f"✗ Cannot calculate {indicator_id}: {error.message}")
            return FetchResult(indicator_id=indicator_id, error=error)

        logger.warning(f"⚠️ Serving last-known-good {indicator_id}: {error.message}")
        return FetchResult(
            indicator_id=indicator_id,
            value=value.as_stale(self.fallback_confidence_penalty),
            error=error,
        )


def _describe(error: Exception | None) -> str:
    if isinstance(error, DataLayerError):
        return error.message
    return str(error) if error else "no value"
