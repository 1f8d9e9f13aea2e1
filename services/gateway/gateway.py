"""
Provider gateway - single entry point for raw indicator data

Flow per indicator:
    cache (unless force_refresh)
    -> coalesced fresh fetch over the category fallback chain
       (breaker check -> rate-limit reservation -> retried adapter call)
    -> last-known-good store when every provider failed

Never raises for request-time failures: every outcome is a FetchResult.
"""

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.errors import (
    AllProvidersExhaustedError,
    DataLayerError,
    NoProviderConfiguredError,
    PermanentProviderError,
    TransientProviderError,
    UnknownIndicatorError,
)
from core.interfaces.cache import BaseCacheClient, CacheStats
from core.interfaces.fallback_store import BaseFallbackStore
from core.interfaces.provider import BaseProviderAdapter
from core.models.indicators import (
    FetchRequest,
    FetchResult,
    HealthState,
    HealthStatus,
    IndicatorDescriptor,
    IndicatorValue,
    Priority,
    ProviderId,
    RawQuote,
    ValueSource,
)
from core.utils.concurrency import SingleFlight, chunked
from core.validators.quotes import QuoteValidator
from domain.indicators.registry import IndicatorRegistry
from services.gateway.circuit_breaker import CircuitBreaker, CircuitBreakerStore, CircuitState
from services.gateway.metrics import GatewayMetrics
from services.gateway.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

T = TypeVar("T")

CACHE_KEY_PREFIX = "indicator:"

# Per-provider chunk size cap for fetch_many, by priority
PRIORITY_CONCURRENCY = {
    Priority.CRITICAL: 10,
    Priority.HIGH: 8,
    Priority.NORMAL: 5,
    Priority.LOW: 3,
}
MAX_BATCH_CONCURRENCY = 5

DEGRADED_ERROR_RATE = 0.1
UNHEALTHY_ERROR_RATE = 0.5


def cache_key(indicator_id: str) -> str:
    return f"{CACHE_KEY_PREFIX}{indicator_id}"


class _DeadlineExceeded(Exception):
    """Caller deadline ran out before a provider answered"""


class ProviderGateway:
    """
    Cached, rate-limited, circuit-broken access to provider adapters

    Example:
        >>> gateway = ProviderGateway(
        ...     registry,
        ...     adapters={ProviderId.FRED: FredRestAPI(api_key="...")},
        ...     cache=InMemoryCacheClient(),
        ...     fallback_chains={"liquidity": [ProviderId.FRED]},
        ... )
        >>> result = await gateway.fetch("WALCL")
        >>> if result.ok:
        ...     print(result.value.current, result.value.source)
    """

    def __init__(
        self,
        registry: IndicatorRegistry,
        adapters: Mapping[ProviderId, BaseProviderAdapter],
        cache: BaseCacheClient,
        fallback_chains: Mapping[str, Sequence[ProviderId]],
        *,
        rate_limiter: RateLimiter | None = None,
        breakers: CircuitBreakerStore | None = None,
        fallback_store: BaseFallbackStore | None = None,
        validator: QuoteValidator | None = None,
        metrics: GatewayMetrics | None = None,
        default_ttl_seconds: float = 300.0,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        request_timeout: float = 10.0,
        fallback_confidence_penalty: float = 0.8,
        breaker_scope: str = "provider",
        inter_chunk_delays: Mapping[ProviderId, float] | None = None,
    ):
        """
        Args:
            registry: Indicator descriptors (RAW ones are served here)
            adapters: Provider adapters by id
            cache: Indicator value cache
            fallback_chains: Category -> ordered provider ids
            rate_limiter: Per-provider sliding windows (unlimited if omitted)
            breakers: Circuit breaker store
            fallback_store: Last-known-good values
            validator: Quote sanity checks
            metrics: Counters and latency tracking
            default_ttl_seconds: Cache TTL when the descriptor sets none
            max_retries: Attempts per provider for transient errors
            retry_base_delay: Backoff base, doubled per attempt
            request_timeout: Per-attempt timeout in seconds
            fallback_confidence_penalty: Multiplier applied to stale values
            breaker_scope: "provider" or "indicator" (provider:indicator keys)
            inter_chunk_delays: Pause between fetch_many chunks per provider
        """
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")
        if breaker_scope not in ("provider", "indicator"):
            raise ValueError(f"breaker_scope must be 'provider' or 'indicator', got {breaker_scope!r}")

        self.registry = registry
        self.adapters = dict(adapters)
        self.cache = cache
        self.fallback_chains = {category: list(chain) for category, chain in fallback_chains.items()}
        self.rate_limiter = rate_limiter or RateLimiter()
        self.breakers = breakers or CircuitBreakerStore()
        self.fallback_store = fallback_store
        self.validator = validator or QuoteValidator()
        self.metrics = metrics or GatewayMetrics()

        self.default_ttl_seconds = default_ttl_seconds
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.request_timeout = request_timeout
        self.fallback_confidence_penalty = fallback_confidence_penalty
        self.breaker_scope = breaker_scope
        self.inter_chunk_delays = dict(inter_chunk_delays or {})

        self._flight = SingleFlight()
        self.breakers.subscribe(self._on_breaker_change)

    # ============================================
    # PUBLIC API
    # ============================================
    async def fetch(
        self,
        indicator_id: str,
        force_refresh: bool = False,
        priority: Priority = Priority.NORMAL,
        timeout: float | None = None,
    ) -> FetchResult:
        """
        Fetch one raw indicator

        Args:
            indicator_id: Registered RAW indicator id
            force_refresh: Skip the cache read (result is still cached)
            priority: Counted per level in metrics ("requests_<priority>")
            timeout: Overall deadline in seconds (bounds attempts and backoff)

        Returns:
            FetchResult (ok, stale with error, or error only)
        """
        started = time.perf_counter()
        deadline = self._deadline(timeout)
        self._count_request(priority)

        result = None
        if not force_refresh:
            result = await self._from_cache(indicator_id)
        if result is None:
            result = await self._fetch_uncached(indicator_id, deadline)
        return self._finish(result, started)

    async def fetch_many(
        self,
        requests: Iterable[str | FetchRequest],
        force_refresh: bool = False,
        priority: Priority = Priority.NORMAL,
        timeout: float | None = None,
    ) -> dict[str, FetchResult]:
        """
        Fetch many raw indicators

        Cache hits are answered immediately. Misses are processed in priority
        order, grouped by primary provider and paced in chunks sized from the
        provider's rate limit. Providers that support batch calls get one
        fetch_batch per chunk.

        Args:
            requests: Indicator ids or FetchRequest objects (duplicates merged)
            force_refresh: Default for plain ids
            priority: Default for plain ids
            timeout: Overall deadline in seconds

        Returns:
            Dict indicator_id -> FetchResult, one entry per distinct id, in
            request order
        """
        started = time.perf_counter()
        deadline = self._deadline(timeout)
        merged = self._merge_requests(requests, force_refresh, priority)

        results: dict[str, FetchResult] = {}
        pending: list[FetchRequest] = []
        for request in merged.values():
            self._count_request(request.priority)
            cached = None if request.force_refresh else await self._from_cache(request.indicator_id)
            if cached is not None:
                results[request.indicator_id] = cached
            else:
                pending.append(request)

        for level in sorted({r.priority for r in pending}, key=lambda p: p.rank):
            groups = self._group_by_provider([r.indicator_id for r in pending if r.priority == level])
            outcomes = await asyncio.gather(
                *(self._fetch_group(provider_id, ids, level, deadline) for provider_id, ids in groups.items())
            )
            for outcome in outcomes:
                results.update(outcome)

        return {indicator_id: self._finish(results[indicator_id], started) for indicator_id in merged}

    async def invalidate(self, indicator_id: str) -> bool:
        """Drop the cached value for an indicator"""
        return await self.cache.delete(cache_key(indicator_id))

    def chain_for(self, descriptor: IndicatorDescriptor) -> list[ProviderId]:
        """Ordered providers for a descriptor (pinned provider overrides the category chain)"""
        if descriptor.pinned_provider is not None:
            return [descriptor.pinned_provider]
        return list(self.fallback_chains.get(descriptor.category, []))

    def chunk_size(self, provider_id: ProviderId | None, priority: Priority) -> int:
        """
        fetch_many chunk size for one provider

        min(priority cap, max(1, min(rate_limit // 4, 5)))
        """
        size = min(PRIORITY_CONCURRENCY[priority], MAX_BATCH_CONCURRENCY)
        limit = self.rate_limiter.limit_for(provider_id) if provider_id else None
        if limit is not None:
            size = min(size, max(1, min(limit // 4, MAX_BATCH_CONCURRENCY)))
        return size

    async def provider_health(self) -> dict[str, dict]:
        """Await every adapter's health_check, annotated with breaker and limiter state"""
        provider_ids = list(self.adapters)
        checks = await asyncio.gather(
            *(self.adapters[p].health_check() for p in provider_ids), return_exceptions=True
        )
        breaker_states = self.breakers.states()

        report = {}
        for provider_id, check in zip(provider_ids, checks):
            if isinstance(check, BaseException):
                logger.warning(f"✗ Health check failed for {provider_id.value}: {check}")
                entry = {"available": False, "error": str(check)}
            else:
                entry = dict(check)
            entry["breaker"] = breaker_states.get(provider_id.value, CircuitState.CLOSED.value)
            entry["rate_limit_remaining"] = self.rate_limiter.remaining(provider_id)
            report[provider_id.value] = entry
        return report

    async def get_health_status(self) -> HealthStatus:
        """Gateway health snapshot"""
        try:
            stats = await self.cache.stats()
        except Exception as e:
            logger.warning(f"Cache stats unavailable: {e}")
            stats = CacheStats(hits=0, misses=0, size=0)

        breaker_states = self.breakers.states()
        remaining = {}
        for provider_id in self.adapters:
            value = self.rate_limiter.remaining(provider_id)
            if value is not None:
                remaining[provider_id.value] = value

        return HealthStatus(
            status=self._health_state(breaker_states),
            cache_size=stats.size,
            cache_hit_rate=round(stats.hit_rate, 4),
            error_rate=round(self.metrics.error_rate, 4),
            total_requests=self.metrics.total_requests,
            breaker_states=breaker_states,
            rate_limit_remaining=remaining,
            avg_latency_ms=round(self.metrics.avg_latency_ms, 2),
            latency_histogram=self.metrics.latency_histogram(),
        )

    async def close(self) -> None:
        """Close every adapter"""
        await asyncio.gather(*(adapter.close() for adapter in self.adapters.values()))
        logger.info("✓ Provider adapters closed")

    # ============================================
    # SINGLE FETCH
    # ============================================
    async def _fetch_uncached(self, indicator_id: str, deadline: float | None) -> FetchResult:
        descriptor = self.registry.get(indicator_id)
        if descriptor is None:
            return self._no_data(indicator_id, UnknownIndicatorError(f"Unknown indicator: {indicator_id}"))
        if descriptor.is_calculated:
            return self._no_data(
                indicator_id,
                DataLayerError(f"'{indicator_id}' is calculated; resolve it through the CalculationEngine"),
            )
        return await self._flight.run(indicator_id, lambda: self._fetch_fresh(descriptor, deadline))

    async def _fetch_fresh(self, descriptor: IndicatorDescriptor, deadline: float | None) -> FetchResult:
        """Walk the fallback chain; first provider with a valid quote wins"""
        chain = self.chain_for(descriptor)
        if not chain:
            return await self._serve_last_known_good(
                descriptor.id,
                NoProviderConfiguredError(f"No fallback chain for category '{descriptor.category}'"),
            )

        attempts: dict[str, str] = {}
        for position, provider_id in enumerate(chain):
            name = provider_id.value
            adapter = self.adapters.get(provider_id)
            if adapter is None:
                attempts[name] = "adapter not configured"
                continue

            breaker = self._breaker(provider_id, descriptor.id)
            if not breaker.allow_request():
                self.metrics.incr("breaker_skips", name)
                attempts[name] = f"circuit {breaker.name} open"
                logger.debug(f"Skipping {name} for {descriptor.id}: circuit open")
                continue

            slot = self.rate_limiter.try_acquire(provider_id)
            if slot is None:
                breaker.release()
                self.metrics.incr("rate_limit_skips", name)
                attempts[name] = "rate limited"
                continue

            symbol = descriptor.symbol_for(provider_id)
            try:
                quote = await self._with_retry(
                    provider_id, lambda: self._fetch_quote(adapter, symbol), deadline
                )
            except PermanentProviderError as e:
                self._reject(breaker, provider_id, slot)
                attempts[name] = e.message
                logger.warning(f"✗ {name} rejected {descriptor.id} ({symbol}): {e.message}")
                continue
            except TransientProviderError as e:
                self._fail(breaker, provider_id, slot)
                attempts[name] = e.message
                logger.warning(f"✗ {name} failed for {descriptor.id} after retries: {e.message}")
                continue
            except _DeadlineExceeded:
                breaker.release()
                self.rate_limiter.release(provider_id, slot)
                attempts[name] = "deadline exceeded"
                break
            except Exception as e:
                self._fail(breaker, provider_id, slot)
                attempts[name] = f"unexpected error: {e}"
                logger.exception(f"✗ {name} adapter error for {descriptor.id}")
                continue

            try:
                value = self._to_value(descriptor, quote, adapter, position)
            except ValueError as e:
                # Quote passed validation but change/change_percent is not finite
                self._reject(breaker, provider_id, slot)
                attempts[name] = f"unusable quote: {e}"
                logger.warning(f"✗ {name} returned an unusable quote for {descriptor.id} ({symbol}): {e}")
                continue

            breaker.record_success()
            self.metrics.incr("provider_success", name)
            if position > 0:
                self.metrics.incr("fallback_used", name)
                logger.info(f"↪ {descriptor.id} served by fallback provider {name}")

            await self._store(descriptor, value)
            return FetchResult(indicator_id=descriptor.id, value=value)

        self.metrics.incr("exhausted")
        return await self._serve_last_known_good(
            descriptor.id, AllProvidersExhaustedError(descriptor.id, attempts)
        )

    async def _fetch_quote(self, adapter: BaseProviderAdapter, symbol: str) -> RawQuote:
        quote = await adapter.fetch_one(symbol)
        is_valid, error = self.validator.validate_quote(quote)
        if not is_valid:
            raise PermanentProviderError(adapter.provider_id.value, f"Invalid quote for {symbol}: {error}")
        return quote

    async def _with_retry(
        self, provider_id: ProviderId, call: Callable[[], Awaitable[T]], deadline: float | None
    ) -> T:
        """
        Run call with per-attempt timeout and exponential backoff

        Only transient errors (including timeouts) are retried, with a
        delay of retry_base_delay * 2^(attempt - 1). Permanent errors
        propagate immediately.

        Raises:
            TransientProviderError: Last transient error after max_retries
            PermanentProviderError: From the adapter
            _DeadlineExceeded: Caller deadline ran out
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_base_delay),
            retry=retry_if_exception_type(TransientProviderError),
            before_sleep=self._before_retry_sleep(provider_id, deadline),
            reraise=True,
        )
        return await retrying(self._attempt, provider_id, call, deadline)

    async def _attempt(
        self, provider_id: ProviderId, call: Callable[[], Awaitable[T]], deadline: float | None
    ) -> T:
        """One attempt bounded by request_timeout and the caller deadline"""
        remaining = self._remaining(deadline)
        if remaining is not None and remaining <= 0:
            raise _DeadlineExceeded()
        timeout = self.request_timeout if remaining is None else min(self.request_timeout, remaining)

        try:
            return await asyncio.wait_for(call(), timeout=timeout)
        except asyncio.TimeoutError:
            if timeout < self.request_timeout:
                raise _DeadlineExceeded()
            raise TransientProviderError(provider_id.value, f"Timed out after {timeout}s")

    def _before_retry_sleep(
        self, provider_id: ProviderId, deadline: float | None
    ) -> Callable[[RetryCallState], None]:
        """Backoff hook: give up on the deadline, otherwise count and log the retry"""

        def hook(retry_state: RetryCallState) -> None:
            delay = retry_state.next_action.sleep
            remaining = self._remaining(deadline)
            if remaining is not None and delay >= remaining:
                raise _DeadlineExceeded()

            error = retry_state.outcome.exception()
            message = error.message if isinstance(error, DataLayerError) else str(error)
            self.metrics.incr("retries", provider_id.value)
            logger.info(
                f"↻ {provider_id.value} attempt {retry_state.attempt_number}/{self.max_retries} failed, "
                f"retrying in {delay:.2f}s: {message}"
            )

        return hook

    # ============================================
    # BATCH FETCH
    # ============================================
    def _merge_requests(
        self, requests: Iterable[str | FetchRequest], force_refresh: bool, priority: Priority
    ) -> dict[str, FetchRequest]:
        merged: dict[str, FetchRequest] = {}
        for item in requests:
            if isinstance(item, FetchRequest):
                request = item
            else:
                request = FetchRequest(indicator_id=item, force_refresh=force_refresh, priority=priority)

            existing = merged.get(request.indicator_id)
            if existing is not None:
                request = FetchRequest(
                    indicator_id=request.indicator_id,
                    force_refresh=existing.force_refresh or request.force_refresh,
                    priority=min(existing.priority, request.priority, key=lambda p: p.rank),
                )
            merged[request.indicator_id] = request
        return merged

    def _group_by_provider(self, indicator_ids: list[str]) -> dict[ProviderId | None, list[str]]:
        """Group ids by primary provider (None for unknown/calculated/unchained ids)"""
        groups: dict[ProviderId | None, list[str]] = defaultdict(list)
        for indicator_id in indicator_ids:
            descriptor = self.registry.get(indicator_id)
            chain = self.chain_for(descriptor) if descriptor and not descriptor.is_calculated else []
            groups[chain[0] if chain else None].append(indicator_id)
        return groups

    async def _fetch_group(
        self,
        provider_id: ProviderId | None,
        indicator_ids: list[str],
        priority: Priority,
        deadline: float | None,
    ) -> dict[str, FetchResult]:
        adapter = self.adapters.get(provider_id) if provider_id else None
        use_batch = adapter is not None and adapter.supports_batch and self.breaker_scope == "provider"
        delay = self.inter_chunk_delays.get(provider_id, 0.0) if provider_id else 0.0
        size = self.chunk_size(provider_id, priority)

        results: dict[str, FetchResult] = {}
        for index, chunk in enumerate(chunked(indicator_ids, size)):
            if index and delay:
                await asyncio.sleep(delay)
            if use_batch and len(chunk) > 1:
                results.update(await self._fetch_chunk_batched(adapter, chunk, deadline))
            else:
                fetched = await asyncio.gather(*(self._fetch_uncached(i, deadline) for i in chunk))
                results.update({result.indicator_id: result for result in fetched})
        return results

    async def _fetch_chunk_batched(
        self, adapter: BaseProviderAdapter, indicator_ids: list[str], deadline: float | None
    ) -> dict[str, FetchResult]:
        """
        One fetch_batch call for a chunk

        Claims each id in the single-flight map so concurrent fetch() calls
        join this batch. Ids already in flight are joined instead.
        """
        claimed: dict[str, asyncio.Future] = {}
        joined: list[str] = []
        for indicator_id in indicator_ids:
            future = self._flight.claim(indicator_id)
            if future is None:
                joined.append(indicator_id)
            else:
                claimed[indicator_id] = future

        results: dict[str, FetchResult] = {}
        try:
            if claimed:
                results.update(await self._fetch_claimed(adapter, list(claimed), deadline))
        finally:
            for indicator_id, future in claimed.items():
                if future.done():
                    continue
                if indicator_id in results:
                    future.set_result(results[indicator_id])
                else:
                    future.cancel()

        if joined:
            fetched = await asyncio.gather(*(self._fetch_uncached(i, deadline) for i in joined))
            results.update({result.indicator_id: result for result in fetched})
        return results

    async def _fetch_claimed(
        self, adapter: BaseProviderAdapter, indicator_ids: list[str], deadline: float | None
    ) -> dict[str, FetchResult]:
        descriptors = {indicator_id: self.registry.require(indicator_id) for indicator_id in indicator_ids}
        quotes = await self._try_batch(adapter, descriptors, deadline)

        results: dict[str, FetchResult] = {}
        for indicator_id, quote in quotes.items():
            descriptor = descriptors[indicator_id]
            try:
                value = self._to_value(descriptor, quote, adapter, position=0)
            except ValueError as e:
                logger.warning(f"✗ {adapter.provider_id.value} unusable batch quote for {indicator_id}: {e}")
                continue
            await self._store(descriptor, value)
            results[indicator_id] = FetchResult(indicator_id=indicator_id, value=value)

        leftover = [indicator_id for indicator_id in indicator_ids if indicator_id not in results]
        if leftover:
            logger.debug(f"Batch {adapter.provider_id.value}: {len(leftover)} ids fall back to single fetch")
            fetched = await asyncio.gather(*(self._fetch_fresh(descriptors[i], deadline) for i in leftover))
            results.update(zip(leftover, fetched))
        return results

    async def _try_batch(
        self,
        adapter: BaseProviderAdapter,
        descriptors: dict[str, IndicatorDescriptor],
        deadline: float | None,
    ) -> dict[str, RawQuote]:
        """
        Batch call guarded by one breaker check and one rate-limit slot

        Returns:
            Dict indicator_id -> valid quote (empty when the batch was skipped or failed)
        """
        provider_id = adapter.provider_id
        name = provider_id.value
        breaker = self._breaker(provider_id, None)
        if not breaker.allow_request():
            return {}
        slot = self.rate_limiter.try_acquire(provider_id)
        if slot is None:
            breaker.release()
            return {}

        symbols = {descriptor.symbol_for(provider_id): i for i, descriptor in descriptors.items()}
        try:
            raw = await self._with_retry(provider_id, lambda: adapter.fetch_batch(list(symbols)), deadline)
        except PermanentProviderError as e:
            self._reject(breaker, provider_id, slot)
            logger.warning(f"✗ {name} rejected batch of {len(symbols)}: {e.message}")
            return {}
        except TransientProviderError as e:
            self._fail(breaker, provider_id, slot)
            logger.warning(f"✗ {name} batch of {len(symbols)} failed: {e.message}")
            return {}
        except _DeadlineExceeded:
            breaker.release()
            self.rate_limiter.release(provider_id, slot)
            return {}
        except Exception:
            self._fail(breaker, provider_id, slot)
            logger.exception(f"✗ {name} batch adapter error")
            return {}

        breaker.record_success()
        self.metrics.incr("provider_success", name)

        quotes: dict[str, RawQuote] = {}
        for symbol, indicator_id in symbols.items():
            quote = raw.get(symbol)
            if quote is None:
                continue
            is_valid, error = self.validator.validate_quote(quote)
            if not is_valid:
                logger.warning(f"✗ {name} invalid quote for {indicator_id}: {error}")
                continue
            quotes[indicator_id] = quote

        logger.debug(f"✓ Batch {name}: {len(quotes)}/{len(symbols)} quotes")
        return quotes

    # ============================================
    # HELPERS
    # ============================================
    def _to_value(
        self,
        descriptor: IndicatorDescriptor,
        quote: RawQuote,
        adapter: BaseProviderAdapter,
        position: int,
    ) -> IndicatorValue:
        return IndicatorValue.build(
            symbol=descriptor.id,
            current=quote.price,
            previous=quote.previous_close,
            confidence=adapter.confidence,
            source=ValueSource.RAW_PROVIDER if position == 0 else ValueSource.FALLBACK,
            provider=adapter.provider_id.value,
            timestamp=quote.timestamp,
            metadata={**quote.metadata, "provider_symbol": quote.symbol},
        )

    async def _from_cache(self, indicator_id: str) -> FetchResult | None:
        try:
            value = await self.cache.get(cache_key(indicator_id))
        except Exception as e:
            logger.warning(f"Cache read failed for {indicator_id}: {e}")
            value = None

        if value is None:
            self.metrics.incr("cache_misses")
            return None
        self.metrics.incr("cache_hits")
        return FetchResult(indicator_id=indicator_id, value=value.relabel(ValueSource.CACHE))

    async def _store(self, descriptor: IndicatorDescriptor, value: IndicatorValue) -> None:
        """Write a fresh value to the cache and the last-known-good store"""
        ttl = descriptor.cache_ttl_seconds or self.default_ttl_seconds
        try:
            await self.cache.set(cache_key(descriptor.id), value, ttl)
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
            return self._no_data(indicator_id, error)

        self.metrics.incr("stale_served")
        logger.warning(
            f"⚠️ Serving last-known-good {indicator_id} from {value.timestamp.isoformat()}: {error.message}"
        )
        return FetchResult(
            indicator_id=indicator_id,
            value=value.as_stale(self.fallback_confidence_penalty),
            error=error,
        )

    def _no_data(self, indicator_id: str, error: DataLayerError) -> FetchResult:
        self.metrics.incr("no_data")
        logger.error(f"✗ No data for {indicator_id}: {error.message}")
        return FetchResult(indicator_id=indicator_id, error=error)

    def _finish(self, result: FetchResult, started: float) -> FetchResult:
        latency_ms = (time.perf_counter() - started) * 1000
        self.metrics.record_latency(latency_ms)
        return result.model_copy(update={"latency_ms": round(latency_ms, 3)})

    def _count_request(self, priority: Priority) -> None:
        self.metrics.incr("requests")
        self.metrics.incr(f"requests_{priority.value}")

    def _reject(self, breaker: CircuitBreaker, provider_id: ProviderId, slot: float) -> None:
        """Provider answered but the answer was unusable: not a breaker failure"""
        breaker.record_rejection()
        self.rate_limiter.release(provider_id, slot)
        self.metrics.incr("rejections", provider_id.value)

    def _fail(self, breaker: CircuitBreaker, provider_id: ProviderId, slot: float) -> None:
        breaker.record_failure()
        self.rate_limiter.release(provider_id, slot)
        self.metrics.incr("transient_failures", provider_id.value)

    def _breaker(self, provider_id: ProviderId, indicator_id: str | None) -> CircuitBreaker:
        key = provider_id.value
        if self.breaker_scope == "indicator" and indicator_id is not None:
            key = f"{key}:{indicator_id}"
        return self.breakers.get(key)

    def _health_state(self, breaker_states: dict[str, str]) -> HealthState:
        open_providers = {
            key.split(":", 1)[0] for key, state in breaker_states.items() if state == CircuitState.OPEN.value
        }
        error_rate = self.metrics.error_rate

        if (self.adapters and len(open_providers) >= len(self.adapters)) or error_rate >= UNHEALTHY_ERROR_RATE:
            return HealthState.UNHEALTHY
        if open_providers or error_rate >= DEGRADED_ERROR_RATE:
            return HealthState.DEGRADED
        return HealthState.HEALTHY

    def _on_breaker_change(self, name: str, old_state: CircuitState, new_state: CircuitState) -> None:
        if new_state == CircuitState.OPEN:
            self.metrics.incr("breaker_trips", name.split(":", 1)[0])

    @staticmethod
    def _deadline(timeout: float | None) -> float | None:
        return None if timeout is None else time.monotonic() + timeout

    @staticmethod
    def _remaining(deadline: float | None) -> float | None:
        return None if deadline is None else deadline - time.monotonic()
