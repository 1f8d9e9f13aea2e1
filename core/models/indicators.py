"""
Indicator data models

Pydantic models for the indicator data layer:
- IndicatorValue: canonical, immutable unit of data interchange
- RawQuote: provider-agnostic quote produced by adapters
- IndicatorDescriptor: registry entry (identity + classification)
- FetchRequest / FetchResult: gateway and calculation engine contract
- HealthStatus: gateway health snapshot
"""

import math
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ValueSource(str, Enum):
    """Where an IndicatorValue came from"""

    RAW_PROVIDER = "RAW_PROVIDER"
    CALCULATED = "CALCULATED"
    CACHE = "CACHE"
    FALLBACK = "FALLBACK"


class SourceKind(str, Enum):
    """Raw provider series vs. derived from other indicators"""

    RAW = "RAW"
    CALCULATED = "CALCULATED"


class ProviderId(str, Enum):
    """Closed set of provider adapters (see factory.client_factory.PROVIDER_ADAPTERS)"""

    FRED = "fred"
    BINANCE = "binance"
    COINBASE = "coinbase"


class Priority(str, Enum):
    """Request priority (drives batch ordering and chunk size)"""

    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.NORMAL: 2,
    Priority.LOW: 3,
}


class HealthState(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


def compute_change(current: float, previous: float) -> tuple[float, float]:
    """
    Absolute and percent change between two readings

    Percent change is 0 when previous is 0 (or the result is not finite)
    so NaN/Inf never leave the data layer.

    Example:
        >>> compute_change(110.0, 100.0)
        (10.0, 10.0)
        >>> compute_change(5.0, 0.0)
        (5.0, 0.0)
    """
    change = current - previous
    if previous == 0:
        return change, 0.0
    change_percent = change / previous * 100
    if not math.isfinite(change_percent):
        return change, 0.0
    return change, change_percent


class IndicatorValue(BaseModel):
    """
    Canonical indicator reading

    Immutable once returned. Use `build()` so change/change_percent are
    always consistent with current/previous.
    """

    model_config = ConfigDict(frozen=True)

    symbol: str = Field(description="Stable indicator identifier")
    current: float = Field(description="Latest value")
    previous: float = Field(description="Prior value")
    change: float = Field(description="current - previous")
    change_percent: float = Field(description="(current - previous) / previous * 100, 0 if previous == 0")
    timestamp: datetime = Field(description="Observation timestamp (UTC)")
    confidence: float = Field(ge=0.0, le=1.0, description="Reliability score in [0, 1]")
    source: ValueSource = Field(description="RAW_PROVIDER, CALCULATED, CACHE or FALLBACK")
    provider: str = Field(description="Adapter (or 'engine') that produced the value")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Opaque provider-specific data")

    @field_validator("current", "previous", "change", "change_percent")
    @classmethod
    def finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError(f"Non-finite value: {v}")
        return v

    @classmethod
    def build(
        cls,
        symbol: str,
        current: float,
        previous: float | None,
        *,
        confidence: float,
        source: ValueSource,
        provider: str,
        timestamp: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "IndicatorValue":
        """
        Create a value, deriving change fields

        A missing previous reading is treated as "no change".
        """
        prev = current if previous is None else previous
        change, change_percent = compute_change(current, prev)
        return cls(
            symbol=symbol,
            current=current,
            previous=prev,
            change=change,
            change_percent=change_percent,
            timestamp=timestamp or datetime.now(UTC),
            confidence=min(1.0, max(0.0, confidence)),
            source=source,
            provider=provider,
            metadata=metadata or {},
        )

    def relabel(self, source: ValueSource, **updates: Any) -> "IndicatorValue":
        """Copy with a new source tag (and optional field updates)"""
        return self.model_copy(update={"source": source, **updates})

    def as_stale(self, penalty: float) -> "IndicatorValue":
        """Copy served from the last-known-good store: penalised confidence, FALLBACK source"""
        return self.model_copy(
            update={
                "source": ValueSource.FALLBACK,
                "confidence": round(self.confidence * penalty, 6),
                "metadata": {**self.metadata, "stale": True},
            }
        )


class RawQuote(BaseModel):
    """
    Provider-agnostic quote

    Adapters translate provider payloads into this shape before the gateway
    ever sees them.
    """

    symbol: str = Field(description="Provider symbol (e.g. WALCL, BTC/USDT)")
    price: float = Field(description="Latest price / observation value")
    previous_close: float | None = Field(default=None, description="Prior close / observation")
    timestamp_ms: int = Field(description="Observation time, epoch milliseconds")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp_ms / 1000, tz=UTC)


class IndicatorDescriptor(BaseModel):
    """
    Registry entry

    RAW descriptors are fetched through the gateway; CALCULATED descriptors
    list their dependency ids and the name of a registered transform.
    """

    id: str = Field(description="Indicator id (e.g. 'fed-balance-sheet')")
    name: str = Field(default="", description="Human readable name")
    category: str = Field(description="Category, selects the fallback chain")
    source_kind: SourceKind = Field(default=SourceKind.RAW)
    symbol: str | None = Field(default=None, description="Default provider symbol (defaults to id)")
    provider_symbols: dict[ProviderId, str] = Field(
        default_factory=dict, description="Per-provider symbol overrides"
    )
    pinned_provider: ProviderId | None = Field(
        default=None, description="Single required provider (bypasses the category chain)"
    )
    unit: str = Field(default="")
    dependencies: list[str] = Field(default_factory=list)
    transform: str | None = Field(default=None, description="Registered transform name")
    cache_ttl_seconds: float | None = Field(default=None, gt=0, description="Overrides default TTL")
    description: str = Field(default="")
    tags: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_kind(self) -> "IndicatorDescriptor":
        if self.source_kind == SourceKind.CALCULATED:
            if not self.dependencies:
                raise ValueError(f"Calculated indicator '{self.id}' has no dependencies")
            if not self.transform:
                raise ValueError(f"Calculated indicator '{self.id}' has no transform")
            if self.id in self.dependencies:
                raise ValueError(f"Calculated indicator '{self.id}' depends on itself")
        elif self.dependencies:
            raise ValueError(f"Raw indicator '{self.id}' cannot declare dependencies")
        return self

    @property
    def is_calculated(self) -> bool:
        return self.source_kind == SourceKind.CALCULATED

    def symbol_for(self, provider: ProviderId) -> str:
        """Provider-specific symbol for this indicator"""
        return self.provider_symbols.get(provider) or self.symbol or self.id


class FetchRequest(BaseModel):
    """Single request for fetch_many"""

    indicator_id: str
    force_refresh: bool = False
    priority: Priority = Priority.NORMAL


class FetchResult(BaseModel):
    """
    Outcome of a fetch/resolve

    - ok: a fresh (or cached) value, no error
    - error with value: stale last-known-good served after a failure
    - error without value: no data
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    indicator_id: str
    value: IndicatorValue | None = None
    error: Exception | None = None
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None and self.value is not None

    @property
    def has_value(self) -> bool:
        return self.value is not None

    @property
    def is_stale(self) -> bool:
        return self.value is not None and self.error is not None


class HealthStatus(BaseModel):
    """Gateway health snapshot"""

    status: HealthState
    cache_size: int
    cache_hit_rate: float
    error_rate: float
    total_requests: int
    breaker_states: dict[str, str]
    rate_limit_remaining: dict[str, int]
    avg_latency_ms: float
    latency_histogram: dict[str, int] = Field(default_factory=dict)
