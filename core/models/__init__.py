"""Models module - Pydantic data models"""

from .indicators import (
    FetchRequest,
    FetchResult,
    HealthState,
    HealthStatus,
    IndicatorDescriptor,
    IndicatorValue,
    Priority,
    ProviderId,
    RawQuote,
    SourceKind,
    ValueSource,
    compute_change,
)

__all__ = [
    "IndicatorValue",
    "RawQuote",
    "IndicatorDescriptor",
    "FetchRequest",
    "FetchResult",
    "HealthStatus",
    "HealthState",
    "ValueSource",
    "SourceKind",
    "ProviderId",
    "Priority",
    "compute_change",
]
