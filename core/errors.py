"""
Error taxonomy for the indicator data layer

Request-time errors are attached to FetchResult (never raised past the
gateway / calculation engine). Registration-time errors raise.
"""

from typing import Any


class DataLayerError(Exception):
    """Base exception for data layer errors"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ============================================
# PROVIDER ERRORS (raised by adapters)
# ============================================
class ProviderError(DataLayerError):
    """Adapter call failed"""

    def __init__(self, provider: str, message: str, details: dict[str, Any] | None = None):
        self.provider = provider
        super().__init__(f"[{provider}] {message}", details)


class TransientProviderError(ProviderError):
    """Network error, timeout, 5xx - retryable"""


class PermanentProviderError(ProviderError):
    """Bad symbol, 4xx, malformed payload - not retried, chain advances"""


# ============================================
# GATEWAY ERRORS (attached to FetchResult)
# ============================================
class RateLimitedError(DataLayerError):
    """Provider's sliding window is full"""


class CircuitOpenError(DataLayerError):
    """Provider breaker is open (or half-open with its trial in flight)"""


class AllProvidersExhaustedError(DataLayerError):
    """Every adapter in the fallback chain failed or was skipped"""

    def __init__(self, indicator_id: str, attempts: dict[str, str]):
        self.indicator_id = indicator_id
        self.attempts = attempts
        summary = ", ".join(f"{p}: {reason}" for p, reason in attempts.items()) or "no providers"
        super().__init__(f"No data for '{indicator_id}' ({summary})", {"attempts": attempts})


class NoProviderConfiguredError(DataLayerError):
    """No fallback chain for the indicator's category"""


class UnknownIndicatorError(DataLayerError):
    """Indicator id is not registered"""


# ============================================
# CALCULATION ERRORS
# ============================================
class CalculationError(DataLayerError):
    """Calculated indicator could not be produced"""


class MissingDependencyError(CalculationError):
    """One or more dependencies failed to resolve"""

    def __init__(self, indicator_id: str, missing: dict[str, str]):
        self.indicator_id = indicator_id
        self.missing = missing
        super().__init__(
            f"Insufficient data for '{indicator_id}': missing {sorted(missing)}",
            {"missing": missing},
        )


UpstreamUnavailableError = MissingDependencyError


class MissingTransformError(CalculationError):
    """Descriptor references an unregistered transform"""


class TransformFailedError(CalculationError):
    """Transform raised or produced an unusable value"""


# ============================================
# REGISTRATION ERRORS (configuration time, raised)
# ============================================
class RegistrationError(DataLayerError):
    """Invalid indicator or transform registration"""


class CyclicDependencyError(RegistrationError):
    """Dependency graph over calculated indicators contains a cycle"""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Cyclic dependency: {' -> '.join(cycle)}", {"cycle": cycle})
