from abc import ABC, abstractmethod

from core.models.indicators import IndicatorValue


class BaseFallbackStore(ABC):
    """
    Persisted last-known-good values

    Consulted by the gateway (and calculation engine) after every provider
    has failed. Values are served tagged FALLBACK with penalised confidence.

    Implementations:
    - InMemoryFallbackStore (providers/memory/fallback_store.py)
    - RedisFallbackStore (providers/opensource/redis_client.py)
    """

    @abstractmethod
    async def get_last_known_good(self, indicator_id: str) -> IndicatorValue | None:
        """
        Latest good value for an indicator

        Returns:
            IndicatorValue as originally produced, or None
        """

    @abstractmethod
    async def save(self, indicator_id: str, value: IndicatorValue) -> None:
        """Record a fresh good value"""

    async def connect(self) -> None:
        """Establish connection (no-op for in-process stores)"""

    async def close(self) -> None:
        """Release resources"""
