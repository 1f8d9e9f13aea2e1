"""
In-process last-known-good store
"""

from core.interfaces.fallback_store import BaseFallbackStore
from core.models.indicators import IndicatorValue


class InMemoryFallbackStore(BaseFallbackStore):
    """Latest good value per indicator, kept for the process lifetime"""

    def __init__(self):
        self._values: dict[str, IndicatorValue] = {}

    async def get_last_known_good(self, indicator_id: str) -> IndicatorValue | None:
        return self._values.get(indicator_id)

    async def save(self, indicator_id: str, value: IndicatorValue) -> None:
        self._values[indicator_id] = value

    def __len__(self) -> int:
        return len(self._values)
