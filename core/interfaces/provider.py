"""
Abstract base class for indicator provider adapters

Uniform contract every external data source implements. The gateway only
ever sees RawQuote objects, so it stays provider-format-agnostic.
"""

from abc import ABC, abstractmethod

from core.models.indicators import ProviderId, RawQuote


class BaseProviderAdapter(ABC):
    """
    Provider adapter interface

    Implementations:
    - FredRestAPI (providers/fred/rest_api.py)
    - BinanceTickerAPI (providers/binance/rest_api.py)
    - CoinbaseTickerAPI (providers/coinbase/rest_api.py)

    Error contract:
    - TransientProviderError: network/timeout/5xx (gateway retries)
    - PermanentProviderError: bad symbol/4xx (gateway moves to next provider)

    Example:
        >>> adapter = FredRestAPI(api_key="...")
        >>> quote = await adapter.fetch_one("WALCL")
        >>> print(quote.price, quote.previous_close)
        >>> await adapter.close()
    """

    provider_id: ProviderId
    # Confidence declared for values from this provider
    confidence: float = 0.9
    # Whether fetch_batch() is implemented natively
    supports_batch: bool = False

    @abstractmethod
    async def fetch_one(self, symbol: str) -> RawQuote:
        """
        Fetch latest quote for one provider symbol

        Args:
            symbol: Provider-specific symbol (e.g. "WALCL", "BTC/USDT")

        Returns:
            RawQuote

        Raises:
            TransientProviderError: Retryable failure
            PermanentProviderError: Non-retryable failure
        """

    async def fetch_batch(self, symbols: list[str]) -> dict[str, RawQuote | None]:
        """
        Fetch latest quotes for many symbols in one call

        Optional optimization. Only called when supports_batch is True.

        Returns:
            Dict symbol -> RawQuote, or None for symbols the provider did not return
        """
        raise NotImplementedError(f"{type(self).__name__} does not support batch fetches")

    @abstractmethod
    async def health_check(self) -> dict:
        """
        Provider availability

        Returns:
            {"available": bool, "requests_remaining": int | None}
        """

    async def close(self) -> None:
        """Release network resources"""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.provider_id.value})"
