"""
Shared ccxt ticker adapter for exchange providers

Uses ccxt library for:
- Unified ticker interface across exchanges
- Batch tickers (fetch_tickers) in one request
- Typed exception hierarchy (NetworkError vs ExchangeError)
"""

import logging
from typing import Any

import ccxt.async_support as ccxt

from core.errors import PermanentProviderError, TransientProviderError
from core.interfaces.provider import BaseProviderAdapter
from core.models.indicators import RawQuote

logger = logging.getLogger(__name__)


class CcxtTickerAPI(BaseProviderAdapter):
    """
    Latest-ticker adapter over a ccxt async exchange client

    Error mapping:
    - ccxt.NetworkError (timeouts, DDoS protection, exchange unavailable,
      exchange-side rate limit) → TransientProviderError
    - ccxt.ExchangeError (bad symbol, bad request) or a ticker without a
      last price → PermanentProviderError

    Subclasses set provider_id and build the exchange client.
    """

    confidence = 0.9
    supports_batch = True

    def __init__(self, client: ccxt.Exchange):
        self.client = client

    async def fetch_one(self, symbol: str) -> RawQuote:
        name = self.provider_id.value
        try:
            ticker = await self.client.fetch_ticker(symbol)
        except ccxt.NetworkError as e:
            raise TransientProviderError(name, f"Ticker {symbol} failed: {e}") from e
        except ccxt.ExchangeError as e:
            raise PermanentProviderError(name, f"Ticker {symbol} rejected: {e}") from e

        return self._to_quote(symbol, ticker)

    async def fetch_batch(self, symbols: list[str]) -> dict[str, RawQuote | None]:
        name = self.provider_id.value
        try:
            tickers = await self.client.fetch_tickers(symbols)
        except ccxt.NetworkError as e:
            raise TransientProviderError(name, f"Tickers {symbols} failed: {e}") from e
        except ccxt.ExchangeError as e:
            raise PermanentProviderError(name, f"Tickers {symbols} rejected: {e}") from e

        quotes: dict[str, RawQuote | None] = {}
        for symbol in symbols:
            ticker = tickers.get(symbol)
            try:
                quotes[symbol] = self._to_quote(symbol, ticker) if ticker else None
            except PermanentProviderError as e:
                logger.warning(f"✗ {e.message}")
                quotes[symbol] = None

        logger.debug(f"Fetched {sum(q is not None for q in quotes.values())}/{len(symbols)} {name} tickers")
        return quotes

    async def health_check(self) -> dict:
        try:
            status = await self.client.fetch_status()
        except ccxt.BaseError as e:
            return {"available": False, "requests_remaining": None, "error": str(e)}
        return {
            "available": status.get("status", "ok") == "ok",
            "requests_remaining": None,
            "status": status.get("status"),
        }

    async def close(self) -> None:
        await self.client.close()
        logger.info(f"✓ {self.provider_id.value} client closed")

    def _to_quote(self, symbol: str, ticker: dict[str, Any]) -> RawQuote:
        price = ticker.get("last")
        if price is None:
            price = ticker.get("close")
        if price is None:
            raise PermanentProviderError(self.provider_id.value, f"Ticker {symbol} has no last price")

        # previousClose is not reported by every exchange; the session open is the fallback
        previous_close = ticker.get("previousClose")
        if previous_close is None:
            previous_close = ticker.get("open")
        timestamp_ms = ticker.get("timestamp")
        if timestamp_ms is None:
            timestamp_ms = self.client.milliseconds()

        return RawQuote(
            symbol=symbol,
            price=float(price),
            previous_close=float(previous_close) if previous_close is not None else None,
            timestamp_ms=int(timestamp_ms),
            metadata={
                "bid": ticker.get("bid"),
                "ask": ticker.get("ask"),
                "volume": ticker.get("baseVolume"),
            },
        )
