"""
Binance ticker adapter

Latest spot tickers through ccxt (single and batch).
"""

import logging

import ccxt.async_support as ccxt

from config.settings import get_settings
from core.models.indicators import ProviderId
from providers.ccxt_ticker import CcxtTickerAPI

logger = logging.getLogger(__name__)


class BinanceTickerAPI(CcxtTickerAPI):
    """
    Binance spot tickers

    Symbols use ccxt unified format (e.g. "BTC/USDT").
    """

    provider_id = ProviderId.BINANCE

    def __init__(self, client: ccxt.Exchange | None = None):
        if client is None:
            settings = get_settings()
            client = ccxt.binance(
                {
                    # Limits enforced by the gateway's RateLimiter
                    "enableRateLimit": False,
                    "timeout": int(settings.REQUEST_TIMEOUT_SECONDS * 1000),
                }
            )
        super().__init__(client)
        logger.info("BinanceTickerAPI initialized")
