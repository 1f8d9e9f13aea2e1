"""
FRED REST API adapter (St. Louis Fed economic data)

Fetches the latest observations of a series via aiohttp. FRED marks
missing observations with "." which are skipped.
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

import aiohttp

from config.settings import get_settings
from core.errors import PermanentProviderError, TransientProviderError
from core.interfaces.provider import BaseProviderAdapter
from core.models.indicators import ProviderId, RawQuote

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.stlouisfed.org"
OBSERVATIONS_PATH = "/fred/series/observations"
SERIES_PATH = "/fred/series"
# Enough rows to find two real values past "." gaps
OBSERVATION_LIMIT = 10
HEALTH_CHECK_SERIES = "GNPCA"


class FredRestAPI(BaseProviderAdapter):
    """
    FRED adapter

    Error mapping:
    - Network errors, timeouts, HTTP 429 / 5xx → TransientProviderError
    - Other HTTP 4xx (unknown series, bad key), malformed payload,
      no usable observations → PermanentProviderError

    Example:
        >>> fred = FredRestAPI(api_key="...")
        >>> quote = await fred.fetch_one("WALCL")
        >>> quote.price, quote.metadata["observation_date"]
        (7123456.0, '2024-05-01')
    """

    provider_id = ProviderId.FRED
    confidence = 0.95

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        settings = get_settings()
        self.api_key = api_key or settings.FRED_API_KEY
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds or settings.REQUEST_TIMEOUT_SECONDS)
        self._session = session

        if not self.api_key:
            logger.warning("⚠️ FRED_API_KEY not set, FRED requests will be rejected")

    async def fetch_one(self, symbol: str) -> RawQuote:
        if not self.api_key:
            raise PermanentProviderError(self.provider_id.value, "FRED_API_KEY not configured")

        payload = await self._get_json(
            OBSERVATIONS_PATH,
            {
                "series_id": symbol,
                "api_key": self.api_key,
                "file_type": "json",
                "sort_order": "desc",
                "limit": OBSERVATION_LIMIT,
            },
        )

        observations = [
            obs for obs in payload.get("observations", []) if obs.get("value") not in (None, "", ".")
        ]
        if not observations:
            raise PermanentProviderError(self.provider_id.value, f"No observations for {symbol}")

        latest = observations[0]
        previous = observations[1] if len(observations) > 1 else None
        try:
            price = float(latest["value"])
            previous_close = float(previous["value"]) if previous else None
            observed = datetime.strptime(latest["date"], "%Y-%m-%d").replace(tzinfo=UTC)
        except (KeyError, ValueError) as e:
            raise PermanentProviderError(
                self.provider_id.value, f"Malformed observation for {symbol}: {latest}"
            ) from e

        return RawQuote(
            symbol=symbol,
            price=price,
            previous_close=previous_close,
            timestamp_ms=int(observed.timestamp() * 1000),
            metadata={
                "observation_date": latest["date"],
                "previous_date": previous["date"] if previous else None,
            },
        )

    async def health_check(self) -> dict:
        if not self.api_key:
            return {"available": False, "requests_remaining": None, "error": "FRED_API_KEY not configured"}

        try:
            await self._get_json(
                SERIES_PATH,
                {"series_id": HEALTH_CHECK_SERIES, "api_key": self.api_key, "file_type": "json"},
            )
            return {"available": True, "requests_remaining": None}
        except (TransientProviderError, PermanentProviderError) as e:
            return {"available": False, "requests_remaining": None, "error": e.message}

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            logger.info("✓ FRED session closed")

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure we have an active HTTP session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout, headers={"Accept": "application/json"}
            )
        return self._session

    async def _get_json(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        session = await self._ensure_session()
        url = f"{self.base_url}{path}"
        name = self.provider_id.value

        try:
            async with session.get(url, params=params) as resp:
                if resp.status == 429 or resp.status >= 500:
                    raise TransientProviderError(name, f"HTTP {resp.status} from {path}")
                if resp.status >= 400:
                    body = await resp.text()
                    raise PermanentProviderError(
                        name, f"HTTP {resp.status} from {path}: {body[:200]}", {"status": resp.status}
                    )
                payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientProviderError(name, f"Request to {path} failed: {e!r}") from e
        except ValueError as e:
            raise PermanentProviderError(name, f"Malformed JSON from {path}") from e

        if not isinstance(payload, dict):
            raise PermanentProviderError(name, f"Unexpected payload from {path}: {type(payload).__name__}")
        return payload
