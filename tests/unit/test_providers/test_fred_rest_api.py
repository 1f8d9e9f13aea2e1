"""
Unit tests for FredRestAPI (mocked aiohttp session)
"""

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from core.errors import PermanentProviderError, TransientProviderError
from core.models.indicators import ProviderId
from providers.fred.rest_api import FredRestAPI


def mock_session(status=200, payload=None, text="", error=None):
    """aiohttp.ClientSession stand-in whose get() yields one response"""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload)
    response.text = AsyncMock(return_value=text)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    if error is not None:
        session.get = MagicMock(side_effect=error)
    else:
        session.get = MagicMock(return_value=context)
    return session


OBSERVATIONS = {
    "observations": [
        {"date": "2024-05-01", "value": "7362.5"},
        {"date": "2024-04-24", "value": "."},
        {"date": "2024-04-17", "value": "7401.2"},
    ]
}


@pytest.fixture(autouse=True)
def settings():
    with patch("providers.fred.rest_api.get_settings") as mock_settings:
        mock_settings.return_value = MagicMock(FRED_API_KEY=None, REQUEST_TIMEOUT_SECONDS=10.0)
        yield mock_settings


@pytest.mark.unit
class TestFredRestAPI:
    @pytest.mark.asyncio
    async def test_fetch_one_parses_latest_two_observations(self):
        session = mock_session(payload=OBSERVATIONS)
        fred = FredRestAPI(api_key="key", session=session)

        quote = await fred.fetch_one("WALCL")

        assert quote.symbol == "WALCL"
        assert quote.price == 7362.5
        assert quote.previous_close == 7401.2
        assert quote.timestamp.isoformat() == "2024-05-01T00:00:00+00:00"
        assert quote.metadata == {"observation_date": "2024-05-01", "previous_date": "2024-04-17"}

    @pytest.mark.asyncio
    async def test_request_parameters(self):
        session = mock_session(payload=OBSERVATIONS)
        fred = FredRestAPI(api_key="key", base_url="https://fred.test/", session=session)

        await fred.fetch_one("DGS10")

        url = session.get.call_args.args[0]
        params = session.get.call_args.kwargs["params"]
        assert url == "https://fred.test/fred/series/observations"
        assert params["series_id"] == "DGS10"
        assert params["sort_order"] == "desc"
        assert params["file_type"] == "json"
        assert params["api_key"] == "key"

    @pytest.mark.asyncio
    async def test_single_observation_has_no_previous(self):
        session = mock_session(payload={"observations": [{"date": "2024-05-01", "value": "4.2"}]})
        fred = FredRestAPI(api_key="key", session=session)

        quote = await fred.fetch_one("DGS10")

        assert quote.previous_close is None

    @pytest.mark.asyncio
    async def test_no_usable_observations_is_permanent(self):
        session = mock_session(payload={"observations": [{"date": "2024-05-01", "value": "."}]})
        fred = FredRestAPI(api_key="key", session=session)

        with pytest.raises(PermanentProviderError, match="No observations"):
            await fred.fetch_one("WALCL")

    @pytest.mark.asyncio
    async def test_missing_api_key_is_permanent(self):
        session = mock_session(payload=OBSERVATIONS)
        fred = FredRestAPI(session=session)

        with pytest.raises(PermanentProviderError):
            await fred.fetch_one("WALCL")
        session.get.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 503])
    async def test_retryable_statuses_are_transient(self, status):
        fred = FredRestAPI(api_key="key", session=mock_session(status=status))

        with pytest.raises(TransientProviderError):
            await fred.fetch_one("WALCL")

    @pytest.mark.asyncio
    async def test_bad_request_is_permanent(self):
        session = mock_session(status=400, text="Bad Request. The series does not exist.")
        fred = FredRestAPI(api_key="key", session=session)

        with pytest.raises(PermanentProviderError) as exc_info:
            await fred.fetch_one("NOPE")

        assert exc_info.value.details["status"] == 400
        assert "does not exist" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self):
        fred = FredRestAPI(api_key="key", session=mock_session(error=aiohttp.ClientConnectionError("reset")))

        with pytest.raises(TransientProviderError) as exc_info:
            await fred.fetch_one("WALCL")

        assert exc_info.value.provider == ProviderId.FRED.value

    @pytest.mark.asyncio
    async def test_non_dict_payload_is_permanent(self):
        fred = FredRestAPI(api_key="key", session=mock_session(payload=["unexpected"]))

        with pytest.raises(PermanentProviderError, match="Unexpected payload"):
            await fred.fetch_one("WALCL")

    @pytest.mark.asyncio
    async def test_health_check(self):
        fred = FredRestAPI(api_key="key", session=mock_session(payload={"seriess": []}))

        assert (await fred.health_check())["available"] is True

    @pytest.mark.asyncio
    async def test_health_check_failure(self):
        fred = FredRestAPI(api_key="key", session=mock_session(status=503))

        health = await fred.health_check()

        assert health["available"] is False
        assert "503" in health["error"]

    @pytest.mark.asyncio
    async def test_close(self):
        session = mock_session()
        fred = FredRestAPI(api_key="key", session=session)

        await fred.close()

        session.close.assert_awaited_once()
