"""Tests for companion.integrations.weather — OpenWeatherMap lookups."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from companion.integrations.weather import OpenWeatherMap, build_query_params, get_current_weather


def _mock_client(payload=None, error=None):
    mock_resp = MagicMock()
    mock_resp.json.return_value = payload or {}
    mock_resp.raise_for_status = MagicMock()

    mock_client = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    if error is not None:
        mock_client.get = AsyncMock(side_effect=error)
    else:
        mock_client.get = AsyncMock(return_value=mock_resp)
    return mock_client


class TestBuildQueryParams:
    def test_city(self):
        params = build_query_params("Pune", "k")
        assert params == {"appid": "k", "units": "metric", "q": "Pune"}

    def test_us_state_suffix(self):
        assert build_query_params("New York, NY", "k")["q"] == "New York,US"

    def test_country_suffix_kept(self):
        assert build_query_params("Mumbai, India", "k")["q"] == "Mumbai,India"

    def test_coordinates(self):
        params = build_query_params("18.52, 73.85", "k")
        assert (params["lat"], params["lon"]) == ("18.52", "73.85")
        assert "q" not in params


class TestGetCurrentWeather:
    @pytest.mark.asyncio
    async def test_success(self):
        client = _mock_client({
            "name": "Pune",
            "main": {"temp": 34.2, "humidity": 40},
            "weather": [{"description": "clear sky"}],
        })
        with patch("companion.integrations.weather.httpx.AsyncClient", return_value=client):
            weather = await get_current_weather("Pune", "fake-key")

        assert weather.location == "Pune"
        assert weather.temp_c == 34.2
        assert weather.description == "clear sky"
        assert weather.humidity == 40

    @pytest.mark.asyncio
    async def test_missing_temperature(self):
        client = _mock_client({"main": {}})
        with patch("companion.integrations.weather.httpx.AsyncClient", return_value=client):
            assert await get_current_weather("Pune", "fake-key") is None

    @pytest.mark.asyncio
    async def test_http_error_returns_none(self):
        client = _mock_client(error=Exception("Connection timeout"))
        with patch("companion.integrations.weather.httpx.AsyncClient", return_value=client):
            assert await get_current_weather("Pune", "fake-key") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("location, key", [("", "fake-key"), ("Pune", "")])
    async def test_missing_inputs_skip_call(self, location, key):
        with patch("companion.integrations.weather.httpx.AsyncClient") as client_cls:
            assert await get_current_weather(location, key) is None
        client_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_port_adapter(self):
        client = _mock_client({"main": {"temp": 28}})
        with patch("companion.integrations.weather.httpx.AsyncClient", return_value=client):
            weather = await OpenWeatherMap("fake-key").current("Pune")
        assert weather.temp_c == 28.0
        assert weather.location == "Pune"
