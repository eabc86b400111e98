"""OpenWeatherMap integration — current conditions for the risk guard.

Accepts either a city name ("Mumbai", "New York, NY") or a "lat,lon"
coordinate pair, and returns current temperature in °C.

Gracefully degrades: returns None on any failure (no API key, timeout,
invalid response, etc.).
"""

from __future__ import annotations

import logging
import re

import httpx

from companion.ports.weather_port import Weather

logger = logging.getLogger(__name__)

_CURRENT_WEATHER_URL = "https://api.openweathermap.org/data/2.5/weather"
_TIMEOUT_SECONDS = 5

_COORDINATES_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)\s*$")


def build_query_params(location: str, api_key: str) -> dict[str, str]:
    """Map a free-form location to OpenWeatherMap query parameters.

    "New York, NY" becomes "New York,US" since a two-letter suffix is
    almost always a US state abbreviation.
    """
    params = {"appid": api_key, "units": "metric"}

    match = _COORDINATES_RE.match(location)
    if match:
        params["lat"], params["lon"] = match.group(1), match.group(2)
        return params

    city, _, region = location.partition(",")
    region = region.strip()
    if len(region) == 2:
        params["q"] = f"{city.strip()},US"
    elif region:
        params["q"] = f"{city.strip()},{region}"
    else:
        params["q"] = city.strip()
    return params


async def get_current_weather(location: str, api_key: str) -> Weather | None:
    """Fetch current conditions for *location* — or None on any failure."""
    if not location or not api_key:
        return None

    try:
        async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
            resp = await client.get(
                _CURRENT_WEATHER_URL,
                params=build_query_params(location, api_key),
            )
            resp.raise_for_status()
            data = resp.json()

        main = data.get("main", {})
        if "temp" not in main:
            logger.info("No temperature in weather response for '%s'", location)
            return None

        conditions = data.get("weather", [{}])
        return Weather(
            location=data.get("name") or location,
            temp_c=float(main["temp"]),
            description=conditions[0].get("description", "") if conditions else "",
            humidity=main.get("humidity"),
        )
    except Exception as exc:
        logger.warning("Weather lookup failed for '%s': %s", location, exc)
        return None


class OpenWeatherMap:
    """WeatherPort implementation backed by the OpenWeatherMap REST API."""

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    async def current(self, location: str) -> Weather | None:
        return await get_current_weather(location, self._api_key)
