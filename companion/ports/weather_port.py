"""Weather port — current conditions for the heat/medication risk check."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass
class Weather:
    """Current conditions at a location."""

    location: str
    temp_c: float | None
    description: str = ""
    humidity: int | None = None


class WeatherPort(Protocol):
    """Returns current weather, or None when unavailable."""

    async def current(self, location: str) -> Weather | None: ...
