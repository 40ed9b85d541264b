"""
Environmental fetchers: one call per data source, each bounded by a timeout
and each returning a FetchResult instead of raising, so one provider outage
never aborts the others.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, List, Optional, TypeVar

from src.farmdata.models import (
    ForecastDay, NdviEntry, SatelliteProvider, SoilEntry, WeatherProvider, WeatherSnapshot,
)
from src.providers.agromonitoring import process_forecast, process_ndvi, process_soil, process_weather

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_FETCH_TIMEOUT_S = 10.0

SOURCE_WEATHER = "weather"
SOURCE_FORECAST = "forecast"
SOURCE_NDVI = "ndvi"
SOURCE_SOIL = "soil"
SOURCE_UV = "uv"


@dataclass
class FetchError:
    source: str
    message: str


@dataclass
class FetchResult(Generic[T]):
    """Outcome of one fetch: either a value or an error, never both."""
    source: str
    value: Optional[T] = None
    error: Optional[FetchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.value is not None

    @classmethod
    def failure(cls, source: str, message: str) -> "FetchResult[T]":
        return cls(source=source, error=FetchError(source=source, message=message))


class EnvironmentalFetchers:
    """Fetch and normalize weather, forecast, NDVI, soil and UV data."""

    def __init__(
        self,
        weather: WeatherProvider,
        satellite: SatelliteProvider,
        timeout_s: float = DEFAULT_FETCH_TIMEOUT_S,
    ):
        self.weather = weather
        self.satellite = satellite
        self.timeout_s = timeout_s

    async def _run(
        self,
        source: str,
        call: Callable[[], Awaitable],
        convert: Callable,
    ) -> FetchResult:
        try:
            raw = await asyncio.wait_for(call(), timeout=self.timeout_s)
            value = convert(raw) if raw is not None else None
        except asyncio.TimeoutError:
            logger.warning("%s fetch timed out after %.1fs", source, self.timeout_s)
            return FetchResult.failure(source, f"timed out after {self.timeout_s}s")
        except Exception as e:
            logger.warning("%s fetch failed: %s", source, e)
            return FetchResult.failure(source, str(e))

        if value is None:
            logger.warning("%s fetch returned no data", source)
            return FetchResult.failure(source, "no data returned")
        return FetchResult(source=source, value=value)

    async def fetch_current_weather(self, lat: float, lon: float) -> FetchResult[WeatherSnapshot]:
        logger.info("Fetching weather data for coordinates: %s, %s", lat, lon)
        return await self._run(
            SOURCE_WEATHER,
            lambda: self.weather.get_current_weather(lat, lon, "metric"),
            process_weather,
        )

    async def fetch_forecast(self, lat: float, lon: float) -> FetchResult[List[ForecastDay]]:
        return await self._run(
            SOURCE_FORECAST,
            lambda: self.weather.get_forecast(lat, lon),
            process_forecast,
        )

    async def fetch_ndvi_history(
        self,
        polygon_id: Optional[str],
        start_ts: int,
        end_ts: int,
    ) -> FetchResult[List[NdviEntry]]:
        if not polygon_id:
            return FetchResult.failure(SOURCE_NDVI, "no polygon available")
        logger.info("Fetching NDVI history for polygon %s (%d..%d)", polygon_id, start_ts, end_ts)
        return await self._run(
            SOURCE_NDVI,
            lambda: self.satellite.get_ndvi_history(polygon_id, start_ts, end_ts),
            process_ndvi,
        )

    async def fetch_soil_snapshot(self, polygon_id: Optional[str]) -> FetchResult[List[SoilEntry]]:
        """Current soil reading only, as a one-element list."""
        if not polygon_id:
            return FetchResult.failure(SOURCE_SOIL, "no polygon available")
        return await self._run(
            SOURCE_SOIL,
            lambda: self.satellite.get_current_soil(polygon_id),
            lambda raw: process_soil([raw]),
        )

    async def fetch_uv_snapshot(self, polygon_id: Optional[str]) -> FetchResult[float]:
        if not polygon_id:
            return FetchResult.failure(SOURCE_UV, "no polygon available")
        return await self._run(
            SOURCE_UV,
            lambda: self.satellite.get_current_uvi(polygon_id),
            lambda raw: float(raw["uvi"]),
        )
