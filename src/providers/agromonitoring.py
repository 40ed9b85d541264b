"""
Agromonitoring client: weather, forecast, polygon management, NDVI history,
soil and UV index for registered field polygons.
Requires an API key (set AGROMONITORING_API_KEY env var).

API docs: https://agromonitoring.com/api
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from src.config import AGROMONITORING_BASE_URL, Settings
from src.farmdata.models import ForecastDay, NdviEntry, RemotePolygon, SoilEntry, WeatherSnapshot

logger = logging.getLogger(__name__)

KELVIN_OFFSET = 273.15
MAX_FORECAST_DAYS = 7

SATELLITE_NAMES = {
    "l8": "Landsat-8",
    "s2": "Sentinel-2",
}


class AgromonitoringError(Exception):
    """Non-2xx response or transport failure from the Agromonitoring API."""

    def __init__(self, status: Optional[int], endpoint: str, message: str):
        self.status = status
        self.endpoint = endpoint
        super().__init__(message)


def _error_for_response(response: httpx.Response, endpoint: str) -> AgromonitoringError:
    status = response.status_code
    if status == 401:
        return AgromonitoringError(status, endpoint, "Invalid Agromonitoring API key")
    if status == 403:
        return AgromonitoringError(
            status, endpoint,
            f"Access forbidden for {endpoint}; this endpoint may require a higher subscription plan",
        )
    if status == 404:
        return AgromonitoringError(status, endpoint, f"Endpoint not found: {endpoint}")
    if status == 429:
        return AgromonitoringError(status, endpoint, "Rate limit exceeded")

    try:
        body = response.json()
    except ValueError:
        body = None
    detail = body.get("message") if isinstance(body, dict) else None
    detail = detail or response.text or f"{status} {response.reason_phrase}"

    note = ""
    if endpoint.startswith("/soil"):
        note = " (soil data may require a paid subscription plan)"
    elif endpoint.startswith("/uvi"):
        note = " (UVI data may require a paid subscription plan)"
    return AgromonitoringError(status, endpoint, f"API request failed for {endpoint}: {detail}{note}")


class AgromonitoringClient:
    """
    Async client for the Agromonitoring REST API.

    One instance owns one ``httpx.AsyncClient`` and is safe to share across
    concurrent aggregations. Call ``aclose()`` on shutdown.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = AGROMONITORING_BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key:
            raise ValueError(
                "Agromonitoring API key not set. Set AGROMONITORING_API_KEY in the environment."
            )
        self._api_key = api_key
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AgromonitoringClient":
        return cls(
            settings.agromonitoring_api_key,
            base_url=settings.agromonitoring_base_url,
            timeout=settings.http_timeout_s,
        )

    async def aclose(self):
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        query = {"appid": self._api_key}
        for key, value in (params or {}).items():
            if value is not None:
                query[key] = value

        logger.debug("Agromonitoring %s %s params=%s", method, endpoint, params)
        try:
            response = await self._client.request(method, endpoint, params=query, json=json)
        except httpx.HTTPError as e:
            logger.warning("Agromonitoring request to %s failed: %s", endpoint, e)
            raise AgromonitoringError(None, endpoint, f"Request failed for {endpoint}: {e}") from e

        if response.is_error:
            error = _error_for_response(response, endpoint)
            logger.warning("Agromonitoring error for %s: %s", endpoint, error)
            raise error

        if not response.content:
            return None
        return response.json()

    # ---- Weather ----

    async def get_current_weather(self, lat: float, lon: float, units: str = "metric") -> Dict:
        return await self._request("GET", "/weather", {"lat": lat, "lon": lon, "units": units})

    async def get_forecast(self, lat: float, lon: float, units: str = "metric") -> List[Dict]:
        return await self._request("GET", "/weather/forecast", {"lat": lat, "lon": lon, "units": units})

    # ---- Polygons ----

    async def list_polygons(self) -> List[RemotePolygon]:
        data = await self._request("GET", "/polygons")
        return [_to_remote_polygon(item) for item in data or []]

    async def create_polygon(self, name: str, points: List[Dict[str, float]]) -> RemotePolygon:
        """
        Register a polygon from {lat, lng} points.

        The ring is closed (first point repeated) when the caller left it open.
        """
        ring = [[p["lng"], p["lat"]] for p in points]
        if ring and ring[0] != ring[-1]:
            ring.append(list(ring[0]))

        payload = {
            "name": name,
            "geo_json": {
                "type": "Feature",
                "properties": {},
                "geometry": {"type": "Polygon", "coordinates": [ring]},
            },
        }
        data = await self._request("POST", "/polygons", json=payload)
        return _to_remote_polygon(data)

    # ---- Satellite / soil / UV ----

    async def get_ndvi_history(self, polygon_id: str, start: int, end: int) -> List[Dict]:
        return await self._request(
            "GET", "/ndvi/history", {"polyid": polygon_id, "start": start, "end": end}
        )

    async def get_current_soil(self, polygon_id: str) -> Dict:
        return await self._request("GET", "/soil", {"polyid": polygon_id})

    async def get_current_uvi(self, polygon_id: str) -> Dict:
        return await self._request("GET", "/uvi", {"polyid": polygon_id})


def _to_remote_polygon(data: Dict) -> RemotePolygon:
    return RemotePolygon(
        id=str(data["id"]),
        name=data.get("name", ""),
        center=data.get("center"),
        area=data.get("area"),
    )


# ---- Payload processing ----

def date_to_unix(dt: datetime) -> int:
    return int(dt.timestamp())


def _iso_date(unix_ts: int) -> str:
    return datetime.fromtimestamp(unix_ts, tz=timezone.utc).date().isoformat()


def ndvi_status(ndvi_mean: float) -> Tuple[str, str]:
    """Map a mean NDVI value to a (status, description) pair."""
    if ndvi_mean >= 0.7:
        return "Excellent", "Very healthy vegetation with dense canopy"
    if ndvi_mean >= 0.5:
        return "Good", "Healthy vegetation with good canopy coverage"
    if ndvi_mean >= 0.3:
        return "Fair", "Moderate vegetation health, may need attention"
    if ndvi_mean >= 0.1:
        return "Poor", "Stressed vegetation, requires immediate attention"
    return "Very Poor", "Severely stressed or sparse vegetation"


def soil_moisture_status(moisture_pct: float) -> str:
    if moisture_pct >= 40:
        return "Optimal"
    if moisture_pct >= 25:
        return "Good"
    if moisture_pct >= 15:
        return "Moderate"
    if moisture_pct >= 10:
        return "Low"
    return "Critical"


def uvi_risk_level(uvi: float) -> str:
    if uvi <= 2:
        return "Low"
    if uvi <= 5:
        return "Moderate"
    if uvi <= 7:
        return "High"
    if uvi <= 10:
        return "Very High"
    return "Extreme"


def process_weather(raw: Dict) -> WeatherSnapshot:
    """Convert a raw /weather payload (metric units) to a WeatherSnapshot."""
    main = raw["main"]
    conditions = raw.get("weather") or [{}]
    return WeatherSnapshot(
        temp=round(main["temp"]),
        humidity=main["humidity"],
        wind_speed=round(raw.get("wind", {}).get("speed", 0) * 3.6),  # m/s -> km/h
        description=conditions[0].get("description", "Unknown"),
        icon=conditions[0].get("icon", "01d"),
        pressure=main.get("pressure"),
        cloud_cover=raw.get("clouds", {}).get("all", 0),
        feels_like=round(main.get("feels_like", main["temp"])),
    )


def process_forecast(raw: List[Dict]) -> List[ForecastDay]:
    """First seven forecast entries, with rain (or snow) as precipitation."""
    days = []
    for item in (raw or [])[:MAX_FORECAST_DAYS]:
        main = item["main"]
        conditions = item.get("weather") or [{}]
        precipitation = (
            (item.get("rain") or {}).get("3h")
            or (item.get("snow") or {}).get("3h")
            or 0
        )
        days.append(ForecastDay(
            date=_iso_date(item["dt"]),
            high=round(main["temp_max"]),
            low=round(main["temp_min"]),
            description=conditions[0].get("description", "Unknown"),
            precipitation=precipitation,
        ))
    return days


def process_ndvi(raw: List[Dict]) -> List[NdviEntry]:
    """Convert NDVI history records, sorted oldest first."""
    entries = []
    for item in raw or []:
        stats = item["data"]
        mean = round(stats["mean"], 4)
        status, description = ndvi_status(mean)
        entries.append(NdviEntry(
            date=_iso_date(item["dt"]),
            timestamp=item["dt"],
            satellite=SATELLITE_NAMES.get(item.get("source"), item.get("source", "")),
            ndvi_mean=mean,
            ndvi_median=round(stats["median"], 4),
            ndvi_min=round(stats["min"], 4),
            ndvi_max=round(stats["max"], 4),
            cloud_cover=round(item.get("cl", 0) * 100, 1),
            data_coverage=round(item.get("dc", 0), 1),
            pixel_count=stats.get("num", 0),
            standard_deviation=round(stats.get("std", 0), 4),
            ndvi_status=status,
            description=description,
        ))
    return sorted(entries, key=lambda e: e.timestamp)


def process_soil(raw: List[Dict]) -> List[SoilEntry]:
    """Convert soil readings: Kelvin to Celsius, m3/m3 moisture to percent."""
    entries = []
    for item in raw or []:
        moisture = round(item["moisture"] * 100, 1)
        entries.append(SoilEntry(
            date=_iso_date(item["dt"]),
            timestamp=item["dt"],
            surface_temp=round(item["t0"] - KELVIN_OFFSET, 1),
            soil_temp=round(item["t10"] - KELVIN_OFFSET, 1),
            moisture=moisture,
            moisture_status=soil_moisture_status(moisture),
        ))
    return sorted(entries, key=lambda e: e.timestamp)
