"""
Shared fixtures: an in-memory fake profile store, fake providers returning
canned Agromonitoring payloads, and record builders. No network access.
"""

import json
import sys
from datetime import date, datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.farmdata.errors import RecordNotFoundError  # noqa: E402
from src.farmdata.models import (  # noqa: E402
    FarmerProfileRecord, FarmRecord, FieldRecord, RemotePolygon, UserRecord,
)

# Closed square, [lon, lat] order
SQUARE_GEOMETRY = {"type": "Polygon", "coordinates": [[[0, 0], [0, 2], [2, 2], [2, 0], [0, 0]]]}

FIXED_NOW = datetime(2025, 6, 30, 12, 0, 0, tzinfo=timezone.utc)


class FakeStore:
    """Dict-backed ProfileStore."""

    def __init__(self, users=None):
        self.users = {u.id: u for u in (users or [])}
        self.lookups = 0
        self.profile_writes = []
        self._farms = {farm.id: farm for u in self.users.values() for farm in u.farms}

    async def get_user_with_profile_and_fields(self, user_id):
        self.lookups += 1
        return self.users.get(user_id)

    async def get_farmer_profile(self, user_id):
        user = self.users.get(user_id)
        return user.profile if user else None

    async def upsert_farmer_profile(self, user_id, fields):
        self.profile_writes.append((user_id, dict(fields)))
        user = self.users.setdefault(user_id, UserRecord(id=user_id))
        if user.profile is None:
            user.profile = FarmerProfileRecord(user_id=user_id, **{**fields, "is_onboarding_complete": True})
        else:
            for key, value in fields.items():
                setattr(user.profile, key, value)
        return user.profile

    async def upsert_user(self, user_id, name=None, phone=None, location=None):
        user = self.users.setdefault(user_id, UserRecord(id=user_id))
        for key, value in {"name": name, "phone": phone, "location": location}.items():
            if value is not None:
                setattr(user, key, value)
        return user

    async def create_farm(self, user_id, name, description=None, location=None, area=None):
        if user_id not in self.users:
            raise RecordNotFoundError("User", user_id)
        farm = FarmRecord(id=f"farm-{len(self._farms) + 1}", name=name)
        self.users[user_id].farms.append(farm)
        self._farms[farm.id] = farm
        return farm

    async def add_field(self, farm_id, name, geometry, crop_type=None, area=None):
        farm = self._farms.get(farm_id)
        if farm is None:
            raise RecordNotFoundError("Farm", farm_id)
        coordinates = geometry if isinstance(geometry, str) else json.dumps(geometry)
        field = FieldRecord(
            id=f"field-{len(farm.fields) + 1}", name=name, coordinates=coordinates,
            crop_type=crop_type, area=area,
        )
        farm.fields.append(field)
        return field


@pytest.fixture
def make_profile():
    def _make(**overrides):
        values = {
            "user_id": "user-1",
            "crop_name": "rice",
            "soil_type": "clay loam",
            "sowing_date": date(2025, 6, 15),
            "has_storage_capacity": True,
            "storage_capacity": 12.5,
            "irrigation_method": "drip",
            "farming_experience": 8,
            "farm_size": 2.5,
            "previous_yield": 4.2,
            "is_onboarding_complete": True,
        }
        values.update(overrides)
        return FarmerProfileRecord(**values)
    return _make


@pytest.fixture
def make_user(make_profile):
    def _make(
        user_id="user-1",
        name="Ravi",
        location=None,
        geometry=SQUARE_GEOMETRY,
        field_name="North Plot",
        profile="default",
    ):
        fields = []
        if geometry is not None:
            coords = geometry if isinstance(geometry, str) else json.dumps(geometry)
            fields.append(FieldRecord(id="field-1", name=field_name, coordinates=coords))
        farms = [FarmRecord(id="farm-1", name="Home Farm", fields=fields)]
        if profile == "default":
            profile = make_profile(user_id=user_id)
        return UserRecord(id=user_id, name=name, location=location, profile=profile, farms=farms)
    return _make


@pytest.fixture
def payloads():
    """Raw Agromonitoring responses."""
    return SimpleNamespace(
        weather={
            "dt": 1750000000,
            "weather": [{"id": 800, "main": "Clear", "description": "clear sky", "icon": "01d"}],
            "main": {
                "temp": 28.4, "feels_like": 30.2, "temp_min": 27.0, "temp_max": 29.0,
                "pressure": 1012, "humidity": 70,
            },
            "wind": {"speed": 2.5, "deg": 180},
            "clouds": {"all": 10},
        },
        forecast=[
            {
                "dt": 1750000000 + 86400 * i,
                "weather": [{"description": "light rain", "icon": "10d"}],
                "main": {
                    "temp": 27.0, "feels_like": 28.0, "temp_min": 24.6, "temp_max": 31.4,
                    "pressure": 1010, "humidity": 80,
                },
                "wind": {"speed": 3.0, "deg": 90},
                "clouds": {"all": 60},
                "rain": {"3h": 1.5},
            }
            for i in range(10)
        ],
        ndvi=[
            {
                "dt": 1750100000, "source": "s2", "zoom": 12, "dc": 100, "cl": 0.05,
                "data": {
                    "std": 0.05, "p75": 0.7, "min": 0.3, "max": 0.8,
                    "median": 0.62, "p25": 0.55, "num": 1000, "mean": 0.61234,
                },
            },
            {
                "dt": 1749000000, "source": "l8", "zoom": 12, "dc": 87.5, "cl": 0.2,
                "data": {
                    "std": 0.08, "p75": 0.5, "min": 0.1, "max": 0.6,
                    "median": 0.44, "p25": 0.35, "num": 800, "mean": 0.45,
                },
            },
        ],
        soil={"dt": 1750000000, "t10": 295.15, "moisture": 0.275, "t0": 300.15},
        uvi={"dt": 1750000000, "uvi": 6.3},
        polygons=[
            RemotePolygon(id="poly-other", name="Someone Else", center=[10.0, 10.0]),
            RemotePolygon(id="poly-north", name="Ravi - North Plot", center=[1.0, 1.0]),
        ],
    )


@pytest.fixture
def providers(payloads):
    """(weather, satellite) fakes that succeed unless a test overrides them."""
    weather = MagicMock()
    weather.get_current_weather = AsyncMock(return_value=payloads.weather)
    weather.get_forecast = AsyncMock(return_value=payloads.forecast)

    satellite = MagicMock()
    satellite.list_polygons = AsyncMock(return_value=payloads.polygons)
    satellite.create_polygon = AsyncMock(
        return_value=RemotePolygon(id="poly-new", name="North Plot"),
    )
    satellite.get_ndvi_history = AsyncMock(return_value=payloads.ndvi)
    satellite.get_current_soil = AsyncMock(return_value=payloads.soil)
    satellite.get_current_uvi = AsyncMock(return_value=payloads.uvi)
    return weather, satellite


@pytest.fixture
def build_aggregator(providers):
    """Factory: aggregator over a FakeStore holding the given users, clock fixed at FIXED_NOW."""
    from src.farmdata.aggregator import FarmerDataAggregator
    from src.farmdata.fetchers import EnvironmentalFetchers
    from src.farmdata.polygons import PolygonResolver

    weather, satellite = providers

    def _build(*users, timeout_s=1.0, **kwargs):
        store = FakeStore(users)
        fetchers = EnvironmentalFetchers(weather, satellite, timeout_s=timeout_s)
        aggregator = FarmerDataAggregator(
            store, fetchers, PolygonResolver(store, satellite, timeout_s=timeout_s),
            clock=lambda: FIXED_NOW, **kwargs,
        )
        return aggregator, store
    return _build


@pytest.fixture
def fixed_now():
    return FIXED_NOW
