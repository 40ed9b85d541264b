"""
Value objects and capability interfaces for the farmer data aggregation pipeline.

Store records are plain dataclasses so the aggregator never touches ORM
sessions; providers and the recommendation generator are typed as Protocols
so any binding (real client, test fake) can be injected.
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol


class IrrigationMethod(str, Enum):
    DRIP = "drip"
    SPRINKLER = "sprinkler"
    FLOOD = "flood"
    FURROW = "furrow"
    MANUAL = "manual"
    RAINFED = "rainfed"

    @classmethod
    def _missing_(cls, value):
        # Accept the form labels ("rain-fed", "DRIP", ...) as well
        if isinstance(value, str):
            normalized = value.strip().lower().replace("-", "").replace("_", "")
            for member in cls:
                if member.value == normalized:
                    return member
        return None


@dataclass
class Coordinates:
    lat: float
    lon: float


# ---- Store records ----

@dataclass
class FieldRecord:
    """A registered field; ``coordinates`` is a GeoJSON geometry serialized as text."""
    id: str
    name: str
    coordinates: Optional[str] = None
    crop_type: Optional[str] = None
    area: Optional[float] = None


@dataclass
class FarmRecord:
    id: str
    name: str
    fields: List[FieldRecord] = field(default_factory=list)


@dataclass
class FarmerProfileRecord:
    """Stored onboarding profile, one per user."""
    user_id: str
    crop_name: str
    soil_type: str
    sowing_date: date
    has_storage_capacity: bool
    irrigation_method: str
    storage_capacity: Optional[float] = None
    farming_experience: Optional[int] = None
    farm_size: Optional[float] = None
    previous_yield: Optional[float] = None
    preferred_language: str = "en"
    is_onboarding_complete: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class UserRecord:
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    profile: Optional[FarmerProfileRecord] = None
    farms: List[FarmRecord] = field(default_factory=list)

    def first_field(self) -> Optional[FieldRecord]:
        """First field of the first farm, the only one the resolvers consult."""
        if self.farms and self.farms[0].fields:
            return self.farms[0].fields[0]
        return None


# ---- Provider payloads (processed) ----

@dataclass
class RemotePolygon:
    id: str
    name: str
    center: Optional[List[float]] = None  # [lon, lat]
    area: Optional[float] = None


@dataclass
class WeatherSnapshot:
    temp: float
    humidity: float
    wind_speed: float  # km/h
    description: str
    icon: str
    pressure: float
    cloud_cover: float
    feels_like: float


@dataclass
class ForecastDay:
    date: str
    high: float
    low: float
    description: str
    precipitation: float


@dataclass
class NdviEntry:
    date: str
    timestamp: int
    satellite: str
    ndvi_mean: float
    ndvi_median: float
    ndvi_min: float
    ndvi_max: float
    cloud_cover: float
    data_coverage: float
    pixel_count: int
    standard_deviation: float
    ndvi_status: str
    description: str


@dataclass
class SoilEntry:
    date: str
    timestamp: int
    surface_temp: float  # Celsius
    soil_temp: float  # Celsius, 10cm depth
    moisture: float  # percent
    moisture_status: str


# ---- Aggregation inputs / outputs ----

# Overridable per deployment via Settings (DEFAULT_HISTORY_DAYS / MAX_HISTORY_DAYS)
DEFAULT_HISTORY_DAYS = 30
MAX_HISTORY_DAYS = 90


@dataclass
class AggregationOptions:
    """
    Knobs for one ``get_farmer_data`` call.

    The upper bound on ``max_history_days`` is deployment config, so it is
    checked by the aggregator rather than here.
    """
    include_historical_data: bool = True
    max_history_days: int = DEFAULT_HISTORY_DAYS
    require_all_data: bool = False

    def __post_init__(self):
        if self.max_history_days < 1:
            raise ValueError(f"max_history_days must be at least 1, got {self.max_history_days}")


@dataclass
class SelectedField:
    id: Optional[str] = None
    name: Optional[str] = None


@dataclass
class SelectionContext:
    """UI selection forwarded by the caller (e.g. the field picked on the map)."""
    selected_field: Optional[SelectedField] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SelectionContext":
        data = data or {}
        selected = data.get("selected_field") or data.get("selectedField")
        if not selected:
            return cls()
        return cls(selected_field=SelectedField(id=selected.get("id"), name=selected.get("name")))

    @property
    def selected_polygon_id(self) -> Optional[str]:
        return self.selected_field.id if self.selected_field else None


@dataclass
class DataCompleteness:
    profile: bool = False
    weather: bool = False
    ndvi: bool = False
    soil: bool = False
    forecast: bool = False
    uv: bool = False

    def as_dict(self) -> Dict[str, bool]:
        return asdict(self)


@dataclass
class AggregatedFarmerContext:
    """Everything the recommendation generator knows about one farmer, right now."""
    crop_name: str
    soil_type: str
    sowing_date: str
    has_storage_capacity: bool
    irrigation_method: str
    name: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    storage_capacity: Optional[float] = None
    farming_experience: Optional[int] = None
    farm_size: Optional[float] = None
    previous_yield: Optional[float] = None
    preferred_language: str = "en"
    current_weather: Optional[WeatherSnapshot] = None
    forecast: Optional[List[ForecastDay]] = None
    ndvi_data: Optional[List[NdviEntry]] = None
    soil_data: Optional[List[SoilEntry]] = None
    uv_index: Optional[float] = None
    last_updated: Optional[datetime] = None
    data_completeness: DataCompleteness = field(default_factory=DataCompleteness)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Insight:
    """Structured advice returned by a recommendation generator."""
    answer: str
    recommendations: List[str] = field(default_factory=list)
    urgent_alerts: List[str] = field(default_factory=list)
    confidence: float = 0.0
    sources: List[str] = field(default_factory=list)


# ---- Capability interfaces ----

class ProfileStore(Protocol):
    async def get_user_with_profile_and_fields(self, user_id: str) -> Optional[UserRecord]: ...

    async def get_farmer_profile(self, user_id: str) -> Optional[FarmerProfileRecord]: ...

    async def upsert_farmer_profile(self, user_id: str, fields: Dict[str, Any]) -> FarmerProfileRecord: ...

    async def upsert_user(
        self,
        user_id: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        location: Optional[str] = None,
    ) -> UserRecord: ...

    async def create_farm(
        self,
        user_id: str,
        name: str,
        description: Optional[str] = None,
        location: Optional[str] = None,
        area: Optional[float] = None,
    ) -> FarmRecord: ...

    async def add_field(
        self,
        farm_id: str,
        name: str,
        geometry: Any,
        crop_type: Optional[str] = None,
        area: Optional[float] = None,
    ) -> FieldRecord: ...


class WeatherProvider(Protocol):
    async def get_current_weather(self, lat: float, lon: float, units: str = "metric") -> Dict: ...

    async def get_forecast(self, lat: float, lon: float) -> List[Dict]: ...


class SatelliteProvider(Protocol):
    async def list_polygons(self) -> List[RemotePolygon]: ...

    async def create_polygon(self, name: str, points: List[Dict[str, float]]) -> RemotePolygon: ...

    async def get_ndvi_history(self, polygon_id: str, start: int, end: int) -> List[Dict]: ...

    async def get_current_soil(self, polygon_id: str) -> Dict: ...

    async def get_current_uvi(self, polygon_id: str) -> Dict: ...


class RecommendationGenerator(Protocol):
    async def generate(self, context: Optional[AggregatedFarmerContext], question: str) -> Insight: ...
