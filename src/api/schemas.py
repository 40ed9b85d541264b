"""
Pydantic request/response schemas for the farmer data service.
"""

import json
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from src.farmdata.geo import parse_polygon_ring
from src.farmdata.models import IrrigationMethod


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    aggregator_ready: bool
    generator_configured: bool
    version: str


# ---- Farmer profile ----

def _irrigation_method(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    try:
        return IrrigationMethod(value).value
    except ValueError:
        allowed = ", ".join(m.value for m in IrrigationMethod)
        raise ValueError(f"irrigation_method must be one of: {allowed}")


class FarmerProfileRequest(BaseModel):
    """Input schema for POST /farmer-profile (onboarding form submission)."""
    user_id: str = Field(..., min_length=1, description="User the profile belongs to")
    name: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = Field(
        None, description="Free text, optionally '<pincode> (<lat>,<lng>)'",
    )
    crop_name: str = Field(..., min_length=1)
    soil_type: str = Field(..., min_length=1)
    sowing_date: date
    has_storage_capacity: bool = False
    storage_capacity: Optional[float] = Field(None, ge=0, description="Storage capacity (tons)")
    irrigation_method: str = Field(
        ..., description="drip, sprinkler, flood, furrow, manual or rain-fed",
    )
    farming_experience: Optional[int] = Field(None, ge=0, description="Years of experience")
    farm_size: Optional[float] = Field(None, ge=0, description="Farm size (hectares)")
    previous_yield: Optional[float] = Field(None, ge=0, description="Previous yield (tons/hectare)")
    preferred_language: str = "en"

    @field_validator("irrigation_method")
    @classmethod
    def check_irrigation_method(cls, value):
        return _irrigation_method(value)

    model_config = {"json_schema_extra": {
        "examples": [{
            "user_id": "user-123",
            "name": "Ravi",
            "location": "560001 (12.9716,77.5946)",
            "crop_name": "rice",
            "soil_type": "clay loam",
            "sowing_date": "2025-06-15",
            "irrigation_method": "drip",
        }]
    }}


class FarmerProfileUpdateRequest(BaseModel):
    """Input schema for PUT /farmer-profile. Only the supplied fields change."""
    user_id: str = Field(..., min_length=1)
    name: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    crop_name: Optional[str] = Field(None, min_length=1)
    soil_type: Optional[str] = Field(None, min_length=1)
    sowing_date: Optional[date] = None
    has_storage_capacity: Optional[bool] = None
    storage_capacity: Optional[float] = Field(None, ge=0)
    irrigation_method: Optional[str] = None
    farming_experience: Optional[int] = Field(None, ge=0)
    farm_size: Optional[float] = Field(None, ge=0)
    previous_yield: Optional[float] = Field(None, ge=0)
    preferred_language: Optional[str] = None

    @field_validator("irrigation_method")
    @classmethod
    def check_irrigation_method(cls, value):
        return _irrigation_method(value)


class FarmerProfileOut(BaseModel):
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
    is_onboarding_complete: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FarmerProfileResponse(BaseModel):
    success: bool
    profile: FarmerProfileOut
    message: str


class UserOut(BaseModel):
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None


class FarmerProfileLookupResponse(BaseModel):
    user: UserOut
    farmer_profile: Optional[FarmerProfileOut] = None


class ProfileUpdateResponse(BaseModel):
    success: bool
    message: str
    profile: Optional[FarmerProfileOut] = None


# ---- Farms and fields ----

class FarmCreateRequest(BaseModel):
    """Input schema for POST /farms."""
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    location: Optional[str] = None
    area: Optional[float] = Field(None, ge=0, description="Farm area (hectares)")


class FarmOut(BaseModel):
    id: str
    name: str


class FieldCreateRequest(BaseModel):
    """Input schema for POST /fields. ``coordinates`` is a GeoJSON Polygon, [lon, lat] order."""
    farm_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    coordinates: Dict[str, Any]
    crop_type: Optional[str] = None
    area: Optional[float] = Field(None, ge=0, description="Field area (hectares)")

    @field_validator("coordinates")
    @classmethod
    def check_polygon(cls, value):
        if parse_polygon_ring(json.dumps(value)) is None:
            raise ValueError("coordinates must be a GeoJSON Polygon with an outer ring")
        return value

    model_config = {"json_schema_extra": {
        "examples": [{
            "farm_id": "farm-123",
            "name": "North Plot",
            "coordinates": {
                "type": "Polygon",
                "coordinates": [[[77.59, 12.97], [77.6, 12.97], [77.6, 12.98], [77.59, 12.97]]],
            },
            "crop_type": "rice",
        }]
    }}


class FieldOut(BaseModel):
    id: str
    name: str
    coordinates: Optional[str] = None
    crop_type: Optional[str] = None
    area: Optional[float] = None


# ---- Aggregated farmer data ----

class WeatherOut(BaseModel):
    temp: float
    humidity: float
    wind_speed: float
    description: str
    icon: str
    pressure: Optional[float] = None
    cloud_cover: float
    feels_like: float


class ForecastDayOut(BaseModel):
    date: str
    high: float
    low: float
    description: str
    precipitation: float


class NdviEntryOut(BaseModel):
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


class SoilEntryOut(BaseModel):
    date: str
    timestamp: int
    surface_temp: float
    soil_temp: float
    moisture: float
    moisture_status: str


class DataCompletenessOut(BaseModel):
    profile: bool
    weather: bool
    ndvi: bool
    soil: bool
    forecast: bool
    uv: bool


class FarmerDataResponse(BaseModel):
    """Output schema for GET /farmer-data/{user_id}."""
    name: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    crop_name: str
    soil_type: str
    sowing_date: str
    has_storage_capacity: bool
    storage_capacity: Optional[float] = None
    irrigation_method: str
    farming_experience: Optional[int] = None
    farm_size: Optional[float] = None
    previous_yield: Optional[float] = None
    preferred_language: str = "en"
    current_weather: Optional[WeatherOut] = None
    forecast: Optional[List[ForecastDayOut]] = None
    ndvi_data: Optional[List[NdviEntryOut]] = None
    soil_data: Optional[List[SoilEntryOut]] = None
    uv_index: Optional[float] = None
    uv_risk_level: Optional[str] = None
    last_updated: datetime
    data_completeness: DataCompletenessOut


class CompletenessSummaryResponse(BaseModel):
    percentage: int
    details: DataCompletenessOut
    missing_data: List[str]
    last_updated: datetime


# ---- AI chat ----

class ChatRequest(BaseModel):
    """Input schema for POST /ai-chat."""
    message: str
    user_id: Optional[str] = None
    context: Optional[Dict[str, Any]] = Field(
        None, description="UI selection, e.g. {'selected_field': {'id': '...', 'name': '...'}}",
    )


class ChatResponse(BaseModel):
    answer: str
    recommendations: List[str] = []
    urgent_alerts: List[str] = []
    confidence: float = 0
    sources: List[str] = []
    data_completeness: Optional[DataCompletenessOut] = None
