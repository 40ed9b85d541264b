"""
FastAPI application for the farmer data service.

Endpoints:
    GET  /health                            — Health check
    GET  /farmer-data/{user_id}             — Aggregated farmer context (profile + weather/NDVI/soil/UV)
    GET  /farmer-data/{user_id}/completeness — Which data sources are currently available
    POST /farmer-profile                    — Create/update the onboarding profile
    PUT  /farmer-profile                    — Change selected profile and user fields
    GET  /farmer-profile/{user_id}          — Stored user + profile
    POST /farms                             — Register a farm for a user
    POST /fields                            — Register a field boundary (GeoJSON Polygon) on a farm
    POST /ai-chat                           — Ask the recommendation generator, grounded in farmer data
    GET  /metrics                           — Prometheus metrics
"""

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

from src.api.schemas import (
    ChatRequest, ChatResponse, CompletenessSummaryResponse, FarmCreateRequest, FarmerDataResponse,
    FarmerProfileLookupResponse, FarmerProfileRequest, FarmerProfileResponse, FarmerProfileUpdateRequest,
    FarmOut, FieldCreateRequest, FieldOut, HealthResponse, ProfileUpdateResponse,
)
from src.config import Settings
from src.farmdata.aggregator import FarmerDataAggregator
from src.farmdata.errors import LocationRequiredError, OnboardingIncompleteError, RecordNotFoundError
from src.farmdata.models import (
    AggregatedFarmerContext, RecommendationGenerator, SelectedField, SelectionContext,
)
from src.providers.agromonitoring import uvi_risk_level

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# Lookback used by /ai-chat, capped by the deployment's max_history_days
CHAT_HISTORY_DAYS = 7

USER_FIELDS = ("name", "phone", "location")

# ---- Prometheus metrics ----
REQUEST_COUNT = Counter("farmer_data_requests_total", "Total farmer data aggregations")
REQUEST_LATENCY = Histogram(
    "farmer_data_latency_seconds", "Farmer data aggregation latency",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0],
)
SOURCE_MISSING = Counter(
    "farmer_data_source_missing_total", "Aggregations where a data source was unavailable",
    ["source"],
)


def create_app(
    aggregator: Optional[FarmerDataAggregator] = None,
    generator: Optional[RecommendationGenerator] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the app. Services passed in are used as-is; otherwise the
    aggregator is built from settings on startup and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if app.state.aggregator is None:
            cfg = settings or Settings.from_env()
            try:
                owned = FarmerDataAggregator.from_settings(cfg)
                await owned.store.create_all()
                app.state.aggregator = owned
                logger.info("Farmer data aggregator ready (database=%s)", cfg.database_url)
            except Exception as e:
                logger.error("Could not initialize farmer data aggregator: %s", e)
        yield
        if owned is not None:
            await owned.aclose()

    app = FastAPI(
        title="Farmer Data API",
        description="Farmer profile and environmental data aggregation for farming advice",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.aggregator = aggregator
    app.state.generator = generator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_routes(app)
    return app


def get_aggregator(request: Request) -> FarmerDataAggregator:
    aggregator = request.app.state.aggregator
    if aggregator is None:
        raise HTTPException(status_code=503, detail="Farmer data service not initialized")
    return aggregator


def _to_response(context: AggregatedFarmerContext) -> FarmerDataResponse:
    data = context.to_dict()
    if context.uv_index is not None:
        data["uv_risk_level"] = uvi_risk_level(context.uv_index)
    return FarmerDataResponse.model_validate(data)


def _register_routes(app: FastAPI):

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Health check endpoint."""
        ready = request.app.state.aggregator is not None
        return HealthResponse(
            status="healthy" if ready else "degraded",
            aggregator_ready=ready,
            generator_configured=request.app.state.generator is not None,
            version=VERSION,
        )

    @app.get("/farmer-data/{user_id}", response_model=FarmerDataResponse)
    async def farmer_data(
        user_id: str,
        include_historical_data: bool = True,
        max_history_days: Optional[int] = Query(None, ge=1, description="Defaults to DEFAULT_HISTORY_DAYS"),
        require_all_data: bool = False,
        selected_field_id: Optional[str] = None,
        aggregator: FarmerDataAggregator = Depends(get_aggregator),
    ):
        """
        Aggregate profile, weather, forecast, NDVI, soil and UV data for a farmer.

        Sources that fail are reported as False in ``data_completeness``
        rather than failing the request.
        """
        overrides = {"max_history_days": max_history_days} if max_history_days is not None else {}
        options = aggregator.default_options(
            include_historical_data=include_historical_data,
            require_all_data=require_all_data,
            **overrides,
        )
        context = SelectionContext(
            selected_field=SelectedField(id=selected_field_id) if selected_field_id else None,
        )

        start_time = time.time()
        try:
            result = await aggregator.get_farmer_data(user_id, options, context)
        except OnboardingIncompleteError as e:
            raise HTTPException(status_code=403, detail=str(e))
        except LocationRequiredError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except Exception as e:
            logger.error("Farmer data aggregation failed for %s: %s", user_id, e)
            raise HTTPException(status_code=502, detail=f"Data acquisition failed: {e}")

        REQUEST_COUNT.inc()
        REQUEST_LATENCY.observe(time.time() - start_time)
        for source, ok in result.data_completeness.as_dict().items():
            if not ok:
                SOURCE_MISSING.labels(source=source).inc()

        return _to_response(result)

    @app.get("/farmer-data/{user_id}/completeness", response_model=CompletenessSummaryResponse)
    async def farmer_data_completeness(
        user_id: str,
        aggregator: FarmerDataAggregator = Depends(get_aggregator),
    ):
        try:
            summary = await aggregator.get_data_completeness_summary(user_id)
        except OnboardingIncompleteError as e:
            raise HTTPException(status_code=403, detail=str(e))
        return CompletenessSummaryResponse(**summary)

    @app.post("/farmer-profile", response_model=FarmerProfileResponse)
    async def save_farmer_profile(
        request: FarmerProfileRequest,
        aggregator: FarmerDataAggregator = Depends(get_aggregator),
    ):
        """Save the onboarding form: user basics first, then the farmer profile."""
        logger.info("Creating/updating profile for user %s", request.user_id)
        try:
            await aggregator.store.upsert_user(
                request.user_id, name=request.name, phone=request.phone, location=request.location,
            )
            profile = await aggregator.update_farmer_profile(request.user_id, {
                "crop_name": request.crop_name,
                "soil_type": request.soil_type,
                "sowing_date": request.sowing_date,
                "has_storage_capacity": request.has_storage_capacity,
                "storage_capacity": request.storage_capacity if request.has_storage_capacity else None,
                "irrigation_method": request.irrigation_method,
                "farming_experience": request.farming_experience,
                "farm_size": request.farm_size,
                "previous_yield": request.previous_yield,
                "preferred_language": request.preferred_language,
                "is_onboarding_complete": True,
            })
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Failed to save farmer profile: {e}")

        return FarmerProfileResponse(
            success=True,
            profile=asdict(profile),
            message="Farmer profile saved successfully",
        )

    @app.put("/farmer-profile", response_model=ProfileUpdateResponse)
    async def update_farmer_profile(
        request: FarmerProfileUpdateRequest,
        aggregator: FarmerDataAggregator = Depends(get_aggregator),
    ):
        """
        Partial update: user basics are upserted when any is supplied, the
        remaining supplied fields are merged into the existing profile.
        """
        supplied = {
            k: v for k, v in request.model_dump(exclude_unset=True, exclude={"user_id"}).items() if v is not None
        }
        user_changes = {k: supplied.pop(k) for k in USER_FIELDS if k in supplied}
        profile_changes = supplied

        logger.info("Updating profile for user %s", request.user_id)
        if profile_changes and await aggregator.store.get_farmer_profile(request.user_id) is None:
            raise HTTPException(status_code=404, detail="Farmer profile not found; complete onboarding first")
        profile = None
        try:
            if user_changes:
                await aggregator.store.upsert_user(request.user_id, **user_changes)
            if profile_changes:
                profile = await aggregator.update_farmer_profile(request.user_id, profile_changes)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Failed to update farmer profile: {e}")

        return ProfileUpdateResponse(
            success=True,
            message="Profile updated successfully",
            profile=asdict(profile) if profile else None,
        )

    @app.get("/farmer-profile/{user_id}", response_model=FarmerProfileLookupResponse)
    async def get_farmer_profile(
        user_id: str,
        aggregator: FarmerDataAggregator = Depends(get_aggregator),
    ):
        user = await aggregator.store.get_user_with_profile_and_fields(user_id)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        return FarmerProfileLookupResponse(
            user={
                "id": user.id, "email": user.email, "name": user.name,
                "phone": user.phone, "location": user.location,
            },
            farmer_profile=asdict(user.profile) if user.profile else None,
        )

    @app.post("/farms", response_model=FarmOut, status_code=201)
    async def create_farm(
        request: FarmCreateRequest,
        aggregator: FarmerDataAggregator = Depends(get_aggregator),
    ):
        try:
            farm = await aggregator.store.create_farm(
                request.user_id, request.name,
                description=request.description, location=request.location, area=request.area,
            )
        except RecordNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return FarmOut(id=farm.id, name=farm.name)

    @app.post("/fields", response_model=FieldOut, status_code=201)
    async def create_field(
        request: FieldCreateRequest,
        aggregator: FarmerDataAggregator = Depends(get_aggregator),
    ):
        """Register a field boundary; its centre and name feed coordinate and polygon resolution."""
        try:
            field = await aggregator.store.add_field(
                request.farm_id, request.name, request.coordinates,
                crop_type=request.crop_type, area=request.area,
            )
        except RecordNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return FieldOut(**asdict(field))

    @app.post("/ai-chat", response_model=ChatResponse)
    async def ai_chat(request: ChatRequest, http_request: Request):
        """
        Answer a farmer's question. Farmer data is attached when available;
        the question is still answered without it.
        """
        if not request.message or not request.message.strip():
            raise HTTPException(status_code=400, detail="Message is required")

        generator = http_request.app.state.generator
        if generator is None:
            raise HTTPException(status_code=503, detail="Recommendation generator not configured")

        farmer_context = None
        aggregator = http_request.app.state.aggregator
        if request.user_id and aggregator is not None:
            try:
                farmer_context = await aggregator.get_farmer_data(
                    request.user_id,
                    aggregator.default_options(
                        include_historical_data=True,
                        max_history_days=min(CHAT_HISTORY_DAYS, aggregator.max_history_days),
                    ),
                    SelectionContext.from_dict(request.context),
                )
            except Exception as e:
                logger.warning("Could not fetch farmer data for %s: %s", request.user_id, e)

        try:
            insight = await generator.generate(farmer_context, request.message.strip())
        except Exception as e:
            logger.error("Recommendation generation failed: %s", e)
            raise HTTPException(status_code=502, detail=f"Failed to generate AI insight: {e}")

        return ChatResponse(
            answer=insight.answer,
            recommendations=insight.recommendations,
            urgent_alerts=insight.urgent_alerts,
            confidence=insight.confidence,
            sources=insight.sources,
            data_completeness=farmer_context.data_completeness.as_dict() if farmer_context else None,
        )

    @app.get("/metrics")
    async def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
