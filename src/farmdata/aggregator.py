"""
Farmer data aggregator: loads a farmer's profile, resolves where the farm is,
fetches weather/forecast/NDVI/soil/UV concurrently, and merges everything
into one AggregatedFarmerContext for the recommendation generator.

Only two failures propagate to the caller:
    OnboardingIncompleteError — no profile, or onboarding not finished
    LocationRequiredError     — no coordinates and require_all_data was set
Every other failure is logged and shows up as a False completeness flag.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from src.config import Settings
from src.farmdata.errors import LocationRequiredError, OnboardingIncompleteError
from src.farmdata.fetchers import EnvironmentalFetchers, FetchResult
from src.farmdata.geo import resolve_coordinates
from src.farmdata.models import (
    DEFAULT_HISTORY_DAYS,
    MAX_HISTORY_DAYS,
    AggregatedFarmerContext,
    AggregationOptions,
    Coordinates,
    DataCompleteness,
    FarmerProfileRecord,
    ProfileStore,
    SelectionContext,
    UserRecord,
)
from src.farmdata.polygons import PolygonResolver
from src.providers.agromonitoring import AgromonitoringClient, date_to_unix
from src.store.profile_store import SqlProfileStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FarmerDataAggregator:
    """
    Build farmer contexts from the profile store and environmental providers.

    Usage:
        aggregator = FarmerDataAggregator.from_settings(Settings.from_env())
        context = await aggregator.get_farmer_data("user-1")
        # context.data_completeness tells which sources made it
    """

    def __init__(
        self,
        store: ProfileStore,
        fetchers: EnvironmentalFetchers,
        polygons: PolygonResolver,
        clock: Optional[Callable[[], datetime]] = None,
        default_history_days: int = DEFAULT_HISTORY_DAYS,
        max_history_days: int = MAX_HISTORY_DAYS,
    ):
        if not (1 <= default_history_days <= max_history_days):
            raise ValueError(
                f"default_history_days must be between 1 and max_history_days ({max_history_days}), "
                f"got {default_history_days}"
            )
        self.store = store
        self.fetchers = fetchers
        self.polygons = polygons
        self.default_history_days = default_history_days
        self.max_history_days = max_history_days
        self._now = clock or _utcnow

    @classmethod
    def from_settings(cls, settings: Settings) -> "FarmerDataAggregator":
        """Wire the SQL profile store and the Agromonitoring client."""
        store = SqlProfileStore(settings.database_url)
        client = AgromonitoringClient.from_settings(settings)
        fetchers = EnvironmentalFetchers(client, client, timeout_s=settings.fetch_timeout_s)
        polygons = PolygonResolver(store, client, timeout_s=settings.fetch_timeout_s)
        return cls(
            store, fetchers, polygons,
            default_history_days=settings.default_history_days,
            max_history_days=settings.max_history_days,
        )

    async def aclose(self):
        """Release the HTTP client(s) and database engine."""
        resources = {id(r): r for r in (self.fetchers.weather, self.fetchers.satellite, self.store)}
        for resource in resources.values():
            close = getattr(resource, "aclose", None)
            if close is not None:
                await close()

    def default_options(self, **overrides) -> AggregationOptions:
        """AggregationOptions using this deployment's default history window."""
        overrides.setdefault("max_history_days", self.default_history_days)
        return AggregationOptions(**overrides)

    def history_window(self, max_history_days: int) -> Tuple[int, int]:
        """Unix (start, end) spanning ``max_history_days`` and ending now."""
        end = self._now()
        start = end - timedelta(days=max_history_days)
        return date_to_unix(start), date_to_unix(end)

    async def get_farmer_data(
        self,
        user_id: str,
        options: Optional[AggregationOptions] = None,
        context: Optional[SelectionContext] = None,
    ) -> AggregatedFarmerContext:
        """
        Aggregate everything known about a farmer.

        Args:
            user_id: The user whose farm to describe.
            options: History window and strictness (defaults: the configured
                history window, partial data allowed).
            context: UI selection; ``selected_field.id`` short-circuits
                polygon resolution.

        Returns:
            AggregatedFarmerContext, possibly with holes.

        Raises:
            OnboardingIncompleteError: message contains "onboarding not completed".
            LocationRequiredError: no coordinates and ``require_all_data``.
            ValueError: ``max_history_days`` above the configured limit.
        """
        options = options or self.default_options()
        if options.max_history_days > self.max_history_days:
            raise ValueError(
                f"max_history_days must be between 1 and {self.max_history_days}, "
                f"got {options.max_history_days}"
            )
        context = context or SelectionContext()

        logger.info("Step 1: Loading profile for user %s", user_id)
        user = await self.store.get_user_with_profile_and_fields(user_id)
        if user is None:
            raise OnboardingIncompleteError(user_id, "User not found; farmer onboarding not completed")
        profile = user.profile
        if profile is None or not profile.is_onboarding_complete:
            raise OnboardingIncompleteError(user_id)

        result = self._base_context(user, profile)
        result.data_completeness.profile = True

        logger.info("Step 2: Resolving coordinates")
        coords = await resolve_coordinates(user.location, user_id, self.store, user=user)
        if coords is None:
            if options.require_all_data:
                raise LocationRequiredError(user_id)
            logger.warning("No coordinates for user %s; skipping environmental data", user_id)
        else:
            logger.info("Step 3: Fetching environmental data")
            await self._fetch_environment(result, user, coords, options, context)

        result.last_updated = self._now()
        logger.info(
            "Data aggregation completed for user %s: completeness=%s ndvi=%d soil=%d uv=%s",
            user_id,
            result.data_completeness.as_dict(),
            len(result.ndvi_data or []),
            len(result.soil_data or []),
            result.uv_index,
        )
        return result

    def _base_context(self, user: UserRecord, profile: FarmerProfileRecord) -> AggregatedFarmerContext:
        sowing = profile.sowing_date
        return AggregatedFarmerContext(
            name=user.name,
            phone=user.phone,
            location=user.location,
            crop_name=profile.crop_name,
            soil_type=profile.soil_type,
            sowing_date=sowing.isoformat()[:10] if sowing else "",
            has_storage_capacity=profile.has_storage_capacity,
            storage_capacity=profile.storage_capacity,
            irrigation_method=profile.irrigation_method,
            farming_experience=profile.farming_experience,
            farm_size=profile.farm_size,
            previous_yield=profile.previous_yield,
            preferred_language=profile.preferred_language or "en",
            data_completeness=DataCompleteness(),
        )

    async def _field_data(
        self,
        user: UserRecord,
        options: AggregationOptions,
        selected_polygon_id: Optional[str],
    ) -> Tuple[Optional[str], Optional[FetchResult], Optional[FetchResult]]:
        """Resolve the polygon, then fetch NDVI and soil for it concurrently."""
        polygon_id = await self.polygons.resolve(user.id, selected_polygon_id, user=user)
        if not polygon_id:
            logger.warning("No polygon available for user %s; skipping field data", user.id)
            return None, None, None
        if not options.include_historical_data:
            return polygon_id, None, None

        start_ts, end_ts = self.history_window(options.max_history_days)
        ndvi, soil = await asyncio.gather(
            self.fetchers.fetch_ndvi_history(polygon_id, start_ts, end_ts),
            self.fetchers.fetch_soil_snapshot(polygon_id),
            return_exceptions=True,
        )
        return polygon_id, ndvi, soil

    async def _fetch_environment(
        self,
        result: AggregatedFarmerContext,
        user: UserRecord,
        coords: Coordinates,
        options: AggregationOptions,
        context: SelectionContext,
    ):
        weather, forecast, field_data = await asyncio.gather(
            self.fetchers.fetch_current_weather(coords.lat, coords.lon),
            self.fetchers.fetch_forecast(coords.lat, coords.lon),
            self._field_data(user, options, context.selected_polygon_id),
            return_exceptions=True,
        )

        if isinstance(field_data, BaseException):
            logger.warning("Field data branch failed for user %s: %s", user.id, field_data)
            polygon_id, ndvi, soil = None, None, None
        else:
            polygon_id, ndvi, soil = field_data

        completeness = result.data_completeness
        if _succeeded(weather, "weather"):
            result.current_weather = weather.value
            completeness.weather = True
        if _succeeded(forecast, "forecast"):
            result.forecast = forecast.value
            completeness.forecast = True
        if _succeeded(ndvi, "ndvi"):
            result.ndvi_data = ndvi.value
            completeness.ndvi = True
        if _succeeded(soil, "soil"):
            result.soil_data = soil.value
            completeness.soil = True

        # UV runs after the batch, reusing the resolved polygon
        if polygon_id:
            uv = await self.fetchers.fetch_uv_snapshot(polygon_id)
            if _succeeded(uv, "uv"):
                result.uv_index = uv.value
                completeness.uv = True

    # ---- Profile side ----

    async def update_farmer_profile(self, user_id: str, partial_profile: Dict[str, Any]) -> FarmerProfileRecord:
        """Create the profile (marked onboarded) or merge the supplied fields into it."""
        try:
            profile = await self.store.upsert_farmer_profile(user_id, partial_profile)
        except Exception as e:
            logger.error("Error updating farmer profile for user %s: %s", user_id, e)
            raise
        logger.info("Farmer profile updated: %s", user_id)
        return profile

    async def is_onboarding_complete(self, user_id: str) -> bool:
        try:
            profile = await self.store.get_farmer_profile(user_id)
        except Exception as e:
            logger.error("Error checking onboarding status for user %s: %s", user_id, e)
            return False
        return bool(profile and profile.is_onboarding_complete)

    async def get_data_completeness_summary(self, user_id: str) -> Dict[str, Any]:
        """Percentage of sources fetched, per-source flags and the missing ones."""
        data = await self.get_farmer_data(user_id, self.default_options(require_all_data=False))
        details = data.data_completeness.as_dict()
        complete = sum(1 for ok in details.values() if ok)
        return {
            "percentage": round(complete / len(details) * 100),
            "details": details,
            "missing_data": [source for source, ok in details.items() if not ok],
            "last_updated": data.last_updated,
        }


def _succeeded(outcome: Any, source: str) -> bool:
    if outcome is None:
        return False
    if isinstance(outcome, BaseException):
        logger.warning("%s branch raised: %s", source, outcome)
        return False
    return isinstance(outcome, FetchResult) and outcome.ok
