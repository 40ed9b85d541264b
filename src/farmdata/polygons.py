"""
Polygon resolver: finds the remote monitoring polygon used for NDVI, soil
and UV queries.

Resolution tiers, first hit wins:
    1. Polygon id selected by the caller (e.g. the field picked on the map)
    2. Existing remote polygon whose name contains the field or user name
    3. New remote polygon created from the field boundary

Tier 2 is a name heuristic: local fields carry no reference to the remote
polygon they were registered as.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from src.farmdata.fetchers import DEFAULT_FETCH_TIMEOUT_S
from src.farmdata.geo import parse_polygon_ring
from src.farmdata.models import FieldRecord, ProfileStore, RemotePolygon, SatelliteProvider, UserRecord

logger = logging.getLogger(__name__)

# Matched against remote polygon names when the user has no display name
DEFAULT_OWNER_NAME = "Farm"


def ring_to_points(ring: List[List[float]]) -> List[Dict[str, float]]:
    """Convert GeoJSON [lon, lat] pairs to {lat, lng} points."""
    return [
        {"lat": point[1], "lng": point[0]}
        for point in ring
        if isinstance(point, (list, tuple)) and len(point) >= 2
    ]


def match_polygon(
    polygons: List[RemotePolygon],
    field_name: str,
    owner_name: Optional[str],
) -> Optional[RemotePolygon]:
    """First polygon whose name contains the field name or the owner name (case-sensitive)."""
    owner = owner_name or DEFAULT_OWNER_NAME
    for polygon in polygons:
        name = polygon.name or ""
        if field_name in name or owner in name:
            return polygon
    return None


class PolygonResolver:
    """Resolve the remote polygon id for a farmer's field-scoped queries."""

    def __init__(
        self,
        store: ProfileStore,
        satellite: SatelliteProvider,
        timeout_s: float = DEFAULT_FETCH_TIMEOUT_S,
    ):
        self.store = store
        self.satellite = satellite
        self.timeout_s = timeout_s

    async def resolve(
        self,
        user_id: str,
        selected_polygon_id: Optional[str] = None,
        user: Optional[UserRecord] = None,
    ) -> Optional[str]:
        """
        Return the polygon id to query, or None when no tier succeeds.

        Remote listing/creation errors and timeouts (``timeout_s`` per call)
        are logged and treated as "no polygon"; nothing is raised.
        """
        if selected_polygon_id:
            logger.info("Using selected polygon %s for user %s", selected_polygon_id, user_id)
            return selected_polygon_id

        try:
            if user is None:
                user = await self.store.get_user_with_profile_and_fields(user_id)
        except Exception as e:
            logger.warning("Could not load fields for user %s: %s", user_id, e)
            return None

        field = user.first_field() if user else None
        if field is None:
            logger.warning("No fields found for user %s; no polygon available", user_id)
            return None

        try:
            polygons = await asyncio.wait_for(self.satellite.list_polygons(), timeout=self.timeout_s)
            matching = match_polygon(polygons, field.name, user.name)
            if matching is not None:
                logger.info("Using existing polygon %s for field '%s'", matching.id, field.name)
                return matching.id
            return await self._create_from_field(field)
        except asyncio.TimeoutError:
            logger.warning("Polygon resolution for user %s timed out after %.1fs", user_id, self.timeout_s)
            return None
        except Exception as e:
            logger.warning("Error resolving polygon for user %s: %s", user_id, e)
            return None

    async def _create_from_field(self, field: FieldRecord) -> Optional[str]:
        ring = parse_polygon_ring(field.coordinates)
        if ring is None:
            logger.warning("Field '%s' has no usable polygon geometry", field.name)
            return None

        created = await asyncio.wait_for(
            self.satellite.create_polygon(field.name, ring_to_points(ring)),
            timeout=self.timeout_s,
        )
        logger.info("Created new polygon %s for field '%s'", created.id, field.name)
        return created.id
