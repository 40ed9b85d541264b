"""
Geo resolver: picks the (lat, lon) used for weather and forecast lookups.

The stored user location is free text, sometimes of the form
"560001 (12.9716,77.5946)". When it carries no coordinate pair, the centre of
the first registered field boundary is used instead.
"""

import json
import logging
import re
from typing import List, Optional

from src.farmdata.models import Coordinates, FieldRecord, ProfileStore, UserRecord

logger = logging.getLogger(__name__)

LOCATION_COORDS_PATTERN = re.compile(r"\((-?\d+\.?\d*),\s*(-?\d+\.?\d*)\)")


def parse_location_coordinates(location: Optional[str]) -> Optional[Coordinates]:
    """Extract the "(lat,lng)" pair embedded in a location string, if any."""
    if not location:
        return None
    match = LOCATION_COORDS_PATTERN.search(location)
    if not match:
        return None
    return Coordinates(lat=float(match.group(1)), lon=float(match.group(2)))


def parse_polygon_ring(geometry: Optional[str]) -> Optional[List[List[float]]]:
    """
    Return the outer ring of a GeoJSON Polygon stored as text.

    Returns None for empty input, invalid JSON, non-Polygon geometries and
    polygons without an outer ring.
    """
    if not geometry:
        return None
    try:
        data = json.loads(geometry)
    except (TypeError, ValueError) as e:
        logger.warning("Could not parse field coordinates: %s", e)
        return None

    if not isinstance(data, dict) or data.get("type") != "Polygon":
        return None
    rings = data.get("coordinates") or []
    if not rings or not rings[0]:
        return None
    return rings[0]


def ring_center(ring: List[List[float]]) -> Optional[Coordinates]:
    """
    Arithmetic mean of the ring's [lon, lat] points.

    Every listed point counts, including a closing point that repeats the
    first one, so a closed square is biased towards its first corner.
    """
    lat_sum = 0.0
    lon_sum = 0.0
    valid = 0
    for point in ring:
        if isinstance(point, (list, tuple)) and len(point) >= 2:
            lon_sum += point[0]
            lat_sum += point[1]
            valid += 1
    if valid == 0:
        return None
    return Coordinates(lat=lat_sum / valid, lon=lon_sum / valid)


def field_center(field: FieldRecord) -> Optional[Coordinates]:
    ring = parse_polygon_ring(field.coordinates)
    if ring is None:
        return None
    return ring_center(ring)


async def resolve_coordinates(
    location: Optional[str],
    user_id: str,
    store: ProfileStore,
    user: Optional[UserRecord] = None,
) -> Optional[Coordinates]:
    """
    Resolve coordinates for a farmer.

    Args:
        location: The user's stored location string.
        user_id: Used to load farms/fields when ``user`` is not supplied.
        store: Profile store for the field lookup.
        user: Already-loaded user record, saves a store round-trip.

    Returns:
        Coordinates, or None when neither the location string nor the first
        field's boundary yields a point. Never raises.
    """
    coords = parse_location_coordinates(location)
    if coords is not None:
        return coords

    try:
        if user is None:
            user = await store.get_user_with_profile_and_fields(user_id)
        field = user.first_field() if user else None
        if field is not None:
            coords = field_center(field)
            if coords is not None:
                logger.info(
                    "Using field center coordinates for user %s: %.6f, %.6f",
                    user_id, coords.lat, coords.lon,
                )
                return coords
    except Exception as e:
        logger.warning("Error getting field coordinates for user %s: %s", user_id, e)

    logger.warning("Could not extract coordinates from location or fields for user %s", user_id)
    return None
