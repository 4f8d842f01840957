"""
Area-of-interest handling.

A Footprint is a validated lon/lat polygon ring. parse_footprint() accepts the
coordinate forms callers commonly have at hand and fails fast on anything
malformed, before any archive query is issued.
"""

import math
from typing import Dict, List, Tuple, Union

import ee
from pydantic import BaseModel, ConfigDict, field_validator

from .config import DEFAULT_BUFFER_DISTANCE

METERS_PER_DEGREE = 111320.0

Coordinates = Union[Tuple[float, float], List[List[float]], Dict, 'Footprint']


class Footprint(BaseModel):
    """Closed lon/lat polygon ring (first vertex repeated at the end)."""
    model_config = ConfigDict(frozen=True)

    coordinates: Tuple[Tuple[float, float], ...]

    @field_validator('coordinates')
    @classmethod
    def validate_ring(cls, v):
        for lon, lat in v:
            if not (math.isfinite(lon) and math.isfinite(lat)):
                raise ValueError("Footprint coordinates must be finite numbers")
            if not -180.0 <= lon <= 180.0:
                raise ValueError(f"Longitude {lon} out of range [-180, 180]")
            if not -90.0 <= lat <= 90.0:
                raise ValueError(f"Latitude {lat} out of range [-90, 90]")

        if len(set(v)) < 3:
            raise ValueError("Footprint polygon needs at least 3 distinct vertices")

        if v[0] != v[-1]:
            v = tuple(v) + (v[0],)
        return v

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(min_lon, min_lat, max_lon, max_lat)"""
        lons = [lon for lon, _ in self.coordinates]
        lats = [lat for _, lat in self.coordinates]
        return min(lons), min(lats), max(lons), max(lats)

    def to_ee_geometry(self) -> ee.Geometry:
        return ee.Geometry.Polygon([[list(pt) for pt in self.coordinates]])

    def to_geojson(self) -> Dict:
        return {
            'type': 'Polygon',
            'coordinates': [[list(pt) for pt in self.coordinates]],
        }


def _point_footprint(lon: float, lat: float, buffer_distance: float) -> Footprint:
    if buffer_distance <= 0:
        raise ValueError("buffer_distance must be positive")
    if not -90.0 < lat < 90.0:
        raise ValueError(f"Latitude {lat} out of range (-90, 90) for a buffered point")

    dlat = buffer_distance / METERS_PER_DEGREE
    dlon = buffer_distance / (METERS_PER_DEGREE * math.cos(math.radians(lat)))
    return Footprint(coordinates=(
        (lon - dlon, lat - dlat),
        (lon + dlon, lat - dlat),
        (lon + dlon, lat + dlat),
        (lon - dlon, lat + dlat),
    ))


def parse_footprint(
    coordinates: Coordinates,
    buffer_distance: float = DEFAULT_BUFFER_DISTANCE
) -> Footprint:
    """
    Convert user coordinates to a Footprint.

    Parameters:
    -----------
    coordinates : Union[Tuple[float, float], List[List[float]], Dict, Footprint]
        Either:
        - Point: (lon, lat) tuple, expanded to a square of half-width buffer_distance
        - Polygon: List of [lon, lat] coordinate pairs
        - GeoJSON Polygon dict
        - Footprint: Pass through directly
    buffer_distance : float
        Buffer distance in meters for Point coordinates (default: 10000)

    Returns:
    --------
    Footprint : Validated polygon footprint

    Raises:
    -------
    ValueError
        If coordinates are missing or do not describe a valid area
    """
    if coordinates is None:
        raise ValueError("A footprint is required")

    if isinstance(coordinates, Footprint):
        return coordinates

    # Point (lon, lat)
    if isinstance(coordinates, tuple) and len(coordinates) == 2 \
            and all(isinstance(c, (int, float)) for c in coordinates):
        lon, lat = coordinates
        return _point_footprint(float(lon), float(lat), buffer_distance)

    if isinstance(coordinates, dict):
        if coordinates.get('type') != 'Polygon' or not coordinates.get('coordinates'):
            raise ValueError("GeoJSON footprint must be a Polygon with coordinates")
        coordinates = coordinates['coordinates'][0]

    # Polygon (list of coordinate pairs)
    if isinstance(coordinates, (list, tuple)) and len(coordinates) > 0:
        if all(isinstance(pt, (list, tuple)) and len(pt) == 2 for pt in coordinates):
            try:
                ring = tuple((float(lon), float(lat)) for lon, lat in coordinates)
            except (TypeError, ValueError) as e:
                raise ValueError(f"Footprint coordinates must be numeric: {e}") from e
            return Footprint(coordinates=ring)

    raise ValueError(
        "Coordinates must be either a (lon, lat) tuple, "
        "a list of [lon, lat] pairs for a polygon, "
        "a GeoJSON Polygon, or a Footprint object"
    )
