"""
Configuration constants for the NDVI compositing engine.

Values that depend on the deployment (Earth Engine project, timeouts,
worker count) can be overridden through environment variables.
"""

import os


def _env_number(name, cast, default=None):
    """Read a numeric environment override, naming the variable on bad input."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a valid {cast.__name__}, got {raw!r}") from None


# Earth Engine project used by initialize_earth_engine()
EE_PROJECT = os.getenv('NDVI_EE_PROJECT')

# Scene-level cloud filter (percentage), applied before any masking
DEFAULT_CLOUD_THRESHOLD = 20.0

# Nominal resolution of the combined product in meters
COMPOSITE_RESOLUTION = 30

# Sanity bounds for requested years
MIN_YEAR = 1950
MAX_YEAR = 2100

# Per-source extraction timeout in seconds
EXTRACTION_TIMEOUT = _env_number('NDVI_EXTRACTION_TIMEOUT', float, 300.0)

# Worker threads for per-source fan-out (None lets the executor decide)
MAX_WORKERS = _env_number('NDVI_MAX_WORKERS', int)

# Point footprints are buffered by this distance (meters)
DEFAULT_BUFFER_DISTANCE = 10000

# Download parameters for the Earth Engine archive
DEFAULT_CRS = 'EPSG:4326'
DOWNLOAD_TIMEOUT = 300
