"""
NDVI Composite

Multi-satellite NDVI compositing over a region of interest: per-year source
selection, per-sensor cloud masking and scaling, and priority-ordered
gap filling across Sentinel-2 and Landsat 5/7/8.
"""

from .satellites import (
    SATELLITES,
    SatelliteSource,
    get_source,
    is_operational,
)

from .selection import (
    select_sources,
    availability_summary,
)

from .extraction import (
    ExtractionResult,
    ExtractionStatus,
    extract,
)

from .fusion import (
    CompositeResult,
    fuse,
)

from .composite import (
    CompositeReport,
    composite_ndvi,
    compute_ndvi,
    composite_series,
)

from .archive import (
    ArchiveImage,
    ArchiveQueryError,
    EarthEngineArchive,
    RasterArchive,
)

from .footprint import Footprint, parse_footprint
from .raster import Raster

__all__ = [
    # Source table and policy
    'SATELLITES',
    'SatelliteSource',
    'get_source',
    'is_operational',
    'select_sources',
    'availability_summary',
    # Pipeline
    'ExtractionResult',
    'ExtractionStatus',
    'extract',
    'CompositeResult',
    'fuse',
    'CompositeReport',
    'composite_ndvi',
    'compute_ndvi',
    'composite_series',
    # Archive
    'ArchiveImage',
    'ArchiveQueryError',
    'EarthEngineArchive',
    'RasterArchive',
    # Values
    'Footprint',
    'parse_footprint',
    'Raster',
]

__version__ = '0.1.0'
