"""
Per-source NDVI extraction.

extract() is a single generic algorithm driven by a SatelliteSource record:
availability short-circuit, archive query with a scene cloud filter,
per-pixel cloud masking, reflectance scaling, temporal median, NDVI.
"""

import logging
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, model_validator

from .archive import RasterArchive
from .config import DEFAULT_CLOUD_THRESHOLD
from .footprint import Footprint
from .raster import Raster, masked_median, normalized_difference
from .satellites import SatelliteSource, get_source, is_operational

logger = logging.getLogger(__name__)


class ExtractionStatus(str, Enum):
    """Outcome of one (source, year) extraction."""
    AVAILABLE = "available"
    NOT_OPERATIONAL = "not_operational"
    NO_IMAGES = "no_images"
    QUERY_FAILED = "query_failed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


class ExtractionResult(BaseModel):
    """NDVI for one satellite and year, or the reason there is none."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    source_identifier: str
    ndvi: Optional[Raster] = None
    pixel_resolution: float
    available: bool
    contributing_image_count: int = 0
    status: ExtractionStatus
    error: Optional[str] = None

    @model_validator(mode='after')
    def check_availability(self):
        has_data = self.ndvi is not None and self.contributing_image_count > 0
        if self.available != has_data:
            raise ValueError(
                "available must be true exactly when an NDVI raster built from "
                "at least one image is present"
            )
        if self.available != (self.status == ExtractionStatus.AVAILABLE):
            raise ValueError(f"status {self.status.value} contradicts available={self.available}")
        return self

    @classmethod
    def unavailable(
        cls,
        source: SatelliteSource,
        status: ExtractionStatus,
        resolution: Optional[float] = None,
        error: Optional[str] = None
    ) -> 'ExtractionResult':
        return cls(
            source_identifier=source.identifier,
            pixel_resolution=resolution if resolution is not None else source.native_resolution,
            available=False,
            status=status,
            error=error,
        )


def calendar_year_range(year: int):
    """Date range covering one calendar year (end exclusive)."""
    return f"{year}-01-01", f"{year + 1}-01-01"


def extract(
    source: Union[str, SatelliteSource],
    footprint: Footprint,
    year: int,
    archive: RasterArchive,
    cloud_threshold: float = DEFAULT_CLOUD_THRESHOLD,
    scale: Optional[float] = None
) -> ExtractionResult:
    """
    Compute the annual median NDVI of one satellite over a footprint.

    Parameters:
    -----------
    source : Union[str, SatelliteSource]
        Satellite record or identifier (e.g. 'L8')
    footprint : Footprint
        Area of interest
    year : int
        Calendar year
    archive : RasterArchive
        Imagery archive to query
    cloud_threshold : float
        Maximum scene cloud cover percentage (default: 20.0)
    scale : Optional[float]
        Sampling resolution in meters (default: the source's native resolution)

    Returns:
    --------
    ExtractionResult : available=False when the sensor was not operating or no
                       scene passed the cloud filter.

    Raises:
    -------
    ArchiveQueryError
        If the archive cannot be queried
    ValueError
        If the returned scenes do not share a grid
    """
    source = get_source(source)
    scale = scale if scale is not None else source.native_resolution

    if not is_operational(source, year):
        logger.debug("%s was not operational in %d", source.name, year)
        return ExtractionResult.unavailable(source, ExtractionStatus.NOT_OPERATIONAL, scale)

    images = archive.query(
        collection_id=source.collection_id,
        footprint=footprint,
        date_range=calendar_year_range(year),
        cloud_threshold=cloud_threshold,
        cloud_property=source.cloud_cover_property,
        bands=source.bands,
        scale=scale,
    )

    logger.info("%s images available for %d: %d", source.name, year, len(images))
    if not images:
        return ExtractionResult.unavailable(source, ExtractionStatus.NO_IMAGES, scale)

    nir_layers, nir_masks = [], []
    red_layers, red_masks = [], []

    for image in images:
        quality = image.band(source.quality_band)
        clear = source.cloud_mask.apply(quality) & image.band_mask(source.quality_band)

        nir_layers.append(source.reflectance_scale.apply(image.band(source.nir_band)))
        nir_masks.append(clear & image.band_mask(source.nir_band))
        red_layers.append(source.reflectance_scale.apply(image.band(source.red_band)))
        red_masks.append(clear & image.band_mask(source.red_band))

    nir = masked_median(nir_layers, nir_masks)
    red = masked_median(red_layers, red_masks)
    ndvi: Raster = normalized_difference(nir, red)

    return ExtractionResult(
        source_identifier=source.identifier,
        ndvi=ndvi,
        pixel_resolution=scale,
        available=True,
        contributing_image_count=len(images),
        status=ExtractionStatus.AVAILABLE,
    )
