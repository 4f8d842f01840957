"""
End-to-end NDVI compositing for a footprint and year.

Candidate sources are extracted concurrently (archive queries are I/O bound
and independent), then fused in priority order once every extraction has
resolved. A failure or timeout in one source degrades that source to
"unavailable" instead of failing the composite.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict

from .archive import ArchiveQueryError, RasterArchive
from .config import COMPOSITE_RESOLUTION, DEFAULT_CLOUD_THRESHOLD, EXTRACTION_TIMEOUT, MAX_WORKERS
from .extraction import ExtractionResult, ExtractionStatus, extract
from .footprint import Coordinates, parse_footprint
from .fusion import CompositeResult, fuse
from .satellites import SatelliteSource, get_source
from .selection import select_sources, validate_year

logger = logging.getLogger(__name__)

COMBINED = 'combined'


class CompositeReport(BaseModel):
    """Composite for one year plus the per-source diagnostics behind it."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    year: int
    source: str = COMBINED
    composite: CompositeResult
    extractions: List[ExtractionResult]

    @property
    def available(self) -> bool:
        return self.composite.available

    @property
    def source_label(self) -> str:
        return self.composite.source_label


def _guarded_extract(source: SatelliteSource, *args, **kwargs) -> ExtractionResult:
    """extract(), with any per-source failure reported as an unavailable result."""
    try:
        return extract(source, *args, **kwargs)
    except ArchiveQueryError as e:
        logger.warning("%s query failed: %s", source.name, e)
        return ExtractionResult.unavailable(
            source, ExtractionStatus.QUERY_FAILED, kwargs.get('scale'), error=str(e)
        )
    except Exception as e:
        logger.warning("%s extraction failed: %s", source.name, e)
        return ExtractionResult.unavailable(
            source, ExtractionStatus.FAILED, kwargs.get('scale'), error=str(e)
        )


def extract_sources(
    sources: List[SatelliteSource],
    footprint,
    year: int,
    archive: RasterArchive,
    cloud_threshold: float = DEFAULT_CLOUD_THRESHOLD,
    scale: Optional[float] = None,
    timeout: Optional[float] = EXTRACTION_TIMEOUT,
    max_workers: Optional[int] = MAX_WORKERS
) -> List[ExtractionResult]:
    """
    Extract every source concurrently and return results in input order.

    Returns only after every extraction has resolved or timed out.
    """
    if not sources:
        return []

    executor = ThreadPoolExecutor(max_workers=max_workers or len(sources))
    try:
        futures = [
            executor.submit(
                _guarded_extract, source, footprint, year, archive,
                cloud_threshold=cloud_threshold, scale=scale
            )
            for source in sources
        ]

        deadline = time.monotonic() + timeout if timeout is not None else None
        results = []
        for source, future in zip(sources, futures):
            remaining = max(0.0, deadline - time.monotonic()) if deadline is not None else None
            try:
                results.append(future.result(timeout=remaining))
            except FutureTimeoutError:
                future.cancel()
                logger.warning("%s extraction timed out after %ss", source.name, timeout)
                results.append(ExtractionResult.unavailable(
                    source, ExtractionStatus.TIMED_OUT, scale,
                    error=f"timed out after {timeout}s"
                ))
        return results
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def composite_ndvi(
    footprint: Coordinates,
    year: int,
    archive: RasterArchive,
    cloud_threshold: float = DEFAULT_CLOUD_THRESHOLD,
    timeout: Optional[float] = EXTRACTION_TIMEOUT,
    max_workers: Optional[int] = MAX_WORKERS,
    current_year: Optional[int] = None
) -> CompositeReport:
    """
    Build the gap-filled multi-satellite NDVI composite for a year.

    Parameters:
    -----------
    footprint : Coordinates
        Area of interest (Footprint, (lon, lat) point, polygon or GeoJSON)
    year : int
        Calendar year
    archive : RasterArchive
        Imagery archive to query
    cloud_threshold : float
        Maximum scene cloud cover percentage (default: 20.0)
    timeout : Optional[float]
        Seconds to wait for all extractions before treating the rest as unavailable
    max_workers : Optional[int]
        Worker threads (default: one per candidate source)
    current_year : Optional[int]
        Upper bound of the open-ended modern era (default: today's year)

    Returns:
    --------
    CompositeReport : Composite plus per-source extraction results

    Raises:
    -------
    ValueError
        If the footprint or year is malformed
    """
    footprint = parse_footprint(footprint)
    validate_year(year)

    candidates = select_sources(year, current_year)
    if not candidates:
        logger.info("Year %d is outside the range of available satellites", year)
        return CompositeReport(year=year, composite=fuse([]), extractions=[])

    logger.info("Satellites used for %d: %s", year, ', '.join(s.name for s in candidates))

    extractions = extract_sources(
        candidates, footprint, year, archive,
        cloud_threshold=cloud_threshold,
        scale=COMPOSITE_RESOLUTION,
        timeout=timeout,
        max_workers=max_workers,
    )
    composite = fuse(extractions, resolution=COMPOSITE_RESOLUTION)
    return CompositeReport(year=year, composite=composite, extractions=extractions)


def compute_ndvi(
    footprint: Coordinates,
    year: int,
    archive: RasterArchive,
    source: str = COMBINED,
    cloud_threshold: float = DEFAULT_CLOUD_THRESHOLD,
    timeout: Optional[float] = EXTRACTION_TIMEOUT,
    current_year: Optional[int] = None
) -> CompositeReport:
    """
    NDVI from one named satellite, or the multi-satellite composite.

    `source` is either 'combined' or a satellite identifier ('S2', 'L8', 'L7', 'L5').
    """
    if source.lower() == COMBINED:
        return composite_ndvi(
            footprint, year, archive,
            cloud_threshold=cloud_threshold,
            timeout=timeout,
            current_year=current_year,
        )

    record = get_source(source)
    footprint = parse_footprint(footprint)
    validate_year(year)

    extractions = extract_sources(
        [record], footprint, year, archive,
        cloud_threshold=cloud_threshold,
        timeout=timeout,
    )
    composite = fuse(extractions, resolution=record.native_resolution)
    return CompositeReport(
        year=year, source=record.identifier, composite=composite, extractions=extractions
    )


def composite_series(
    footprint: Coordinates,
    years: Iterable[int],
    archive: RasterArchive,
    **kwargs
) -> List[CompositeReport]:
    """Composite every year in `years`, in ascending year order."""
    footprint = parse_footprint(footprint)
    years = sorted(set(years))
    for year in years:
        validate_year(year)

    reports = []
    for year in years:
        report = composite_ndvi(footprint, year, archive, **kwargs)
        if not report.available:
            logger.info("No NDVI data for %d", year)
        reports.append(report)
    return reports
