"""
Priority-ordered fusion of per-source NDVI rasters.

The composite starts from the highest-priority available raster; every
following raster only fills pixels that are still undefined. A pixel, once
filled, is never overwritten.
"""

import logging
from functools import reduce
from typing import List, NamedTuple, Optional, Sequence

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from .config import COMPOSITE_RESOLUTION
from .extraction import ExtractionResult
from .raster import Raster
from .satellites import SATELLITES

logger = logging.getLogger(__name__)

NO_DATA_LABEL = 'No data available'


class CompositeResult(BaseModel):
    """Fused NDVI raster and the sources that filled it."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    ndvi: Optional[Raster] = None
    resolution: float = COMPOSITE_RESOLUTION
    contributing_sources: List[str] = Field(default_factory=list)
    available: bool = False

    @property
    def source_label(self) -> str:
        """Provenance string, e.g. 'Sentinel-2 + Landsat 8'."""
        if not self.available or not self.contributing_sources:
            return NO_DATA_LABEL
        names = [
            SATELLITES[identifier].name if identifier in SATELLITES else identifier
            for identifier in self.contributing_sources
        ]
        return ' + '.join(names)


class _FillState(NamedTuple):
    values: np.ndarray
    valid: np.ndarray
    sources: tuple


def _fill(state: _FillState, result: ExtractionResult) -> _FillState:
    candidate = result.ndvi
    if candidate.shape != state.values.shape:
        logger.warning(
            "Skipping %s: raster has mismatched dimensions, expected %s, got %s",
            result.source_identifier, state.values.shape, candidate.shape
        )
        return state

    gaps = ~state.valid
    fill = gaps & candidate.valid
    if not fill.any():
        return state

    values = np.where(fill, candidate.values, state.values)
    return _FillState(values, state.valid | fill, state.sources + (result.source_identifier,))


def fuse(
    results: Sequence[ExtractionResult],
    resolution: float = COMPOSITE_RESOLUTION
) -> CompositeResult:
    """
    Merge per-source results, highest priority first, into one composite.

    The grid of the first available raster is the composite grid; later
    rasters on a different grid are skipped with a warning. A source is
    listed in `contributing_sources` only if it supplied at least one pixel.

    Parameters:
    -----------
    results : Sequence[ExtractionResult]
        Extraction results in priority order (unavailable entries are skipped)
    resolution : float
        Nominal resolution reported for the composite (default: 30)

    Returns:
    --------
    CompositeResult : available=False when no input is available
    """
    usable = [result for result in results if result.available]
    if not usable:
        return CompositeResult(resolution=resolution, available=False)

    first = usable[0]
    first_sources = (first.source_identifier,) if first.ndvi.valid.any() else ()
    if len(usable) == 1:
        return CompositeResult(
            ndvi=first.ndvi,
            resolution=resolution,
            contributing_sources=list(first_sources),
            available=True,
        )

    initial = _FillState(first.ndvi.values, first.ndvi.valid, first_sources)
    final = reduce(_fill, usable[1:], initial)

    return CompositeResult(
        ndvi=Raster(final.values, final.valid),
        resolution=resolution,
        contributing_sources=list(final.sources),
        available=True,
    )
