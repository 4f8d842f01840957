"""
Raster archive capability.

The NDVI pipeline only needs one thing from an imagery archive: given a
collection, a footprint, a date range and a scene cloud filter, return the
matching scenes as named 2-D band arrays on a common grid. RasterArchive
defines that contract; EarthEngineArchive implements it on Google Earth
Engine by downloading each scene's bands as GeoTIFFs.
"""

import io
import logging
import math
import zipfile
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Tuple

import ee
import numpy as np
import requests
from rasterio.io import MemoryFile

from .config import DEFAULT_CRS, DOWNLOAD_TIMEOUT, EE_PROJECT
from .footprint import METERS_PER_DEGREE, Footprint

logger = logging.getLogger(__name__)


class ArchiveQueryError(Exception):
    """The archive could not be queried (network, service or decoding error)."""


class ArchiveImage:
    """
    One scene returned by an archive query.

    `bands` maps band names to 2-D arrays of raw digital numbers. `masks`
    optionally carries the archive's own per-band validity (True = data
    present); bands without an entry are treated as fully present.
    """

    def __init__(
        self,
        image_id: str,
        bands: Dict[str, np.ndarray],
        masks: Optional[Dict[str, np.ndarray]] = None,
        properties: Optional[Dict] = None
    ):
        self.image_id = image_id
        self.bands = bands
        self.masks = masks or {}
        self.properties = properties or {}

    def band(self, name: str) -> np.ndarray:
        try:
            return self.bands[name]
        except KeyError:
            raise KeyError(f"Image {self.image_id} has no band '{name}'") from None

    def band_mask(self, name: str) -> np.ndarray:
        if name in self.masks:
            return np.asarray(self.masks[name], dtype=bool)
        return np.ones(np.shape(self.band(name)), dtype=bool)

    def __repr__(self) -> str:
        return f"ArchiveImage({self.image_id!r}, bands={sorted(self.bands)})"


class RasterArchive(ABC):
    """Interface for imagery archives consumed by the extractor."""

    @abstractmethod
    def query(
        self,
        collection_id: str,
        footprint: Footprint,
        date_range: Tuple[str, str],
        cloud_threshold: float,
        cloud_property: str,
        bands: Sequence[str],
        scale: float
    ) -> List[ArchiveImage]:
        """
        Return every scene of `collection_id` intersecting `footprint` within
        `date_range` (start inclusive, end exclusive, 'YYYY-MM-DD') whose
        `cloud_property` is below `cloud_threshold`.

        Raises ArchiveQueryError when the archive cannot answer.
        """
        raise NotImplementedError


# ============================================================================
# EARTH ENGINE
# ============================================================================

def initialize_earth_engine(project: Optional[str] = None) -> None:
    """
    Initialize the Earth Engine API.

    You'll need to run `earthengine authenticate` in your terminal first.
    """
    project = project or EE_PROJECT
    try:
        if project:
            ee.Initialize(project=project)
        else:
            ee.Initialize()
    except Exception as e:
        raise RuntimeError(
            "Earth Engine initialization failed. Please authenticate the Earth Engine "
            f"API by running 'earthengine authenticate' in your terminal. Details: {e}"
        ) from e


def _band_name_from_file(filename: str) -> str:
    """Extract band name from an EE download filename (e.g. "image.SR_B4.tif" -> "SR_B4")"""
    return filename.split('.')[-2]


def pixel_grid(bounds: Tuple[float, float, float, float], scale: float) -> Tuple[List[float], str]:
    """
    Fixed lon/lat download grid covering `bounds` at roughly `scale` meters.

    Returns an Earth Engine (crs_transform, dimensions) pair. Every scene of a
    query is downloaded on this grid, so all band arrays share one shape.
    """
    min_lon, min_lat, max_lon, max_lat = bounds
    center_lat = (min_lat + max_lat) / 2.0
    y_step = scale / METERS_PER_DEGREE
    x_step = scale / (METERS_PER_DEGREE * max(math.cos(math.radians(center_lat)), 1e-6))
    width = max(1, math.ceil((max_lon - min_lon) / x_step))
    height = max(1, math.ceil((max_lat - min_lat) / y_step))
    return [x_step, 0.0, min_lon, 0.0, -y_step, max_lat], f"{width}x{height}"


class EarthEngineArchive(RasterArchive):
    """
    RasterArchive backed by Google Earth Engine image collections.

    Scenes are downloaded on the lon/lat grid from pixel_grid(), so `crs`
    must be a geographic CRS.
    """

    def __init__(
        self,
        project: Optional[str] = None,
        crs: str = DEFAULT_CRS,
        download_timeout: int = DOWNLOAD_TIMEOUT,
        initialize: bool = True
    ):
        self.crs = crs
        self.download_timeout = download_timeout
        if initialize:
            initialize_earth_engine(project)

    def query(
        self,
        collection_id: str,
        footprint: Footprint,
        date_range: Tuple[str, str],
        cloud_threshold: float,
        cloud_property: str,
        bands: Sequence[str],
        scale: float
    ) -> List[ArchiveImage]:
        start_date, end_date = date_range
        try:
            region = footprint.to_ee_geometry()
            collection = (
                ee.ImageCollection(collection_id)
                .filterBounds(region)
                .filterDate(start_date, end_date)
                .filter(ee.Filter.lt(cloud_property, cloud_threshold))
                .select(list(bands))
                .sort('system:time_start')
            )

            size = collection.size().getInfo()
            logger.debug("%s: %d scenes between %s and %s", collection_id, size, start_date, end_date)
            if size == 0:
                return []

            image_list = collection.toList(size)
            grid = pixel_grid(footprint.bounds, scale)

            images = []
            for idx in range(size):
                image = ee.Image(image_list.get(idx))
                properties = image.getInfo().get('properties', {})
                image_id = properties.get('system:index', f'{collection_id}_{idx}')
                band_arrays, band_masks = self._download_bands(image, grid)

                missing = [name for name in bands if name not in band_arrays]
                if missing:
                    raise ArchiveQueryError(
                        f"Download for {image_id} is missing bands: {', '.join(missing)}"
                    )

                images.append(ArchiveImage(image_id, band_arrays, band_masks, properties))
            return images

        except ArchiveQueryError:
            raise
        except Exception as e:
            raise ArchiveQueryError(f"{collection_id} query failed: {e}") from e

    def _download_bands(
        self,
        image: ee.Image,
        grid: Tuple[List[float], str]
    ) -> Tuple[Dict[str, np.ndarray], Dict[str, np.ndarray]]:
        crs_transform, dimensions = grid
        url = image.getDownloadURL({
            'crs': self.crs,
            'crs_transform': crs_transform,
            'dimensions': dimensions
        })

        response = requests.get(url, timeout=self.download_timeout)
        response.raise_for_status()

        band_arrays = {}
        band_masks = {}

        # Earth Engine returns a zip file with separate .tif for each band
        with zipfile.ZipFile(io.BytesIO(response.content)) as z:
            tif_files = [name for name in z.namelist() if name.endswith('.tif')]
            if not tif_files:
                raise ArchiveQueryError("No .tif files found in downloaded zip")

            for tif_name in tif_files:
                with MemoryFile(z.read(tif_name)) as memfile:
                    with memfile.open() as src:
                        data = src.read(1, masked=True)
                band_name = _band_name_from_file(tif_name)
                band_arrays[band_name] = np.ma.getdata(data)
                band_masks[band_name] = ~np.ma.getmaskarray(data)

        return band_arrays, band_masks
