"""
Tests for the raster archive layer (Earth Engine adapter mocked)
"""

import io
import math
import zipfile
from unittest.mock import Mock, patch

import numpy as np
import pytest
import requests
from rasterio.io import MemoryFile
from rasterio.transform import from_bounds

from ndvi_composite.archive import (
    ArchiveImage,
    ArchiveQueryError,
    EarthEngineArchive,
    RasterArchive,
    _band_name_from_file,
    initialize_earth_engine,
    pixel_grid,
)


# ============================================================================
# FIXTURES
# ============================================================================

def _geotiff_bytes(data, nodata=None):
    """Single-band in-memory GeoTIFF"""
    height, width = data.shape
    with MemoryFile() as memfile:
        with memfile.open(
            driver='GTiff',
            height=height,
            width=width,
            count=1,
            dtype=data.dtype,
            crs='EPSG:4326',
            transform=from_bounds(5.0, 43.0, 5.1, 43.1, width, height),
            nodata=nodata,
        ) as dst:
            dst.write(data, 1)
        return bytes(memfile.getbuffer())


def _zip_bytes(files):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture
def mock_ee():
    """Mock Earth Engine module"""
    with patch('ndvi_composite.archive.ee') as mock:
        yield mock


@pytest.fixture
def mock_footprint():
    """Footprint whose EE geometry is a mock"""
    geometry = Mock()
    geometry.getInfo.return_value = {
        'coordinates': [[[5.0, 43.0], [5.1, 43.0], [5.1, 43.1], [5.0, 43.1], [5.0, 43.0]]]
    }
    footprint = Mock()
    footprint.to_ee_geometry.return_value = geometry
    footprint.bounds = (5.0, 43.0, 5.1, 43.1)
    return footprint


@pytest.fixture
def mock_collection():
    """Mock Earth Engine ImageCollection with one scene"""
    mock_coll = Mock()
    mock_coll.filterBounds.return_value = mock_coll
    mock_coll.filterDate.return_value = mock_coll
    mock_coll.filter.return_value = mock_coll
    mock_coll.select.return_value = mock_coll
    mock_coll.sort.return_value = mock_coll
    mock_coll.size.return_value.getInfo.return_value = 1
    return mock_coll


@pytest.fixture
def mock_scene(mock_ee, mock_collection):
    image = Mock()
    image.getInfo.return_value = {
        'properties': {'system:index': 'LC08_196030_20160705', 'CLOUD_COVER': 3.2}
    }
    image.getDownloadURL.return_value = 'https://earthengine.test/download'
    mock_ee.ImageCollection.return_value = mock_collection
    mock_ee.Image.return_value = image
    return image


def _query(archive, footprint, bands=('SR_B5', 'SR_B4', 'QA_PIXEL')):
    return archive.query(
        collection_id='LANDSAT/LC08/C02/T1_L2',
        footprint=footprint,
        date_range=('2016-01-01', '2017-01-01'),
        cloud_threshold=20.0,
        cloud_property='CLOUD_COVER',
        bands=bands,
        scale=30,
    )


# ============================================================================
# TESTS FOR EARTH ENGINE ARCHIVE
# ============================================================================

class TestEarthEngineArchive:
    """Tests for EarthEngineArchive.query"""

    def test_collection_filters(self, mock_ee, mock_collection, mock_footprint):
        """Test bounds, date, cloud filter and band selection"""
        mock_collection.size.return_value.getInfo.return_value = 0
        mock_ee.ImageCollection.return_value = mock_collection
        archive = EarthEngineArchive(initialize=False)

        result = _query(archive, mock_footprint)

        assert result == []
        mock_ee.ImageCollection.assert_called_once_with('LANDSAT/LC08/C02/T1_L2')
        mock_collection.filterDate.assert_called_once_with('2016-01-01', '2017-01-01')
        mock_ee.Filter.lt.assert_called_once_with('CLOUD_COVER', 20.0)
        mock_collection.select.assert_called_once_with(['SR_B5', 'SR_B4', 'QA_PIXEL'])
        mock_collection.toList.assert_not_called()

    @patch('ndvi_composite.archive.requests.get')
    def test_scene_download_decoded(self, mock_get, mock_scene, mock_footprint):
        """Test that each band GeoTIFF becomes a named array with its nodata mask"""
        nir = np.full((3, 3), 20000, dtype=np.uint16)
        nir[0, 0] = 0
        red = np.full((3, 3), 10000, dtype=np.uint16)
        qa = np.zeros((3, 3), dtype=np.uint16)

        response = Mock()
        response.content = _zip_bytes({
            'LC08.SR_B5.tif': _geotiff_bytes(nir, nodata=0),
            'LC08.SR_B4.tif': _geotiff_bytes(red, nodata=0),
            'LC08.QA_PIXEL.tif': _geotiff_bytes(qa),
        })
        mock_get.return_value = response

        archive = EarthEngineArchive(initialize=False)
        images = _query(archive, mock_footprint)

        assert len(images) == 1
        image = images[0]
        assert image.image_id == 'LC08_196030_20160705'
        assert image.properties['CLOUD_COVER'] == 3.2
        assert image.band('SR_B5')[1, 1] == 20000
        assert image.band('SR_B4').shape == (3, 3)
        assert not image.band_mask('SR_B5')[0, 0]
        assert image.band_mask('SR_B5')[1, 1]
        assert image.band_mask('QA_PIXEL').all()

        crs_transform, dimensions = pixel_grid((5.0, 43.0, 5.1, 43.1), 30)
        mock_scene.getDownloadURL.assert_called_once_with({
            'crs': 'EPSG:4326',
            'crs_transform': crs_transform,
            'dimensions': dimensions,
        })

    @patch('ndvi_composite.archive.requests.get')
    def test_every_scene_downloaded_on_one_grid(self, mock_get, mock_scene, mock_collection, mock_footprint):
        """Test that all scenes of a query share the same pinned grid"""
        mock_collection.size.return_value.getInfo.return_value = 3
        response = Mock()
        response.content = _zip_bytes({
            f'LC08.{band}.tif': _geotiff_bytes(np.ones((2, 2), dtype=np.uint16))
            for band in ('SR_B5', 'SR_B4', 'QA_PIXEL')
        })
        mock_get.return_value = response

        archive = EarthEngineArchive(initialize=False)
        _query(archive, mock_footprint)

        calls = mock_scene.getDownloadURL.call_args_list
        assert len(calls) == 3
        params = [call.args[0] for call in calls]
        assert all(p == params[0] for p in params)
        assert 'scale' not in params[0]
        assert 'region' not in params[0]

    @patch('ndvi_composite.archive.requests.get')
    def test_http_error_raises_query_error(self, mock_get, mock_scene, mock_footprint):
        response = Mock()
        response.raise_for_status.side_effect = requests.HTTPError("503 Server Error")
        mock_get.return_value = response

        archive = EarthEngineArchive(initialize=False)

        with pytest.raises(ArchiveQueryError, match="503"):
            _query(archive, mock_footprint)

    @patch('ndvi_composite.archive.requests.get')
    def test_missing_band_raises_query_error(self, mock_get, mock_scene, mock_footprint):
        response = Mock()
        response.content = _zip_bytes({
            'LC08.SR_B5.tif': _geotiff_bytes(np.ones((2, 2), dtype=np.uint16)),
        })
        mock_get.return_value = response

        archive = EarthEngineArchive(initialize=False)

        with pytest.raises(ArchiveQueryError, match="missing bands: SR_B4, QA_PIXEL"):
            _query(archive, mock_footprint)

    @patch('ndvi_composite.archive.requests.get')
    def test_empty_zip_raises_query_error(self, mock_get, mock_scene, mock_footprint):
        response = Mock()
        response.content = _zip_bytes({'readme.txt': b'nothing'})
        mock_get.return_value = response

        archive = EarthEngineArchive(initialize=False)

        with pytest.raises(ArchiveQueryError, match="No .tif files"):
            _query(archive, mock_footprint)

    def test_ee_error_raises_query_error(self, mock_ee, mock_collection, mock_footprint):
        mock_collection.size.return_value.getInfo.side_effect = Exception("Computation timed out")
        mock_ee.ImageCollection.return_value = mock_collection
        archive = EarthEngineArchive(initialize=False)

        with pytest.raises(ArchiveQueryError, match="Computation timed out"):
            _query(archive, mock_footprint)


class TestInitialize:
    """Tests for Earth Engine initialization"""

    def test_initialize_with_project(self, mock_ee):
        initialize_earth_engine('my-project')
        mock_ee.Initialize.assert_called_once_with(project='my-project')

    def test_archive_initializes_by_default(self, mock_ee):
        EarthEngineArchive(project='my-project')
        mock_ee.Initialize.assert_called_once_with(project='my-project')

    def test_initialize_failure(self, mock_ee):
        mock_ee.Initialize.side_effect = Exception("Please authorize access")

        with pytest.raises(RuntimeError, match="earthengine authenticate"):
            initialize_earth_engine('my-project')


# ============================================================================
# TESTS FOR PIXEL GRID
# ============================================================================

class TestPixelGrid:
    """Tests for pixel_grid function"""

    def test_grid_covers_bounds(self):
        crs_transform, dimensions = pixel_grid((5.0, 43.0, 5.1, 43.1), 30)
        x_step, _, origin_x, _, neg_y_step, origin_y = crs_transform
        width, height = (int(n) for n in dimensions.split('x'))

        assert (origin_x, origin_y) == (5.0, 43.1)
        assert neg_y_step < 0 < x_step
        assert width * x_step >= 0.1
        assert height * -neg_y_step >= 0.1
        assert height == math.ceil(0.1 / (30 / 111320.0))

    def test_same_bounds_same_grid(self):
        bounds = (5.28, 43.2, 5.46, 43.38)
        assert pixel_grid(bounds, 30) == pixel_grid(bounds, 30)

    def test_coarser_scale_fewer_pixels(self):
        bounds = (5.0, 43.0, 5.1, 43.1)
        _, fine = pixel_grid(bounds, 10)
        _, coarse = pixel_grid(bounds, 30)
        assert int(fine.split('x')[0]) > int(coarse.split('x')[0])

    def test_tiny_footprint_has_one_pixel(self):
        _, dimensions = pixel_grid((5.0, 43.0, 5.00001, 43.00001), 30)
        assert dimensions == '1x1'


# ============================================================================
# TESTS FOR ARCHIVE IMAGE
# ============================================================================

class TestArchiveImage:
    """Tests for ArchiveImage"""

    def test_default_mask_is_all_valid(self):
        image = ArchiveImage('a', {'B4': np.zeros((2, 3))})
        assert image.band_mask('B4').shape == (2, 3)
        assert image.band_mask('B4').all()

    def test_missing_band(self):
        image = ArchiveImage('a', {'B4': np.zeros((2, 2))})
        with pytest.raises(KeyError, match="no band 'B8'"):
            image.band('B8')

    def test_band_name_from_file(self):
        assert _band_name_from_file('LC08_196030_20160705.SR_B5.tif') == 'SR_B5'

    def test_base_archive_is_abstract(self):
        with pytest.raises(TypeError):
            RasterArchive()


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
