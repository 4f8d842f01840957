"""
Shared fixtures: an in-memory raster archive and scene builders.
"""

import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from ndvi_composite.archive import ArchiveImage, RasterArchive
from ndvi_composite.footprint import parse_footprint


# Landsat Collection 2 Level-2: reflectance = DN * 0.0000275 - 0.2
LANDSAT_CLEAR = 0
LANDSAT_CLOUD = 1 << 3

# Sentinel-2 SCL classes
SCL_VEGETATION = 4
SCL_CLOUD_HIGH = 9
SCL_SNOW = 11


class FakeArchive(RasterArchive):
    """
    RasterArchive serving canned scenes per collection id.

    A collection mapped to an Exception instance raises it; a collection
    mapped to a callable is called with the query kwargs.
    """

    def __init__(self, scenes=None):
        self.scenes = scenes or {}
        self.calls = []

    def query(self, collection_id, footprint, date_range, cloud_threshold,
              cloud_property, bands, scale):
        self.calls.append({
            'collection_id': collection_id,
            'footprint': footprint,
            'date_range': date_range,
            'cloud_threshold': cloud_threshold,
            'cloud_property': cloud_property,
            'bands': tuple(bands),
            'scale': scale,
        })
        entry = self.scenes.get(collection_id, [])
        if isinstance(entry, Exception):
            raise entry
        if callable(entry):
            return entry()
        return list(entry)

    def queried(self, collection_id):
        return [call for call in self.calls if call['collection_id'] == collection_id]


def landsat_scene(image_id, nir_dn, red_dn, qa=LANDSAT_CLEAR, nir_band='SR_B4',
                  red_band='SR_B3', shape=(4, 4)):
    """Landsat scene with constant or array-valued bands."""
    return ArchiveImage(image_id, {
        nir_band: np.broadcast_to(np.asarray(nir_dn, dtype=np.float64), shape).copy(),
        red_band: np.broadcast_to(np.asarray(red_dn, dtype=np.float64), shape).copy(),
        'QA_PIXEL': np.broadcast_to(np.asarray(qa, dtype=np.int64), shape).copy(),
    })


def s2_scene(image_id, nir_dn, red_dn, scl=SCL_VEGETATION, shape=(4, 4)):
    return ArchiveImage(image_id, {
        'B8': np.broadcast_to(np.asarray(nir_dn, dtype=np.float64), shape).copy(),
        'B4': np.broadcast_to(np.asarray(red_dn, dtype=np.float64), shape).copy(),
        'SCL': np.broadcast_to(np.asarray(scl, dtype=np.int64), shape).copy(),
    })


def landsat_ndvi(nir_dn, red_dn):
    nir = nir_dn * 0.0000275 - 0.2
    red = red_dn * 0.0000275 - 0.2
    return (nir - red) / (nir + red)


def s2_ndvi(nir_dn, red_dn):
    nir = nir_dn * 0.0001
    red = red_dn * 0.0001
    return (nir - red) / (nir + red)


@pytest.fixture
def footprint():
    """10 km square around a point in southern France"""
    return parse_footprint((5.37, 43.29), buffer_distance=10000)


@pytest.fixture
def fake_archive():
    return FakeArchive()
