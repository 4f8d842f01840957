"""
Satellite source table and availability policy.

Every per-sensor difference the NDVI pipeline cares about (bands, quality
band interpretation, reflectance scaling, scene cloud property, operational
lifetime) lives in the SATELLITES table below. The extraction code is one
generic algorithm parameterized by these records.
"""

from typing import Dict, Optional, Tuple, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, model_validator


# ============================================================================
# CLOUD MASK AND SCALING RULES
# ============================================================================

class ClassMaskRule(BaseModel):
    """Keep pixels whose scene-classification value is one of `keep`."""
    model_config = ConfigDict(frozen=True)

    band: str
    keep: Tuple[int, ...]

    def apply(self, quality: np.ndarray) -> np.ndarray:
        return np.isin(quality, self.keep)


class BitMaskRule(BaseModel):
    """Keep pixels where every listed QA bit is clear."""
    model_config = ConfigDict(frozen=True)

    band: str
    bits: Tuple[int, ...]

    def apply(self, quality: np.ndarray) -> np.ndarray:
        flags = 0
        for bit in self.bits:
            flags |= 1 << bit
        return (np.asarray(quality).astype(np.int64) & flags) == 0


class ReflectanceScale(BaseModel):
    """Linear DN -> surface reflectance conversion."""
    model_config = ConfigDict(frozen=True)

    multiply: float
    offset: float = 0.0

    def apply(self, dn: np.ndarray) -> np.ndarray:
        return np.asarray(dn, dtype=np.float64) * self.multiply + self.offset


# ============================================================================
# SOURCE RECORDS
# ============================================================================

class SatelliteSource(BaseModel):
    """Immutable description of one optical sensor product."""
    model_config = ConfigDict(frozen=True)

    identifier: str
    name: str
    collection_id: str
    nir_band: str
    red_band: str
    native_resolution: int = Field(..., gt=0)
    cloud_mask: Union[ClassMaskRule, BitMaskRule]
    reflectance_scale: ReflectanceScale
    cloud_cover_property: str
    operational_start_year: int
    operational_end_year: Optional[int] = None

    @model_validator(mode='after')
    def check_lifetime(self):
        if self.operational_end_year is not None \
                and self.operational_end_year < self.operational_start_year:
            raise ValueError(
                f"{self.identifier}: operational_end_year precedes operational_start_year"
            )
        return self

    @property
    def quality_band(self) -> str:
        return self.cloud_mask.band

    @property
    def bands(self) -> Tuple[str, str, str]:
        """Bands the extractor needs from the archive: NIR, RED, quality."""
        return (self.nir_band, self.red_band, self.quality_band)


# Landsat Collection 2 Level-2 surface reflectance shares one QA and scale
_LANDSAT_QA = BitMaskRule(band='QA_PIXEL', bits=(3,))
_LANDSAT_SCALE = ReflectanceScale(multiply=0.0000275, offset=-0.2)

SENTINEL_2 = SatelliteSource(
    identifier='S2',
    name='Sentinel-2',
    collection_id='COPERNICUS/S2_SR_HARMONIZED',
    nir_band='B8',
    red_band='B4',
    native_resolution=10,
    # 4 vegetation, 5 bare soil, 6 water, 7 unclassified, 11 snow/ice
    cloud_mask=ClassMaskRule(band='SCL', keep=(4, 5, 6, 7, 11)),
    reflectance_scale=ReflectanceScale(multiply=0.0001),
    cloud_cover_property='CLOUDY_PIXEL_PERCENTAGE',
    operational_start_year=2015,
)

LANDSAT_8 = SatelliteSource(
    identifier='L8',
    name='Landsat 8',
    collection_id='LANDSAT/LC08/C02/T1_L2',
    nir_band='SR_B5',
    red_band='SR_B4',
    native_resolution=30,
    cloud_mask=_LANDSAT_QA,
    reflectance_scale=_LANDSAT_SCALE,
    cloud_cover_property='CLOUD_COVER',
    operational_start_year=2013,
)

LANDSAT_7 = SatelliteSource(
    identifier='L7',
    name='Landsat 7',
    collection_id='LANDSAT/LE07/C02/T1_L2',
    nir_band='SR_B4',
    red_band='SR_B3',
    native_resolution=30,
    cloud_mask=_LANDSAT_QA,
    reflectance_scale=_LANDSAT_SCALE,
    cloud_cover_property='CLOUD_COVER',
    operational_start_year=1999,
    operational_end_year=2022,
)

LANDSAT_5 = SatelliteSource(
    identifier='L5',
    name='Landsat 5',
    collection_id='LANDSAT/LT05/C02/T1_L2',
    nir_band='SR_B4',
    red_band='SR_B3',
    native_resolution=30,
    cloud_mask=_LANDSAT_QA,
    reflectance_scale=_LANDSAT_SCALE,
    cloud_cover_property='CLOUD_COVER',
    operational_start_year=1984,
    # Inclusive: 2013 is still a usable year
    operational_end_year=2013,
)

SATELLITES: Dict[str, SatelliteSource] = {
    source.identifier: source
    for source in (SENTINEL_2, LANDSAT_8, LANDSAT_7, LANDSAT_5)
}


def get_source(source: Union[str, SatelliteSource]) -> SatelliteSource:
    """Resolve an identifier (e.g. 'L8') or pass a SatelliteSource through."""
    if isinstance(source, SatelliteSource):
        return source
    try:
        return SATELLITES[source]
    except KeyError:
        raise KeyError(
            f"Unknown satellite '{source}'. Known: {', '.join(SATELLITES)}"
        ) from None


# ============================================================================
# AVAILABILITY POLICY
# ============================================================================

def is_operational(source: Union[str, SatelliteSource], year: int) -> bool:
    """
    Was the sensor operating (and useful) during the given calendar year?

    Both ends of the operational window are inclusive; an open end year
    means the mission is ongoing.
    """
    record = get_source(source)
    if year < record.operational_start_year:
        return False
    if record.operational_end_year is not None and year > record.operational_end_year:
        return False
    return True


def operational_window(source: Union[str, SatelliteSource]) -> str:
    record = get_source(source)
    end = record.operational_end_year if record.operational_end_year is not None else 'present'
    return f"{record.operational_start_year}-{end}"
