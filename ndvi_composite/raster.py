"""
Raster value type and the pixelwise operations used by the NDVI pipeline.

A Raster is a 2-D float grid paired with a boolean validity mask of the same
shape. Rasters are immutable: both arrays are flagged read-only and every
operation returns a new Raster.
"""

import numpy as np
from typing import Optional, Sequence, Tuple


class Raster:
    """2-D gridded field with a per-pixel validity mask."""

    __slots__ = ('_values', '_valid')

    def __init__(self, values: np.ndarray, valid: Optional[np.ndarray] = None):
        values = np.array(values, dtype=np.float64)
        if values.ndim != 2:
            raise ValueError(f"Raster values must be 2-D, got {values.ndim}-D")

        if valid is None:
            valid = np.isfinite(values)
        else:
            valid = np.array(valid, dtype=bool)
            if valid.shape != values.shape:
                raise ValueError(
                    f"Raster has mismatched dimensions: "
                    f"values {values.shape}, mask {valid.shape}"
                )
            valid = valid & np.isfinite(values)

        # Undefined pixels always carry NaN
        values[~valid] = np.nan

        values.flags.writeable = False
        valid.flags.writeable = False
        self._values = values
        self._valid = valid

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def valid(self) -> np.ndarray:
        return self._valid

    @property
    def shape(self) -> Tuple[int, int]:
        return self._values.shape

    @property
    def valid_count(self) -> int:
        return int(self._valid.sum())

    @property
    def valid_fraction(self) -> float:
        if self._valid.size == 0:
            return 0.0
        return self.valid_count / self._valid.size

    @classmethod
    def from_masked(cls, array: np.ma.MaskedArray) -> 'Raster':
        """Build a Raster from a numpy masked array (masked = invalid)."""
        data = np.ma.getdata(array).astype(np.float64)
        return cls(data, ~np.ma.getmaskarray(array))

    def to_masked(self) -> np.ma.MaskedArray:
        return np.ma.masked_array(self._values, mask=~self._valid)

    def equals(self, other: 'Raster') -> bool:
        """True when both rasters share a mask and agree on every valid pixel."""
        if self.shape != other.shape:
            return False
        if not np.array_equal(self._valid, other._valid):
            return False
        return bool(np.array_equal(self._values[self._valid], other._values[other._valid]))

    def __repr__(self) -> str:
        return f"Raster(shape={self.shape}, valid={self.valid_count}/{self._valid.size})"


def masked_median(layers: Sequence[np.ndarray], masks: Sequence[np.ndarray]) -> Raster:
    """
    Pixelwise median across a temporal stack, ignoring masked samples.

    Parameters:
    -----------
    layers : Sequence[np.ndarray]
        One 2-D array per image, all with the same shape
    masks : Sequence[np.ndarray]
        Matching boolean validity masks (True = usable pixel)

    Returns:
    --------
    Raster : Median raster. A pixel is valid iff at least one image is valid there.

    Raises:
    -------
    ValueError
        If the stack is empty or the layers have mismatched dimensions
    """
    if not layers:
        raise ValueError("layers cannot be empty")
    if len(layers) != len(masks):
        raise ValueError("layers and masks must have the same length")

    ref_shape = np.shape(layers[0])
    for idx, (layer, mask) in enumerate(zip(layers, masks)):
        if np.shape(layer) != ref_shape or np.shape(mask) != ref_shape:
            raise ValueError(
                f"Image {idx} has mismatched dimensions: "
                f"expected {ref_shape}, got {np.shape(layer)}"
            )

    data = np.stack([np.asarray(layer, dtype=np.float64) for layer in layers], axis=0)
    valid = np.stack([np.asarray(mask, dtype=bool) for mask in masks], axis=0) & np.isfinite(data)

    stack = np.ma.masked_array(data, mask=~valid)
    median = np.ma.median(stack, axis=0)
    return Raster.from_masked(np.ma.masked_array(median, mask=~valid.any(axis=0)))


def normalized_difference(first: Raster, second: Raster) -> Raster:
    """
    (first - second) / (first + second), e.g. NDVI from NIR and RED.

    Pixels invalid in either input, or with a zero denominator, are invalid.
    """
    if first.shape != second.shape:
        raise ValueError(
            f"Bands have mismatched dimensions: {first.shape} vs {second.shape}"
        )

    denominator = first.values + second.values
    valid = first.valid & second.valid & (denominator != 0)

    ndvi = np.full(first.shape, np.nan)
    np.divide(first.values - second.values, denominator, out=ndvi, where=valid)
    return Raster(ndvi, valid)
