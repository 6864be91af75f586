"""Material classification of density-grid pixels.

Maps CT-like pixel values (0-255) to five discrete tissue classes:

    value < 10   → AIR
    value < 60   → FAT
    value < 120  → WATER
    value < 200  → SOFT_TISSUE
    otherwise    → BONE

The chain is total: negative values map to AIR, anything above range
(and NaN, which fails every comparison) falls through to BONE.
"""

from __future__ import annotations

import math

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.ndimage import maximum_filter, minimum_filter

from tps.constants import (
    AIR_THRESHOLD,
    FAT_THRESHOLD,
    SOFT_TISSUE_THRESHOLD,
    WATER_THRESHOLD,
)
from tps.models.material import MATERIALS, Material, MaterialClass
from tps.models.phantom import DensityGrid

_THRESHOLDS = np.array(
    [AIR_THRESHOLD, FAT_THRESHOLD, WATER_THRESHOLD, SOFT_TISSUE_THRESHOLD],
    dtype=np.float64,
)


def classify_pixel(value: float) -> Material:
    """Material for a single pixel value."""
    if value < AIR_THRESHOLD:
        return MATERIALS[MaterialClass.AIR]
    if value < FAT_THRESHOLD:
        return MATERIALS[MaterialClass.FAT]
    if value < WATER_THRESHOLD:
        return MATERIALS[MaterialClass.WATER]
    if value < SOFT_TISSUE_THRESHOLD:
        return MATERIALS[MaterialClass.SOFT_TISSUE]
    return MATERIALS[MaterialClass.BONE]


def classify_grid(values: ArrayLike) -> NDArray[np.int8]:
    """Vectorized classify_pixel → MaterialClass index per cell."""
    arr = np.asarray(values, dtype=np.float64)
    # digitize puts NaN past the last bin, same as the scalar chain
    return np.digitize(arr, _THRESHOLDS).astype(np.int8)


class MaterialMap:
    """Per-pixel tissue classes of one density grid.

    Built once per density grid and immutable afterwards.

    Args:
        grid: Source density grid.
    """

    def __init__(self, grid: DensityGrid) -> None:
        self._width = grid.width
        self._height = grid.height
        self._classes = classify_grid(grid.data)
        self._classes.setflags(write=False)

        densities = np.array([m.density for m in MATERIALS])
        attenuations = np.array([m.attenuation for m in MATERIALS])
        self.density = densities[self._classes]
        self.attenuation = attenuations[self._classes]

        # A cell is at an interface if any in-bounds 8-neighbour differs.
        # 'nearest' padding only repeats values already inside the 3x3 window.
        if self._classes.size:
            self.interface_mask = (
                maximum_filter(self._classes, size=3, mode="nearest")
                != minimum_filter(self._classes, size=3, mode="nearest")
            )
        else:
            self.interface_mask = np.zeros(self._classes.shape, dtype=bool)

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def classes(self) -> NDArray[np.int8]:
        return self._classes

    def in_bounds(self, ix: int, iy: int) -> bool:
        return 0 <= ix < self._width and 0 <= iy < self._height

    def material_at(self, ix: int, iy: int) -> Material:
        """Material of cell (ix, iy).  Caller checks bounds."""
        return MATERIALS[self._classes[iy, ix]]

    def cell_at(self, x: float, y: float) -> tuple[int, int] | None:
        """Integer cell under a continuous point, or None outside the grid."""
        if not (math.isfinite(x) and math.isfinite(y)):
            return None
        ix = math.floor(x)
        iy = math.floor(y)
        if not self.in_bounds(ix, iy):
            return None
        return ix, iy

    def material_at_point(self, x: float, y: float) -> Material | None:
        """Material under a continuous point, or None outside the grid."""
        cell = self.cell_at(x, y)
        if cell is None:
            return None
        return MATERIALS[self._classes[cell[1], cell[0]]]

    def is_near_interface(self, x: float, y: float) -> bool:
        """True if the cell under (x, y) borders a different material."""
        cell = self.cell_at(x, y)
        if cell is None:
            return False
        return bool(self.interface_mask[cell[1], cell[0]])
