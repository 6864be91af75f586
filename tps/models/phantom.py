"""Density grid data model.

A density grid is the engine's input: a 2D map of scalar pixel values
(CT-like intensities, 0-255 range) of a patient cross-section.
Row index = y (downward), column index = x.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray


@dataclass(frozen=True, eq=False)
class DensityGrid:
    """Immutable 2D array of finite pixel values, shape (height, width).

    Negative values are accepted and classify as air.

    Attributes:
        data: Read-only float array [height, width].
    """
    data: NDArray[np.float64]

    def __post_init__(self) -> None:
        try:
            arr = np.array(self.data, dtype=np.float64)
        except ValueError as e:
            raise ValueError(f"Density grid must be rectangular: {e}") from None
        if arr.ndim != 2:
            raise ValueError(
                f"Density grid must be 2D, got {arr.ndim} dimension(s)"
            )
        if not np.isfinite(arr).all():
            raise ValueError("Density grid values must be finite")
        arr.setflags(write=False)
        object.__setattr__(self, "data", arr)

    @classmethod
    def from_rows(cls, rows: ArrayLike) -> DensityGrid:
        """Build a grid from nested row-major sequences."""
        return cls(np.asarray(rows, dtype=np.float64))

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    @property
    def shape(self) -> tuple[int, int]:
        return (self.height, self.width)
