"""Dose engine configuration and result data models."""

from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray

from tps.constants import (
    DEFAULT_CACHE_CAPACITY,
    DEFAULT_CONTOUR_LEVELS,
    FOV_DIAMETER_PIXELS,
    LOW_DENSITY_THRESHOLD,
    NOMINAL_SSD,
    OUTPUT_CUTOFF_FRACTION,
    PENCIL_BEAM_SPACING,
    PIXEL_TO_CM,
    STEP_AIR,
    STEP_DEFAULT,
    STEP_INTERFACE,
    SURFACE_SEARCH_STEP,
    TRACE_START_DISTANCE,
)


@dataclass
class DoseEngineConfig:
    """Dose calculation parameters.

    Attributes:
        pencil_beam_spacing: Lateral spacing of pencil beams [px].
        trace_start_distance: Distance upstream of the isocenter plane
            where the surface search starts [px].
        trace_search_extent: Search length beyond the start distance [px].
        surface_search_step: Sampling step of the surface search [px].
        step_default: Ray-march step inside tissue [px].
        step_interface: Ray-march step next to a material interface [px].
        step_air: Ray-march step in low-density regions [px].
        low_density_threshold: Density below which step_air is used.
        nominal_ssd: Source-to-surface distance for inverse-square [px].
        output_cutoff_fraction: Stop marching below this fraction of the
            initial pencil-beam output.
        pixel_to_cm: Pixel size [cm].
        cache_capacity: Entries per depth-dose / scatter cache.
        include_scatter: Deposit lateral scatter around each primary
            deposit (off by default).
    """
    pencil_beam_spacing: float = PENCIL_BEAM_SPACING
    trace_start_distance: float = TRACE_START_DISTANCE
    trace_search_extent: float = float(FOV_DIAMETER_PIXELS)
    surface_search_step: float = SURFACE_SEARCH_STEP
    step_default: float = STEP_DEFAULT
    step_interface: float = STEP_INTERFACE
    step_air: float = STEP_AIR
    low_density_threshold: float = LOW_DENSITY_THRESHOLD
    nominal_ssd: float = NOMINAL_SSD
    output_cutoff_fraction: float = OUTPUT_CUTOFF_FRACTION
    pixel_to_cm: float = PIXEL_TO_CM
    cache_capacity: int = DEFAULT_CACHE_CAPACITY
    include_scatter: bool = False


def _empty_dose_map() -> NDArray[np.float64]:
    return np.zeros((0, 0), dtype=np.float64)


@dataclass
class DoseResult:
    """Normalized 2D dose distribution.

    Attributes:
        dose_map: 2D array [height, width] of relative dose [0-1].
        max_raw_dose: Maximum of the raw accumulator before normalization.
        num_beams: Number of beams in the calculation.
        contour_levels: Standard isodose levels as fractions [0-1].
        elapsed_seconds: Computation time [s].
    """
    dose_map: NDArray[np.float64] = field(default_factory=_empty_dose_map)
    max_raw_dose: float = 0.0
    num_beams: int = 0
    contour_levels: list[float] = field(
        default_factory=lambda: list(DEFAULT_CONTOUR_LEVELS)
    )
    elapsed_seconds: float = 0.0
