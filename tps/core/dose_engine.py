"""Dose engine — 2D absorbed-dose calculation for external photon beams.

For each beam:
  1. Decompose the field into weighted pencil beams.
  2. Trace each pencil beam from upstream of the phantom to its surface.
  3. Ray-march from the surface with an adaptive step, accumulating
     water-equivalent depth and depositing
         dose = output · (1 - exp(-μ·step)) · PDD(d_w) · ISL
     at each tissue sample, then attenuating the remaining pencil output.
     Air pixels are marched through but never scored.

All beams are aimed at the isocenter (grid center).  Grid units: pixel.
Angles: gantry convention (0° = top, 90° = right).

Not reentrant: one calculate_dose() per engine instance at a time.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Callable

import numpy as np
from numpy.typing import ArrayLike, NDArray

from tps.constants import (
    DEFAULT_ENERGY_MV,
    DEFAULT_FIELD_WIDTH,
    FOV_DIAMETER_PIXELS,
    PHANTOM_AIR_VALUE,
    PHANTOM_DIAMETER_PIXELS,
    PHANTOM_WATER_VALUE,
)
from tps.core.depth_dose import DepthDoseModel
from tps.core.dose_cache import BoundedCache
from tps.core.material_classifier import MaterialMap
from tps.core.pencil_beam import PencilBeamDecomposer
from tps.core.surface_tracer import SurfaceContext, SurfaceTracer
from tps.models.beam import Beam
from tps.models.dose import DoseEngineConfig, DoseResult
from tps.models.material import MaterialClass
from tps.models.phantom import DensityGrid

logger = logging.getLogger(__name__)


class DoseEngine:
    """Pencil-beam dose calculation on a 2D density grid.

    Args:
        density_grid: Patient cross-section (DensityGrid or 2D array-like).
        config: Calculation parameters.  Defaults to DoseEngineConfig().
        depth_dose: Depth-dose model.  Defaults to DepthDoseModel().
    """

    def __init__(
        self,
        density_grid: DensityGrid | ArrayLike,
        config: DoseEngineConfig | None = None,
        depth_dose: DepthDoseModel | None = None,
    ) -> None:
        self._config = config or DoseEngineConfig()
        self._model = depth_dose or DepthDoseModel()
        self._decomposer = PencilBeamDecomposer(self._config.pencil_beam_spacing)
        self._beams: list[Beam] = []

        self._pdd_cache: BoundedCache[tuple, float] = BoundedCache(
            self._config.cache_capacity,
        )
        self._scatter_cache: BoundedCache[tuple, float] = BoundedCache(
            self._config.cache_capacity,
        )
        self.last_elapsed_seconds = 0.0

        self.set_density_grid(density_grid)

    # ------------------------------------------------------------------
    # Density grid
    # ------------------------------------------------------------------

    def set_density_grid(self, density_grid: DensityGrid | ArrayLike) -> None:
        """Replace the density grid; rebuilds the material map.

        Raises:
            ValueError: If the grid is not a rectangular 2D array of finite
                values.
        """
        if not isinstance(density_grid, DensityGrid):
            density_grid = DensityGrid(density_grid)
        self._density = density_grid
        self._materials = MaterialMap(density_grid)
        self._tracer = SurfaceTracer(
            self._materials, step=self._config.surface_search_step,
        )
        self._dose_grid = np.zeros(density_grid.shape, dtype=np.float64)

    @property
    def density_grid(self) -> DensityGrid:
        return self._density

    @property
    def material_map(self) -> MaterialMap:
        return self._materials

    @property
    def config(self) -> DoseEngineConfig:
        return self._config

    # ------------------------------------------------------------------
    # Beam list
    # ------------------------------------------------------------------

    def add_beam(
        self,
        angle: float,
        width: float = DEFAULT_FIELD_WIDTH,
        energy: float = DEFAULT_ENERGY_MV,
    ) -> None:
        """Append a beam; its handle is its index in get_beams()."""
        self._beams.append(Beam(angle, width, energy))

    def update_beam(
        self,
        index: int,
        angle: float,
        width: float = DEFAULT_FIELD_WIDTH,
        energy: float = DEFAULT_ENERGY_MV,
    ) -> None:
        """Replace the beam at *index*.  Out-of-range index is ignored."""
        if 0 <= index < len(self._beams):
            self._beams[index] = Beam(angle, width, energy)

    def remove_beam(self, index: int) -> None:
        """Remove the beam at *index*; later indices shift down by one.

        Out-of-range index is ignored.
        """
        if 0 <= index < len(self._beams):
            del self._beams[index]

    def clear_beams(self) -> None:
        """Remove all beams and zero the dose grid."""
        self._beams.clear()
        self._dose_grid.fill(0.0)

    def get_beams(self) -> list[Beam]:
        """Snapshot of the beam list."""
        return list(self._beams)

    # ------------------------------------------------------------------
    # Calculation
    # ------------------------------------------------------------------

    def calculate_dose(
        self,
        progress_callback: Callable[[int], None] | None = None,
    ) -> NDArray[np.float64]:
        """Recompute the dose grid from the current beam list.

        Args:
            progress_callback: Called with progress 0-100 after each beam.

        Returns:
            Normalized dose distribution (see get_dose_distribution).
        """
        t0 = time.perf_counter()

        self._dose_grid.fill(0.0)
        # Beam geometry may have changed since the last run
        self._pdd_cache.clear()
        self._scatter_cache.clear()

        n_beams = len(self._beams)
        logger.debug("Calculating dose for %d beams", n_beams)

        for i, beam in enumerate(self._beams):
            self._calculate_beam_dose(i, beam)
            if progress_callback:
                progress_callback(int((i + 1) / n_beams * 100))

        self.last_elapsed_seconds = time.perf_counter() - t0

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Depth profile along central axis:")
            for row, dose in self.central_axis_profile():
                logger.debug("  depth %d: dose %.6g", row, dose)
            logger.debug(
                "Dose calculation finished in %.3f s", self.last_elapsed_seconds,
            )

        return self.get_dose_distribution()

    def calculate_result(
        self,
        progress_callback: Callable[[int], None] | None = None,
    ) -> DoseResult:
        """Run calculate_dose() and package the result."""
        dose_map = self.calculate_dose(progress_callback)
        return DoseResult(
            dose_map=dose_map,
            max_raw_dose=self._max_raw_dose(),
            num_beams=len(self._beams),
            elapsed_seconds=self.last_elapsed_seconds,
        )

    def get_dose_distribution(self) -> NDArray[np.float64]:
        """Dose grid divided by its maximum, values in [0, 1].

        Returns an unscaled copy if the grid is all zero.
        """
        max_dose = self._max_raw_dose()
        if max_dose > 0:
            return self._dose_grid / max_dose
        return self._dose_grid.copy()

    def get_raw_dose(self) -> NDArray[np.float64]:
        """Copy of the un-normalized dose accumulator."""
        return self._dose_grid.copy()

    def central_axis_profile(self, step: int = 5) -> list[tuple[int, float]]:
        """Raw dose sampled every *step* rows along the central column."""
        height, width = self._dose_grid.shape
        if width == 0:
            return []
        cx = width // 2
        return [
            (row, float(self._dose_grid[row, cx]))
            for row in range(0, height, max(1, step))
        ]

    # ------------------------------------------------------------------
    # Per-beam calculation
    # ------------------------------------------------------------------

    def _max_raw_dose(self) -> float:
        if self._dose_grid.size == 0:
            return 0.0
        return float(np.max(self._dose_grid))

    def _calculate_beam_dose(self, index: int, beam: Beam) -> None:
        if not (
            math.isfinite(beam.angle_degrees)
            and math.isfinite(beam.field_width)
            and math.isfinite(beam.energy_mv)
            and beam.energy_mv > 0
            and beam.field_width >= 0
        ):
            logger.warning("Skipping beam %d with invalid parameters: %r", index, beam)
            return

        cfg = self._config
        height, width = self._dose_grid.shape
        iso_x = width / 2.0
        iso_y = height / 2.0

        angle = beam.ray_angle
        cos_a = math.cos(angle)
        sin_a = math.sin(angle)

        energy_factor = self._model.energy_attenuation_factor(beam.energy_mv)
        output_factor = self._model.output_factor(beam.field_width, beam.energy_mv)

        pencil_beams = self._decomposer.decompose(beam.field_width)
        search_depth = cfg.trace_start_distance + cfg.trace_search_extent
        max_extent = max(width, height)

        missed = 0
        for pb in pencil_beams:
            initial_output = beam.energy_mv * pb.fluence_weight * output_factor

            # Pencil-beam axis crossing the isocenter plane
            axis_x = iso_x - pb.lateral_offset * sin_a
            axis_y = iso_y + pb.lateral_offset * cos_a

            origin_x = axis_x - cfg.trace_start_distance * cos_a
            origin_y = axis_y - cfg.trace_start_distance * sin_a

            surface = self._tracer.trace_to_surface(
                origin_x, origin_y, angle, iso_x, iso_y, search_depth,
            )
            if surface is None:
                missed += 1
                continue

            self._march_pencil_beam(
                beam,
                surface,
                initial_output,
                energy_factor,
                max_depth=surface.distance_from_iso + max_extent,
            )

        logger.debug(
            "Beam %d (%.1f deg, %.1f px, %.1f MV): %d pencil beams, %d missed",
            index, beam.angle_degrees, beam.field_width, beam.energy_mv,
            len(pencil_beams), missed,
        )

    def _march_pencil_beam(
        self,
        beam: Beam,
        surface: SurfaceContext,
        initial_output: float,
        energy_factor: float,
        max_depth: float,
    ) -> None:
        """Ray-march one pencil beam from its surface entry point."""
        cfg = self._config
        materials = self._materials
        height, width = self._dose_grid.shape
        iso_x = width / 2.0
        iso_y = height / 2.0

        cos_a = math.cos(beam.ray_angle)
        sin_a = math.sin(beam.ray_angle)

        output = initial_output
        cutoff = initial_output * cfg.output_cutoff_fraction
        water_depth = 0.0
        geometric_depth = 0.0

        while geometric_depth < max_depth:
            x = surface.x + geometric_depth * cos_a
            y = surface.y + geometric_depth * sin_a

            cell = materials.cell_at(x, y)
            if cell is None:
                break
            ix, iy = cell
            material = materials.material_at(ix, iy)

            if materials.is_near_interface(x, y):
                step = cfg.step_interface
            elif material.density < cfg.low_density_threshold:
                step = cfg.step_air
            else:
                step = cfg.step_default

            mu = material.attenuation * energy_factor * cfg.pixel_to_cm
            water_depth += step * material.density

            pdd = self._model.percent_depth_dose(
                water_depth, beam.energy_mv, beam.field_width,
                cache=self._pdd_cache,
            )
            attenuation = 1.0 - math.exp(-mu * step)

            # Inverse-square relative to the isocenter plane at nominal SSD
            dx = x - iso_x
            dy = y - iso_y
            sign = 1.0 if dx * cos_a + dy * sin_a >= 0 else -1.0
            isl = self._model.inverse_square_factor(
                cfg.nominal_ssd + sign * math.hypot(dx, dy), cfg.nominal_ssd,
            )

            dose = output * attenuation * pdd * isl
            if dose > 0:
                self._deposit_dose(x, y, dose)
                if cfg.include_scatter:
                    self._deposit_scatter(x, y, dose, water_depth, beam)

            output *= 1.0 - attenuation
            if output < cutoff:
                break

            geometric_depth += step

    def _deposit_scatter(
        self,
        x: float,
        y: float,
        primary_dose: float,
        depth: float,
        beam: Beam,
    ) -> None:
        """Spread a fraction of *primary_dose* over the neighbourhood."""
        beam_angle = beam.ray_angle
        perp_angle = beam_angle + math.pi / 2.0
        cos_b, sin_b = math.cos(beam_angle), math.sin(beam_angle)
        cos_p, sin_p = math.cos(perp_angle), math.sin(perp_angle)

        radius = min(10.0, 3.0 + depth * 0.02)
        offsets = np.arange(-radius, radius + 1e-9, 1.0)

        for ddy in offsets:
            for ddx in offsets:
                if math.hypot(ddx, ddy) > radius:
                    continue
                lateral = abs(ddx * cos_p + ddy * sin_p)
                longitudinal = abs(ddx * cos_b + ddy * sin_b)

                kernel = self._model.scatter_kernel(
                    lateral, depth, beam.energy_mv, cache=self._scatter_cache,
                )
                # Higher energy → more forward-peaked scatter
                forward = 1.0 - 0.2 * (
                    1.0 - math.exp(-longitudinal / (5.0 + beam.energy_mv))
                )
                scatter_dose = primary_dose * kernel * forward
                if scatter_dose > 0:
                    self._deposit_dose(x + ddx, y + ddy, scatter_dose)

    def _deposit_dose(self, x: float, y: float, dose: float) -> None:
        """Add *dose* to the pixel under (x, y).

        Non-finite doses, points outside the grid and AIR pixels are
        skipped; dose is only scored in tissue.
        """
        if not math.isfinite(dose):
            return
        cell = self._materials.cell_at(x, y)
        if cell is None:
            return
        ix, iy = cell
        if self._materials.classes[iy, ix] == MaterialClass.AIR:
            return
        self._dose_grid[iy, ix] += dose

    # ------------------------------------------------------------------
    # Fixtures
    # ------------------------------------------------------------------

    @staticmethod
    def create_simple_phantom(width: int = 0, height: int = 0) -> DensityGrid:
        """Reference 400×400 phantom: 80 px water disk in air.

        *width* and *height* are ignored; the FOV is fixed.
        """
        size = FOV_DIAMETER_PIXELS
        center = size // 2
        yy, xx = np.ogrid[:size, :size]
        dist = np.sqrt((xx - center) ** 2 + (yy - center) ** 2)

        data = np.full((size, size), PHANTOM_AIR_VALUE, dtype=np.float64)
        data[dist < PHANTOM_DIAMETER_PIXELS / 2] = PHANTOM_WATER_VALUE
        return DensityGrid(data)
