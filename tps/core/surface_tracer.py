"""Surface search along a pencil-beam axis.

Marches from a point upstream of the phantom along the beam direction
and reports where the ray first meets tissue.

Two detection checks are applied at each sample:
  1. density above SURFACE_AIR_FACTOR × AIR density
  2. a transition from an air-like sample (density below
     AIR_LIKE_FACTOR × AIR density) to a sample passing check 1
Check 2 is subsumed by check 1 for the current thresholds; both are kept.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from tps.constants import AIR_LIKE_FACTOR, SURFACE_AIR_FACTOR, SURFACE_SEARCH_STEP
from tps.core.material_classifier import MaterialMap
from tps.models.material import AIR, Material


@dataclass
class SurfaceContext:
    """Beam entry point on the phantom surface.

    Attributes:
        x: Surface point X [px].
        y: Surface point Y [px].
        distance_from_iso: Euclidean distance to the isocenter [px].
        depth_along_axis: Distance from the trace origin [px].
        sign: +1 if the point lies beyond the isocenter plane along the
            beam direction (or on it), -1 if before.
    """
    x: float
    y: float
    distance_from_iso: float
    depth_along_axis: float
    sign: int


def _is_tissue(material: Material) -> bool:
    return material.density > AIR.density * SURFACE_AIR_FACTOR


def _is_air_like(material: Material) -> bool:
    return material.density < AIR.density * AIR_LIKE_FACTOR


class SurfaceTracer:
    """Finds the phantom surface along a ray.

    Args:
        material_map: Material map of the density grid.
        step: Sampling step along the ray [px].
    """

    def __init__(
        self,
        material_map: MaterialMap,
        step: float = SURFACE_SEARCH_STEP,
    ) -> None:
        self._map = material_map
        self._step = step

    def trace_to_surface(
        self,
        origin_x: float,
        origin_y: float,
        axis_angle: float,
        iso_x: float,
        iso_y: float,
        max_search_depth: float,
    ) -> SurfaceContext | None:
        """Trace from origin along *axis_angle* [radian] to the surface.

        Samples before the ray first enters the grid are skipped, so the
        origin may lie on or outside the grid edge.

        Returns:
            SurfaceContext, or None if the ray leaves the grid or the
            search depth is exhausted without meeting tissue.
        """
        cos_a = math.cos(axis_angle)
        sin_a = math.sin(axis_angle)

        previous: Material | None = None
        entered = False
        if not math.isfinite(max_search_depth) or max_search_depth <= 0:
            return None
        n_samples = int(math.ceil(max_search_depth / self._step))

        for i in range(n_samples):
            depth = i * self._step
            x = origin_x + depth * cos_a
            y = origin_y + depth * sin_a

            material = self._map.material_at_point(x, y)
            if material is None:
                if entered:
                    return None
                continue
            entered = True

            is_tissue = _is_tissue(material)
            is_transition = (
                previous is not None and _is_air_like(previous) and is_tissue
            )
            if is_tissue or is_transition:
                dx = x - iso_x
                dy = y - iso_y
                dot = dx * cos_a + dy * sin_a
                return SurfaceContext(
                    x=x,
                    y=y,
                    distance_from_iso=math.hypot(dx, dy),
                    depth_along_axis=depth,
                    sign=-1 if dot < 0 else 1,
                )
            previous = material

        return None
