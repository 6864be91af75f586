"""Depth-dose model for megavoltage photon beams.

Empirical central-axis model used by the dose engine:

    dmax(E, FS)      tabulated at 6/10/15/18 MV, field-size corrected
    PDD(d, E, FS)    linear build-up to dmax, exponential falloff beyond
    μ_eff(E, FS)     tabulated at 6/10/15/18 MV, sigmoid field-size factor
    OF(FS)           collimator scatter × phantom scatter
    K(r, d, E)       dual-Gaussian lateral scatter kernel

Depth and field size are in depth-table units (grid units treated as
mm, see tps.constants.DEPTH_TABLE_CM_PER_UNIT).  Energies in MV.

Reference: Khan, The Physics of Radiation Therapy — PDD and
output-factor definitions; values here are simplified for teaching.
"""

from __future__ import annotations

import logging
import math

import numpy as np

from tps.core.dose_cache import BoundedCache
from tps.core.units import per_cm_to_per_table_unit

logger = logging.getLogger(__name__)

# dmax for a 10x10 cm² field [table units ≈ mm]
_DMAX_TABLE: dict[float, float] = {
    6.0: 15.0,
    10.0: 25.0,
    15.0: 30.0,
    18.0: 35.0,
}

# Effective water attenuation for a 10x10 cm² field [cm⁻¹]
_MU_EFF_TABLE: dict[float, float] = {
    6.0: 0.0471,
    10.0: 0.0378,
    15.0: 0.0328,
    18.0: 0.0295,
}

_DMAX_E = np.array(list(_DMAX_TABLE.keys()))
_DMAX_D = np.array(list(_DMAX_TABLE.values()))
_MU_E = np.array(list(_MU_EFF_TABLE.keys()))
_MU_V = np.array(list(_MU_EFF_TABLE.values()))

ENTRANCE_DOSE_FRACTION = 0.05
HARDENING_PER_UNIT = 0.0003
REFERENCE_ENERGY_MV = 6.0
SMALL_FIELD_LIMIT = 50.0  # below this, dmax shifts toward the surface
REFERENCE_FIELD_SIZE = 100.0  # 10 cm


class DepthDoseModel:
    """Central-axis depth-dose, output factor and scatter kernel model.

    Stateless; callers own any caches and pass them in.
    """

    # ------------------------------------------------------------------
    # Depth of maximum dose
    # ------------------------------------------------------------------

    def depth_of_maximum_dose(
        self,
        energy_mv: float,
        field_size: float = REFERENCE_FIELD_SIZE,
    ) -> float:
        """Depth of maximum dose [table units], ≥ 1.

        Linear through the origin below 6 MV, linear with the 15→18 MV
        slope above 18 MV, piecewise-linear between anchors.  Fields
        smaller than 5 cm reduce dmax by up to 20 %.
        """
        e_lo, e_hi = float(_DMAX_E[0]), float(_DMAX_E[-1])
        if energy_mv < e_lo:
            dmax = _DMAX_D[0] * (energy_mv / e_lo)
        elif energy_mv > e_hi:
            slope = (_DMAX_D[-1] - _DMAX_D[-2]) / (_DMAX_E[-1] - _DMAX_E[-2])
            dmax = _DMAX_D[-1] + slope * (energy_mv - e_hi)
        else:
            dmax = float(np.interp(energy_mv, _DMAX_E, _DMAX_D))

        if field_size < SMALL_FIELD_LIMIT:
            dmax *= 0.8 + 0.2 * (field_size / SMALL_FIELD_LIMIT)

        return max(1.0, float(dmax))

    # ------------------------------------------------------------------
    # Percent depth dose
    # ------------------------------------------------------------------

    def percent_depth_dose(
        self,
        depth: float,
        energy_mv: float,
        field_size: float,
        cache: BoundedCache | None = None,
    ) -> float:
        """Relative dose at water-equivalent *depth* (1.0 at dmax).

        With a cache, the depth is rounded to 0.01 and the factor is
        evaluated at the rounded depth so cached values are exact.
        """
        if cache is None:
            return self._pdd(depth, energy_mv, field_size)

        depth = round(depth, 2)
        key = (depth, field_size, energy_mv)
        value = cache.get(key)
        if value is None:
            value = self._pdd(depth, energy_mv, field_size)
            cache.set(key, value)
        return value

    def _pdd(self, depth: float, energy_mv: float, field_size: float) -> float:
        if depth < 0:
            return 0.0

        dmax = self.depth_of_maximum_dose(energy_mv, field_size)
        if depth < dmax:
            return ENTRANCE_DOSE_FRACTION + (
                (1.0 - ENTRANCE_DOSE_FRACTION) * depth / dmax
            )

        mu_eff = self.effective_attenuation_coefficient(energy_mv, field_size)
        beyond = depth - dmax
        hardening = 1.0 - HARDENING_PER_UNIT * beyond
        # Guard exp overflow where the hardening term turns negative
        return math.exp(min(-mu_eff * beyond * hardening, 700.0))

    # ------------------------------------------------------------------
    # Attenuation
    # ------------------------------------------------------------------

    def effective_attenuation_coefficient(
        self,
        energy_mv: float,
        field_size: float,
    ) -> float:
        """Effective attenuation [per table unit] beyond dmax.

        Below 6 MV: μ = 0.0471 + 0.01·(6 - E).  Interpolated between
        anchors and held at the 18 MV value above.  Larger fields carry
        more scatter and attenuate less (sigmoid factor, 1.0 at FS = 0).
        """
        if energy_mv < _MU_E[0]:
            mu_water = _MU_V[0] + 0.01 * (_MU_E[0] - energy_mv)
        else:
            mu_water = float(np.interp(energy_mv, _MU_E, _MU_V))

        normalized_fs = field_size / REFERENCE_FIELD_SIZE
        field_factor = 1.0 - 0.2 * (2.0 / (1.0 + math.exp(-2.0 * normalized_fs)) - 1.0)

        return per_cm_to_per_table_unit(float(mu_water) * field_factor)

    def energy_attenuation_factor(self, energy_mv: float) -> float:
        """Tissue attenuation scale vs 6 MV (1.0 at 6 MV, ~0.72 at 18 MV).

        Non-positive energies return inf.
        """
        if not energy_mv > 0:
            return math.inf
        return 1.0 / (energy_mv / REFERENCE_ENERGY_MV) ** 0.3

    # ------------------------------------------------------------------
    # Output factor
    # ------------------------------------------------------------------

    def output_factor(self, field_size: float, energy_mv: float) -> float:
        """Total output factor Sc·Sp for a field of *field_size*.

        Sc = 0.95 + 0.05·tanh(FS/50)         (collimator scatter)
        Sp = 1.0 + 0.15·(1 - exp(-FS/100))   (phantom scatter)

        Energy-independent in this model.
        """
        sc = 0.95 + 0.05 * math.tanh(field_size / 50.0)
        sp = 1.0 + 0.15 * (1.0 - math.exp(-field_size / 100.0))
        return sc * sp

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    @staticmethod
    def inverse_square_factor(distance: float, reference_distance: float) -> float:
        """(reference / distance)²; inf for non-positive distance."""
        if distance <= 0:
            return math.inf
        return (reference_distance / distance) ** 2

    # ------------------------------------------------------------------
    # Scatter kernel
    # ------------------------------------------------------------------

    def scatter_kernel(
        self,
        lateral_distance: float,
        depth: float,
        energy_mv: float,
        cache: BoundedCache | None = None,
    ) -> float:
        """Relative scatter dose at *lateral_distance* from a pencil axis.

        With a cache, depth and lateral distance are rounded to 0.1.
        """
        if cache is None:
            return self._scatter_kernel(lateral_distance, depth, energy_mv)

        depth = round(depth, 1)
        lateral_distance = round(lateral_distance, 1)
        key = (depth, lateral_distance, energy_mv)
        value = cache.get(key)
        if value is None:
            value = self._scatter_kernel(lateral_distance, depth, energy_mv)
            cache.set(key, value)
        return value

    def _scatter_kernel(
        self,
        lateral_distance: float,
        depth: float,
        energy_mv: float,
    ) -> float:
        # Higher energy → wider scatter
        energy_factor = math.sqrt(max(energy_mv, 0.0) / REFERENCE_ENERGY_MV)

        primary_sigma = (2.0 + depth * 0.06) * energy_factor
        primary_weight = 0.85 - 0.01 * energy_mv
        scatter_sigma = (5.0 + depth * 0.2) * energy_factor
        scatter_weight = 1.0 - primary_weight

        r_sq = lateral_distance * lateral_distance
        if primary_sigma <= 0 or scatter_sigma <= 0:
            return 0.0
        primary = math.exp(-r_sq / (2.0 * primary_sigma ** 2))
        scatter = math.exp(-r_sq / (2.0 * scatter_sigma ** 2))
        combined = primary_weight * primary + scatter_weight * scatter

        magnitude = 0.2 * (1.0 - math.exp(-energy_mv / 12.0))
        depth_factor = min(1.0, 0.7 + depth / 100.0)

        return magnitude * depth_factor * combined
