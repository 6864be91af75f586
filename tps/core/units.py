"""Unit conversion module — single conversion point between caller and core.

Internal (core) units:
    Length   : grid pixel (1 px = 0.5 cm); depth tables in mm-like units
    Energy   : MV (nominal accelerating potential)
    Density  : relative to water
    Angle    : radian, ray-tracing convention (0 = +x, π/2 = +y / down)

Caller units:
    Length   : grid pixel
    Energy   : MV
    Angle    : degree, gantry convention (0° = top, 90° = right)
"""

import math
from typing import NewType

from tps.constants import DEPTH_TABLE_CM_PER_UNIT

Radian = NewType('Radian', float)


# ---------------------------------------------------------------------------
# Attenuation conversions
# ---------------------------------------------------------------------------

def per_cm_to_per_table_unit(mu_per_cm: float) -> float:
    """Linear attenuation [cm⁻¹] → per depth-table unit (1 unit = 1 mm)."""
    return mu_per_cm * DEPTH_TABLE_CM_PER_UNIT


# ---------------------------------------------------------------------------
# Angle conversions
# ---------------------------------------------------------------------------

def deg_to_rad(deg: float) -> Radian:
    """Degree → Radian."""
    return Radian(deg * (math.pi / 180.0))


def gantry_to_ray_angle(gantry_deg: float) -> Radian:
    """Gantry angle [degree] → ray direction angle [radian].

    Gantry 0° (beam from the top) travels along +y, i.e. a ray angle
    of π/2 in image coordinates (y grows downward).
    """
    return Radian(deg_to_rad(gantry_deg) + math.pi / 2.0)
