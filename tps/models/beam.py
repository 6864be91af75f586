"""Beam data models.

A clinical beam is addressed by its position in the engine's beam list.
Angles are given in the gantry convention (0° = top, 90° = right).
"""

from dataclasses import dataclass, field

from tps.core.units import gantry_to_ray_angle


@dataclass(frozen=True)
class Beam:
    """External radiation beam aimed at the isocenter.

    Attributes:
        angle_degrees: Gantry angle [degree], 0 = top, 90 = right.
        field_width: Field width at the isocenter plane [px].
        energy_mv: Nominal beam energy [MV].
        ray_angle: Direction of travel in image coordinates [radian].
    """
    angle_degrees: float
    field_width: float
    energy_mv: float
    ray_angle: float = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "ray_angle", gantry_to_ray_angle(self.angle_degrees))


@dataclass
class PencilBeamElement:
    """Narrow sub-beam of a clinical beam.

    Attributes:
        lateral_offset: Offset from the beam central axis, perpendicular
            to the beam direction [px].
        fluence_weight: Relative fluence; weights of one beam sum to 1.
    """
    lateral_offset: float
    fluence_weight: float
