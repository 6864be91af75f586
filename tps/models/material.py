"""Tissue material data models.

Five discrete tissue classes used by the dose engine, ordered by
increasing density and attenuation.
"""

from dataclasses import dataclass
from enum import IntEnum


class MaterialClass(IntEnum):
    """Index of a tissue class in MATERIALS."""
    AIR = 0
    FAT = 1
    WATER = 2
    SOFT_TISSUE = 3
    BONE = 4


@dataclass(frozen=True)
class Material:
    """Tissue material with physical properties.

    Attributes:
        name: Display name.
        density: Density relative to water [dimensionless].
        attenuation: Linear attenuation coefficient [cm⁻¹] at 6 MV.
    """
    name: str
    density: float
    attenuation: float


AIR = Material("Air", density=0.0012, attenuation=0.0001)
FAT = Material("Fat", density=0.92, attenuation=0.045)
WATER = Material("Water", density=1.0, attenuation=0.05)
SOFT_TISSUE = Material("Soft tissue", density=1.06, attenuation=0.052)
BONE = Material("Bone", density=1.85, attenuation=0.08)

# Indexed by MaterialClass
MATERIALS: tuple[Material, ...] = (AIR, FAT, WATER, SOFT_TISSUE, BONE)
