"""Equation systems.

Importing this package registers every concrete system with the factory
registry under its configuration tag.
"""

from pyeqsys.equations.base import (
    BC_KINDS,
    CAPABILITY_HOOKS,
    EquationSystem,
    SystemSettings,
    WrapperEquationSystem,
    settings_from_block,
)
from pyeqsys.equations.scalar import ScalarEquationSystem
from pyeqsys.equations.registry import (
    available_equation_systems,
    create_equation_system,
    register_equation_system,
)
from pyeqsys.equations.heat import HeatConduction, SurfaceHeatFluxAlgorithm
from pyeqsys.equations.enthalpy import Enthalpy
from pyeqsys.equations.wall_distance import WallDistance
from pyeqsys.equations.turbulence import (
    ShearStressTransport,
    SpecificDissipationRate,
    SSTKineticEnergy,
    TurbKineticEnergy,
)

__all__ = [
    "BC_KINDS",
    "CAPABILITY_HOOKS",
    "EquationSystem",
    "SystemSettings",
    "WrapperEquationSystem",
    "settings_from_block",
    "ScalarEquationSystem",
    "available_equation_systems",
    "create_equation_system",
    "register_equation_system",
    "HeatConduction",
    "SurfaceHeatFluxAlgorithm",
    "Enthalpy",
    "WallDistance",
    "ShearStressTransport",
    "SpecificDissipationRate",
    "SSTKineticEnergy",
    "TurbKineticEnergy",
]
