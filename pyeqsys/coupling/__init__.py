"""Coupling: the composite equation-system driver and overset exchange."""

from pyeqsys.coupling.overset import OversetCouplingDriver, OversetFieldUpdate
from pyeqsys.coupling.equation_systems import EquationSystems

__all__ = [
    "OversetCouplingDriver",
    "OversetFieldUpdate",
    "EquationSystems",
]
