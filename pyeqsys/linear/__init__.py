"""Linear systems and solver settings."""

from pyeqsys.linear.base import LinearSolverConfig, LinearSystem
from pyeqsys.linear.scipy_system import ScipyLinearSystem, create_linear_system

__all__ = [
    "LinearSolverConfig",
    "LinearSystem",
    "ScipyLinearSystem",
    "create_linear_system",
]
