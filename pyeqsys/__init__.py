"""
pyeqsys: Multi-physics equation-system orchestration on triangular meshes.

Subpackages
-----------
mesh
    Meshes, named parts, surface pairing and overset connectivity.
fields
    Multi-state nodal, edge and element fields.
linear
    Sparse linear systems and solver settings.
boundaries
    Boundary-condition, initial-condition and post-processing records.
equations
    Equation-system contract, factory registry and concrete systems.
coupling
    Composite scheduler and overset field exchange.
time
    Time stepping and the outer integration loop.
visualization
    Convergence and field plots.

Modules
-------
realm
    Mesh, fields and equation systems of one physical region.
simulation
    Configuration-driven setup and command-line entry point.
"""

from pyeqsys import (
    mesh,
    fields,
    linear,
    boundaries,
    equations,
    coupling,
    time,
    visualization,
)
from pyeqsys.realm import Realm
from pyeqsys.simulation import Simulation

__version__ = "0.1.0"

__all__ = [
    "mesh",
    "fields",
    "linear",
    "boundaries",
    "equations",
    "coupling",
    "time",
    "visualization",
    "Realm",
    "Simulation",
]
