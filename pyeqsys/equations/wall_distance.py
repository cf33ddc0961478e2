"""Nearest-wall distance from a Poisson problem.

Solves::

    -div(grad(phi)) = 1,    phi = 0 on walls

once, in ``initial_work``, and converts ``phi`` into a distance with

    d = -|grad(phi)| + sqrt(|grad(phi)|^2 + 2 phi)

stored in the nodal field ``minimum_distance_to_wall``.  Turbulence models
read that field for their length scale.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np
from loguru import logger

from pyeqsys.equations.assembly import (
    AssembleDiffusionAlgorithm,
    AssembleSourceAlgorithm,
    DirichletAlgorithm,
    nodal_gradient,
)
from pyeqsys.equations.registry import register_equation_system
from pyeqsys.equations.scalar import ScalarEquationSystem
from pyeqsys.errors import ConfigurationError
from pyeqsys.mesh.parts import Part, Topology


@dataclass(frozen=True)
class WallDistanceParameters:
    """Set ``update_each_step`` to recompute the distance on moving meshes."""

    update_each_step: bool = False


@register_equation_system("WallDistance")
class WallDistance(ScalarEquationSystem):
    equation_type = "WallDistEQS"
    dof_name = "ndtw"
    distance_name = "minimum_distance_to_wall"
    has_source = True
    Parameters = WallDistanceParameters

    # Non-wall boundaries keep the natural (zero-gradient) condition.
    register_inflow_bc = None
    register_open_bc = None

    def source_term(self, nodes: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        return np.ones(len(nodes)), np.zeros(len(nodes))

    def register_nodal_fields(self, parts: Sequence[Part]) -> None:
        realm = self.realm
        realm.fields.register_field(self.dof_name, parts)
        realm.fields.register_field(self.distance_name, parts)
        if realm.has_overset:
            self.eq_systems.register_overset_field_update(self.dof_name, 1, 1)

    def register_interior_algorithm(self, part: Part) -> None:
        self.solver_algs.append(AssembleDiffusionAlgorithm(self, [part], self.diffusivity))
        self.solver_algs.append(AssembleSourceAlgorithm(self, [part], self.source_term))

    def register_wall_bc(self, part: Part, topology: Topology, data: Any) -> None:
        self.bc_algs["wall"].append(DirichletAlgorithm(self, [part], 0.0))

    def initial_work(self) -> None:
        with self._timed("timer_init"):
            self.solve_wall_distance()

    def solve_and_update(self) -> None:
        if self.params.update_each_step:
            self.solve_wall_distance()

    def solve_wall_distance(self) -> None:
        """Solve for ``phi`` and refresh the distance field.

        The problem is linear; a second pass confirms the residual dropped.
        """
        if not self.bc_algs["wall"]:
            raise ConfigurationError(
                f"{self.user_supplied_name}: wall distance needs at least one wall boundary condition"
            )
        for k in range(max(self.max_iterations, 2)):
            self.solve_dof(self.dof_name)
            if k and self.system_is_converged():
                break
        self.compute_wall_distance()

    def compute_wall_distance(self) -> np.ndarray:
        realm = self.realm
        mesh = realm.mesh
        phi = np.maximum(realm.fields.values(self.dof_name), 0.0)
        grad = nodal_gradient(mesh.nodes, mesh.cells, phi)
        g2 = np.einsum("ij,ij->i", grad, grad)
        dist = realm.fields.values(self.distance_name)
        dist[:] = -np.sqrt(g2) + np.sqrt(g2 + 2.0 * phi)
        logger.debug(
            "{}: wall distance in [{:.4e}, {:.4e}]", self.user_supplied_name, dist.min(), dist.max()
        )
        return dist
