"""Nodal scalar equation systems.

Governing equation::

    c d(phi)/dt = div(k grad(phi)) + s

discretised with linear triangles, a lumped mass and backward Euler.
Subclasses choose the unknown (``dof_name``) and supply ``k``, ``c`` and
``s``.
"""

from __future__ import annotations

import functools
from typing import Any, Mapping, Sequence

import numpy as np

from pyeqsys.equations.algorithms import CopyStateAlgorithm, InitialConditionAlgorithm
from pyeqsys.equations.assembly import (
    AssembleDiffusionAlgorithm,
    AssembleMassAlgorithm,
    AssembleSourceAlgorithm,
    ConstraintAlgorithm,
    DirichletAlgorithm,
    NeumannFluxAlgorithm,
    OversetConstraintAlgorithm,
)
from pyeqsys.equations.base import EquationSystem
from pyeqsys.errors import ConfigurationError
from pyeqsys.mesh.parts import Part, Topology


class ScalarEquationSystem(EquationSystem):
    """Scalar nodal unknown solved with its own linear system.

    Wall, inflow and open boundary data prescribe either the unknown
    (keyed by ``dof_name``) or an inward normal flux (keyed by
    ``flux_name``).  Symmetry is the natural condition and needs no hook.
    """

    flux_name = "flux"
    n_states = 3
    has_source = False

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.create_linear_system()

    # ------------------------------------------------------------------
    # Model coefficients
    # ------------------------------------------------------------------

    def diffusivity(self) -> np.ndarray | float:
        return 1.0

    def capacity(self) -> np.ndarray | float:
        return 1.0

    def source_term(self, nodes: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Net source and implicit sink coefficient at *nodes*."""
        zero = np.zeros(len(nodes))
        return zero, zero

    def boundary_value(self, data: Any) -> Any:
        return data.value_of(self.dof_name) if data.specifies(self.dof_name) else None

    # ------------------------------------------------------------------
    # Registration hooks
    # ------------------------------------------------------------------

    def register_nodal_fields(self, parts: Sequence[Part]) -> None:
        realm = self.realm
        realm.fields.register_field(self.dof_name, parts, n_states=self.n_states)
        self.copy_state_algs.append(CopyStateAlgorithm(realm, parts, self.dof_name))
        if realm.has_overset:
            self.eq_systems.register_overset_field_update(self.dof_name, 1, 1)

    def register_interior_algorithm(self, part: Part) -> None:
        self.solver_algs.append(AssembleMassAlgorithm(self, [part], self.capacity))
        self.solver_algs.append(AssembleDiffusionAlgorithm(self, [part], self.diffusivity))
        if self.has_source:
            self.solver_algs.append(AssembleSourceAlgorithm(self, [part], self.source_term))

    def _register_boundary(self, kind: str, part: Part, data: Any) -> None:
        value = self.boundary_value(data)
        flux = data.user_data.get(self.flux_name)
        if value is not None and flux is not None:
            raise ConfigurationError(
                f"{self.user_supplied_name}: {data.name!r} prescribes both "
                f"{self.dof_name!r} and {self.flux_name!r}"
            )
        if value is not None:
            self.bc_algs[kind].append(DirichletAlgorithm(self, [part], value))
        elif flux is not None:
            self.bc_algs[kind].append(NeumannFluxAlgorithm(self, [part], flux))

    def register_wall_bc(self, part: Part, topology: Topology, data: Any) -> None:
        self._register_boundary("wall", part, data)

    def register_inflow_bc(self, part: Part, topology: Topology, data: Any) -> None:
        self._register_boundary("inflow", part, data)

    def register_open_bc(self, part: Part, topology: Topology, data: Any) -> None:
        self._register_boundary("open", part, data)

    def register_periodic_bc(self, pairing: Any, data: Any) -> None:
        self.bc_algs["periodic"].append(
            ConstraintAlgorithm(self, [pairing.master, pairing.slave], pairing.connectivity)
        )

    def register_non_conformal_bc(self, part: Part, topology: Topology) -> None:
        self.bc_algs["non_conformal"].append(
            ConstraintAlgorithm(self, [part], functools.partial(self._non_conformal_rows, part))
        )

    def _non_conformal_rows(self, part: Part) -> tuple:
        return self.realm.non_conformal_connectivity(part)

    def register_overset_bc(self) -> None:
        self.bc_algs["overset"].append(OversetConstraintAlgorithm(self))

    def register_initial_condition_fcn(
        self,
        part: Part,
        function_names: Mapping[str, str],
        function_params: Mapping[str, Sequence[float]],
    ) -> None:
        fn = function_names.get(self.dof_name)
        if fn is None:
            return
        self.initial_condition_algs.append(
            InitialConditionAlgorithm(
                self.realm, [part], self.dof_name, fn, function_params.get(self.dof_name, ())
            )
        )

    # ------------------------------------------------------------------
    # Solve
    # ------------------------------------------------------------------

    def solve_and_update(self) -> None:
        for _ in range(self.max_iterations):
            self.solve_dof(self.dof_name)
            self.post_solve_update()

    def post_solve_update(self) -> None:
        """Called after every non-linear iteration."""
