"""Realm: one mesh with its fields, time state and equation systems.

Classes
-------
PeriodicPairing
    Slave-to-master node map of one periodic surface pair.
Realm
    Owner of mesh, parts, fields, linear-solver blocks and the
    :class:`~pyeqsys.coupling.equation_systems.EquationSystems` driver.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np
from loguru import logger

from pyeqsys.coupling.equation_systems import EquationSystems
from pyeqsys.errors import ConfigurationError
from pyeqsys.fields.field import FieldManager, FieldState
from pyeqsys.linear import LinearSolverConfig
from pyeqsys.mesh.interfaces import pair_periodic_nodes, project_onto_edges
from pyeqsys.mesh.mesh import Mesh
from pyeqsys.mesh.overset import OversetAssembly
from pyeqsys.mesh.parts import MetaData, Part, Topology


@dataclass
class PeriodicPairing:
    """Periodic surface pair.

    Attributes:
        master: Master surface.
        slave: Slave surface.
        slaves: Slave node indices.
        masters: Master node paired with each slave node.
    """

    master: Part
    slave: Part
    slaves: np.ndarray
    masters: np.ndarray

    def connectivity(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Constraint rows ``phi_slave = phi_master``."""
        return self.slaves, self.masters[:, None], np.ones((len(self.slaves), 1))


class Realm:
    """Mesh, fields and equation systems of one physical region.

    Args:
        name: Realm name.
        mesh: Triangular mesh.
        overset_assembly: Receptor/donor connectivity; its presence makes
            the realm overset.
        meta: Part registry; built from the mesh by default.
    """

    def __init__(
        self,
        name: str,
        mesh: Mesh,
        overset_assembly: OversetAssembly | None = None,
        meta: MetaData | None = None,
    ) -> None:
        self.name = name
        self.mesh = mesh
        self.meta = meta or MetaData.from_mesh(mesh)
        self.fields = FieldManager(self.meta)
        self.overset_assembly = overset_assembly

        self.time = 0.0
        self.dt: float | None = None
        self.step = 0

        self.linear_solvers: dict[str, LinearSolverConfig] = {}
        self.interior_parts: list[Part] = []
        self.bc_parts: dict[str, list[Part]] = defaultdict(list)
        self.periodic_pairings: list[PeriodicPairing] = []
        self.overset_data: list[Any] = []
        self.constant_initial_conditions: list[Any] = []
        self._non_conformal: dict[str, tuple[np.ndarray, np.ndarray, np.ndarray]] = {}
        self.timer_initialize_eqs = 0.0

        self.equation_systems = EquationSystems(self)

    @property
    def has_overset(self) -> bool:
        return self.overset_assembly is not None

    # ------------------------------------------------------------------
    # Linear solvers
    # ------------------------------------------------------------------

    def add_linear_solver(self, config: LinearSolverConfig) -> None:
        if config.name in self.linear_solvers:
            raise ConfigurationError(f"Duplicate linear solver block {config.name!r}")
        self.linear_solvers[config.name] = config

    def linear_solver(self, name: str) -> LinearSolverConfig:
        try:
            return self.linear_solvers[name]
        except KeyError:
            raise ConfigurationError(
                f"Linear solver block {name!r} is not defined; "
                f"available: {sorted(self.linear_solvers)}"
            ) from None

    # ------------------------------------------------------------------
    # Registration bookkeeping
    # ------------------------------------------------------------------

    def register_nodal_fields(self, parts: Sequence[Part]) -> None:
        coords = self.fields.register_field("coordinates", parts, n_components=self.mesh.dim)
        coords.values[:] = self.mesh.nodes

    def register_interior_algorithm(self, part: Part) -> None:
        self.interior_parts.append(part)

    def register_surface_bc(self, kind: str, part: Part, topology: Topology) -> None:
        self.bc_parts[kind].append(part)

    def register_periodic_bc(
        self,
        master: Part,
        slave: Part,
        search_tolerance: float,
        search_method: str = "kdtree",
    ) -> PeriodicPairing:
        """Pair the nodes of two translated surfaces.

        Raises:
            ConfigurationError: For an unsupported search method, or if a
                slave node has no master within *search_tolerance*.
        """
        if search_method != "kdtree":
            raise ConfigurationError(f"Unsupported periodic search method {search_method!r}")
        slaves, masters = pair_periodic_nodes(
            self.mesh.nodes,
            master.node_ids(self.mesh),
            slave.node_ids(self.mesh),
            search_tolerance,
        )
        pairing = PeriodicPairing(master, slave, slaves, masters)
        self.periodic_pairings.append(pairing)
        logger.info("Periodic pair {} / {}: {} node(s)", master.name, slave.name, len(slaves))
        return pairing

    def setup_non_conformal_bc(
        self,
        current: Sequence[Part],
        opposing: Sequence[Part],
        data: Any,
    ) -> None:
        """Project the nodes of every current subset onto the opposing edges."""
        edges = [np.asarray(sub.entities, dtype=int).reshape(-1, 2) for p in opposing for sub in p.subsets]
        opposing_edges = np.vstack(edges) if edges else np.zeros((0, 2), dtype=int)
        if len(opposing_edges) == 0:
            raise ConfigurationError(f"Non-conformal condition {data.name!r} has no opposing edges")
        for part in current:
            for sub in part.subsets:
                self._non_conformal[sub.name] = project_onto_edges(
                    self.mesh.nodes, sub.node_ids(self.mesh), opposing_edges, data.search_tolerance
                )

    def register_non_conformal_bc(self, part: Part, topology: Topology) -> None:
        self.bc_parts["non_conformal"].append(part)

    def non_conformal_connectivity(self, part: Part) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        try:
            return self._non_conformal[part.name]
        except KeyError:
            raise ConfigurationError(f"No non-conformal connectivity for part {part.name!r}") from None

    def setup_overset_bc(self, data: Any) -> None:
        if not self.has_overset:
            raise ConfigurationError(
                f"Overset boundary condition {data.name!r} given, but realm {self.name!r} "
                f"has no overset mesh"
            )
        self.overset_data.append(data)

    def register_constant_initial_condition(self, data: Any) -> None:
        self.constant_initial_conditions.append(data)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def apply_constant_initial_conditions(self) -> None:
        """Set every state of the named fields on the target parts."""
        for data in self.constant_initial_conditions:
            for target in data.target_names:
                ids = self.meta.require_part(target).node_ids(self.mesh)
                for field_name, value in data.values.items():
                    fld = self.fields.get_field(field_name)
                    for state in range(fld.n_states):
                        fld.field_of_state(FieldState(state))[ids] = value

    def initialize(self) -> None:
        """Apply initial conditions and run the one-time system setup."""
        eqs = self.equation_systems
        self.apply_constant_initial_conditions()
        eqs.initialize()
        eqs.populate_boundary_data()
        eqs.boundary_data_to_state_data()
        eqs.populate_derived_quantities()
        eqs.initial_work()

    def advance_time(self, dt: float | None) -> None:
        self.dt = dt
        self.step += 1
        if dt is not None:
            self.time += dt

    def swap_states(self) -> None:
        self.fields.swap_states()

    def __repr__(self) -> str:
        return (
            f"Realm(name={self.name!r}, n_nodes={self.mesh.n_nodes}, "
            f"overset={self.has_overset}, systems={len(self.equation_systems)})"
        )
