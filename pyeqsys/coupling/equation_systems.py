"""Composite driver over the equation systems of one realm.

:class:`EquationSystems` owns the systems named in the configuration and
runs them in declaration order every non-linear iteration::

    overset exchange (only with overset topology)
    pre-iteration side tasks
    for each system: pre_iter_work -> solve_and_update -> post_iter_work
    for each system: post_iter_work_dep           (legacy second pass)
    post-iteration side tasks
    convergence = AND over every system (evaluated for all of them)

A system later in the list sees the fields updated earlier in the same
iteration; the reverse holds only from the next iteration on.

Registration requests (fields, interior algorithms, boundary conditions)
resolve part names on the mesh, validate their rank and visit every
system that implements the matching hook.
"""

from __future__ import annotations

import time
import weakref
from collections import deque
from typing import Any, Iterator, Mapping, Sequence

from loguru import logger

from pyeqsys.config import expect_map, expect_sequence, get_if_present, get_required, single_key
from pyeqsys.coupling.overset import OversetCouplingDriver
from pyeqsys.equations.base import EquationSystem, SystemSettings
from pyeqsys.equations.registry import create_equation_system
from pyeqsys.errors import ConfigurationError, PartRankError, SolverSpecificationError
from pyeqsys.mesh.parts import EntityRank, Part


class EquationSystems:
    """Ordered collection of equation systems and their scheduler.

    Args:
        realm: Owning realm, held as a weak reference.
        norm_history_size: Most recent iterations kept in
            :attr:`norm_history`.
    """

    def __init__(self, realm: Any, norm_history_size: int = 10_000) -> None:
        self._realm = weakref.ref(realm)
        self.name = "EquationSystems"
        self.max_iterations = 1
        self.defaults = SystemSettings()
        self.solver_block_names: dict[str, str] = {}
        self._systems: list[EquationSystem] = []
        self.overset_driver = OversetCouplingDriver(realm)
        self._pre_iter_algs: list[Any] = []
        self._post_iter_algs: list[Any] = []
        self._frozen = False
        self.norm_history: deque[dict[str, Any]] = deque(maxlen=norm_history_size)
        self.timer_init = 0.0

    @property
    def realm(self) -> Any:
        realm = self._realm()
        if realm is None:
            raise RuntimeError(f"{self.name}: owning realm no longer exists")
        return realm

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def load(self, node: Mapping[str, Any]) -> None:
        """Read the ``equation_systems`` block and build its systems.

        Required keys: ``name``, ``max_iterations``,
        ``solver_system_specification`` and ``systems`` (a list of
        single-key maps ``{<tag>: <block>}``).

        Raises:
            ConfigurationError: On missing keys, invalid iteration or overset
                settings, unknown tags or duplicate system names.
        """
        self._check_not_frozen()
        self.name = get_required(node, "name", str)
        self.max_iterations = get_required(node, "max_iterations", int)
        if self.max_iterations < 1:
            raise ConfigurationError(
                f"{self.name}: max_iterations must be >= 1, got {self.max_iterations}"
            )
        spec = expect_map(node, "solver_system_specification")
        self.solver_block_names = {str(k): str(v) for k, v in spec.items()}

        defaults = SystemSettings()
        if self.realm.has_overset:
            try:
                defaults = SystemSettings(
                    decoupled_overset=get_if_present(node, "decoupled_overset_solve", False, bool),
                    num_overset_iters=get_if_present(node, "num_overset_correctors", 1, int),
                )
            except ValueError as exc:
                raise ConfigurationError(f"{self.name}: {exc}") from exc
        self.defaults = defaults

        seen: set[str] = set()
        for item in expect_sequence(node, "systems"):
            tag, body = single_key(item, "equation_systems.systems")
            eqsys = create_equation_system(tag, self, body, defaults)
            if eqsys.user_supplied_name in seen:
                raise ConfigurationError(
                    f"Duplicate equation system name {eqsys.user_supplied_name!r}"
                )
            seen.add(eqsys.user_supplied_name)
            self._systems.append(eqsys)

    def get_solver_block_name(self, eq_name: str) -> str:
        """Linear-solver block mapped to *eq_name* by ``solver_system_specification``."""
        try:
            return self.solver_block_names[eq_name]
        except KeyError:
            raise SolverSpecificationError(
                f"EquationSystems::get_solver_block_name: no solver_system_specification "
                f"entry for {eq_name!r}"
            ) from None

    @property
    def systems(self) -> tuple[EquationSystem, ...]:
        """Top-level systems in configuration order."""
        return tuple(self._systems)

    def add_system(self, eqsys: EquationSystem) -> None:
        """Append an already constructed system."""
        self._check_not_frozen()
        self._systems.append(eqsys)

    def iter_systems(self) -> Iterator[EquationSystem]:
        """Every system, wrapper children included, depth-first."""
        for eqsys in self._systems:
            yield from eqsys.walk()

    def _with_hook(self, hook: str) -> Iterator[Any]:
        for eqsys in self.iter_systems():
            fn = getattr(eqsys, hook, None)
            if callable(fn):
                yield fn

    def __len__(self) -> int:
        return len(self._systems)

    def __iter__(self) -> Iterator[EquationSystem]:
        return iter(self._systems)

    # ------------------------------------------------------------------
    # Side tasks
    # ------------------------------------------------------------------

    @property
    def pre_iter_algs(self) -> tuple[Any, ...]:
        return tuple(self._pre_iter_algs)

    @property
    def post_iter_algs(self) -> tuple[Any, ...]:
        return tuple(self._post_iter_algs)

    def add_pre_iter_algorithm(self, alg: Any) -> None:
        self._check_not_frozen()
        self._pre_iter_algs.append(alg)

    def add_post_iter_algorithm(self, alg: Any) -> None:
        self._check_not_frozen()
        self._post_iter_algs.append(alg)

    def freeze(self) -> None:
        """Fix the system and side-task lists; called when the main loop starts."""
        self._frozen = True

    def _check_not_frozen(self) -> None:
        if self._frozen:
            raise RuntimeError(f"{self.name}: systems and side tasks cannot change once the main loop has started")

    # ------------------------------------------------------------------
    # Registration fan-out
    # ------------------------------------------------------------------

    def _require_side_subsets(self, part: Part) -> list[Part]:
        side_rank = self.realm.meta.side_rank
        subsets = part.subsets
        for sub in subsets:
            if sub.rank != side_rank:
                raise PartRankError(sub.name, side_rank.name, sub.rank.name)
        return subsets

    def register_nodal_fields(self, part_names: Sequence[str]) -> None:
        meta = self.realm.meta
        parts = [meta.require_part(name) for name in part_names]
        self.realm.register_nodal_fields(parts)
        for hook in self._with_hook("register_nodal_fields"):
            hook(parts)

    def register_edge_fields(self, part_names: Sequence[str]) -> None:
        meta = self.realm.meta
        parts = [meta.require_part(name) for name in part_names]
        for hook in self._with_hook("register_edge_fields"):
            hook(parts)

    def register_element_fields(self, part_names: Sequence[str]) -> None:
        """Declare ``element_volume`` and per-topology element fields."""
        realm = self.realm
        for name in part_names:
            part = realm.meta.require_part(name, EntityRank.ELEMENT)
            volume = realm.fields.register_field("element_volume", [part], rank=EntityRank.ELEMENT)
            volume.values[:] = realm.mesh.cell_areas()
            for topology in dict.fromkeys(sub.topology for sub in part.subsets):
                for hook in self._with_hook("register_element_fields"):
                    hook([part], topology)

    def register_interior_algorithm(self, part_names: Sequence[str]) -> None:
        """Attach interior (volume) algorithms to element parts.

        Raises:
            PartNotFoundError: If a name is not a part of the mesh.
            PartRankError: If a part is not of element rank.
        """
        realm = self.realm
        for name in part_names:
            part = realm.meta.require_part(name, EntityRank.ELEMENT)
            realm.register_interior_algorithm(part)
            for hook in self._with_hook("register_interior_algorithm"):
                hook(part)

    def _register_surface_bc(self, kind: str, data: Any) -> None:
        realm = self.realm
        part = realm.meta.require_part(data.target_name)
        for sub in self._require_side_subsets(part):
            realm.register_surface_bc(kind, sub, sub.topology)
            for hook in self._with_hook(f"register_{kind}_bc"):
                hook(sub, sub.topology, data)

    def register_wall_bc(self, data: Any) -> None:
        self._register_surface_bc("wall", data)

    def register_inflow_bc(self, data: Any) -> None:
        self._register_surface_bc("inflow", data)

    def register_open_bc(self, data: Any) -> None:
        self._register_surface_bc("open", data)

    def register_symmetry_bc(self, data: Any) -> None:
        self._register_surface_bc("symmetry", data)

    def register_periodic_bc(self, data: Any) -> None:
        """Pair a master and a slave surface.

        A subset-count mismatch is reported but not fatal.
        """
        realm = self.realm
        master = realm.meta.require_part(data.master)
        slave = realm.meta.require_part(data.slave)
        master_subsets = self._require_side_subsets(master)
        slave_subsets = self._require_side_subsets(slave)
        if len(master_subsets) != len(slave_subsets):
            logger.warning("Mesh part subsets for master slave do not match in size")
        if len(master_subsets) > 1:
            logger.warning("Surface has subsets active; please make sure that the topologies match")

        user = data.user_data
        pairing = realm.register_periodic_bc(master, slave, user.search_tolerance, user.search_method)
        for hook in self._with_hook("register_periodic_bc"):
            hook(pairing, data)

    def register_non_conformal_bc(self, data: Any) -> None:
        """Tie current surfaces to the opposing surfaces of a non-matching interface."""
        realm = self.realm
        current = [realm.meta.require_part(n) for n in data.current_part_names]
        opposing = [realm.meta.require_part(n) for n in data.opposing_part_names]
        n_current = sum(len(p.subsets) for p in current)
        n_opposing = sum(len(p.subsets) for p in opposing)
        if n_current != n_opposing:
            logger.warning(
                "Non-conformal surfaces {} and {} have different subset counts ({} vs {})",
                list(data.current_part_names), list(data.opposing_part_names), n_current, n_opposing,
            )
        for part in opposing:
            self._require_side_subsets(part)

        realm.setup_non_conformal_bc(current, opposing, data)
        for part in current:
            for sub in self._require_side_subsets(part):
                realm.register_non_conformal_bc(sub, sub.topology)
                for hook in self._with_hook("register_non_conformal_bc"):
                    hook(sub, sub.topology)

    def register_overset_bc(self, data: Any) -> None:
        realm = self.realm
        realm.setup_overset_bc(data)
        for hook in self._with_hook("register_overset_bc"):
            hook()

    def register_surface_pp_algorithm(self, data: Any) -> None:
        """Collect the face parts of a post-processing request and dispatch them.

        Missing or non-face parts are skipped with a warning.
        """
        meta = self.realm.meta
        parts = []
        for name in data.target_names:
            part = meta.get_part(name)
            if part is None:
                logger.warning("SurfacePP: can not find part with name: {}", name)
                continue
            if part.rank != meta.side_rank:
                logger.warning("SurfacePP: part is not a face: {}", name)
                continue
            parts.append(part)
        for hook in self._with_hook("register_surface_pp_algorithm"):
            hook(data, parts)

    def register_initial_condition_fcn(self, data: Any) -> None:
        meta = self.realm.meta
        for name in data.target_names:
            part = meta.require_part(name)
            for hook in self._with_hook("register_initial_condition_fcn"):
                hook(part, data.function_names, data.function_params)

    def register_overset_field_update(self, field_name: str, n_rows: int = 1, n_cols: int = 1) -> None:
        self.overset_driver.register_overset_field_update(field_name, n_rows, n_cols)

    # ------------------------------------------------------------------
    # Per-step delegation
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        logger.info("EquationSystems::initialize(): Begin")
        t0 = time.perf_counter()
        for eqsys in self.iter_systems():
            eqsys.initialize()
        elapsed = time.perf_counter() - t0
        self.timer_init += elapsed
        self.realm.timer_initialize_eqs += elapsed

        if self.realm.has_overset:
            logger.info("EquationSystems: overset solution strategy")
            for eqsys in self.iter_systems():
                if eqsys.linsys is None:
                    continue
                logger.info(" - {}: {}", eqsys.name, "decoupled" if eqsys.is_decoupled() else "coupled")
        logger.info("EquationSystems::initialize(): End")

    def reinitialize_linear_system(self) -> None:
        t0 = time.perf_counter()
        for eqsys in self.iter_systems():
            eqsys.reinitialize_linear_system()
        self.realm.timer_initialize_eqs += time.perf_counter() - t0

    def populate_derived_quantities(self) -> None:
        for eqsys in self.iter_systems():
            eqsys.populate_derived_quantities()

    def initial_work(self) -> None:
        for eqsys in self.iter_systems():
            eqsys.initial_work()

    def pre_timestep_work(self) -> None:
        for eqsys in self.iter_systems():
            eqsys.pre_timestep_work()

    def predict_state(self) -> None:
        for eqsys in self.iter_systems():
            eqsys.predict_state()

    def post_converged_work(self) -> None:
        for eqsys in self.iter_systems():
            eqsys.post_converged_work()

    def provide_output(self) -> None:
        for eqsys in self.iter_systems():
            eqsys.provide_output()

    def dump_eq_time(self) -> None:
        logger.info("EquationSystems {}: init {:.4e}", self.name, self.timer_init)
        for eqsys in self.iter_systems():
            eqsys.dump_eq_time()

    def evaluate_properties(self) -> None:
        for eqsys in self.iter_systems():
            eqsys.evaluate_properties()

    def populate_boundary_data(self) -> None:
        for eqsys in self.iter_systems():
            for alg in eqsys.bc_data_algs:
                alg.execute()

    def boundary_data_to_state_data(self) -> None:
        for eqsys in self.iter_systems():
            for alg in eqsys.bc_data_map_algs:
                alg.execute()

    def post_external_data_transfer_work(self) -> None:
        for eqsys in self.iter_systems():
            eqsys.post_external_data_transfer_work()

    # ------------------------------------------------------------------
    # Iteration
    # ------------------------------------------------------------------

    def pre_iter_work(self) -> None:
        if self.realm.has_overset:
            self.overset_driver.execute()
        for alg in self._pre_iter_algs:
            alg.execute()

    def post_iter_work(self) -> None:
        for alg in self._post_iter_algs:
            alg.execute()

    def solve_and_update(self) -> bool:
        """Run one non-linear iteration over all systems.

        Returns:
            True if every system reports convergence.
        """
        self.pre_iter_work()

        for eqsys in self._systems:
            eqsys.pre_iter_work()
            eqsys.solve_and_update()
            eqsys.post_iter_work()

        # Deprecated second pass; kept at its own call point.
        for eqsys in self.iter_systems():
            eqsys.post_iter_work_dep()

        self.post_iter_work()

        status = [eqsys.system_is_converged() for eqsys in self.iter_systems()]
        converged = all(status)
        self.norm_history.append(
            {
                "step": self.realm.step,
                "time": self.realm.time,
                "norm": self.provide_system_norm(),
                "norms": {e.user_supplied_name: e.provide_scaled_norm() for e in self.iter_systems()},
                "converged": converged,
            }
        )
        return converged

    def provide_system_norm(self) -> float:
        """Largest scaled norm over all systems."""
        return max((e.provide_scaled_norm() for e in self.iter_systems()), default=0.0)

    def provide_mean_system_norm(self) -> float | None:
        """Summed residual norm over summed increment norm.

        Returns:
            The ratio, or ``None`` when the summed increment is zero.
        """
        norm = 0.0
        increment = 0.0
        for eqsys in self.iter_systems():
            norm += eqsys.provide_norm()
            increment += eqsys.provide_norm_increment()
        if increment == 0.0:
            logger.warning("{}: mean system norm undefined, summed norm increment is zero", self.name)
            return None
        return norm / increment

    def all_systems_decoupled(self) -> bool:
        """True only with overset topology and every system decoupled."""
        if not self.realm.has_overset:
            return False
        return all(eqsys.is_decoupled() for eqsys in self._systems)

    def __repr__(self) -> str:
        return f"EquationSystems(name={self.name!r}, systems={[e.user_supplied_name for e in self._systems]})"
