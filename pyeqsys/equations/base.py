"""Equation-system contract.

An equation system owns one PDE unknown: its linear system, its
algorithm lists and its per-iteration work.  The composite driver
(:class:`~pyeqsys.coupling.equation_systems.EquationSystems`) owns the
systems and calls into them in a fixed order.

Registration hooks (``register_wall_bc``, ``register_nodal_fields``, ...)
are capabilities: a concrete system declares one by defining the method.
The base class defines none of them, and :meth:`EquationSystem.capabilities`
reports which ones a system has.

Classes
-------
SystemSettings
    Immutable per-system numeric and overset controls.
EquationSystem
    Base class of every equation system.
WrapperEquationSystem
    A system without a linear system that drives child systems.

Functions
---------
settings_from_block
    Apply the overrides of one configuration block to the defaults.
"""

from __future__ import annotations

import dataclasses
import time
import weakref
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, ClassVar, Iterator, Mapping

import numpy as np
from loguru import logger

from pyeqsys.config import dataclass_from_dict, get_if_present
from pyeqsys.errors import ConfigurationError
from pyeqsys.linear import LinearSystem, create_linear_system

CAPABILITY_HOOKS = (
    "register_nodal_fields",
    "register_edge_fields",
    "register_element_fields",
    "register_interior_algorithm",
    "register_wall_bc",
    "register_inflow_bc",
    "register_open_bc",
    "register_symmetry_bc",
    "register_periodic_bc",
    "register_non_conformal_bc",
    "register_overset_bc",
    "register_surface_pp_algorithm",
    "register_initial_condition_fcn",
)

# Constraints that move equations between rows run before Dirichlet rows
# are set; overset fringe rows are set last.
BC_KINDS = ("periodic", "non_conformal", "wall", "inflow", "open", "symmetry", "overset")

# Keys of a physics block read by the base class.
_BLOCK_KEYS = frozenset(
    {
        "name",
        "max_iterations",
        "convergence_tolerance",
        "decoupled_overset_solve",
        "num_overset_correctors",
    }
)


@dataclass(frozen=True)
class SystemSettings:
    """Numeric and overset controls handed to a system at construction.

    Attributes:
        max_iterations: Non-linear iterations per ``solve_and_update`` call.
        convergence_tolerance: Scaled-norm threshold for convergence.
        decoupled_overset: Solve overset fringes segregated from the system.
        num_overset_iters: Solve/exchange cycles per iteration when decoupled.
    """

    max_iterations: int = 1
    convergence_tolerance: float = 1.0e-5
    decoupled_overset: bool = False
    num_overset_iters: int = 1

    def __post_init__(self) -> None:
        if self.max_iterations < 0:
            raise ValueError(f"max_iterations must be >= 0, got {self.max_iterations}")
        if self.num_overset_iters < 1:
            raise ValueError(f"num_overset_iters must be >= 1, got {self.num_overset_iters}")


def settings_from_block(
    node: Mapping[str, Any],
    defaults: SystemSettings,
    has_overset: bool,
) -> SystemSettings:
    """Return *defaults* with the overrides of one physics block applied.

    Overset keys are read only when the realm has overset topology.
    """
    changes: dict[str, Any] = {
        "max_iterations": get_if_present(node, "max_iterations", defaults.max_iterations, int),
        "convergence_tolerance": get_if_present(
            node, "convergence_tolerance", defaults.convergence_tolerance, float
        ),
    }
    if has_overset:
        changes["decoupled_overset"] = get_if_present(
            node, "decoupled_overset_solve", defaults.decoupled_overset, bool
        )
        changes["num_overset_iters"] = get_if_present(
            node, "num_overset_correctors", defaults.num_overset_iters, int
        )
    try:
        return dataclasses.replace(defaults, **changes)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid equation system settings: {exc}") from exc


class EquationSystem:
    """Base equation system.

    Args:
        eq_systems: Owning driver.  Held as a weak reference; the system is
            only usable while its owner is alive.
        name: User-supplied name (the ``name`` key of the physics block).
        settings: Numeric and overset controls.
        params: Model parameters, an instance of :attr:`Parameters`.
    """

    equation_type: ClassVar[str] = "EquationSystem"
    dof_name: ClassVar[str] = "undefined"
    Parameters: ClassVar[type | None] = None

    def __init__(
        self,
        eq_systems: Any,
        name: str | None = None,
        settings: SystemSettings | None = None,
        params: Any = None,
    ) -> None:
        self._eq_systems = weakref.ref(eq_systems)
        self.name = self.equation_type
        self.user_supplied_name = name or self.equation_type
        self.settings = settings or SystemSettings()
        if params is None and self.Parameters is not None:
            params = self.Parameters()
        self.params = params

        self.linsys: LinearSystem | None = None
        self.delta: np.ndarray | None = None
        self.children: list[EquationSystem] = []

        # Timers accumulate over the run.
        self.timer_assemble = 0.0
        self.timer_load_complete = 0.0
        self.timer_solve = 0.0
        self.timer_misc = 0.0
        self.timer_init = 0.0
        self.timer_precond = 0.0

        self.non_linear_iteration_count = 0
        self.avg_linear_iterations = 0.0
        self.min_linear_iterations = float("inf")
        self.max_linear_iterations = 0.0
        self.first_timestep_solve = True

        # Filled during setup, iterated every solve.
        self.solver_algs: list[Any] = []
        self.bc_algs: dict[str, list[Any]] = {kind: [] for kind in BC_KINDS}
        self.property_algs: list[Any] = []
        self.bc_data_algs: list[Any] = []
        self.bc_data_map_algs: list[Any] = []
        self.copy_state_algs: list[Any] = []
        self.initial_condition_algs: list[Any] = []
        self.pre_iter_algs: list[Any] = []
        self.post_iter_algs: list[Any] = []

    # ------------------------------------------------------------------
    # Construction from configuration
    # ------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        eq_systems: Any,
        node: Mapping[str, Any],
        defaults: SystemSettings,
    ) -> "EquationSystem":
        """Build a system from its physics block.

        Keys other than the common ones are model parameters and must be
        fields of :attr:`Parameters`.
        """
        node = dict(node or {})
        settings = settings_from_block(node, defaults, eq_systems.realm.has_overset)
        extra = {k: v for k, v in node.items() if k not in _BLOCK_KEYS}
        params = None
        if cls.Parameters is not None:
            params = dataclass_from_dict(cls.Parameters, extra, name=f"{cls.equation_type} block")
        elif extra:
            raise ConfigurationError(
                f"Unknown keys in {cls.equation_type} block: {sorted(extra)}"
            )
        return cls(eq_systems, name=node.get("name"), settings=settings, params=params)

    # ------------------------------------------------------------------
    # Handles
    # ------------------------------------------------------------------

    @property
    def eq_systems(self) -> Any:
        owner = self._eq_systems()
        if owner is None:
            raise RuntimeError(f"{self.name}: owning EquationSystems no longer exists")
        return owner

    @property
    def realm(self) -> Any:
        return self.eq_systems.realm

    @property
    def max_iterations(self) -> int:
        return self.settings.max_iterations

    @property
    def convergence_tolerance(self) -> float:
        return self.settings.convergence_tolerance

    @property
    def num_overset_iters(self) -> int:
        return self.settings.num_overset_iters

    def is_decoupled(self) -> bool:
        return self.settings.decoupled_overset

    def capabilities(self) -> frozenset[str]:
        """Names of the registration hooks this system implements."""
        return frozenset(h for h in CAPABILITY_HOOKS if callable(getattr(self, h, None)))

    def walk(self) -> Iterator["EquationSystem"]:
        """Yield this system, then its children depth-first."""
        yield self
        for child in self.children:
            yield from child.walk()

    # ------------------------------------------------------------------
    # Linear system
    # ------------------------------------------------------------------

    def create_linear_system(self) -> LinearSystem:
        """Create the linear system from the solver block mapped to ``dof_name``."""
        block = self.eq_systems.get_solver_block_name(self.dof_name)
        config = self.realm.linear_solver(block)
        n_rows = self.realm.mesh.n_nodes
        self.linsys = create_linear_system(config, n_rows)
        self.delta = np.zeros(n_rows)
        return self.linsys

    def reinitialize_linear_system(self) -> None:
        """Discard the linear system and build a fresh one with the same solver."""
        if self.linsys is None:
            return
        self.linsys = create_linear_system(self.linsys.config, self.linsys.n_rows)
        self.delta = np.zeros(self.linsys.n_rows)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @contextmanager
    def _timed(self, attr: str) -> Iterator[None]:
        t0 = time.perf_counter()
        try:
            yield
        finally:
            setattr(self, attr, getattr(self, attr) + time.perf_counter() - t0)

    def initialize(self) -> None:
        """One-time setup: apply initial conditions and evaluate properties."""
        for alg in self.initial_condition_algs:
            alg.execute()
        if self.linsys is not None:
            self.linsys.zero()
        self.evaluate_properties()

    def populate_derived_quantities(self) -> None:
        pass

    def initial_work(self) -> None:
        pass

    def pre_timestep_work(self) -> None:
        """Start a time step: reset the norm scale and copy states."""
        self.first_timestep_solve = True
        if self.linsys is not None:
            self.linsys.reset_scaling()
        for alg in self.copy_state_algs:
            alg.execute()

    def predict_state(self) -> None:
        pass

    def pre_iter_work(self) -> None:
        with self._timed("timer_misc"):
            for alg in self.pre_iter_algs:
                alg.execute()

    def solve_and_update(self) -> None:
        pass

    def post_iter_work(self) -> None:
        with self._timed("timer_misc"):
            for alg in self.post_iter_algs:
                alg.execute()

    def post_iter_work_dep(self) -> None:
        """Legacy second pass, run after every system has finished its iteration.

        Deprecated: new work belongs in :meth:`post_iter_work`.
        """

    def post_converged_work(self) -> None:
        pass

    def provide_output(self) -> None:
        pass

    def post_external_data_transfer_work(self) -> None:
        pass

    def evaluate_properties(self) -> None:
        for alg in self.property_algs:
            alg.execute()

    # ------------------------------------------------------------------
    # Assembly and solve
    # ------------------------------------------------------------------

    def assemble_and_solve(self, delta: np.ndarray) -> int:
        """Assemble the linear system, solve it into *delta*.

        Returns:
            Linear iteration count.
        """
        linsys = self.linsys
        with self._timed("timer_assemble"):
            linsys.zero()
            for alg in self.solver_algs:
                alg.execute()
            for kind in BC_KINDS:
                for alg in self.bc_algs[kind]:
                    if not alg.modifies_rows:
                        alg.execute()

        with self._timed("timer_load_complete"):
            linsys.load_complete()
            for kind in BC_KINDS:
                for alg in self.bc_algs[kind]:
                    if alg.modifies_rows:
                        alg.execute()

        precond_before = linsys.precond_time
        with self._timed("timer_solve"):
            iters = linsys.solve(delta)
        self.timer_precond += linsys.precond_time - precond_before
        self.update_iteration_statistics(iters)
        self.first_timestep_solve = False
        return iters

    @staticmethod
    def solution_update(
        delta_frac: float,
        delta: np.ndarray,
        field_frac: float,
        field: np.ndarray,
    ) -> None:
        """In place: ``field = field_frac * field + delta_frac * delta``."""
        field *= field_frac
        field += delta_frac * delta

    def solve_dof(self, field_name: str) -> None:
        """One non-linear iteration on the owned field.

        With decoupled overset, the system is solved ``num_overset_iters``
        times, and the field is exchanged across the overset fringe after
        every solve.
        """
        realm = self.realm
        decoupled = realm.has_overset and self.is_decoupled()
        values = realm.fields.values(field_name)
        for _ in range(self.num_overset_iters if decoupled else 1):
            self.assemble_and_solve(self.delta)
            self.solution_update(1.0, self.delta, 1.0, values)
            if decoupled:
                self.eq_systems.overset_driver.exchange_field(field_name)

    def update_iteration_statistics(self, iters: int) -> None:
        self.non_linear_iteration_count += 1
        n = self.non_linear_iteration_count
        self.avg_linear_iterations = (self.avg_linear_iterations * (n - 1) + iters) / n
        self.max_linear_iterations = max(self.max_linear_iterations, iters)
        self.min_linear_iterations = min(self.min_linear_iterations, iters)

    # ------------------------------------------------------------------
    # Norms and convergence
    # ------------------------------------------------------------------

    def provide_scaled_norm(self) -> float:
        return 0.0 if self.linsys is None else self.linsys.scaled_norm()

    def provide_norm(self) -> float:
        return 0.0 if self.linsys is None else self.linsys.norm()

    def provide_norm_increment(self) -> float:
        return 0.0 if self.linsys is None else self.linsys.norm_increment()

    def system_is_converged(self) -> bool:
        """True if the last scaled norm is within tolerance; always True without a linear system."""
        if self.linsys is None:
            return True
        return self.provide_scaled_norm() <= self.convergence_tolerance

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def dump_eq_time(self) -> None:
        logger.info("Timing for Eq: {} ({})", self.user_supplied_name, self.name)
        logger.info("  init --     {:.4e}", self.timer_init)
        if self.linsys is None:
            logger.info("  misc --     {:.4e}", self.timer_misc)
            return
        logger.info("  assemble -- {:.4e}", self.timer_assemble)
        logger.info("  load_complt -- {:.4e}", self.timer_load_complete)
        logger.info("  solve --    {:.4e}", self.timer_solve)
        logger.info("  precond setup -- {:.4e}", self.timer_precond)
        logger.info("  misc --     {:.4e}", self.timer_misc)
        if self.non_linear_iteration_count:
            logger.info(
                "  linear iterations: avg {:.1f} min {:.0f} max {:.0f}",
                self.avg_linear_iterations,
                self.min_linear_iterations,
                self.max_linear_iterations,
            )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.user_supplied_name!r}, "
            f"dof={self.dof_name!r}, wrapper={self.linsys is None})"
        )


class WrapperEquationSystem(EquationSystem):
    """System that owns no linear system and sequences its children.

    Each ``solve_and_update`` call runs ``max_iterations`` passes over the
    children in order, calling :meth:`post_children_update` after each pass.
    """

    def solve_and_update(self) -> None:
        for _ in range(self.max_iterations):
            for child in self.children:
                child.pre_iter_work()
                child.solve_and_update()
                child.post_iter_work()
            self.post_children_update()

    def post_children_update(self) -> None:
        pass
