"""Build a realm from a configuration tree and run it.

Configuration layout (YAML)::

    realm:
      name: fluid
      mesh: {type: rectangle, Lx: 1.0, Ly: 1.0, nx: 11, ny: 11}
      overset:                       # optional
        components: [{name: inner, origin: [0.3, 0.3], Lx: 0.4, Ly: 0.4, nx: 9, ny: 9}]
      time: {t_end: 1.0, dt: 0.1}    # optional; steady without it
      interior: [interior]
      linear_solvers: [...]
      boundary_conditions: [...]
      initial_conditions: [...]
      post_processing: [...]
      equation_systems: {...}

Classes
-------
Simulation
    Realm plus time integrator.

Functions
---------
configure_logging
    Reset the loguru sinks.
build_mesh
    Mesh (and overset connectivity) from the ``mesh``/``overset`` blocks.
main
    Command-line entry point.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Mapping, Sequence

from loguru import logger

from pyeqsys.boundaries import (
    ConstantInitialConditionData,
    OversetBoundaryConditionData,
    parse_boundary_conditions,
    parse_initial_conditions,
    parse_post_processing,
)
from pyeqsys.config import (
    dataclass_from_dict,
    expect_map,
    expect_sequence,
    get_if_present,
    get_required,
    load_yaml,
)
from pyeqsys.errors import ConfigurationError
from pyeqsys.linear import LinearSolverConfig
from pyeqsys.mesh import Mesh, OversetAssembly, build_overset_mesh, import_mesh
from pyeqsys.realm import Realm
from pyeqsys.time import Stepper, StepReport, TimeIntegrator


def configure_logging(level: str = "INFO", sink: Any = sys.stderr) -> int:
    """Replace every loguru sink with a single one.

    Returns:
        Handler id of the new sink.
    """
    logger.remove()
    return logger.add(
        sink,
        level=level,
        format="{time:HH:mm:ss} | {level: <8} | {message}",
    )


# ----------------------------------------------------------------------
# Mesh
# ----------------------------------------------------------------------

def _rectangle(node: Mapping[str, Any], tag: int, default_name: str) -> Mesh:
    return Mesh.structured_rectangle(
        Lx=get_required(node, "Lx", float),
        Ly=get_required(node, "Ly", float),
        nx=get_required(node, "nx", int),
        ny=get_required(node, "ny", int),
        origin=tuple(get_if_present(node, "origin", (0.0, 0.0))),
        tag=tag,
        name=get_if_present(node, "name", default_name, str),
    )


def build_mesh(
    realm_node: Mapping[str, Any],
    base_dir: Path | None = None,
) -> tuple[Mesh, OversetAssembly | None]:
    """Build the realm mesh.

    ``mesh.type`` is ``rectangle``, ``blocks`` (independent rectangles
    stacked into one mesh, for non-conformal interfaces) or ``file``.
    An ``overset`` block adds component rectangles over a rectangular
    background.

    Raises:
        ConfigurationError: On an unknown mesh type, or overset over a
            non-rectangular background.
    """
    node = expect_map(realm_node, "mesh")
    kind = get_if_present(node, "type", "file" if "file" in node else "rectangle", str)
    overset = expect_map(realm_node, "overset", optional=True)

    if kind == "rectangle":
        default = "background" if overset is not None else "block_1"
        mesh = _rectangle(node, 1, default)
    elif kind == "blocks":
        blocks = expect_sequence(node, "blocks")
        mesh, _ = Mesh.merge(
            [_rectangle(b, i + 1, f"block_{i + 1}") for i, b in enumerate(blocks)]
        )
    elif kind == "file":
        path = Path(get_required(node, "file", str))
        if base_dir is not None and not path.is_absolute():
            path = base_dir / path
        mesh = import_mesh(str(path))
    else:
        raise ConfigurationError(f"Unknown mesh type {kind!r}")

    if overset is None:
        return mesh, None
    if kind != "rectangle":
        raise ConfigurationError("Overset meshes need a rectangular background mesh")
    components = [
        _rectangle(c, i + 2, f"component_{i + 1}")
        for i, c in enumerate(expect_sequence(overset, "components"))
    ]
    try:
        merged, assembly = build_overset_mesh(
            mesh, components, get_if_present(overset, "hole_margin", None, float)
        )
    except ValueError as exc:
        raise ConfigurationError(f"Overset assembly failed: {exc}") from exc
    logger.info("Overset mesh: {} receptor node(s)", assembly.n_receptors)
    return merged, assembly


# ----------------------------------------------------------------------
# Simulation
# ----------------------------------------------------------------------

class Simulation:
    """A configured realm and its time integrator.

    Args:
        realm: Fully registered realm.
        integrator: Time integrator driving it.
    """

    def __init__(self, realm: Realm, integrator: TimeIntegrator) -> None:
        self.realm = realm
        self.integrator = integrator
        self._initialized = False

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Simulation":
        path = Path(path)
        return cls.from_config(load_yaml(path), base_dir=path.parent)

    @classmethod
    def from_config(
        cls,
        tree: Mapping[str, Any],
        base_dir: Path | None = None,
    ) -> "Simulation":
        """Build realm, solvers, systems and conditions from a configuration tree.

        Raises:
            ConfigurationError: On any malformed or inconsistent entry.
        """
        node = expect_map(tree, "realm")
        mesh, assembly = build_mesh(node, base_dir)
        realm = Realm(get_if_present(node, "name", "realm", str), mesh, assembly)

        for block in expect_sequence(node, "linear_solvers"):
            realm.add_linear_solver(
                dataclass_from_dict(LinearSolverConfig, block, name="linear_solvers entry")
            )

        eqs = realm.equation_systems
        eqs.load(expect_map(node, "equation_systems"))

        interior = [str(n) for n in expect_sequence(node, "interior", optional=True) or ["interior"]]
        eqs.register_nodal_fields(interior)
        eqs.register_element_fields(interior)
        eqs.register_interior_algorithm(interior)

        bcs = parse_boundary_conditions(expect_sequence(node, "boundary_conditions", optional=True))
        if realm.has_overset and not any(isinstance(bc, OversetBoundaryConditionData) for bc in bcs):
            raise ConfigurationError("An overset mesh needs an overset_boundary_condition")
        for bc in bcs:
            getattr(eqs, f"register_{bc.kind}_bc")(bc)

        for ic in parse_initial_conditions(expect_sequence(node, "initial_conditions", optional=True)):
            if isinstance(ic, ConstantInitialConditionData):
                realm.register_constant_initial_condition(ic)
            else:
                eqs.register_initial_condition_fcn(ic)

        for pp in parse_post_processing(expect_sequence(node, "post_processing", optional=True)):
            if pp.type != "surface":
                logger.warning("post_processing type {!r} is not supported; skipped", pp.type)
                continue
            eqs.register_surface_pp_algorithm(pp)

        time_node = expect_map(node, "time", optional=True)
        stepper = None
        if time_node is not None:
            stepper = dataclass_from_dict(Stepper, time_node, name="time")
        integrator = TimeIntegrator(realm, stepper)

        logger.info("{}", realm)
        return cls(realm, integrator)

    def initialize(self) -> None:
        if not self._initialized:
            self.realm.initialize()
            self._initialized = True

    def run(self) -> list[StepReport]:
        """Initialize (once) and integrate to the end time.

        Returns:
            One report per time step.
        """
        self.initialize()
        return self.integrator.run()


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a pyeqsys configuration.")
    parser.add_argument("config", help="YAML configuration file")
    parser.add_argument("--log-level", default="INFO", help="loguru level (default: INFO)")
    parser.add_argument("--plot", default=None, help="save the norm history plot to this file")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging(args.log_level)
    sim = Simulation.from_yaml(args.config)
    reports = sim.run()
    if args.plot:
        from pyeqsys.visualization import plot_norm_history

        ax = plot_norm_history(sim.realm.equation_systems.norm_history)
        ax.figure.savefig(args.plot, dpi=150)
        logger.info("Norm history written to {}", args.plot)
    return 0 if all(r.converged for r in reports) else 1


if __name__ == "__main__":
    raise SystemExit(main())
