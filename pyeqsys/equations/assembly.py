"""Linear-triangle (P1) assembly kernels and solver algorithms.

Equations are assembled in increment form: each non-linear iteration
solves ``A dx = r`` where ``r`` is the residual at the current solution,
so a linear problem converges in a single iteration and Dirichlet rows
read ``dx = value - x``.

Functions
---------
p1_geometry
    Areas and shape-function gradients of every triangle.
p1_stiffness
    COO triplets of the diffusion matrix ``int k grad(N_a) . grad(N_b) dA``.
lumped_mass
    Row-summed (lumped) nodal mass.
nodal_gradient
    Area-weighted nodal average of the cell gradients of a nodal field.

Classes
-------
SolverAlgorithm
    Contribution of one term to an equation system's linear system.
AssembleDiffusionAlgorithm, AssembleMassAlgorithm, AssembleSourceAlgorithm
    Interior terms.
NeumannFluxAlgorithm, DirichletAlgorithm
    Boundary terms.
ConstraintAlgorithm, OversetConstraintAlgorithm
    Row replacement by interpolation constraints.
"""

from __future__ import annotations

from typing import Any, Callable

import numpy as np

from pyeqsys.fields.field import FieldState
from pyeqsys.mesh.parts import Part


# ----------------------------------------------------------------------
# Kernels
# ----------------------------------------------------------------------

def p1_geometry(nodes: np.ndarray, cells: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Triangle areas and shape-function gradients.

    Args:
        nodes: Node coordinates ``(n_nodes, 2)``.
        cells: Triangles ``(n_cells, 3)``.

    Returns:
        Tuple ``(area, b, c)`` where ``b[:, a]`` and ``c[:, a]`` are the x-
        and y-derivatives of the shape function of local node *a*.
    """
    x = nodes[cells, 0]
    y = nodes[cells, 1]
    twice_area = (x[:, 1] - x[:, 0]) * (y[:, 2] - y[:, 0]) - (x[:, 2] - x[:, 0]) * (y[:, 1] - y[:, 0])
    area = 0.5 * np.abs(twice_area)
    with np.errstate(divide="ignore", invalid="ignore"):
        b = np.stack([y[:, 1] - y[:, 2], y[:, 2] - y[:, 0], y[:, 0] - y[:, 1]], axis=1) / twice_area[:, None]
        c = np.stack([x[:, 2] - x[:, 1], x[:, 0] - x[:, 2], x[:, 1] - x[:, 0]], axis=1) / twice_area[:, None]
    degenerate = area < 1e-30
    b[degenerate] = 0.0
    c[degenerate] = 0.0
    return area, b, c


def p1_stiffness(
    nodes: np.ndarray,
    cells: np.ndarray,
    coeff: float | np.ndarray = 1.0,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Diffusion matrix triplets.

    Args:
        nodes: Node coordinates.
        cells: Triangles to assemble.
        coeff: Diffusivity, scalar or one value per cell.

    Returns:
        Tuple ``(rows, cols, vals)`` with 9 entries per cell.
    """
    area, b, c = p1_geometry(nodes, cells)
    k = np.broadcast_to(np.asarray(coeff, dtype=float), area.shape)
    local = (b[:, :, None] * b[:, None, :] + c[:, :, None] * c[:, None, :]) * (k * area)[:, None, None]
    rows = np.repeat(cells, 3, axis=1).ravel()
    cols = np.tile(cells, (1, 3)).ravel()
    return rows, cols, local.ravel()


def lumped_mass(
    nodes: np.ndarray,
    cells: np.ndarray,
    n_nodes: int,
    coeff: float | np.ndarray = 1.0,
) -> np.ndarray:
    """Lumped nodal mass: each node receives a third of every adjacent area."""
    area, _, _ = p1_geometry(nodes, cells)
    k = np.broadcast_to(np.asarray(coeff, dtype=float), area.shape)
    mass = np.zeros(n_nodes)
    np.add.at(mass, cells.ravel(), np.repeat(k * area / 3.0, 3))
    return mass


def nodal_gradient(
    nodes: np.ndarray,
    cells: np.ndarray,
    values: np.ndarray,
) -> np.ndarray:
    """Area-weighted nodal average of the constant cell gradients.

    Returns:
        Array ``(n_nodes, 2)``.
    """
    area, b, c = p1_geometry(nodes, cells)
    v = values[cells]
    grad = np.stack([(b * v).sum(axis=1), (c * v).sum(axis=1)], axis=1)
    n_nodes = len(nodes)
    acc = np.zeros((n_nodes, 2))
    weight = np.zeros(n_nodes)
    for a in range(3):
        np.add.at(acc, cells[:, a], grad * area[:, None])
        np.add.at(weight, cells[:, a], area)
    weight[weight == 0.0] = 1.0
    return acc / weight[:, None]


def _cells_of(parts: list[Part]) -> np.ndarray:
    ids = [np.asarray(sub.entities, dtype=int) for p in parts for sub in p.subsets]
    if not ids:
        return np.zeros(0, dtype=int)
    return np.unique(np.concatenate(ids))


def _edges_of(parts: list[Part]) -> np.ndarray:
    edges = [np.asarray(sub.entities, dtype=int).reshape(-1, 2) for p in parts for sub in p.subsets]
    if not edges:
        return np.zeros((0, 2), dtype=int)
    return np.vstack(edges)


# ----------------------------------------------------------------------
# Solver algorithms
# ----------------------------------------------------------------------

class SolverAlgorithm:
    """One term of an equation system's linear system.

    Algorithms with ``modifies_rows`` set run after ``load_complete``;
    the others sum into the matrix and right-hand side before it.

    Args:
        eqsys: Owning equation system.
        parts: Parts the term is assembled over.
    """

    modifies_rows = False

    def __init__(self, eqsys: Any, parts: list[Part] | None = None) -> None:
        self.eqsys = eqsys
        self.parts = list(parts or [])

    @property
    def realm(self) -> Any:
        return self.eqsys.realm

    def current(self) -> np.ndarray:
        return self.realm.fields.values(self.eqsys.dof_name)

    def node_ids(self) -> np.ndarray:
        mesh = self.realm.mesh
        ids = [p.node_ids(mesh) for p in self.parts]
        if not ids:
            return np.zeros(0, dtype=int)
        return np.unique(np.concatenate(ids))

    def execute(self) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(parts={[p.name for p in self.parts]})"


class AssembleDiffusionAlgorithm(SolverAlgorithm):
    """``-div(k grad(phi))`` over element parts.

    Args:
        eqsys: Owning equation system.
        parts: Element parts.
        diffusivity: Callable returning the per-cell diffusivity of the
            whole mesh.
    """

    def __init__(self, eqsys, parts, diffusivity: Callable[[], np.ndarray]) -> None:
        super().__init__(eqsys, parts)
        self.diffusivity = diffusivity

    def execute(self) -> None:
        mesh = self.realm.mesh
        cell_ids = _cells_of(self.parts)
        if len(cell_ids) == 0:
            return
        k = np.asarray(self.diffusivity(), dtype=float)
        if k.ndim:
            k = k[cell_ids]
        rows, cols, vals = p1_stiffness(mesh.nodes, mesh.cells[cell_ids], k)
        linsys = self.eqsys.linsys
        linsys.sum_into(rows, cols, vals)
        phi = self.current()
        linsys.sum_into_rhs(rows, -vals * phi[cols])


class AssembleMassAlgorithm(SolverAlgorithm):
    """Backward-Euler time term ``c (phi - phi_n) / dt`` with lumped mass.

    Skipped when the realm is steady (``dt`` is ``None``).
    """

    def __init__(self, eqsys, parts, capacity: Callable[[], np.ndarray | float]) -> None:
        super().__init__(eqsys, parts)
        self.capacity = capacity

    def execute(self) -> None:
        realm = self.realm
        if realm.dt is None:
            return
        mesh = realm.mesh
        cell_ids = _cells_of(self.parts)
        cap = np.asarray(self.capacity(), dtype=float)
        if cap.ndim:
            cap = cap[cell_ids]
        mass = lumped_mass(mesh.nodes, mesh.cells[cell_ids], mesh.n_nodes, cap) / realm.dt
        nodes = np.flatnonzero(mass)
        fld = realm.fields.get_field(self.eqsys.dof_name)
        phi = fld.field_of_state(FieldState.NP1)
        phi_n = fld.field_of_state(FieldState.N)
        linsys = self.eqsys.linsys
        linsys.sum_into(nodes, nodes, mass[nodes])
        linsys.sum_into_rhs(nodes, -mass[nodes] * (phi[nodes] - phi_n[nodes]))


class AssembleSourceAlgorithm(SolverAlgorithm):
    """Nodal source ``s`` with an implicit sink coefficient.

    Args:
        source: Callable ``source(node_ids) -> (s, sink)``; ``s`` is the net
            source at the current state and ``sink >= 0`` its negative
            derivative, added to the diagonal.
    """

    def __init__(self, eqsys, parts, source: Callable[[np.ndarray], tuple[np.ndarray, np.ndarray]]) -> None:
        super().__init__(eqsys, parts)
        self.source = source

    def execute(self) -> None:
        mesh = self.realm.mesh
        cell_ids = _cells_of(self.parts)
        mass = lumped_mass(mesh.nodes, mesh.cells[cell_ids], mesh.n_nodes)
        nodes = np.flatnonzero(mass)
        src, sink = self.source(nodes)
        m = mass[nodes]
        linsys = self.eqsys.linsys
        linsys.sum_into(nodes, nodes, m * np.asarray(sink, dtype=float))
        linsys.sum_into_rhs(nodes, m * np.asarray(src, dtype=float))


class NeumannFluxAlgorithm(SolverAlgorithm):
    """Prescribed inward normal flux on side parts, split evenly to edge nodes."""

    def __init__(self, eqsys, parts, flux: float) -> None:
        super().__init__(eqsys, parts)
        self.flux = float(flux)

    def execute(self) -> None:
        edges = _edges_of(self.parts)
        if len(edges) == 0:
            return
        xy = self.realm.mesh.nodes
        length = np.linalg.norm(xy[edges[:, 1]] - xy[edges[:, 0]], axis=1)
        share = np.repeat(0.5 * self.flux * length, 2)
        self.eqsys.linsys.sum_into_rhs(edges.ravel(), share)


class DirichletAlgorithm(SolverAlgorithm):
    """Fixed value on the nodes of side parts.

    Args:
        value: Scalar, or callable ``value(coords, t)`` as for the
            boundary conditions of a physics module.
    """

    modifies_rows = True

    def __init__(self, eqsys, parts, value: float | Callable) -> None:
        super().__init__(eqsys, parts)
        self.value = value

    def evaluate(self, nodes: np.ndarray) -> np.ndarray:
        if callable(self.value):
            coords = self.realm.mesh.nodes[nodes]
            return np.asarray(self.value(coords, self.realm.time), dtype=float)
        return np.full(len(nodes), float(self.value))

    def execute(self) -> None:
        nodes = self.node_ids()
        target = self.evaluate(nodes)
        self.eqsys.linsys.reset_rows(nodes, 1.0, target - self.current()[nodes])


class ConstraintAlgorithm(SolverAlgorithm):
    """Receptor rows tied to donor rows; receptor equations move to donors.

    Used for periodic and non-conformal interfaces.

    Args:
        connectivity: Callable returning ``(receptors, donors, weights)``.
    """

    modifies_rows = True

    def __init__(self, eqsys, parts, connectivity: Callable[[], tuple]) -> None:
        super().__init__(eqsys, parts)
        self.connectivity = connectivity

    def execute(self) -> None:
        receptors, donors, weights = self.connectivity()
        self.eqsys.linsys.add_constraint_rows(
            receptors, donors, weights, self.current(), transfer=True
        )


class OversetConstraintAlgorithm(SolverAlgorithm):
    """Overset fringe rows.

    Coupled systems get interpolation rows ``phi_r - sum w phi_d = 0`` in
    the matrix.  Decoupled systems hold receptors fixed (identity rows, zero
    increment); their values come from the field exchange between solves.
    """

    modifies_rows = True

    def execute(self) -> None:
        assembly = self.realm.overset_assembly
        if assembly is None or assembly.n_receptors == 0:
            return
        linsys = self.eqsys.linsys
        if self.eqsys.is_decoupled():
            linsys.reset_rows(assembly.receptors, 1.0, 0.0)
        else:
            linsys.add_constraint_rows(
                assembly.receptors, assembly.donors, assembly.weights, self.current()
            )