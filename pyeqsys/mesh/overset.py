"""Overset (overlapping-mesh) connectivity.

An overset mesh is built from a background block and one or more
component blocks that overlap it.  Receptor ("fringe") nodes of one block
take their values by interpolation from a donor triangle of another block.

Classes
-------
OversetAssembly
    Receptor/donor connectivity with barycentric weights.

Functions
---------
locate_points
    Find the containing triangle and barycentric weights of points.
build_overset_mesh
    Merge overlapping rectangles and compute their connectivity.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np

from pyeqsys.mesh.mesh import Mesh


@dataclass
class OversetAssembly:
    """Receptor/donor connectivity.

    Attributes:
        receptors: Receptor node indices, shape ``(n,)``.
        donors: Donor node indices, shape ``(n, 3)``.
        weights: Interpolation weights, shape ``(n, 3)``; rows sum to 1.
    """

    receptors: np.ndarray
    donors: np.ndarray
    weights: np.ndarray

    def __post_init__(self) -> None:
        self.receptors = np.asarray(self.receptors, dtype=int)
        self.donors = np.asarray(self.donors, dtype=int).reshape(-1, 3)
        self.weights = np.asarray(self.weights, dtype=float).reshape(-1, 3)
        if not (len(self.receptors) == len(self.donors) == len(self.weights)):
            raise ValueError("receptors, donors and weights must have the same length.")

    @property
    def n_receptors(self) -> int:
        return len(self.receptors)

    def interpolate(self, values: np.ndarray) -> np.ndarray:
        """Interpolate donor values onto the receptors.

        Args:
            values: Nodal values, shape ``(n_nodes,)`` or ``(n_nodes, k)``.

        Returns:
            Receptor values, shape ``(n,)`` or ``(n, k)``.
        """
        return np.einsum("ij,ij...->i...", self.weights, values[self.donors])

    def exchange(self, values: np.ndarray) -> None:
        """Overwrite receptor entries of *values* in place."""
        values[self.receptors] = self.interpolate(values)


def locate_points(
    nodes: np.ndarray,
    cells: np.ndarray,
    points: np.ndarray,
    tol: float = 1e-10,
) -> tuple[np.ndarray, np.ndarray]:
    """Find a containing triangle for every point.

    Args:
        nodes: Node coordinates ``(n_nodes, 2)``.
        cells: Candidate triangles ``(n_cells, 3)`` (indices into *nodes*).
        points: Query points ``(n_points, 2)``.
        tol: Tolerance on negative barycentric coordinates.

    Returns:
        Tuple ``(cell_index, weights)``; ``cell_index`` is ``-1`` where no
        triangle contains the point.
    """
    p0 = nodes[cells[:, 0]]
    d1 = nodes[cells[:, 1]] - p0
    d2 = nodes[cells[:, 2]] - p0
    det = d1[:, 0] * d2[:, 1] - d2[:, 0] * d1[:, 1]

    found = np.full(len(points), -1, dtype=int)
    weights = np.zeros((len(points), 3))
    for ip, pt in enumerate(np.atleast_2d(points)):
        r = pt - p0
        l1 = (r[:, 0] * d2[:, 1] - d2[:, 0] * r[:, 1]) / det
        l2 = (d1[:, 0] * r[:, 1] - r[:, 0] * d1[:, 1]) / det
        l0 = 1.0 - l1 - l2
        inside = (l0 >= -tol) & (l1 >= -tol) & (l2 >= -tol)
        hits = np.flatnonzero(inside)
        if len(hits):
            ic = hits[0]
            found[ip] = ic
            weights[ip] = [l0[ic], l1[ic], l2[ic]]
    return found, weights


def build_overset_mesh(
    background: Mesh,
    components: Sequence[Mesh],
    hole_margin: float | None = None,
) -> tuple[Mesh, OversetAssembly]:
    """Merge a background mesh with overlapping component meshes.

    Receptors are (a) the outer boundary nodes of every component, donated
    by background triangles, and (b) background nodes inside a component
    bounding box shrunk by *hole_margin*, donated by that component.

    Args:
        background: Background mesh.
        components: Component meshes lying inside the background.
        hole_margin: Distance kept between a component boundary and the
            hole cut in the background.  Defaults to twice the larger mesh
            spacing.

    Returns:
        Tuple ``(merged_mesh, assembly)``.

    Raises:
        ValueError: If a receptor has no donor triangle.
    """
    merged, ranges = Mesh.merge([background, *components])
    bg_nodes = ranges[0]
    bg_cells = merged.cells[: background.n_cells]

    receptors: list[np.ndarray] = []
    donors: list[np.ndarray] = []
    weights: list[np.ndarray] = []

    cell_offset = background.n_cells
    for comp, comp_nodes in zip(components, ranges[1:]):
        comp_cells = merged.cells[cell_offset: cell_offset + comp.n_cells]
        cell_offset += comp.n_cells

        margin = hole_margin
        if margin is None:
            margin = 2.0 * max(background.spacing(), comp.spacing())

        # Component fringe, donated by the background
        fringe = comp_nodes[comp.boundary_nodes()]
        ic, w = locate_points(merged.nodes, bg_cells, merged.nodes[fringe])
        _require_donors(ic, fringe, "background")
        receptors.append(fringe)
        donors.append(bg_cells[ic])
        weights.append(w)

        # Hole in the background, donated by the component
        lo = comp.nodes.min(axis=0) + margin
        hi = comp.nodes.max(axis=0) - margin
        if np.all(hi > lo):
            xy = merged.nodes[bg_nodes]
            in_hole = np.all((xy > lo) & (xy < hi), axis=1)
            hole = bg_nodes[in_hole]
            if len(hole):
                ic, w = locate_points(merged.nodes, comp_cells, merged.nodes[hole])
                _require_donors(ic, hole, "component")
                receptors.append(hole)
                donors.append(comp_cells[ic])
                weights.append(w)

    if not receptors:
        return merged, OversetAssembly(
            np.zeros(0, dtype=int), np.zeros((0, 3), dtype=int), np.zeros((0, 3))
        )
    return merged, OversetAssembly(
        np.concatenate(receptors), np.vstack(donors), np.vstack(weights)
    )


def _require_donors(cell_index: np.ndarray, nodes: np.ndarray, source: Any) -> None:
    orphans = nodes[cell_index < 0]
    if len(orphans):
        raise ValueError(
            f"{len(orphans)} receptor node(s) have no {source} donor: {orphans[:5].tolist()}"
        )
