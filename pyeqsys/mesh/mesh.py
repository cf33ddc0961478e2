"""Mesh generation and import.

Classes
-------
Mesh
    Container for nodes, cells, and subdomain tags, with convenience
    methods for structured mesh generation.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np


class Mesh:
    """Unstructured triangular mesh.

    Attributes:
        nodes: Node coordinates, shape ``(n_nodes, dim)``.
        cells: Cell connectivity, shape ``(n_cells, nodes_per_cell)``.
        cell_tags: Integer tag per cell (for subdomain identification).
        dim: Spatial dimension.
        subdomain_map: Mapping from subdomain name to integer tag.
    """

    def __init__(
        self,
        nodes: np.ndarray,
        cells: np.ndarray,
        cell_tags: np.ndarray | None = None,
        subdomain_map: dict[str, int] | None = None,
    ) -> None:
        self.nodes = np.asarray(nodes, dtype=float)
        self.cells = np.asarray(cells, dtype=int)
        self.dim = self.nodes.shape[1]
        self.cell_tags = (
            np.asarray(cell_tags, dtype=int)
            if cell_tags is not None
            else np.zeros(len(self.cells), dtype=int)
        )
        self.subdomain_map: dict[str, int] = subdomain_map or {}

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def n_nodes(self) -> int:
        """Number of nodes."""
        return len(self.nodes)

    @property
    def n_cells(self) -> int:
        """Number of cells."""
        return len(self.cells)

    # ------------------------------------------------------------------
    # Derived quantities
    # ------------------------------------------------------------------

    def cell_areas(self) -> np.ndarray:
        """Unsigned area of each triangle, shape ``(n_cells,)``."""
        p = self.nodes[self.cells]
        d1 = p[:, 1] - p[:, 0]
        d2 = p[:, 2] - p[:, 0]
        return 0.5 * np.abs(d1[:, 0] * d2[:, 1] - d2[:, 0] * d1[:, 1])

    def edges(self) -> np.ndarray:
        """Unique undirected edges, shape ``(n_edges, 2)``, sorted node pairs."""
        n_per = self.cells.shape[1]
        pairs = np.concatenate(
            [self.cells[:, [i, (i + 1) % n_per]] for i in range(n_per)]
        )
        return np.unique(np.sort(pairs, axis=1), axis=0)

    def boundary_edges(self, cell_ids: np.ndarray | None = None) -> np.ndarray:
        """Edges that belong to exactly one cell.

        Args:
            cell_ids: Restrict to the boundary of this subset of cells.

        Returns:
            Array of shape ``(n_boundary_edges, 2)`` with sorted node pairs.
        """
        cells = self.cells if cell_ids is None else self.cells[cell_ids]
        n_per = cells.shape[1]
        pairs = np.concatenate(
            [cells[:, [i, (i + 1) % n_per]] for i in range(n_per)]
        )
        pairs = np.sort(pairs, axis=1)
        unique, counts = np.unique(pairs, axis=0, return_counts=True)
        return unique[counts == 1]

    def boundary_nodes(self) -> np.ndarray:
        """Sorted indices of nodes lying on a boundary edge."""
        return np.unique(self.boundary_edges())

    def spacing(self) -> float:
        """Largest edge length of the mesh."""
        e = self.edges()
        return float(np.linalg.norm(self.nodes[e[:, 1]] - self.nodes[e[:, 0]], axis=1).max())

    # ------------------------------------------------------------------
    # Factory methods
    # ------------------------------------------------------------------

    @classmethod
    def structured_rectangle(
        cls,
        Lx: float,
        Ly: float,
        nx: int,
        ny: int,
        origin: Sequence[float] = (0.0, 0.0),
        tag: int = 1,
        name: str = "block_1",
    ) -> "Mesh":
        """Create a structured triangular mesh for a rectangle.

        Args:
            Lx: Width.
            Ly: Height.
            nx: Number of nodes along x (at least 2).
            ny: Number of nodes along y (at least 2).
            origin: Bottom-left corner.
            tag: Subdomain tag given to every cell.
            name: Subdomain name for *tag*.
        """
        nx = max(2, int(nx))
        ny = max(2, int(ny))
        x0, y0 = float(origin[0]), float(origin[1])
        x = np.linspace(x0, x0 + Lx, nx)
        y = np.linspace(y0, y0 + Ly, ny)
        xx, yy = np.meshgrid(x, y)
        nodes = np.column_stack([xx.ravel(), yy.ravel()])

        # Two triangles per quad
        cells = []
        for j in range(ny - 1):
            for i in range(nx - 1):
                n0 = j * nx + i
                n1 = n0 + 1
                n2 = n0 + nx
                n3 = n2 + 1
                cells.append([n0, n1, n2])
                cells.append([n1, n3, n2])
        cells = np.array(cells, dtype=int)

        return cls(
            nodes=nodes,
            cells=cells,
            cell_tags=np.full(len(cells), tag, dtype=int),
            subdomain_map={name: tag},
        )

    @classmethod
    def merge(cls, meshes: Sequence["Mesh"]) -> tuple["Mesh", list[np.ndarray]]:
        """Stack independent meshes into one node/cell set.

        Node numbering of each input is offset; cell tags and subdomain
        names are kept, so tags must be unique across the inputs.

        Returns:
            Tuple of ``(merged_mesh, node_ranges)`` where ``node_ranges[i]``
            holds the merged node indices of ``meshes[i]``.
        """
        nodes, cells, tags = [], [], []
        subdomain_map: dict[str, int] = {}
        ranges = []
        offset = 0
        for m in meshes:
            nodes.append(m.nodes)
            cells.append(m.cells + offset)
            tags.append(m.cell_tags)
            ranges.append(np.arange(offset, offset + m.n_nodes))
            for key, value in m.subdomain_map.items():
                if key in subdomain_map or value in subdomain_map.values():
                    raise ValueError(f"Duplicate subdomain {key!r} / tag {value}")
                subdomain_map[key] = value
            offset += m.n_nodes
        merged = cls(
            nodes=np.vstack(nodes),
            cells=np.vstack(cells),
            cell_tags=np.concatenate(tags),
            subdomain_map=subdomain_map,
        )
        return merged, ranges

    # ------------------------------------------------------------------
    # repr
    # ------------------------------------------------------------------

    def __repr__(self) -> str:
        return (
            f"Mesh(n_nodes={self.n_nodes}, n_cells={self.n_cells}, "
            f"dim={self.dim}, subdomains={list(self.subdomain_map.keys())})"
        )


def import_mesh(filename: str) -> Mesh:
    """Import a triangular mesh from an external file using *meshio*.

    Supported formats include ``.msh`` (gmsh), ``.vtk``, ``.xdmf``, etc.
    Gmsh physical groups of dimension 2 become named subdomains.

    Args:
        filename: Path to the mesh file.

    Returns:
        Mesh instance.
    """
    import meshio

    m = meshio.read(filename)
    nodes = m.points[:, :2]

    blocks = [i for i, block in enumerate(m.cells) if block.type == "triangle"]
    if not blocks:
        raise ValueError(f"No triangle cells found in {filename}")
    cells = np.vstack([m.cells[i].data for i in blocks])

    cell_tags = None
    if m.cell_data:
        for key in ("gmsh:physical", *m.cell_data):
            if key in m.cell_data:
                cell_tags = np.concatenate(
                    [np.asarray(m.cell_data[key][i], dtype=int) for i in blocks]
                )
                break

    subdomain_map: dict[str, int] = {}
    for name, (tag, dim) in (m.field_data or {}).items():
        if int(dim) == 2:
            subdomain_map[name] = int(tag)

    return Mesh(nodes=nodes, cells=cells, cell_tags=cell_tags, subdomain_map=subdomain_map)
