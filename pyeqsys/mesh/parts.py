"""Named mesh parts and the part registry.

A *part* is a named subset of mesh entities of one rank: a block of
cells (element rank) or a boundary surface (side rank).  A logical part
may alias several physical sub-parts through its ``subsets``.

Classes
-------
EntityRank
    Topological rank of mesh entities.
Topology
    Entity topology carried by a part.
Part
    A named set of entities.
MetaData
    Registry of parts for one mesh.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Iterator

import numpy as np

from pyeqsys.errors import PartNotFoundError, PartRankError
from pyeqsys.mesh.mesh import Mesh


class EntityRank(IntEnum):
    """Rank of mesh entities."""

    NODE = 0
    EDGE = 1
    FACE = 2
    ELEMENT = 3


class Topology(str, Enum):
    """Entity topology."""

    NODE = "node"
    LINE_2 = "line_2"
    TRI_3 = "triangle_3"
    QUAD_4 = "quadrilateral_4"
    INVALID = "invalid"


@dataclass(eq=False)
class Part:
    """Named set of mesh entities.

    Attributes:
        name: Unique part name.
        rank: Primary entity rank.
        topology: Topology of the entities.
        entities: For element parts, cell indices ``(n,)``; for side parts in
            2-D, edge node pairs ``(n, 2)``.
        children: Explicit sub-parts; empty for a leaf part.
    """

    name: str
    rank: EntityRank
    topology: Topology = Topology.INVALID
    entities: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=int))
    children: list["Part"] = field(default_factory=list)

    @property
    def primary_entity_rank(self) -> EntityRank:
        return self.rank

    @property
    def subsets(self) -> list["Part"]:
        """Physical sub-parts; a leaf part is its own single subset."""
        return list(self.children) if self.children else [self]

    def node_ids(self, mesh: Mesh) -> np.ndarray:
        """Sorted unique node indices touched by this part and its subsets."""
        ids = []
        for sub in self.subsets:
            if sub.rank == EntityRank.ELEMENT:
                ids.append(mesh.cells[np.asarray(sub.entities, dtype=int)].ravel())
            else:
                ids.append(np.asarray(sub.entities, dtype=int).ravel())
        if not ids:
            return np.zeros(0, dtype=int)
        return np.unique(np.concatenate(ids))

    def __repr__(self) -> str:
        return (
            f"Part(name={self.name!r}, rank={self.rank.name}, "
            f"topology={self.topology.value}, n_subsets={len(self.children)})"
        )


class MetaData:
    """Registry of named parts on a mesh.

    Args:
        mesh: Mesh the parts refer to.
    """

    def __init__(self, mesh: Mesh) -> None:
        self.mesh = mesh
        self._parts: dict[str, Part] = {}

    @property
    def side_rank(self) -> EntityRank:
        """Rank of boundary sides: edges in 2-D, faces in 3-D."""
        return EntityRank.EDGE if self.mesh.dim == 2 else EntityRank.FACE

    def declare_part(self, part: Part) -> Part:
        """Register *part* (and its subsets) under their names."""
        self._parts[part.name] = part
        for child in part.children:
            self._parts.setdefault(child.name, child)
        return part

    def get_part(self, name: str) -> Part | None:
        """Return the named part or ``None`` if it does not exist."""
        return self._parts.get(name)

    def require_part(self, name: str, rank: EntityRank | None = None) -> Part:
        """Return the named part, validating its rank.

        Raises:
            PartNotFoundError: If no part is registered under *name*.
            PartRankError: If *rank* is given and does not match.
        """
        part = self.get_part(name)
        if part is None:
            raise PartNotFoundError(name)
        if rank is not None and part.rank != rank:
            raise PartRankError(name, rank.name, part.rank.name)
        return part

    def __contains__(self, name: str) -> bool:
        return name in self._parts

    def __iter__(self) -> Iterator[Part]:
        return iter(self._parts.values())

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    def from_mesh(cls, mesh: Mesh, tol: float = 1e-10) -> "MetaData":
        """Build the default part set of a 2-D triangular mesh.

        Creates ``interior`` (element rank; one subset per named subdomain),
        the four extreme sides ``left``, ``right``, ``bottom``, ``top`` and
        ``boundary``, a surface aliasing all four sides.  With more than one
        subdomain, every block also gets its own ``<block>_left`` ...
        ``<block>_boundary`` parts.
        """
        meta = cls(mesh)

        blocks = [
            Part(
                name=name,
                rank=EntityRank.ELEMENT,
                topology=Topology.TRI_3,
                entities=np.flatnonzero(mesh.cell_tags == tag),
            )
            for name, tag in mesh.subdomain_map.items()
        ]
        meta.declare_part(
            Part(
                name="interior",
                rank=EntityRank.ELEMENT,
                topology=Topology.TRI_3,
                entities=np.arange(mesh.n_cells),
                children=blocks,
            )
        )

        meta._declare_sides(mesh.boundary_edges(), "", tol)
        if len(blocks) > 1:
            for block in blocks:
                meta._declare_sides(
                    mesh.boundary_edges(block.entities), f"{block.name}_", tol
                )
        return meta

    def _declare_sides(self, edges: np.ndarray, prefix: str, tol: float) -> None:
        """Declare ``left/right/bottom/top`` at the extremes of *edges* and
        a ``boundary`` surface aliasing them."""
        coords = self.mesh.nodes
        touched = coords[np.unique(edges)]
        lo = touched.min(axis=0)
        hi = touched.max(axis=0)
        selectors = {
            "left": (0, lo[0]),
            "right": (0, hi[0]),
            "bottom": (1, lo[1]),
            "top": (1, hi[1]),
        }
        sides = []
        for name, (axis, value) in selectors.items():
            on_side = np.all(np.abs(coords[edges][:, :, axis] - value) < tol, axis=1)
            side = Part(
                name=f"{prefix}{name}",
                rank=self.side_rank,
                topology=Topology.LINE_2,
                entities=edges[on_side],
            )
            sides.append(side)
            self.declare_part(side)
        self.declare_part(
            Part(
                name=f"{prefix}boundary",
                rank=self.side_rank,
                topology=Topology.LINE_2,
                entities=edges,
                children=sides,
            )
        )

    def __repr__(self) -> str:
        return f"MetaData(parts={list(self._parts)})"
