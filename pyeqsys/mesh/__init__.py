"""Mesh: nodes, cells, named parts and overset connectivity."""

from pyeqsys.mesh.mesh import Mesh, import_mesh
from pyeqsys.mesh.parts import EntityRank, Topology, Part, MetaData
from pyeqsys.mesh.overset import OversetAssembly, build_overset_mesh, locate_points
from pyeqsys.mesh.interfaces import pair_periodic_nodes, project_onto_edges

__all__ = [
    "Mesh",
    "import_mesh",
    "EntityRank",
    "Topology",
    "Part",
    "MetaData",
    "OversetAssembly",
    "build_overset_mesh",
    "locate_points",
    "pair_periodic_nodes",
    "project_onto_edges",
]
