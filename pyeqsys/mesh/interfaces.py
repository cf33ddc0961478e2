"""Geometric pairing of boundary surfaces.

Functions
---------
pair_periodic_nodes
    Match slave nodes to master nodes under a rigid translation.
project_onto_edges
    Find, for each node, an opposing edge and linear weights.
"""

from __future__ import annotations

import numpy as np
from scipy.spatial import cKDTree

from pyeqsys.errors import ConfigurationError


def pair_periodic_nodes(
    coords: np.ndarray,
    master_nodes: np.ndarray,
    slave_nodes: np.ndarray,
    tol: float = 1e-8,
) -> tuple[np.ndarray, np.ndarray]:
    """Pair every slave node with a master node.

    The translation between the surfaces is the difference of their node
    centroids.

    Args:
        coords: Node coordinates ``(n_nodes, 2)``.
        master_nodes: Master surface node indices.
        slave_nodes: Slave surface node indices.
        tol: Maximum distance between a translated slave and its master.

    Returns:
        Tuple ``(slaves, masters)`` of equal length.

    Raises:
        ConfigurationError: If a slave node has no master within *tol*.
    """
    master_nodes = np.asarray(master_nodes, dtype=int)
    slave_nodes = np.asarray(slave_nodes, dtype=int)
    shift = coords[master_nodes].mean(axis=0) - coords[slave_nodes].mean(axis=0)
    tree = cKDTree(coords[master_nodes])
    dist, idx = tree.query(coords[slave_nodes] + shift)
    unmatched = dist > tol
    if np.any(unmatched):
        raise ConfigurationError(
            f"{int(unmatched.sum())} periodic slave node(s) have no master within "
            f"tolerance {tol:g} (worst distance {float(dist.max()):.3e})"
        )
    return slave_nodes, master_nodes[idx]


def project_onto_edges(
    coords: np.ndarray,
    nodes: np.ndarray,
    edges: np.ndarray,
    tol: float = 1e-6,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Project nodes onto the closest of a set of edges.

    Args:
        coords: Node coordinates ``(n_nodes, 2)``.
        nodes: Node indices to project.
        edges: Candidate edges ``(n_edges, 2)``.
        tol: Maximum distance between a node and its projection.

    Returns:
        Tuple ``(nodes, donors, weights)``; ``donors`` and ``weights`` have
        shape ``(n, 2)``.

    Raises:
        ConfigurationError: If a node is farther than *tol* from every edge.
    """
    nodes = np.asarray(nodes, dtype=int)
    edges = np.asarray(edges, dtype=int).reshape(-1, 2)
    a = coords[edges[:, 0]]
    ab = coords[edges[:, 1]] - a
    length2 = np.einsum("ij,ij->i", ab, ab)

    donors = np.zeros((len(nodes), 2), dtype=int)
    weights = np.zeros((len(nodes), 2))
    for k, p in enumerate(coords[nodes]):
        t = np.clip(np.einsum("ij,ij->i", p - a, ab) / length2, 0.0, 1.0)
        dist = np.linalg.norm(a + t[:, None] * ab - p, axis=1)
        best = int(np.argmin(dist))
        if dist[best] > tol:
            raise ConfigurationError(
                f"Node {int(nodes[k])} is {dist[best]:.3e} away from the opposing "
                f"surface (tolerance {tol:g})"
            )
        donors[k] = edges[best]
        weights[k] = (1.0 - t[best], t[best])
    return nodes, donors, weights
