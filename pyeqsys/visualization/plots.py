"""Plotting utilities.

Functions
---------
plot_norm_history
    Scaled norm of every equation system per non-linear iteration.
plot_nodal_field
    Filled contours of a nodal field on the triangular mesh.
"""

from __future__ import annotations

from typing import Any, Sequence

import numpy as np


def plot_norm_history(
    history: Sequence[dict[str, Any]],
    ax: Any = None,
    title: str = "Non-linear convergence",
) -> Any:
    """Plot per-system scaled norms against the iteration index.

    Args:
        history: ``EquationSystems.norm_history`` entries.
        ax: Matplotlib axes (creates a new figure if None).
        title: Plot title.

    Returns:
        Matplotlib axes.
    """
    import matplotlib.pyplot as plt

    if ax is None:
        _, ax = plt.subplots(1, 1, figsize=(8, 4))

    names = list(dict.fromkeys(n for entry in history for n in entry["norms"]))
    iterations = np.arange(1, len(history) + 1)
    for name in names:
        values = np.array([entry["norms"].get(name, np.nan) for entry in history], dtype=float)
        # Zero norms cannot be drawn on a log axis.
        values[values <= 0.0] = np.nan
        ax.semilogy(iterations, values, marker="o", markersize=3, label=name)

    steps = [entry["step"] for entry in history]
    for k in range(1, len(steps)):
        if steps[k] != steps[k - 1]:
            ax.axvline(k + 0.5, color="0.8", linewidth=0.5)

    ax.set_xlabel("non-linear iteration")
    ax.set_ylabel("scaled norm")
    ax.set_title(title)
    if names:
        ax.legend()
    return ax


def plot_nodal_field(
    mesh: Any,
    values: np.ndarray,
    contours: int = 20,
    colorbar: bool = True,
    title: str = "",
    ax: Any = None,
    cmap: str = "viridis",
) -> Any:
    """Plot a nodal scalar field on a 2-D triangular mesh.

    Args:
        mesh: Computational mesh.
        values: Nodal values, shape ``(n_nodes,)``.
        contours: Number of contour levels.
        colorbar: Show colour bar.
        title: Plot title and colour-bar label.
        ax: Matplotlib axes (creates a new figure if None).
        cmap: Matplotlib colour map name.

    Returns:
        Matplotlib axes.
    """
    import matplotlib.pyplot as plt
    import matplotlib.tri as mtri

    if ax is None:
        _, ax = plt.subplots(1, 1, figsize=(6, 5))

    nodes = mesh.nodes
    triang = mtri.Triangulation(nodes[:, 0], nodes[:, 1], mesh.cells)
    cs = ax.tricontourf(triang, values, levels=contours, cmap=cmap)
    if colorbar:
        plt.colorbar(cs, ax=ax, label=title)
    ax.triplot(triang, color="k", linewidth=0.2, alpha=0.4)
    ax.set_aspect("equal")
    ax.set_title(title)
    ax.set_xlabel("x")
    ax.set_ylabel("y")
    return ax
