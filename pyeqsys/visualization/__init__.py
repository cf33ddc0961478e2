"""Visualization: convergence histories and nodal fields."""

from pyeqsys.visualization.plots import plot_nodal_field, plot_norm_history

__all__ = ["plot_nodal_field", "plot_norm_history"]
