"""Abstract linear-system handle.

An equation system owns one :class:`LinearSystem`.  Each non-linear
iteration zeroes it, sums element contributions into it, completes the
load, and solves for the solution increment.

Classes
-------
LinearSolverConfig
    Named linear-solver settings (one ``linear_solvers`` block).
LinearSystem
    Abstract assemble/solve/norm contract.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class LinearSolverConfig:
    """Settings of one named linear solver.

    Attributes:
        name: Block name referenced by ``solver_system_specification``.
        method: ``"gmres"``, ``"cg"``, ``"bicgstab"`` or ``"direct"``.
        tolerance: Relative residual tolerance of the Krylov solve.
        max_iterations: Iteration cap of the Krylov solve.
        restart: GMRES restart length.
        preconditioner: ``"ilu"`` or ``"none"``.
    """

    name: str
    method: str = "gmres"
    tolerance: float = 1e-8
    max_iterations: int = 200
    restart: int = 30
    preconditioner: str = "ilu"


class LinearSystem(ABC):
    """Linear system ``A dx = b`` solved for a solution increment.

    Norm bookkeeping follows the non-linear convention: the first residual
    norm seen after :meth:`reset_scaling` is the reference scale of the
    time step.

    Args:
        n_rows: Number of unknowns.
        config: Solver settings.
    """

    def __init__(self, n_rows: int, config: LinearSolverConfig) -> None:
        self.n_rows = int(n_rows)
        self.config = config
        self.rhs = np.zeros(self.n_rows)
        self.linear_iterations = 0
        self.precond_time = 0.0
        self._norm = 0.0
        self._norm_increment = 0.0
        self._first_norm: float | None = None
        self._rescale = True

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    @abstractmethod
    def zero(self) -> None:
        """Clear matrix and right-hand side."""

    @abstractmethod
    def sum_into(
        self,
        rows: np.ndarray,
        cols: np.ndarray,
        values: np.ndarray,
    ) -> None:
        """Accumulate matrix entries ``A[rows[k], cols[k]] += values[k]``."""

    def sum_into_rhs(self, rows: np.ndarray, values: np.ndarray) -> None:
        """Accumulate right-hand-side entries."""
        np.add.at(self.rhs, np.asarray(rows, dtype=int), values)

    @abstractmethod
    def load_complete(self) -> None:
        """Finish assembly; rows may be modified only after this call."""

    @abstractmethod
    def reset_rows(
        self,
        rows: np.ndarray,
        diag: float = 1.0,
        rhs: float | np.ndarray = 0.0,
    ) -> None:
        """Replace *rows* with ``diag * dx = rhs``."""

    @abstractmethod
    def add_constraint_rows(
        self,
        receptors: np.ndarray,
        donors: np.ndarray,
        weights: np.ndarray,
        current: np.ndarray,
        transfer: bool = False,
    ) -> None:
        """Replace receptor rows by interpolation constraints.

        Each receptor row becomes ``dx_r - sum_k w_k dx_dk = -(x_r - sum_k w_k x_dk)``
        so that the updated field satisfies the interpolation exactly.

        Args:
            receptors: Constrained rows, shape ``(n,)``.
            donors: Donor rows, shape ``(n, k)``.
            weights: Interpolation weights, shape ``(n, k)``.
            current: Current solution, used for the constraint residual.
            transfer: If True, the receptor equations are first added to
                their donor rows with the same weights (multi-point
                constraint), so the flux balance of the receptor is kept.
        """

    # ------------------------------------------------------------------
    # Solve
    # ------------------------------------------------------------------

    @abstractmethod
    def _solve(self, delta: np.ndarray) -> int:
        """Solve into *delta*, returning the linear iteration count."""

    def solve(self, delta: np.ndarray) -> int:
        """Solve ``A delta = rhs`` and update the norm bookkeeping.

        Args:
            delta: Output array, shape ``(n_rows,)``.

        Returns:
            Number of linear iterations.
        """
        scale = math.sqrt(max(self.n_rows, 1))
        self._norm = float(np.linalg.norm(self.rhs)) / scale
        if self._rescale:
            self._first_norm = self._norm
            self._rescale = False
        self.linear_iterations = self._solve(delta)
        self._norm_increment = float(np.linalg.norm(delta)) / scale
        return self.linear_iterations

    def reset_scaling(self) -> None:
        """Start a new time step; the next residual norm becomes the scale.

        Until then, norms keep referring to the previous scale.
        """
        self._rescale = True

    def norm(self) -> float:
        """Residual norm before the last solve."""
        return self._norm

    def norm_increment(self) -> float:
        """Norm of the last solution increment."""
        return self._norm_increment

    def scaled_norm(self) -> float:
        """Residual norm relative to the first residual of the time step."""
        if not self._first_norm:
            return 0.0 if self._norm == 0.0 else 1.0
        return self._norm / self._first_norm

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(n_rows={self.n_rows}, "
            f"solver={self.config.name!r}, method={self.config.method!r})"
        )
