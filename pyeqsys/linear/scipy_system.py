"""Linear system on ``scipy.sparse`` with Krylov or direct solves.

Classes
-------
ScipyLinearSystem
    Triplet assembly into CSR, solved with ``scipy.sparse.linalg``.

Functions
---------
create_linear_system
    Build a linear system from a solver configuration.
"""

from __future__ import annotations

import time

import numpy as np
from loguru import logger
from scipy import sparse
from scipy.sparse.linalg import LinearOperator, bicgstab, cg, gmres, spilu, spsolve

from pyeqsys.errors import ConfigurationError
from pyeqsys.linear.base import LinearSolverConfig, LinearSystem

_KRYLOV = {"gmres": gmres, "cg": cg, "bicgstab": bicgstab}


class ScipyLinearSystem(LinearSystem):
    """Sparse linear system assembled from COO triplets.

    Args:
        n_rows: Number of unknowns.
        config: Solver settings.
    """

    def __init__(self, n_rows: int, config: LinearSolverConfig) -> None:
        if config.method not in _KRYLOV and config.method != "direct":
            raise ConfigurationError(
                f"Linear solver {config.name!r}: unknown method {config.method!r}; "
                f"choose from {sorted([*_KRYLOV, 'direct'])}"
            )
        super().__init__(n_rows, config)
        self._rows: list[np.ndarray] = []
        self._cols: list[np.ndarray] = []
        self._vals: list[np.ndarray] = []
        self.matrix: sparse.csr_matrix | None = None

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def zero(self) -> None:
        self._rows.clear()
        self._cols.clear()
        self._vals.clear()
        self.matrix = None
        self.rhs[:] = 0.0

    def sum_into(self, rows, cols, values) -> None:
        if self.matrix is not None:
            raise RuntimeError("sum_into() called after load_complete(); call zero() first.")
        self._rows.append(np.asarray(rows, dtype=int).ravel())
        self._cols.append(np.asarray(cols, dtype=int).ravel())
        self._vals.append(np.asarray(values, dtype=float).ravel())

    def load_complete(self) -> None:
        n = self.n_rows
        if self._rows:
            rows = np.concatenate(self._rows)
            cols = np.concatenate(self._cols)
            vals = np.concatenate(self._vals)
        else:
            rows = cols = np.zeros(0, dtype=int)
            vals = np.zeros(0)
        # Duplicate triplets are summed by the CSR conversion.
        self.matrix = sparse.coo_matrix((vals, (rows, cols)), shape=(n, n)).tocsr()

    def _require_matrix(self) -> sparse.csr_matrix:
        if self.matrix is None:
            raise RuntimeError("load_complete() must be called before modifying rows.")
        return self.matrix

    def _drop_rows(self, rows: np.ndarray) -> sparse.csr_matrix:
        keep = np.ones(self.n_rows)
        keep[rows] = 0.0
        return sparse.diags(keep) @ self._require_matrix()

    def reset_rows(self, rows, diag: float = 1.0, rhs=0.0) -> None:
        rows = np.asarray(rows, dtype=int)
        if len(rows) == 0:
            return
        fill = np.zeros(self.n_rows)
        fill[rows] = diag
        self.matrix = (self._drop_rows(rows) + sparse.diags(fill)).tocsr()
        self.rhs[rows] = rhs

    def add_constraint_rows(self, receptors, donors, weights, current, transfer=False) -> None:
        receptors = np.asarray(receptors, dtype=int)
        if len(receptors) == 0:
            return
        n = self.n_rows
        donors = np.asarray(donors, dtype=int).reshape(len(receptors), -1)
        weights = np.asarray(weights, dtype=float).reshape(len(receptors), -1)
        n_donor = donors.shape[1]

        if transfer:
            # P[d, r] = w: adds w * (row r) to row d
            P = sparse.coo_matrix(
                (weights.ravel(), (donors.ravel(), np.repeat(receptors, n_donor))),
                shape=(n, n),
            ).tocsr()
            self.matrix = (self._require_matrix() + P @ self._require_matrix()).tocsr()
            self.rhs += P @ self.rhs

        rows = np.concatenate([receptors, np.repeat(receptors, n_donor)])
        cols = np.concatenate([receptors, donors.ravel()])
        vals = np.concatenate([np.ones(len(receptors)), -weights.ravel()])
        constraint = sparse.coo_matrix(
            (vals, (rows, cols)), shape=(n, n)
        )
        self.matrix = (self._drop_rows(receptors) + constraint).tocsr()

        interp = np.einsum("ij,ij->i", weights, current[donors])
        self.rhs[receptors] = -(current[receptors] - interp)

    # ------------------------------------------------------------------
    # Solve
    # ------------------------------------------------------------------

    def _preconditioner(self, A: sparse.csr_matrix) -> LinearOperator | None:
        if self.config.preconditioner == "none":
            return None
        if self.config.preconditioner != "ilu":
            raise ConfigurationError(
                f"Linear solver {self.config.name!r}: unknown preconditioner "
                f"{self.config.preconditioner!r}"
            )
        t0 = time.perf_counter()
        ilu = spilu(A.tocsc())
        self.precond_time += time.perf_counter() - t0
        return LinearOperator(A.shape, ilu.solve)

    def _solve(self, delta: np.ndarray) -> int:
        A = self._require_matrix()
        b = self.rhs
        cfg = self.config

        if not np.any(b):
            delta[:] = 0.0
            return 0
        if cfg.method == "direct":
            delta[:] = spsolve(A.tocsc(), b)
            return 1

        count = [0]

        def _count(_):
            count[0] += 1

        M = self._preconditioner(A)
        solver = _KRYLOV[cfg.method]
        kwargs = {"rtol": cfg.tolerance, "maxiter": cfg.max_iterations, "M": M}
        if cfg.method == "gmres":
            kwargs["restart"] = cfg.restart
            kwargs["callback"] = _count
            kwargs["callback_type"] = "pr_norm"
        else:
            kwargs["callback"] = _count

        x, info = solver(A, b, **kwargs)
        if info > 0:
            logger.warning(
                "Linear solver {} did not reach rtol={:.1e} in {} iterations",
                cfg.name, cfg.tolerance, count[0],
            )
        elif info < 0:
            raise RuntimeError(f"Linear solver {cfg.name!r} failed with info={info}")
        delta[:] = x
        return count[0]


def create_linear_system(config: LinearSolverConfig, n_rows: int) -> LinearSystem:
    """Build the linear system described by *config*."""
    return ScipyLinearSystem(n_rows, config)
