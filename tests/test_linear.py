"""Tests for the linear-system module."""

import numpy as np
import pytest

from pyeqsys.errors import ConfigurationError
from pyeqsys.linear import LinearSolverConfig, ScipyLinearSystem, create_linear_system


def _make_tridiagonal(method="direct"):
    ls = create_linear_system(LinearSolverConfig(name="s", method=method, tolerance=1e-12), 3)
    ls.zero()
    rows = [0, 0, 1, 1, 1, 2, 2]
    cols = [0, 1, 0, 1, 2, 1, 2]
    vals = [2.0, -1.0, -1.0, 2.0, -1.0, -1.0, 2.0]
    ls.sum_into(rows, cols, vals)
    ls.sum_into_rhs([0, 2], [1.0, 1.0])
    ls.load_complete()
    return ls


class TestAssembly:
    def test_factory_returns_scipy_system(self):
        ls = create_linear_system(LinearSolverConfig(name="s"), 4)
        assert isinstance(ls, ScipyLinearSystem)
        assert ls.n_rows == 4

    def test_duplicate_triplets_are_summed(self):
        ls = create_linear_system(LinearSolverConfig(name="s"), 2)
        ls.zero()
        ls.sum_into([0, 0], [0, 0], [1.0, 2.5])
        ls.load_complete()
        assert ls.matrix[0, 0] == pytest.approx(3.5)

    def test_rhs_accumulates_repeated_rows(self):
        ls = create_linear_system(LinearSolverConfig(name="s"), 2)
        ls.zero()
        ls.sum_into_rhs([1, 1, 0], [1.0, 2.0, 4.0])
        np.testing.assert_allclose(ls.rhs, [4.0, 3.0])

    def test_sum_into_after_load_complete_raises(self):
        ls = _make_tridiagonal()
        with pytest.raises(RuntimeError, match="load_complete"):
            ls.sum_into([0], [0], [1.0])

    def test_unknown_method_raises(self):
        with pytest.raises(ConfigurationError, match="unknown method"):
            create_linear_system(LinearSolverConfig(name="s", method="magic"), 3)


class TestSolve:
    @pytest.mark.parametrize("method", ["direct", "gmres", "cg", "bicgstab"])
    def test_solution(self, method):
        ls = _make_tridiagonal(method)
        delta = np.zeros(3)
        ls.solve(delta)
        np.testing.assert_allclose(delta, [1.0, 1.0, 1.0], atol=1e-8)

    def test_zero_rhs_gives_zero_increment(self):
        ls = create_linear_system(LinearSolverConfig(name="s"), 2)
        ls.zero()
        ls.sum_into([0, 1], [0, 1], [1.0, 1.0])
        ls.load_complete()
        delta = np.ones(2)
        assert ls.solve(delta) == 0
        np.testing.assert_array_equal(delta, 0.0)

    def test_reset_rows(self):
        ls = _make_tridiagonal()
        ls.reset_rows([0], 1.0, 5.0)
        delta = np.zeros(3)
        ls.solve(delta)
        assert delta[0] == pytest.approx(5.0)

    def test_constraint_rows(self):
        ls = _make_tridiagonal()
        current = np.zeros(3)
        ls.add_constraint_rows([2], [[0, 1]], [[0.5, 0.5]], current)
        delta = np.zeros(3)
        ls.solve(delta)
        assert delta[2] == pytest.approx(0.5 * (delta[0] + delta[1]))

    def test_constraint_residual_uses_current_values(self):
        ls = _make_tridiagonal()
        current = np.array([1.0, 3.0, 0.0])
        ls.add_constraint_rows([2], [[0, 1]], [[0.5, 0.5]], current)
        assert ls.rhs[2] == pytest.approx(2.0)

    def test_transfer_moves_receptor_equation_to_donor(self):
        ls = _make_tridiagonal()
        ls.add_constraint_rows([2], [[1]], [[1.0]], np.zeros(3), transfer=True)
        # Row 1 gains row 2: [-1, 2, -1] + [0, -1, 2]
        np.testing.assert_allclose(ls.matrix.toarray()[1], [-1.0, 1.0, 1.0])
        assert ls.rhs[1] == pytest.approx(1.0)


class TestNorms:
    def test_first_norm_is_the_scale(self):
        ls = _make_tridiagonal()
        ls.solve(np.zeros(3))
        assert ls.scaled_norm() == pytest.approx(1.0)
        assert ls.norm() == pytest.approx(np.sqrt(2.0) / np.sqrt(3.0))

    def test_scale_kept_until_reset(self):
        ls = _make_tridiagonal()
        ls.solve(np.zeros(3))
        first = ls.norm()
        ls.rhs[:] = 0.0
        ls.rhs[0] = 0.01
        ls.solve(np.zeros(3))
        assert ls.scaled_norm() == pytest.approx(ls.norm() / first)

        ls.reset_scaling()
        assert ls.scaled_norm() == pytest.approx(ls.norm() / first)
        ls.solve(np.zeros(3))
        assert ls.scaled_norm() == pytest.approx(1.0)

    def test_norm_increment(self):
        ls = _make_tridiagonal()
        delta = np.zeros(3)
        ls.solve(delta)
        assert ls.norm_increment() == pytest.approx(1.0)

    def test_unsolved_system(self):
        ls = create_linear_system(LinearSolverConfig(name="s"), 3)
        assert ls.scaled_norm() == 0.0
        assert ls.norm() == 0.0
