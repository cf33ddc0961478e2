"""Tests for the time module."""

import numpy as np
import pytest

from pyeqsys.simulation import Simulation
from pyeqsys.time import Stepper, StepReport, TimeIntegrator


def _make_simulation(time=None, max_iterations=3):
    realm = {
        "mesh": {"Lx": 1.0, "Ly": 1.0, "nx": 5, "ny": 5},
        "linear_solvers": [{"name": "solve_scalar", "method": "direct"}],
        "boundary_conditions": [
            {"wall_boundary_condition": "hot", "target_name": "left",
             "wall_user_data": {"temperature": 1.0}},
        ],
        "equation_systems": {
            "name": "theEqSys",
            "max_iterations": max_iterations,
            "solver_system_specification": {"temperature": "solve_scalar"},
            "systems": [{"HeatConduction": None}],
        },
    }
    if time is not None:
        realm["time"] = time
    sim = Simulation.from_config({"realm": realm})
    sim.initialize()
    return sim


class TestStepper:
    def test_n_steps(self):
        s = Stepper(t_end=1.0, dt=0.1)
        assert s.n_steps == 10

    def test_iteration(self):
        s = Stepper(t_end=0.5, dt=0.1)
        steps = list(s)
        assert len(steps) == 5
        np.testing.assert_allclose(steps[-1][0], 0.5)

    def test_last_step_shortened(self):
        s = Stepper(t_end=1.0, dt=0.3)
        times = [t for t, _ in s]
        np.testing.assert_allclose(times, [0.3, 0.6, 0.9, 1.0])
        assert s.n_steps == 4

    def test_start_time(self):
        s = Stepper(t_end=2.0, dt=0.5, t_start=1.0)
        assert s.n_steps == 2

    def test_invalid_dt(self):
        with pytest.raises(ValueError, match="dt must be positive"):
            Stepper(t_end=1.0, dt=0.0)


class TestTimeIntegrator:
    def test_steady_single_step(self):
        sim = _make_simulation()
        reports = sim.integrator.run()
        assert len(reports) == 1
        (report,) = reports
        assert isinstance(report, StepReport)
        assert report.step == 1
        assert report.time == 0.0
        assert report.converged
        assert not sim.integrator.is_transient

    def test_transient_steps(self):
        sim = _make_simulation(time={"t_end": 0.3, "dt": 0.1})
        reports = sim.integrator.run()
        assert [r.step for r in reports] == [1, 2, 3]
        np.testing.assert_allclose([r.time for r in reports], [0.1, 0.2, 0.3])
        assert sim.integrator.is_transient

    def test_iteration_cap_overrides_block(self):
        sim = _make_simulation()
        integrator = TimeIntegrator(sim.realm, max_iterations=1)
        report = integrator.advance(None)
        assert report.iterations == 1
        assert not report.converged
        assert report.norm == pytest.approx(1.0)

    def test_zero_iteration_cap_rejected(self):
        sim = _make_simulation()
        with pytest.raises(ValueError, match="max_iterations must be >= 1"):
            TimeIntegrator(sim.realm, max_iterations=0)

    def test_explicit_cap_above_block(self):
        sim = _make_simulation(max_iterations=1)
        report = TimeIntegrator(sim.realm, max_iterations=2).advance(None)
        assert report.iterations == 2
        assert report.converged

    def test_side_tasks_frozen_by_run(self):
        sim = _make_simulation()
        sim.integrator.run()
        with pytest.raises(RuntimeError):
            sim.realm.equation_systems.add_post_iter_algorithm(object())

    def test_newest_solution_kept_after_step(self):
        sim = _make_simulation(time={"t_end": 0.2, "dt": 0.1})
        sim.integrator.run()
        fld = sim.realm.fields.get_field("temperature")
        # Heating from the left raises the temperature every step.
        assert fld.values.sum() > fld.field_of_state(1).sum() > 0.0
