"""Tests for the composite equation-system scheduler."""

import numpy as np
import pytest
from loguru import logger

from pyeqsys.boundaries import (
    InflowBoundaryConditionData,
    NonConformalBoundaryConditionData,
    OversetBoundaryConditionData,
    PeriodicBoundaryConditionData,
    PostProcessingData,
    WallBoundaryConditionData,
)
from pyeqsys.coupling import EquationSystems
from pyeqsys.equations import EquationSystem, SystemSettings
from pyeqsys.errors import ConfigurationError, PartNotFoundError, PartRankError
from pyeqsys.mesh import EntityRank, Mesh, OversetAssembly, Part, Topology
from pyeqsys.realm import Realm
from pyeqsys.time import TimeIntegrator


class _Recorder(EquationSystem):
    """Equation system that logs every scheduler call."""

    equation_type = "RecorderEQS"

    def __init__(self, eq_systems, name, log, converged=True, norm=0.0,
                 increment=0.0, settings=None):
        super().__init__(eq_systems, name=name, settings=settings)
        self.log = log
        self.converged = converged
        self.norm = norm
        self.increment = increment
        self.calls = []

    def pre_iter_work(self):
        self.log.append(f"{self.user_supplied_name}.pre")

    def solve_and_update(self):
        self.log.append(f"{self.user_supplied_name}.solve")

    def post_iter_work(self):
        self.log.append(f"{self.user_supplied_name}.post")

    def post_iter_work_dep(self):
        self.log.append(f"{self.user_supplied_name}.dep")

    def system_is_converged(self):
        self.log.append(f"{self.user_supplied_name}.converged")
        return self.converged

    def provide_scaled_norm(self):
        return self.norm

    def provide_norm(self):
        return self.norm

    def provide_norm_increment(self):
        return self.increment

    def register_wall_bc(self, part, topology, data):
        self.calls.append(("wall", part.name, topology))

    def register_element_fields(self, parts, topology):
        self.calls.append(("element", [p.name for p in parts], topology))

    def register_periodic_bc(self, pairing, data):
        self.calls.append(("periodic", pairing.master.name, pairing.slave.name))

    def register_non_conformal_bc(self, part, topology):
        self.calls.append(("non_conformal", part.name, topology))

    def register_surface_pp_algorithm(self, data, parts):
        self.calls.append(("pp", [p.name for p in parts]))


class _Producer(EquationSystem):
    def solve_and_update(self):
        self.realm.fields.values("a")[:] += 1.0


class _Consumer(EquationSystem):
    def solve_and_update(self):
        fields = self.realm.fields
        fields.values("b")[:] = fields.values("a")


class _ExternalData(EquationSystem):
    """System whose per-system algorithm lists are filled by the test."""

    def __init__(self, eq_systems, log):
        super().__init__(eq_systems, name="external")
        self.log = log

    def post_external_data_transfer_work(self):
        self.log.append("transfer")


class _Task:
    def __init__(self, name, log):
        self.name = name
        self.log = log

    def execute(self):
        self.log.append(self.name)


class _StubOversetDriver:
    def __init__(self, log):
        self.log = log

    def execute(self):
        self.log.append("overset")


def _make_realm(overset=False):
    assembly = None
    if overset:
        assembly = OversetAssembly(np.zeros(0, dtype=int), np.zeros((0, 3), dtype=int), np.zeros((0, 3)))
    return Realm("fluid", Mesh.structured_rectangle(1.0, 1.0, 3, 3), assembly)


def _make_recorders(eqs, log, n=2, **kwargs):
    systems = [_Recorder(eqs, name, log, **kwargs) for name in "ab"[:n]]
    for eqsys in systems:
        eqs.add_system(eqsys)
    return systems


class TestIteration:
    def test_call_order(self):
        log = []
        realm = _make_realm()
        eqs = realm.equation_systems
        _make_recorders(eqs, log)
        eqs.add_pre_iter_algorithm(_Task("pre_task", log))
        eqs.add_post_iter_algorithm(_Task("post_task", log))

        assert eqs.solve_and_update()
        assert log == [
            "pre_task",
            "a.pre", "a.solve", "a.post",
            "b.pre", "b.solve", "b.post",
            "a.dep", "b.dep",
            "post_task",
            "a.converged", "b.converged",
        ]

    def test_convergence_asks_every_system(self):
        log = []
        realm = _make_realm()
        eqs = realm.equation_systems
        a, b = _make_recorders(eqs, log)
        a.converged = False
        assert not eqs.solve_and_update()
        assert "b.converged" in log

    def test_overset_exchange_runs_first(self):
        log = []
        realm = _make_realm(overset=True)
        eqs = realm.equation_systems
        eqs.overset_driver = _StubOversetDriver(log)
        _make_recorders(eqs, log, n=1)
        eqs.add_pre_iter_algorithm(_Task("pre_task", log))
        eqs.solve_and_update()
        assert log[:3] == ["overset", "pre_task", "a.pre"]

    def test_no_exchange_without_overset(self):
        log = []
        realm = _make_realm()
        eqs = realm.equation_systems
        eqs.overset_driver = _StubOversetDriver(log)
        _make_recorders(eqs, log, n=1)
        eqs.solve_and_update()
        assert "overset" not in log

    @pytest.mark.parametrize("order, lagged", [(("p", "c"), False), (("c", "p"), True)])
    def test_one_way_coupling(self, order, lagged):
        realm = _make_realm()
        eqs = realm.equation_systems
        realm.fields.register_field("a")
        realm.fields.register_field("b")
        build = {"p": _Producer, "c": _Consumer}
        for name in order:
            eqs.add_system(build[name](eqs, name=name))

        eqs.solve_and_update()
        # A consumer ahead of the producer sees its update one iteration late.
        np.testing.assert_allclose(realm.fields.values("b"), 0.0 if lagged else 1.0)
        eqs.solve_and_update()
        np.testing.assert_allclose(realm.fields.values("b"), 1.0 if lagged else 2.0)

    def test_norm_history(self):
        log = []
        realm = _make_realm()
        eqs = realm.equation_systems
        a, b = _make_recorders(eqs, log)
        a.norm, b.norm = 0.5, 0.25
        eqs.solve_and_update()
        (entry,) = eqs.norm_history
        assert entry["norm"] == 0.5
        assert entry["norms"] == {"a": 0.5, "b": 0.25}
        assert entry["converged"]
        assert entry["step"] == realm.step


class TestNorms:
    def test_system_norm_is_max(self):
        realm = _make_realm()
        eqs = realm.equation_systems
        for name, norm in zip("xyz", (0.1, 5.0, 2.0)):
            eqs.add_system(_Recorder(eqs, name, [], norm=norm))
        assert eqs.provide_system_norm() == 5.0

    def test_system_norm_without_systems(self):
        realm = _make_realm()
        assert realm.equation_systems.provide_system_norm() == 0.0

    def test_mean_norm(self):
        realm = _make_realm()
        eqs = realm.equation_systems
        eqs.add_system(_Recorder(eqs, "a", [], norm=1.0, increment=0.5))
        eqs.add_system(_Recorder(eqs, "b", [], norm=2.0, increment=0.5))
        assert eqs.provide_mean_system_norm() == pytest.approx(3.0)

    def test_norm_history_is_bounded(self):
        realm = _make_realm()
        eqs = EquationSystems(realm, norm_history_size=2)
        _make_recorders(eqs, [], n=1)
        for _ in range(3):
            eqs.solve_and_update()
        assert len(eqs.norm_history) == 2

    def test_mean_norm_zero_increment(self):
        realm = _make_realm()
        eqs = realm.equation_systems
        eqs.add_system(_Recorder(eqs, "a", [], norm=1.0, increment=0.0))
        messages = []
        handler = logger.add(messages.append, level="WARNING", format="{message}")
        try:
            assert eqs.provide_mean_system_norm() is None
        finally:
            logger.remove(handler)
        assert any("mean system norm undefined" in m for m in messages)


class TestDecoupled:
    def test_false_without_overset(self):
        realm = _make_realm()
        eqs = realm.equation_systems
        settings = SystemSettings(decoupled_overset=True)
        eqs.add_system(_Recorder(eqs, "a", [], settings=settings))
        assert not eqs.all_systems_decoupled()

    def test_all_decoupled(self):
        realm = _make_realm(overset=True)
        eqs = realm.equation_systems
        settings = SystemSettings(decoupled_overset=True)
        eqs.add_system(_Recorder(eqs, "a", [], settings=settings))
        eqs.add_system(_Recorder(eqs, "b", [], settings=settings))
        assert eqs.all_systems_decoupled()

        eqs.add_system(_Recorder(eqs, "c", []))
        assert not eqs.all_systems_decoupled()


class TestSideTasks:
    def test_lists_are_read_only_views(self):
        realm = _make_realm()
        eqs = realm.equation_systems
        eqs.add_post_iter_algorithm(_Task("t", []))
        assert isinstance(eqs.post_iter_algs, tuple)
        assert len(eqs.post_iter_algs) == 1

    def test_frozen(self):
        realm = _make_realm()
        eqs = realm.equation_systems
        eqs.freeze()
        with pytest.raises(RuntimeError, match="side tasks"):
            eqs.add_pre_iter_algorithm(_Task("t", []))

    def test_system_list_is_read_only(self):
        realm = _make_realm()
        eqs = realm.equation_systems
        _make_recorders(eqs, [])
        assert isinstance(eqs.systems, tuple)
        assert [e.user_supplied_name for e in eqs.systems] == ["a", "b"]

    def test_systems_fixed_once_running(self):
        realm = _make_realm()
        eqs = realm.equation_systems
        _make_recorders(eqs, [], n=1)
        TimeIntegrator(realm).run()
        with pytest.raises(RuntimeError, match="systems and side tasks cannot change"):
            eqs.add_system(EquationSystem(eqs, name="late"))
        with pytest.raises(RuntimeError):
            eqs.load({"name": "again", "max_iterations": 1,
                      "solver_system_specification": {}, "systems": []})
        assert [e.user_supplied_name for e in eqs.systems] == ["a"]


class TestPerSystemAlgorithms:
    def test_lists_run_at_their_call_points(self):
        log = []
        realm = _make_realm()
        eqs = realm.equation_systems
        eqsys = _ExternalData(eqs, log)
        for attr in ("bc_data_algs", "bc_data_map_algs", "property_algs",
                     "pre_iter_algs", "post_iter_algs"):
            getattr(eqsys, attr).append(_Task(attr, log))
        eqs.add_system(eqsys)

        eqs.populate_boundary_data()
        eqs.boundary_data_to_state_data()
        eqs.evaluate_properties()
        eqs.post_external_data_transfer_work()
        assert eqs.solve_and_update()
        assert log == [
            "bc_data_algs",
            "bc_data_map_algs",
            "property_algs",
            "transfer",
            "pre_iter_algs",
            "post_iter_algs",
        ]


class TestFanOut:
    def test_wall_visits_every_subset(self):
        realm = _make_realm()
        eqs = realm.equation_systems
        (a,) = _make_recorders(eqs, [], n=1)
        eqs.register_wall_bc(WallBoundaryConditionData("w", "boundary"))
        assert [c[1] for c in a.calls] == ["left", "right", "bottom", "top"]
        assert all(c[2] == Topology.LINE_2 for c in a.calls)
        assert len(realm.bc_parts["wall"]) == 4

    def test_missing_hook_is_skipped(self):
        realm = _make_realm()
        eqs = realm.equation_systems
        (a,) = _make_recorders(eqs, [], n=1)
        eqs.register_inflow_bc(InflowBoundaryConditionData("in", "left"))
        assert a.calls == []
        assert len(realm.bc_parts["inflow"]) == 1

    def test_element_fields(self):
        realm = _make_realm()
        eqs = realm.equation_systems
        (a,) = _make_recorders(eqs, [], n=1)
        eqs.register_element_fields(["interior"])
        assert a.calls == [("element", ["interior"], Topology.TRI_3)]
        np.testing.assert_allclose(
            realm.fields.values("element_volume"), realm.mesh.cell_areas()
        )

    def test_unknown_part(self):
        realm = _make_realm()
        eqs = realm.equation_systems
        with pytest.raises(PartNotFoundError):
            eqs.register_wall_bc(WallBoundaryConditionData("w", "inlet"))

    def test_wall_on_element_part(self):
        realm = _make_realm()
        with pytest.raises(PartRankError):
            realm.equation_systems.register_wall_bc(WallBoundaryConditionData("w", "interior"))

    def test_interior_on_side_part(self):
        realm = _make_realm()
        with pytest.raises(PartRankError):
            realm.equation_systems.register_interior_algorithm(["left"])

    def test_surface_pp_skips_bad_parts(self):
        realm = _make_realm()
        eqs = realm.equation_systems
        (a,) = _make_recorders(eqs, [], n=1)
        messages = []
        handler = logger.add(messages.append, level="WARNING", format="{message}")
        try:
            eqs.register_surface_pp_algorithm(
                PostProcessingData("surface", "surface_heat_flux", ("nowhere", "interior", "left"))
            )
        finally:
            logger.remove(handler)
        assert a.calls == [("pp", ["left"])]
        assert any("can not find part with name: nowhere" in m for m in messages)
        assert any("part is not a face: interior" in m for m in messages)

    def test_overset_bc_without_overset(self):
        realm = _make_realm()
        with pytest.raises(ConfigurationError, match="has no overset mesh"):
            realm.equation_systems.register_overset_bc(OversetBoundaryConditionData("ov"))

    def test_periodic_subset_mismatch_is_reported(self):
        realm = _make_realm()
        eqs = realm.equation_systems
        (a,) = _make_recorders(eqs, [], n=1)
        right = realm.meta.require_part("right")
        halves = [
            Part(f"right_{k}", EntityRank.EDGE, Topology.LINE_2, right.entities[k:k + 1])
            for k in range(len(right.entities))
        ]
        realm.meta.declare_part(
            Part("right_split", EntityRank.EDGE, Topology.LINE_2, right.entities, halves)
        )
        messages = []
        handler = logger.add(messages.append, level="WARNING", format="{message}")
        try:
            eqs.register_periodic_bc(PeriodicBoundaryConditionData("per", "right_split", "left"))
        finally:
            logger.remove(handler)
        assert any("do not match in size" in m for m in messages)
        assert any("subsets active" in m for m in messages)
        assert a.calls == [("periodic", "right_split", "left")]
        (pairing,) = realm.periodic_pairings
        assert len(pairing.slaves) == 3

    def test_non_conformal_subset_mismatch_is_reported(self):
        realm = _make_realm()
        eqs = realm.equation_systems
        (a,) = _make_recorders(eqs, [], n=1)
        messages = []
        handler = logger.add(messages.append, level="WARNING", format="{message}")
        try:
            eqs.register_non_conformal_bc(
                NonConformalBoundaryConditionData("nc", ("left",), ("boundary",))
            )
        finally:
            logger.remove(handler)
        assert any("different subset counts (1 vs 4)" in m for m in messages)
        assert a.calls == [("non_conformal", "left", Topology.LINE_2)]
        assert len(realm.bc_parts["non_conformal"]) == 1
