"""Tests for boundary, initial-condition and post-processing parsing."""

import pytest

from pyeqsys.boundaries import (
    ConstantInitialConditionData,
    InflowBoundaryConditionData,
    NonConformalBoundaryConditionData,
    OversetBoundaryConditionData,
    PeriodicBoundaryConditionData,
    UserFunctionInitialConditionData,
    WallBoundaryConditionData,
    parse_boundary_conditions,
    parse_initial_conditions,
    parse_post_processing,
)
from pyeqsys.errors import ConfigurationError


class TestBoundaryConditions:
    def test_wall(self):
        (bc,) = parse_boundary_conditions([
            {"wall_boundary_condition": "bc_left", "target_name": "left",
             "wall_user_data": {"temperature": 1.0}},
        ])
        assert isinstance(bc, WallBoundaryConditionData)
        assert bc.kind == "wall"
        assert bc.specifies("temperature")
        assert bc.value_of("temperature") == 1.0
        assert not bc.specifies("enthalpy")

    def test_inflow_without_user_data(self):
        (bc,) = parse_boundary_conditions([
            {"inflow_boundary_condition": "in", "target_name": "left"},
        ])
        assert isinstance(bc, InflowBoundaryConditionData)
        assert dict(bc.user_data) == {}

    def test_periodic(self):
        (bc,) = parse_boundary_conditions([
            {"periodic_boundary_condition": "p", "target_name": ["bottom", "top"],
             "periodic_user_data": {"search_tolerance": 1e-6}},
        ])
        assert isinstance(bc, PeriodicBoundaryConditionData)
        assert (bc.master, bc.slave) == ("bottom", "top")
        assert bc.user_data.search_tolerance == 1e-6
        assert bc.user_data.search_method == "kdtree"

    def test_periodic_needs_two_targets(self):
        with pytest.raises(ConfigurationError, match="master, slave"):
            parse_boundary_conditions([
                {"periodic_boundary_condition": "p", "target_name": "bottom"},
            ])

    def test_non_conformal(self):
        (bc,) = parse_boundary_conditions([
            {"non_conformal_boundary_condition": "nc",
             "current_target_name": "block_2_left",
             "opposing_target_name": ["block_1_right"]},
        ])
        assert isinstance(bc, NonConformalBoundaryConditionData)
        assert bc.current_part_names == ("block_2_left",)
        assert bc.opposing_part_names == ("block_1_right",)

    def test_overset(self):
        (bc,) = parse_boundary_conditions([{"overset_boundary_condition": "ov"}])
        assert isinstance(bc, OversetBoundaryConditionData)
        assert bc.kind == "overset"

    def test_unknown_entry(self):
        with pytest.raises(ConfigurationError, match="Unknown boundary condition"):
            parse_boundary_conditions([{"slip_boundary_condition": "s", "target_name": "top"}])

    def test_missing_target(self):
        with pytest.raises(ConfigurationError, match="target_name"):
            parse_boundary_conditions([{"wall_boundary_condition": "w"}])


class TestInitialConditions:
    def test_constant(self):
        (ic,) = parse_initial_conditions([
            {"constant": "ic", "target_name": "interior", "value": {"temperature": 0.5}},
        ])
        assert isinstance(ic, ConstantInitialConditionData)
        assert ic.target_names == ("interior",)
        assert ic.values == {"temperature": 0.5}

    def test_user_function(self):
        (ic,) = parse_initial_conditions([
            {"user_function": "ic", "target_name": ["interior"],
             "user_function_name": {"temperature": "linear"},
             "user_function_parameters": {"temperature": [1, 2, 3]}},
        ])
        assert isinstance(ic, UserFunctionInitialConditionData)
        assert ic.function_params == {"temperature": (1.0, 2.0, 3.0)}

    def test_unknown(self):
        with pytest.raises(ConfigurationError, match="Unknown initial condition"):
            parse_initial_conditions([{"random": "ic", "target_name": "interior"}])


class TestPostProcessing:
    def test_surface(self):
        (pp,) = parse_post_processing([
            {"type": "surface", "physics": "surface_heat_flux",
             "target_name": ["left", "right"], "output_file_name": "flux.csv"},
        ])
        assert pp.target_names == ("left", "right")
        assert pp.frequency == 1
        assert pp.output_file_name == "flux.csv"
