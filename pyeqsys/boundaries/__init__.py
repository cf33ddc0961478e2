"""Boundary-condition, initial-condition and post-processing records."""

from pyeqsys.boundaries.data import (
    BoundaryConditionData,
    WallBoundaryConditionData,
    InflowBoundaryConditionData,
    OpenBoundaryConditionData,
    SymmetryBoundaryConditionData,
    PeriodicUserData,
    PeriodicBoundaryConditionData,
    NonConformalBoundaryConditionData,
    OversetBoundaryConditionData,
    ConstantInitialConditionData,
    UserFunctionInitialConditionData,
    PostProcessingData,
    parse_boundary_conditions,
    parse_initial_conditions,
    parse_post_processing,
)

__all__ = [
    "BoundaryConditionData",
    "WallBoundaryConditionData",
    "InflowBoundaryConditionData",
    "OpenBoundaryConditionData",
    "SymmetryBoundaryConditionData",
    "PeriodicUserData",
    "PeriodicBoundaryConditionData",
    "NonConformalBoundaryConditionData",
    "OversetBoundaryConditionData",
    "ConstantInitialConditionData",
    "UserFunctionInitialConditionData",
    "PostProcessingData",
    "parse_boundary_conditions",
    "parse_initial_conditions",
    "parse_post_processing",
]
