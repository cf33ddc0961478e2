"""Boundary-condition, initial-condition and post-processing records.

Each record is an immutable description read from the configuration
tree.  Records carry target part *names*; resolving them to parts is the
job of the equation-system driver.

Classes
-------
BoundaryConditionData
    Base record: condition name, target part name and user data.
WallBoundaryConditionData, InflowBoundaryConditionData,
OpenBoundaryConditionData, SymmetryBoundaryConditionData
    Single-surface conditions.
PeriodicUserData, PeriodicBoundaryConditionData
    Master/slave surface pairing.
NonConformalBoundaryConditionData
    Current/opposing surface lists of a non-matching interface.
OversetBoundaryConditionData
    Marks the realm as overset.
ConstantInitialConditionData, UserFunctionInitialConditionData
    Initial conditions.
PostProcessingData
    Surface post-processing request.

Functions
---------
parse_boundary_conditions, parse_initial_conditions, parse_post_processing
    Build records from configuration sequences.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from pyeqsys.config import dataclass_from_dict, get_if_present, get_required
from pyeqsys.errors import ConfigurationError


@dataclass(frozen=True)
class BoundaryConditionData:
    """Base boundary-condition record.

    Attributes:
        name: Name given to the condition in the configuration.
        target_name: Name of the boundary part it applies to.
        user_data: Prescribed values keyed by field name.
    """

    kind = "base"

    name: str
    target_name: str
    user_data: Mapping[str, Any] = field(default_factory=dict)

    def specifies(self, field_name: str) -> bool:
        """True if *field_name* has a prescribed value."""
        return field_name in self.user_data

    def value_of(self, field_name: str) -> Any:
        return self.user_data[field_name]


@dataclass(frozen=True)
class WallBoundaryConditionData(BoundaryConditionData):
    kind = "wall"


@dataclass(frozen=True)
class InflowBoundaryConditionData(BoundaryConditionData):
    kind = "inflow"


@dataclass(frozen=True)
class OpenBoundaryConditionData(BoundaryConditionData):
    kind = "open"


@dataclass(frozen=True)
class SymmetryBoundaryConditionData(BoundaryConditionData):
    kind = "symmetry"


@dataclass(frozen=True)
class PeriodicUserData:
    """Geometric search settings of a periodic pair.

    Attributes:
        search_tolerance: Maximum distance between a translated slave node
            and its master node.
        search_method: Search strategy name; ``"kdtree"`` is supported.
    """

    search_tolerance: float = 1.0e-8
    search_method: str = "kdtree"


@dataclass(frozen=True)
class PeriodicBoundaryConditionData:
    """Periodic pairing of a master and a slave surface."""

    kind = "periodic"

    name: str
    master: str
    slave: str
    user_data: PeriodicUserData = field(default_factory=PeriodicUserData)


@dataclass(frozen=True)
class NonConformalBoundaryConditionData:
    """Non-matching interface between two sets of surfaces.

    Attributes:
        name: Name of the condition.
        current_part_names: Surfaces whose nodes are constrained.
        opposing_part_names: Surfaces providing the donor edges.
        search_tolerance: Maximum normal distance between a current node and
            its opposing edge.
    """

    kind = "non_conformal"

    name: str
    current_part_names: tuple[str, ...]
    opposing_part_names: tuple[str, ...]
    search_tolerance: float = 1.0e-6


@dataclass(frozen=True)
class OversetBoundaryConditionData:
    kind = "overset"

    name: str
    user_data: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ConstantInitialConditionData:
    """Constant values on a set of parts."""

    name: str
    target_names: tuple[str, ...]
    values: Mapping[str, Any]


@dataclass(frozen=True)
class UserFunctionInitialConditionData:
    """Analytic initial condition.

    Attributes:
        name: Name of the condition.
        target_names: Parts it applies to.
        function_names: Function name keyed by field name.
        function_params: Function parameters keyed by field name.
    """

    name: str
    target_names: tuple[str, ...]
    function_names: Mapping[str, str]
    function_params: Mapping[str, tuple[float, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class PostProcessingData:
    """Surface post-processing request.

    Attributes:
        type: Post-processing type; only ``"surface"`` is dispatched.
        physics: Quantity to compute (for example ``"surface_heat_flux"``).
        target_names: Surfaces to integrate over.
        output_file_name: Optional CSV file the results are appended to.
        frequency: Output every *frequency* time steps.
        parameters: Extra numeric parameters.
    """

    type: str
    physics: str
    target_names: tuple[str, ...]
    output_file_name: str | None = None
    frequency: int = 1
    parameters: tuple[float, ...] = ()


# ----------------------------------------------------------------------
# Parsing
# ----------------------------------------------------------------------

_SINGLE_SURFACE = {
    "wall_boundary_condition": (WallBoundaryConditionData, "wall_user_data"),
    "inflow_boundary_condition": (InflowBoundaryConditionData, "inflow_user_data"),
    "open_boundary_condition": (OpenBoundaryConditionData, "open_user_data"),
    "symmetry_boundary_condition": (SymmetryBoundaryConditionData, "symmetry_user_data"),
}


def _names(value: Any, key: str) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise ConfigurationError(f"{key!r} must be a name or a list of names, got {value!r}")


def _parse_one_bc(node: Mapping[str, Any]) -> Any:
    for key, (cls, user_key) in _SINGLE_SURFACE.items():
        if key in node:
            return cls(
                name=str(node[key]),
                target_name=get_required(node, "target_name", str),
                user_data=dict(get_if_present(node, user_key, {}) or {}),
            )

    if "periodic_boundary_condition" in node:
        targets = _names(get_required(node, "target_name"), "target_name")
        if len(targets) != 2:
            raise ConfigurationError(
                "periodic_boundary_condition needs target_name: [master, slave], "
                f"got {list(targets)}"
            )
        user = dataclass_from_dict(
            PeriodicUserData,
            get_if_present(node, "periodic_user_data", {}),
            name="periodic_user_data",
        )
        return PeriodicBoundaryConditionData(
            name=str(node["periodic_boundary_condition"]),
            master=targets[0],
            slave=targets[1],
            user_data=user,
        )

    if "non_conformal_boundary_condition" in node:
        current = _names(get_required(node, "current_target_name"), "current_target_name")
        opposing = _names(get_required(node, "opposing_target_name"), "opposing_target_name")
        user = get_if_present(node, "non_conformal_user_data", {}) or {}
        return NonConformalBoundaryConditionData(
            name=str(node["non_conformal_boundary_condition"]),
            current_part_names=current,
            opposing_part_names=opposing,
            search_tolerance=float(user.get("search_tolerance", 1.0e-6)),
        )

    if "overset_boundary_condition" in node:
        return OversetBoundaryConditionData(
            name=str(node["overset_boundary_condition"]),
            user_data=dict(get_if_present(node, "overset_user_data", {}) or {}),
        )

    raise ConfigurationError(f"Unknown boundary condition entry: {dict(node)!r}")


def parse_boundary_conditions(nodes: list[Mapping[str, Any]] | None) -> list[Any]:
    """Parse the ``boundary_conditions`` sequence.

    Raises:
        ConfigurationError: On an unknown condition type or missing key.
    """
    return [_parse_one_bc(node) for node in (nodes or [])]


def parse_initial_conditions(nodes: list[Mapping[str, Any]] | None) -> list[Any]:
    """Parse the ``initial_conditions`` sequence."""
    records: list[Any] = []
    for node in nodes or []:
        targets = _names(get_required(node, "target_name"), "target_name")
        if "constant" in node:
            records.append(
                ConstantInitialConditionData(
                    name=str(node["constant"]),
                    target_names=targets,
                    values=dict(get_required(node, "value")),
                )
            )
        elif "user_function" in node:
            params = get_if_present(node, "user_function_parameters", {}) or {}
            records.append(
                UserFunctionInitialConditionData(
                    name=str(node["user_function"]),
                    target_names=targets,
                    function_names=dict(get_required(node, "user_function_name")),
                    function_params={k: tuple(float(p) for p in v) for k, v in params.items()},
                )
            )
        else:
            raise ConfigurationError(f"Unknown initial condition entry: {dict(node)!r}")
    return records


def parse_post_processing(nodes: list[Mapping[str, Any]] | None) -> list[PostProcessingData]:
    """Parse the ``post_processing`` sequence."""
    records = []
    for node in nodes or []:
        params = get_if_present(node, "parameters", ()) or ()
        records.append(
            PostProcessingData(
                type=get_required(node, "type", str),
                physics=get_required(node, "physics", str),
                target_names=_names(get_required(node, "target_name"), "target_name"),
                output_file_name=get_if_present(node, "output_file_name", None, str),
                frequency=get_if_present(node, "frequency", 1, int),
                parameters=tuple(float(p) for p in params),
            )
        )
    return records
