"""Field algorithms and algorithm drivers.

An *algorithm* is a unit of field work over a set of parts with an
``execute()`` method.  Drivers group algorithms so the equation-system
driver can schedule them as pre- or post-iteration side tasks.

Classes
-------
Algorithm
    Base class: realm handle, parts, node lookup.
AlgorithmDriver
    Ordered collection of algorithms executed as one task.
CopyStateAlgorithm
    Copy one time level of a field into another.
PropertyAlgorithm
    Evaluate a field from a function of the current state.
InitialConditionAlgorithm
    Fill a field from a named analytic function.

Functions
---------
user_function
    Look up a named analytic function.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Sequence

import numpy as np

from pyeqsys.errors import ConfigurationError
from pyeqsys.fields.field import FieldState
from pyeqsys.mesh.parts import EntityRank, Part


class Algorithm:
    """Unit of work executed over a set of parts.

    Args:
        realm: Realm providing mesh and fields.
        parts: Parts the work applies to; an empty list means every node.
    """

    def __init__(self, realm: Any, parts: Iterable[Part] | None = None) -> None:
        self.realm = realm
        self.parts = list(parts or [])

    def node_ids(self) -> np.ndarray:
        mesh = self.realm.mesh
        if not self.parts:
            return np.arange(mesh.n_nodes)
        return np.unique(np.concatenate([p.node_ids(mesh) for p in self.parts]))

    def cell_ids(self) -> np.ndarray:
        ids = [
            np.asarray(sub.entities, dtype=int)
            for p in self.parts
            for sub in p.subsets
            if sub.rank == EntityRank.ELEMENT
        ]
        if not ids:
            return np.arange(self.realm.mesh.n_cells)
        return np.unique(np.concatenate(ids))

    def execute(self) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(parts={[p.name for p in self.parts]})"


class AlgorithmDriver:
    """Ordered algorithms run as a single task.

    Args:
        name: Label used in logs.
        algorithms: Initial algorithms.
    """

    def __init__(self, name: str, algorithms: Sequence[Any] = ()) -> None:
        self.name = name
        self.algorithms = list(algorithms)

    def add(self, algorithm: Any) -> None:
        self.algorithms.append(algorithm)

    def pre_work(self) -> None:
        pass

    def post_work(self) -> None:
        pass

    def execute(self) -> None:
        self.pre_work()
        for alg in self.algorithms:
            alg.execute()
        self.post_work()

    def __len__(self) -> int:
        return len(self.algorithms)

    def __repr__(self) -> str:
        return f"AlgorithmDriver(name={self.name!r}, n_algorithms={len(self.algorithms)})"


class CopyStateAlgorithm(Algorithm):
    """Copy ``field[from_state]`` into ``field[to_state]`` on the part nodes."""

    def __init__(
        self,
        realm: Any,
        parts: Iterable[Part] | None,
        field_name: str,
        from_state: FieldState = FieldState.N,
        to_state: FieldState = FieldState.NP1,
    ) -> None:
        super().__init__(realm, parts)
        self.field_name = field_name
        self.from_state = from_state
        self.to_state = to_state

    def execute(self) -> None:
        fld = self.realm.fields.get_field(self.field_name)
        ids = self.node_ids()
        fld.field_of_state(self.to_state)[ids] = fld.field_of_state(self.from_state)[ids]


class PropertyAlgorithm(Algorithm):
    """Evaluate a field as a function of the current state.

    Args:
        realm: Realm.
        parts: Parts to evaluate on.
        field_name: Target field.
        evaluator: Callable ``evaluator(ids) -> values`` where *ids* are node
            indices (nodal fields) or cell indices (element fields).
    """

    def __init__(
        self,
        realm: Any,
        parts: Iterable[Part] | None,
        field_name: str,
        evaluator: Callable[[np.ndarray], np.ndarray],
    ) -> None:
        super().__init__(realm, parts)
        self.field_name = field_name
        self.evaluator = evaluator

    def execute(self) -> None:
        fld = self.realm.fields.get_field(self.field_name)
        ids = self.cell_ids() if fld.rank == EntityRank.ELEMENT else self.node_ids()
        fld.values[ids] = self.evaluator(ids)


# ----------------------------------------------------------------------
# Analytic initial conditions
# ----------------------------------------------------------------------

def _constant(xy: np.ndarray, params: Sequence[float]) -> np.ndarray:
    (value,) = params or (0.0,)
    return np.full(len(xy), float(value))


def _linear(xy: np.ndarray, params: Sequence[float]) -> np.ndarray:
    a, bx, by = (list(params) + [0.0, 0.0, 0.0])[:3]
    return a + bx * xy[:, 0] + by * xy[:, 1]


def _gaussian(xy: np.ndarray, params: Sequence[float]) -> np.ndarray:
    amp, x0, y0, width = (list(params) + [1.0, 0.0, 0.0, 1.0][len(params):])[:4]
    r2 = (xy[:, 0] - x0) ** 2 + (xy[:, 1] - y0) ** 2
    return amp * np.exp(-r2 / (2.0 * width ** 2))


_USER_FUNCTIONS: dict[str, Callable[[np.ndarray, Sequence[float]], np.ndarray]] = {
    "constant": _constant,
    "linear": _linear,
    "gaussian": _gaussian,
}


def user_function(name: str) -> Callable[[np.ndarray, Sequence[float]], np.ndarray]:
    """Return the analytic function registered under *name*.

    Raises:
        ConfigurationError: If the name is unknown.
    """
    try:
        return _USER_FUNCTIONS[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown user function {name!r}; available: {sorted(_USER_FUNCTIONS)}"
        ) from None


class InitialConditionAlgorithm(Algorithm):
    """Set every state of a nodal field from an analytic function."""

    def __init__(
        self,
        realm: Any,
        parts: Iterable[Part] | None,
        field_name: str,
        function_name: str,
        params: Sequence[float] = (),
    ) -> None:
        super().__init__(realm, parts)
        self.field_name = field_name
        self.function = user_function(function_name)
        self.params = tuple(params)

    def execute(self) -> None:
        fld = self.realm.fields.get_field(self.field_name)
        ids = self.node_ids()
        values = self.function(self.realm.mesh.nodes[ids], self.params)
        for state in range(fld.n_states):
            fld.field_of_state(FieldState(state))[ids] = values
