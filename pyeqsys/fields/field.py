"""Computational fields.

Classes
-------
FieldState
    Time level of a multi-state field.
Field
    Named array of per-entity values with optional time history.
FieldManager
    Registry of fields on one mesh.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Iterable, Iterator

import numpy as np

from pyeqsys.errors import ConfigurationError, FieldNotFoundError
from pyeqsys.mesh.parts import EntityRank, MetaData, Part


class FieldState(IntEnum):
    """Time level; ``NP1`` is the level being solved for."""

    NP1 = 0
    N = 1
    NM1 = 2


class Field:
    """Named per-entity values with ``n_states`` time levels.

    Args:
        name: Field name.
        rank: Entity rank the values live on.
        n_entities: Number of entities of that rank on the mesh.
        n_components: Components per entity (1 for a scalar).
        n_states: Number of stored time levels (1 to 3).
        init_value: Initial value of every component.
    """

    def __init__(
        self,
        name: str,
        rank: EntityRank,
        n_entities: int,
        n_components: int = 1,
        n_states: int = 1,
        init_value: float = 0.0,
    ) -> None:
        if not 1 <= n_states <= 3:
            raise ValueError(f"n_states must be 1, 2 or 3, got {n_states}")
        self.name = name
        self.rank = rank
        self.n_components = int(n_components)
        self.n_states = int(n_states)
        self.part_names: list[str] = []
        shape = (n_entities,) if self.n_components == 1 else (n_entities, self.n_components)
        self._states = [np.full(shape, float(init_value)) for _ in range(self.n_states)]

    @property
    def values(self) -> np.ndarray:
        """Values at the newest time level."""
        return self._states[FieldState.NP1]

    @values.setter
    def values(self, new: np.ndarray) -> None:
        self._states[FieldState.NP1][...] = new

    @property
    def shape(self) -> tuple[int, ...]:
        return self._states[0].shape

    def field_of_state(self, state: FieldState = FieldState.NP1) -> np.ndarray:
        """Return the array of time level *state*.

        Single-state fields return their only array for any state.
        """
        if self.n_states == 1:
            return self._states[0]
        if int(state) >= self.n_states:
            raise ValueError(f"Field {self.name!r} has no state {FieldState(state).name}")
        return self._states[int(state)]

    def swap_states(self) -> None:
        """Rotate the time history: N becomes NM1, NP1 becomes N.

        The new NP1 reuses the oldest buffer; its values are stale until a
        copy-state algorithm or a predictor fills it.
        """
        if self.n_states == 1:
            return
        oldest = self._states.pop()
        self._states.insert(0, oldest)

    def add_states(self, n_states: int) -> None:
        """Grow the time history to *n_states*; new levels copy the newest one."""
        if not self.n_states <= n_states <= 3:
            raise ValueError(f"Cannot grow {self.name!r} from {self.n_states} to {n_states} states")
        while len(self._states) < n_states:
            self._states.append(self._states[0].copy())
        self.n_states = n_states

    def __repr__(self) -> str:
        return (
            f"Field(name={self.name!r}, rank={self.rank.name}, "
            f"shape={self.shape}, n_states={self.n_states})"
        )


class FieldManager:
    """Registry of fields for one mesh.

    Args:
        meta: Part registry (gives access to the mesh).
        n_states: Default number of time levels for new fields.
    """

    def __init__(self, meta: MetaData, n_states: int = 1) -> None:
        self.meta = meta
        self.n_states = n_states
        self._fields: dict[str, Field] = {}

    def _n_entities(self, rank: EntityRank) -> int:
        mesh = self.meta.mesh
        if rank == EntityRank.NODE:
            return mesh.n_nodes
        if rank == EntityRank.ELEMENT:
            return mesh.n_cells
        if rank == EntityRank.EDGE:
            return len(mesh.edges())
        raise ValueError(f"Fields of rank {rank.name} are not supported on a 2-D mesh")

    def register_field(
        self,
        name: str,
        parts: Iterable[Part] | Part | None = None,
        n_states: int | None = None,
        n_components: int = 1,
        init_value: float = 0.0,
        rank: EntityRank = EntityRank.NODE,
    ) -> Field:
        """Declare a field, or extend an existing one to more parts.

        Re-registering a field is allowed as long as rank and component
        count agree; a request for more time levels grows the field.

        Raises:
            ConfigurationError: If the re-registration conflicts.
        """
        if isinstance(parts, Part):
            parts = [parts]
        part_names = [p.name for p in (parts or [])]

        existing = self._fields.get(name)
        if existing is not None:
            if existing.rank != rank or existing.n_components != n_components:
                raise ConfigurationError(
                    f"Field {name!r} re-registered with rank={rank.name}, "
                    f"n_components={n_components}; existing rank="
                    f"{existing.rank.name}, n_components={existing.n_components}"
                )
            for pn in part_names:
                if pn not in existing.part_names:
                    existing.part_names.append(pn)
            if n_states is not None and n_states > existing.n_states:
                existing.add_states(n_states)
            return existing

        fld = Field(
            name,
            rank,
            self._n_entities(rank),
            n_components=n_components,
            n_states=self.n_states if n_states is None else n_states,
            init_value=init_value,
        )
        fld.part_names.extend(part_names)
        self._fields[name] = fld
        return fld

    def field_exists(self, name: str) -> bool:
        return name in self._fields

    def get_field(self, name: str, rank: EntityRank | None = None) -> Field:
        """Return a registered field.

        Raises:
            FieldNotFoundError: If the field is not registered, or is
                registered with another rank.
        """
        fld = self._fields.get(name)
        if fld is None:
            raise FieldNotFoundError(f"Field {name!r} is not registered on the mesh")
        if rank is not None and fld.rank != rank:
            raise FieldNotFoundError(
                f"Field {name!r} is registered on rank {fld.rank.name}, not {rank.name}"
            )
        return fld

    def values(self, name: str, state: FieldState = FieldState.NP1) -> np.ndarray:
        """Shorthand for ``get_field(name).field_of_state(state)``."""
        return self.get_field(name).field_of_state(state)

    def swap_states(self) -> None:
        """Rotate the time history of every multi-state field."""
        for fld in self._fields.values():
            fld.swap_states()

    def __iter__(self) -> Iterator[Field]:
        return iter(self._fields.values())

    def __len__(self) -> int:
        return len(self._fields)

    def __contains__(self, name: Any) -> bool:
        return name in self._fields
