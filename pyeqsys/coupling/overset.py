"""Overset field exchange.

Classes
-------
OversetFieldUpdate
    One registered exchange obligation: a field and its component shape.
OversetCouplingDriver
    Ordered registry of exchanges, executed before the systems solve.
"""

from __future__ import annotations

import weakref
from dataclasses import dataclass
from typing import Any

from loguru import logger

from pyeqsys.errors import ConfigurationError
from pyeqsys.mesh.parts import EntityRank


@dataclass(frozen=True)
class OversetFieldUpdate:
    """A field exchanged across the overset fringe.

    Attributes:
        field_name: Nodal field name.
        n_rows: Rows of the per-node value (components of a vector).
        n_cols: Columns of the per-node value (1 unless a tensor).
    """

    field_name: str
    n_rows: int = 1
    n_cols: int = 1


class OversetCouplingDriver:
    """Hold the exchange registry and trigger it once per iteration.

    Interpolation itself is done by the realm's
    :class:`~pyeqsys.mesh.overset.OversetAssembly`.  Without one, the
    registry is kept but :meth:`execute` does nothing.

    Args:
        realm: Owning realm, held as a weak reference.
    """

    def __init__(self, realm: Any) -> None:
        self._realm = weakref.ref(realm)
        self._updates: list[OversetFieldUpdate] = []
        self.n_executions = 0

    @property
    def realm(self) -> Any:
        realm = self._realm()
        if realm is None:
            raise RuntimeError("OversetCouplingDriver: owning realm no longer exists")
        return realm

    @property
    def registrations(self) -> tuple[OversetFieldUpdate, ...]:
        return tuple(self._updates)

    def register_overset_field_update(self, field_name: str, n_rows: int = 1, n_cols: int = 1) -> None:
        """Add *field_name* to the exchange registry.

        Registering the same field twice keeps the first registration.

        Raises:
            FieldNotFoundError: If the field is not a nodal field of the mesh.
            ConfigurationError: If ``n_rows * n_cols`` does not match the
                field's component count.
        """
        fld = self.realm.fields.get_field(field_name, EntityRank.NODE)
        if n_rows * n_cols != fld.n_components:
            raise ConfigurationError(
                f"Overset update of {field_name!r} declared as {n_rows}x{n_cols}, "
                f"field has {fld.n_components} component(s)"
            )
        if any(u.field_name == field_name for u in self._updates):
            return
        self._updates.append(OversetFieldUpdate(field_name, n_rows, n_cols))
        logger.debug("Overset field update registered: {} ({}x{})", field_name, n_rows, n_cols)

    def execute(self) -> None:
        """Exchange every registered field, in registration order."""
        assembly = self.realm.overset_assembly
        if assembly is None:
            return
        for update in self._updates:
            assembly.exchange(self.realm.fields.values(update.field_name))
        self.n_executions += 1

    def exchange_field(self, field_name: str) -> None:
        """Exchange a single field, e.g. between decoupled overset corrections."""
        assembly = self.realm.overset_assembly
        if assembly is not None:
            assembly.exchange(self.realm.fields.values(field_name))

    def __repr__(self) -> str:
        return f"OversetCouplingDriver(fields={[u.field_name for u in self._updates]})"
