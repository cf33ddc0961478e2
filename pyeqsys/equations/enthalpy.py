"""Enthalpy transport with temperature recovery.

Governing equation::

    rho dh/dt = div((lambda / cp) grad(h)) + Q,    h = cp T

Temperature is recovered from enthalpy after every solve.  Clipping of
the recovered temperature to ``[minimum_temperature, maximum_temperature]``
happens in the legacy second pass (``post_iter_work_dep``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np
from loguru import logger

from pyeqsys.equations.registry import register_equation_system
from pyeqsys.equations.scalar import ScalarEquationSystem
from pyeqsys.errors import ConfigurationError
from pyeqsys.mesh.parts import Part


@dataclass(frozen=True)
class EnthalpyParameters:
    thermal_conductivity: float = 1.0
    density: float = 1.0
    specific_heat: float = 1.0
    heat_source: float = 0.0
    minimum_temperature: float = 0.0
    maximum_temperature: float = 1.0e6


@register_equation_system("Enthalpy")
class Enthalpy(ScalarEquationSystem):
    """Enthalpy system; boundary data may give ``temperature`` or ``enthalpy``."""

    equation_type = "EnthalpyEQS"
    dof_name = "enthalpy"
    flux_name = "heat_flux"
    Parameters = EnthalpyParameters

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        p = self.params
        if p.minimum_temperature > p.maximum_temperature:
            raise ConfigurationError(
                f"{self.user_supplied_name}: minimum_temperature {p.minimum_temperature} "
                f"exceeds maximum_temperature {p.maximum_temperature}"
            )
        self.clipped_count = 0

    @property
    def has_source(self) -> bool:
        return self.params.heat_source != 0.0

    def diffusivity(self) -> float:
        return self.params.thermal_conductivity / self.params.specific_heat

    def capacity(self) -> float:
        return self.params.density

    def source_term(self, nodes: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        return np.full(len(nodes), self.params.heat_source), np.zeros(len(nodes))

    def boundary_value(self, data: Any) -> Any:
        if data.specifies("temperature"):
            return self.params.specific_heat * float(data.value_of("temperature"))
        return super().boundary_value(data)

    def register_nodal_fields(self, parts: Sequence[Part]) -> None:
        super().register_nodal_fields(parts)
        self.realm.fields.register_field("temperature", parts)

    def initialize(self) -> None:
        # Temperature initial conditions define the starting enthalpy.
        super().initialize()
        fields = self.realm.fields
        T = fields.get_field("temperature")
        h = fields.get_field(self.dof_name)
        if np.any(T.values) and not np.any(h.values):
            for state in range(h.n_states):
                h.field_of_state(state)[:] = self.params.specific_heat * T.values
        self.recover_temperature()

    def recover_temperature(self) -> None:
        fields = self.realm.fields
        fields.values("temperature")[:] = fields.values(self.dof_name) / self.params.specific_heat

    def post_solve_update(self) -> None:
        self.recover_temperature()

    def post_iter_work_dep(self) -> None:
        """Clip temperature to its bounds and make enthalpy consistent."""
        p = self.params
        fields = self.realm.fields
        T = fields.values("temperature")
        out_of_range = (T < p.minimum_temperature) | (T > p.maximum_temperature)
        n_clipped = int(out_of_range.sum())
        if n_clipped == 0:
            return
        self.clipped_count += n_clipped
        logger.warning(
            "{}: clipped temperature at {} node(s) to [{}, {}]",
            self.user_supplied_name, n_clipped, p.minimum_temperature, p.maximum_temperature,
        )
        np.clip(T, p.minimum_temperature, p.maximum_temperature, out=T)
        fields.values(self.dof_name)[:] = p.specific_heat * T
