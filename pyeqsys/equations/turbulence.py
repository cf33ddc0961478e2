"""Turbulence transport equations.

Two closures are available:

* ``TurbKineticEnergy`` -- one-equation ``ksgs`` model::

      dk/dt = div((nu + nu_t / sigma_k) grad(k)) + nu_t S^2 - c_eps k^1.5 / l
      nu_t  = c_mu sqrt(k) l,    l = min(kappa d, max_length_scale)

* ``ShearStressTransport`` -- a wrapper solving ``k`` and ``omega`` in
  sequence, with ``nu_t = k / omega``::

      dk/dt     = div((nu + sigma_k nu_t) grad(k)) + P_k - beta_star k omega
      domega/dt = div((nu + sigma_w nu_t) grad(omega)) + gamma S^2 - beta omega^2

There is no flow solver, so the shear rate ``S`` is a model parameter.
The wall distance ``d`` comes from ``minimum_distance_to_wall`` when a
``WallDistance`` system is present; otherwise ``l = max_length_scale``.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np

from pyeqsys.equations.base import SystemSettings, WrapperEquationSystem
from pyeqsys.equations.registry import register_equation_system
from pyeqsys.equations.scalar import ScalarEquationSystem
from pyeqsys.mesh.parts import Part, Topology

TVISC = "turbulent_viscosity"
WALL_DISTANCE = "minimum_distance_to_wall"


def _cell_average(mesh: Any, nodal: np.ndarray) -> np.ndarray:
    return nodal[mesh.cells].mean(axis=1)


def _wall_spacing(mesh: Any, nodes: np.ndarray) -> float:
    """Shortest edge touching any of *nodes*."""
    edges = mesh.edges()
    on_wall = np.isin(edges, nodes).any(axis=1)
    seg = mesh.nodes[edges[on_wall, 1]] - mesh.nodes[edges[on_wall, 0]]
    return float(np.linalg.norm(seg, axis=1).min())


# ----------------------------------------------------------------------
# One-equation model
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class KsgsParameters:
    """Constants of the one-equation ``ksgs`` model."""

    viscosity: float = 1.0e-5
    shear_rate: float = 0.0
    c_mu: float = 0.0856
    c_eps: float = 0.845
    kappa: float = 0.41
    sigma_k: float = 1.0
    max_length_scale: float = 1.0
    minimum_tke: float = 1.0e-8


@register_equation_system("TurbKineticEnergy")
class TurbKineticEnergy(ScalarEquationSystem):
    """Turbulent kinetic energy with the ``ksgs`` closure.

    Walls default to ``k = 0``; inflow and open boundaries take
    ``turbulent_ke`` from the boundary data.
    """

    equation_type = "TurbKineticEnergyEQS"
    dof_name = "turbulent_ke"
    flux_name = "turbulent_ke_flux"
    has_source = True
    Parameters = KsgsParameters

    def length_scale(self, nodes: np.ndarray | None = None) -> np.ndarray:
        p = self.params
        fields = self.realm.fields
        n = self.realm.mesh.n_nodes
        if fields.field_exists(WALL_DISTANCE):
            scale = np.minimum(p.kappa * fields.values(WALL_DISTANCE), p.max_length_scale)
        else:
            scale = np.full(n, p.max_length_scale)
        # Finite at walls.
        scale = np.maximum(scale, 1.0e-12)
        return scale if nodes is None else scale[nodes]

    def compute_turbulent_viscosity(self) -> None:
        fields = self.realm.fields
        k = np.maximum(fields.values(self.dof_name), 0.0)
        fields.values(TVISC)[:] = self.params.c_mu * np.sqrt(k) * self.length_scale()

    def diffusivity(self) -> np.ndarray:
        nu_t = self.realm.fields.values(TVISC)
        return self.params.viscosity + _cell_average(self.realm.mesh, nu_t) / self.params.sigma_k

    def source_term(self, nodes: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        p = self.params
        fields = self.realm.fields
        k = np.maximum(fields.values(self.dof_name)[nodes], 0.0)
        nu_t = fields.values(TVISC)[nodes]
        sink = p.c_eps * np.sqrt(k) / self.length_scale(nodes)
        return nu_t * p.shear_rate ** 2 - sink * k, sink

    def boundary_value(self, data: Any) -> Any:
        value = super().boundary_value(data)
        if value is None and data.kind == "wall" and data.user_data.get(self.flux_name) is None:
            return 0.0
        return value

    def register_nodal_fields(self, parts: Sequence[Part]) -> None:
        super().register_nodal_fields(parts)
        self.realm.fields.register_field(TVISC, parts)

    def populate_derived_quantities(self) -> None:
        self.compute_turbulent_viscosity()

    def solve_and_update(self) -> None:
        for _ in range(self.max_iterations):
            self.compute_turbulent_viscosity()
            self.solve_dof(self.dof_name)
            self.post_solve_update()

    def post_solve_update(self) -> None:
        k = self.realm.fields.values(self.dof_name)
        np.maximum(k, self.params.minimum_tke, out=k)
        self.compute_turbulent_viscosity()


# ----------------------------------------------------------------------
# SST
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class SSTParameters:
    """Constants of the two-equation model (inner-layer set)."""

    viscosity: float = 1.0e-5
    shear_rate: float = 0.0
    sigma_k: float = 0.85
    sigma_w: float = 0.5
    beta_star: float = 0.09
    beta: float = 0.075
    gamma: float = 5.0 / 9.0
    minimum_tke: float = 1.0e-8
    minimum_sdr: float = 1.0e-8


class _SSTChild(ScalarEquationSystem):
    has_source = True
    Parameters = SSTParameters
    sigma_attr = "sigma_k"

    def diffusivity(self) -> np.ndarray:
        nu_t = self.realm.fields.values(TVISC)
        sigma = getattr(self.params, self.sigma_attr)
        return self.params.viscosity + sigma * _cell_average(self.realm.mesh, nu_t)


class SSTKineticEnergy(_SSTChild):
    """``k`` equation of the SST pair; production is limited to ``10 beta_star k omega``."""

    equation_type = "TurbKineticEnergyEQS"
    dof_name = "turbulent_ke"
    flux_name = "turbulent_ke_flux"

    def source_term(self, nodes: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        p = self.params
        fields = self.realm.fields
        k = fields.values(self.dof_name)[nodes]
        w = fields.values(SpecificDissipationRate.dof_name)[nodes]
        sink = p.beta_star * w
        production = np.minimum(fields.values(TVISC)[nodes] * p.shear_rate ** 2, 10.0 * sink * k)
        return production - sink * k, sink

    def boundary_value(self, data: Any) -> Any:
        value = super().boundary_value(data)
        if value is None and data.kind == "wall" and data.user_data.get(self.flux_name) is None:
            return 0.0
        return value


class SpecificDissipationRate(_SSTChild):
    """``omega`` equation of the SST pair.

    Without a prescribed ``specific_dissipation_rate``, walls get
    ``omega = 60 nu / (beta h^2)`` with ``h`` the shortest wall edge.
    """

    equation_type = "SpecDissRateEQS"
    dof_name = "specific_dissipation_rate"
    flux_name = "specific_dissipation_rate_flux"
    sigma_attr = "sigma_w"

    def source_term(self, nodes: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        p = self.params
        w = self.realm.fields.values(self.dof_name)[nodes]
        return p.gamma * p.shear_rate ** 2 - p.beta * w ** 2, 2.0 * p.beta * w

    def register_wall_bc(self, part: Part, topology: Topology, data: Any) -> None:
        if data.specifies(self.dof_name) or data.user_data.get(self.flux_name) is not None:
            super().register_wall_bc(part, topology, data)
            return
        mesh = self.realm.mesh
        h = _wall_spacing(mesh, part.node_ids(mesh))
        omega = 60.0 * self.params.viscosity / (self.params.beta * h ** 2)
        data = dataclasses.replace(data, user_data={**data.user_data, self.dof_name: omega})
        self._register_boundary("wall", part, data)


@register_equation_system("ShearStressTransport")
class ShearStressTransport(WrapperEquationSystem):
    """Wrapper solving ``k`` then ``omega`` each pass and updating ``nu_t``."""

    equation_type = "ShearStressTransportWrap"
    dof_name = "sst"
    Parameters = SSTParameters

    def __init__(
        self,
        eq_systems: Any,
        name: str | None = None,
        settings: SystemSettings | None = None,
        params: Any = None,
    ) -> None:
        super().__init__(eq_systems, name=name, settings=settings, params=params)
        # Children iterate once per wrapper pass.
        child_settings = SystemSettings(
            max_iterations=1,
            convergence_tolerance=self.settings.convergence_tolerance,
            decoupled_overset=self.settings.decoupled_overset,
            num_overset_iters=self.settings.num_overset_iters,
        )
        self.tke = SSTKineticEnergy(eq_systems, settings=child_settings, params=self.params)
        self.sdr = SpecificDissipationRate(eq_systems, settings=child_settings, params=self.params)
        self.children = [self.tke, self.sdr]

    def register_nodal_fields(self, parts: Sequence[Part]) -> None:
        self.realm.fields.register_field(TVISC, parts)

    def populate_derived_quantities(self) -> None:
        self.compute_turbulent_viscosity()

    def compute_turbulent_viscosity(self) -> None:
        fields = self.realm.fields
        k = fields.values(self.tke.dof_name)
        w = fields.values(self.sdr.dof_name)
        fields.values(TVISC)[:] = k / np.maximum(w, self.params.minimum_sdr)

    def post_children_update(self) -> None:
        fields = self.realm.fields
        k = fields.values(self.tke.dof_name)
        w = fields.values(self.sdr.dof_name)
        np.maximum(k, self.params.minimum_tke, out=k)
        np.maximum(w, self.params.minimum_sdr, out=w)
        self.compute_turbulent_viscosity()
