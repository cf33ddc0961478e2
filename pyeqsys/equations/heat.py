"""Heat conduction.

Governing equation::

    rho c dT/dt = div(lambda grad(T)) + Q

where T is temperature, lambda the thermal conductivity, rho c the
volumetric heat capacity and Q a volumetric heat source.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

import numpy as np
from loguru import logger

from pyeqsys.equations.algorithms import PropertyAlgorithm
from pyeqsys.equations.assembly import p1_geometry
from pyeqsys.equations.registry import register_equation_system
from pyeqsys.equations.scalar import ScalarEquationSystem
from pyeqsys.mesh.parts import EntityRank, Part, Topology


@dataclass(frozen=True)
class HeatConductionParameters:
    """Material constants of the heat-conduction system."""

    thermal_conductivity: float = 1.0
    density: float = 1.0
    specific_heat: float = 1.0
    heat_source: float = 0.0


@register_equation_system("HeatConduction")
class HeatConduction(ScalarEquationSystem):
    """Transient heat conduction in the temperature unknown.

    Boundary data: ``temperature`` (fixed value) or ``heat_flux`` (inward
    normal flux) on wall, inflow and open surfaces.
    """

    equation_type = "HeatCondEQS"
    dof_name = "temperature"
    flux_name = "heat_flux"
    Parameters = HeatConductionParameters

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.surface_pp_algs: list[SurfaceHeatFluxAlgorithm] = []

    @property
    def has_source(self) -> bool:
        return self.params.heat_source != 0.0

    def diffusivity(self) -> np.ndarray | float:
        fields = self.realm.fields
        if fields.field_exists("thermal_conductivity"):
            return fields.values("thermal_conductivity")
        return self.params.thermal_conductivity

    def capacity(self) -> float:
        return self.params.density * self.params.specific_heat

    def source_term(self, nodes: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        return np.full(len(nodes), self.params.heat_source), np.zeros(len(nodes))

    def register_element_fields(self, parts: Sequence[Part], topology: Topology) -> None:
        lam = self.params.thermal_conductivity
        self.realm.fields.register_field(
            "thermal_conductivity", parts, rank=EntityRank.ELEMENT, init_value=lam
        )
        self.property_algs.append(
            PropertyAlgorithm(
                self.realm, parts, "thermal_conductivity", lambda ids: np.full(len(ids), lam)
            )
        )

    def register_surface_pp_algorithm(self, data: Any, parts: Sequence[Part]) -> None:
        if data.physics != "surface_heat_flux":
            return
        self.surface_pp_algs.append(SurfaceHeatFluxAlgorithm(self, parts, data))

    def provide_output(self) -> None:
        for alg in self.surface_pp_algs:
            alg.execute()


class SurfaceHeatFluxAlgorithm:
    """Integrated outward conductive heat flux over side parts.

    The flux through each edge is ``-lambda grad(T) . n * length`` with the
    gradient of the adjacent triangle.  Results are kept in ``history`` and
    appended to ``output_file_name`` every ``frequency`` steps.

    Args:
        eqsys: Heat-conduction system.
        parts: Side parts to integrate over.
        data: Post-processing request.
    """

    def __init__(self, eqsys: HeatConduction, parts: Sequence[Part], data: Any) -> None:
        self.eqsys = eqsys
        self.parts = list(parts)
        self.data = data
        self.history: list[tuple[float, float]] = []
        self._edges: np.ndarray | None = None
        self._cells: np.ndarray | None = None

    def _connect(self, mesh: Any) -> None:
        edges = [np.sort(np.asarray(sub.entities, dtype=int).reshape(-1, 2), axis=1)
                 for p in self.parts for sub in p.subsets]
        self._edges = np.vstack(edges) if edges else np.zeros((0, 2), dtype=int)
        owner: dict[tuple[int, int], int] = {}
        for ic, cell in enumerate(mesh.cells):
            for a in range(3):
                key = tuple(sorted((int(cell[a]), int(cell[(a + 1) % 3]))))
                owner.setdefault(key, ic)
        self._cells = np.array([owner[tuple(e)] for e in self._edges.tolist()], dtype=int)

    def compute(self) -> float:
        realm = self.eqsys.realm
        mesh = realm.mesh
        if self._edges is None:
            self._connect(mesh)
        if len(self._edges) == 0:
            return 0.0

        cells = mesh.cells[self._cells]
        _, b, c = p1_geometry(mesh.nodes, cells)
        T = realm.fields.values("temperature")[cells]
        grad = np.stack([(b * T).sum(axis=1), (c * T).sum(axis=1)], axis=1)

        p0 = mesh.nodes[self._edges[:, 0]]
        seg = mesh.nodes[self._edges[:, 1]] - p0
        length = np.linalg.norm(seg, axis=1)
        normal = np.stack([seg[:, 1], -seg[:, 0]], axis=1) / length[:, None]
        # Orient away from the owning cell
        inward = mesh.nodes[cells].mean(axis=1) - p0
        flip = np.einsum("ij,ij->i", normal, inward) > 0.0
        normal[flip] *= -1.0

        lam = np.asarray(self.eqsys.diffusivity(), dtype=float)
        if lam.ndim:
            lam = lam[self._cells]
        return float(np.sum(-lam * np.einsum("ij,ij->i", grad, normal) * length))

    def execute(self) -> None:
        realm = self.eqsys.realm
        if realm.step % max(self.data.frequency, 1):
            return
        flux = self.compute()
        self.history.append((realm.time, flux))
        logger.info(
            "SurfacePP {} on {}: t={:.4e} heat flux={:.6e}",
            self.data.physics, list(self.data.target_names), realm.time, flux,
        )
        if self.data.output_file_name:
            path = Path(self.data.output_file_name)
            new_file = not path.exists()
            with path.open("a") as fh:
                np.savetxt(
                    fh,
                    [[realm.time, flux]],
                    delimiter=",",
                    header="time,heat_flux" if new_file else "",
                    comments="",
                )
