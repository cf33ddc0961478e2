"""Outer time-integration loop.

Each step::

    advance time -> swap field states -> pre_timestep_work -> predict_state
    -> solve_and_update until converged or max_iterations
    -> post_converged_work -> provide_output

States rotate at the start of a step, so NP1 holds the newest solution
between steps.

Non-convergence within ``max_iterations`` is reported, not raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loguru import logger

from pyeqsys.time.stepper import Stepper


@dataclass(frozen=True)
class StepReport:
    """Outcome of one time step."""

    step: int
    time: float
    iterations: int
    converged: bool
    norm: float


class TimeIntegrator:
    """Drive a realm through time.

    Args:
        realm: Realm to advance.
        stepper: Time steps; ``None`` runs a single steady step.
        max_iterations: Non-linear iterations per step.  Defaults to the
            ``max_iterations`` of the equation-systems block.
    """

    def __init__(
        self,
        realm: Any,
        stepper: Stepper | None = None,
        max_iterations: int | None = None,
    ) -> None:
        if max_iterations is not None and max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        self.realm = realm
        self.stepper = stepper
        self.max_iterations = max_iterations
        self.reports: list[StepReport] = []

    @property
    def is_transient(self) -> bool:
        return self.stepper is not None

    def advance(self, dt: float | None) -> StepReport:
        """Advance one time step of size *dt* (``None`` for steady)."""
        realm = self.realm
        eqs = realm.equation_systems
        max_iterations = eqs.max_iterations if self.max_iterations is None else self.max_iterations

        realm.advance_time(dt)
        realm.swap_states()
        eqs.pre_timestep_work()
        eqs.predict_state()

        converged = False
        iterations = 0
        while iterations < max_iterations:
            iterations += 1
            converged = eqs.solve_and_update()
            logger.debug(
                "step {} iteration {}: max scaled norm {:.4e}",
                realm.step, iterations, eqs.provide_system_norm(),
            )
            if converged:
                break
        if not converged:
            logger.info(
                "step {} (t={:.4e}): not converged after {} iteration(s), max scaled norm {:.4e}",
                realm.step, realm.time, iterations, eqs.provide_system_norm(),
            )

        eqs.post_converged_work()
        eqs.provide_output()

        report = StepReport(realm.step, realm.time, iterations, converged, eqs.provide_system_norm())
        self.reports.append(report)
        return report

    def run(self) -> list[StepReport]:
        """Run every step and dump the timers."""
        self.realm.equation_systems.freeze()
        if self.stepper is None:
            self.advance(None)
        else:
            for t, dt in self.stepper:
                report = self.advance(dt)
                logger.info(
                    "t={:.4e}  iterations={}  converged={}", t, report.iterations, report.converged
                )
        self.realm.equation_systems.dump_eq_time()
        return self.reports
