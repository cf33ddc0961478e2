"""Time: fixed stepping and the outer time-integration loop."""

from pyeqsys.time.stepper import Stepper
from pyeqsys.time.integrator import StepReport, TimeIntegrator

__all__ = [
    "Stepper",
    "StepReport",
    "TimeIntegrator",
]
