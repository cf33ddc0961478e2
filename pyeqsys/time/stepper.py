"""Time stepping utilities.

Classes
-------
Stepper
    Fixed-size time stepping.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

import numpy as np


@dataclass
class Stepper:
    """Fixed time stepper.

    Args:
        t_end: End time (s).
        dt: Time-step size (s).
        t_start: Start time (s).  Defaults to 0.

    Example::

        stepper = Stepper(t_end=1.0, dt=0.1)
        for t, dt in stepper:
            print(f"t={t:.2f} s, dt={dt:.2f} s")
    """

    t_end: float
    dt: float
    t_start: float = 0.0

    def __post_init__(self) -> None:
        if self.dt <= 0.0:
            raise ValueError(f"dt must be positive, got {self.dt}")

    @property
    def n_steps(self) -> int:
        """Number of time steps."""
        return int(np.ceil((self.t_end - self.t_start) / self.dt - 1e-12))

    def __iter__(self) -> Iterator[tuple[float, float]]:
        """Yield ``(t, dt)`` tuples; the last step is shortened to hit ``t_end``."""
        t = self.t_start
        while t < self.t_end - 1e-12:
            step_dt = min(self.dt, self.t_end - t)
            t += step_dt
            yield t, step_dt

    def __repr__(self) -> str:
        return f"Stepper(t_end={self.t_end}, dt={self.dt}, t_start={self.t_start})"
