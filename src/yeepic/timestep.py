"""Stability-limited time-step controller.

The explicit leapfrog scheme on a Yee grid is stable when

    dt <= 1 / (c * sqrt(sum_axis 1/dx_axis^2))

The controller takes a fraction ``cfl`` of that bound on level 0, shortens
the step so the run lands exactly on ``stop_time``, and derives every finer
level's step by dividing its parent's step by the sub-cycling ratio, so all
levels meet again at each coarse step boundary.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from yeepic.core.bases import PreconditionError
from yeepic.core.grid import Level

logger = logging.getLogger(__name__)

# Relative tolerance for landing on stop_time
STOP_TIME_EPS = 1.0e-3


def cfl_timestep(cell_size: Sequence[float], c: float, cfl: float) -> float:
    """Courant-limited time step for a cell of size ``cell_size``.

    Collapsed axes carry an infinite cell size and do not contribute.

    Raises:
        PreconditionError: If any cell size is zero or negative.
    """
    if any(not d > 0.0 for d in cell_size):
        raise PreconditionError(f"cell sizes must be positive, got {tuple(cell_size)}")
    inv_dx2 = sum(1.0 / (d * d) for d in cell_size if math.isfinite(d))
    return cfl / (math.sqrt(inv_dx2) * c)


class TimeStepController:
    """Computes per-level time steps.

    Args:
        c: Speed of light [m/s].
        cfl: Courant number, 0 < cfl <= 1.
        stop_time: Simulation time budget [s].
    """

    def __init__(self, c: float, cfl: float, stop_time: float) -> None:
        self.c = c
        self.cfl = cfl
        self.stop_time = stop_time

    def candidates(self, levels: Sequence[Level]) -> list[float]:
        """CFL-limited candidate step of every level."""
        return [cfl_timestep(level.cell_size, self.c, self.cfl) for level in levels]

    def compute_dt(self, levels: Sequence[Level]) -> list[float]:
        """Compute and store ``dt`` on every level.

        Level 0's candidate is authoritative and clamped to ``stop_time``;
        finer levels divide their parent's step by their sub-cycling ratio.

        Returns:
            The time step of each level, level 0 first.
        """
        for level in levels[1:]:
            if level.subcycle_ratio <= 0:
                raise PreconditionError(
                    f"level {level.lev} has non-positive sub-cycling ratio {level.subcycle_ratio}"
                )

        dt_0 = self.candidates(levels)[0]
        eps = STOP_TIME_EPS * dt_0
        t_0 = levels[0].time
        if t_0 + dt_0 > self.stop_time - eps:
            dt_0 = self.stop_time - t_0
            logger.debug("dt clamped to %.6e to land on stop_time=%.6e", dt_0, self.stop_time)

        dts = [dt_0]
        for level in levels[1:]:
            dts.append(dts[-1] / level.subcycle_ratio)
        for level, dt in zip(levels, dts):
            level.dt = dt
        return dts
