"""Explicit leapfrog field updates for one AMR level.

``evolve_b`` advances the magnetic field by ``dt`` using the electric
field as source, ``evolve_e`` advances the electric field using the
magnetic field and the deposited current:

    dB/dt = -curl E
    dE/dt = c^2 curl B - mu_0 c^2 J

Each call sweeps every patch of the level independently; guard cells must
already hold synchronized neighbour data. All E/B (and J) components of a
level must share one guard width, checked before any data is touched.
"""

from __future__ import annotations

import logging

from yeepic.core.bases import PreconditionError, StencilOperator
from yeepic.core.grid import YEE_B, YEE_E, Level, ScalarField
from yeepic.fields.stencil import YeeStencil

logger = logging.getLogger(__name__)


def check_guard_widths(components: list[ScalarField]) -> int:
    """Return the shared guard width of ``components``.

    Raises:
        PreconditionError: If any two components differ.
    """
    n_ghost = components[0].n_ghost
    for comp in components[1:]:
        if comp.n_ghost != n_ghost:
            raise PreconditionError(
                f"guard width mismatch: {components[0].name} has {n_ghost}, "
                f"{comp.name} has {comp.n_ghost}"
            )
    return n_ghost


class FieldEvolver:
    """Applies the B half-step and E full-step updates on a level.

    Args:
        c: Speed of light [m/s].
        mu_0: Vacuum permeability [H/m].
        stencil_order: Spatial order of the curl stencil.
        stencil: Stencil operator (default: numba Yee kernel).
    """

    def __init__(
        self,
        c: float,
        mu_0: float,
        stencil_order: int = 2,
        stencil: StencilOperator | None = None,
    ) -> None:
        self.c = c
        self.mu_0 = mu_0
        self.stencil_order = stencil_order
        self.stencil = stencil if stencil is not None else YeeStencil()

    def evolve_b(self, level: Level, dt: float) -> None:
        """Advance B by ``dt`` on every patch of ``level`` (E is read-only)."""
        check_guard_widths([*level.E, *level.B])
        dt_over_dx = level.geometry.dt_over_dx(dt)
        guard = level.B[0].guard_width

        for p in range(level.n_patches):
            self.stencil.curl_update(
                level.E.patch(p),
                level.B.patch(p),
                dt_over_dx,
                self.stencil_order,
                guard,
                YEE_B,
                sign=-1.0,
            )
        logger.debug("Level %d: B advanced by dt=%.4e", level.lev, dt)

    def evolve_e(self, level: Level, dt: float) -> None:
        """Advance E by ``dt`` on every patch of ``level`` (B and J are read-only)."""
        check_guard_widths([*level.E, *level.B, *level.J])
        c2 = self.c * self.c
        mu_c2_dt = self.mu_0 * c2 * dt
        dt_over_dx_c2 = level.geometry.dt_over_dx(dt, scale=c2)
        guard = level.E[0].guard_width

        for p in range(level.n_patches):
            self.stencil.curl_update(
                level.B.patch(p),
                level.E.patch(p),
                dt_over_dx_c2,
                self.stencil_order,
                guard,
                YEE_E,
                sign=1.0,
                current=level.J.patch(p),
                current_coef=mu_c2_dt,
            )
        logger.debug("Level %d: E advanced by dt=%.4e", level.lev, dt)
