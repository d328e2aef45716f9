"""Core abstract base classes and shared data structures.

Defines the interface contracts between the time-integration core and its
collaborators:
- ``StepResult``: per-step summary dataclass
- ``PreconditionError``: fatal grid/configuration invariant violation
- ``StencilOperator``: ABC for the finite-difference curl kernel
- ``GhostExchangeBase``: ABC for guard-cell synchronization
- ``ParticleContainerBase``: ABC for particle push and current deposition
- ``SnapshotWriterBase``: ABC for plot-file writers
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from yeepic.core.grid import Geometry, IndexType, Level, ScalarField


class PreconditionError(ValueError):
    """A malformed grid hierarchy that cannot be safely evolved.

    Raised for mismatched guard widths, non-positive cell sizes or
    sub-cycling ratios, and guard widths too narrow for the stencil.
    Never recovered by the core.
    """


@dataclass
class StepResult:
    """Result of a single coarse-level timestep.

    Attributes:
        time: Simulation time after this step [s].
        step: Level-0 step number after this step.
        dt: Level-0 timestep size used [s].
        field_energy: Electromagnetic energy on level 0 [J] (per unit
            length in y for 2D grids).
        kinetic_energy: Total particle kinetic energy [J].
        n_particles: Number of macro-particles after redistribution.
        finished: True when stop_time reached or the step budget is spent.
    """

    time: float = 0.0
    step: int = 0
    dt: float = 0.0
    field_energy: float = 0.0
    kinetic_energy: float = 0.0
    n_particles: int = 0
    finished: bool = False


class StencilOperator(ABC):
    """Finite-difference curl update applied to one patch in place."""

    @abstractmethod
    def curl_update(
        self,
        src: Sequence[np.ndarray],
        dst: Sequence[np.ndarray],
        dt_over_dx: Sequence[float],
        order: int,
        guard_width: Sequence[int],
        centering: Sequence[IndexType],
        *,
        sign: float,
        current: Sequence[np.ndarray] | None = None,
        current_coef: float = 0.0,
    ) -> None:
        """Apply ``dst += sign * curl(src) - current_coef * current``.

        Args:
            src: Three source component arrays of one patch (read-only).
            dst: Three destination component arrays of the same patch.
            dt_over_dx: Curl coefficient per axis (0 on collapsed axes).
            order: Spatial order of the centred difference.
            guard_width: Guard cells per axis of every array.
            centering: Index type of each destination component.
            sign: +1 for the E update, -1 for the B update.
            current: Optional source term arrays, staggered like ``dst``.
            current_coef: Coefficient multiplying ``current``.
        """


class GhostExchangeBase(ABC):
    """Fills guard cells of a field from neighbouring patches."""

    @abstractmethod
    def sync(self, field: ScalarField, geometry: Geometry, centering: IndexType) -> None:
        """Overwrite the guard region of every patch of ``field`` in place."""


class ParticleContainerBase(ABC):
    """Particle push and current deposition, coupled to the field solver."""

    @abstractmethod
    def advance_and_deposit(
        self,
        lev: int,
        ex: ScalarField,
        ey: ScalarField,
        ez: ScalarField,
        bx: ScalarField,
        by: ScalarField,
        bz: ScalarField,
        jx: ScalarField,
        jy: ScalarField,
        jz: ScalarField,
        dt: float,
    ) -> None:
        """Advance momentum n-1/2 -> n+1/2 and position n -> n+1.

        Gathers E^n and B^n, then overwrites J with J^{n+1/2}.
        """

    @abstractmethod
    def redistribute(self, local_only: bool = False, global_: bool = True) -> None:
        """Re-assign particles that crossed patch or domain boundaries."""

    def has_particles(self, lev: int) -> bool:
        """Return True when level ``lev`` owns any particles."""
        return False

    def kinetic_energy(self) -> float:
        return 0.0

    def n_particles(self) -> int:
        return 0


class SnapshotWriterBase(ABC):
    """Persists field and particle state at a step boundary."""

    @abstractmethod
    def write_snapshot(
        self,
        levels: Sequence[Level],
        particles: ParticleContainerBase | None,
    ) -> None:
        """Write the current state of every level.

        Args:
            levels: AMR hierarchy, level 0 first.
            particles: Particle collaborator, if any.
        """
