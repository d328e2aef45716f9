"""Simulation loop: orchestrates the leapfrog PIC cycle over the AMR hierarchy.

Each coarse step:
    1. compute dt on every level (CFL on level 0, clamped to stop_time)
    2. advance level 0 with the leapfrog sequence, recursing into finer
       levels by sub-cycling
    3. advance the clock and synchronize every level's time
    4. write plot files / checkpoints on their cadences
    5. stop once stop_time or the step budget is reached

Leapfrog sequence on one level (B starts at n-1/2, E at n):

    B_HALF_1      B^{n-1/2} -> B^n
    SYNC_EB       guard cells of all six E/B components (shape order > 1)
    PARTICLES     push to n+1/2 / n+1 and deposit J^{n+1/2}
    REDISTRIBUTE  re-assign particles that moved
    B_HALF_2      B^n -> B^{n+1/2}
    SYNC_B        guard cells of B
    E_FULL        E^n -> E^{n+1}
    SYNC_E        guard cells of E for the next B half-step
"""

from __future__ import annotations

import enum
import logging
import math
import time as wall_time
from pathlib import Path
from typing import Any

import numpy as np

from yeepic.amr.hierarchy import CoarseFineInterpolator, average_down, build_hierarchy
from yeepic.config import SimulationConfig
from yeepic.core.bases import (
    GhostExchangeBase,
    ParticleContainerBase,
    PreconditionError,
    SnapshotWriterBase,
    StencilOperator,
    StepResult,
)
from yeepic.core.grid import Level, ScalarField, expand_axes
from yeepic.diagnostics.checkpoint import load_checkpoint, restore_levels, save_checkpoint
from yeepic.diagnostics.plotfile import PlotFileWriter
from yeepic.fields.evolver import FieldEvolver, check_guard_widths
from yeepic.fields.ghost import GhostExchange
from yeepic.fields.initial import apply_initial_fields
from yeepic.pic.particles import ParticleContainer
from yeepic.timestep import TimeStepController

logger = logging.getLogger(__name__)

# Relative tolerance on stop_time for termination
STOP_TIME_TOLERANCE = 1.0e-6


class LeapfrogPhase(enum.Enum):
    """Phases of one leapfrog step on a level, in execution order."""

    B_HALF_1 = "evolve_b_first_half"
    SYNC_EB = "sync_e_b"
    PARTICLES = "advance_and_deposit"
    REDISTRIBUTE = "redistribute"
    B_HALF_2 = "evolve_b_second_half"
    SYNC_B = "sync_b"
    E_FULL = "evolve_e"
    SYNC_E = "sync_e"


LEAPFROG_SEQUENCE: tuple[LeapfrogPhase, ...] = tuple(LeapfrogPhase)

# Phases that may be skipped
OPTIONAL_PHASES = frozenset({LeapfrogPhase.SYNC_EB, LeapfrogPhase.REDISTRIBUTE})


class PhaseTracker:
    """Rejects leapfrog phases entered out of order.

    ``enter`` may only move forward through ``LEAPFROG_SEQUENCE`` and may only
    skip optional phases; ``finish`` requires the final phase to have run.
    """

    def __init__(self) -> None:
        self._next = 0
        self.current: list[LeapfrogPhase] = []
        self.last_sequence: tuple[LeapfrogPhase, ...] = ()

    def enter(self, phase: LeapfrogPhase) -> None:
        idx = LEAPFROG_SEQUENCE.index(phase)
        if idx < self._next:
            raise RuntimeError(
                f"leapfrog phase {phase.name} entered after "
                f"{self.current[-1].name if self.current else 'start'}"
            )
        skipped = [p for p in LEAPFROG_SEQUENCE[self._next:idx] if p not in OPTIONAL_PHASES]
        if skipped:
            raise RuntimeError(
                f"leapfrog phase {phase.name} entered before {', '.join(p.name for p in skipped)}"
            )
        self._next = idx + 1
        self.current.append(phase)

    def finish(self) -> tuple[LeapfrogPhase, ...]:
        """Close the step and return the phases that ran."""
        if self._next != len(LEAPFROG_SEQUENCE):
            raise RuntimeError(
                f"leapfrog step closed after {self.current[-1].name if self.current else 'start'}"
            )
        self.last_sequence = tuple(self.current)
        self.reset()
        return self.last_sequence

    def reset(self) -> None:
        self._next = 0
        self.current = []


def field_energy(level: Level, epsilon_0: float, mu_0: float) -> float:
    """Electromagnetic energy of a level [J] (per unit length in y in 2D).

    The duplicated periodic end point of nodal axes is counted once.
    """
    geom = level.geometry
    total = 0.0
    for vec, coef in ((level.E, 0.5 * epsilon_0), (level.B, 0.5 / mu_0)):
        for comp in vec:
            values = comp.gather()
            sl = tuple(
                slice(0, -1) if geom.active[ax] and geom.periodic[ax] and comp.index_type[ax]
                else slice(None)
                for ax in range(3)
            )
            total += coef * float(np.sum(values[sl] ** 2))
    return total * geom.cell_volume()


class SimulationLoop:
    """Top-level controller of the electromagnetic PIC time integration.

    Args:
        config: Validated simulation configuration.
        levels: Pre-built hierarchy (default: built from ``config``).
        particles: Particle collaborator (default: loaded from ``config.species``,
            or None when no species are configured).
        ghost: Ghost-exchange collaborator (default: ``GhostExchange``).
        writer: Snapshot writer (default: ``PlotFileWriter`` when plot files
            are enabled).
        stencil: Curl stencil operator (default: numba Yee kernel).
    """

    def __init__(
        self,
        config: SimulationConfig,
        *,
        levels: list[Level] | None = None,
        particles: ParticleContainerBase | None = None,
        ghost: GhostExchangeBase | None = None,
        writer: SnapshotWriterBase | None = None,
        stencil: StencilOperator | None = None,
    ) -> None:
        self.config = config
        if levels is None:
            levels = build_hierarchy(config)
            if levels[0].step == 0:
                apply_initial_fields(levels, config.initial_field)
        self.levels = levels
        if not self.levels:
            raise PreconditionError("the hierarchy needs at least one level")

        diag = config.diagnostics
        self.output_dir = Path(diag.output_dir)
        self.ghost = ghost if ghost is not None else GhostExchange()
        if particles is None and config.species:
            particles = ParticleContainer.from_config(
                config, self.levels[0].geometry, self.levels[0].boxes,
            )
        self.particles = particles
        if writer is None and diag.plot_interval > 0:
            writer = PlotFileWriter(self.output_dir, diag.plot_file)
        self.writer = writer

        phys = config.physics
        self.epsilon_0 = phys.epsilon_0
        self.mu_0 = phys.mu_0
        self.evolver = FieldEvolver(phys.c, phys.mu_0, config.solver.stencil_order, stencil)
        self.timestep = TimeStepController(phys.c, config.solver.cfl, config.stop_time)
        self.interpolator = CoarseFineInterpolator()
        self.tracker = PhaseTracker()

        shape = expand_axes(config.solver.shape_order, config.grid.dim, 0)
        self.sync_before_push = any(o > 1 for o in shape)

        self.last_snapshot_step = self.levels[0].step
        self.max_time_reached = False
        self._fine_levels_pending = self.levels[0].step == 0
        self._guards_pending = True

        logger.info(
            "SimulationLoop initialized: %dD, %d level(s), max_step=%d, stop_time=%.4e",
            config.grid.dim, len(self.levels), config.max_step, config.stop_time,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def time(self) -> float:
        return self.levels[0].time

    @property
    def step_count(self) -> int:
        return self.levels[0].step

    @property
    def finest_level(self) -> int:
        return len(self.levels) - 1

    # ------------------------------------------------------------------
    # Checks and initialization
    # ------------------------------------------------------------------

    def check_preconditions(self) -> None:
        """Validate the hierarchy before any field data is touched.

        Raises:
            PreconditionError: On mismatched guard widths, guard widths too
                narrow for the stencil, bad cell sizes or bad sub-cycling ratios.
        """
        reach = self.config.solver.stencil_order // 2
        for level in self.levels:
            n_ghost = check_guard_widths(level.field_components())
            if n_ghost < reach:
                raise PreconditionError(
                    f"level {level.lev}: guard width {n_ghost} is too narrow for "
                    f"stencil order {self.config.solver.stencil_order}"
                )
            if level.lev > 0 and level.subcycle_ratio <= 0:
                raise PreconditionError(
                    f"level {level.lev} has non-positive sub-cycling ratio {level.subcycle_ratio}"
                )
        self.timestep.candidates(self.levels)

    def _fill_all_guards(self) -> None:
        for level in self.levels:
            self.ghost.sync_vector(level.E, level.geometry)
            self.ghost.sync_vector(level.B, level.geometry)

    def _prepare(self) -> None:
        if self._fine_levels_pending:
            for lev in range(1, len(self.levels)):
                self.interpolator.initialize(self.levels[lev - 1], self.levels[lev])
            self._fine_levels_pending = False
        if self._guards_pending:
            self._fill_all_guards()
            self._guards_pending = False

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def _is_finished(self) -> bool:
        return self.max_time_reached or self.step_count >= self.config.max_step

    def evolve(self, numsteps: int | None = None) -> list[StepResult]:
        """Advance until the level-0 step index reaches ``numsteps``.

        ``numsteps`` is an absolute step index capped by ``max_step``; None runs
        until the budget is spent.

        Returns:
            One ``StepResult`` per coarse step taken.
        """
        self.check_preconditions()
        self._prepare()

        stop_time = self.config.stop_time
        last = self.config.max_step
        if numsteps is not None and numsteps >= 0:
            last = min(last, numsteps)

        results = []
        while self.step_count < last and self.time < stop_time and not self.max_time_reached:
            results.append(self.step())

        diag = self.config.diagnostics
        if (
            diag.plot_interval > 0
            and self.step_count > self.last_snapshot_step
            and self._is_finished()
        ):
            self._write_snapshot()
        return results

    def step(self) -> StepResult:
        """Advance the hierarchy by one coarse step."""
        if self._guards_pending or self._fine_levels_pending:
            self.check_preconditions()
            self._prepare()

        dts = self.timestep.compute_dt(self.levels)
        dt0 = dts[0]
        step = self.step_count
        logger.info("STEP %d starts ...", step + 1)

        t_start = self.time
        self._advance_level(0)

        cur_time = t_start + dt0
        for level in self.levels:
            level.time = cur_time
        logger.info("STEP %d ends. TIME = %g DT = %g", self.step_count, cur_time, dt0)

        diag = self.config.diagnostics
        if diag.plot_interval > 0 and self.step_count % diag.plot_interval == 0:
            self._write_snapshot()
        if diag.checkpoint_interval > 0 and self.step_count % diag.checkpoint_interval == 0:
            self.save_checkpoint()

        if cur_time >= self.config.stop_time - STOP_TIME_TOLERANCE * dt0:
            self.max_time_reached = True

        return self._make_step_result(dt0)

    def _advance_level(self, lev: int) -> None:
        """Leapfrog step on ``lev``, then sub-cycle every finer level."""
        level = self.levels[lev]
        has_child = lev < self.finest_level
        if has_child:
            self.interpolator.begin(level)

        self._leapfrog(level)

        if has_child:
            self.interpolator.end(level)
            child = self.levels[lev + 1]
            for k in range(child.subcycle_ratio):
                self.interpolator.fill_ghosts(level, child, k / child.subcycle_ratio)
                self._advance_level(lev + 1)
            average_down(child, level)

    def _leapfrog(self, level: Level) -> None:
        tracker = self.tracker
        dt = level.dt
        geom = level.geometry

        tracker.enter(LeapfrogPhase.B_HALF_1)
        self.evolver.evolve_b(level, 0.5 * dt)

        if self.sync_before_push:
            tracker.enter(LeapfrogPhase.SYNC_EB)
            self.ghost.sync_vector(level.B, geom)
            self.ghost.sync_vector(level.E, geom)

        tracker.enter(LeapfrogPhase.PARTICLES)
        pushed = self._deposit_current(level)

        if pushed:
            tracker.enter(LeapfrogPhase.REDISTRIBUTE)
            self.particles.redistribute(False, True)

        tracker.enter(LeapfrogPhase.B_HALF_2)
        self.evolver.evolve_b(level, 0.5 * dt)

        tracker.enter(LeapfrogPhase.SYNC_B)
        self.ghost.sync_vector(level.B, geom)

        tracker.enter(LeapfrogPhase.E_FULL)
        self.evolver.evolve_e(level, dt)

        tracker.enter(LeapfrogPhase.SYNC_E)
        self.ghost.sync_vector(level.E, geom)

        tracker.finish()
        level.step += 1
        if level.lev > 0:
            level.time += dt

    def _deposit_current(self, level: Level) -> bool:
        """Fill J^{n+1/2} on ``level``; return True when particles were pushed."""
        pc = self.particles
        if pc is not None and (level.lev == 0 or pc.has_particles(level.lev)):
            pc.advance_and_deposit(
                level.lev,
                *level.E,
                *level.B,
                *level.J,
                level.dt,
            )
            return True
        if level.lev > 0:
            self.interpolator.prolong_current(self.levels[level.lev - 1], level)
        return False

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _write_snapshot(self) -> None:
        if self.writer is None:
            logger.warning("Plot file for step %d skipped: no snapshot writer", self.step_count)
            return
        self.writer.write_snapshot(self.levels, self.particles)
        self.last_snapshot_step = self.step_count

    def _make_step_result(self, dt: float) -> StepResult:
        pc = self.particles
        return StepResult(
            time=self.time,
            step=self.step_count,
            dt=dt,
            field_energy=field_energy(self.levels[0], self.epsilon_0, self.mu_0),
            kinetic_energy=pc.kinetic_energy() if pc is not None else 0.0,
            n_particles=pc.n_particles() if pc is not None else 0,
            finished=self._is_finished(),
        )

    def save_checkpoint(self, filename: str | None = None) -> str:
        """Save the full state; returns the file written."""
        if filename is None:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            prefix = self.config.diagnostics.checkpoint_file
            filename = str(self.output_dir / f"{prefix}{self.step_count:05d}.h5")
        save_checkpoint(
            filename,
            self.levels,
            self.particles if isinstance(self.particles, ParticleContainer) else None,
            self.last_snapshot_step,
            config_json=self.config.model_dump_json(),
        )
        return filename

    def load_from_checkpoint(self, filename: str) -> None:
        """Restore fields, clocks, particles and output bookkeeping."""
        if not Path(filename).exists():
            raise FileNotFoundError(f"checkpoint not found: {filename}")
        data = load_checkpoint(filename)
        restore_levels(self.levels, data)

        if data["species"]:
            if not isinstance(self.particles, ParticleContainer):
                shape = expand_axes(self.config.solver.shape_order, self.config.grid.dim, 0)
                self.particles = ParticleContainer(
                    self.levels[0].geometry, self.levels[0].boxes, shape,
                )
            self.particles.species = []
            for sp in data["species"]:
                self.particles.add_species(sp)

        self.last_snapshot_step = data["last_snapshot_step"]
        self.max_time_reached = False
        self._fine_levels_pending = False
        self._guards_pending = False
        logger.info(
            "Restarted from %s: t=%.4e, step=%d", filename, self.time, self.step_count,
        )

    def run(self, max_steps: int | None = None) -> dict[str, Any]:
        """Execute the simulation loop.

        Args:
            max_steps: Level-0 step index to stop at, capped by ``max_step``
                (None = run to the budget).

        Returns:
            Dictionary with summary statistics.
        """
        t_wall_start = wall_time.monotonic()
        logger.info(
            "Starting simulation: t_end=%.2e, max_step=%d", self.config.stop_time, self.config.max_step,
        )
        results = self.evolve(max_steps)
        t_wall = wall_time.monotonic() - t_wall_start

        pc = self.particles
        summary = {
            "steps": self.step_count,
            "steps_taken": len(results),
            "sim_time": self.time,
            "wall_time_s": t_wall,
            "field_energy": field_energy(self.levels[0], self.epsilon_0, self.mu_0),
            "kinetic_energy": pc.kinetic_energy() if pc is not None else 0.0,
            "n_particles": pc.n_particles() if pc is not None else 0,
            "last_snapshot_step": self.last_snapshot_step,
            "finished": self._is_finished(),
        }
        logger.info(
            "Simulation complete: %d steps, t=%.4e, wall=%.2fs",
            summary["steps"], summary["sim_time"], t_wall,
        )
        if not math.isfinite(summary["field_energy"]):
            logger.warning("Field energy is not finite; the run may be unstable")
        return summary

    def get_field_snapshot(self, lev: int = 0) -> dict[str, np.ndarray]:
        """Level-wide copies of all nine field components of level ``lev``."""
        comps: list[ScalarField] = self.levels[lev].field_components()
        return {comp.name: comp.gather() for comp in comps}
