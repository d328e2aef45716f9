"""Tests for the SimulationLoop: leapfrog ordering, termination, output cadence."""

from __future__ import annotations

import numpy as np
import pytest

from yeepic.config import SimulationConfig
from yeepic.core.bases import ParticleContainerBase, PreconditionError
from yeepic.core.grid import YEE_B, ScalarField
from yeepic.engine import (
    LEAPFROG_SEQUENCE,
    LeapfrogPhase,
    PhaseTracker,
    SimulationLoop,
    field_energy,
)
from yeepic.fields.ghost import GhostExchange
from yeepic.presets import get_preset


class RecordingGhost(GhostExchange):
    """Ghost exchange that logs every component it synchronizes."""

    def __init__(self, log: list) -> None:
        super().__init__()
        self.log = log

    def sync(self, field, geometry, centering) -> None:
        self.log.append(("sync", field.name))
        super().sync(field, geometry, centering)


class FakeParticles(ParticleContainerBase):
    """Particle collaborator that deposits a fixed current and logs calls."""

    def __init__(self, log: list, current: float = 0.0) -> None:
        self.log = log
        self.current = current

    def advance_and_deposit(self, lev, ex, ey, ez, bx, by, bz, jx, jy, jz, dt) -> None:
        self.log.append(("advance", lev, dt))
        jx.fill(self.current)

    def redistribute(self, local_only=False, global_=True) -> None:
        self.log.append(("redistribute", local_only, global_))

    def has_particles(self, lev) -> bool:
        return lev == 0


def _stop_time_config(config_factory, plot_interval):
    """dx = dz = 2, c = 1, cfl = 1/sqrt(2): dt = 1 and stop_time = 10."""
    return config_factory(
        max_step=1000,
        stop_time=10.0,
        grid={"n_cell": [8, 8], "cell_size": [2.0, 2.0]},
        solver={"cfl": 0.70710678},
        diagnostics={"plot_interval": plot_interval},
    )


# ====================================================
# Phase tracker
# ====================================================

class TestPhaseTracker:
    """The leapfrog state machine."""

    def test_full_sequence(self):
        tracker = PhaseTracker()
        for phase in LEAPFROG_SEQUENCE:
            tracker.enter(phase)
        assert tracker.finish() == LEAPFROG_SEQUENCE

    def test_optional_phases_may_be_skipped(self):
        tracker = PhaseTracker()
        for phase in LEAPFROG_SEQUENCE:
            if phase not in (LeapfrogPhase.SYNC_EB, LeapfrogPhase.REDISTRIBUTE):
                tracker.enter(phase)
        assert LeapfrogPhase.SYNC_EB not in tracker.finish()

    def test_backwards_transition_rejected(self):
        tracker = PhaseTracker()
        tracker.enter(LeapfrogPhase.B_HALF_1)
        tracker.enter(LeapfrogPhase.PARTICLES)
        with pytest.raises(RuntimeError):
            tracker.enter(LeapfrogPhase.B_HALF_1)

    def test_skipping_mandatory_phase_rejected(self):
        """E cannot be advanced before the second B half-step."""
        tracker = PhaseTracker()
        tracker.enter(LeapfrogPhase.B_HALF_1)
        with pytest.raises(RuntimeError):
            tracker.enter(LeapfrogPhase.E_FULL)

    def test_incomplete_step_rejected(self):
        tracker = PhaseTracker()
        tracker.enter(LeapfrogPhase.B_HALF_1)
        with pytest.raises(RuntimeError):
            tracker.finish()


# ====================================================
# Leapfrog ordering
# ====================================================

class TestLeapfrogOrder:
    """Collaborators are invoked in leapfrog order."""

    def test_sequence_with_high_order_shape(self, config_factory):
        log: list = []
        cfg = config_factory(solver={"shape_order": [2, 2]})
        loop = SimulationLoop(cfg, ghost=RecordingGhost(log), particles=FakeParticles(log))
        loop.evolve(1)

        i = log.index(("advance", 0, loop.levels[0].dt))
        assert [name for _, name in log[i - 6: i]] == ["Bx", "By", "Bz", "Ex", "Ey", "Ez"]
        assert log[i + 1] == ("redistribute", False, True)
        assert [name for _, name in log[i + 2:]] == ["Bx", "By", "Bz", "Ex", "Ey", "Ez"]
        assert loop.tracker.last_sequence == LEAPFROG_SEQUENCE

    def test_no_sync_before_push_for_linear_shape(self, config_factory):
        log: list = []
        loop = SimulationLoop(config_factory(), ghost=RecordingGhost(log), particles=FakeParticles(log))
        loop.evolve(1)
        assert LeapfrogPhase.SYNC_EB not in loop.tracker.last_sequence
        i = next(k for k, entry in enumerate(log) if entry[0] == "advance")
        # Only the initial guard fill precedes the push
        assert len(log[:i]) == 6

    def test_no_particles_skips_redistribute(self, config_factory):
        loop = SimulationLoop(config_factory())
        loop.evolve(1)
        assert LeapfrogPhase.REDISTRIBUTE not in loop.tracker.last_sequence
        assert loop.tracker.last_sequence[-1] == LeapfrogPhase.SYNC_E

    def test_current_drives_e(self, config_factory):
        """With zero initial fields, one step gives E = -mu_0 c^2 dt J."""
        log: list = []
        loop = SimulationLoop(config_factory(), particles=FakeParticles(log, current=3.0))
        result = loop.step()
        ex = loop.levels[0].E[0].gather()
        np.testing.assert_allclose(ex[:16], -result.dt * 3.0)
        assert loop.levels[0].B.max_abs() == 0.0


# ====================================================
# Termination and time keeping
# ====================================================

class TestTermination:
    """Step budget and stop-time handling."""

    @pytest.mark.parametrize("plot_interval, expected", [(5, [5, 10]), (3, [3, 6, 9, 10])])
    def test_stop_time(self, config_factory, recording_writer, plot_interval, expected):
        """Ten unit steps land on stop_time = 10; step 10 is written exactly once."""
        loop = SimulationLoop(_stop_time_config(config_factory, plot_interval), writer=recording_writer)
        results = loop.evolve()
        assert loop.step_count == 10
        assert loop.time == pytest.approx(10.0)
        assert loop.max_time_reached
        assert results[-1].finished
        assert recording_writer.steps == expected
        assert recording_writer.steps.count(10) == 1

    def test_step_budget(self, config_factory):
        loop = SimulationLoop(config_factory(max_step=4))
        results = loop.evolve()
        assert [r.step for r in results] == [1, 2, 3, 4]
        assert not loop.max_time_reached
        assert results[-1].finished

    def test_numsteps_is_absolute_step_index(self, config_factory):
        """``numsteps`` bounds the level-0 step index, not the steps of one call."""
        loop = SimulationLoop(config_factory(max_step=10))
        assert len(loop.evolve(4)) == 4
        results = loop.evolve(5)
        assert [r.step for r in results] == [5]
        assert loop.step_count == 5
        assert loop.evolve(3) == []
        assert loop.step_count == 5

    def test_numsteps_capped_by_max_step(self, config_factory):
        loop = SimulationLoop(config_factory(max_step=3))
        loop.evolve(8)
        assert loop.step_count == 3

    def test_nothing_left_to_do(self, config_factory, recording_writer):
        loop = SimulationLoop(
            config_factory(max_step=2, diagnostics={"plot_interval": 5}), writer=recording_writer,
        )
        loop.evolve()
        loop.evolve()
        assert loop.step_count == 2
        assert recording_writer.steps == [2]

    def test_all_levels_share_time(self, two_level_config):
        loop = SimulationLoop(two_level_config)
        loop.evolve(3)
        coarse, fine = loop.levels
        assert fine.time == coarse.time
        assert coarse.step == 3
        assert fine.step == 6
        assert fine.dt == pytest.approx(coarse.dt / 2)


class TestPlotCadence:
    """Plot files at the interval plus a final one."""

    def test_interval_and_final(self, config_factory, recording_writer):
        loop = SimulationLoop(
            config_factory(max_step=7, diagnostics={"plot_interval": 3}), writer=recording_writer,
        )
        loop.evolve()
        assert recording_writer.steps == [3, 6, 7]
        assert loop.last_snapshot_step == 7

    def test_final_step_on_interval(self, config_factory, recording_writer):
        loop = SimulationLoop(
            config_factory(max_step=6, diagnostics={"plot_interval": 3}), writer=recording_writer,
        )
        loop.evolve()
        assert recording_writer.steps == [3, 6]

    def test_disabled(self, config_factory, recording_writer):
        loop = SimulationLoop(
            config_factory(max_step=5, diagnostics={"plot_interval": 0}), writer=recording_writer,
        )
        loop.evolve()
        assert recording_writer.steps == []

    def test_partial_run_has_no_final_write(self, config_factory, recording_writer):
        loop = SimulationLoop(
            config_factory(max_step=10, diagnostics={"plot_interval": 3}), writer=recording_writer,
        )
        loop.evolve(4)
        assert recording_writer.steps == [3]


# ====================================================
# Preconditions
# ====================================================

class TestPreconditions:
    """Malformed hierarchies fail before any state changes."""

    def test_guard_mismatch(self, config_factory, recording_writer):
        loop = SimulationLoop(
            config_factory(diagnostics={"plot_interval": 1}), writer=recording_writer,
        )
        level = loop.levels[0]
        level.B.components = (
            level.B[0],
            ScalarField("By", level.geometry, level.boxes, YEE_B[1], 1),
            level.B[2],
        )
        level.E.fill(1.0)
        before = [a.copy() for comp in level.field_components() for a in comp.arrays]
        with pytest.raises(PreconditionError):
            loop.evolve()
        after = [a for comp in level.field_components() for a in comp.arrays]
        for a, b in zip(before, after):
            np.testing.assert_array_equal(a, b)
        assert loop.step_count == 0
        assert loop.time == 0.0
        assert recording_writer.steps == []

    def test_nonpositive_subcycle_ratio(self, two_level_config):
        loop = SimulationLoop(two_level_config)
        loop.levels[1].subcycle_ratio = -1
        with pytest.raises(PreconditionError):
            loop.evolve(1)
        assert loop.step_count == 0


# ====================================================
# Physics
# ====================================================

class TestZeroState:
    """Zero fields without particles stay exactly zero."""

    @staticmethod
    def _assert_all_zero(loop):
        for level in loop.levels:
            for comp in level.field_components():
                for arr in comp.arrays:
                    assert not np.any(arr), f"{comp.name} on level {level.lev} is not zero"

    @pytest.mark.parametrize("order", [2, 4])
    def test_single_level(self, config_factory, recording_writer, order):
        loop = SimulationLoop(
            config_factory(max_step=12, solver={"stencil_order": order}), writer=recording_writer,
        )
        results = loop.evolve()
        assert loop.step_count == 12
        self._assert_all_zero(loop)
        assert all(r.field_energy == 0.0 for r in results)

    def test_two_levels(self, two_level_config, recording_writer):
        loop = SimulationLoop(two_level_config, writer=recording_writer)
        loop.evolve(6)
        assert loop.levels[1].step == 12
        self._assert_all_zero(loop)


class TestVacuumPropagation:
    """Standing wave in vacuum."""

    def test_plane_wave_returns_after_one_period(self):
        data = get_preset("plane_wave")
        data["diagnostics"]["plot_interval"] = 0
        loop = SimulationLoop(SimulationConfig(**data))
        ey0 = loop.levels[0].E[1].gather()
        results = loop.evolve()

        assert loop.step_count == 64
        assert loop.time == pytest.approx(32.0)
        np.testing.assert_allclose(loop.levels[0].E[1].gather(), ey0, atol=0.1)
        energies = [r.field_energy for r in results]
        assert max(energies) / min(energies) < 1.3

    def test_half_period_inverts(self):
        data = get_preset("plane_wave")
        data["diagnostics"]["plot_interval"] = 0
        data["stop_time"] = 16.0
        loop = SimulationLoop(SimulationConfig(**data))
        ey0 = loop.levels[0].E[1].gather()
        loop.evolve()
        np.testing.assert_allclose(loop.levels[0].E[1].gather(), -ey0, atol=0.1)

    def test_two_level_consistency(self):
        """After a coarse step the covered coarse data equal the restricted fine data."""
        from yeepic.amr.hierarchy import restrict_component

        data = get_preset("two_level")
        data["diagnostics"]["plot_interval"] = 0
        loop = SimulationLoop(SimulationConfig(**data))
        loop.evolve(4)
        coarse, fine = loop.levels
        restricted = restrict_component(fine.E[1], 2)
        np.testing.assert_allclose(coarse.E[1].gather()[8:25, :, 2:7], restricted, atol=1e-12)
        assert np.all(np.isfinite(fine.E[1].gather()))
        assert fine.E[1].max_abs() < 1.5


class TestFieldEnergy:
    def test_uniform_ex(self, config_factory):
        loop = SimulationLoop(config_factory(grid={"n_cell": [4, 4]}))
        loop.levels[0].E[0].fill(1.0)
        assert field_energy(loop.levels[0], 1.0, 1.0) == pytest.approx(0.5 * 16)


class TestRunSummary:
    def test_run_returns_summary(self, config_factory):
        loop = SimulationLoop(config_factory(max_step=3))
        summary = loop.run()
        assert summary["steps"] == 3
        assert summary["steps_taken"] == 3
        assert summary["finished"]
        assert summary["n_particles"] == 0
        assert summary["wall_time_s"] >= 0.0
