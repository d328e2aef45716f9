"""Tests for the Yee stencil, guard-cell exchange and FieldEvolver."""

from __future__ import annotations

import numpy as np
import pytest

from yeepic.amr.hierarchy import build_hierarchy
from yeepic.core.bases import PreconditionError
from yeepic.core.grid import YEE_B, YEE_E, ScalarField
from yeepic.fields.evolver import FieldEvolver, check_guard_widths
from yeepic.fields.ghost import GhostExchange
from yeepic.fields.stencil import YeeStencil


def _periodic_random(comp: ScalarField, rng: np.random.Generator) -> np.ndarray:
    """Set ``comp`` to random periodic data (ghosts included); return the level array."""
    shape = comp.global_shape()
    values = rng.standard_normal(shape)
    comp.scatter(values, ghost_only=False)
    return comp.gather()


def _snapshot(level):
    return [arr.copy() for comp in level.field_components() for arr in comp.arrays]


def _assert_unchanged(level, before):
    after = [arr for comp in level.field_components() for arr in comp.arrays]
    for a, b in zip(before, after):
        np.testing.assert_array_equal(a, b)


# ====================================================
# Ghost exchange
# ====================================================

class TestGhostExchange:
    """Guard-cell fill across patches and domain boundaries."""

    def test_periodic_wrap(self, config_factory):
        """Lower x guards of the first patch hold the last cells of the domain."""
        cfg = config_factory(grid={"n_cell": [32, 4], "max_grid_size": 16})
        level = build_hierarchy(cfg)[0]
        ey = level.E[1]
        for p, arr in enumerate(ey.arrays):
            x = ey.boxes[p].lo[0] - ey.n_ghost + np.arange(arr.shape[0])
            arr[...] = np.sin(2 * np.pi * x / 32)[:, None, None]
            arr[: ey.n_ghost] = 99.0
        GhostExchange().sync(ey, level.geometry, YEE_E[1])
        expected = np.sin(2 * np.pi * np.array([30, 31]) / 32)
        np.testing.assert_allclose(ey.arrays[0][:2, 0, 0], expected, atol=1e-12)

    def test_patch_interface(self, config_factory):
        """Upper x guards of patch 0 hold the first cells of patch 1."""
        cfg = config_factory(grid={"n_cell": [32, 4], "max_grid_size": 16})
        level = build_hierarchy(cfg)[0]
        bz = level.B[2]
        bz.arrays[0].fill(0.0)
        bz.arrays[1].fill(0.0)
        ng = bz.n_ghost
        bz.arrays[1][ng:ng + 2] = 5.0
        GhostExchange().sync(bz, level.geometry, YEE_B[2])
        # Bz is cell-centred in x: patch 0 owns cells 0..15, guards start at 16
        np.testing.assert_array_equal(bz.arrays[0][ng + 16: ng + 18], 5.0)

    def test_conductor_zeroes_outside(self, config_factory):
        cfg = config_factory(grid={"periodic": [False, False]})
        level = build_hierarchy(cfg)[0]
        ex = level.E[0]
        ex.fill(1.0)
        GhostExchange().sync(ex, level.geometry, YEE_E[0])
        arr = ex.arrays[0]
        np.testing.assert_array_equal(arr[: ex.n_ghost], 0.0)
        np.testing.assert_array_equal(arr[ex.valid_slices(0)], 1.0)

    def test_centering_mismatch(self, small_levels):
        level = small_levels[0]
        with pytest.raises(ValueError, match="centering"):
            GhostExchange().sync(level.E[0], level.geometry, YEE_B[0])

    def test_counts_calls(self, small_levels):
        level = small_levels[0]
        ghost = GhostExchange()
        ghost.sync_vector(level.B, level.geometry)
        assert ghost.n_calls == 3


# ====================================================
# Stencil
# ====================================================

class TestYeeStencil:
    """The numba curl kernel."""

    def test_unsupported_order(self, small_levels):
        level = small_levels[0]
        with pytest.raises(ValueError, match="order"):
            YeeStencil().curl_update(
                level.E.patch(0), level.B.patch(0), (0.1, 0.0, 0.1), 3, (2, 0, 2), YEE_B, sign=-1.0,
            )

    def test_guard_too_narrow(self, config_factory):
        """A fourth-order stencil refuses a one-cell guard."""
        cfg = config_factory(grid={"n_ghost": 1})
        level = build_hierarchy(cfg)[0]
        before = _snapshot(level)
        with pytest.raises(PreconditionError):
            YeeStencil().curl_update(
                level.E.patch(0), level.B.patch(0), (0.1, 0.0, 0.1), 4, (1, 0, 1), YEE_B, sign=-1.0,
            )
        _assert_unchanged(level, before)


# ====================================================
# FieldEvolver
# ====================================================

class TestEvolveB:
    """dB/dt = -curl E."""

    def _setup(self, config_factory, order=2):
        cfg = config_factory(solver={"stencil_order": order})
        level = build_hierarchy(cfg)[0]
        return level, FieldEvolver(1.0, 1.0, stencil_order=order), GhostExchange()

    def test_matches_finite_difference(self, config_factory):
        """Bz changes by -dt * (Ey[i+1] - Ey[i]) / dx."""
        level, evolver, _ = self._setup(config_factory)
        ey = _periodic_random(level.E[1], np.random.default_rng(0))
        evolver.evolve_b(level, 0.1)
        bz = level.B[2].gather()
        expected = -0.1 * (np.roll(ey[:-1], -1, axis=0) - ey[:-1])
        np.testing.assert_allclose(bz[:16], expected, atol=1e-12)

    def test_vacuum_is_idempotent(self, config_factory):
        """Zero E leaves B unchanged."""
        level, evolver, _ = self._setup(config_factory)
        _periodic_random(level.B[0], np.random.default_rng(1))
        before = _snapshot(level)
        evolver.evolve_b(level, 0.3)
        _assert_unchanged(level, before)

    def test_linear_in_e(self, config_factory):
        """Delta B for E1 + E2 is the sum of the individual changes."""
        rng = np.random.default_rng(2)
        deltas = []
        fields = [[rng.standard_normal(c.global_shape()) for c in build_hierarchy(config_factory())[0].E]
                  for _ in range(2)]
        for combo in ([fields[0]], [fields[1]], fields):
            level, evolver, _ = self._setup(config_factory)
            for i, comp in enumerate(level.E):
                comp.scatter(sum(f[i] for f in combo), ghost_only=False)
            evolver.evolve_b(level, 0.2)
            deltas.append([c.gather() for c in level.B])
        for i in range(3):
            np.testing.assert_allclose(deltas[2][i], deltas[0][i] + deltas[1][i], atol=1e-12)

    @pytest.mark.parametrize("order", [2, 4])
    def test_additive_in_dt(self, config_factory, order):
        """Two half-steps with fixed E equal one full step."""
        rng = np.random.default_rng(3)
        results = []
        for dts in ([0.1, 0.15], [0.25]):
            level, evolver, _ = self._setup(config_factory, order)
            for comp in level.E:
                comp.scatter(rng.standard_normal(comp.global_shape()), ghost_only=False)
            rng = np.random.default_rng(3)
            for dt in dts:
                evolver.evolve_b(level, dt)
            results.append([c.gather() for c in level.B])
        for a, b in zip(*results):
            np.testing.assert_allclose(a, b, atol=1e-12)

    def test_zero_dt_after_step_is_noop(self, config_factory):
        """evolve_b(dt) then evolve_b(0) equals evolve_b(dt)."""
        results = []
        for dts in ([0.2, 0.0], [0.2]):
            level, evolver, _ = self._setup(config_factory)
            rng = np.random.default_rng(5)
            for comp in level.E:
                comp.scatter(rng.standard_normal(comp.global_shape()), ghost_only=False)
            for dt in dts:
                evolver.evolve_b(level, dt)
            results.append([arr.copy() for c in level.B for arr in c.arrays])
        for a, b in zip(*results):
            np.testing.assert_array_equal(a, b)

    def test_guard_mismatch_fails_without_mutation(self, small_levels):
        """Components with different guard widths are rejected up front."""
        level = small_levels[0]
        level.E.components = (
            ScalarField("Ex", level.geometry, level.boxes, YEE_E[0], 3),
            level.E[1],
            level.E[2],
        )
        level.E[0].fill(1.0)
        before = _snapshot(level)
        with pytest.raises(PreconditionError, match="guard width mismatch"):
            FieldEvolver(1.0, 1.0).evolve_b(level, 0.1)
        _assert_unchanged(level, before)

    def test_check_guard_widths(self, small_levels):
        assert check_guard_widths(small_levels[0].field_components()) == 2


class TestEvolveE:
    """dE/dt = c^2 curl B - mu_0 c^2 J."""

    def test_current_source(self, small_levels):
        """Uniform J with zero B drives E by -mu_0 c^2 dt J."""
        level = small_levels[0]
        level.J[0].fill(2.0)
        FieldEvolver(c=2.0, mu_0=0.5).evolve_e(level, 0.1)
        ex = level.E[0]
        for p, arr in enumerate(ex.arrays):
            np.testing.assert_allclose(arr[ex.valid_slices(p)], -0.5 * 4.0 * 0.1 * 2.0)
        assert level.E[1].max_abs() == 0.0

    def test_vacuum_is_idempotent(self, small_levels):
        level = small_levels[0]
        FieldEvolver(1.0, 1.0).evolve_e(level, 0.5)
        assert level.E.max_abs() == 0.0

    def test_b_is_read_only(self, small_levels):
        level = small_levels[0]
        _periodic_random(level.B[1], np.random.default_rng(4))
        before = [a.copy() for a in level.B[1].arrays]
        FieldEvolver(1.0, 1.0).evolve_e(level, 0.1)
        for a, b in zip(before, level.B[1].arrays):
            np.testing.assert_array_equal(a, b)
        assert level.E.max_abs() > 0.0
