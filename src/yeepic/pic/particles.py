"""Macro-particle push and current deposition on the Yee grid.

Key components:
    - ``ParticleSpecies``: container for macro-particle data (positions,
      velocities, weights, owning patch).
    - ``shape_weights``: B-spline shape factors of order 0 (NGP) to 3
      (cubic) evaluated at a fractional grid coordinate.
    - ``boris_push``: Numba-accelerated Boris algorithm for charged-particle
      motion in combined E and B fields.
    - ``gather_component`` / ``deposit_component``: staggered field
      interpolation to particles and current deposition to the grid, with
      periodic wrap-around.
    - ``ParticleContainer``: the particle collaborator of the simulation
      loop. Particles live on level 0.

Momentum is advanced n-1/2 -> n+1/2 with E^n and B^n gathered at x^n; the
position is advanced n -> n+1 and the current J^{n+1/2} is deposited at the
mid-step position with v^{n+1/2}. The deposit is not charge-conserving.

Units: SI throughout (m, s, kg, C, V, T), or whatever normalized units the
configuration's ``c`` and ``mu_0`` imply.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np
from numba import njit

from yeepic.config import SimulationConfig, SpeciesConfig
from yeepic.core.bases import ParticleContainerBase
from yeepic.core.grid import Geometry, ScalarField, expand_axes

logger = logging.getLogger(__name__)


# =====================================================================
# Numba-accelerated kernels
# =====================================================================

@njit(cache=True)
def _shape_weights(xi: float, order: int, w: np.ndarray) -> int:
    """Fill ``w`` with shape-factor weights at fractional index ``xi``.

    Returns:
        Grid index of the first weight; ``order + 1`` weights are valid.
    """
    if order == 0:
        w[0] = 1.0
        return int(np.floor(xi + 0.5))
    if order == 1:
        i = int(np.floor(xi))
        d = xi - i
        w[0] = 1.0 - d
        w[1] = d
        return i
    if order == 2:
        i = int(np.floor(xi + 0.5))
        d = xi - i
        w[0] = 0.5 * (0.5 - d) ** 2
        w[1] = 0.75 - d * d
        w[2] = 0.5 * (0.5 + d) ** 2
        return i - 1
    i = int(np.floor(xi))
    d = xi - i
    w[0] = (1.0 - d) ** 3 / 6.0
    w[1] = (4.0 - 6.0 * d * d + 3.0 * d ** 3) / 6.0
    w[2] = (1.0 + 3.0 * d + 3.0 * d * d - 3.0 * d ** 3) / 6.0
    w[3] = d ** 3 / 6.0
    return i - 1


@njit(cache=True)
def _wrap_index(i: int, n_valid: int, n_wrap: int, periodic: bool) -> int:
    """Map a grid index onto the level array; -1 if it falls outside."""
    if periodic:
        return i % n_wrap
    if i < 0 or i >= n_valid:
        return -1
    return i


@njit(cache=True)
def _gather_kernel(
    grid: np.ndarray,
    coords: np.ndarray,
    orders: np.ndarray,
    n_valid: np.ndarray,
    n_wrap: np.ndarray,
    periodic: np.ndarray,
) -> np.ndarray:
    """Interpolate ``grid`` to particles at fractional indices ``coords`` (N, 3)."""
    n = coords.shape[0]
    out = np.zeros(n)
    wx = np.zeros(4)
    wy = np.zeros(4)
    wz = np.zeros(4)
    for p in range(n):
        i0 = _shape_weights(coords[p, 0], orders[0], wx)
        j0 = _shape_weights(coords[p, 1], orders[1], wy)
        k0 = _shape_weights(coords[p, 2], orders[2], wz)
        acc = 0.0
        for a in range(orders[0] + 1):
            i = _wrap_index(i0 + a, n_valid[0], n_wrap[0], periodic[0])
            if i < 0:
                continue
            for b in range(orders[1] + 1):
                j = _wrap_index(j0 + b, n_valid[1], n_wrap[1], periodic[1])
                if j < 0:
                    continue
                for c in range(orders[2] + 1):
                    k = _wrap_index(k0 + c, n_valid[2], n_wrap[2], periodic[2])
                    if k < 0:
                        continue
                    acc += wx[a] * wy[b] * wz[c] * grid[i, j, k]
        out[p] = acc
    return out


@njit(cache=True)
def _deposit_kernel(
    grid: np.ndarray,
    coords: np.ndarray,
    values: np.ndarray,
    orders: np.ndarray,
    n_valid: np.ndarray,
    n_wrap: np.ndarray,
    periodic: np.ndarray,
) -> None:
    """Accumulate ``values`` (N,) onto ``grid`` with the particle shape factors."""
    wx = np.zeros(4)
    wy = np.zeros(4)
    wz = np.zeros(4)
    for p in range(coords.shape[0]):
        i0 = _shape_weights(coords[p, 0], orders[0], wx)
        j0 = _shape_weights(coords[p, 1], orders[1], wy)
        k0 = _shape_weights(coords[p, 2], orders[2], wz)
        v = values[p]
        for a in range(orders[0] + 1):
            i = _wrap_index(i0 + a, n_valid[0], n_wrap[0], periodic[0])
            if i < 0:
                continue
            for b in range(orders[1] + 1):
                j = _wrap_index(j0 + b, n_valid[1], n_wrap[1], periodic[1])
                if j < 0:
                    continue
                for c in range(orders[2] + 1):
                    k = _wrap_index(k0 + c, n_valid[2], n_wrap[2], periodic[2])
                    if k < 0:
                        continue
                    grid[i, j, k] += wx[a] * wy[b] * wz[c] * v


@njit(cache=True)
def _boris_push_kernel(
    velocities: np.ndarray,
    E_field: np.ndarray,
    B_field: np.ndarray,
    charge: float,
    mass: float,
    dt: float,
) -> np.ndarray:
    """Boris rotation for N particles; returns v^{n+1/2}."""
    n = velocities.shape[0]
    new_vel = np.empty_like(velocities)
    qdt_over_2m = charge * dt / (2.0 * mass)

    for i in range(n):
        # Half-acceleration from E
        vx_minus = velocities[i, 0] + qdt_over_2m * E_field[i, 0]
        vy_minus = velocities[i, 1] + qdt_over_2m * E_field[i, 1]
        vz_minus = velocities[i, 2] + qdt_over_2m * E_field[i, 2]

        tx = qdt_over_2m * B_field[i, 0]
        ty = qdt_over_2m * B_field[i, 1]
        tz = qdt_over_2m * B_field[i, 2]
        s_factor = 2.0 / (1.0 + tx * tx + ty * ty + tz * tz)
        sx = s_factor * tx
        sy = s_factor * ty
        sz = s_factor * tz

        # v' = v_minus + v_minus x t
        vpx = vx_minus + (vy_minus * tz - vz_minus * ty)
        vpy = vy_minus + (vz_minus * tx - vx_minus * tz)
        vpz = vz_minus + (vx_minus * ty - vy_minus * tx)

        # v_plus = v_minus + v' x s
        vx_plus = vx_minus + (vpy * sz - vpz * sy)
        vy_plus = vy_minus + (vpz * sx - vpx * sz)
        vz_plus = vz_minus + (vpx * sy - vpy * sx)

        new_vel[i, 0] = vx_plus + qdt_over_2m * E_field[i, 0]
        new_vel[i, 1] = vy_plus + qdt_over_2m * E_field[i, 1]
        new_vel[i, 2] = vz_plus + qdt_over_2m * E_field[i, 2]

    return new_vel


# =====================================================================
# Python wrappers
# =====================================================================

def shape_weights(xi: float, order: int) -> tuple[int, np.ndarray]:
    """Shape-factor weights at fractional grid index ``xi``.

    Returns:
        (first grid index, weights of length ``order + 1``).
    """
    if order not in (0, 1, 2, 3):
        raise ValueError(f"shape order must be 0..3, got {order}")
    w = np.zeros(4)
    start = _shape_weights(float(xi), int(order), w)
    return start, w[: order + 1].copy()


def boris_push(
    velocities: np.ndarray,
    E_field: np.ndarray,
    B_field: np.ndarray,
    charge: float,
    mass: float,
    dt: float,
) -> np.ndarray:
    """Advance velocities by ``dt`` in the given fields (Boris scheme)."""
    if velocities.shape[0] == 0:
        return velocities.copy()
    return _boris_push_kernel(
        np.ascontiguousarray(velocities, dtype=np.float64),
        np.ascontiguousarray(E_field, dtype=np.float64),
        np.ascontiguousarray(B_field, dtype=np.float64),
        float(charge), float(mass), float(dt),
    )


def _component_layout(comp: ScalarField, orders: Sequence[int]):
    geom = comp.geometry
    n_cells = geom.n_cells()
    n_valid = np.array([
        (n + 1 if comp.index_type[ax] else n) if geom.active[ax] else 1
        for ax, n in enumerate(n_cells)
    ], dtype=np.int64)
    n_wrap = np.array([n if geom.active[ax] else 1 for ax, n in enumerate(n_cells)], dtype=np.int64)
    periodic = np.array([bool(geom.periodic[ax]) and geom.active[ax] for ax in range(3)])
    eff_orders = np.array([o if geom.active[ax] else 0 for ax, o in enumerate(orders)], dtype=np.int64)
    return eff_orders, n_valid, n_wrap, periodic


def grid_coordinates(positions: np.ndarray, comp: ScalarField) -> np.ndarray:
    """Fractional array index of each particle for one staggered component."""
    geom = comp.geometry
    coords = np.zeros_like(positions)
    for ax in range(3):
        if not geom.active[ax]:
            continue
        xi = (positions[:, ax] / geom.cell_size[ax]) - geom.domain.lo[ax]
        coords[:, ax] = xi if comp.index_type[ax] else xi - 0.5
    return coords


def gather_component(comp: ScalarField, positions: np.ndarray, orders: Sequence[int]) -> np.ndarray:
    """Interpolate one field component to the particle positions."""
    if positions.shape[0] == 0:
        return np.zeros(0)
    eff_orders, n_valid, n_wrap, periodic = _component_layout(comp, orders)
    return _gather_kernel(
        comp.gather(), grid_coordinates(positions, comp), eff_orders, n_valid, n_wrap, periodic,
    )


def deposit_component(
    comp: ScalarField,
    positions: np.ndarray,
    values: np.ndarray,
    orders: Sequence[int],
) -> np.ndarray:
    """Deposit per-particle ``values`` onto a level-wide array shaped like ``comp``."""
    grid = np.zeros(comp.global_shape())
    if positions.shape[0] == 0:
        return grid
    eff_orders, n_valid, n_wrap, periodic = _component_layout(comp, orders)
    _deposit_kernel(
        grid,
        grid_coordinates(positions, comp),
        np.ascontiguousarray(values, dtype=np.float64),
        eff_orders, n_valid, n_wrap, periodic,
    )
    return grid


# =====================================================================
# Particle species
# =====================================================================

@dataclass
class ParticleSpecies:
    """Container for one species of macro-particles.

    Attributes:
        name: Human-readable species label (e.g. ``"electrons"``).
        charge: Charge per physical particle [C].
        mass: Mass per physical particle [kg].
        positions: Particle positions, shape (N, 3) [m].
        velocities: Particle velocities, shape (N, 3) [m/s].
        weights: Physical particles per macro-particle, shape (N,).
        patch: Index of the level-0 patch owning each particle, shape (N,).
    """

    name: str
    charge: float
    mass: float
    positions: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    velocities: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    weights: np.ndarray = field(default_factory=lambda: np.zeros(0))
    patch: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))

    @property
    def n_particles(self) -> int:
        return self.positions.shape[0]

    def kinetic_energy(self) -> float:
        """Total non-relativistic kinetic energy [J]."""
        if self.n_particles == 0:
            return 0.0
        v2 = np.sum(self.velocities ** 2, axis=1)
        return float(0.5 * self.mass * np.sum(self.weights * v2))

    def keep(self, mask: np.ndarray) -> None:
        """Drop every particle where ``mask`` is False."""
        self.positions = self.positions[mask]
        self.velocities = self.velocities[mask]
        self.weights = self.weights[mask]
        self.patch = self.patch[mask]


def load_uniform(sp_cfg: SpeciesConfig, geometry: Geometry) -> ParticleSpecies:
    """Load a uniformly distributed, drifting Maxwellian species."""
    rng = np.random.default_rng(sp_cfg.seed)
    n = sp_cfg.n_macroparticles
    lengths = np.array([
        geometry.n_cells()[ax] * geometry.cell_size[ax] if geometry.active[ax] else 0.0
        for ax in range(3)
    ])
    positions = rng.random((n, 3)) * lengths
    velocities = np.asarray(sp_cfg.drift_velocity, dtype=np.float64) + (
        sp_cfg.thermal_velocity * rng.standard_normal((n, 3))
    )
    volume = float(np.prod(lengths[list(geometry.active)]))
    weight = sp_cfg.density * volume / n if n > 0 else 0.0
    return ParticleSpecies(
        name=sp_cfg.name,
        charge=sp_cfg.charge,
        mass=sp_cfg.mass,
        positions=positions,
        velocities=velocities,
        weights=np.full(n, weight),
        patch=np.zeros(n, dtype=np.int64),
    )


# =====================================================================
# Particle container
# =====================================================================

class ParticleContainer(ParticleContainerBase):
    """Level-0 particle collaborator of the simulation loop.

    Args:
        geometry: Geometry of level 0.
        boxes: Patch boxes of level 0.
        shape_order: Shape-factor order per (x, y, z) axis.
    """

    def __init__(
        self,
        geometry: Geometry,
        boxes: Sequence,
        shape_order: Sequence[int] = (1, 1, 1),
    ) -> None:
        self.geometry = geometry
        self.boxes = list(boxes)
        self.shape_order = tuple(int(o) for o in shape_order)
        self.species: list[ParticleSpecies] = []

    @classmethod
    def from_config(cls, config: SimulationConfig, geometry: Geometry, boxes: Sequence) -> ParticleContainer:
        """Create the container and load every configured species."""
        shape = expand_axes(config.solver.shape_order, config.grid.dim, 0)
        container = cls(geometry, boxes, shape)
        for sp_cfg in config.species:
            container.add_species(load_uniform(sp_cfg, geometry))
        return container

    def add_species(self, species: ParticleSpecies) -> None:
        self.species.append(species)
        self.redistribute()
        logger.info(
            "Added species '%s': %d macro-particles (q=%.3e, m=%.3e)",
            species.name, species.n_particles, species.charge, species.mass,
        )

    def has_particles(self, lev: int) -> bool:
        return lev == 0 and any(sp.n_particles > 0 for sp in self.species)

    def n_particles(self) -> int:
        return sum(sp.n_particles for sp in self.species)

    def kinetic_energy(self) -> float:
        return sum(sp.kinetic_energy() for sp in self.species)

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
        currents = [np.zeros(j.global_shape()) for j in (jx, jy, jz)]
        if lev == 0:
            inv_volume = 1.0 / self.geometry.cell_volume()
            for sp in self.species:
                if sp.n_particles == 0:
                    continue
                pos = sp.positions
                e_p = np.stack([gather_component(f, pos, self.shape_order) for f in (ex, ey, ez)], axis=1)
                b_p = np.stack([gather_component(f, pos, self.shape_order) for f in (bx, by, bz)], axis=1)
                sp.velocities = boris_push(sp.velocities, e_p, b_p, sp.charge, sp.mass, dt)

                new_pos = pos + sp.velocities * dt
                for ax in range(3):
                    if not self.geometry.active[ax]:
                        new_pos[:, ax] = 0.0
                mid = 0.5 * (pos + new_pos)
                for a, j in enumerate((jx, jy, jz)):
                    flux = sp.charge * sp.weights * sp.velocities[:, a] * inv_volume
                    currents[a] += deposit_component(j, mid, flux, self.shape_order)
                sp.positions = new_pos

        outside = "keep" if self.geometry.boundary == "coarse_fine" else "zero"
        for j, values in zip((jx, jy, jz), currents):
            j.scatter(values, ghost_only=False, outside=outside)
        logger.debug("Level %d: pushed %d particles, dt=%.4e", lev, self.n_particles(), dt)

    def redistribute(self, local_only: bool = False, global_: bool = True) -> None:
        """Wrap periodic axes, absorb at conducting walls and re-assign patches.

        A single process owns every patch, so ``local_only`` and ``global_``
        select the same behaviour.
        """
        geom = self.geometry
        lengths = [geom.n_cells()[ax] * geom.cell_size[ax] if geom.active[ax] else 0.0 for ax in range(3)]
        n_lost = 0
        for sp in self.species:
            if sp.n_particles == 0:
                continue
            inside = np.ones(sp.n_particles, dtype=bool)
            for ax in range(3):
                if not geom.active[ax]:
                    continue
                if geom.periodic[ax]:
                    sp.positions[:, ax] = np.mod(sp.positions[:, ax], lengths[ax])
                else:
                    x = sp.positions[:, ax]
                    inside &= (x >= 0.0) & (x < lengths[ax])
            n_lost += int(np.count_nonzero(~inside))
            sp.keep(inside)
            sp.patch = self._patch_ids(sp.positions)
        if n_lost:
            logger.debug("Absorbed %d particles at conducting boundaries", n_lost)

    def _patch_ids(self, positions: np.ndarray) -> np.ndarray:
        geom = self.geometry
        cells = np.zeros((positions.shape[0], 3), dtype=np.int64)
        for ax in range(3):
            if geom.active[ax]:
                cells[:, ax] = np.floor(positions[:, ax] / geom.cell_size[ax]).astype(np.int64)
                cells[:, ax] = np.clip(cells[:, ax], geom.domain.lo[ax], geom.domain.hi[ax])
        ids = np.full(positions.shape[0], -1, dtype=np.int64)
        for p, box in enumerate(self.boxes):
            mask = np.ones(positions.shape[0], dtype=bool)
            for ax in range(3):
                if geom.active[ax]:
                    mask &= (cells[:, ax] >= box.lo[ax]) & (cells[:, ax] <= box.hi[ax])
            ids[mask] = p
        return ids
