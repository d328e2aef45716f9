"""Static mesh-refinement hierarchy for staggered Yee fields.

Builds the levels of the hierarchy from the configuration and moves field
data between them:
- ``build_hierarchy``: level 0 over the whole domain plus one refined
  region per finer level, each chopped into patches
- ``prolong_component``: linear interpolation of a staggered component from
  a coarse level-wide array onto the array points of fine patches
- ``restrict_component``: staggered average-down (injection along nodal
  axes, arithmetic mean along cell-centred axes)
- ``CoarseFineInterpolator``: space-time interpolation of the parent's
  fields into a child's guard cells during sub-cycling

Refinement boxes are fixed for the whole run; no tagging or regridding is
performed.

Reference:
    Berger & Oliger, "Adaptive mesh refinement for hyperbolic partial
    differential equations", JCP 53, 484-512 (1984).
"""

from __future__ import annotations

import logging
import math

import numpy as np

from yeepic.config import SimulationConfig
from yeepic.core.grid import (
    Box,
    Geometry,
    Level,
    ScalarField,
    chop_domain,
    expand_axes,
)

logger = logging.getLogger(__name__)


# ============================================================
# Hierarchy construction
# ============================================================


def build_hierarchy(config: SimulationConfig) -> list[Level]:
    """Allocate every level described by ``config``.

    Returns:
        Levels ordered from coarsest (0) to finest.
    """
    gc = config.grid
    dim = gc.dim
    n_cell = expand_axes(gc.n_cell, dim, 1)
    cell_size = expand_axes(gc.cell_size, dim, math.inf)
    periodic = expand_axes(gc.periodic if gc.periodic is not None else [True] * dim, dim, True)

    domain = Box((0, 0, 0), tuple(n - 1 for n in n_cell))
    geom0 = Geometry(
        domain=domain,
        cell_size=tuple(float(d) for d in cell_size),
        periodic=tuple(bool(p) for p in periodic),
        dim=dim,
        boundary="conductor",
    )
    levels = [Level.allocate(0, geom0, chop_domain(domain, gc.max_grid_size, geom0.active), gc.n_ghost)]

    ratio = config.amr.refine_ratio
    for lev, box_cfg in enumerate(config.amr.refined_boxes, start=1):
        parent = levels[-1]
        parent_box = Box(expand_axes(box_cfg.lo, dim, 0), expand_axes(box_cfg.hi, dim, 0))
        geom = parent.geometry.refine(parent_box, ratio)
        boxes = chop_domain(geom.domain, gc.max_grid_size, geom.active)
        levels.append(Level.allocate(
            lev,
            geom,
            boxes,
            gc.n_ghost,
            subcycle_ratio=config.amr.subcycle_ratio(lev),
            refine_ratio=ratio,
            parent_box=parent_box,
        ))

    for level in levels:
        logger.info(
            "Level %d: domain %s..%s, %d patches, dx=%s",
            level.lev,
            level.geometry.domain.lo,
            level.geometry.domain.hi,
            level.n_patches,
            level.cell_size,
        )
    return levels


# ============================================================
# Prolongation (coarse -> fine)
# ============================================================


def _interp_axis(arr: np.ndarray, axis: int, coords: np.ndarray, n_valid: int) -> np.ndarray:
    """Linear interpolation of ``arr`` along one axis at fractional indices ``coords``."""
    i0 = np.clip(np.floor(coords).astype(np.int64), 0, max(n_valid - 2, 0))
    i1 = np.minimum(i0 + 1, n_valid - 1)
    w = np.clip(coords - i0, 0.0, 1.0)
    shape = [1, 1, 1]
    shape[axis] = len(coords)
    w = w.reshape(shape)
    return np.take(arr, i0, axis=axis) * (1.0 - w) + np.take(arr, i1, axis=axis) * w


def _patch_indices(fine: ScalarField, p: int, ax: int) -> np.ndarray:
    """Fine-level global index of every array point of patch ``p`` along ``ax``."""
    if not fine.geometry.active[ax]:
        return np.zeros(1)
    length = fine.arrays[p].shape[ax]
    return (fine.boxes[p].lo[ax] - fine.n_ghost + np.arange(length)).astype(np.float64)


def prolong_component(
    coarse_values: np.ndarray,
    coarse_geometry: Geometry,
    fine: ScalarField,
    ratio: int,
    p: int,
) -> np.ndarray:
    """Interpolate a coarse level-wide component onto every point of fine patch ``p``.

    Args:
        coarse_values: Gathered coarse component, shape ``global_shape()``.
        coarse_geometry: Geometry of the coarse level.
        fine: Fine component (provides index type and patch layout).
        ratio: Spatial refinement ratio.
        p: Fine patch index.

    Returns:
        Array with the shape of ``fine.arrays[p]``.
    """
    out = coarse_values
    n_coarse = coarse_geometry.n_cells()
    for ax in range(3):
        if not coarse_geometry.active[ax]:
            continue
        g_fine = _patch_indices(fine, p, ax)
        nodal = fine.index_type[ax]
        # Position in coarse-cell units, then as a fractional coarse array index
        pos = g_fine / ratio if nodal else (g_fine + 0.5) / ratio
        coords = pos - coarse_geometry.domain.lo[ax] - (0.0 if nodal else 0.5)
        n_valid = n_coarse[ax] + 1 if nodal else n_coarse[ax]
        out = _interp_axis(out, ax, coords, n_valid)
    return out


def _outside_mask(fine: ScalarField, p: int) -> np.ndarray:
    """True for array points of patch ``p`` that lie outside the fine level's domain."""
    dom = fine.geometry.domain
    inside = np.ones(fine.arrays[p].shape, dtype=bool)
    for ax in range(3):
        if not fine.geometry.active[ax]:
            continue
        g = fine.boxes[p].lo[ax] - fine.n_ghost + np.arange(fine.arrays[p].shape[ax])
        upper = dom.hi[ax] + 1 if fine.index_type[ax] else dom.hi[ax]
        ok = (g >= dom.lo[ax]) & (g <= upper)
        shape = [1, 1, 1]
        shape[ax] = len(ok)
        inside &= ok.reshape(shape)
    return ~inside


def fill_from_coarse(
    coarse_values: np.ndarray,
    coarse_geometry: Geometry,
    fine: ScalarField,
    ratio: int,
    *,
    outside_only: bool = True,
) -> None:
    """Prolong a coarse component into ``fine``.

    Args:
        outside_only: Only overwrite guard points outside the fine domain
            (coarse-fine boundary); otherwise overwrite every point.
    """
    for p, arr in enumerate(fine.arrays):
        values = prolong_component(coarse_values, coarse_geometry, fine, ratio, p)
        if outside_only:
            mask = _outside_mask(fine, p)
            arr[mask] = values[mask]
        else:
            arr[...] = values


# ============================================================
# Restriction (fine -> coarse)
# ============================================================


def _restrict_axis(arr: np.ndarray, axis: int, nodal: bool, ratio: int, n_coarse: int) -> np.ndarray:
    if nodal:
        return np.take(arr, np.arange(n_coarse + 1) * ratio, axis=axis)
    sub = np.moveaxis(np.take(arr, np.arange(n_coarse * ratio), axis=axis), axis, 0)
    sub = sub.reshape(n_coarse, ratio, *sub.shape[1:]).mean(axis=1)
    return np.moveaxis(sub, 0, axis)


def restrict_component(fine: ScalarField, ratio: int) -> np.ndarray:
    """Average a fine component down to the coarse points it covers.

    Returns:
        Coarse-resolution array over the covered region: ``n + 1`` points
        along nodal axes and ``n`` along cell-centred axes.
    """
    out = fine.gather()
    n_fine = fine.geometry.n_cells()
    for ax in range(3):
        if not fine.geometry.active[ax]:
            continue
        out = _restrict_axis(out, ax, fine.index_type[ax], ratio, n_fine[ax] // ratio)
    return out


def average_down(fine: Level, coarse: Level) -> None:
    """Overwrite coarse E and B under ``fine`` with the restricted fine data."""
    ratio = fine.refine_ratio
    pbox = fine.parent_box
    outside = "keep" if coarse.geometry.boundary == "coarse_fine" else "zero"
    for fine_vec, coarse_vec in ((fine.E, coarse.E), (fine.B, coarse.B)):
        for f_comp, c_comp in zip(fine_vec, coarse_vec):
            restricted = restrict_component(f_comp, ratio)
            values = c_comp.gather()
            region = tuple(
                slice(pbox.lo[ax] - coarse.geometry.domain.lo[ax],
                      pbox.lo[ax] - coarse.geometry.domain.lo[ax] + restricted.shape[ax])
                if coarse.geometry.active[ax] else slice(0, 1)
                for ax in range(3)
            )
            values[region] = restricted
            c_comp.scatter(values, ghost_only=False, outside=outside)
    logger.debug("Averaged level %d down onto level %d", fine.lev, coarse.lev)


# ============================================================
# Coarse-fine guard-cell interpolation
# ============================================================


class CoarseFineInterpolator:
    """Fills a child level's coarse-fine guard cells during sub-cycling.

    The parent's E and B are captured before and after its step; each child
    sub-step then sees a linear blend of the two at its start time.
    """

    def __init__(self) -> None:
        self._old: dict[int, list[np.ndarray]] = {}
        self._new: dict[int, list[np.ndarray]] = {}

    @staticmethod
    def _capture(level: Level) -> list[np.ndarray]:
        return [comp.gather() for comp in (*level.E, *level.B)]

    def begin(self, parent: Level) -> None:
        """Record the parent's fields before it steps."""
        self._old[parent.lev] = self._capture(parent)

    def end(self, parent: Level) -> None:
        """Record the parent's fields after it steps."""
        self._new[parent.lev] = self._capture(parent)

    def fill_ghosts(self, parent: Level, child: Level, frac: float) -> None:
        """Fill child E/B guard cells outside its domain at parent-step fraction ``frac``."""
        old = self._old[parent.lev]
        new = self._new[parent.lev]
        for i, comp in enumerate((*child.E, *child.B)):
            values = (1.0 - frac) * old[i] + frac * new[i]
            fill_from_coarse(values, parent.geometry, comp, child.refine_ratio)

    def prolong_current(self, parent: Level, child: Level) -> None:
        """Give a particle-free child the parent's current density everywhere."""
        for c_comp, f_comp in zip(parent.J, child.J):
            fill_from_coarse(
                c_comp.gather(), parent.geometry, f_comp, child.refine_ratio, outside_only=False,
            )

    def initialize(self, parent: Level, child: Level) -> None:
        """Fill every point of a child's E and B from its parent."""
        for c_vec, f_vec in ((parent.E, child.E), (parent.B, child.B)):
            for c_comp, f_comp in zip(c_vec, f_vec):
                fill_from_coarse(
                    c_comp.gather(), parent.geometry, f_comp, child.refine_ratio, outside_only=False,
                )
