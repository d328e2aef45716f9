"""Yee finite-difference curl stencil.

Implements the staggered centred-difference curl used by the explicit
FDTD update on a Yee grid:

    B  <-  B - dt * curl(E)
    E  <-  E + c^2 dt * curl(B) - mu_0 c^2 dt * J

A derivative taken into a cell-centred destination is a forward difference
of the nodal source; into a nodal destination it is a backward difference
of the cell-centred source. Fourth order uses the staggered coefficients
(9/8, -1/24) on a two-point-wide stencil.

The numba kernel sweeps the valid points of a single patch and reads its
guard cells for neighbour data; it never touches other patches.

References:
    Yee K.S., IEEE Trans. Antennas Propag. 14, 302 (1966).
    Taflove A. & Hagness S.C., Computational Electrodynamics, 3rd ed. (2005).
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
from numba import njit

from yeepic.core.bases import PreconditionError, StencilOperator
from yeepic.core.grid import IndexType


# (c1, c2) for  c1*(f[i+1]-f[i]) + c2*(f[i+2]-f[i-1])
STENCIL_COEFFICIENTS: dict[int, tuple[float, float]] = {
    2: (1.0, 0.0),
    4: (9.0 / 8.0, -1.0 / 24.0),
}


# ============================================================
# Numba kernels
# ============================================================

@njit(cache=True)
def _staggered_diff(
    f: np.ndarray,
    i: int,
    j: int,
    k: int,
    axis: int,
    forward: bool,
    c1: float,
    c2: float,
) -> float:
    """Staggered difference of ``f`` along ``axis`` (not divided by dx)."""
    di = 1 if axis == 0 else 0
    dj = 1 if axis == 1 else 0
    dk = 1 if axis == 2 else 0
    if forward:
        d = c1 * (f[i + di, j + dj, k + dk] - f[i, j, k])
        if c2 != 0.0:
            d += c2 * (f[i + 2 * di, j + 2 * dj, k + 2 * dk] - f[i - di, j - dj, k - dk])
    else:
        d = c1 * (f[i, j, k] - f[i - di, j - dj, k - dk])
        if c2 != 0.0:
            d += c2 * (f[i + di, j + dj, k + dk] - f[i - 2 * di, j - 2 * dj, k - 2 * dk])
    return d


@njit(cache=True)
def _curl_component_kernel(
    dst: np.ndarray,
    src_b: np.ndarray,
    src_c: np.ndarray,
    axis_b: int,
    axis_c: int,
    coef_b: float,
    coef_c: float,
    forward_b: bool,
    forward_c: bool,
    sign: float,
    current: np.ndarray,
    current_coef: float,
    has_current: bool,
    lo0: int,
    hi0: int,
    lo1: int,
    hi1: int,
    lo2: int,
    hi2: int,
    c1: float,
    c2: float,
) -> None:
    """Update one destination component over its valid region.

    ``dst_a += sign * (coef_b * D_b src_c - coef_c * D_c src_b) - current_coef * J_a``
    with (a, b, c) a cyclic permutation of the axes.
    """
    for i in range(lo0, hi0):
        for j in range(lo1, hi1):
            for k in range(lo2, hi2):
                acc = 0.0
                if coef_b != 0.0:
                    acc += coef_b * _staggered_diff(src_c, i, j, k, axis_b, forward_b, c1, c2)
                if coef_c != 0.0:
                    acc -= coef_c * _staggered_diff(src_b, i, j, k, axis_c, forward_c, c1, c2)
                upd = sign * acc
                if has_current:
                    upd -= current_coef * current[i, j, k]
                dst[i, j, k] += upd


# ============================================================
# Stencil operator
# ============================================================

def _valid_bounds(
    shape: Sequence[int],
    guard_width: Sequence[int],
    index_type: IndexType,
) -> list[tuple[int, int]]:
    bounds = []
    for ax in range(3):
        if shape[ax] == 1:
            bounds.append((0, 1))
            continue
        g = guard_width[ax]
        n_valid = shape[ax] - 2 * g - (0 if index_type[ax] else 1)
        bounds.append((g, g + n_valid))
    return bounds


class YeeStencil(StencilOperator):
    """Numba implementation of the staggered curl update (order 2 or 4)."""

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
        if order not in STENCIL_COEFFICIENTS:
            raise ValueError(f"unsupported stencil order {order}; expected 2 or 4")
        c1, c2 = STENCIL_COEFFICIENTS[order]
        reach = order // 2
        for ax in range(3):
            if dt_over_dx[ax] != 0.0 and guard_width[ax] < reach:
                raise PreconditionError(
                    f"guard width {guard_width[ax]} on axis {ax} is too narrow "
                    f"for a stencil of order {order}"
                )

        for a in range(3):
            b = (a + 1) % 3
            c = (a + 2) % 3
            out = dst[a]
            (lo0, hi0), (lo1, hi1), (lo2, hi2) = _valid_bounds(
                out.shape, guard_width, centering[a],
            )
            has_current = current is not None
            cur = current[a] if has_current else out
            _curl_component_kernel(
                out,
                src[b],
                src[c],
                b,
                c,
                float(dt_over_dx[b]),
                float(dt_over_dx[c]),
                not centering[a][b],
                not centering[a][c],
                float(sign),
                cur,
                float(current_coef),
                has_current,
                lo0, hi0, lo1, hi1, lo2, hi2,
                c1,
                c2,
            )
