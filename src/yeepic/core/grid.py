"""Grid data model: boxes, geometry, staggered fields and AMR levels.

Every field component is stored as one numpy array per patch. Arrays are
always three-dimensional; on a 2D (x, z) grid the y axis is collapsed to a
single point with no guard cells and an infinite cell size, so the stencil
and loop-bound logic is written once for both dimensionalities.

Index conventions along an active axis, for a patch covering cells
``lo..hi`` (``n = hi - lo + 1``) with ``ng`` guard cells:

    array extent        n + 1 + 2*ng
    array index i  <->  global index lo - ng + i
    valid points        n + 1 (nodal) or n (cell-centred), starting at i = ng

Yee staggering (True = nodal along that axis):

    Ex (c, n, n)   Ey (n, c, n)   Ez (n, n, c)
    Bx (n, c, c)   By (c, n, c)   Bz (c, c, n)

The current density J is staggered like E.
"""

from __future__ import annotations

import math
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

import numpy as np

IndexType = tuple[bool, bool, bool]

YEE_E: tuple[IndexType, IndexType, IndexType] = (
    (False, True, True),
    (True, False, True),
    (True, True, False),
)
YEE_B: tuple[IndexType, IndexType, IndexType] = (
    (True, False, False),
    (False, True, False),
    (False, False, True),
)


def expand_axes(values: Sequence, dim: int, fill) -> tuple:
    """Map per-axis config values onto the (x, y, z) array axes.

    Two values on a 2D grid are (x, z); the collapsed y axis gets ``fill``.
    Three values are returned unchanged.
    """
    values = tuple(values)
    if len(values) == 3:
        return values
    if dim == 2 and len(values) == 2:
        return (values[0], fill, values[1])
    raise ValueError(f"expected {dim} or 3 per-axis values, got {len(values)}")


@dataclass(frozen=True)
class Box:
    """Inclusive cell-index box."""

    lo: tuple[int, int, int]
    hi: tuple[int, int, int]

    def size(self) -> tuple[int, int, int]:
        return tuple(h - lo + 1 for lo, h in zip(self.lo, self.hi))

    def num_cells(self) -> int:
        return int(np.prod(self.size()))

    def refine(self, ratio: int, active: Sequence[bool]) -> Box:
        """Return this box in the index space ``ratio`` times finer."""
        lo = tuple(lo * ratio if act else lo for lo, act in zip(self.lo, active))
        hi = tuple((h + 1) * ratio - 1 if act else h for h, act in zip(self.hi, active))
        return Box(lo, hi)


def chop_domain(domain: Box, max_grid_size: int, active: Sequence[bool]) -> list[Box]:
    """Split ``domain`` into patches no larger than ``max_grid_size`` per axis."""
    ranges = []
    for ax in range(3):
        lo, hi = domain.lo[ax], domain.hi[ax]
        if not active[ax]:
            ranges.append([(lo, hi)])
            continue
        chunks = []
        start = lo
        while start <= hi:
            stop = min(start + max_grid_size - 1, hi)
            chunks.append((start, stop))
            start = stop + 1
        ranges.append(chunks)

    boxes = []
    for x0, x1 in ranges[0]:
        for y0, y1 in ranges[1]:
            for z0, z1 in ranges[2]:
                boxes.append(Box((x0, y0, z0), (x1, y1, z1)))
    return boxes


@dataclass(frozen=True)
class Geometry:
    """Physical layout of one AMR level.

    Attributes:
        domain: Cell box covered by the level, in its own index space.
        cell_size: Cell size per axis [m]; ``inf`` on a collapsed axis.
        periodic: Periodicity per axis (only meaningful on level 0).
        dim: Spatial dimensionality, 2 (x, z) or 3.
        boundary: Fill policy for guard cells outside ``domain``:
            ``"conductor"`` zeroes them, ``"coarse_fine"`` leaves them to be
            filled from the parent level.
    """

    domain: Box
    cell_size: tuple[float, float, float]
    periodic: tuple[bool, bool, bool]
    dim: int = 3
    boundary: str = "conductor"

    @property
    def active(self) -> tuple[bool, bool, bool]:
        return (True, self.dim == 3, True)

    def n_cells(self) -> tuple[int, int, int]:
        return self.domain.size()

    def dt_over_dx(self, dt: float, scale: float = 1.0) -> tuple[float, float, float]:
        """Return ``scale * dt / dx`` per axis (0 on a collapsed axis)."""
        return tuple(scale * dt / d if math.isfinite(d) else 0.0 for d in self.cell_size)

    def cell_volume(self) -> float:
        return float(np.prod([d for d in self.cell_size if math.isfinite(d)]))

    def refine(self, box: Box, ratio: int) -> Geometry:
        """Geometry of a child level covering ``box`` (parent index space)."""
        return Geometry(
            domain=box.refine(ratio, self.active),
            cell_size=tuple(d / ratio for d in self.cell_size),
            periodic=(False, False, False),
            dim=self.dim,
            boundary="coarse_fine",
        )


class ScalarField:
    """One staggered field component distributed over patches.

    Args:
        name: Component name, e.g. ``"Ex"``.
        geometry: Geometry of the owning level.
        boxes: Patch boxes of the owning level.
        index_type: Nodal flag per axis.
        n_ghost: Guard width on every active axis.
    """

    def __init__(
        self,
        name: str,
        geometry: Geometry,
        boxes: Sequence[Box],
        index_type: IndexType,
        n_ghost: int,
    ) -> None:
        self.name = name
        self.geometry = geometry
        self.boxes = list(boxes)
        self.index_type = tuple(index_type)
        self.n_ghost = n_ghost
        self.arrays = [np.zeros(self._array_shape(b)) for b in self.boxes]

    def __repr__(self) -> str:
        return (
            f"ScalarField({self.name!r}, patches={len(self.arrays)}, "
            f"index_type={self.index_type}, n_ghost={self.n_ghost})"
        )

    @property
    def guard_width(self) -> tuple[int, int, int]:
        return tuple(self.n_ghost if act else 0 for act in self.geometry.active)

    def _array_shape(self, box: Box) -> tuple[int, int, int]:
        return tuple(
            n + 1 + 2 * self.n_ghost if act else 1
            for n, act in zip(box.size(), self.geometry.active)
        )

    def valid_slices(self, p: int) -> tuple[slice, slice, slice]:
        """Slices selecting the points of patch ``p`` that it owns."""
        box = self.boxes[p]
        out = []
        for ax, n in enumerate(box.size()):
            if not self.geometry.active[ax]:
                out.append(slice(0, 1))
                continue
            n_valid = n + 1 if self.index_type[ax] else n
            out.append(slice(self.n_ghost, self.n_ghost + n_valid))
        return tuple(out)

    def global_shape(self) -> tuple[int, int, int]:
        return tuple(
            n + 1 if act else 1
            for n, act in zip(self.geometry.n_cells(), self.geometry.active)
        )

    def gather(self) -> np.ndarray:
        """Assemble the valid points of every patch into one level-wide array."""
        out = np.zeros(self.global_shape())
        dom_lo = self.geometry.domain.lo
        for p, box in enumerate(self.boxes):
            vs = self.valid_slices(p)
            gs = tuple(
                slice(box.lo[ax] - dom_lo[ax], box.lo[ax] - dom_lo[ax] + (vs[ax].stop - vs[ax].start))
                if self.geometry.active[ax] else slice(0, 1)
                for ax in range(3)
            )
            out[gs] = self.arrays[p][vs]
        return out

    def _source_index(self, p: int, ax: int) -> tuple[np.ndarray, np.ndarray]:
        """Level-array index and in-domain mask for every array point of patch ``p``."""
        if not self.geometry.active[ax]:
            return np.zeros(1, dtype=np.int64), np.ones(1, dtype=bool)
        box = self.boxes[p]
        n_dom = self.geometry.n_cells()[ax]
        length = self.arrays[p].shape[ax]
        g = box.lo[ax] - self.geometry.domain.lo[ax] - self.n_ghost + np.arange(length)
        if self.geometry.periodic[ax]:
            return np.mod(g, n_dom), np.ones(length, dtype=bool)
        upper = n_dom if self.index_type[ax] else n_dom - 1
        inside = (g >= 0) & (g <= upper)
        return np.clip(g, 0, n_dom), inside

    def scatter(
        self,
        values: np.ndarray,
        *,
        ghost_only: bool = True,
        outside: str = "zero",
    ) -> None:
        """Copy a level-wide array back onto the patches.

        Args:
            values: Array of shape ``global_shape()``.
            ghost_only: Leave the valid points of each patch untouched.
            outside: ``"zero"`` clears points outside the domain, ``"keep"``
                leaves them as they are.
        """
        for p, arr in enumerate(self.arrays):
            (i0, m0), (i1, m1), (i2, m2) = (self._source_index(p, ax) for ax in range(3))
            src = values[np.ix_(i0, i1, i2)]
            inside = m0[:, None, None] & m1[None, :, None] & m2[None, None, :]
            if outside == "zero":
                new = np.where(inside, src, 0.0)
            else:
                new = np.where(inside, src, arr)
            if ghost_only:
                valid = np.zeros(arr.shape, dtype=bool)
                valid[self.valid_slices(p)] = True
                new = np.where(valid, arr, new)
            arr[...] = new

    def fill(self, value: float) -> None:
        for arr in self.arrays:
            arr.fill(value)

    def max_abs(self) -> float:
        return max((float(np.max(np.abs(arr[self.valid_slices(p)])))
                    for p, arr in enumerate(self.arrays)), default=0.0)

    def set_arrays(self, data: Sequence[np.ndarray]) -> None:
        """Overwrite every patch array in place (shapes must match)."""
        for arr, new in zip(self.arrays, data):
            np.copyto(arr, new)


class VectorField:
    """Three staggered components of E, B or J."""

    def __init__(self, name: str, components: Sequence[ScalarField]) -> None:
        if len(components) != 3:
            raise ValueError(f"{name} needs 3 components, got {len(components)}")
        self.name = name
        self.components = tuple(components)

    @classmethod
    def allocate(
        cls,
        name: str,
        geometry: Geometry,
        boxes: Sequence[Box],
        staggering: Sequence[IndexType],
        n_ghost: int,
    ) -> VectorField:
        return cls(name, [
            ScalarField(f"{name}{axis}", geometry, boxes, staggering[i], n_ghost)
            for i, axis in enumerate("xyz")
        ])

    def __getitem__(self, i: int) -> ScalarField:
        return self.components[i]

    def __iter__(self) -> Iterator[ScalarField]:
        return iter(self.components)

    def __len__(self) -> int:
        return 3

    def patch(self, p: int) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Component arrays of patch ``p``."""
        return tuple(comp.arrays[p] for comp in self.components)

    def gather(self) -> list[np.ndarray]:
        return [comp.gather() for comp in self.components]

    def fill(self, value: float) -> None:
        for comp in self.components:
            comp.fill(value)

    def max_abs(self) -> float:
        return max(comp.max_abs() for comp in self.components)


@dataclass
class Level:
    """One level of the AMR hierarchy.

    Field arrays are allocated once by the grid builder; their contents are
    evolved in place. ``time``, ``step`` and ``dt`` are owned by the
    simulation loop.

    Attributes:
        lev: Level index (0 = coarsest).
        geometry: Geometry of this level.
        boxes: Patch boxes.
        E, B, J: Staggered electric, magnetic and current-density fields.
        subcycle_ratio: Time steps per parent step (1 for level 0).
        refine_ratio: Spatial refinement relative to the parent (1 for level 0).
        parent_box: Region covered by this level, in the parent index space.
    """

    lev: int
    geometry: Geometry
    boxes: list[Box]
    E: VectorField
    B: VectorField
    J: VectorField
    subcycle_ratio: int = 1
    refine_ratio: int = 1
    parent_box: Box | None = None
    time: float = 0.0
    step: int = 0
    dt: float = 0.0

    @classmethod
    def allocate(
        cls,
        lev: int,
        geometry: Geometry,
        boxes: Sequence[Box],
        n_ghost: int,
        **kwargs,
    ) -> Level:
        boxes = list(boxes)
        return cls(
            lev=lev,
            geometry=geometry,
            boxes=boxes,
            E=VectorField.allocate("E", geometry, boxes, YEE_E, n_ghost),
            B=VectorField.allocate("B", geometry, boxes, YEE_B, n_ghost),
            J=VectorField.allocate("J", geometry, boxes, YEE_E, n_ghost),
            **kwargs,
        )

    @property
    def cell_size(self) -> tuple[float, float, float]:
        return self.geometry.cell_size

    @property
    def n_patches(self) -> int:
        return len(self.boxes)

    def field_components(self) -> list[ScalarField]:
        """All nine components, E then B then J."""
        return [*self.E, *self.B, *self.J]
