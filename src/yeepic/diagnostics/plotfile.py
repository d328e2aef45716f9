"""HDF5 plot-file writer.

Each snapshot is one file ``<prefix><step:05d>.h5`` holding, per level, the
level-wide valid data of all nine field components plus the level's clock,
and the macro-particles of every species.

Layout::

    /                   attrs: time, step, n_levels, dim
    /level_<L>          attrs: time, step, dt, cell_size, domain_lo, domain_hi,
                               refine_ratio, subcycle_ratio
    /level_<L>/Ex ... Jz
    /particles/<name>   positions, velocities, weights (attrs: charge, mass)
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import h5py
import numpy as np

from yeepic.core.bases import ParticleContainerBase, SnapshotWriterBase
from yeepic.core.grid import Level

logger = logging.getLogger(__name__)


def plotfile_name(prefix: str, step: int) -> str:
    return f"{prefix}{step:05d}.h5"


class PlotFileWriter(SnapshotWriterBase):
    """Write plot files into ``output_dir``.

    Args:
        output_dir: Destination directory (created on first write).
        prefix: File-name prefix.
    """

    def __init__(self, output_dir: str | Path = ".", prefix: str = "plt") -> None:
        self.output_dir = Path(output_dir)
        self.prefix = prefix
        self.written: list[Path] = []

    def write_snapshot(
        self,
        levels: Sequence[Level],
        particles: ParticleContainerBase | None,
    ) -> None:
        step = levels[0].step
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / plotfile_name(self.prefix, step)

        with h5py.File(path, "w") as f:
            f.attrs["time"] = levels[0].time
            f.attrs["step"] = step
            f.attrs["n_levels"] = len(levels)
            f.attrs["dim"] = levels[0].geometry.dim

            for level in levels:
                grp = f.create_group(f"level_{level.lev}")
                grp.attrs["time"] = level.time
                grp.attrs["step"] = level.step
                grp.attrs["dt"] = level.dt
                grp.attrs["cell_size"] = [d if math.isfinite(d) else 0.0 for d in level.cell_size]
                grp.attrs["domain_lo"] = level.geometry.domain.lo
                grp.attrs["domain_hi"] = level.geometry.domain.hi
                grp.attrs["refine_ratio"] = level.refine_ratio
                grp.attrs["subcycle_ratio"] = level.subcycle_ratio
                for comp in level.field_components():
                    grp.create_dataset(comp.name, data=comp.gather())

            grp_p = f.create_group("particles")
            for sp in getattr(particles, "species", []):
                g = grp_p.create_group(sp.name)
                g.attrs["charge"] = sp.charge
                g.attrs["mass"] = sp.mass
                g.create_dataset("positions", data=sp.positions)
                g.create_dataset("velocities", data=sp.velocities)
                g.create_dataset("weights", data=sp.weights)

        self.written.append(path)
        logger.info("Wrote plot file %s (t=%.4e, step=%d)", path, levels[0].time, step)


def load_plotfile(path: str | Path) -> dict[str, Any]:
    """Read a plot file back into nested dictionaries.

    Returns:
        Dictionary with ``time``, ``step``, ``levels`` (list of dicts with
        the level attributes and a ``fields`` dict) and ``particles``.
    """
    with h5py.File(path, "r") as f:
        n_levels = int(f.attrs["n_levels"])
        levels = []
        for lev in range(n_levels):
            grp = f[f"level_{lev}"]
            levels.append({
                "time": float(grp.attrs["time"]),
                "step": int(grp.attrs["step"]),
                "dt": float(grp.attrs["dt"]),
                "fields": {name: np.array(grp[name]) for name in grp},
            })
        particles = {
            name: {key: np.array(ds) for key, ds in grp.items()}
            for name, grp in f["particles"].items()
        }
        return {
            "time": float(f.attrs["time"]),
            "step": int(f.attrs["step"]),
            "levels": levels,
            "particles": particles,
        }
