"""Checkpoint/restart support.

Saves and loads the full hierarchy state (every patch array including its
guard cells, per-level clocks, particles and the last plot-file step) to
HDF5 files for restart capability.

Usage:
    # Save checkpoint
    save_checkpoint("chk00010.h5", levels, particles, last_snapshot_step, config_json)

    # Load checkpoint into a freshly built hierarchy
    data = load_checkpoint("chk00010.h5")
    restore_levels(levels, data)
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import h5py
import numpy as np

from yeepic.core.bases import PreconditionError
from yeepic.core.grid import Level
from yeepic.pic.particles import ParticleContainer, ParticleSpecies

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = 1


def save_checkpoint(
    filename: str,
    levels: Sequence[Level],
    particles: ParticleContainer | None,
    last_snapshot_step: int,
    config_json: str | None = None,
) -> None:
    """Save the hierarchy and particles to an HDF5 checkpoint file.

    Args:
        filename: Output HDF5 file path.
        levels: AMR hierarchy, level 0 first.
        particles: Particle container (None when the run has no particles).
        last_snapshot_step: Level-0 step of the most recent plot file.
        config_json: JSON string of the simulation config.
    """
    logger.info(
        "Saving checkpoint to %s at t=%.4e, step=%d", filename, levels[0].time, levels[0].step,
    )

    with h5py.File(filename, "w") as f:
        f.attrs["checkpoint_version"] = CHECKPOINT_VERSION
        f.attrs["time"] = levels[0].time
        f.attrs["step_count"] = levels[0].step
        f.attrs["n_levels"] = len(levels)
        f.attrs["last_snapshot_step"] = last_snapshot_step
        if config_json is not None:
            f.attrs["config_json"] = config_json

        for level in levels:
            grp = f.create_group(f"level_{level.lev}")
            grp.attrs["time"] = level.time
            grp.attrs["step"] = level.step
            grp.attrs["dt"] = level.dt
            for comp in level.field_components():
                g = grp.create_group(comp.name)
                for p, arr in enumerate(comp.arrays):
                    g.create_dataset(f"patch_{p}", data=arr)

        grp_p = f.create_group("particles")
        for sp in (particles.species if particles is not None else []):
            g = grp_p.create_group(sp.name)
            g.attrs["charge"] = sp.charge
            g.attrs["mass"] = sp.mass
            g.create_dataset("positions", data=sp.positions)
            g.create_dataset("velocities", data=sp.velocities)
            g.create_dataset("weights", data=sp.weights)

    logger.info("Checkpoint saved: %s", filename)


def load_checkpoint(filename: str) -> dict[str, Any]:
    """Load a checkpoint file.

    Returns:
        Dictionary with keys:
            - "time", "step_count", "last_snapshot_step"
            - "config_json": str or None
            - "levels": list of dicts with "time", "step", "dt" and
              "fields" (component name -> list of patch arrays)
            - "species": list of ``ParticleSpecies``
    """
    logger.info("Loading checkpoint from %s", filename)

    with h5py.File(filename, "r") as f:
        config_json = str(f.attrs["config_json"]) if "config_json" in f.attrs else None
        levels = []
        for lev in range(int(f.attrs["n_levels"])):
            grp = f[f"level_{lev}"]
            fields = {}
            for name, g in grp.items():
                n_patch = len(g)
                fields[name] = [np.array(g[f"patch_{p}"]) for p in range(n_patch)]
            levels.append({
                "time": float(grp.attrs["time"]),
                "step": int(grp.attrs["step"]),
                "dt": float(grp.attrs["dt"]),
                "fields": fields,
            })

        species = [
            ParticleSpecies(
                name=name,
                charge=float(g.attrs["charge"]),
                mass=float(g.attrs["mass"]),
                positions=np.array(g["positions"]),
                velocities=np.array(g["velocities"]),
                weights=np.array(g["weights"]),
                patch=np.zeros(len(g["weights"]), dtype=np.int64),
            )
            for name, g in f["particles"].items()
        ]
        data = {
            "time": float(f.attrs["time"]),
            "step_count": int(f.attrs["step_count"]),
            "last_snapshot_step": int(f.attrs["last_snapshot_step"]),
            "config_json": config_json,
            "levels": levels,
            "species": species,
        }

    logger.info(
        "Checkpoint loaded: t=%.4e, step=%d, %d levels",
        data["time"], data["step_count"], len(levels),
    )
    return data


def restore_levels(levels: Sequence[Level], data: dict[str, Any]) -> None:
    """Copy checkpointed arrays and clocks into an allocated hierarchy.

    Every level is checked before any array or clock is overwritten.

    Raises:
        PreconditionError: If the hierarchy layout differs from the checkpoint.
    """
    if len(levels) != len(data["levels"]):
        raise PreconditionError(
            f"checkpoint has {len(data['levels'])} levels, hierarchy has {len(levels)}"
        )
    for level, saved in zip(levels, data["levels"]):
        for comp in level.field_components():
            arrays = saved["fields"].get(comp.name)
            if arrays is None or len(arrays) != len(comp.arrays) or any(
                a.shape != b.shape for a, b in zip(arrays, comp.arrays)
            ):
                raise PreconditionError(
                    f"checkpoint layout of {comp.name} on level {level.lev} does not match"
                )

    for level, saved in zip(levels, data["levels"]):
        for comp in level.field_components():
            comp.set_arrays(saved["fields"][comp.name])
        level.time = saved["time"]
        level.step = saved["step"]
        level.dt = saved["dt"]
