"""Named configuration presets.

Each preset is a dictionary that can be unpacked into SimulationConfig(**preset).
All presets use normalized units (``c = mu_0 = epsilon_0 = 1``):
- plane_wave: vacuum standing wave on a periodic 2D grid
- langmuir: drifting cold electron slab oscillating at the plasma frequency
- two_level: the plane wave with a statically refined, sub-cycled region

Usage:
    from yeepic.presets import get_preset, list_presets
    config = SimulationConfig(**get_preset("plane_wave"))
"""

from __future__ import annotations

import copy
from typing import Any

_NORMALIZED = {"c": 1.0, "mu_0": 1.0}

_PRESETS: dict[str, dict[str, Any]] = {
    "plane_wave": {
        "_meta": {
            "description": "Vacuum standing wave (Ey) on a periodic 32x4 grid, one period",
            "dim": 2,
        },
        "max_step": 1000,
        "stop_time": 32.0,
        "grid": {"n_cell": [32, 4], "cell_size": [1.0, 1.0], "max_grid_size": 16},
        "solver": {"cfl": 0.70710678, "shape_order": [1, 1]},
        "physics": _NORMALIZED,
        "initial_field": {"kind": "standing_wave", "component": "Ey", "amplitude": 1.0, "mode": 1},
        "diagnostics": {"plot_interval": 16},
    },
    "langmuir": {
        "_meta": {
            "description": "Uniformly drifting electrons driving a plasma oscillation (omega_p = 1)",
            "dim": 2,
        },
        "max_step": 200,
        "stop_time": 40.0,
        "grid": {"n_cell": [16, 16], "cell_size": [1.0, 1.0], "max_grid_size": 8},
        "solver": {"cfl": 0.5, "shape_order": [2, 2]},
        "physics": _NORMALIZED,
        "species": [{
            "name": "electrons",
            "charge": -1.0,
            "mass": 1.0,
            "n_macroparticles": 2048,
            "density": 1.0,
            "drift_velocity": [0.01, 0.0, 0.0],
            "seed": 1,
        }],
        "diagnostics": {"plot_interval": 50},
    },
    "two_level": {
        "_meta": {
            "description": "Standing wave with a refined centre region (ratio 2, sub-cycled)",
            "dim": 2,
        },
        "max_step": 1000,
        "stop_time": 8.0,
        "grid": {"n_cell": [32, 8], "cell_size": [1.0, 1.0], "max_grid_size": 16},
        "solver": {"cfl": 0.5, "shape_order": [1, 1]},
        "physics": _NORMALIZED,
        "amr": {"refine_ratio": 2, "refined_boxes": [{"lo": [8, 2], "hi": [23, 5]}]},
        "initial_field": {"kind": "standing_wave", "component": "Ey", "amplitude": 1.0, "mode": 1},
        "diagnostics": {"plot_interval": 8},
    },
}


def list_presets() -> list[dict[str, str]]:
    """Return summary info for all available presets.

    Returns:
        List of dicts with keys: name, description, dim, n_cell.
    """
    result = []
    for name, preset in _PRESETS.items():
        meta = preset.get("_meta", {})
        result.append({
            "name": name,
            "description": meta.get("description", ""),
            "dim": meta.get("dim", len(preset["grid"]["n_cell"])),
            "n_cell": preset["grid"]["n_cell"],
        })
    return result


def get_preset(name: str) -> dict[str, Any]:
    """Return a preset config dict (without _meta) suitable for SimulationConfig.

    Raises:
        KeyError: If the preset name is not found.
    """
    if name not in _PRESETS:
        available = ", ".join(_PRESETS.keys())
        raise KeyError(f"Unknown preset '{name}'. Available: {available}")
    preset = copy.deepcopy(_PRESETS[name])
    preset.pop("_meta", None)
    return preset


def get_preset_names() -> list[str]:
    """Return list of all preset names."""
    return list(_PRESETS.keys())
