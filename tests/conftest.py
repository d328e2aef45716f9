"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import copy

import pytest

from yeepic.amr.hierarchy import build_hierarchy
from yeepic.config import SimulationConfig
from yeepic.core.bases import SnapshotWriterBase


class RecordingWriter(SnapshotWriterBase):
    """Snapshot writer that only records the level-0 step of every call."""

    def __init__(self) -> None:
        self.steps: list[int] = []
        self.times: list[float] = []

    def write_snapshot(self, levels, particles) -> None:
        self.steps.append(levels[0].step)
        self.times.append(levels[0].time)


@pytest.fixture
def base_config_dict():
    """Small periodic 2D grid in normalized units (c = mu_0 = 1)."""
    return {
        "max_step": 10,
        "stop_time": 1.0e6,
        "grid": {"n_cell": [16, 8], "cell_size": [1.0, 1.0], "max_grid_size": 8},
        "solver": {"cfl": 0.5, "shape_order": [1, 1]},
        "physics": {"c": 1.0, "mu_0": 1.0},
    }


@pytest.fixture
def config_factory(base_config_dict):
    """Build a SimulationConfig from the base dict with per-section overrides."""

    def _make(**overrides) -> SimulationConfig:
        data = copy.deepcopy(base_config_dict)
        for key, val in overrides.items():
            if isinstance(val, dict) and isinstance(data.get(key), dict):
                data[key] = {**data[key], **val}
            else:
                data[key] = val
        return SimulationConfig(**data)

    return _make


@pytest.fixture
def small_config(config_factory):
    return config_factory()


@pytest.fixture
def small_levels(small_config):
    """Single-level hierarchy of ``small_config`` (4 patches)."""
    return build_hierarchy(small_config)


@pytest.fixture
def two_level_config(config_factory):
    return config_factory(
        grid={"n_cell": [32, 8], "max_grid_size": 16},
        amr={"refine_ratio": 2, "refined_boxes": [{"lo": [8, 2], "hi": [23, 5]}]},
    )


@pytest.fixture
def recording_writer():
    return RecordingWriter()
