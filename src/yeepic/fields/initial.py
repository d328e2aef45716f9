"""Analytic initial conditions for the electromagnetic fields."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

import numpy as np

from yeepic.config import InitialFieldConfig
from yeepic.core.grid import Level, ScalarField

logger = logging.getLogger(__name__)


def component_x(comp: ScalarField, p: int) -> np.ndarray:
    """Physical x coordinate of every array point of patch ``p`` [m]."""
    dx = comp.geometry.cell_size[0]
    n = comp.arrays[p].shape[0]
    i = comp.boxes[p].lo[0] - comp.n_ghost + np.arange(n)
    offset = 0.0 if comp.index_type[0] else 0.5
    return (i + offset) * dx


def set_standing_wave(comp: ScalarField, amplitude: float, wavelength: float) -> None:
    """Set ``comp = amplitude * sin(2 pi x / wavelength)`` on every point of every patch."""
    k = 2.0 * math.pi / wavelength
    for p, arr in enumerate(comp.arrays):
        values = amplitude * np.sin(k * component_x(comp, p))
        arr[...] = values[:, None, None]


def apply_initial_fields(levels: Sequence[Level], init: InitialFieldConfig) -> None:
    """Apply the configured initial field to every level."""
    if init.kind == "zero":
        return
    base = levels[0]
    length_x = base.geometry.n_cells()[0] * base.cell_size[0]
    wavelength = length_x / init.mode
    for level in levels:
        vec = level.E if init.component.startswith("E") else level.B
        comp = vec["xyz".index(init.component[1])]
        set_standing_wave(comp, init.amplitude, wavelength)
    logger.info(
        "Initial %s standing wave: amplitude=%g, wavelength=%g",
        init.component, init.amplitude, wavelength,
    )
