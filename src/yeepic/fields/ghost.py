"""Guard-cell synchronization between patches of one level.

Reference implementation of the ghost-exchange collaborator. The valid
points of all patches are assembled into a level-wide array and each
patch's guard region is refilled from it, wrapping periodic axes. Guard
cells outside the level's domain are zeroed on a conducting boundary and
left untouched on a coarse-fine boundary (the parent fills those).
"""

from __future__ import annotations

import logging

from yeepic.core.bases import GhostExchangeBase
from yeepic.core.grid import Geometry, IndexType, ScalarField, VectorField

logger = logging.getLogger(__name__)


class GhostExchange(GhostExchangeBase):
    """Single-process guard-cell fill (periodic / conductor / coarse-fine)."""

    def __init__(self) -> None:
        self.n_calls = 0

    def sync(self, field: ScalarField, geometry: Geometry, centering: IndexType) -> None:
        if tuple(centering) != field.index_type:
            raise ValueError(
                f"centering {centering} does not match {field.name} index type {field.index_type}"
            )
        outside = "keep" if geometry.boundary == "coarse_fine" else "zero"
        field.scatter(field.gather(), ghost_only=True, outside=outside)
        self.n_calls += 1
        logger.debug("Filled guard cells of %s (%d patches)", field.name, len(field.arrays))

    def sync_vector(self, vec: VectorField, geometry: Geometry) -> None:
        """Synchronize all three components of ``vec``."""
        for comp in vec:
            self.sync(comp, geometry, comp.index_type)
