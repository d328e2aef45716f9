"""Pydantic v2 configuration system for yeepic simulations.

Provides validated, typed configuration with submodels for the grid, the
field solver, the AMR hierarchy, particle species and diagnostics. Supports
JSON I/O and cross-field validation.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from yeepic import constants


class GridConfig(BaseModel):
    """Level-0 grid: cell counts, spacing, guard cells and patch size.

    Two entries describe an (x, z) grid; three describe (x, y, z).
    """

    n_cell: list[int] = Field(..., min_length=2, max_length=3, description="Cells per axis")
    cell_size: list[float] = Field(
        ..., min_length=2, max_length=3, description="Cell size per axis [m]",
    )
    n_ghost: int = Field(2, ge=1, le=8, description="Guard cells on every active axis")
    max_grid_size: int = Field(32, ge=1, description="Maximum patch size in cells")
    periodic: list[bool] | None = Field(
        None, description="Periodicity per axis (default: periodic everywhere)",
    )

    @model_validator(mode="after")
    def check_axes(self) -> GridConfig:
        if len(self.cell_size) != len(self.n_cell):
            raise ValueError(
                f"cell_size has {len(self.cell_size)} entries but n_cell has {len(self.n_cell)}"
            )
        if any(n <= 0 for n in self.n_cell):
            raise ValueError("n_cell values must be positive integers")
        if any(d <= 0 for d in self.cell_size):
            raise ValueError("cell_size values must be positive")
        if self.periodic is not None and len(self.periodic) != len(self.n_cell):
            raise ValueError("periodic must have one entry per axis")
        return self

    @property
    def dim(self) -> int:
        return len(self.n_cell)


class SolverConfig(BaseModel):
    """Explicit FDTD solver parameters."""

    cfl: float = Field(0.7, gt=0, le=1.0, description="Courant number")
    stencil_order: int = Field(2, description="Curl stencil order: 2 (Yee) or 4")
    shape_order: list[int] = Field(
        default_factory=lambda: [1, 1, 1],
        min_length=2,
        max_length=3,
        description="Particle shape-factor order per axis (0=NGP, 1=CIC, 2=TSC, 3=cubic)",
    )

    @model_validator(mode="after")
    def check_orders(self) -> SolverConfig:
        if self.stencil_order not in (2, 4):
            raise ValueError(f"stencil_order must be 2 or 4, got {self.stencil_order}")
        if any(o < 0 or o > 3 for o in self.shape_order):
            raise ValueError(f"shape_order entries must be in [0, 3], got {self.shape_order}")
        return self


class PhysicsConfig(BaseModel):
    """Physical constants used by the solver (SI by default).

    Overriding ``c`` and ``mu_0`` gives normalized units; the permittivity
    follows from ``epsilon_0 = 1 / (mu_0 c^2)``.
    """

    c: float = Field(constants.c, gt=0, description="Speed of light [m/s]")
    mu_0: float = Field(constants.mu_0, gt=0, description="Vacuum permeability [H/m]")

    @property
    def epsilon_0(self) -> float:
        return 1.0 / (self.mu_0 * self.c * self.c)


class BoxConfig(BaseModel):
    """Refined region, inclusive cell indices in the parent level's index space."""

    lo: list[int] = Field(..., min_length=2, max_length=3)
    hi: list[int] = Field(..., min_length=2, max_length=3)

    @model_validator(mode="after")
    def check_bounds(self) -> BoxConfig:
        if len(self.lo) != len(self.hi):
            raise ValueError("lo and hi must have the same length")
        if any(h < lo for lo, h in zip(self.lo, self.hi)):
            raise ValueError(f"empty box: lo={self.lo}, hi={self.hi}")
        return self


class AMRConfig(BaseModel):
    """Static mesh refinement and time sub-cycling.

    Attributes:
        refine_ratio: Spatial refinement ratio between successive levels.
        subcycle_ratios: Time steps per parent step, one per refined level
            (None = equal to ``refine_ratio``).
        refined_boxes: One box per refined level, each given in the index
            space of its parent level.
    """

    refine_ratio: int = Field(2, ge=2, le=4)
    subcycle_ratios: list[int] | None = Field(None)
    refined_boxes: list[BoxConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_ratios(self) -> AMRConfig:
        if self.subcycle_ratios is not None:
            if len(self.subcycle_ratios) != len(self.refined_boxes):
                raise ValueError(
                    "subcycle_ratios must have one entry per refined level "
                    f"({len(self.refined_boxes)}), got {len(self.subcycle_ratios)}"
                )
            if any(r <= 0 for r in self.subcycle_ratios):
                raise ValueError("subcycle_ratios must be positive integers")
        return self

    @property
    def max_level(self) -> int:
        return len(self.refined_boxes)

    def subcycle_ratio(self, lev: int) -> int:
        """Sub-cycling ratio of level ``lev`` relative to its parent (1 for level 0)."""
        if lev == 0:
            return 1
        if self.subcycle_ratios is None:
            return self.refine_ratio
        return self.subcycle_ratios[lev - 1]


class SpeciesConfig(BaseModel):
    """Uniformly loaded macro-particle species on level 0."""

    name: str = Field("electrons")
    charge: float = Field(-constants.e, description="Particle charge [C]")
    mass: float = Field(constants.m_e, gt=0, description="Particle mass [kg]")
    n_macroparticles: int = Field(0, ge=0)
    density: float = Field(0.0, ge=0, description="Physical number density [m^-3]")
    thermal_velocity: float = Field(0.0, ge=0, description="1D thermal speed [m/s]")
    drift_velocity: list[float] = Field(
        default_factory=lambda: [0.0, 0.0, 0.0], min_length=3, max_length=3,
    )
    seed: int = Field(0, ge=0, description="RNG seed for loading")


class InitialFieldConfig(BaseModel):
    """Analytic initial field on every level (applied at step 0).

    ``standing_wave`` sets ``component = amplitude * sin(2 pi mode x / L_x)``
    evaluated at the component's staggered x position.
    """

    kind: Literal["zero", "standing_wave"] = Field("zero")
    component: Literal["Ex", "Ey", "Ez", "Bx", "By", "Bz"] = Field("Ey")
    amplitude: float = Field(1.0)
    mode: int = Field(1, ge=1, description="Wavelengths across the x extent")


class DiagnosticsConfig(BaseModel):
    """Plot-file and checkpoint output parameters."""

    plot_interval: int = Field(0, description="Steps between plot files (<= 0 disables)")
    plot_file: str = Field("plt", description="Plot-file name prefix")
    checkpoint_interval: int = Field(0, ge=0, description="Steps between checkpoints (0 = off)")
    checkpoint_file: str = Field("chk", description="Checkpoint name prefix")
    output_dir: str = Field(".", description="Directory for plot files and checkpoints")


class SimulationConfig(BaseModel):
    """Top-level simulation configuration."""

    max_step: int = Field(..., ge=0, description="Step budget")
    stop_time: float = Field(..., gt=0, description="Simulation time budget [s]")

    grid: GridConfig
    solver: SolverConfig = Field(default_factory=SolverConfig)
    physics: PhysicsConfig = Field(default_factory=PhysicsConfig)
    amr: AMRConfig = Field(default_factory=AMRConfig)
    species: list[SpeciesConfig] = Field(default_factory=list)
    initial_field: InitialFieldConfig = Field(default_factory=InitialFieldConfig)
    diagnostics: DiagnosticsConfig = Field(default_factory=DiagnosticsConfig)

    @model_validator(mode="after")
    def validate_layout(self) -> SimulationConfig:
        dim = self.grid.dim
        if len(self.solver.shape_order) not in (dim, 3):
            raise ValueError(
                f"shape_order needs {dim} entries for a {dim}D grid, "
                f"got {len(self.solver.shape_order)}"
            )
        if self.grid.n_ghost < self.solver.stencil_order // 2:
            raise ValueError(
                f"n_ghost={self.grid.n_ghost} is too small for stencil_order="
                f"{self.solver.stencil_order}"
            )

        # Refined boxes must nest inside their parent level.
        parent_lo = [0] * dim
        parent_hi = [n - 1 for n in self.grid.n_cell]
        ratio = self.amr.refine_ratio
        for lev, box in enumerate(self.amr.refined_boxes, start=1):
            if len(box.lo) != dim:
                raise ValueError(f"refined box for level {lev} must have {dim} entries")
            for ax in range(dim):
                if box.lo[ax] < parent_lo[ax] or box.hi[ax] > parent_hi[ax]:
                    raise ValueError(
                        f"refined box for level {lev} ({box.lo}..{box.hi}) lies outside "
                        f"level {lev - 1} ({parent_lo}..{parent_hi})"
                    )
            parent_lo = [lo * ratio for lo in box.lo]
            parent_hi = [(hi + 1) * ratio - 1 for hi in box.hi]
        return self

    # --- I/O helpers ---

    @classmethod
    def from_file(cls, path: str | Path) -> SimulationConfig:
        """Load configuration from a JSON file."""
        path = Path(path)
        with path.open() as f:
            data = json.load(f)
        return cls(**data)

    def to_json(self, path: str | Path | None = None) -> str:
        """Serialize to JSON string, optionally writing to file."""
        out = self.model_dump_json(indent=2)
        if path is not None:
            Path(path).write_text(out)
        return out
