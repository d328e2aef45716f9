"""Command-line interface for the yeepic simulator.

Usage:
    yeepic simulate config.json --steps=100
    yeepic verify config.json
    yeepic presets
"""

from __future__ import annotations

import logging
import sys

import click
from pydantic import ValidationError


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """yeepic: electromagnetic particle-in-cell simulator on Yee grids."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_config(config_file: str | None, preset: str | None):
    from yeepic.config import SimulationConfig
    from yeepic.presets import get_preset

    if preset:
        return SimulationConfig(**get_preset(preset))
    return SimulationConfig.from_file(config_file)


@cli.command()
@click.argument("config_file", type=click.Path(exists=True), required=False)
@click.option("--preset", type=str, default=None, help="Use a named preset instead of a file.")
@click.option("--steps", type=int, default=None, help="Stop at this coarse step index (default: run to the budget).")
@click.option("--restart", type=click.Path(exists=True), default=None, help="Restart from checkpoint.")
@click.option("--checkpoint-interval", type=int, default=None, help="Checkpoint every N steps (0=off).")
@click.option("--output-dir", "-o", type=str, default=None, help="Directory for plot files and checkpoints.")
def simulate(
    config_file: str | None,
    preset: str | None,
    steps: int | None,
    restart: str | None,
    checkpoint_interval: int | None,
    output_dir: str | None,
) -> None:
    """Run a simulation from a configuration file or preset."""
    from yeepic.engine import SimulationLoop

    if not config_file and not preset:
        click.echo("Provide CONFIG_FILE or --preset", err=True)
        sys.exit(1)

    try:
        config = _load_config(config_file, preset)
    except (ValidationError, KeyError, ValueError) as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Loaded config from {preset or config_file}")

    if checkpoint_interval is not None:
        config.diagnostics.checkpoint_interval = checkpoint_interval
    if output_dir:
        config.diagnostics.output_dir = output_dir

    loop = SimulationLoop(config)
    if restart:
        click.echo(f"Restarting from checkpoint: {restart}")
        loop.load_from_checkpoint(restart)

    summary = loop.run(max_steps=steps)

    click.echo("\n--- Simulation Summary ---")
    for key, val in summary.items():
        if isinstance(val, float):
            click.echo(f"  {key}: {val:.6e}")
        else:
            click.echo(f"  {key}: {val}")


@cli.command()
@click.argument("config_file", type=click.Path(exists=True), required=False)
@click.option("--preset", type=str, default=None, help="Verify a named preset.")
def verify(config_file: str | None, preset: str | None) -> None:
    """Verify a configuration and print the hierarchy and time steps."""
    from yeepic.amr.hierarchy import build_hierarchy
    from yeepic.timestep import TimeStepController

    if not config_file and not preset:
        click.echo("Provide CONFIG_FILE or --preset", err=True)
        sys.exit(1)
    try:
        config = _load_config(config_file, preset)
        levels = build_hierarchy(config)
        dts = TimeStepController(
            config.physics.c, config.solver.cfl, config.stop_time,
        ).compute_dt(levels)
    except (ValidationError, KeyError, ValueError) as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)

    click.echo("Configuration is valid:")
    click.echo(f"  Grid: {config.grid.n_cell} ({config.grid.dim}D), n_ghost={config.grid.n_ghost}")
    click.echo(f"  Solver: CFL={config.solver.cfl}, stencil order {config.solver.stencil_order}")
    click.echo(f"  stop_time: {config.stop_time:.4e}, max_step: {config.max_step}")
    for level, dt in zip(levels, dts):
        click.echo(
            f"  Level {level.lev}: domain {level.geometry.domain.lo}..{level.geometry.domain.hi}, "
            f"{level.n_patches} patches, dt={dt:.4e}"
        )


@cli.command()
def presets() -> None:
    """List the named configuration presets."""
    from yeepic.presets import list_presets

    for info in list_presets():
        click.echo(f"  {info['name']:<12} {info['description']}")


if __name__ == "__main__":
    cli()
