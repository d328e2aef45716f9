"""Particle-in-cell package: macro-particle push and current deposition.

Exports all public symbols from :mod:`yeepic.pic.particles`.
"""

from yeepic.pic.particles import (
    ParticleContainer,
    ParticleSpecies,
    boris_push,
    deposit_component,
    gather_component,
    load_uniform,
    shape_weights,
)

__all__ = [
    "ParticleContainer",
    "ParticleSpecies",
    "boris_push",
    "deposit_component",
    "gather_component",
    "load_uniform",
    "shape_weights",
]
