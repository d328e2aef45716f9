"""Field solver: Yee curl stencil, guard-cell exchange and leapfrog updates.

Exports the public symbols of :mod:`yeepic.fields.evolver`,
:mod:`yeepic.fields.ghost` and :mod:`yeepic.fields.stencil`.
"""

from yeepic.fields.evolver import FieldEvolver, check_guard_widths
from yeepic.fields.ghost import GhostExchange
from yeepic.fields.stencil import STENCIL_COEFFICIENTS, YeeStencil

__all__ = [
    "FieldEvolver",
    "GhostExchange",
    "STENCIL_COEFFICIENTS",
    "YeeStencil",
    "check_guard_widths",
]
