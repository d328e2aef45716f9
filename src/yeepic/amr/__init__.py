"""Static mesh refinement: hierarchy construction and coarse-fine transfer."""

from yeepic.amr.hierarchy import (
    CoarseFineInterpolator,
    average_down,
    build_hierarchy,
    prolong_component,
    restrict_component,
)

__all__ = [
    "CoarseFineInterpolator",
    "average_down",
    "build_hierarchy",
    "prolong_component",
    "restrict_component",
]
