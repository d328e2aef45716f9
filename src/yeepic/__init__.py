"""yeepic: explicit electromagnetic PIC time integration on Yee grids.

Leapfrog FDTD field solver, particle coupling and AMR sub-cycling.
"""

__version__ = "0.1.0"
