"""SI physical constants used as configuration defaults.

Values come from ``scipy.constants`` (CODATA). Runs in normalized units
override ``c`` and ``mu_0`` through ``PhysicsConfig`` instead.
"""

import scipy.constants as _sc

c = _sc.c                     # Speed of light [m/s]
mu_0 = _sc.mu_0               # Vacuum permeability [H/m]
e = _sc.e                     # Elementary charge [C]
m_e = _sc.m_e                 # Electron mass [kg]
