"""Physical constants and internal unit conversion factors.

Internal units: Angstrom, fs (timestep), Angstrom/s (velocity), amu,
kcal/mol, e, K and bar.
"""

import math

# SI base values
AVOGADRO_NUMBER = 6.02214076e23
BOLTZMANN_CONSTANT = 1.380649e-23  # J/K
SPEED_OF_LIGHT = 2.99792458e10  # cm/s
ELECTRON_VOLT = 1.602176634e-19  # J

KCAL_TO_J = 4184.0
KCAL_PER_MOL_TO_J = KCAL_TO_J / AVOGADRO_NUMBER
AMU_TO_KG = 1.66053906660e-27

ANGSTROM_TO_M = 1e-10
M_TO_ANGSTROM = 1e10
FS_TO_S = 1e-15
PS_TO_FS = 1e3
BAR_TO_PA = 1e5

# Force in kcal/(mol Angstrom) expressed in N
FORCE_UNIT_TO_SI = KCAL_PER_MOL_TO_J / ANGSTROM_TO_M

# dt [fs] * F [kcal/(mol A)] / m [amu] * factor -> half kick in A/s
V_VERLET_VELOCITY_FACTOR = 0.5 * FORCE_UNIT_TO_SI / AMU_TO_KG * FS_TO_S * M_TO_ANGSTROM

# m [amu] * v^2 [A^2/s^2] * factor -> kcal/mol
KINETIC_ENERGY_FACTOR = 0.5 * AMU_TO_KG * ANGSTROM_TO_M**2 / KCAL_PER_MOL_TO_J

# friction [1/s] * m [amu] * v [A/s] * factor -> kcal/(mol A)
MOMENTUM_TO_FORCE = AMU_TO_KG * ANGSTROM_TO_M**2 / KCAL_PER_MOL_TO_J

# kcal/(mol A^3) -> bar
PRESSURE_FACTOR = KCAL_PER_MOL_TO_J / ANGSTROM_TO_M**3 / BAR_TO_PA

# amu/A^3 -> g/cm^3
DENSITY_FACTOR = AMU_TO_KG * 1e3 / (ANGSTROM_TO_M * 1e2) ** 3

BOLTZMANN_CONSTANT_KCAL_PER_MOL = BOLTZMANN_CONSTANT / KCAL_PER_MOL_TO_J

# 1/(4 pi eps0) in kcal A / (mol e^2)
COULOMB_CONSTANT = 332.0637132991921

EV_TO_KCAL_PER_MOL = ELECTRON_VOLT / KCAL_PER_MOL_TO_J

# cm^-1 -> rad/s
WAVENUMBER_TO_ANGULAR_FREQUENCY = 2.0 * math.pi * SPEED_OF_LIGHT
