"""
mdstep - Molecular dynamics step engine.

A timestep is a fixed pipeline over one flat view of the system:
velocity Verlet half steps, SHAKE/RATTLE and M-Shake constraints,
brute-force or cell-list pair potentials, optional QM forces, virial,
thermostat and manostat.

Quick Start:
    >>> from mdstep import Box, MDEngine, SimulationConfig, SimulationState
    >>> from mdstep.potential import LennardJones
    >>> state = SimulationState.from_arrays(
    ...     positions=[[0.0, 0.0, 0.0], [4.0, 0.0, 0.0]],
    ...     masses=[39.948, 39.948],
    ...     box=Box.cubic(20.0),
    ... )
    >>> engine = MDEngine.from_config(
    ...     state,
    ...     SimulationConfig.from_dict({"potential": {"cutoff": 9.0}}),
    ...     LennardJones.from_epsilon_sigma([0.2379], [3.405]),
    ... )
    >>> _ = engine.run(10)
"""

__version__ = "0.1.0"

from .config import SimulationConfig
from .engines import MDEngine
from .exceptions import (
    ConfigurationError,
    ConsistencyError,
    ConvergenceError,
    CouplingError,
    DeviceError,
    IntegratorStateError,
    MDError,
    QMRunnerError,
    QMTimeoutError,
    StateAccessError,
)
from .physical_data import FrozenPhysicalData, PhysicalData
from .system import Atom, Box, Molecule, SimulationState

__all__ = [
    "Atom",
    "Box",
    "ConfigurationError",
    "ConsistencyError",
    "ConvergenceError",
    "CouplingError",
    "DeviceError",
    "FrozenPhysicalData",
    "IntegratorStateError",
    "MDEngine",
    "MDError",
    "Molecule",
    "PhysicalData",
    "QMRunnerError",
    "QMTimeoutError",
    "SimulationConfig",
    "SimulationState",
    "StateAccessError",
]
