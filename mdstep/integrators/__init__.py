"""Time integration, temperature and pressure coupling."""

from .barostats import BerendsenManostat, NoManostat, create_manostat
from .base import Integrator, IntegratorPhase, Manostat, Thermostat
from .thermostats import (
    BerendsenThermostat,
    NoseHooverThermostat,
    NoThermostat,
    create_thermostat,
)
from .velocity_verlet import VelocityVerletIntegrator

__all__ = [
    "BerendsenManostat",
    "BerendsenThermostat",
    "Integrator",
    "IntegratorPhase",
    "Manostat",
    "NoManostat",
    "NoThermostat",
    "NoseHooverThermostat",
    "Thermostat",
    "VelocityVerletIntegrator",
    "create_manostat",
    "create_thermostat",
]
