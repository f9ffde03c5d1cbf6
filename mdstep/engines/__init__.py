"""Simulation engine and reporters."""

from .engine import MDEngine
from .reporters import (
    CallbackReporter,
    EnergyReporter,
    LogReporter,
    Reporter,
    ReporterGroup,
)

__all__ = [
    "CallbackReporter",
    "EnergyReporter",
    "LogReporter",
    "MDEngine",
    "Reporter",
    "ReporterGroup",
]
