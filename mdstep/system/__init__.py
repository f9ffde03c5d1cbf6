"""System state, box and molecule layout."""

from .atom import Atom
from .box import Box
from .molecule import Molecule
from .state import FlatView, SimulationState
from .timings import SectionTimer, Timings
from .topology import Topology

__all__ = [
    "Atom",
    "Box",
    "FlatView",
    "Molecule",
    "SectionTimer",
    "SimulationState",
    "Timings",
    "Topology",
]
