"""Per-atom record of the object view."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
from numpy.typing import ArrayLike, NDArray


def _vector(value: ArrayLike | None) -> NDArray[np.floating]:
    if value is None:
        return np.zeros(3, dtype=np.float64)
    vector = np.array(value, dtype=np.float64)
    if vector.shape != (3,):
        raise ValueError(f"Expected a 3-vector, got shape {vector.shape}")
    return vector


@dataclass
class Atom:
    """
    A single atom.

    Attributes:
        name: Atom name, matched against rigid-body templates.
        atom_type: Force-field atom type label.
        type_index: Row/column of this atom in the non-Coulomb parameter
            matrices.
        mass: Mass in amu.
        charge: Partial charge in e.
        position: Position in Angstrom.
        velocity: Velocity in Angstrom/s.
        force: Force in kcal/(mol Angstrom).
        shift_force: Minimum-image correction accumulator for the virial.
    """

    name: str
    mass: float
    charge: float = 0.0
    atom_type: str = ""
    type_index: int = 0
    position: NDArray[np.floating] = field(default_factory=lambda: _vector(None))
    velocity: NDArray[np.floating] = field(default_factory=lambda: _vector(None))
    force: NDArray[np.floating] = field(default_factory=lambda: _vector(None))
    shift_force: NDArray[np.floating] = field(default_factory=lambda: _vector(None))

    def __post_init__(self) -> None:
        if self.mass <= 0.0:
            raise ValueError(f"Atom {self.name} must have a positive mass")
        if not self.atom_type:
            self.atom_type = self.name
        self.position = _vector(self.position)
        self.velocity = _vector(self.velocity)
        self.force = _vector(self.force)
        self.shift_force = _vector(self.shift_force)
