"""Molecule records of the object view."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray


@dataclass
class Molecule:
    """
    A molecule as an ordered group of atoms owned by the simulation state.

    Atoms are referenced by index into ``SimulationState.atoms``; the molecule
    never holds atom objects itself.

    Attributes:
        name: Molecule name.
        molecule_type: Integer molecule type id.
        atom_indices: Ordered global atom indices.
        bonds: Bonded pairs as local indices into ``atom_indices``.
        center_of_mass: Derived center of mass, refreshed on de-flatten.
        degrees_of_freedom: Degrees of freedom left after rigid constraints.
    """

    name: str
    molecule_type: int
    atom_indices: tuple[int, ...]
    bonds: tuple[tuple[int, int], ...] = ()
    center_of_mass: NDArray[np.floating] = field(
        default_factory=lambda: np.zeros(3, dtype=np.float64)
    )
    degrees_of_freedom: int = 0

    def __post_init__(self) -> None:
        self.atom_indices = tuple(int(i) for i in self.atom_indices)
        if not self.atom_indices:
            raise ValueError(f"Molecule {self.name} has no atoms")
        n_atoms = len(self.atom_indices)
        bonds = []
        for i, j in self.bonds:
            if not (0 <= i < n_atoms and 0 <= j < n_atoms) or i == j:
                raise ValueError(
                    f"Invalid bond ({i}, {j}) in molecule {self.name} "
                    f"with {n_atoms} atoms"
                )
            bonds.append((min(i, j), max(i, j)))
        self.bonds = tuple(bonds)
        self.center_of_mass = np.asarray(self.center_of_mass, dtype=np.float64)
        if self.degrees_of_freedom == 0:
            self.degrees_of_freedom = 3 * n_atoms

    @property
    def n_atoms(self) -> int:
        """Return number of atoms."""
        return len(self.atom_indices)

    @classmethod
    def from_atoms(
        cls,
        name: str,
        molecule_type: int,
        first_atom: int,
        n_atoms: int,
        bonds: Sequence[tuple[int, int]] = (),
    ) -> Molecule:
        """Create a molecule over a contiguous block of atoms."""
        return cls(
            name=name,
            molecule_type=molecule_type,
            atom_indices=tuple(range(first_atom, first_atom + n_atoms)),
            bonds=tuple(bonds),
        )
