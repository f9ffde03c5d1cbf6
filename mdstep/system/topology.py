"""Index view of the molecule layout."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from .molecule import Molecule

# Pair classes of the intramolecular table
PAIR_EXCLUDED = 0
PAIR_SCALED_14 = 1
PAIR_FULL = 2


@dataclass(frozen=True)
class Topology:
    """
    Immutable index-based description of which atoms form which molecules.

    Index-based design (no objects per atom) so kernels can consume it
    directly.

    Attributes:
        n_atoms: Number of atoms in the system.
        atom_names: Atom names, length N.
        molecule_indices: Molecule index of each atom, shape (N,).
        molecule_types: Molecule type of each atom, shape (N,).
        molecule_atoms: Global atom indices of each molecule.
        molecule_type_ids: Molecule type of each molecule, shape (N_molecules,).
        intra_pairs: Intramolecular atom pairs (i < j), shape (P, 2).
        intra_classes: PAIR_EXCLUDED, PAIR_SCALED_14 or PAIR_FULL per pair.
    """

    n_atoms: int
    atom_names: tuple[str, ...]
    molecule_indices: NDArray[np.integer]
    molecule_types: NDArray[np.integer]
    molecule_atoms: tuple[NDArray[np.integer], ...]
    molecule_type_ids: NDArray[np.integer]
    intra_pairs: NDArray[np.integer]
    intra_classes: NDArray[np.integer]

    def __post_init__(self) -> None:
        for name in (
            "molecule_indices",
            "molecule_types",
            "molecule_type_ids",
            "intra_pairs",
            "intra_classes",
        ):
            getattr(self, name).flags.writeable = False

    @property
    def n_molecules(self) -> int:
        """Return number of molecules."""
        return len(self.molecule_atoms)

    @classmethod
    def from_molecules(
        cls, n_atoms: int, atom_names: Sequence[str], molecules: Sequence[Molecule]
    ) -> Topology:
        """
        Build the topology from the molecule list.

        Every atom must belong to exactly one molecule.

        Args:
            n_atoms: Number of atoms.
            atom_names: Atom names, length n_atoms.
            molecules: Molecules referencing atoms by global index.

        Returns:
            New Topology.
        """
        molecule_indices = np.full(n_atoms, -1, dtype=np.int64)
        molecule_types = np.zeros(n_atoms, dtype=np.int64)
        molecule_atoms = []
        pairs: list[tuple[int, int]] = []
        classes: list[int] = []

        for index, molecule in enumerate(molecules):
            atoms = np.array(molecule.atom_indices, dtype=np.int64)
            if np.any(atoms < 0) or np.any(atoms >= n_atoms):
                raise ValueError(
                    f"Molecule {index} ({molecule.name}) references an atom "
                    f"outside 0..{n_atoms - 1}"
                )
            if np.any(molecule_indices[atoms] != -1):
                raise ValueError(
                    f"Molecule {index} ({molecule.name}) shares atoms with "
                    "another molecule"
                )
            molecule_indices[atoms] = index
            molecule_types[atoms] = molecule.molecule_type
            atoms.flags.writeable = False
            molecule_atoms.append(atoms)

            distances = _bond_distances(molecule.n_atoms, molecule.bonds)
            for a in range(molecule.n_atoms):
                for b in range(a + 1, molecule.n_atoms):
                    i, j = int(atoms[a]), int(atoms[b])
                    pairs.append((min(i, j), max(i, j)))
                    classes.append(_classify(distances[a][b]))

        unassigned = np.flatnonzero(molecule_indices == -1)
        if len(unassigned) > 0:
            raise ValueError(f"Atoms {unassigned.tolist()} belong to no molecule")

        return cls(
            n_atoms=n_atoms,
            atom_names=tuple(atom_names),
            molecule_indices=molecule_indices,
            molecule_types=molecule_types,
            molecule_atoms=tuple(molecule_atoms),
            molecule_type_ids=np.array(
                [m.molecule_type for m in molecules], dtype=np.int64
            ),
            intra_pairs=np.array(pairs, dtype=np.int64).reshape(-1, 2),
            intra_classes=np.array(classes, dtype=np.int64),
        )

    def scaled_intra_pairs(
        self, scale_14_coulomb: float, scale_14_non_coulomb: float
    ) -> tuple[NDArray[np.integer], NDArray[np.floating], NDArray[np.floating]]:
        """
        Intramolecular pairs that interact, with their scale factors.

        1-2 and 1-3 pairs are excluded, 1-4 pairs are scaled, every other
        pair in the same molecule interacts in full.

        Returns:
            Tuple of (pairs, coulomb_scale, non_coulomb_scale).
        """
        keep = self.intra_classes != PAIR_EXCLUDED
        pairs = self.intra_pairs[keep]
        is_14 = self.intra_classes[keep] == PAIR_SCALED_14
        coulomb_scale = np.where(is_14, scale_14_coulomb, 1.0)
        non_coulomb_scale = np.where(is_14, scale_14_non_coulomb, 1.0)
        return pairs, coulomb_scale, non_coulomb_scale


def _bond_distances(
    n_atoms: int, bonds: Sequence[tuple[int, int]]
) -> list[list[int | None]]:
    """Shortest bond path length between all local atom pairs (None if apart)."""
    adjacency: list[set[int]] = [set() for _ in range(n_atoms)]
    for i, j in bonds:
        adjacency[i].add(j)
        adjacency[j].add(i)

    distances: list[list[int | None]] = []
    for start in range(n_atoms):
        row: list[int | None] = [None] * n_atoms
        row[start] = 0
        current_level = {start}
        depth = 0
        # BFS up to the 1-4 shell; farther pairs interact in full anyway
        while current_level and depth < 3:
            depth += 1
            next_level: set[int] = set()
            for atom in current_level:
                for neighbor in adjacency[atom]:
                    if row[neighbor] is None:
                        row[neighbor] = depth
                        next_level.add(neighbor)
            current_level = next_level
        distances.append(row)
    return distances


def _classify(distance: int | None) -> int:
    if distance is not None and distance <= 2:
        return PAIR_EXCLUDED
    if distance == 3:
        return PAIR_SCALED_14
    return PAIR_FULL
