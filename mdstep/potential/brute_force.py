"""All-pairs reference evaluator."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from .base import Potential
from .kernels import PairKernel

if TYPE_CHECKING:
    from ..config import PotentialSettings
    from ..system import FlatView, Topology


class BruteForcePotential(Potential):
    """
    O(N^2) evaluator over every pair of molecules.

    The pair list depends only on the molecule layout, so it is built once
    per topology and reused.
    """

    def __init__(self, kernel: PairKernel, settings: PotentialSettings) -> None:
        super().__init__(kernel, settings)
        self._topology: Topology | None = None
        self._pairs: NDArray[np.integer] = np.empty((0, 2), dtype=np.int64)

    def intermolecular_pairs(self, view: FlatView) -> NDArray[np.integer]:
        topology = view.topology
        if topology is not self._topology:
            self._pairs = self._build_pairs(topology)
            self._topology = topology
        return self._pairs

    @staticmethod
    def _build_pairs(topology: Topology) -> NDArray[np.integer]:
        blocks = []
        molecule_atoms = topology.molecule_atoms
        for mol1 in range(len(molecule_atoms)):
            atoms1 = molecule_atoms[mol1]
            for mol2 in range(mol1):
                atoms2 = molecule_atoms[mol2]
                ii, jj = np.meshgrid(atoms1, atoms2, indexing="ij")
                blocks.append(np.column_stack([ii.ravel(), jj.ravel()]))
        if not blocks:
            return np.empty((0, 2), dtype=np.int64)
        return np.concatenate(blocks).astype(np.int64)
