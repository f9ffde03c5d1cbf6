"""Cell-list accelerated evaluator."""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .base import Potential
from .kernels import PairKernel

if TYPE_CHECKING:
    from ..config import PotentialSettings
    from ..system import Box, FlatView


class CellList:
    """
    Cell list (linked cell) pair search.

    Divides the simulation box into cells whose perpendicular width is at
    least the cutoff. Only atoms in the same or neighboring cells are
    considered as pair candidates, reducing complexity from O(N^2) to O(N).

    Works for triclinic boxes because cells are assigned in fractional
    coordinates.

    Attributes:
        cutoff: Interaction cutoff distance.
    """

    def __init__(self, cutoff: float) -> None:
        """
        Initialize cell list.

        Args:
            cutoff: Interaction cutoff distance.
        """
        self.cutoff = cutoff
        self._n_cells: NDArray[np.integer] = np.array([1, 1, 1], dtype=np.int64)
        self._cell_of_atom: NDArray[np.integer] = np.empty(0, dtype=np.int64)
        self._pairs: NDArray[np.integer] = np.empty((0, 2), dtype=np.int64)

    @property
    def n_cells(self) -> tuple[int, int, int]:
        """Return number of cells in each dimension."""
        return tuple(int(n) for n in self._n_cells)

    @property
    def cell_of_atom(self) -> NDArray[np.integer]:
        """Linear cell index of every atom from the last build."""
        return self._cell_of_atom

    def _linear_index(self, cells: NDArray[np.integer]) -> NDArray[np.integer]:
        ny, nz = self._n_cells[1], self._n_cells[2]
        return cells[..., 0] * ny * nz + cells[..., 1] * nz + cells[..., 2]

    def _neighbor_cells(self, cell: NDArray[np.integer]) -> list[int]:
        """
        Linear indices of the cells around ``cell`` (including itself).

        Periodic images that map to the same cell on small grids are
        counted once.
        """
        offsets = itertools.product((-1, 0, 1), repeat=3)
        neighbors = {
            int(self._linear_index((cell + np.array(offset)) % self._n_cells))
            for offset in offsets
        }
        return sorted(neighbors)

    def build(self, positions: ArrayLike, box: Box) -> None:
        """
        Assign atoms to cells and collect candidate pairs.

        Args:
            positions: Atomic positions, shape (N, 3).
            box: Simulation box.
        """
        positions = np.asarray(positions, dtype=np.float64)

        self._n_cells = np.maximum(
            np.floor(box.perpendicular_widths / self.cutoff).astype(np.int64), 1
        )

        fractional = box.to_fractional(positions)
        fractional -= np.floor(fractional)
        cells = np.clip(
            (fractional * self._n_cells).astype(np.int64), 0, self._n_cells - 1
        )
        self._cell_of_atom = self._linear_index(cells)

        total_cells = int(np.prod(self._n_cells))
        order = np.argsort(self._cell_of_atom, kind="stable")
        bounds = np.searchsorted(
            self._cell_of_atom[order], np.arange(total_cells + 1)
        )
        members = [order[bounds[c] : bounds[c + 1]] for c in range(total_cells)]

        blocks = []
        for index in itertools.product(*(range(n) for n in self._n_cells)):
            cell = np.array(index)
            atoms_i = members[int(self._linear_index(cell))]
            if len(atoms_i) == 0:
                continue
            for neighbor in self._neighbor_cells(cell):
                atoms_j = members[neighbor]
                if len(atoms_j) == 0:
                    continue
                ii, jj = np.meshgrid(atoms_i, atoms_j, indexing="ij")
                ii, jj = ii.ravel(), jj.ravel()
                # Each unordered pair is kept once, from the cell of its lower index
                keep = ii < jj
                blocks.append(np.column_stack([ii[keep], jj[keep]]))

        if blocks:
            self._pairs = np.concatenate(blocks)
        else:
            self._pairs = np.empty((0, 2), dtype=np.int64)

    def get_pairs(self) -> NDArray[np.integer]:
        """Get all candidate pairs (i < j) from the last build."""
        return self._pairs


class CellListPotential(Potential):
    """
    Evaluator restricting the pair search to neighboring cells.

    The cell list is rebuilt on every evaluation.
    """

    def __init__(self, kernel: PairKernel, settings: PotentialSettings) -> None:
        super().__init__(kernel, settings)
        self.cell_list = CellList(kernel.cutoff)

    def intermolecular_pairs(self, view: FlatView) -> NDArray[np.integer]:
        self.cell_list.build(view.positions, view.box)
        pairs = self.cell_list.get_pairs()
        molecules = view.molecule_indices
        return pairs[molecules[pairs[:, 0]] != molecules[pairs[:, 1]]]
