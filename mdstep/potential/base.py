"""Base interface for pair potential evaluators."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from ..config import PotentialSettings
from .kernels import PairKernel

if TYPE_CHECKING:
    from ..physical_data import PhysicalData
    from ..system import FlatView


class Potential(ABC):
    """
    Abstract base class for pair potential evaluators.

    Variants differ only in how they find intermolecular pair candidates;
    every pair goes through the same PairKernel, and intramolecular pairs
    come from the topology's exclusion table.

    Attributes:
        kernel: Per-pair kernel.
        settings: Potential settings.
    """

    def __init__(self, kernel: PairKernel, settings: PotentialSettings) -> None:
        self.kernel = kernel
        self.settings = settings

    @property
    def cutoff(self) -> float:
        """Return the interaction cutoff."""
        return self.kernel.cutoff

    @abstractmethod
    def intermolecular_pairs(self, view: FlatView) -> NDArray[np.integer]:
        """
        Candidate pairs of atoms in different molecules.

        Args:
            view: Current flat view.

        Returns:
            Pairs (i, j), shape (P, 2). Pairs beyond the cutoff may be
            included; the kernel drops them.
        """
        ...

    def calculate_forces(self, view: FlatView, physical_data: PhysicalData) -> None:
        """
        Accumulate pair forces into the view and record the energies.

        Args:
            view: Flat view; forces and shift forces are updated in place.
            physical_data: Receives ``coulomb_energy`` and
                ``non_coulomb_energy``.
        """
        pairs = self.intermolecular_pairs(view)
        coulomb, non_coulomb = self.kernel.compute(view, pairs[:, 0], pairs[:, 1])

        if self.settings.include_intramolecular:
            intra, coulomb_scale, non_coulomb_scale = (
                view.topology.scaled_intra_pairs(
                    self.settings.scale_14_coulomb,
                    self.settings.scale_14_non_coulomb,
                )
            )
            intra_coulomb, intra_non_coulomb = self.kernel.compute(
                view, intra[:, 0], intra[:, 1], coulomb_scale, non_coulomb_scale
            )
            coulomb += intra_coulomb
            non_coulomb += intra_non_coulomb

        physical_data.coulomb_energy = coulomb
        physical_data.non_coulomb_energy = non_coulomb
