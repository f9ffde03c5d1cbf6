"""Virial accumulation for the pressure."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from .config import VIRIAL_TYPES
from .exceptions import ConfigurationError

if TYPE_CHECKING:
    from .physical_data import PhysicalData
    from .system import FlatView


class Virial:
    """
    Atomic virial.

    W = sum_i F_i * x_i + sum_i shift_force_i  (component-wise, diagonal)

    The shift forces hold the minimum-image correction of the pair loop;
    they are drained to zero here so the next step starts clean.
    """

    kind = "atomic"

    def calculate_virial(self, view: FlatView, physical_data: PhysicalData) -> None:
        """Compute the virial, record it and reset the shift forces."""
        virial = np.sum(view.forces * view.positions, axis=0)
        virial += np.sum(view.shift_forces, axis=0)
        view.shift_forces.fill(0.0)
        physical_data.virial = virial


class VirialMolecular(Virial):
    """
    Molecular virial.

    Subtracts the intramolecular part sum_i F_i * (x_i - com_i) from the
    atomic virial, so only forces between molecule centers remain.
    """

    kind = "molecular"

    def intramolecular_correction(self, view: FlatView) -> NDArray[np.floating]:
        """Return sum_i F_i * (x_i - com_i) using the minimum image."""
        centers = view.centers_of_mass[view.molecule_indices]
        offsets = view.box.minimum_image(centers, view.positions)
        return np.sum(view.forces * offsets, axis=0)

    def calculate_virial(self, view: FlatView, physical_data: PhysicalData) -> None:
        super().calculate_virial(view, physical_data)
        physical_data.virial = physical_data.virial - self.intramolecular_correction(
            view
        )


def create_virial(kind: str) -> Virial:
    """
    Create a virial by name.

    Raises:
        ConfigurationError: If the kind is unknown.
    """
    if kind == "atomic":
        return Virial()
    if kind == "molecular":
        return VirialMolecular()
    raise ConfigurationError(
        f'Invalid virial "{kind}". Possible options are: {", ".join(VIRIAL_TYPES)}'
    )
