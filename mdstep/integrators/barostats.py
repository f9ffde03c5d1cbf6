"""Manostat implementations."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from ..config import ManostatSettings
from ..constants import PS_TO_FS
from ..exceptions import ConfigurationError, CouplingError
from .base import Manostat

if TYPE_CHECKING:
    from ..physical_data import PhysicalData
    from ..system import FlatView

logger = logging.getLogger(__name__)


class NoManostat(Manostat):
    """Constant volume; only the pressure is recorded."""

    @property
    def target_pressure(self) -> float | None:
        return None


class BerendsenManostat(Manostat):
    """
    Berendsen weak-coupling manostat.

    Scales the box and the molecule centers of mass isotropically toward
    the target pressure. Molecules move rigidly, so intramolecular
    geometry (and any constraint) is untouched.

    Scaling factor:
        mu = (1 - beta * (dt/tau) * (P_target - P))^(1/3)

    Args:
        target_pressure: Target pressure in bar.
        relaxation_time: Coupling time constant tau in ps.
        compressibility: Isothermal compressibility beta in 1/bar.
        timestep: Integration timestep in fs.
        molecular: Use the molecular kinetic energy for the pressure.
    """

    def __init__(
        self,
        target_pressure: float,
        relaxation_time: float,
        compressibility: float,
        timestep: float,
        molecular: bool = False,
    ) -> None:
        super().__init__(molecular)
        if relaxation_time <= 0.0:
            raise ConfigurationError(
                "Berendsen manostat needs a positive relaxation time"
            )
        self._pressure = target_pressure
        self.relaxation_time = relaxation_time
        self.compressibility = compressibility
        self.timestep = timestep

    @property
    def target_pressure(self) -> float:
        return self._pressure

    def scaling_factor(self, pressure: float) -> float:
        """Linear box scaling factor for the given instantaneous pressure."""
        ratio = self.timestep / (self.relaxation_time * PS_TO_FS)
        cubed = 1.0 - self.compressibility * ratio * (self._pressure - pressure)
        if cubed <= 0.0:
            raise CouplingError(
                f"Berendsen manostat scaling became non-positive ({cubed:g}); "
                "reduce the timestep or the compressibility"
            )
        return float(np.cbrt(cubed))

    def apply_manostat(self, view: FlatView, physical_data: PhysicalData) -> None:
        """Compute the pressure, then rescale box and molecule positions."""
        self.calculate_pressure(view, physical_data)
        mu = self.scaling_factor(physical_data.pressure)

        shifts = view.centers_of_mass * (mu - 1.0)
        view.positions += shifts[view.molecule_indices]
        view.box = view.box.scaled(mu)
        view.update_centers_of_mass()

        physical_data.update_box_observables(view)
        logger.debug("Berendsen manostat scaled box by %.8f", mu)


def create_manostat(
    settings: ManostatSettings, timestep: float, molecular: bool = False
) -> Manostat:
    """
    Create the manostat selected in the settings.

    Args:
        settings: Manostat settings.
        timestep: Integration timestep in fs.
        molecular: Pair the pressure with a molecular virial.

    Returns:
        Manostat instance.
    """
    if settings.manostat_type == "berendsen":
        manostat: Manostat = BerendsenManostat(
            settings.target_pressure,
            settings.relaxation_time,
            settings.compressibility,
            timestep,
            molecular,
        )
    else:
        manostat = NoManostat(molecular)

    logger.info("Using %s manostat", settings.manostat_type)
    return manostat
