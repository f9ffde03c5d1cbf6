"""Thermostat implementations."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import numpy as np
from numpy.typing import NDArray

from ..config import ThermostatSettings
from ..constants import (
    BOLTZMANN_CONSTANT_KCAL_PER_MOL,
    FS_TO_S,
    MOMENTUM_TO_FORCE,
    PS_TO_FS,
    WAVENUMBER_TO_ANGULAR_FREQUENCY,
)
from ..exceptions import ConfigurationError
from .base import Thermostat

if TYPE_CHECKING:
    from ..physical_data import PhysicalData
    from ..system import FlatView

logger = logging.getLogger(__name__)


class NoThermostat(Thermostat):
    """Microcanonical dynamics; only the temperature is recorded."""

    @property
    def target_temperature(self) -> float | None:
        return None


class BerendsenThermostat(Thermostat):
    """
    Berendsen weak-coupling thermostat.

    Scales velocities toward the target temperature with a characteristic
    relaxation time. Does not produce the canonical ensemble but relaxes
    gently, which makes it useful for equilibration.

    Scaling factor:
        lambda = sqrt(1 + (dt/tau) * (T_target/T - 1))

    Args:
        target_temperature: Target temperature in K.
        relaxation_time: Coupling time constant tau in ps.
        timestep: Integration timestep in fs.
    """

    def __init__(
        self, target_temperature: float, relaxation_time: float, timestep: float
    ) -> None:
        if relaxation_time <= 0.0:
            raise ConfigurationError(
                "Berendsen thermostat needs a positive relaxation time"
            )
        self._temperature = target_temperature
        self.relaxation_time = relaxation_time
        self.timestep = timestep

    @property
    def target_temperature(self) -> float:
        return self._temperature

    def scaling_factor(self, temperature: float) -> float:
        """Velocity scaling factor for the given instantaneous temperature."""
        if temperature < 1e-10:
            return 1.0
        ratio = self.timestep / (self.relaxation_time * PS_TO_FS)
        factor_sq = 1.0 + ratio * (self._temperature / temperature - 1.0)
        return float(np.sqrt(max(factor_sq, 0.0)))

    def apply_thermostat(self, view: FlatView, physical_data: PhysicalData) -> None:
        """Scale velocities, then record the new temperature."""
        factor = self.scaling_factor(view.temperature())
        view.velocities *= factor
        physical_data.temperature = view.temperature()


class NoseHooverThermostat(Thermostat):
    """
    Nose-Hoover chain thermostat.

    The first chain link acts on the particles through a friction force
    ``-xi_1 m v`` added after the force evaluation. Each further link
    thermalizes the one before it. The chain is advanced once per step
    after the second half kick.

    Chain equations (chi_k chain momenta, Q_k masses, xi_k = chi_k / Q_k):
        d chi_1/dt = 2 E_kin - N_f kT - chi_1 xi_2
        d chi_k/dt = Q_{k-1} xi_{k-1}^2 - kT - chi_k xi_{k+1}

    Masses: Q_1 = N_f kT / omega^2, Q_k = kT / omega^2.

    The conserved quantity adds sum chi_k^2 / (2 Q_k) and
    N_f kT zeta_1 + sum_{k>1} kT zeta_k, with zeta_k the time integral of
    xi_k.

    Args:
        target_temperature: Target temperature in K.
        coupling_frequency: Coupling frequency omega in cm^-1.
        chain_length: Number of chain links.
        timestep: Integration timestep in fs.
    """

    def __init__(
        self,
        target_temperature: float,
        coupling_frequency: float,
        chain_length: int,
        timestep: float,
    ) -> None:
        if target_temperature <= 0.0:
            raise ConfigurationError(
                "Nose-Hoover thermostat needs a positive target temperature"
            )
        if coupling_frequency <= 0.0:
            raise ConfigurationError(
                "Nose-Hoover thermostat needs a positive coupling frequency"
            )
        if chain_length < 1:
            raise ConfigurationError("Nose-Hoover chain length must be at least 1")

        self._temperature = target_temperature
        self.coupling_frequency = coupling_frequency
        self.chain_length = chain_length
        self.timestep = timestep

        self.chi: NDArray[np.floating] = np.zeros(chain_length, dtype=np.float64)
        self.zeta: NDArray[np.floating] = np.zeros(chain_length, dtype=np.float64)

    @property
    def target_temperature(self) -> float:
        return self._temperature

    @property
    def omega(self) -> float:
        """Angular coupling frequency in rad/s."""
        return self.coupling_frequency * WAVENUMBER_TO_ANGULAR_FREQUENCY

    @property
    def kt(self) -> float:
        """Target thermal energy in kcal/mol."""
        return BOLTZMANN_CONSTANT_KCAL_PER_MOL * self._temperature

    def chain_masses(self, degrees_of_freedom: int) -> NDArray[np.floating]:
        """Return Q_k in kcal/mol s^2."""
        masses = np.full(self.chain_length, self.kt / self.omega**2)
        masses[0] *= degrees_of_freedom
        return masses

    def apply_thermostat_on_forces(self, view: FlatView) -> None:
        """Add the friction force of the first chain link."""
        dof = view.degrees_of_freedom
        if dof == 0:
            return
        factor = (
            self.chi[0] * self.omega**2 / (self.kt * dof) * MOMENTUM_TO_FORCE
        )
        view.forces -= factor * view.masses[:, np.newaxis] * view.velocities

    def apply_thermostat(self, view: FlatView, physical_data: PhysicalData) -> None:
        """Advance the chain by one step and record its energies."""
        dof = view.degrees_of_freedom
        if dof > 0:
            self._propagate_chain(view.kinetic_energy(), dof)
            masses = self.chain_masses(dof)
            physical_data.nose_hoover_momentum_energy = float(
                np.sum(self.chi**2 / (2.0 * masses))
            )
            physical_data.nose_hoover_friction_energy = float(
                dof * self.kt * self.zeta[0] + self.kt * np.sum(self.zeta[1:])
            )
        physical_data.temperature = view.temperature()

    def save_state(self) -> dict[str, Any]:
        return {"chi": self.chi.copy(), "zeta": self.zeta.copy()}

    def restore_state(self, saved: dict[str, Any]) -> None:
        self.chi[:] = saved["chi"]
        self.zeta[:] = saved["zeta"]

    def _propagate_chain(self, kinetic_energy: float, dof: int) -> None:
        dt = self.timestep * FS_TO_S
        kt = self.kt
        masses = self.chain_masses(dof)
        xi = self.chi / masses

        dchi = np.empty_like(self.chi)
        dchi[0] = 2.0 * kinetic_energy - dof * kt
        dchi[1:] = self.chi[:-1] * xi[:-1] - kt
        dchi[:-1] -= self.chi[:-1] * xi[1:]

        self.chi += dchi * dt
        self.zeta += self.chi / masses * dt


def create_thermostat(settings: ThermostatSettings, timestep: float) -> Thermostat:
    """
    Create the thermostat selected in the settings.

    Args:
        settings: Thermostat settings.
        timestep: Integration timestep in fs.

    Returns:
        Thermostat instance.

    Raises:
        ConfigurationError: If the thermostat parameters are invalid.
    """
    kind = settings.thermostat_type
    if kind == "berendsen":
        thermostat: Thermostat = BerendsenThermostat(
            settings.target_temperature, settings.relaxation_time, timestep
        )
    elif kind == "nose-hoover":
        thermostat = NoseHooverThermostat(
            settings.target_temperature,
            settings.coupling_frequency,
            settings.chain_length,
            timestep,
        )
    else:
        thermostat = NoThermostat()

    logger.info("Using %s thermostat", kind)
    return thermostat
