"""Base interfaces for integrators and coupling schemes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..constants import PRESSURE_FACTOR
from ..exceptions import ConsistencyError

if TYPE_CHECKING:
    from ..physical_data import PhysicalData
    from ..system import FlatView


class IntegratorPhase(Enum):
    """Position of the integrator within one timestep."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    FIRST_HALF_STEP = "first half step"
    FORCES_EVALUATED = "forces evaluated"
    SECOND_HALF_STEP = "second half step"
    FINISHED = "finished"


class Integrator(ABC):
    """
    Abstract base class for split-operator time integrators.

    One timestep is exactly one cycle
    ``first_step -> forces_evaluated -> second_step``; calling the phases
    in any other order raises IntegratorStateError.
    """

    @property
    @abstractmethod
    def timestep(self) -> float:
        """Return the integration timestep in fs."""
        ...

    @property
    @abstractmethod
    def phase(self) -> IntegratorPhase:
        """Return the current phase."""
        ...

    @abstractmethod
    def initialize(self) -> None:
        """Make the integrator ready for the first step."""
        ...

    @abstractmethod
    def first_step(self, view: FlatView) -> None:
        """Half kick and drift; forces are cleared for re-evaluation."""
        ...

    @abstractmethod
    def forces_evaluated(self) -> None:
        """Mark that fresh forces are in the view."""
        ...

    @abstractmethod
    def second_step(self, view: FlatView) -> None:
        """Second half kick with the fresh forces."""
        ...

    @abstractmethod
    def abort_step(self) -> None:
        """Return to the start of a step after the step was discarded."""
        ...

    @abstractmethod
    def finish(self) -> None:
        """End the run; no further steps are possible."""
        ...


class Thermostat(ABC):
    """
    Abstract base class for temperature coupling.

    The three hooks run at fixed points of a step: before the first half
    step, right after the force evaluation, and after the second half step.
    """

    @property
    @abstractmethod
    def target_temperature(self) -> float | None:
        """Return target temperature in K (None when uncoupled)."""
        ...

    def apply_thermostat_half_step(
        self, view: FlatView, physical_data: PhysicalData
    ) -> None:
        """Hook before the first half step."""
        return None

    def apply_thermostat_on_forces(self, view: FlatView) -> None:
        """Hook after the forces have been evaluated."""
        return None

    def apply_thermostat(self, view: FlatView, physical_data: PhysicalData) -> None:
        """Couple velocities and record the temperature."""
        physical_data.temperature = view.temperature()

    def save_state(self) -> dict[str, Any]:
        """Return a copy of the internal coupling state."""
        return {}

    def restore_state(self, saved: dict[str, Any]) -> None:
        """Reset the internal coupling state to one from ``save_state``."""
        return None


class Manostat(ABC):
    """
    Abstract base class for pressure coupling.

    Args:
        molecular: Use the kinetic energy of the molecule centers, to pair
            with a molecular virial.
    """

    def __init__(self, molecular: bool = False) -> None:
        self.molecular = molecular

    @property
    @abstractmethod
    def target_pressure(self) -> float | None:
        """Return target pressure in bar (None when uncoupled)."""
        ...

    def calculate_pressure(self, view: FlatView, physical_data: PhysicalData) -> None:
        """
        Record the instantaneous pressure.

        P = (2 * E_kin + sum(W)) / (3 V)

        Raises:
            ConsistencyError: If kinetics or virial of the step are missing.
        """
        if self.molecular:
            kinetic = physical_data.molecular_kinetic_energy
        else:
            kinetic = physical_data.kinetic_energy
        if kinetic is None or physical_data.virial is None:
            raise ConsistencyError(
                "Kinetic energy and virial must be computed before the pressure"
            )

        physical_data.update_box_observables(view)
        volume = physical_data.volume
        physical_data.pressure = float(
            (2.0 * kinetic + float(sum(physical_data.virial)))
            / (3.0 * volume)
            * PRESSURE_FACTOR
        )

    def apply_manostat(self, view: FlatView, physical_data: PhysicalData) -> None:
        """Compute the pressure and, in coupled variants, rescale the box."""
        self.calculate_pressure(view, physical_data)
