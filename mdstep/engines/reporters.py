"""Reporter implementations for simulation output."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from ..physical_data import FrozenPhysicalData
    from ..system import SimulationState

logger = logging.getLogger(__name__)


class Reporter(ABC):
    """
    Abstract base class for simulation reporters.

    Reporters receive an immutable, fully populated snapshot of the
    observables after every step and decide by their frequency whether to
    act on it.
    """

    @abstractmethod
    def report(self, data: FrozenPhysicalData) -> None:
        """
        Generate report for one step.

        Args:
            data: Observables of the step.
        """
        ...

    @property
    @abstractmethod
    def frequency(self) -> int:
        """Return reporting frequency (every N steps)."""
        ...

    def should_report(self, step: int) -> bool:
        """Check if reporter should run at this step."""
        return step % self.frequency == 0

    def initialize(self, state: SimulationState) -> None:
        """Initialize reporter (called before simulation)."""
        pass

    def finalize(self, state: SimulationState) -> None:
        """Finalize reporter (called after simulation)."""
        pass


class ReporterGroup:
    """
    Collection of reporters with automatic frequency handling.
    """

    def __init__(self, reporters: list[Reporter] | None = None) -> None:
        self._reporters: list[Reporter] = reporters if reporters else []

    def __len__(self) -> int:
        return len(self._reporters)

    def add(self, reporter: Reporter) -> None:
        """Add a reporter to the group."""
        self._reporters.append(reporter)

    def remove(self, reporter: Reporter) -> None:
        """Remove a reporter from the group."""
        self._reporters.remove(reporter)

    def initialize(self, state: SimulationState) -> None:
        """Initialize all reporters."""
        for reporter in self._reporters:
            reporter.initialize(state)

    def report(self, data: FrozenPhysicalData) -> None:
        """Run all reporters that should fire at this step."""
        for reporter in self._reporters:
            if reporter.should_report(data.step):
                reporter.report(data)

    def finalize(self, state: SimulationState) -> None:
        """Finalize all reporters."""
        for reporter in self._reporters:
            reporter.finalize(state)


class CallbackReporter(Reporter):
    """
    Reporter that calls a user-defined function.

    Allows arbitrary custom reporting logic.

    Args:
        callback: Function called with the snapshot.
        frequency: Reporting frequency.
    """

    def __init__(
        self,
        callback: Callable[[FrozenPhysicalData], None],
        frequency: int = 1,
    ) -> None:
        self._callback = callback
        self._frequency = frequency

    @property
    def frequency(self) -> int:
        return self._frequency

    def report(self, data: FrozenPhysicalData) -> None:
        """Call the callback function."""
        self._callback(data)


class EnergyReporter(Reporter):
    """
    Reporter that tracks energies and thermodynamic state over time.

    Args:
        frequency: Reporting frequency.
    """

    def __init__(self, frequency: int = 1) -> None:
        self._frequency = frequency
        self._steps: list[int] = []
        self._times: list[float] = []
        self._kinetic: list[float] = []
        self._potential: list[float] = []
        self._total: list[float] = []
        self._conserved: list[float] = []
        self._temperature: list[float] = []
        self._pressure: list[float] = []
        self._volume: list[float] = []

    @property
    def frequency(self) -> int:
        return self._frequency

    def report(self, data: FrozenPhysicalData) -> None:
        """Record energies."""
        self._steps.append(data.step)
        self._times.append(data.simulation_time)
        self._kinetic.append(data.kinetic_energy)
        self._potential.append(data.potential_energy)
        self._total.append(data.total_energy)
        self._conserved.append(data.conserved_energy)
        self._temperature.append(data.temperature)
        self._pressure.append(data.pressure)
        self._volume.append(data.volume)

    @property
    def n_frames(self) -> int:
        """Return number of recorded steps."""
        return len(self._steps)

    @property
    def steps(self) -> np.ndarray:
        return np.array(self._steps, dtype=np.int64)

    @property
    def times(self) -> np.ndarray:
        """Return simulation times in ps."""
        return np.array(self._times)

    @property
    def kinetic_energy(self) -> np.ndarray:
        """Return kinetic energy time series."""
        return np.array(self._kinetic)

    @property
    def potential_energy(self) -> np.ndarray:
        """Return potential energy time series."""
        return np.array(self._potential)

    @property
    def total_energy(self) -> np.ndarray:
        """Return total energy time series."""
        return np.array(self._total)

    @property
    def conserved_energy(self) -> np.ndarray:
        """Return total energy including thermostat terms."""
        return np.array(self._conserved)

    @property
    def temperature(self) -> np.ndarray:
        return np.array(self._temperature)

    @property
    def pressure(self) -> np.ndarray:
        return np.array(self._pressure)

    @property
    def volume(self) -> np.ndarray:
        return np.array(self._volume)

    def clear(self) -> None:
        """Clear stored data."""
        for series in (
            self._steps,
            self._times,
            self._kinetic,
            self._potential,
            self._total,
            self._conserved,
            self._temperature,
            self._pressure,
            self._volume,
        ):
            series.clear()


class LogReporter(Reporter):
    """
    Reporter that writes one line per reported step to a logger.

    Args:
        frequency: Reporting frequency.
        log: Logger to write to; defaults to this module's logger.
        level: Logging level of the step lines.
    """

    def __init__(
        self,
        frequency: int = 100,
        log: logging.Logger | None = None,
        level: int = logging.INFO,
    ) -> None:
        self._frequency = frequency
        self._logger = log if log is not None else logger
        self._level = level

    @property
    def frequency(self) -> int:
        return self._frequency

    def initialize(self, state: SimulationState) -> None:
        """Log the system size."""
        self._logger.log(
            self._level,
            "Starting simulation of %d atoms in %d molecules",
            state.n_atoms,
            state.topology.n_molecules,
        )

    def report(self, data: FrozenPhysicalData) -> None:
        self._logger.log(
            self._level,
            "step %d t=%.4f ps T=%.2f K P=%.2f bar E_kin=%.4f E_pot=%.4f "
            "E_tot=%.4f kcal/mol",
            data.step,
            data.simulation_time,
            data.temperature,
            data.pressure,
            data.kinetic_energy,
            data.potential_energy,
            data.total_energy,
        )

    def finalize(self, state: SimulationState) -> None:
        self._logger.log(self._level, "Simulation finished")
