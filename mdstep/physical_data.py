"""Per-step macroscopic observables."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from .constants import DENSITY_FACTOR
from .exceptions import ConsistencyError

if TYPE_CHECKING:
    from .system import FlatView

# Observables every step must fill before a snapshot is handed out
REQUIRED_FIELDS = (
    "temperature",
    "pressure",
    "kinetic_energy",
    "molecular_kinetic_energy",
    "coulomb_energy",
    "non_coulomb_energy",
    "momentum",
    "virial",
    "volume",
    "density",
)


@dataclass
class PhysicalData:
    """
    Observables of one step, written by the component that owns each one.

    Unset observables are None. Energies are in kcal/mol, temperature in K,
    pressure in bar, volume in Angstrom^3, density in g/cm^3.

    Attributes:
        temperature: Instantaneous temperature.
        pressure: Instantaneous pressure.
        kinetic_energy: Atomic kinetic energy.
        molecular_kinetic_energy: Kinetic energy of the molecule centers.
        coulomb_energy: Coulomb energy.
        non_coulomb_energy: Short-range energy.
        qm_energy: Energy of the external QM provider.
        nose_hoover_momentum_energy: Kinetic energy of the chain momenta.
        nose_hoover_friction_energy: Potential energy of the chain positions.
        momentum: Total linear momentum, amu Angstrom/s.
        virial: Diagonal virial, kcal/mol.
        volume: Box volume.
        density: Mass density.
    """

    temperature: float | None = None
    pressure: float | None = None
    kinetic_energy: float | None = None
    molecular_kinetic_energy: float | None = None
    coulomb_energy: float | None = None
    non_coulomb_energy: float | None = None
    qm_energy: float = 0.0
    nose_hoover_momentum_energy: float = 0.0
    nose_hoover_friction_energy: float = 0.0
    momentum: NDArray[np.floating] | None = None
    virial: NDArray[np.floating] | None = None
    volume: float | None = None
    density: float | None = None

    def reset(self) -> None:
        """Clear every observable."""
        for f in fields(self):
            setattr(self, f.name, f.default)

    def calculate_kinetics(self, view: FlatView) -> None:
        """Fill kinetic energies and momentum from the view's velocities."""
        self.kinetic_energy = view.kinetic_energy()
        self.molecular_kinetic_energy = view.molecular_kinetic_energy()
        self.momentum = view.momentum()

    def update_box_observables(self, view: FlatView) -> None:
        """Fill volume and density from the view's box and masses."""
        self.volume = view.box.volume
        self.density = float(np.sum(view.masses)) / self.volume * DENSITY_FACTOR

    @property
    def potential_energy(self) -> float:
        """Coulomb + non-Coulomb + QM energy."""
        return (
            (self.coulomb_energy or 0.0)
            + (self.non_coulomb_energy or 0.0)
            + self.qm_energy
        )

    @property
    def total_energy(self) -> float:
        """Kinetic + potential energy."""
        return (self.kinetic_energy or 0.0) + self.potential_energy

    def missing(self) -> list[str]:
        """Names of required observables that are still unset."""
        return [name for name in REQUIRED_FIELDS if getattr(self, name) is None]

    def snapshot(
        self, step: int = 0, simulation_time: float = 0.0
    ) -> FrozenPhysicalData:
        """
        Create an immutable copy for output collaborators.

        Args:
            step: Step number the data belongs to.
            simulation_time: Simulation time in ps.

        Returns:
            FrozenPhysicalData.

        Raises:
            ConsistencyError: If any required observable is unset.
        """
        missing = self.missing()
        if missing:
            raise ConsistencyError(
                f"Physical data of step {step} is incomplete: "
                f"missing {', '.join(missing)}"
            )
        return FrozenPhysicalData(
            step=step,
            simulation_time=simulation_time,
            temperature=float(self.temperature),
            pressure=float(self.pressure),
            kinetic_energy=float(self.kinetic_energy),
            molecular_kinetic_energy=float(self.molecular_kinetic_energy),
            coulomb_energy=float(self.coulomb_energy),
            non_coulomb_energy=float(self.non_coulomb_energy),
            qm_energy=float(self.qm_energy),
            nose_hoover_momentum_energy=float(self.nose_hoover_momentum_energy),
            nose_hoover_friction_energy=float(self.nose_hoover_friction_energy),
            momentum=np.array(self.momentum, dtype=np.float64),
            virial=np.array(self.virial, dtype=np.float64),
            volume=float(self.volume),
            density=float(self.density),
        )


@dataclass(frozen=True)
class FrozenPhysicalData:
    """
    Immutable, fully populated observables of one step.

    Used by reporters; arrays are read-only.
    """

    step: int
    simulation_time: float
    temperature: float
    pressure: float
    kinetic_energy: float
    molecular_kinetic_energy: float
    coulomb_energy: float
    non_coulomb_energy: float
    qm_energy: float
    nose_hoover_momentum_energy: float
    nose_hoover_friction_energy: float
    momentum: NDArray[np.floating]
    virial: NDArray[np.floating]
    volume: float
    density: float

    def __post_init__(self) -> None:
        """Make arrays read-only."""
        self.momentum.flags.writeable = False
        self.virial.flags.writeable = False

    @property
    def potential_energy(self) -> float:
        """Coulomb + non-Coulomb + QM energy."""
        return self.coulomb_energy + self.non_coulomb_energy + self.qm_energy

    @property
    def total_energy(self) -> float:
        """Kinetic + potential energy."""
        return self.kinetic_energy + self.potential_energy

    @property
    def conserved_energy(self) -> float:
        """Total energy including the Nose-Hoover chain terms."""
        return (
            self.total_energy
            + self.nose_hoover_momentum_energy
            + self.nose_hoover_friction_energy
        )
