"""Immutable run configuration.

Every component receives the settings it needs at construction time; there
is no global mutable settings state. All validation happens in
``__post_init__`` so a bad value is reported before the first step runs.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any

from .exceptions import ConfigurationError

NON_COULOMB_TYPES = ("lj", "buckingham", "morse")
THERMOSTAT_TYPES = ("none", "berendsen", "nose-hoover")
MANOSTAT_TYPES = ("none", "berendsen")
DEVICE_BACKENDS = ("cpu", "cuda")
VIRIAL_TYPES = ("atomic", "molecular")


@dataclass(frozen=True)
class TimingsSettings:
    """
    Time stepping parameters.

    Attributes:
        timestep: Integration timestep in fs.
        n_steps: Number of steps of the run.
    """

    timestep: float = 1.0
    n_steps: int = 0

    def __post_init__(self) -> None:
        if self.timestep <= 0.0:
            raise ConfigurationError(
                f"Timestep must be positive, got {self.timestep}"
            )
        if self.n_steps < 0:
            raise ConfigurationError(
                f"Number of steps cannot be negative, got {self.n_steps}"
            )


@dataclass(frozen=True)
class PotentialSettings:
    """
    Pair potential selection and cutoff handling.

    Attributes:
        non_coulomb_type: One of "lj", "buckingham", "morse".
        cutoff: Interaction cutoff radius in Angstrom.
        use_cell_list: Use the cell-list pair search instead of brute force.
        include_intramolecular: Evaluate pairs inside the same molecule.
        scale_14_coulomb: Coulomb scaling of 1-4 pairs.
        scale_14_non_coulomb: Non-Coulomb scaling of 1-4 pairs.
    """

    non_coulomb_type: str = "lj"
    cutoff: float = 12.5
    use_cell_list: bool = False
    include_intramolecular: bool = False
    scale_14_coulomb: float = 1.0
    scale_14_non_coulomb: float = 1.0

    def __post_init__(self) -> None:
        kind = self.non_coulomb_type.lower()
        if kind not in NON_COULOMB_TYPES:
            raise ConfigurationError(
                f'NonCoulombType "{self.non_coulomb_type}" not implemented yet. '
                f"Possible options are: {', '.join(NON_COULOMB_TYPES)}"
            )
        object.__setattr__(self, "non_coulomb_type", kind)
        if self.cutoff <= 0.0:
            raise ConfigurationError(f"Cutoff must be positive, got {self.cutoff}")
        for name in ("scale_14_coulomb", "scale_14_non_coulomb"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be in [0, 1], got {value}")


@dataclass(frozen=True)
class ConstraintSettings:
    """
    Tolerances and iteration limits of the constraint solvers.

    Attributes:
        shake_active: Apply SHAKE/RATTLE bond constraints.
        shake_tolerance: Relative bond length tolerance for SHAKE.
        shake_max_iter: Maximum SHAKE iterations.
        rattle_tolerance: Relative velocity tolerance for RATTLE.
        rattle_max_iter: Maximum RATTLE iterations.
        mshake_tolerance: Relative tolerance for rigid-body M-Shake.
        mshake_max_iter: Maximum M-Shake iterations.
    """

    shake_active: bool = False
    shake_tolerance: float = 1e-8
    shake_max_iter: int = 20
    rattle_tolerance: float = 1e-6
    rattle_max_iter: int = 20
    mshake_tolerance: float = 1e-8
    mshake_max_iter: int = 20

    def __post_init__(self) -> None:
        for solver in ("shake", "rattle", "mshake"):
            label = {"shake": "Shake", "rattle": "Rattle", "mshake": "M-Shake"}[solver]
            if getattr(self, f"{solver}_tolerance") < 0.0:
                raise ConfigurationError(f"{label} tolerance must be positive")
            if getattr(self, f"{solver}_max_iter") < 0:
                raise ConfigurationError(
                    f"Maximum {label.lower()} iterations must be positive"
                )


@dataclass(frozen=True)
class ThermostatSettings:
    """
    Temperature coupling.

    Attributes:
        thermostat_type: One of "none", "berendsen", "nose-hoover".
        target_temperature: Target temperature in K.
        relaxation_time: Berendsen relaxation time in ps.
        coupling_frequency: Nose-Hoover coupling frequency in cm^-1.
        chain_length: Number of Nose-Hoover chain links.
    """

    thermostat_type: str = "none"
    target_temperature: float | None = None
    relaxation_time: float = 0.1
    coupling_frequency: float = 1000.0
    chain_length: int = 3

    def __post_init__(self) -> None:
        kind = self.thermostat_type.lower()
        if kind not in THERMOSTAT_TYPES:
            raise ConfigurationError(
                f'Invalid thermostat "{self.thermostat_type}". '
                f"Possible options are: {', '.join(THERMOSTAT_TYPES)}"
            )
        object.__setattr__(self, "thermostat_type", kind)
        if kind != "none" and self.target_temperature is None:
            raise ConfigurationError(
                f"Target temperature must be set for the {kind} thermostat"
            )
        if self.target_temperature is not None and self.target_temperature < 0.0:
            raise ConfigurationError("Target temperature cannot be negative")
        if self.relaxation_time < 0.0:
            raise ConfigurationError("Relaxation time of thermostat cannot be negative")
        if self.coupling_frequency < 0.0:
            raise ConfigurationError("Coupling frequency cannot be negative")
        if self.chain_length < 1:
            raise ConfigurationError("Nose-Hoover chain length must be at least 1")


@dataclass(frozen=True)
class ManostatSettings:
    """
    Pressure coupling.

    Attributes:
        manostat_type: One of "none", "berendsen".
        target_pressure: Target pressure in bar.
        relaxation_time: Relaxation time in ps.
        compressibility: Isothermal compressibility in 1/bar.
    """

    manostat_type: str = "none"
    target_pressure: float | None = None
    relaxation_time: float = 1.0
    compressibility: float = 4.5e-5

    def __post_init__(self) -> None:
        kind = self.manostat_type.lower()
        if kind not in MANOSTAT_TYPES:
            raise ConfigurationError(
                f'Invalid manostat "{self.manostat_type}". '
                "Possible options are: berendsen and none"
            )
        object.__setattr__(self, "manostat_type", kind)
        if self.relaxation_time < 0.0:
            raise ConfigurationError("Relaxation time of manostat cannot be negative")
        if self.compressibility < 0.0:
            raise ConfigurationError("Compressibility cannot be negative")
        if kind != "none" and self.target_pressure is None:
            raise ConfigurationError(
                f"Pressure must be set for the {kind} manostat"
            )


@dataclass(frozen=True)
class DeviceSettings:
    """
    Compute backend selection.

    Attributes:
        backend: "cpu" or "cuda".
        device_id: Explicit device id; None asks the backend.
    """

    backend: str = "cpu"
    device_id: int | None = None

    def __post_init__(self) -> None:
        if self.backend not in DEVICE_BACKENDS:
            raise ConfigurationError(
                f'Unknown device backend "{self.backend}". '
                f"Available: {', '.join(DEVICE_BACKENDS)}"
            )


@dataclass(frozen=True)
class QMSettings:
    """
    External QM force provider settings.

    Attributes:
        timeout: Seconds allowed per force evaluation; 0 disables the watchdog.
    """

    timeout: float = 3600.0

    def __post_init__(self) -> None:
        if self.timeout < 0.0:
            raise ConfigurationError("QM timeout cannot be negative")


_SECTIONS = {
    "timings": TimingsSettings,
    "potential": PotentialSettings,
    "constraints": ConstraintSettings,
    "thermostat": ThermostatSettings,
    "manostat": ManostatSettings,
    "device": DeviceSettings,
    "qm": QMSettings,
}


@dataclass(frozen=True)
class SimulationConfig:
    """Complete run configuration, constructed once at startup."""

    timings: TimingsSettings = field(default_factory=TimingsSettings)
    potential: PotentialSettings = field(default_factory=PotentialSettings)
    constraints: ConstraintSettings = field(default_factory=ConstraintSettings)
    thermostat: ThermostatSettings = field(default_factory=ThermostatSettings)
    manostat: ManostatSettings = field(default_factory=ManostatSettings)
    device: DeviceSettings = field(default_factory=DeviceSettings)
    qm: QMSettings = field(default_factory=QMSettings)
    virial: str = "atomic"

    def __post_init__(self) -> None:
        if self.virial not in VIRIAL_TYPES:
            raise ConfigurationError(
                f'Invalid virial "{self.virial}". '
                f"Possible options are: {', '.join(VIRIAL_TYPES)}"
            )

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> SimulationConfig:
        """
        Build a configuration from a nested mapping.

        Args:
            values: Mapping with optional sections "timings", "potential",
                "constraints", "thermostat", "manostat", "device", "qm" and
                the scalar key "virial".

        Returns:
            Validated SimulationConfig.

        Raises:
            ConfigurationError: On unknown sections or keys, or invalid values.
        """
        kwargs: dict[str, Any] = {}
        for key, value in values.items():
            if key == "virial":
                kwargs[key] = value
                continue
            section = _SECTIONS.get(key)
            if section is None:
                raise ConfigurationError(f'Unknown configuration section "{key}"')
            allowed = {f.name for f in fields(section)}
            unknown = set(value) - allowed
            if unknown:
                raise ConfigurationError(
                    f"Unknown keys in section {key}: {', '.join(sorted(unknown))}"
                )
            kwargs[key] = section(**value)
        return cls(**kwargs)
