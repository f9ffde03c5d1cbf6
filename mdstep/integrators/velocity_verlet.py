"""Velocity Verlet integrator implementation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..constants import FS_TO_S, V_VERLET_VELOCITY_FACTOR
from ..device import CPUDeviceAPI, Device
from ..exceptions import IntegratorStateError
from .base import Integrator, IntegratorPhase

if TYPE_CHECKING:
    from ..system import FlatView

logger = logging.getLogger(__name__)


class VelocityVerletIntegrator(Integrator):
    """
    Velocity Verlet integrator split into two half steps.

    Algorithm:
        v(t + dt/2) = v(t) + 0.5 * dt * F(t) / m     # first_step
        r(t + dt) = r(t) + dt * v(t + dt/2)          # first_step
        F(t + dt) evaluated by the caller            # forces_evaluated
        v(t + dt) = v(t + dt/2) + 0.5 * dt * F(t + dt) / m  # second_step

    Positions are in Angstrom, velocities in Angstrom/s, forces in
    kcal/(mol Angstrom), masses in amu and the timestep in fs; the unit
    conversions live in V_VERLET_VELOCITY_FACTOR and FS_TO_S.

    After the drift, first_step wraps positions back into the periodic box
    and refreshes the molecular centers of mass, so the force evaluation
    that follows always sees wrapped coordinates.

    The per-atom arithmetic runs on the device: arrays are transferred with
    ``device.to_device`` and copied back with ``device.to_host``.

    Args:
        timestep: Integration timestep in fs.
        device: Compute device; a CPU device is created when omitted.
    """

    def __init__(self, timestep: float, device: Device | None = None) -> None:
        if timestep <= 0.0:
            raise ValueError(f"Timestep must be positive, got {timestep}")
        self._timestep = timestep
        self._device = device if device is not None else Device(CPUDeviceAPI())
        self._phase = IntegratorPhase.UNINITIALIZED

    @property
    def timestep(self) -> float:
        """Return the integration timestep in fs."""
        return self._timestep

    @property
    def phase(self) -> IntegratorPhase:
        return self._phase

    @property
    def device(self) -> Device:
        return self._device

    def _transition(
        self, action: str, allowed: tuple[IntegratorPhase, ...], new: IntegratorPhase
    ) -> None:
        if self._phase not in allowed:
            expected = " or ".join(phase.value for phase in allowed)
            raise IntegratorStateError(
                f"Cannot call {action} in phase '{self._phase.value}'; "
                f"expected {expected}"
            )
        self._phase = new

    def initialize(self) -> None:
        self._transition(
            "initialize", (IntegratorPhase.UNINITIALIZED,), IntegratorPhase.READY
        )
        logger.debug("Velocity Verlet ready with timestep %g fs", self._timestep)

    def first_step(self, view: FlatView) -> None:
        """
        Half kick, drift and force reset.

        Positions are wrapped back into the box and the molecule centers of
        mass are recomputed afterwards.

        Raises:
            IntegratorStateError: If not called at the start of a step.
        """
        self._transition(
            "first_step",
            (IntegratorPhase.READY, IntegratorPhase.SECOND_HALF_STEP),
            IntegratorPhase.FIRST_HALF_STEP,
        )
        dt = self._timestep
        velocities, positions, forces, masses = self._device.to_device(
            view.velocities, view.positions, view.forces, view.masses
        )

        velocities += dt * forces / masses[:, None] * V_VERLET_VELOCITY_FACTOR
        positions += dt * velocities * FS_TO_S
        forces[...] = 0.0

        velocities, positions, forces = self._device.to_host(
            velocities, positions, forces
        )
        view.velocities[...] = velocities
        view.forces[...] = forces
        view.positions[...] = view.box.wrap_positions(positions)
        view.update_centers_of_mass()

    def forces_evaluated(self) -> None:
        """
        Raises:
            IntegratorStateError: If first_step has not run in this step.
        """
        self._transition(
            "forces_evaluated",
            (IntegratorPhase.FIRST_HALF_STEP,),
            IntegratorPhase.FORCES_EVALUATED,
        )

    def second_step(self, view: FlatView) -> None:
        """
        Second half kick with the forces of the new positions.

        Raises:
            IntegratorStateError: If the forces of this step were not
                evaluated yet.
        """
        self._transition(
            "second_step",
            (IntegratorPhase.FORCES_EVALUATED,),
            IntegratorPhase.SECOND_HALF_STEP,
        )
        dt = self._timestep
        velocities, forces, masses = self._device.to_device(
            view.velocities, view.forces, view.masses
        )

        velocities += dt * forces / masses[:, None] * V_VERLET_VELOCITY_FACTOR

        (velocities,) = self._device.to_host(velocities)
        view.velocities[...] = velocities

    def abort_step(self) -> None:
        """Return to the start of a step after a failed, discarded step."""
        if self._phase in (
            IntegratorPhase.FIRST_HALF_STEP,
            IntegratorPhase.FORCES_EVALUATED,
        ):
            self._phase = IntegratorPhase.READY

    def finish(self) -> None:
        self._transition(
            "finish",
            (IntegratorPhase.READY, IntegratorPhase.SECOND_HALF_STEP),
            IntegratorPhase.FINISHED,
        )
