"""MD simulation engine implementation."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import numpy as np

from ..config import SimulationConfig
from ..constraints import BondConstraint, ConstraintSolver, MShake, MShakeReference
from ..device import Device, create_device
from ..exceptions import (
    ConfigurationError,
    ConsistencyError,
    ConvergenceError,
    IntegratorStateError,
)
from ..integrators import (
    Integrator,
    Manostat,
    Thermostat,
    VelocityVerletIntegrator,
    create_manostat,
    create_thermostat,
)
from ..physical_data import FrozenPhysicalData, PhysicalData
from ..potential import CoulombPotential, Potential, create_potential
from ..system import SectionTimer, SimulationState, Timings
from ..virial import Virial, create_virial
from .reporters import Reporter, ReporterGroup

if TYPE_CHECKING:
    from ..potential import NonCoulombPotential
    from ..qm import QMRunner
    from ..system import FlatView

logger = logging.getLogger(__name__)


class MDEngine:
    """
    Molecular dynamics simulation engine.

    Orchestrates one timestep over a single flat-view acquisition:
    - Constraint references and first half step (integrator)
    - SHAKE / M-Shake position projection
    - Forces (pair potential and optional QM provider)
    - Virial of the conservative forces, then thermostat force correction
    - Second half step and RATTLE velocity projection
    - Thermostat, kinetics, pressure and manostat

    Reporters then receive an immutable snapshot of the step's
    observables.

    Example usage:
        engine = MDEngine.from_config(
            state,
            SimulationConfig.from_dict({"timings": {"timestep": 1.0}}),
            LennardJones.from_epsilon_sigma([0.2379], [3.405]),
        )
        engine.add_reporter(EnergyReporter(frequency=10))
        engine.run(1000)

    Args:
        state: Simulation state; owned by the engine from now on.
        config: Run configuration.
        potential: Pair potential evaluator.
        integrator: Time integrator.
        constraints: Bond and rigid-body constraint solver.
        thermostat: Temperature coupling.
        manostat: Pressure coupling.
        virial: Virial evaluator.
        device: Compute device, checked at the start of every step.
        qm_runner: Optional external QM force provider.
    """

    def __init__(
        self,
        state: SimulationState,
        config: SimulationConfig,
        potential: Potential,
        integrator: Integrator,
        constraints: ConstraintSolver,
        thermostat: Thermostat,
        manostat: Manostat,
        virial: Virial,
        device: Device,
        qm_runner: QMRunner | None = None,
    ) -> None:
        self._state = state
        self._config = config
        self._potential = potential
        self._integrator = integrator
        self._constraints = constraints
        self._thermostat = thermostat
        self._manostat = manostat
        self._virial = virial
        self._device = device
        self._qm_runner = qm_runner

        self._state.n_constrained_dof = constraints.n_constrained_dof
        self._timings = Timings.from_settings(config.timings)
        self._data = PhysicalData()
        self._last: FrozenPhysicalData | None = None
        self._reporters = ReporterGroup()
        self._timer = SectionTimer()

        self._initialized = False
        self._running = False
        self._wall_time = 0.0
        self._steps_run = 0

    @classmethod
    def from_config(
        cls,
        state: SimulationState,
        config: SimulationConfig,
        non_coulomb: NonCoulombPotential,
        mshake_references: Sequence[MShakeReference] = (),
        bond_constraints: Sequence[BondConstraint] = (),
        qm_runner: QMRunner | None = None,
        coulomb: CoulombPotential | None = None,
    ) -> MDEngine:
        """
        Build an engine with every component selected from the configuration.

        All variant dispatch and cross-component validation happens here,
        once, so the step loop never branches on configuration.

        Args:
            state: Simulation state.
            config: Run configuration.
            non_coulomb: Short-range law matching the configured type.
            mshake_references: Rigid templates per molecule type.
            bond_constraints: SHAKE bond constraints.
            qm_runner: Optional external QM force provider.
            coulomb: Coulomb law; shifted-force at the cutoff by default.

        Returns:
            Ready-to-initialize MDEngine.

        Raises:
            ConfigurationError: On invalid or incompatible settings.
            ConsistencyError: If constraints do not fit the state.
            DeviceError: If the device cannot be bound.
        """
        _check_cutoff(state, config)
        _check_bond_constraints(state, bond_constraints)

        device = create_device(config.device)
        timestep = config.timings.timestep
        potential = create_potential(config.potential, non_coulomb, coulomb)

        mshake = None
        if mshake_references:
            mshake = MShake(mshake_references, config.constraints)
            mshake.bind(state)
        constraints = ConstraintSolver(config.constraints, bond_constraints, mshake)

        thermostat = create_thermostat(config.thermostat, timestep)
        manostat = create_manostat(
            config.manostat, timestep, molecular=config.virial == "molecular"
        )
        virial = create_virial(config.virial)
        integrator = VelocityVerletIntegrator(timestep, device)

        if qm_runner is not None:
            qm_runner.timeout = config.qm.timeout
            logger.info("QM timeout set to %g s", config.qm.timeout)

        return cls(
            state,
            config,
            potential,
            integrator,
            constraints,
            thermostat,
            manostat,
            virial,
            device,
            qm_runner,
        )

    @property
    def state(self) -> SimulationState:
        """Return current simulation state."""
        return self._state

    @property
    def config(self) -> SimulationConfig:
        return self._config

    @property
    def integrator(self) -> Integrator:
        return self._integrator

    @property
    def potential(self) -> Potential:
        return self._potential

    @property
    def constraints(self) -> ConstraintSolver:
        return self._constraints

    @property
    def thermostat(self) -> Thermostat:
        return self._thermostat

    @property
    def manostat(self) -> Manostat:
        return self._manostat

    @property
    def device(self) -> Device:
        return self._device

    @property
    def timings(self) -> Timings:
        return self._timings

    @property
    def timer(self) -> SectionTimer:
        """Return accumulated wall-clock time per step section."""
        return self._timer

    @property
    def last_data(self) -> FrozenPhysicalData | None:
        """Return the snapshot of the last completed step."""
        return self._last

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def performance(self) -> dict[str, float]:
        """Return performance statistics."""
        if self._wall_time == 0:
            return {"ns_per_day": 0.0, "steps_per_second": 0.0}

        steps_per_second = self._steps_run / self._wall_time
        # timestep in fs
        ns_per_day = steps_per_second * self._timings.timestep * 1e-6 * 86400

        return {
            "ns_per_day": ns_per_day,
            "steps_per_second": steps_per_second,
            "wall_time": self._wall_time,
            "total_steps": self._steps_run,
        }

    def add_reporter(self, reporter: Reporter) -> None:
        """Add a reporter."""
        self._reporters.add(reporter)

    def remove_reporter(self, reporter: Reporter) -> None:
        """Remove a reporter."""
        self._reporters.remove(reporter)

    def _compute_forces(self, view: FlatView) -> None:
        with self._timer.section("potential"):
            self._potential.calculate_forces(view, self._data)
        if self._qm_runner is not None:
            with self._timer.section("qm"):
                self._qm_runner.run(view, self._data)

    def initialize(self) -> None:
        """
        Evaluate the initial forces and make the integrator ready.

        Raises:
            IntegratorStateError: If called twice.
        """
        if self._initialized:
            raise IntegratorStateError("Engine is already initialized")
        self._device.check_errors("Initialization")
        self._data.reset()
        with self._state.flat() as view:
            view.forces.fill(0.0)
            view.shift_forces.fill(0.0)
            self._compute_forces(view)
            self._virial.calculate_virial(view, self._data)
        self._integrator.initialize()
        self._initialized = True
        logger.info(
            "Initialized %d atoms with %d constrained degrees of freedom",
            self._state.n_atoms,
            self._state.n_constrained_dof,
        )

    def step(self) -> FrozenPhysicalData:
        """
        Perform a single simulation step.

        If any part of the step fails, the state keeps its values from
        before the step.

        Returns:
            Snapshot of the step's observables.

        Raises:
            DeviceError: If the device reported errors.
            ConvergenceError: If a constraint solver fails; carries the step.
            IntegratorStateError: If the engine was not initialized.
        """
        self._device.check_errors("Simulation step")
        step = self._timings.step + 1
        timestep = self._timings.timestep
        data = self._data
        data.reset()
        saved_thermostat = self._thermostat.save_state()

        try:
            with self._state.flat() as view:
                with self._timer.section("integrator"):
                    self._thermostat.apply_thermostat_half_step(view, data)
                    self._constraints.calculate_constraint_bond_refs(view)
                    self._integrator.first_step(view)
                with self._timer.section("constraints"):
                    self._constraints.apply_shake(view, timestep)

                self._compute_forces(view)
                with self._timer.section("virial"):
                    self._virial.calculate_virial(view, data)
                self._integrator.forces_evaluated()
                self._thermostat.apply_thermostat_on_forces(view)

                with self._timer.section("integrator"):
                    self._integrator.second_step(view)
                with self._timer.section("constraints"):
                    self._constraints.apply_rattle(view, timestep)

                with self._timer.section("coupling"):
                    self._thermostat.apply_thermostat(view, data)
                    data.calculate_kinetics(view)
                    self._manostat.apply_manostat(view, data)
                    data.update_box_observables(view)
        except ConvergenceError as e:
            self._abort_step(saved_thermostat)
            raise e.at_step(step) from e
        except Exception:
            self._abort_step(saved_thermostat)
            raise

        self._timings.increment()
        snapshot = data.snapshot(self._timings.step, self._timings.simulation_time)
        self._last = snapshot
        self._reporters.report(snapshot)
        return snapshot

    def _abort_step(self, saved_thermostat: dict[str, Any]) -> None:
        self._integrator.abort_step()
        self._thermostat.restore_state(saved_thermostat)

    def run(self, n_steps: int | None = None) -> SimulationState:
        """
        Run simulation for a number of steps.

        Args:
            n_steps: Number of steps to run; defaults to the steps remaining
                of the configured count.

        Returns:
            Final simulation state.
        """
        if not self._initialized:
            self.initialize()
        if n_steps is None:
            n_steps = max(self._timings.n_steps - self._timings.step, 0)

        self._running = True
        self._reporters.initialize(self._state)
        start_time = time.perf_counter()
        completed = 0

        try:
            for _ in range(n_steps):
                if not self._running:
                    logger.info("Run stopped after %d steps", completed)
                    break
                self.step()
                completed += 1
        finally:
            self._wall_time += time.perf_counter() - start_time
            self._steps_run += completed
            self._reporters.finalize(self._state)
            self._running = False

        logger.info(
            "Completed %d steps (%.4f ps simulated)",
            completed,
            self._timings.simulation_time,
        )
        return self._state

    def stop(self) -> None:
        """Stop the running loop after the current step."""
        self._running = False

    def finish(self) -> None:
        """End the simulation; the integrator refuses further steps."""
        self._integrator.finish()


def _check_cutoff(state: SimulationState, config: SimulationConfig) -> None:
    cutoff = config.potential.cutoff
    half_width = float(np.min(state.box.perpendicular_widths)) / 2.0
    if cutoff > half_width:
        raise ConfigurationError(
            f"Cutoff {cutoff:g} A is larger than half the smallest box width "
            f"({half_width:g} A)"
        )


def _check_bond_constraints(
    state: SimulationState, bond_constraints: Sequence[BondConstraint]
) -> None:
    for bond in bond_constraints:
        for atom in (bond.atom1, bond.atom2):
            if not 0 <= atom < state.n_atoms:
                raise ConsistencyError(
                    f"Bond constraint {bond.atom1}-{bond.atom2} references atom "
                    f"{atom} but the system has {state.n_atoms} atoms"
                )
