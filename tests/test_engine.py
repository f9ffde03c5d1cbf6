"""Tests for the MD simulation engine."""

import time
from dataclasses import FrozenInstanceError

import numpy as np
import pytest

from mdstep.config import SimulationConfig
from mdstep.constraints import BondConstraint, MShakeReference
from mdstep.engines import CallbackReporter, EnergyReporter, LogReporter, MDEngine
from mdstep.exceptions import (
    ConfigurationError,
    ConsistencyError,
    ConvergenceError,
    CouplingError,
    DeviceError,
    IntegratorStateError,
    QMTimeoutError,
)
from mdstep.integrators import IntegratorPhase
from mdstep.potential import LennardJones, Morse
from mdstep.qm import QMRunner
from mdstep.system import Atom, Box, Molecule, SimulationState

ARGON_MASS = 39.948
ARGON_LJ = ([0.2379], [3.405])


def _argon_lj():
    return LennardJones.from_epsilon_sigma(*ARGON_LJ)


def _thermal_velocities(rng, n_atoms, mass, temperature):
    """Maxwell-Boltzmann velocities in Angstrom/s without net momentum."""
    sigma = np.sqrt(1.380649e-23 * temperature / (mass * 1.66053906660e-27)) * 1e10
    velocities = rng.normal(scale=sigma, size=(n_atoms, 3))
    return velocities - velocities.mean(axis=0)


def _argon_crystal():
    """27 argon atoms on a 4 A grid in a 12 A box at about 100 K."""
    grid = np.array(
        [[x, y, z] for x in range(3) for y in range(3) for z in range(3)],
        dtype=np.float64,
    )
    rng = np.random.default_rng(42)
    return SimulationState.from_arrays(
        positions=grid * 4.0 + 2.0,
        masses=np.full(27, ARGON_MASS),
        box=Box.cubic(12.0),
        velocities=_thermal_velocities(rng, 27, ARGON_MASS, 100.0),
    )


@pytest.fixture
def argon_crystal():
    return _argon_crystal()


@pytest.fixture
def argon_dimer():
    """Two argon atoms at rest, slightly beyond the potential minimum."""
    return SimulationState.from_arrays(
        positions=[[8.0, 10.0, 10.0], [12.0, 10.0, 10.0]],
        masses=[ARGON_MASS, ARGON_MASS],
        box=Box.cubic(20.0),
    )


def _config(**sections):
    values = {"timings": {"timestep": 2.0}, "potential": {"cutoff": 6.0}}
    values.update(sections)
    return SimulationConfig.from_dict(values)


class ConstantEnergyRunner(QMRunner):
    """QM provider adding a constant energy and no force."""

    def execute(self, positions, box, token):
        return 1.25, np.zeros_like(positions)


class PollingRunner(QMRunner):
    """QM provider that never finishes unless cancelled."""

    def execute(self, positions, box, token):
        while True:
            token.raise_if_cancelled()
            time.sleep(0.01)


class TestEngineSetup:
    """Test building an engine from a configuration."""

    def test_from_config(self, argon_crystal):
        """Test components are selected from the configuration."""
        engine = MDEngine.from_config(argon_crystal, _config(), _argon_lj())
        assert engine.integrator.timestep == 2.0
        assert engine.integrator.phase is IntegratorPhase.UNINITIALIZED
        assert engine.potential.cutoff == 6.0
        assert engine.thermostat.target_temperature is None
        assert engine.manostat.target_pressure is None
        assert engine.device.device_id == 0
        assert engine.constraints.n_constrained_dof == 0

    def test_cutoff_too_large(self, argon_crystal):
        """Test the cutoff must fit into half the box."""
        config = _config(potential={"cutoff": 6.5})
        with pytest.raises(ConfigurationError, match="half the smallest box"):
            MDEngine.from_config(argon_crystal, config, _argon_lj())

    def test_law_mismatch(self, argon_crystal):
        """Test the pair law must match the configured type."""
        config = _config(potential={"cutoff": 6.0, "non_coulomb_type": "morse"})
        with pytest.raises(ConfigurationError, match="does not match"):
            MDEngine.from_config(argon_crystal, config, _argon_lj())
        engine = MDEngine.from_config(
            argon_crystal, config, Morse([0.2], [1.5], [3.8])
        )
        assert engine.potential.kernel.non_coulomb.kind == "morse"

    def test_bond_constraint_out_of_range(self, argon_dimer):
        """Test constraints must reference existing atoms."""
        config = _config(constraints={"shake_active": True})
        with pytest.raises(ConsistencyError, match="references atom 5"):
            MDEngine.from_config(
                argon_dimer,
                config,
                _argon_lj(),
                bond_constraints=[BondConstraint(0, 5, 1.0)],
            )

    def test_invalid_device(self, argon_dimer):
        """Test an unusable device fails at setup."""
        config = _config(device={"backend": "cpu", "device_id": 2})
        with pytest.raises(DeviceError, match="out of range"):
            MDEngine.from_config(argon_dimer, config, _argon_lj())


class TestEngineStep:
    """Test single steps."""

    def test_snapshot(self, argon_crystal):
        """Test a step returns a complete, immutable snapshot."""
        engine = MDEngine.from_config(argon_crystal, _config(), _argon_lj())
        engine.initialize()
        data = engine.step()

        assert data.step == 1
        assert np.isclose(data.simulation_time, 0.002)
        assert data.temperature > 0.0
        assert data.non_coulomb_energy < 0.0
        assert data.coulomb_energy == 0.0
        assert np.isclose(data.volume, 1728.0)
        assert np.allclose(data.momentum, 0.0, atol=100.0)
        assert engine.last_data is data
        assert engine.timings.step == 1
        with pytest.raises(FrozenInstanceError):
            data.temperature = 0.0
        with pytest.raises(ValueError):
            data.virial[0] = 0.0

    def test_double_initialize(self, argon_crystal):
        """Test initialization happens once."""
        engine = MDEngine.from_config(argon_crystal, _config(), _argon_lj())
        engine.initialize()
        with pytest.raises(IntegratorStateError):
            engine.initialize()

    def test_step_before_initialize(self, argon_crystal):
        """Test stepping requires initialization and leaves the state alone."""
        engine = MDEngine.from_config(argon_crystal, _config(), _argon_lj())
        before = [atom.position.copy() for atom in argon_crystal.atoms]
        with pytest.raises(IntegratorStateError):
            engine.step()
        assert not argon_crystal.is_flattened
        assert np.allclose([atom.position for atom in argon_crystal.atoms], before)

    def test_convergence_failure_reports_step(self):
        """Test a failing constraint names the step and discards it."""
        state = SimulationState.from_arrays(
            positions=[[8.0, 10.0, 10.0], [11.0, 10.0, 10.0]],
            masses=[ARGON_MASS, ARGON_MASS],
            box=Box.cubic(20.0),
        )
        config = _config(constraints={"shake_active": True, "shake_max_iter": 0})
        engine = MDEngine.from_config(
            state, config, _argon_lj(), bond_constraints=[BondConstraint(0, 1, 3.5)]
        )
        engine.initialize()
        before = [atom.position.copy() for atom in state.atoms]

        with pytest.raises(ConvergenceError) as excinfo:
            engine.step()

        assert excinfo.value.solver == "SHAKE"
        assert excinfo.value.step == 1
        assert "at step 1" in str(excinfo.value)
        assert engine.timings.step == 0
        assert engine.integrator.phase is IntegratorPhase.READY
        assert np.allclose([atom.position for atom in state.atoms], before)

    def test_device_error_before_step(self, argon_crystal):
        """Test recorded device errors abort the next step."""
        engine = MDEngine.from_config(argon_crystal, _config(), _argon_lj())
        engine.initialize()
        engine.device.add_error("kernel launch failed")
        with pytest.raises(DeviceError, match="Simulation step"):
            engine.step()
        engine.step()
        assert engine.timings.step == 1

    def test_qm_energy_in_snapshot(self, argon_dimer):
        """Test QM provider energies enter the potential energy."""
        config = _config(potential={"cutoff": 9.0})
        engine = MDEngine.from_config(
            argon_dimer, config, _argon_lj(), qm_runner=ConstantEnergyRunner()
        )
        engine.initialize()
        data = engine.step()
        assert data.qm_energy == 1.25
        assert np.isclose(
            data.potential_energy, data.non_coulomb_energy + data.coulomb_energy + 1.25
        )
        assert engine.timer.counts["qm"] == 2

    def test_qm_timeout_from_config(self, argon_dimer):
        """Test the configured QM timeout replaces the runner default."""
        config = _config(potential={"cutoff": 9.0}, qm={"timeout": 0.05})
        runner = PollingRunner()
        engine = MDEngine.from_config(
            argon_dimer, config, _argon_lj(), qm_runner=runner
        )
        assert runner.timeout == 0.05
        with pytest.raises(QMTimeoutError, match="timeout"):
            engine.initialize()


class TestEngineRun:
    """Test running many steps."""

    def test_run_configured_steps(self, argon_crystal):
        """Test run without a count uses the configured number of steps."""
        config = _config(timings={"timestep": 2.0, "n_steps": 12})
        engine = MDEngine.from_config(argon_crystal, config, _argon_lj())
        reporter = EnergyReporter(frequency=5)
        engine.add_reporter(reporter)

        engine.run()

        assert engine.timings.step == 12
        assert reporter.steps.tolist() == [5, 10]
        assert np.allclose(reporter.times, [0.01, 0.02])
        assert engine.performance["total_steps"] == 12
        assert not engine.is_running

    def test_stop(self, argon_crystal):
        """Test stop ends the loop after the current step."""
        engine = MDEngine.from_config(argon_crystal, _config(), _argon_lj())
        seen = []

        def stop_at_three(data):
            seen.append(data.step)
            if data.step == 3:
                engine.stop()

        engine.add_reporter(CallbackReporter(stop_at_three))
        engine.run(10)
        assert seen == [1, 2, 3]
        assert engine.timings.step == 3

    def test_finish(self, argon_crystal):
        """Test a finished engine refuses further steps."""
        engine = MDEngine.from_config(argon_crystal, _config(), _argon_lj())
        engine.run(2)
        engine.finish()
        with pytest.raises(IntegratorStateError):
            engine.step()

    def test_log_reporter(self, argon_crystal, caplog):
        """Test step lines are written to the log."""
        engine = MDEngine.from_config(argon_crystal, _config(), _argon_lj())
        engine.add_reporter(LogReporter(frequency=2))
        with caplog.at_level("INFO", logger="mdstep.engines.reporters"):
            engine.run(4)
        lines = [r.getMessage() for r in caplog.records if "E_tot" in r.getMessage()]
        assert len(lines) == 2
        assert lines[0].startswith("step 2 ")

    def test_energy_conservation(self, argon_crystal):
        """Test NVE dynamics keeps the total energy."""
        config = _config(timings={"timestep": 2.0, "n_steps": 500})
        engine = MDEngine.from_config(argon_crystal, config, _argon_lj())
        reporter = EnergyReporter()
        engine.add_reporter(reporter)
        engine.run()

        total = reporter.total_energy
        drift = abs(np.mean(total[-50:]) - np.mean(total[:50]))
        assert drift < 1e-3 * np.mean(reporter.kinetic_energy)
        assert np.ptp(total) < 0.05

    def test_second_order_accuracy(self):
        """Test halving the timestep quarters the energy error."""
        errors = []
        for timestep, n_steps in ((10.0, 200), (5.0, 400)):
            state = SimulationState.from_arrays(
                positions=[[8.0, 10.0, 10.0], [12.0, 10.0, 10.0]],
                masses=[ARGON_MASS, ARGON_MASS],
                box=Box.cubic(20.0),
            )
            config = SimulationConfig.from_dict(
                {"timings": {"timestep": timestep}, "potential": {"cutoff": 9.0}}
            )
            engine = MDEngine.from_config(state, config, _argon_lj())
            reporter = EnergyReporter()
            engine.add_reporter(reporter)
            engine.initialize()
            initial = engine.step().total_energy
            engine.run(n_steps - 1)
            errors.append(np.max(np.abs(reporter.total_energy - initial)))

        assert 3.0 < errors[0] / errors[1] < 5.0


class TestCoupledRuns:
    """Test runs with thermostats, manostat and rigid molecules."""

    def test_berendsen_heats(self, argon_crystal):
        """Test weak coupling pulls the temperature toward the target."""
        config = _config(
            thermostat={
                "thermostat_type": "berendsen",
                "target_temperature": 200.0,
                "relaxation_time": 0.05,
            }
        )
        engine = MDEngine.from_config(argon_crystal, config, _argon_lj())
        reporter = EnergyReporter()
        engine.add_reporter(reporter)
        engine.run(300)
        assert np.mean(reporter.temperature[-50:]) > 150.0

    def test_nose_hoover_records_chain_energies(self, argon_crystal):
        """Test the chain terms enter the conserved energy."""
        config = _config(
            thermostat={"thermostat_type": "nose-hoover", "target_temperature": 150.0}
        )
        engine = MDEngine.from_config(argon_crystal, config, _argon_lj())
        engine.initialize()
        for _ in range(5):
            data = engine.step()
        assert data.nose_hoover_momentum_energy > 0.0
        assert np.isclose(
            data.conserved_energy,
            data.total_energy
            + data.nose_hoover_momentum_energy
            + data.nose_hoover_friction_energy,
        )

    def test_friction_force_not_in_virial(self):
        """Test the virial only sees the conservative forces."""
        plain = MDEngine.from_config(_argon_crystal(), _config(), _argon_lj())
        config = _config(
            thermostat={"thermostat_type": "nose-hoover", "target_temperature": 150.0}
        )
        coupled = MDEngine.from_config(_argon_crystal(), config, _argon_lj())
        plain.initialize()
        coupled.initialize()
        coupled.thermostat.chi[0] = 1e-13

        plain_data = plain.step()
        coupled_data = coupled.step()

        assert not np.isclose(coupled_data.temperature, plain_data.temperature)
        assert np.allclose(coupled_data.virial, plain_data.virial, rtol=1e-12)

    def test_failed_step_restores_chain(self, argon_crystal):
        """Test a coupling failure leaves the thermostat chain untouched."""
        config = _config(
            thermostat={"thermostat_type": "nose-hoover", "target_temperature": 150.0},
            manostat={
                "manostat_type": "berendsen",
                "target_pressure": 1e9,
                "relaxation_time": 0.001,
                "compressibility": 1.0,
            },
        )
        engine = MDEngine.from_config(argon_crystal, config, _argon_lj())
        engine.initialize()
        engine.thermostat.chi[:] = [1e-13, -2e-14, 3e-15]
        chi = engine.thermostat.chi.copy()
        zeta = engine.thermostat.zeta.copy()

        with pytest.raises(CouplingError, match="non-positive"):
            engine.step()

        assert np.array_equal(engine.thermostat.chi, chi)
        assert np.array_equal(engine.thermostat.zeta, zeta)
        assert engine.timings.step == 0
        assert engine.integrator.phase is IntegratorPhase.READY

    def test_berendsen_manostat_changes_volume(self, argon_crystal):
        """Test the box follows the pressure coupling."""
        config = _config(
            manostat={
                "manostat_type": "berendsen",
                "target_pressure": 1.0,
                "relaxation_time": 0.1,
                "compressibility": 1e-4,
            }
        )
        engine = MDEngine.from_config(argon_crystal, config, _argon_lj())
        engine.run(10)
        data = engine.last_data
        assert not np.isclose(data.volume, 1728.0)
        assert np.isclose(argon_crystal.box.volume, data.volume)

    def test_rigid_water(self):
        """Test M-Shake keeps water molecules rigid during a run."""
        reference = np.array(
            [[0.0, 0.0, 0.0], [0.9572, 0.0, 0.0], [-0.2399872, 0.9266272, 0.0]]
        )
        atoms = []
        molecules = []
        rng = np.random.default_rng(5)
        for m, origin in enumerate(([3.0, 3.0, 3.0], [6.5, 3.5, 3.0])):
            for name, mass, charge, position in zip(
                ("O", "H", "H"),
                (15.999, 1.008, 1.008),
                (-0.834, 0.417, 0.417),
                reference + origin,
            ):
                atoms.append(
                    Atom(
                        name,
                        mass,
                        charge=charge,
                        type_index=0 if name == "O" else 1,
                        position=position,
                        velocity=rng.normal(scale=5e12, size=3),
                    )
                )
            molecules.append(
                Molecule.from_atoms("water", 1, 3 * m, 3, [(0, 1), (0, 2)])
            )
        state = SimulationState(atoms, Box.cubic(12.0), molecules)
        config = SimulationConfig.from_dict(
            {
                "timings": {"timestep": 1.0},
                "potential": {"cutoff": 6.0},
                "virial": "molecular",
            }
        )
        engine = MDEngine.from_config(
            state,
            config,
            LennardJones.from_epsilon_sigma([0.1521, 0.0], [3.1507, 1.0]),
            mshake_references=[MShakeReference(1, ("O", "H", "H"), reference)],
        )
        assert state.n_constrained_dof == 6
        engine.run(20)

        positions = np.array([atom.position for atom in state.atoms])
        box = state.box
        for m in range(2):
            o, h1, h2 = positions[3 * m : 3 * m + 3]
            assert np.isclose(box.minimum_image_distance(o, h1), 0.9572, atol=1e-5)
            assert np.isclose(box.minimum_image_distance(o, h2), 0.9572, atol=1e-5)
