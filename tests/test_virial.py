"""Tests for the atomic and molecular virial."""

import numpy as np
import pytest

from mdstep.config import PotentialSettings
from mdstep.exceptions import ConfigurationError
from mdstep.physical_data import PhysicalData
from mdstep.potential import LennardJones, create_potential
from mdstep.system import Atom, Box, Molecule, SimulationState
from mdstep.virial import Virial, VirialMolecular, create_virial


@pytest.fixture
def boundary_dimer():
    """Two argon atoms interacting through the periodic boundary."""
    return SimulationState.from_arrays(
        positions=[[0.5, 10.0, 10.0], [16.5, 10.0, 10.0]],
        masses=[39.948, 39.948],
        box=Box.cubic(20.0),
    )


@pytest.fixture
def lj_potential():
    """Brute-force argon potential with a 9 A cutoff."""
    return create_potential(
        PotentialSettings(cutoff=9.0),
        LennardJones.from_epsilon_sigma([0.2379], [3.405]),
    )


class TestAtomicVirial:
    """Test the atomic virial with shift forces."""

    def test_minimum_image_identity(self, boundary_dimer, lj_potential):
        """Test sum F x + shift forces equals the pair sum f . dxyz."""
        data = PhysicalData()
        with boundary_dimer.flat() as view:
            view.forces.fill(0.0)
            view.shift_forces.fill(0.0)
            lj_potential.calculate_forces(view, data)
            pair_force = view.forces[0].copy()
            assert np.any(view.shift_forces != 0.0)

            Virial().calculate_virial(view, data)
            assert np.allclose(view.shift_forces, 0.0)

        dxyz = np.array([4.0, 0.0, 0.0])
        assert np.allclose(data.virial, pair_force * dxyz)
        assert data.virial[0] < 0.0

    def test_shift_forces_drained(self, boundary_dimer):
        """Test shift forces contribute once and are then reset."""
        data = PhysicalData()
        with boundary_dimer.flat() as view:
            view.forces.fill(0.0)
            view.shift_forces[:] = [[1.0, 2.0, 3.0], [0.5, 0.0, 0.0]]
            Virial().calculate_virial(view, data)
            first = data.virial.copy()
            Virial().calculate_virial(view, data)
            second = data.virial.copy()

        assert np.allclose(first, [1.5, 2.0, 3.0])
        assert np.allclose(second, 0.0)


class TestMolecularVirial:
    """Test the intramolecular correction."""

    def test_forces_act_on_centers(self):
        """Test the molecular virial uses the molecule centers of mass."""
        atoms = [
            Atom("C", 12.011, position=[2.0, 2.0, 2.0]),
            Atom("O", 15.999, position=[3.13, 2.0, 2.0]),
            Atom("C", 12.011, position=[6.0, 7.0, 5.0]),
            Atom("O", 15.999, position=[6.0, 7.0, 6.13]),
        ]
        molecules = [
            Molecule.from_atoms("co", 2, 0, 2, bonds=[(0, 1)]),
            Molecule.from_atoms("co", 2, 2, 2, bonds=[(0, 1)]),
        ]
        state = SimulationState(atoms, Box.cubic(10.0), molecules)
        forces = np.array(
            [[1.0, -2.0, 0.5], [0.3, 0.1, -1.0], [-0.8, 1.5, 0.2], [-0.5, 0.4, 0.3]]
        )
        atomic = PhysicalData()
        molecular = PhysicalData()

        with state.flat() as view:
            view.forces[:] = forces
            centers = view.centers_of_mass[view.molecule_indices]
            VirialMolecular().calculate_virial(view, molecular)
            Virial().calculate_virial(view, atomic)
            positions = view.positions.copy()

        assert np.allclose(atomic.virial, np.sum(forces * positions, axis=0))
        assert np.allclose(molecular.virial, np.sum(forces * centers, axis=0))

    def test_create(self):
        """Test the factory maps names to virial classes."""
        assert type(create_virial("atomic")) is Virial
        assert type(create_virial("molecular")) is VirialMolecular
        with pytest.raises(ConfigurationError):
            create_virial("tensor")
