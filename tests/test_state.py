"""Tests for SimulationState and its flat view."""

import numpy as np
import pytest

from mdstep.constants import BOLTZMANN_CONSTANT_KCAL_PER_MOL, KINETIC_ENERGY_FACTOR
from mdstep.exceptions import StateAccessError
from mdstep.system import Atom, Box, Molecule, SimulationState
from mdstep.system.topology import PAIR_EXCLUDED, PAIR_FULL, PAIR_SCALED_14


@pytest.fixture
def water_pair():
    """Two three-atom molecules, the second straddling the box boundary."""
    atoms = [
        Atom("O", 15.999, position=[5.0, 5.0, 5.0], velocity=[100.0, 0.0, 0.0]),
        Atom("H", 1.008, position=[5.8, 5.6, 5.0]),
        Atom("H", 1.008, position=[4.2, 5.6, 5.0]),
        Atom("O", 15.999, position=[0.2, 2.0, 2.0], velocity=[0.0, -50.0, 0.0]),
        Atom("H", 1.008, position=[9.6, 2.0, 2.0]),
        Atom("H", 1.008, position=[0.8, 2.6, 2.0]),
    ]
    molecules = [
        Molecule.from_atoms("water", 1, 0, 3, bonds=[(0, 1), (0, 2)]),
        Molecule.from_atoms("water", 1, 3, 3, bonds=[(0, 1), (0, 2)]),
    ]
    return SimulationState(atoms, Box.cubic(10.0), molecules)


class TestSimulationStateCreation:
    """Test state construction."""

    def test_from_arrays(self):
        """Test the array factory fills defaults."""
        state = SimulationState.from_arrays(
            positions=np.zeros((3, 3)), masses=[1.0, 2.0, 3.0], box=Box.cubic(5.0)
        )
        assert state.n_atoms == 3
        assert len(state.molecules) == 3
        assert all(atom.name == "X" for atom in state.atoms)
        assert np.allclose(state.atoms[1].velocity, 0.0)

    def test_from_arrays_shape_mismatch(self):
        """Test mismatching positions are rejected."""
        with pytest.raises(ValueError, match="incompatible"):
            SimulationState.from_arrays(
                positions=np.zeros((2, 3)), masses=[1.0, 2.0, 3.0], box=Box.cubic(5.0)
            )

    def test_atom_without_mass(self):
        """Test atoms must have a positive mass."""
        with pytest.raises(ValueError, match="positive mass"):
            Atom("X", 0.0)

    def test_unassigned_atom(self):
        """Test every atom must belong to a molecule."""
        atoms = [Atom("A", 1.0), Atom("B", 1.0)]
        with pytest.raises(ValueError, match="belong to no molecule"):
            SimulationState(
                atoms, Box.cubic(5.0), [Molecule("m", 0, atom_indices=(0,))]
            )

    def test_overlapping_molecules(self):
        """Test molecules may not share atoms."""
        atoms = [Atom("A", 1.0), Atom("B", 1.0)]
        molecules = [
            Molecule("m1", 0, atom_indices=(0, 1)),
            Molecule("m2", 0, atom_indices=(1,)),
        ]
        with pytest.raises(ValueError, match="shares atoms"):
            SimulationState(atoms, Box.cubic(5.0), molecules)


class TestFlatView:
    """Test flatten / de-flatten and access rules."""

    def test_round_trip(self, water_pair):
        """Test modifications in the view reach the object view."""
        with water_pair.flat() as view:
            assert view.positions.shape == (6, 3)
            view.positions[0] += 0.1
            view.velocities[2] = [1.0, 2.0, 3.0]

        assert np.allclose(water_pair.atoms[0].position, [5.1, 5.1, 5.1])
        assert np.allclose(water_pair.atoms[2].velocity, [1.0, 2.0, 3.0])

    def test_unchanged_round_trip(self, water_pair):
        """Test flatten followed by de-flatten is the identity."""
        before = [atom.position.copy() for atom in water_pair.atoms]
        view = water_pair.flatten()
        water_pair.deflatten(view)
        after = [atom.position for atom in water_pair.atoms]
        assert np.allclose(before, after)

    def test_object_view_blocked_while_flattened(self, water_pair):
        """Test the object view cannot be used during a flat view."""
        with water_pair.flat():
            assert water_pair.is_flattened
            with pytest.raises(StateAccessError):
                _ = water_pair.atoms
            with pytest.raises(StateAccessError):
                _ = water_pair.box
        assert not water_pair.is_flattened
        assert len(water_pair.atoms) == 6

    def test_double_flatten(self, water_pair):
        """Test only one flat view can be acquired."""
        with water_pair.flat():
            with pytest.raises(StateAccessError, match="already flattened"):
                water_pair.flatten()

    def test_view_released_after_block(self, water_pair):
        """Test a released view cannot be used."""
        with water_pair.flat() as view:
            pass
        assert not view.is_live
        with pytest.raises(StateAccessError):
            _ = view.positions

    def test_exception_discards_changes(self, water_pair):
        """Test a failing block leaves the object view untouched."""
        with pytest.raises(RuntimeError):
            with water_pair.flat() as view:
                view.positions[:] = 0.0
                raise RuntimeError("step failed")
        assert np.allclose(water_pair.atoms[0].position, [5.0, 5.0, 5.0])
        assert not water_pair.is_flattened

    def test_deflatten_foreign_view(self, water_pair):
        """Test a view of another state is rejected."""
        other = SimulationState.from_arrays(
            positions=np.zeros((1, 3)), masses=[1.0], box=Box.cubic(5.0)
        )
        view = other.flatten()
        with pytest.raises(StateAccessError):
            water_pair.deflatten(view)


class TestDerivedQuantities:
    """Test centers of mass and kinetics."""

    def test_center_of_mass_across_boundary(self, water_pair):
        """Test the center of a molecule split by the boundary is inside it."""
        com = water_pair.molecules[1].center_of_mass
        masses = np.array([15.999, 1.008, 1.008])
        unwrapped = np.array([[0.2, 2.0, 2.0], [-0.4, 2.0, 2.0], [0.8, 2.6, 2.0]])
        expected = masses @ unwrapped / masses.sum()
        expected = Box.cubic(10.0).wrap_positions(expected[np.newaxis])[0]
        assert np.allclose(com, expected)

    def test_kinetic_energy(self, water_pair):
        """Test kinetic energy from masses and velocities."""
        with water_pair.flat() as view:
            kinetic = view.kinetic_energy()
        expected = KINETIC_ENERGY_FACTOR * 15.999 * (100.0**2 + 50.0**2)
        assert np.isclose(kinetic, expected)

    def test_temperature(self, water_pair):
        """Test temperature uses 3N - 3 degrees of freedom."""
        with water_pair.flat() as view:
            kinetic = view.kinetic_energy()
            temperature = view.temperature()
            assert view.degrees_of_freedom == 15
        assert np.isclose(
            temperature, 2.0 * kinetic / (15 * BOLTZMANN_CONSTANT_KCAL_PER_MOL)
        )

    def test_constrained_degrees_of_freedom(self, water_pair):
        """Test constrained degrees of freedom reduce the count."""
        water_pair.n_constrained_dof = 6
        with water_pair.flat() as view:
            assert view.degrees_of_freedom == 9

    def test_molecular_kinetic_energy(self, water_pair):
        """Test center-of-mass kinetic energy of each molecule."""
        with water_pair.flat() as view:
            molecular = view.molecular_kinetic_energy()
        mass = 15.999 + 2 * 1.008
        expected = KINETIC_ENERGY_FACTOR * (
            (15.999 * 100.0) ** 2 / mass + (15.999 * 50.0) ** 2 / mass
        )
        assert np.isclose(molecular, expected)

    def test_momentum(self, water_pair):
        """Test total linear momentum."""
        with water_pair.flat() as view:
            momentum = view.momentum()
        assert np.allclose(momentum, [15.999 * 100.0, -15.999 * 50.0, 0.0])


class TestTopology:
    """Test the index view of molecules."""

    def test_molecule_indices(self, water_pair):
        """Test atoms map to their molecule."""
        topology = water_pair.topology
        assert topology.n_molecules == 2
        assert topology.molecule_indices.tolist() == [0, 0, 0, 1, 1, 1]
        assert topology.molecule_types.tolist() == [1] * 6

    def test_pair_classes(self):
        """Test bond distance classes of a four-atom chain."""
        atoms = [Atom(name, 12.0) for name in "ABCDE"]
        chain = Molecule(
            "chain",
            0,
            atom_indices=(0, 1, 2, 3, 4),
            bonds=[(0, 1), (1, 2), (2, 3), (3, 4)],
        )
        topology = SimulationState(atoms, Box.cubic(20.0), [chain]).topology
        classes = {
            tuple(pair): cls
            for pair, cls in zip(
                topology.intra_pairs.tolist(), topology.intra_classes.tolist()
            )
        }
        assert classes[(0, 1)] == PAIR_EXCLUDED
        assert classes[(0, 2)] == PAIR_EXCLUDED
        assert classes[(0, 3)] == PAIR_SCALED_14
        assert classes[(0, 4)] == PAIR_FULL

    def test_scaled_intra_pairs(self):
        """Test 1-4 pairs get the configured scale factors."""
        atoms = [Atom(name, 12.0) for name in "ABCD"]
        chain = Molecule(
            "chain", 0, atom_indices=(0, 1, 2, 3), bonds=[(0, 1), (1, 2), (2, 3)]
        )
        topology = SimulationState(atoms, Box.cubic(20.0), [chain]).topology
        pairs, coulomb_scale, non_coulomb_scale = topology.scaled_intra_pairs(0.5, 0.8)
        assert pairs.tolist() == [[0, 3]]
        assert np.allclose(coulomb_scale, [0.5])
        assert np.allclose(non_coulomb_scale, [0.8])
