"""Tests for pair laws, the pair kernel and the pair search variants."""

import numpy as np
import pytest

from mdstep.config import PotentialSettings
from mdstep.exceptions import ConfigurationError
from mdstep.physical_data import PhysicalData
from mdstep.potential import (
    BruteForcePotential,
    Buckingham,
    CellList,
    CellListPotential,
    CoulombPotential,
    LennardJones,
    Morse,
    create_non_coulomb,
    create_potential,
)
from mdstep.system import Atom, Box, Molecule, SimulationState

ARGON_EPSILON = 0.2379
ARGON_SIGMA = 3.405


@pytest.fixture
def argon_lj():
    """Single-type argon Lennard-Jones law."""
    return LennardJones.from_epsilon_sigma([ARGON_EPSILON], [ARGON_SIGMA])


@pytest.fixture
def argon_dimer():
    """Two argon atoms 4 Angstrom apart."""
    return SimulationState.from_arrays(
        positions=[[8.0, 10.0, 10.0], [12.0, 10.0, 10.0]],
        masses=[39.948, 39.948],
        box=Box.cubic(20.0),
    )


def _charged_molecules(box):
    """20 charged three-atom molecules on a jittered grid in a 15 A box."""
    rng = np.random.default_rng(7)
    centers = np.array(
        [[x, y, z] for x in range(3) for y in range(3) for z in range(3)],
        dtype=np.float64,
    )[:20]
    centers = centers * 5.0 + 2.5 + rng.uniform(-0.5, 0.5, size=(20, 3))
    offsets = np.array([[0.0, 0.0, 0.0], [0.96, 0.0, 0.0], [-0.24, 0.93, 0.0]])

    atoms = []
    molecules = []
    for m, center in enumerate(centers):
        for k, (name, mass, charge) in enumerate(
            [("O", 15.999, -0.8), ("H", 1.008, 0.4), ("H", 1.008, 0.4)]
        ):
            atoms.append(
                Atom(
                    name,
                    mass,
                    charge=charge,
                    type_index=0 if name == "O" else 1,
                    position=center + offsets[k],
                )
            )
        molecules.append(Molecule.from_atoms("water", 0, 3 * m, 3, [(0, 1), (0, 2)]))
    return SimulationState(atoms, box, molecules)


@pytest.fixture
def two_type_lj():
    """Lennard-Jones law for oxygen and hydrogen types."""
    return LennardJones.from_epsilon_sigma([0.1553, 0.02], [3.166, 1.0])


def _evaluate(potential, state):
    data = PhysicalData()
    with state.flat() as view:
        view.forces.fill(0.0)
        view.shift_forces.fill(0.0)
        potential.calculate_forces(view, data)
        forces = view.forces.copy()
        shift_forces = view.shift_forces.copy()
    return data, forces, shift_forces


class TestPairLaws:
    """Test the analytic pair laws."""

    @pytest.mark.parametrize(
        "law",
        [
            LennardJones.from_epsilon_sigma([ARGON_EPSILON], [ARGON_SIGMA]),
            Buckingham(a=[[1.0e5]], b=[[3.5]], c6=[[500.0]]),
            Morse(
                dissociation_energy=[[0.5]],
                well_width=[[1.5]],
                equilibrium_distance=[[3.0]],
            ),
        ],
    )
    def test_force_is_negative_energy_derivative(self, law):
        """Test F = -dV/dr by central differences."""
        r = np.array([3.2, 4.0, 5.5])
        types = np.zeros(3, dtype=np.int64)
        h = 1e-6
        energy_plus, _ = law.energy_and_force(r + h, types, types)
        energy_minus, _ = law.energy_and_force(r - h, types, types)
        _, force = law.energy_and_force(r, types, types)
        assert np.allclose(force, -(energy_plus - energy_minus) / (2 * h), rtol=1e-5)

    def test_lj_zero_at_sigma(self, argon_lj):
        """Test the unshifted LJ energy crosses zero at sigma."""
        types = np.zeros(1, dtype=np.int64)
        energy, _ = argon_lj.energy_and_force(np.array([ARGON_SIGMA]), types, types)
        assert np.isclose(energy[0], 0.0, atol=1e-12)

    def test_lj_minimum(self, argon_lj):
        """Test the LJ well depth at 2^(1/6) sigma."""
        types = np.zeros(1, dtype=np.int64)
        r_min = np.array([2.0 ** (1.0 / 6.0) * ARGON_SIGMA])
        energy, force = argon_lj.energy_and_force(r_min, types, types)
        assert np.isclose(energy[0], -ARGON_EPSILON)
        assert np.isclose(force[0], 0.0, atol=1e-10)

    def test_shifted_law_vanishes_at_cutoff(self, argon_lj):
        """Test energy and force go to zero at the cutoff."""
        types = np.zeros(1, dtype=np.int64)
        energy, force = argon_lj.evaluate(np.array([9.0 - 1e-9]), types, types, 9.0)
        assert np.isclose(energy[0], 0.0, atol=1e-9)
        assert np.isclose(force[0], 0.0, atol=1e-9)

    def test_coulomb_vanishes_at_cutoff(self):
        """Test shifted-force Coulomb energy and force vanish at the cutoff."""
        coulomb = CoulombPotential(cutoff=10.0)
        energy, force = coulomb.evaluate(np.array([10.0]), np.array([-0.64]))
        assert np.isclose(energy[0], 0.0)
        assert np.isclose(force[0], 0.0)

    def test_coulomb_sign(self):
        """Test opposite charges attract."""
        coulomb = CoulombPotential(cutoff=10.0)
        energy, force = coulomb.evaluate(np.array([3.0]), np.array([-1.0]))
        assert energy[0] < 0.0
        assert force[0] < 0.0

    def test_lorentz_berthelot(self, two_type_lj):
        """Test cross parameters follow the combining rules."""
        epsilon = np.sqrt(0.1553 * 0.02)
        sigma = 0.5 * (3.166 + 1.0)
        assert np.isclose(two_type_lj.c6[0, 1], 4.0 * epsilon * sigma**6)
        assert np.isclose(two_type_lj.c12[1, 0], 4.0 * epsilon * sigma**12)

    def test_asymmetric_parameters_rejected(self):
        """Test parameter matrices must be symmetric."""
        with pytest.raises(ConfigurationError, match="symmetric"):
            LennardJones(c6=[[1.0, 2.0], [3.0, 4.0]], c12=[[1.0, 1.0], [1.0, 1.0]])


class TestCreateNonCoulomb:
    """Test creation of non-Coulomb laws by name."""

    def test_lj_from_epsilon_sigma(self):
        """Test the LJ path with per-type parameters."""
        law = create_non_coulomb("lj", epsilon=[0.2], sigma=[3.0])
        assert isinstance(law, LennardJones)
        assert law.n_types == 1

    def test_morse(self):
        """Test creating a Morse law."""
        law = create_non_coulomb(
            "Morse",
            dissociation_energy=[[1.0]],
            well_width=[[1.0]],
            equilibrium_distance=[[1.0]],
        )
        assert law.kind == "morse"

    def test_unknown_kind(self):
        """Test unknown laws are reported with the options."""
        with pytest.raises(ConfigurationError, match="not implemented yet"):
            create_non_coulomb("guff")

    def test_invalid_parameters(self):
        """Test wrong parameter names become configuration errors."""
        with pytest.raises(ConfigurationError, match="Invalid parameters"):
            create_non_coulomb("buckingham", a=[[1.0]])


class TestPairKernel:
    """Test force accumulation of the brute-force evaluator."""

    def test_dimer_energy_and_forces(self, argon_lj, argon_dimer):
        """Test the energy and Newton's third law for two atoms."""
        settings = PotentialSettings(cutoff=9.0)
        potential = create_potential(settings, argon_lj)
        data, forces, _ = _evaluate(potential, argon_dimer)

        types = np.zeros(1, dtype=np.int64)
        expected, force = argon_lj.evaluate(np.array([4.0]), types, types, 9.0)
        assert np.isclose(data.non_coulomb_energy, expected[0])
        assert data.coulomb_energy == 0.0
        assert np.allclose(forces[0], -forces[1])
        # Attractive at 4 A: atom 0 is pulled toward atom 1 (+x)
        assert forces[0, 0] > 0.0
        assert np.isclose(forces[0, 0], -force[0])

    def test_minimum_image_pair(self, argon_lj):
        """Test atoms interact through the periodic boundary."""
        state = SimulationState.from_arrays(
            positions=[[1.0, 10.0, 10.0], [19.0, 10.0, 10.0]],
            masses=[39.948, 39.948],
            box=Box.cubic(20.0),
        )
        potential = create_potential(PotentialSettings(cutoff=9.0), argon_lj)
        data, forces, shift_forces = _evaluate(potential, state)

        types = np.zeros(1, dtype=np.int64)
        expected, _ = argon_lj.evaluate(np.array([2.0]), types, types, 9.0)
        assert np.isclose(data.non_coulomb_energy, expected[0])
        # Repulsive at 2 A: atom 0 is pushed away from its image at -1 A
        assert forces[0, 0] > 0.0
        assert np.any(shift_forces != 0.0)

    def test_beyond_cutoff(self, argon_lj, argon_dimer):
        """Test pairs beyond the cutoff do not interact."""
        potential = create_potential(PotentialSettings(cutoff=3.5), argon_lj)
        data, forces, _ = _evaluate(potential, argon_dimer)
        assert data.non_coulomb_energy == 0.0
        assert np.allclose(forces, 0.0)

    def test_law_must_match_settings(self, argon_lj):
        """Test the provided law must match the configured type."""
        settings = PotentialSettings(non_coulomb_type="buckingham", cutoff=9.0)
        with pytest.raises(ConfigurationError, match="does not match"):
            create_potential(settings, argon_lj)


class TestCellList:
    """Test the cell-list pair search."""

    def test_cell_counts(self):
        """Test cells are at least one cutoff wide."""
        cell_list = CellList(cutoff=4.0)
        cell_list.build(np.zeros((1, 3)), Box.orthorhombic(12.0, 9.0, 3.0))
        assert cell_list.n_cells == (3, 2, 1)

    def test_pairs_unique(self):
        """Test every candidate pair appears once with i < j."""
        rng = np.random.default_rng(3)
        positions = rng.uniform(0.0, 10.0, size=(40, 3))
        cell_list = CellList(cutoff=3.0)
        cell_list.build(positions, Box.cubic(10.0))
        pairs = cell_list.get_pairs()
        assert np.all(pairs[:, 0] < pairs[:, 1])
        assert len({tuple(p) for p in pairs.tolist()}) == len(pairs)

    def test_no_pair_within_cutoff_missed(self):
        """Test all pairs within the cutoff are candidates."""
        rng = np.random.default_rng(5)
        box = Box.cubic(10.0)
        positions = rng.uniform(0.0, 10.0, size=(40, 3))
        cell_list = CellList(cutoff=3.0)
        cell_list.build(positions, box)
        candidates = {tuple(p) for p in cell_list.get_pairs().tolist()}

        for i in range(40):
            for j in range(i + 1, 40):
                if box.minimum_image_distance(positions[i], positions[j]) < 3.0:
                    assert (i, j) in candidates

    @pytest.mark.parametrize(
        "box, cutoff",
        [
            (Box.cubic(15.0), 5.0),
            (Box.triclinic([[15.0, 0, 0], [3.0, 15.0, 0], [2.0, 2.0, 15.0]]), 4.5),
        ],
    )
    def test_equivalent_to_brute_force(self, box, cutoff, two_type_lj):
        """Test both evaluators give the same energies and forces."""
        state = _charged_molecules(box)
        brute = create_potential(PotentialSettings(cutoff=cutoff), two_type_lj)
        cell = create_potential(
            PotentialSettings(cutoff=cutoff, use_cell_list=True), two_type_lj
        )
        assert isinstance(brute, BruteForcePotential)
        assert isinstance(cell, CellListPotential)

        data_brute, forces_brute, shift_brute = _evaluate(brute, state)
        data_cell, forces_cell, shift_cell = _evaluate(cell, state)

        assert data_brute.non_coulomb_energy != 0.0
        assert np.isclose(
            data_brute.coulomb_energy, data_cell.coulomb_energy, rtol=1e-10, atol=0.0
        )
        assert np.isclose(
            data_brute.non_coulomb_energy,
            data_cell.non_coulomb_energy,
            rtol=1e-10,
            atol=0.0,
        )
        assert np.allclose(forces_brute, forces_cell, rtol=1e-10, atol=1e-10)
        assert np.allclose(
            shift_brute.sum(axis=0), shift_cell.sum(axis=0), rtol=1e-10, atol=1e-10
        )


class TestIntramolecular:
    """Test intramolecular pair handling."""

    @pytest.fixture
    def butane_like(self):
        """Four bonded atoms in a chain with unit charges."""
        atoms = [
            Atom("C", 12.0, charge=q, position=[5.0 + 1.5 * k, 10.0, 10.0])
            for k, q in enumerate([0.5, -0.5, 0.5, -0.5])
        ]
        chain = Molecule("chain", 0, (0, 1, 2, 3), bonds=((0, 1), (1, 2), (2, 3)))
        return SimulationState(atoms, Box.cubic(20.0), [chain])

    def test_excluded_by_default(self, butane_like, argon_lj):
        """Test atoms of the same molecule do not interact by default."""
        potential = create_potential(PotentialSettings(cutoff=9.0), argon_lj)
        data, forces, _ = _evaluate(potential, butane_like)
        assert data.coulomb_energy == 0.0
        assert np.allclose(forces, 0.0)

    def test_only_14_pair_scaled(self, butane_like, argon_lj):
        """Test only the 1-4 pair interacts, with its scale factors."""
        settings = PotentialSettings(
            cutoff=9.0,
            include_intramolecular=True,
            scale_14_coulomb=0.5,
            scale_14_non_coulomb=0.25,
        )
        potential = create_potential(settings, argon_lj)
        data, _, _ = _evaluate(potential, butane_like)

        coulomb = CoulombPotential(9.0)
        e_coulomb, _ = coulomb.evaluate(np.array([4.5]), np.array([-0.25]))
        types = np.zeros(1, dtype=np.int64)
        e_lj, _ = argon_lj.evaluate(np.array([4.5]), types, types, 9.0)
        assert np.isclose(data.coulomb_energy, 0.5 * e_coulomb[0])
        assert np.isclose(data.non_coulomb_energy, 0.25 * e_lj[0])
