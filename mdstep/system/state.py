"""Simulation state with object and flattened array views.

The object view (atoms, molecules, box) is used for setup and I/O. Kernels
work on a :class:`FlatView` of contiguous arrays obtained from
:meth:`SimulationState.flat`. Only one view is usable at a time:

    >>> with state.flat() as view:
    ...     view.positions += 0.1
    >>> state.atoms[0].position  # de-flattened on normal exit
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

import numpy as np
from numpy.typing import ArrayLike, NDArray

from ..constants import BOLTZMANN_CONSTANT_KCAL_PER_MOL, KINETIC_ENERGY_FACTOR
from ..exceptions import StateAccessError
from .atom import Atom
from .box import Box
from .molecule import Molecule
from .topology import Topology


def _stack(vectors: list[NDArray[np.floating]]) -> NDArray[np.floating]:
    return np.array(vectors, dtype=np.float64).reshape(-1, 3)


class _ViewField:
    """Attribute of a FlatView that is only reachable while the view is live."""

    def __set_name__(self, owner: type, name: str) -> None:
        self.public_name = name
        self.private_name = "_" + name

    def __get__(self, obj: FlatView | None, objtype: type | None = None) -> Any:
        if obj is None:
            return self
        obj._check_live(self.public_name)
        return getattr(obj, self.private_name)

    def __set__(self, obj: FlatView, value: Any) -> None:
        obj._check_live(self.public_name)
        setattr(obj, self.private_name, value)


class FlatView:
    """
    Contiguous-array view of a simulation state.

    Attributes:
        positions: Atomic positions, shape (N, 3), Angstrom.
        velocities: Atomic velocities, shape (N, 3), Angstrom/s.
        forces: Atomic forces, shape (N, 3), kcal/(mol Angstrom).
        shift_forces: Minimum-image virial accumulator, shape (N, 3).
        masses: Atomic masses, shape (N,), amu.
        charges: Partial charges, shape (N,), e.
        type_indices: Non-Coulomb parameter row of each atom, shape (N,).
        molecule_types: Molecule type of each atom, shape (N,).
        molecule_indices: Molecule index of each atom, shape (N,).
        centers_of_mass: Molecule centers of mass, shape (N_molecules, 3).
        box: Simulation box; replaced by the manostat.
        topology: Molecule layout.
        n_constrained_dof: Degrees of freedom removed by constraints.
    """

    positions = _ViewField()
    velocities = _ViewField()
    forces = _ViewField()
    shift_forces = _ViewField()
    masses = _ViewField()
    charges = _ViewField()
    type_indices = _ViewField()
    molecule_types = _ViewField()
    molecule_indices = _ViewField()
    centers_of_mass = _ViewField()
    box = _ViewField()
    topology = _ViewField()
    n_constrained_dof = _ViewField()

    def __init__(
        self,
        positions: NDArray[np.floating],
        velocities: NDArray[np.floating],
        forces: NDArray[np.floating],
        shift_forces: NDArray[np.floating],
        masses: NDArray[np.floating],
        charges: NDArray[np.floating],
        type_indices: NDArray[np.integer],
        box: Box,
        topology: Topology,
        n_constrained_dof: int = 0,
    ) -> None:
        self._live = True
        self.positions = positions
        self.velocities = velocities
        self.forces = forces
        self.shift_forces = shift_forces
        self.masses = masses
        self.charges = charges
        self.type_indices = type_indices
        self.molecule_types = topology.molecule_types
        self.molecule_indices = topology.molecule_indices
        self.centers_of_mass = np.zeros((topology.n_molecules, 3), dtype=np.float64)
        self.box = box
        self.topology = topology
        self.n_constrained_dof = n_constrained_dof

    def _check_live(self, name: str) -> None:
        if not self._live:
            raise StateAccessError(
                f"Flat view field '{name}' accessed after the view was released"
            )

    def _release(self) -> None:
        self._live = False

    @property
    def is_live(self) -> bool:
        """Whether the view can still be used."""
        return self._live

    @property
    def n_atoms(self) -> int:
        """Return number of atoms."""
        return len(self.masses)

    @property
    def degrees_of_freedom(self) -> int:
        """Return 3N - 3 - constrained degrees of freedom."""
        return max(3 * self.n_atoms - 3 - self.n_constrained_dof, 0)

    def molecule_masses(self) -> NDArray[np.floating]:
        """Return the total mass of every molecule."""
        return np.bincount(
            self.molecule_indices,
            weights=self.masses,
            minlength=self.topology.n_molecules,
        )

    def update_centers_of_mass(self) -> None:
        """
        Recompute molecule centers of mass from the current positions.

        Atoms are unwrapped relative to the first atom of their molecule, so
        molecules straddling the box boundary get a correct center.
        """
        topology = self.topology
        if topology.n_molecules == 0:
            return
        first_atoms = np.array([atoms[0] for atoms in topology.molecule_atoms])
        anchors = self.positions[first_atoms[self.molecule_indices]]
        offsets = self.box.minimum_image(anchors, self.positions)

        weighted = np.zeros((topology.n_molecules, 3), dtype=np.float64)
        np.add.at(
            weighted, self.molecule_indices, self.masses[:, np.newaxis] * offsets
        )
        centers = self.positions[first_atoms] + weighted / self.molecule_masses()[
            :, np.newaxis
        ]
        self.centers_of_mass = self.box.wrap_positions(centers)

    def kinetic_energy(self) -> float:
        """Compute total kinetic energy in kcal/mol."""
        return float(
            KINETIC_ENERGY_FACTOR
            * np.sum(self.masses[:, np.newaxis] * self.velocities**2)
        )

    def molecular_kinetic_energy(self) -> float:
        """Compute kinetic energy of the molecule centers of mass in kcal/mol."""
        momenta = np.zeros((self.topology.n_molecules, 3), dtype=np.float64)
        np.add.at(
            momenta, self.molecule_indices, self.masses[:, np.newaxis] * self.velocities
        )
        molecule_masses = self.molecule_masses()
        return float(
            KINETIC_ENERGY_FACTOR
            * np.sum(momenta**2 / molecule_masses[:, np.newaxis])
        )

    def temperature(self) -> float:
        """
        Compute instantaneous temperature from kinetic energy.

        Uses T = 2 * KE / (N_dof * k_B). Returns 0 when no degrees of freedom
        remain.
        """
        n_dof = self.degrees_of_freedom
        if n_dof <= 0:
            return 0.0
        return 2.0 * self.kinetic_energy() / (n_dof * BOLTZMANN_CONSTANT_KCAL_PER_MOL)

    def momentum(self) -> NDArray[np.floating]:
        """Return total linear momentum in amu Angstrom/s."""
        return np.sum(self.masses[:, np.newaxis] * self.velocities, axis=0)


class SimulationState:
    """
    Owner of atoms, molecules and the periodic box.

    The object view (``atoms``, ``molecules``, ``box``) raises
    StateAccessError while a flat view is acquired.

    Args:
        atoms: Atoms of the system.
        box: Simulation box.
        molecules: Molecules referencing atoms by index. Defaults to one
            molecule per atom.
        n_constrained_dof: Degrees of freedom removed by constraints.
    """

    def __init__(
        self,
        atoms: Sequence[Atom],
        box: Box,
        molecules: Sequence[Molecule] | None = None,
        n_constrained_dof: int = 0,
    ) -> None:
        self._atoms = list(atoms)
        if molecules is None:
            molecules = [
                Molecule(name=atom.name, molecule_type=0, atom_indices=(i,))
                for i, atom in enumerate(self._atoms)
            ]
        self._molecules = list(molecules)
        self._box = box
        self._n_constrained_dof = n_constrained_dof
        self._topology = Topology.from_molecules(
            len(self._atoms), [atom.name for atom in self._atoms], self._molecules
        )
        self._view: FlatView | None = None

        # Centers of mass are derived; fill them once for the object view
        with self.flat() as view:
            view.update_centers_of_mass()

    @classmethod
    def from_arrays(
        cls,
        positions: ArrayLike,
        masses: ArrayLike,
        box: Box,
        velocities: ArrayLike | None = None,
        charges: ArrayLike | None = None,
        names: Sequence[str] | None = None,
        type_indices: ArrayLike | None = None,
        molecules: Sequence[Molecule] | None = None,
    ) -> SimulationState:
        """
        Create a state from per-atom arrays.

        Args:
            positions: Atomic positions, shape (N, 3).
            masses: Atomic masses, shape (N,).
            box: Simulation box.
            velocities: Velocities, shape (N, 3). Defaults to zeros.
            charges: Charges, shape (N,). Defaults to zeros.
            names: Atom names. Defaults to "X".
            type_indices: Non-Coulomb type index per atom. Defaults to zeros.
            molecules: Molecules; defaults to one molecule per atom.

        Returns:
            New SimulationState.
        """
        positions = np.asarray(positions, dtype=np.float64)
        masses = np.asarray(masses, dtype=np.float64)
        n_atoms = len(masses)
        if positions.shape != (n_atoms, 3):
            raise ValueError(
                f"positions shape {positions.shape} incompatible with {n_atoms} atoms"
            )
        if velocities is None:
            velocities = np.zeros((n_atoms, 3), dtype=np.float64)
        velocities = np.asarray(velocities, dtype=np.float64)
        if charges is None:
            charges = np.zeros(n_atoms, dtype=np.float64)
        if names is None:
            names = ["X"] * n_atoms
        if type_indices is None:
            type_indices = np.zeros(n_atoms, dtype=np.int64)

        atoms = [
            Atom(
                name=names[i],
                mass=float(masses[i]),
                charge=float(charges[i]),
                type_index=int(type_indices[i]),
                position=positions[i],
                velocity=velocities[i],
            )
            for i in range(n_atoms)
        ]
        return cls(atoms, box, molecules)

    def _check_object_view(self) -> None:
        if self._view is not None:
            raise StateAccessError(
                "Simulation state is flattened; use the flat view until it is released"
            )

    @property
    def n_atoms(self) -> int:
        """Return number of atoms."""
        return len(self._atoms)

    @property
    def topology(self) -> Topology:
        """Immutable molecule layout, available from either view."""
        return self._topology

    @property
    def is_flattened(self) -> bool:
        """Whether a flat view is currently acquired."""
        return self._view is not None

    @property
    def atoms(self) -> tuple[Atom, ...]:
        """Atoms of the object view."""
        self._check_object_view()
        return tuple(self._atoms)

    @property
    def molecules(self) -> tuple[Molecule, ...]:
        """Molecules of the object view."""
        self._check_object_view()
        return tuple(self._molecules)

    @property
    def box(self) -> Box:
        """Simulation box of the object view."""
        self._check_object_view()
        return self._box

    @box.setter
    def box(self, box: Box) -> None:
        self._check_object_view()
        self._box = box

    @property
    def n_constrained_dof(self) -> int:
        """Degrees of freedom removed by constraints."""
        self._check_object_view()
        return self._n_constrained_dof

    @n_constrained_dof.setter
    def n_constrained_dof(self, value: int) -> None:
        self._check_object_view()
        self._n_constrained_dof = int(value)

    def flatten(self) -> FlatView:
        """
        Copy the object view into contiguous arrays.

        Returns:
            The acquired FlatView.

        Raises:
            StateAccessError: If a view is already acquired.
        """
        if self._view is not None:
            raise StateAccessError("Simulation state is already flattened")
        atoms = self._atoms
        view = FlatView(
            positions=_stack([a.position for a in atoms]),
            velocities=_stack([a.velocity for a in atoms]),
            forces=_stack([a.force for a in atoms]),
            shift_forces=_stack([a.shift_force for a in atoms]),
            masses=np.array([a.mass for a in atoms], dtype=np.float64),
            charges=np.array([a.charge for a in atoms], dtype=np.float64),
            type_indices=np.array([a.type_index for a in atoms], dtype=np.int64),
            box=self._box,
            topology=self._topology,
            n_constrained_dof=self._n_constrained_dof,
        )
        view.centers_of_mass = np.array(
            [m.center_of_mass for m in self._molecules], dtype=np.float64
        ).reshape(-1, 3)
        self._view = view
        return view

    def deflatten(self, view: FlatView) -> None:
        """
        Write the arrays of ``view`` back into the object view and release it.

        Raises:
            StateAccessError: If ``view`` is not the acquired view.
        """
        if view is not self._view:
            raise StateAccessError("View does not belong to this simulation state")
        for i, atom in enumerate(self._atoms):
            atom.position = view.positions[i].copy()
            atom.velocity = view.velocities[i].copy()
            atom.force = view.forces[i].copy()
            atom.shift_force = view.shift_forces[i].copy()
        for k, molecule in enumerate(self._molecules):
            molecule.center_of_mass = view.centers_of_mass[k].copy()
        self._box = view.box
        self._n_constrained_dof = view.n_constrained_dof
        self._discard(view)

    def _discard(self, view: FlatView) -> None:
        view._release()
        self._view = None

    @contextmanager
    def flat(self) -> Iterator[FlatView]:
        """
        Acquire the flat view for the duration of a block.

        On normal exit the arrays are de-flattened. If the block raises, the
        object view keeps its values from before acquisition. The view is
        unusable afterwards in both cases.
        """
        view = self.flatten()
        try:
            yield view
        except BaseException:
            self._discard(view)
            raise
        self.deflatten(view)
