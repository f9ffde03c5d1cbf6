"""M-Shake rigid-body constraints.

A molecule type is made rigid by a reference geometry. Every pair of atoms
of a rigid molecule keeps its reference distance; the coupled constraint
equations of one molecule are solved together instead of bond by bond.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import ArrayLike, NDArray

from ..config import ConstraintSettings
from ..constants import FS_TO_S
from ..exceptions import ConfigurationError, ConsistencyError, ConvergenceError

if TYPE_CHECKING:
    from ..system import FlatView, SimulationState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MShakeReference:
    """
    Immutable rigid template of one molecule type.

    Attributes:
        molecule_type: Molecule type the template applies to.
        atom_names: Atom names in molecule order.
        positions: Reference positions, shape (n_atoms, 3), Angstrom.
    """

    molecule_type: int
    atom_names: tuple[str, ...]
    positions: NDArray[np.floating]

    def __post_init__(self) -> None:
        object.__setattr__(self, "atom_names", tuple(self.atom_names))
        positions = np.array(self.positions, dtype=np.float64)
        if positions.shape != (len(self.atom_names), 3):
            raise ConfigurationError(
                f"M-Shake reference of molecule type {self.molecule_type}: "
                f"positions shape {positions.shape} does not match "
                f"{len(self.atom_names)} atom names"
            )
        if len(self.atom_names) < 2:
            raise ConfigurationError(
                f"M-Shake reference of molecule type {self.molecule_type} "
                "needs at least two atoms"
            )
        positions.flags.writeable = False
        object.__setattr__(self, "positions", positions)

    @property
    def n_atoms(self) -> int:
        """Return number of atoms."""
        return len(self.atom_names)

    @property
    def bond_pairs(self) -> NDArray[np.integer]:
        """All local atom pairs (a < b), shape (P, 2)."""
        a, b = np.triu_indices(self.n_atoms, k=1)
        return np.column_stack([a, b])

    @property
    def bond_lengths(self) -> NDArray[np.floating]:
        """Reference distance of every bond pair."""
        pairs = self.bond_pairs
        d = self.positions[pairs[:, 0]] - self.positions[pairs[:, 1]]
        return np.linalg.norm(d, axis=1)

    @property
    def n_constrained_dof(self) -> int:
        """Degrees of freedom removed from one rigid molecule."""
        if self.n_atoms == 2:
            return 1
        return 3 * self.n_atoms - 6


@dataclass
class _RigidMolecule:
    """One molecule bound to its template."""

    molecule_index: int
    molecule_type: int
    atoms: NDArray[np.integer]
    pairs: NDArray[np.integer]
    target_sq: NDArray[np.floating]
    coupling: NDArray[np.floating]
    inv_masses: NDArray[np.floating]
    refs: NDArray[np.floating] = field(
        default_factory=lambda: np.empty((0, 3), dtype=np.float64)
    )


class MShake:
    """
    Rigid-body constraint solver.

    Args:
        references: One template per rigid molecule type.
        settings: Tolerance and iteration limit.
    """

    def __init__(
        self, references: Sequence[MShakeReference], settings: ConstraintSettings
    ) -> None:
        self.references = {ref.molecule_type: ref for ref in references}
        if len(self.references) != len(references):
            raise ConfigurationError("Duplicate M-Shake reference for a molecule type")
        self.settings = settings
        self._molecules: list[_RigidMolecule] = []

    @property
    def n_rigid_molecules(self) -> int:
        """Return number of bound molecules."""
        return len(self._molecules)

    @property
    def n_constrained_dof(self) -> int:
        """Degrees of freedom removed by all bound molecules."""
        return sum(
            self.references[m.molecule_type].n_constrained_dof
            for m in self._molecules
        )

    def bind(self, state: SimulationState) -> None:
        """
        Attach every molecule of a referenced type to its template.

        Args:
            state: Simulation state in its object view.

        Raises:
            ConsistencyError: If a molecule's atom names differ from its
                template by name, count or order.
        """
        atoms = state.atoms
        self._molecules = []

        for index, molecule in enumerate(state.molecules):
            reference = self.references.get(molecule.molecule_type)
            if reference is None:
                continue
            names = tuple(atoms[i].name for i in molecule.atom_indices)
            if names != reference.atom_names:
                raise ConsistencyError(
                    f"Atom names of molecule {index} ({molecule.name}) do not "
                    "match the M-Shake reference of molecule type "
                    f"{molecule.molecule_type}: "
                    f"expected {list(reference.atom_names)}, got {list(names)}"
                )

            global_atoms = np.array(molecule.atom_indices, dtype=np.int64)
            inv_masses = np.array(
                [1.0 / atoms[i].mass for i in molecule.atom_indices], dtype=np.float64
            )
            pairs = reference.bond_pairs
            self._molecules.append(
                _RigidMolecule(
                    molecule_index=index,
                    molecule_type=molecule.molecule_type,
                    atoms=global_atoms,
                    pairs=pairs,
                    target_sq=reference.bond_lengths**2,
                    coupling=_coupling_matrix(pairs, inv_masses),
                    inv_masses=inv_masses,
                )
            )
            molecule.degrees_of_freedom = (
                3 * reference.n_atoms - reference.n_constrained_dof
            )

        logger.info("M-Shake bound %d rigid molecules", len(self._molecules))

    def _pair_vectors(
        self, view: FlatView, rigid: _RigidMolecule
    ) -> NDArray[np.floating]:
        positions = view.positions[rigid.atoms]
        first = positions[rigid.pairs[:, 0]]
        second = positions[rigid.pairs[:, 1]]
        return view.box.minimum_image(second, first)

    def calculate_bond_refs(self, view: FlatView) -> None:
        """Store the pair vectors before the positions are propagated."""
        for rigid in self._molecules:
            rigid.refs = self._pair_vectors(view, rigid)

    def apply_mshake(self, view: FlatView, timestep: float) -> None:
        """
        Restore the reference geometry of every rigid molecule.

        Newton iteration on the coupled constraint equations
        sigma_k = |d_k|^2 - d0_k^2 = 0 with corrections along the stored
        reference vectors. Velocities get the displacement / dt.

        Raises:
            ConvergenceError: If the tolerance is not reached in time.
        """
        tolerance = self.settings.mshake_tolerance
        max_iter = self.settings.mshake_max_iter
        dt = timestep * FS_TO_S

        for rigid in self._molecules:
            start = view.positions[rigid.atoms].copy()
            iteration = 0
            while True:
                d = self._pair_vectors(view, rigid)
                sigma = np.sum(d**2, axis=1) - rigid.target_sq
                deviation = float(np.max(np.abs(sigma) / (2.0 * rigid.target_sq)))
                if deviation <= tolerance:
                    break
                if iteration >= max_iter:
                    raise ConvergenceError("M-SHAKE", tolerance, max_iter, deviation)

                jacobian = 2.0 * (d @ rigid.refs.T) * rigid.coupling
                lambdas = np.linalg.lstsq(jacobian, -sigma, rcond=None)[0]
                view.positions[rigid.atoms] += _atom_displacements(
                    rigid, lambdas, rigid.refs
                )
                iteration += 1

            view.velocities[rigid.atoms] += (view.positions[rigid.atoms] - start) / dt

    def apply_mshake_velocities(self, view: FlatView) -> None:
        """
        Remove relative velocity components that would change pair distances.

        The velocity constraints d_k . v_k = 0 are linear, so one solve per
        molecule is exact.
        """
        for rigid in self._molecules:
            d = self._pair_vectors(view, rigid)
            velocities = view.velocities[rigid.atoms]
            dv = velocities[rigid.pairs[:, 0]] - velocities[rigid.pairs[:, 1]]
            rhs = -np.sum(d * dv, axis=1)
            matrix = (d @ d.T) * rigid.coupling
            mus = np.linalg.lstsq(matrix, rhs, rcond=None)[0]
            view.velocities[rigid.atoms] += _atom_displacements(rigid, mus, d)


def _coupling_matrix(
    pairs: NDArray[np.integer], inv_masses: NDArray[np.floating]
) -> NDArray[np.floating]:
    """G = S M^-1 S^T with S the signed pair-atom incidence matrix."""
    incidence = _incidence(pairs, len(inv_masses))
    return (incidence * inv_masses) @ incidence.T


def _incidence(pairs: NDArray[np.integer], n_atoms: int) -> NDArray[np.floating]:
    incidence = np.zeros((len(pairs), n_atoms), dtype=np.float64)
    rows = np.arange(len(pairs))
    incidence[rows, pairs[:, 0]] = 1.0
    incidence[rows, pairs[:, 1]] = -1.0
    return incidence


def _atom_displacements(
    rigid: _RigidMolecule, multipliers: ArrayLike, directions: NDArray[np.floating]
) -> NDArray[np.floating]:
    """Per-atom change sum_l multiplier_l S_l,a direction_l / m_a."""
    incidence = _incidence(rigid.pairs, len(rigid.atoms))
    weighted = np.asarray(multipliers)[:, np.newaxis] * directions
    return (incidence.T @ weighted) * rigid.inv_masses[:, np.newaxis]
