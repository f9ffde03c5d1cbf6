"""SHAKE/RATTLE bond-length constraints."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from ..config import ConstraintSettings
from ..constants import FS_TO_S
from ..exceptions import ConfigurationError, ConvergenceError

if TYPE_CHECKING:
    from ..system import FlatView
    from .mshake import MShake

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BondConstraint:
    """
    Fixed distance between two atoms.

    Attributes:
        atom1: Global index of the first atom.
        atom2: Global index of the second atom.
        target_length: Constrained distance in Angstrom.
    """

    atom1: int
    atom2: int
    target_length: float

    def __post_init__(self) -> None:
        if self.atom1 == self.atom2:
            raise ConfigurationError(
                f"Bond constraint needs two different atoms, got {self.atom1} twice"
            )
        if self.target_length <= 0.0:
            raise ConfigurationError(
                f"Bond constraint {self.atom1}-{self.atom2} needs a positive length"
            )


class ConstraintSolver:
    """
    Iterative projection of positions (SHAKE) and velocities (RATTLE).

    Bonds are corrected one after another within a sweep, so bonds sharing
    an atom see each other's corrections. Rigid molecules handled by an
    optional M-Shake solver are projected after the bonds.

    Args:
        settings: Tolerances and iteration limits.
        bond_constraints: Constrained bonds.
        mshake: Rigid-body solver, already bound to the state.
    """

    def __init__(
        self,
        settings: ConstraintSettings,
        bond_constraints: Sequence[BondConstraint] = (),
        mshake: MShake | None = None,
    ) -> None:
        self.settings = settings
        self.bond_constraints = tuple(bond_constraints)
        self.mshake = mshake

        self._atom1 = np.array([b.atom1 for b in self.bond_constraints], dtype=np.int64)
        self._atom2 = np.array([b.atom2 for b in self.bond_constraints], dtype=np.int64)
        self._target_sq = np.array(
            [b.target_length**2 for b in self.bond_constraints], dtype=np.float64
        )
        self._refs: NDArray[np.floating] = np.empty((0, 3), dtype=np.float64)

        if self.bond_constraints and not settings.shake_active:
            logger.warning(
                "%d bond constraints given but SHAKE is not active; they are ignored",
                len(self.bond_constraints),
            )

    @property
    def shake_active(self) -> bool:
        """Whether bond constraints are applied."""
        return self.settings.shake_active and len(self.bond_constraints) > 0

    @property
    def n_constrained_dof(self) -> int:
        """Degrees of freedom removed by bonds and rigid molecules."""
        n_dof = len(self.bond_constraints) if self.shake_active else 0
        if self.mshake is not None:
            n_dof += self.mshake.n_constrained_dof
        return n_dof

    def _bond_vectors(self, view: FlatView) -> NDArray[np.floating]:
        positions = view.positions
        return view.box.minimum_image(positions[self._atom2], positions[self._atom1])

    def calculate_constraint_bond_refs(self, view: FlatView) -> None:
        """Store the bond vectors before the positions are propagated."""
        if self.shake_active:
            self._refs = self._bond_vectors(view)
        if self.mshake is not None:
            self.mshake.calculate_bond_refs(view)

    def shake_deviations(self, view: FlatView) -> NDArray[np.floating]:
        """Relative deviation |d^2 - d0^2| / (2 d0^2) of every bond."""
        d = self._bond_vectors(view)
        return np.abs(np.sum(d**2, axis=1) - self._target_sq) / (2.0 * self._target_sq)

    def rattle_deviations(
        self, view: FlatView, timestep: float
    ) -> NDArray[np.floating]:
        """Relative bond-length change per step |d . v_ij| dt / d0^2."""
        d = self._bond_vectors(view)
        dv = view.velocities[self._atom1] - view.velocities[self._atom2]
        return np.abs(np.sum(d * dv, axis=1)) * timestep * FS_TO_S / self._target_sq

    def apply_shake(self, view: FlatView, timestep: float) -> None:
        """
        Project positions onto the constraints after the drift.

        Velocities receive the matching correction displacement / dt.

        Args:
            view: Flat view after the first half step.
            timestep: Timestep in fs.

        Raises:
            ConvergenceError: If the tolerance is not reached within the
                maximum number of iterations.
        """
        if self.shake_active:
            self._shake(view, timestep)
        if self.mshake is not None:
            self.mshake.apply_mshake(view, timestep)

    def _shake(self, view: FlatView, timestep: float) -> None:
        tolerance = self.settings.shake_tolerance
        max_iter = self.settings.shake_max_iter
        positions = view.positions
        velocities = view.velocities
        inv_masses = 1.0 / view.masses
        dt = timestep * FS_TO_S
        box = view.box

        iteration = 0
        while True:
            deviation = float(np.max(self.shake_deviations(view)))
            if deviation <= tolerance:
                break
            if iteration >= max_iter:
                raise ConvergenceError("SHAKE", tolerance, max_iter, deviation)

            for k in range(len(self._atom1)):
                i, j = self._atom1[k], self._atom2[k]
                ref = self._refs[k]
                d = box.minimum_image(positions[j], positions[i])
                diff = self._target_sq[k] - np.dot(d, d)
                g = diff / (2.0 * (inv_masses[i] + inv_masses[j]) * np.dot(ref, d))
                dx_i = g * ref * inv_masses[i]
                dx_j = g * ref * inv_masses[j]
                positions[i] += dx_i
                positions[j] -= dx_j
                velocities[i] += dx_i / dt
                velocities[j] -= dx_j / dt
            iteration += 1

        logger.debug("SHAKE converged after %d iterations", iteration)

    def apply_rattle(self, view: FlatView, timestep: float) -> None:
        """
        Remove velocity components along the constrained bonds.

        Args:
            view: Flat view after the second half step.
            timestep: Timestep in fs.

        Raises:
            ConvergenceError: If the tolerance is not reached within the
                maximum number of iterations.
        """
        if self.shake_active:
            self._rattle(view, timestep)
        if self.mshake is not None:
            self.mshake.apply_mshake_velocities(view)

    def _rattle(self, view: FlatView, timestep: float) -> None:
        tolerance = self.settings.rattle_tolerance
        max_iter = self.settings.rattle_max_iter
        velocities = view.velocities
        inv_masses = 1.0 / view.masses
        d_all = self._bond_vectors(view)

        iteration = 0
        while True:
            deviation = float(np.max(self.rattle_deviations(view, timestep)))
            if deviation <= tolerance:
                break
            if iteration >= max_iter:
                raise ConvergenceError("RATTLE", tolerance, max_iter, deviation)

            for k in range(len(self._atom1)):
                i, j = self._atom1[k], self._atom2[k]
                d = d_all[k]
                dv = velocities[i] - velocities[j]
                reduced = (inv_masses[i] + inv_masses[j]) * self._target_sq[k]
                g = -np.dot(d, dv) / reduced
                velocities[i] += g * d * inv_masses[i]
                velocities[j] -= g * d * inv_masses[j]
            iteration += 1

        logger.debug("RATTLE converged after %d iterations", iteration)
