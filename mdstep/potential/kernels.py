"""Pair laws and the shared per-pair kernel.

Every law is force-shifted at the cutoff:

    V_sf(r) = V(r) - V(rc) + (r - rc) * F(rc)
    F_sf(r) = F(r) - F(rc)

with F = -dV/dr, so both energy and force vanish continuously at rc.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import numpy as np
from numpy.typing import ArrayLike, NDArray

from ..config import NON_COULOMB_TYPES
from ..constants import COULOMB_CONSTANT
from ..exceptions import ConfigurationError

if TYPE_CHECKING:
    from ..system import FlatView


def _type_matrix(values: ArrayLike, name: str) -> NDArray[np.floating]:
    matrix = np.atleast_2d(np.asarray(values, dtype=np.float64))
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise ConfigurationError(
            f"{name} must be a square (n_types, n_types) matrix, got {matrix.shape}"
        )
    if not np.allclose(matrix, matrix.T):
        raise ConfigurationError(f"{name} must be symmetric")
    return matrix


class CoulombPotential:
    """
    Shifted-force Coulomb law.

    V(r) = k * qi * qj * (1/r - 1/rc + (r - rc)/rc^2)

    Attributes:
        cutoff: Cutoff radius in Angstrom.
        prefactor: 1/(4 pi eps0) in kcal Angstrom/(mol e^2).
    """

    def __init__(self, cutoff: float, prefactor: float = COULOMB_CONSTANT) -> None:
        if cutoff <= 0.0:
            raise ConfigurationError(f"Cutoff must be positive, got {cutoff}")
        self.cutoff = cutoff
        self.prefactor = prefactor

    def evaluate(
        self, r: NDArray[np.floating], charge_products: NDArray[np.floating]
    ) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
        """
        Energy and scalar force of each pair.

        Args:
            r: Pair distances, all below the cutoff.
            charge_products: qi * qj of each pair.

        Returns:
            Tuple of (energies, force magnitudes along the pair axis).
        """
        rc = self.cutoff
        kqq = self.prefactor * charge_products
        energy = kqq * (1.0 / r - 1.0 / rc + (r - rc) / rc**2)
        force = kqq * (1.0 / r**2 - 1.0 / rc**2)
        return energy, force


class NonCoulombPotential(ABC):
    """
    Short-range pair law with per-type-pair parameter matrices.

    Subclasses implement the unshifted law; :meth:`evaluate` applies the
    force shift at the cutoff.
    """

    #: Name used in configuration
    kind: str = ""

    @property
    @abstractmethod
    def n_types(self) -> int:
        """Return number of atom types covered by the parameters."""
        ...

    @abstractmethod
    def energy_and_force(
        self,
        r: NDArray[np.floating],
        type_i: NDArray[np.integer],
        type_j: NDArray[np.integer],
    ) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
        """
        Unshifted energy V(r) and force F(r) = -dV/dr.

        Args:
            r: Pair distances.
            type_i: Type index of the first atom of each pair.
            type_j: Type index of the second atom of each pair.

        Returns:
            Tuple of (energies, force magnitudes).
        """
        ...

    def evaluate(
        self,
        r: NDArray[np.floating],
        type_i: NDArray[np.integer],
        type_j: NDArray[np.integer],
        cutoff: float,
    ) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
        """Force-shifted energy and force of each pair."""
        energy, force = self.energy_and_force(r, type_i, type_j)
        rc = np.full_like(r, cutoff)
        energy_rc, force_rc = self.energy_and_force(rc, type_i, type_j)
        return energy - energy_rc + (r - rc) * force_rc, force - force_rc


class LennardJones(NonCoulombPotential):
    """
    Lennard-Jones 12-6 law.

    V(r) = c12 / r^12 - c6 / r^6

    Attributes:
        c6: Dispersion coefficients, shape (n_types, n_types).
        c12: Repulsion coefficients, shape (n_types, n_types).
    """

    kind = "lj"

    def __init__(self, c6: ArrayLike, c12: ArrayLike) -> None:
        self.c6 = _type_matrix(c6, "c6")
        self.c12 = _type_matrix(c12, "c12")
        if self.c6.shape != self.c12.shape:
            raise ConfigurationError(
                f"c6 shape {self.c6.shape} != c12 shape {self.c12.shape}"
            )

    @classmethod
    def from_epsilon_sigma(cls, epsilon: ArrayLike, sigma: ArrayLike) -> LennardJones:
        """
        Build the matrices from per-type parameters.

        Uses Lorentz-Berthelot combining rules.

        Args:
            epsilon: Well depth per atom type in kcal/mol, shape (n_types,).
            sigma: Size parameter per atom type in Angstrom, shape (n_types,).
        """
        epsilon = np.atleast_1d(np.asarray(epsilon, dtype=np.float64))
        sigma = np.atleast_1d(np.asarray(sigma, dtype=np.float64))
        if len(epsilon) != len(sigma):
            raise ConfigurationError(
                f"epsilon length {len(epsilon)} != sigma length {len(sigma)}"
            )

        # Lorentz-Berthelot combining rules
        epsilon_ij = np.sqrt(np.outer(epsilon, epsilon))
        sigma_ij = 0.5 * (sigma[:, np.newaxis] + sigma[np.newaxis, :])

        return cls(
            c6=4.0 * epsilon_ij * sigma_ij**6, c12=4.0 * epsilon_ij * sigma_ij**12
        )

    @property
    def n_types(self) -> int:
        """Return number of atom types."""
        return len(self.c6)

    def energy_and_force(
        self,
        r: NDArray[np.floating],
        type_i: NDArray[np.integer],
        type_j: NDArray[np.integer],
    ) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
        c6 = self.c6[type_i, type_j]
        c12 = self.c12[type_i, type_j]
        inv_r6 = 1.0 / r**6
        inv_r12 = inv_r6**2
        energy = c12 * inv_r12 - c6 * inv_r6
        force = (12.0 * c12 * inv_r12 - 6.0 * c6 * inv_r6) / r
        return energy, force


class Buckingham(NonCoulombPotential):
    """
    Buckingham exp-6 law.

    V(r) = a * exp(-b * r) - c6 / r^6
    """

    kind = "buckingham"

    def __init__(self, a: ArrayLike, b: ArrayLike, c6: ArrayLike) -> None:
        self.a = _type_matrix(a, "a")
        self.b = _type_matrix(b, "b")
        self.c6 = _type_matrix(c6, "c6")
        if not self.a.shape == self.b.shape == self.c6.shape:
            raise ConfigurationError("Buckingham parameter matrices differ in shape")

    @property
    def n_types(self) -> int:
        """Return number of atom types."""
        return len(self.a)

    def energy_and_force(
        self,
        r: NDArray[np.floating],
        type_i: NDArray[np.integer],
        type_j: NDArray[np.integer],
    ) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
        a = self.a[type_i, type_j]
        b = self.b[type_i, type_j]
        c6 = self.c6[type_i, type_j]
        repulsion = a * np.exp(-b * r)
        inv_r6 = 1.0 / r**6
        energy = repulsion - c6 * inv_r6
        force = b * repulsion - 6.0 * c6 * inv_r6 / r
        return energy, force


class Morse(NonCoulombPotential):
    """
    Morse law.

    V(r) = D * (1 - exp(-a * (r - re)))^2
    """

    kind = "morse"

    def __init__(
        self,
        dissociation_energy: ArrayLike,
        well_width: ArrayLike,
        equilibrium_distance: ArrayLike,
    ) -> None:
        self.dissociation_energy = _type_matrix(
            dissociation_energy, "dissociation_energy"
        )
        self.well_width = _type_matrix(well_width, "well_width")
        self.equilibrium_distance = _type_matrix(
            equilibrium_distance, "equilibrium_distance"
        )
        shapes = {
            self.dissociation_energy.shape,
            self.well_width.shape,
            self.equilibrium_distance.shape,
        }
        if len(shapes) != 1:
            raise ConfigurationError("Morse parameter matrices differ in shape")

    @property
    def n_types(self) -> int:
        """Return number of atom types."""
        return len(self.dissociation_energy)

    def energy_and_force(
        self,
        r: NDArray[np.floating],
        type_i: NDArray[np.integer],
        type_j: NDArray[np.integer],
    ) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
        d = self.dissociation_energy[type_i, type_j]
        a = self.well_width[type_i, type_j]
        re = self.equilibrium_distance[type_i, type_j]
        decay = np.exp(-a * (r - re))
        energy = d * (1.0 - decay) ** 2
        force = -2.0 * d * a * decay * (1.0 - decay)
        return energy, force


_NON_COULOMB_LAWS: dict[str, type[NonCoulombPotential]] = {
    "lj": LennardJones,
    "buckingham": Buckingham,
    "morse": Morse,
}


def create_non_coulomb(kind: str, **params: Any) -> NonCoulombPotential:
    """
    Create a non-Coulomb law by name.

    Args:
        kind: "lj", "buckingham" or "morse". For "lj", per-type ``epsilon``
            and ``sigma`` may be given instead of ``c6``/``c12``.
        **params: Parameters of the law.

    Returns:
        NonCoulombPotential instance.

    Raises:
        ConfigurationError: If the law is unknown or parameters are invalid.
    """
    law = _NON_COULOMB_LAWS.get(kind.lower())
    if law is None:
        raise ConfigurationError(
            f'NonCoulombType "{kind}" not implemented yet. '
            f"Possible options are: {', '.join(NON_COULOMB_TYPES)}"
        )
    if law is LennardJones and "epsilon" in params:
        return LennardJones.from_epsilon_sigma(**params)
    try:
        return law(**params)
    except TypeError as e:
        raise ConfigurationError(f"Invalid parameters for {kind}: {e}") from e


class PairKernel:
    """
    Evaluates Coulomb and non-Coulomb interactions of a vector of pairs.

    Forces are accumulated with unbuffered ``np.add.at`` so repeated atom
    indices within one batch sum correctly.

    Attributes:
        coulomb: Coulomb law.
        non_coulomb: Short-range law.
        cutoff: Cutoff radius in Angstrom.
    """

    def __init__(
        self,
        coulomb: CoulombPotential,
        non_coulomb: NonCoulombPotential,
        cutoff: float,
    ) -> None:
        self.coulomb = coulomb
        self.non_coulomb = non_coulomb
        self.cutoff = cutoff

    def compute(
        self,
        view: FlatView,
        i: NDArray[np.integer],
        j: NDArray[np.integer],
        coulomb_scale: NDArray[np.floating] | None = None,
        non_coulomb_scale: NDArray[np.floating] | None = None,
    ) -> tuple[float, float]:
        """
        Accumulate forces of the pairs (i, j) into the view.

        Args:
            view: Flat view; forces and shift forces are updated in place.
            i: First atom of each pair.
            j: Second atom of each pair.
            coulomb_scale: Optional Coulomb scale factor per pair.
            non_coulomb_scale: Optional non-Coulomb scale factor per pair.

        Returns:
            Tuple of (Coulomb energy, non-Coulomb energy) in kcal/mol.
        """
        if len(i) == 0:
            return 0.0, 0.0

        positions = view.positions
        raw = positions[i] - positions[j]
        shift = view.box.image_shift(raw)
        dxyz = raw - shift
        r = np.linalg.norm(dxyz, axis=1)

        # Apply cutoff
        mask = r < self.cutoff
        if not np.any(mask):
            return 0.0, 0.0
        i, j, r, dxyz, shift = i[mask], j[mask], r[mask], dxyz[mask], shift[mask]

        charges = view.charges
        e_coulomb, f_coulomb = self.coulomb.evaluate(r, charges[i] * charges[j])
        types = view.type_indices
        e_non_coulomb, f_non_coulomb = self.non_coulomb.evaluate(
            r, types[i], types[j], self.cutoff
        )
        if coulomb_scale is not None:
            coulomb_scale = coulomb_scale[mask]
            e_coulomb = e_coulomb * coulomb_scale
            f_coulomb = f_coulomb * coulomb_scale
        if non_coulomb_scale is not None:
            non_coulomb_scale = non_coulomb_scale[mask]
            e_non_coulomb = e_non_coulomb * non_coulomb_scale
            f_non_coulomb = f_non_coulomb * non_coulomb_scale

        # Force on i along dxyz = x_i - x_j; Newton's third law for j
        force_vectors = ((f_coulomb + f_non_coulomb) / r)[:, np.newaxis] * dxyz
        np.add.at(view.forces, i, force_vectors)
        np.add.at(view.forces, j, -force_vectors)
        np.add.at(view.shift_forces, i, -force_vectors * shift)

        return float(np.sum(e_coulomb)), float(np.sum(e_non_coulomb))
