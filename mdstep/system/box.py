"""Periodic simulation box."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray


@dataclass(frozen=True)
class Box:
    """
    Periodic simulation cell.

    Supports orthorhombic and triclinic cells via a 3x3 matrix whose rows are
    the cell vectors. All pairwise displacements used by the force kernels go
    through :meth:`minimum_image`.

    Attributes:
        vectors: 3x3 array where rows are box vectors [a, b, c], in Angstrom.
    """

    vectors: NDArray[np.floating]

    def __post_init__(self) -> None:
        """Validate and convert vectors to proper shape."""
        vectors = np.asarray(self.vectors, dtype=np.float64)
        if vectors.shape == (3,):
            vectors = np.diag(vectors)
        if vectors.shape != (3, 3):
            raise ValueError(f"Box vectors must be (3,) or (3, 3), got {vectors.shape}")
        if abs(np.linalg.det(vectors)) < 1e-12:
            raise ValueError("Box vectors are degenerate (zero volume)")
        vectors.flags.writeable = False
        object.__setattr__(self, "vectors", vectors)

    @classmethod
    def orthorhombic(cls, lx: float, ly: float, lz: float) -> Box:
        """Create an orthorhombic box with given side lengths."""
        return cls(np.array([lx, ly, lz]))

    @classmethod
    def cubic(cls, length: float) -> Box:
        """Create a cubic box with given side length."""
        return cls.orthorhombic(length, length, length)

    @classmethod
    def triclinic(cls, vectors: ArrayLike) -> Box:
        """Create a triclinic box from 3x3 matrix of box vectors."""
        return cls(np.asarray(vectors))

    @property
    def lengths(self) -> NDArray[np.floating]:
        """Return box vector lengths [|a|, |b|, |c|]."""
        return np.linalg.norm(self.vectors, axis=1)

    @property
    def volume(self) -> float:
        """Return box volume in Angstrom^3."""
        return float(np.abs(np.linalg.det(self.vectors)))

    @property
    def is_orthorhombic(self) -> bool:
        """Check if box is orthorhombic (diagonal matrix)."""
        off_diag = self.vectors.copy()
        np.fill_diagonal(off_diag, 0)
        return bool(np.allclose(off_diag, 0))

    @property
    def perpendicular_widths(self) -> NDArray[np.floating]:
        """
        Distances between opposite faces of the cell.

        For orthorhombic boxes these are the side lengths; for triclinic
        boxes width_i = V / |a_j x a_k|.
        """
        a, b, c = self.vectors
        areas = np.array(
            [
                np.linalg.norm(np.cross(b, c)),
                np.linalg.norm(np.cross(c, a)),
                np.linalg.norm(np.cross(a, b)),
            ]
        )
        return self.volume / areas

    def to_fractional(self, positions: NDArray[np.floating]) -> NDArray[np.floating]:
        """Convert Cartesian positions to fractional coordinates."""
        return np.asarray(positions) @ np.linalg.inv(self.vectors)

    def wrap_positions(self, positions: NDArray[np.floating]) -> NDArray[np.floating]:
        """
        Wrap positions into the primary box using periodic boundary conditions.

        Args:
            positions: Positions array of shape (N, 3).

        Returns:
            Wrapped positions array of shape (N, 3).
        """
        positions = np.asarray(positions)
        if self.is_orthorhombic:
            lengths = np.diag(self.vectors)
            return positions - lengths * np.floor(positions / lengths)
        fractional = self.to_fractional(positions)
        fractional = fractional - np.floor(fractional)
        return fractional @ self.vectors

    def image_shift(self, dr: NDArray[np.floating]) -> NDArray[np.floating]:
        """
        Lattice translation removed from ``dr`` by the minimum image convention.

        ``minimum_image`` of a raw displacement equals ``dr - image_shift(dr)``.

        Args:
            dr: Raw displacement(s), shape (3,) or (N, 3).

        Returns:
            Lattice vector(s) of the same shape.
        """
        dr = np.asarray(dr)
        if self.is_orthorhombic:
            lengths = np.diag(self.vectors)
            return lengths * np.round(dr / lengths)
        return np.round(self.to_fractional(dr)) @ self.vectors

    def minimum_image(
        self, r1: NDArray[np.floating], r2: NDArray[np.floating]
    ) -> NDArray[np.floating]:
        """
        Compute minimum image displacement vector r2 - r1.

        Args:
            r1: First position(s), shape (3,) or (N, 3).
            r2: Second position(s), shape (3,) or (N, 3).

        Returns:
            Displacement vector(s) under minimum image convention.
        """
        dr = np.asarray(r2) - np.asarray(r1)
        return dr - self.image_shift(dr)

    def minimum_image_distance(
        self, r1: NDArray[np.floating], r2: NDArray[np.floating]
    ) -> float | NDArray[np.floating]:
        """
        Compute minimum image distance between positions.

        Args:
            r1: First position(s), shape (3,) or (N, 3).
            r2: Second position(s), shape (3,) or (N, 3).

        Returns:
            Distance(s) under minimum image convention.
        """
        dr = self.minimum_image(r1, r2)
        return np.linalg.norm(dr, axis=-1)

    def scaled(self, factors: ArrayLike) -> Box:
        """
        Return a new box with each cell vector scaled.

        Args:
            factors: Scalar or per-vector scaling factors, shape (3,).

        Returns:
            Scaled Box.
        """
        factors = np.broadcast_to(np.asarray(factors, dtype=np.float64), (3,))
        return Box(self.vectors * factors[:, np.newaxis])
