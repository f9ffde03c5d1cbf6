"""Bond and rigid-body constraints."""

from .mshake import MShake, MShakeReference
from .shake import BondConstraint, ConstraintSolver

__all__ = ["BondConstraint", "ConstraintSolver", "MShake", "MShakeReference"]
