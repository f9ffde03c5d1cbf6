"""Pair potential evaluation."""

from __future__ import annotations

import logging

from ..config import PotentialSettings
from ..exceptions import ConfigurationError
from .base import Potential
from .brute_force import BruteForcePotential
from .cell_list import CellList, CellListPotential
from .kernels import (
    Buckingham,
    CoulombPotential,
    LennardJones,
    Morse,
    NonCoulombPotential,
    PairKernel,
    create_non_coulomb,
)

logger = logging.getLogger(__name__)


def create_potential(
    settings: PotentialSettings,
    non_coulomb: NonCoulombPotential,
    coulomb: CoulombPotential | None = None,
) -> Potential:
    """
    Create the potential evaluator selected by the settings.

    Args:
        settings: Potential settings.
        non_coulomb: Short-range law, fixed for the run.
        coulomb: Coulomb law. Defaults to the shifted-force law at the
            configured cutoff.

    Returns:
        BruteForcePotential or CellListPotential.

    Raises:
        ConfigurationError: If the law does not match the configured type.
    """
    if non_coulomb.kind != settings.non_coulomb_type:
        raise ConfigurationError(
            f'Configured non-Coulomb type "{settings.non_coulomb_type}" does not '
            f"match the provided {type(non_coulomb).__name__} law"
        )
    if coulomb is None:
        coulomb = CoulombPotential(settings.cutoff)
    kernel = PairKernel(coulomb, non_coulomb, settings.cutoff)
    variant = CellListPotential if settings.use_cell_list else BruteForcePotential
    logger.info(
        "Potential: %s with %s law, cutoff %.3f A",
        variant.__name__,
        type(non_coulomb).__name__,
        settings.cutoff,
    )
    return variant(kernel, settings)


__all__ = [
    "BruteForcePotential",
    "Buckingham",
    "CellList",
    "CellListPotential",
    "CoulombPotential",
    "LennardJones",
    "Morse",
    "NonCoulombPotential",
    "PairKernel",
    "Potential",
    "create_non_coulomb",
    "create_potential",
]
