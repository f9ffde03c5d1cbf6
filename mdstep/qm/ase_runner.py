"""QM force providers backed by ASE calculators."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

import numpy as np
from numpy.typing import NDArray

from ..constants import EV_TO_KCAL_PER_MOL
from .runner import CancellationToken, QMRunner

if TYPE_CHECKING:
    from ..system import Box

# Optional ASE import
try:
    from ase import Atoms

    HAS_ASE = True
except ImportError:
    HAS_ASE = False

logger = logging.getLogger(__name__)

# Hubbard derivatives of the 3ob parameter set, in atomic units
HUBBARD_DERIVATIVES_3OB = {
    "Br": -0.0573,
    "C": -0.1492,
    "Ca": -0.0340,
    "Cl": -0.0697,
    "F": -0.1623,
    "H": -0.1857,
    "I": -0.0433,
    "K": -0.0339,
    "Mg": -0.02,
    "N": -0.1535,
    "Na": -0.0454,
    "O": -0.1575,
    "P": -0.14,
    "S": -0.11,
    "Zn": -0.03,
}


def check_ase() -> None:
    """Check if ASE is available."""
    if not HAS_ASE:
        raise ImportError("ASE required: pip install ase")


class AseQMRunner(QMRunner):
    """
    Drive any ASE calculator as QM force provider.

    ASE works in eV and eV/Angstrom; results are converted to kcal/mol.

    Args:
        calculator: ASE calculator instance.
        symbols: Chemical symbol of every atom, in state order.
        timeout: Seconds allowed per evaluation.
    """

    def __init__(
        self, calculator: Any, symbols: Sequence[str], timeout: float = 3600.0
    ) -> None:
        check_ase()
        super().__init__(timeout)
        self.calculator = calculator
        self.symbols = list(symbols)

    def to_atoms(self, positions: NDArray[np.floating], box: Box) -> Atoms:
        """Build a periodic ASE Atoms object for the given geometry."""
        if len(positions) != len(self.symbols):
            raise ValueError(
                f"Got {len(positions)} positions for {len(self.symbols)} symbols"
            )
        return Atoms(
            symbols=self.symbols,
            positions=positions,
            cell=np.array(box.vectors),
            pbc=True,
        )

    def execute(
        self,
        positions: NDArray[np.floating],
        box: Box,
        token: CancellationToken,
    ) -> tuple[float, NDArray[np.floating]]:
        token.raise_if_cancelled()
        atoms = self.to_atoms(positions, box)
        atoms.calc = self.calculator

        energy = float(atoms.get_potential_energy()) * EV_TO_KCAL_PER_MOL
        forces = np.asarray(atoms.get_forces(), dtype=np.float64) * EV_TO_KCAL_PER_MOL
        token.raise_if_cancelled()
        return energy, forces


class AseDftbRunner(AseQMRunner):
    """
    DFTB+ through ``ase.calculators.dftb.Dftb``.

    Self-consistent charges are always on (tolerance 1e-6, at most 250
    cycles) with a gamma-point sampling. With ``third_order`` the full
    third-order DFTB3 Hamiltonian is enabled and needs one Hubbard
    derivative per element.

    Args:
        slakos_path: Directory of the Slater-Koster files.
        symbols: Chemical symbol of every atom, in state order.
        third_order: Enable DFTB3.
        hubbard_derivs: Hubbard derivative per element; defaults to the
            3ob values.
        timeout: Seconds allowed per evaluation.
        label: Prefix of the DFTB+ working files.
    """

    def __init__(
        self,
        slakos_path: str,
        symbols: Sequence[str],
        third_order: bool = False,
        hubbard_derivs: Mapping[str, float] | None = None,
        timeout: float = 3600.0,
        label: str = "dftb",
    ) -> None:
        check_ase()
        from ase.calculators.dftb import Dftb

        kwargs = self.calculator_arguments(
            slakos_path, third_order, hubbard_derivs, symbols
        )
        super().__init__(Dftb(label=label, **kwargs), symbols, timeout)
        self.third_order = third_order

    @staticmethod
    def calculator_arguments(
        slakos_path: str,
        third_order: bool,
        hubbard_derivs: Mapping[str, float] | None,
        symbols: Sequence[str],
    ) -> dict[str, Any]:
        """
        Keyword arguments of the Dftb calculator.

        Raises:
            ValueError: If DFTB3 is requested and an element has no Hubbard
                derivative.
        """
        kwargs: dict[str, Any] = {"slako_dir": str(slakos_path)}

        if third_order:
            derivs = dict(
                HUBBARD_DERIVATIVES_3OB if hubbard_derivs is None else hubbard_derivs
            )
            missing = sorted(set(symbols) - set(derivs))
            if missing:
                raise ValueError(
                    "No Hubbard derivative for third order DFTB: "
                    f"{', '.join(missing)}"
                )
            kwargs["Hamiltonian_ThirdOrderFull"] = "Yes"
            kwargs["Hamiltonian_HubbardDerivs_"] = ""
            for element in sorted(set(symbols)):
                kwargs[f"Hamiltonian_HubbardDerivs_{element}"] = derivs[element]

        # parser version 1 does not accept DFTB3 input
        kwargs["ParserOptions_ParserVersion"] = "12"
        kwargs["Hamiltonian_SCC"] = "Yes"
        kwargs["Hamiltonian_SCCTolerance"] = "1e-6"
        kwargs["Hamiltonian_MaxSCCIterations"] = "250"
        kwargs["kpts"] = (1, 1, 1)
        return kwargs
