"""External QM force providers."""

from .ase_runner import HUBBARD_DERIVATIVES_3OB, AseDftbRunner, AseQMRunner
from .runner import CancellationToken, QMRunner

__all__ = [
    "AseDftbRunner",
    "AseQMRunner",
    "CancellationToken",
    "HUBBARD_DERIVATIVES_3OB",
    "QMRunner",
]
