"""Boundary to external quantum-mechanical force providers.

A provider computes energy and forces for the current positions in a
worker thread. The engine waits for the result at most ``timeout`` seconds;
on expiry the provider's cancellation token is set and the step fails.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from ..exceptions import QMRunnerError, QMTimeoutError

if TYPE_CHECKING:
    from ..physical_data import PhysicalData
    from ..system import Box, FlatView

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative stop flag shared with a running provider."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """
        Raises:
            QMTimeoutError: If the token was cancelled.
        """
        if self.cancelled:
            raise QMTimeoutError("QM calculation was cancelled")


class QMRunner(ABC):
    """
    Abstract base class for QM force providers.

    Args:
        timeout: Seconds allowed per evaluation; 0 waits indefinitely.
    """

    def __init__(self, timeout: float = 3600.0) -> None:
        if timeout < 0.0:
            raise ValueError("QM timeout cannot be negative")
        self.timeout = timeout

    @abstractmethod
    def execute(
        self,
        positions: NDArray[np.floating],
        box: Box,
        token: CancellationToken,
    ) -> tuple[float, NDArray[np.floating]]:
        """
        Compute energy and forces.

        Long-running providers should poll ``token`` and stop once it is
        cancelled.

        Args:
            positions: Atom positions in Angstrom, shape (N, 3). A copy.
            box: Simulation box.
            token: Cancellation token of this evaluation.

        Returns:
            Tuple of (energy in kcal/mol, forces in kcal/(mol Angstrom)).
        """
        ...

    def run(self, view: FlatView, physical_data: PhysicalData) -> None:
        """
        Evaluate the provider and add its forces to the view.

        Raises:
            QMTimeoutError: If the evaluation exceeds the timeout.
            QMRunnerError: If the provider fails or returns malformed forces.
        """
        token = CancellationToken()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="qm-runner")
        future = executor.submit(self.execute, view.positions.copy(), view.box, token)
        try:
            energy, forces = future.result(timeout=self.timeout or None)
        except (QMRunnerError, QMTimeoutError):
            raise
        except FutureTimeoutError as e:
            token.cancel()
            raise QMTimeoutError(
                f"QM calculation exceeded the timeout of {self.timeout:g} s"
            ) from e
        except Exception as e:
            raise QMRunnerError(f"QM calculation failed: {e}") from e
        finally:
            executor.shutdown(wait=False)

        forces = np.asarray(forces, dtype=np.float64)
        if forces.shape != view.forces.shape:
            raise QMRunnerError(
                f"QM forces have shape {forces.shape}, expected {view.forces.shape}"
            )

        view.forces += forces
        physical_data.qm_energy = float(energy)
        logger.debug("QM energy %.6f kcal/mol", physical_data.qm_energy)
