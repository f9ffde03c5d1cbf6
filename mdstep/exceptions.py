"""Exception hierarchy for the simulation core."""

from __future__ import annotations


class MDError(Exception):
    """Base class for all errors raised by mdstep."""


class ConfigurationError(MDError, ValueError):
    """Invalid configuration value or unimplemented option, raised at setup."""


class ConsistencyError(MDError, ValueError):
    """Setup data that does not agree with itself (e.g. template vs molecule)."""


class StateAccessError(MDError, RuntimeError):
    """Simulation state accessed through the wrong view."""


class IntegratorStateError(MDError, RuntimeError):
    """Integrator phases invoked out of order."""


class ConvergenceError(MDError, RuntimeError):
    """
    Iterative constraint solver did not converge.

    Attributes:
        solver: Name of the solver ("SHAKE", "RATTLE", "M-SHAKE", ...).
        tolerance: Configured tolerance.
        max_iterations: Configured maximum number of iterations.
        deviation: Largest remaining deviation.
        step: Simulation step, if known.
    """

    def __init__(
        self,
        solver: str,
        tolerance: float,
        max_iterations: int,
        deviation: float,
        step: int | None = None,
    ) -> None:
        self.solver = solver
        self.tolerance = tolerance
        self.max_iterations = max_iterations
        self.deviation = deviation
        self.step = step

        message = (
            f"{solver} algorithm did not converge in {max_iterations} iterations "
            f"(tolerance {tolerance:g}, remaining deviation {deviation:g})"
        )
        if step is not None:
            message += f" at step {step}"
        super().__init__(message)

    def at_step(self, step: int) -> ConvergenceError:
        """Return a copy of this error annotated with a step number."""
        return ConvergenceError(
            self.solver, self.tolerance, self.max_iterations, self.deviation, step
        )


class DeviceError(MDError, RuntimeError):
    """
    One or more device backend calls failed.

    Attributes:
        messages: Individual failure messages, in the order they occurred.
    """

    def __init__(self, context: str, messages: list[str]) -> None:
        self.context = context
        self.messages = list(messages)
        text = f"Error in {context}:\n\n" + "".join(f"{m}\n" for m in self.messages)
        super().__init__(text)


class CouplingError(MDError, RuntimeError):
    """Temperature or pressure coupling produced an unphysical update in a step."""


class QMRunnerError(MDError, RuntimeError):
    """External QM force provider failed."""


class QMTimeoutError(MDError, TimeoutError):
    """External QM force provider exceeded its time budget."""
