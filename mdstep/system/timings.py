"""Step counter and wall-clock section timers."""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from ..config import TimingsSettings
from ..constants import PS_TO_FS


@dataclass
class Timings:
    """
    Run-wide step bookkeeping.

    Attributes:
        timestep: Timestep in fs.
        n_steps: Target number of steps.
        step: Number of completed steps.
    """

    timestep: float
    n_steps: int
    step: int = 0

    @classmethod
    def from_settings(cls, settings: TimingsSettings) -> Timings:
        """Create timings from validated settings."""
        return cls(timestep=settings.timestep, n_steps=settings.n_steps)

    def increment(self) -> None:
        """Count one completed step."""
        self.step += 1

    @property
    def simulation_time(self) -> float:
        """Elapsed simulation time in ps."""
        return self.step * self.timestep / PS_TO_FS

    @property
    def finished(self) -> bool:
        """Whether the target step count has been reached."""
        return self.step >= self.n_steps


@dataclass
class SectionTimer:
    """
    Accumulated wall-clock time per named section of the step.

    Example:
        >>> timer = SectionTimer()
        >>> with timer.section("potential"):
        ...     pass
        >>> timer.totals["potential"] >= 0.0
        True
    """

    totals: dict[str, float] = field(default_factory=dict)
    counts: dict[str, int] = field(default_factory=dict)

    @contextmanager
    def section(self, name: str) -> Iterator[None]:
        """Time the enclosed block under ``name``."""
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start
            self.totals[name] = self.totals.get(name, 0.0) + elapsed
            self.counts[name] = self.counts.get(name, 0) + 1

    def mean(self, name: str) -> float:
        """Mean time per call of a section in seconds."""
        count = self.counts.get(name, 0)
        if count == 0:
            return 0.0
        return self.totals[name] / count

    def reset(self) -> None:
        """Forget all recorded times."""
        self.totals.clear()
        self.counts.clear()
