"""
Timing of Regression Methods

The comparison experiment times every regression method in every iteration.
``Timer`` measures a single ``with`` block; ``Profiler`` keeps the wall-clock
times per method name. Each iteration is timed by its own ``Profiler`` and only
kept iterations are recorded in the experiment totals.
"""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import numpy as np
from numpy.typing import NDArray


@dataclass
class TimingResult:
    """Wall-clock times of one method over the recorded calls."""

    name: str
    times_ms: NDArray

    @property
    def n_calls(self) -> int:
        return len(self.times_ms)

    @property
    def mean_ms(self) -> float:
        return float(np.mean(self.times_ms))

    @property
    def median_ms(self) -> float:
        return float(np.median(self.times_ms))

    @property
    def total_ms(self) -> float:
        return float(np.sum(self.times_ms))

    def __str__(self) -> str:
        return f"{self.name:24s}: {self.mean_ms:10.1f} ms (median {self.median_ms:.1f}, n={self.n_calls})"


class Timer:
    """
    Milliseconds spent in a ``with`` block.

    Example:
        >>> with Timer("FITC") as timer:
        >>>     SparseGP(kernel, Xu).fit(X, y)
        >>> timer.elapsed_ms
    """

    def __init__(self, name: str = "", on_exit: Optional[Callable[[str, float], None]] = None):
        self.name = name
        self.elapsed_ms = 0.0
        self._on_exit = on_exit
        self._start = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1e3
        if self._on_exit is not None:
            self._on_exit(self.name, self.elapsed_ms)


class Profiler:
    """Per-method timings collected across the iterations of an experiment."""

    def __init__(self):
        self._times: Dict[str, List[float]] = defaultdict(list)

    def time(self, name: str) -> Timer:
        """Timer whose result is recorded under ``name``."""
        return Timer(name, on_exit=self.record)

    def record(self, name: str, elapsed_ms: float) -> None:
        self._times[name].append(elapsed_ms)

    def get_stats(self, name: str) -> Optional[TimingResult]:
        if not self._times.get(name):
            return None
        return TimingResult(name, np.array(self._times[name]))

    def get_all_stats(self) -> Dict[str, TimingResult]:
        """Statistics of every method, in the order first timed."""
        return {name: self.get_stats(name) for name, times in self._times.items() if times}

    def mean_ms(self) -> Dict[str, float]:
        return {name: stat.mean_ms for name, stat in self.get_all_stats().items()}

    def report(self) -> str:
        stats = self.get_all_stats()
        if not stats:
            return "No methods timed"
        return "\n".join(["Computation time per method"] + [f"  {stat}" for stat in stats.values()])

    def reset(self) -> None:
        self._times.clear()
