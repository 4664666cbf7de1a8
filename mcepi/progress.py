"""
Progress reporting for MCEpi Monte Carlo runs.

The runner advances a ``ProgressReporter`` once per finished replicate;
the reporter forwards throttled ``(current, total)`` updates to any
callable, e.g. ``PrintReporter`` for the console or ``TqdmReporter`` for
notebooks.
"""

import sys
import time
from typing import Callable, Optional


class SimulationCancelled(Exception):
    """Raised when a Monte Carlo run is cancelled by the user."""


class ProgressReporter:
    """Counts finished replicates and forwards throttled updates.

    Args:
        total: Number of replicates in the run.
        callback: Called as ``callback(current, total)``.
        update_every: Minimum number of replicates between two callback
            calls. Defaults to ``max(1, total // 100)``. The last replicate
            always triggers a call.
    """

    def __init__(
        self,
        total: int,
        callback: Callable[[int, int], None],
        update_every: Optional[int] = None,
    ):
        self.total = total
        self.update_every = update_every if update_every is not None else max(1, total // 100)
        self._callback = callback
        self._current = 0
        self._failed = 0
        self._last_reported = 0

    @property
    def current(self) -> int:
        return self._current

    @property
    def failed(self) -> int:
        """Replicates whose fit failed so far."""
        return self._failed

    def _report(self):
        self._last_reported = self._current
        self._callback(self._current, self.total)

    def start(self):
        """Reset the counters and report ``0/total``."""
        self._current = 0
        self._failed = 0
        self._report()

    def advance(self, n: int = 1, failed: int = 0):
        """Record *n* finished replicates, *failed* of which did not fit."""
        self._current += n
        self._failed += failed
        if self._current >= self.total or self._current - self._last_reported >= self.update_every:
            self._report()

    def finish(self):
        """Report ``total/total`` unless that was the last update sent."""
        self._current = max(self._current, self.total)
        if self._last_reported != self._current:
            self._report()


class PrintReporter:
    """Single-line console progress on stderr with elapsed time.

    Writes ``\\rReplicates 226/500 ( 45.2%) elapsed 12.3s`` and ends the
    line once the run is complete.
    """

    def __init__(self, stream=None):
        self._stream = stream
        self._started = None

    def __call__(self, current: int, total: int):
        if total <= 0:
            return
        stream = self._stream if self._stream is not None else sys.stderr
        if self._started is None or current == 0:
            self._started = time.monotonic()
        elapsed = time.monotonic() - self._started

        stream.write(f"\rReplicates {current}/{total} ({100.0 * current / total:5.1f}%) elapsed {elapsed:.1f}s")
        if current >= total:
            stream.write("\n")
            self._started = None
        stream.flush()


class TqdmReporter:
    """Progress bar backed by tqdm, imported on first use.

    Usage::

        from mcepi.progress import TqdmReporter
        model.run_replicates(progress_callback=TqdmReporter(desc="replicates"))
    """

    def __init__(self, **tqdm_kwargs):
        self._tqdm_kwargs = tqdm_kwargs
        self._bar = None

    def _open(self, total: int):
        from tqdm import tqdm

        self._bar = tqdm(total=total, unit="rep", **self._tqdm_kwargs)

    def __call__(self, current: int, total: int):
        if self._bar is None:
            self._open(total)

        if current > self._bar.n:
            self._bar.update(current - self._bar.n)

        if current >= total:
            self._bar.close()
            self._bar = None


def compute_total_replicates(n_replicates: int, n_configs: int = 1) -> int:
    """Number of simulate-and-fit cycles across *n_configs* configurations."""
    return n_replicates * n_configs
