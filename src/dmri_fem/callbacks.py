"""
Observers invoked by the time stepper.

The stepper calls ``initialize`` once with the initial state, ``update``
after every time step and ``finalize`` at the end of the solve. Return
values are ignored.
"""

import logging
from typing import List, Tuple

import numpy as np
from numpy.typing import NDArray

from .btpde import compute_signal

logger = logging.getLogger(__name__)


def _check_nupdate(nupdate: int) -> int:
    if int(nupdate) != nupdate or nupdate < 1:
        raise ValueError(f"nupdate must be a positive integer, got {nupdate}")
    return int(nupdate)


class Callback:
    """Base observer with no-op hooks."""

    def initialize(self, problem, gradient, xi: NDArray[np.complex128], t: float) -> None:
        pass

    def update(self, problem, gradient, xi: NDArray[np.complex128], t: float) -> None:
        pass

    def finalize(self) -> None:
        pass


class Printer(Callback):
    """
    Log solver progress.

    Args:
        nupdate: Log every ``nupdate`` time steps.
        verbosity: 1 logs the time, 2 also the signal.
    """

    def __init__(self, nupdate: int = 1, verbosity: int = 1):
        self.nupdate = _check_nupdate(nupdate)
        self.verbosity = verbosity
        self.n = 0

    def initialize(self, problem, gradient, xi, t):
        self.n = 0
        logger.info("Solving BTPDE with %s", type(problem).__name__)
        if self.verbosity >= 2:
            logger.info("  Gradient: %s", gradient)
            logger.info("  Degrees of freedom: %d", len(xi))

    def update(self, problem, gradient, xi, t):
        self.n += 1
        if self.n % self.nupdate != 0:
            return
        if self.verbosity >= 2:
            signal = compute_signal(problem.matrices.M, xi)
            logger.info("t = %.4g, signal = %.6g%+.6gi", t, signal.real, signal.imag)
        else:
            logger.info("t = %.4g", t)

    def finalize(self):
        logger.info("Solve complete after %d time steps", self.n)


class SignalHistory(Callback):
    """
    Record the total signal over time.

    Attributes:
        times: Times at which the signal was recorded.
        signals: Complex signal at each recorded time.
    """

    def __init__(self, nupdate: int = 1):
        self.nupdate = _check_nupdate(nupdate)
        self.n = 0
        self.times: List[float] = []
        self.signals: List[complex] = []

    def initialize(self, problem, gradient, xi, t):
        self.n = 0
        self.times = [t]
        self.signals = [compute_signal(problem.matrices.M, xi)]

    def update(self, problem, gradient, xi, t):
        self.n += 1
        if self.n % self.nupdate == 0:
            self.times.append(t)
            self.signals.append(compute_signal(problem.matrices.M, xi))

    def as_arrays(self) -> Tuple[NDArray[np.float64], NDArray[np.complex128]]:
        return np.array(self.times), np.array(self.signals)
