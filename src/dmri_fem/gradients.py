"""
Magnetic field gradient sequences.

A gradient is a vector function of time g(t). Solvers only need three things
from it: the value at a time, the times where its profile may jump
(``intervals``) and whether it is constant in between (``isconstant``). The
latter decides which time stepping strategy may be used.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional, Sequence

import numpy as np
from numpy.typing import NDArray


class TimeProfile(ABC):
    """Scalar time profile f(t) of a gradient sequence."""

    def __init__(self, delta: float, Delta: float):
        if delta <= 0:
            raise ValueError(f"Pulse duration delta must be positive, got {delta}")
        if Delta < delta:
            raise ValueError(f"Delta ({Delta}) must be at least delta ({delta})")
        self.delta = float(delta)
        self.Delta = float(Delta)

    @abstractmethod
    def __call__(self, t: float) -> float:
        ...

    @abstractmethod
    def int_F2(self) -> float:
        """Integral of F(t)^2 over the sequence, F being the integral of f."""

    def intervals(self) -> NDArray[np.float64]:
        """Times delimiting the pieces of the profile."""
        return np.array([0.0, self.delta, self.Delta, self.Delta + self.delta])

    def isconstant(self) -> bool:
        """Whether the profile is constant on each interval."""
        return False

    @property
    def echotime(self) -> float:
        return self.Delta + self.delta

    def __repr__(self) -> str:
        return f"{type(self).__name__}(delta={self.delta}, Delta={self.Delta})"


class PGSE(TimeProfile):
    """Pulsed gradient spin echo: +1 on [0, delta), -1 on [Delta, Delta + delta)."""

    def __call__(self, t: float) -> float:
        if 0.0 <= t < self.delta:
            return 1.0
        if self.Delta <= t < self.Delta + self.delta:
            return -1.0
        return 0.0

    def int_F2(self) -> float:
        return self.delta ** 2 * (self.Delta - self.delta / 3.0)

    def isconstant(self) -> bool:
        return True


class DoublePGSE(TimeProfile):
    """Two PGSE sequences played back to back."""

    def __call__(self, t: float) -> float:
        shift = self.Delta + self.delta
        if t >= shift:
            t = t - shift
            if t >= shift:
                return 0.0
        if 0.0 <= t < self.delta:
            return 1.0
        if self.Delta <= t < self.Delta + self.delta:
            return -1.0
        return 0.0

    def int_F2(self) -> float:
        return 2.0 * self.delta ** 2 * (self.Delta - self.delta / 3.0)

    def intervals(self) -> NDArray[np.float64]:
        single = super().intervals()
        return np.concatenate([single, single[1:] + self.Delta + self.delta])

    def isconstant(self) -> bool:
        return True

    @property
    def echotime(self) -> float:
        return 2.0 * (self.Delta + self.delta)


class CosOGSE(TimeProfile):
    """Oscillating gradient: cos(2 pi n t / delta) lobes of opposite sign."""

    def __init__(self, delta: float, Delta: float, nperiod: int):
        super().__init__(delta, Delta)
        self.nperiod = int(nperiod)

    def _lobe(self, t: float) -> float:
        return float(np.cos(2.0 * np.pi * self.nperiod * t / self.delta))

    def __call__(self, t: float) -> float:
        if 0.0 <= t < self.delta:
            return self._lobe(t)
        if self.Delta <= t < self.Delta + self.delta:
            return -self._lobe(t - self.Delta)
        return 0.0

    def int_F2(self) -> float:
        return self.delta ** 3 / (4.0 * np.pi ** 2 * self.nperiod ** 2)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(delta={self.delta}, Delta={self.Delta}, nperiod={self.nperiod})"


class SinOGSE(CosOGSE):
    """Oscillating gradient: sin(2 pi n t / delta) lobes of opposite sign."""

    def _lobe(self, t: float) -> float:
        return float(np.sin(2.0 * np.pi * self.nperiod * t / self.delta))

    def int_F2(self) -> float:
        return 3.0 * self.delta ** 3 / (4.0 * np.pi ** 2 * self.nperiod ** 2)


class ScalarGradient:
    """
    Gradient with a fixed direction: g(t) = amplitude * f(t) * direction.

    Attributes:
        direction: Unit direction vector.
        profile: Time profile f.
        amplitude: Gradient amplitude.
    """

    def __init__(self, direction: Sequence[float], profile: TimeProfile, amplitude: float):
        direction = np.asarray(direction, dtype=np.float64)
        norm = np.linalg.norm(direction)
        if direction.shape != (3,) or norm == 0:
            raise ValueError(f"Direction must be a nonzero 3-vector, got {direction}")
        self.direction = direction / norm
        self.profile = profile
        self.amplitude = float(amplitude)

    @classmethod
    def from_bvalue(
        cls,
        direction: Sequence[float],
        profile: TimeProfile,
        bvalue: float,
        gamma: float,
    ) -> "ScalarGradient":
        """Gradient whose amplitude gives the requested b-value."""
        amplitude = np.sqrt(bvalue / profile.int_F2()) / gamma
        return cls(direction, profile, amplitude)

    def bvalue(self, gamma: float) -> float:
        return gamma ** 2 * self.amplitude ** 2 * self.profile.int_F2()

    def __call__(self, t: float) -> NDArray[np.float64]:
        return self.amplitude * self.profile(t) * self.direction

    def intervals(self) -> NDArray[np.float64]:
        return self.profile.intervals()

    def isconstant(self) -> bool:
        return self.profile.isconstant()

    @property
    def echotime(self) -> float:
        return self.profile.echotime


class GeneralGradient:
    """
    Arbitrary gradient g(t) given as a function returning a 3-vector.

    Args:
        func: Gradient as a function of time.
        echotime: End of the sequence.
        intervals: Times where ``func`` may jump (defaults to [0, echotime]).
        isconstant: Declare ``func`` constant on every interval.
    """

    def __init__(
        self,
        func: Callable[[float], Sequence[float]],
        echotime: float,
        intervals: Optional[Sequence[float]] = None,
        isconstant: bool = False,
    ):
        self.func = func
        self._echotime = float(echotime)
        self._intervals = (
            np.array([0.0, self._echotime])
            if intervals is None
            else np.asarray(intervals, dtype=np.float64)
        )
        self._isconstant = bool(isconstant)

    def __call__(self, t: float) -> NDArray[np.float64]:
        return np.asarray(self.func(t), dtype=np.float64)

    def intervals(self) -> NDArray[np.float64]:
        return self._intervals

    def isconstant(self) -> bool:
        return self._isconstant

    @property
    def echotime(self) -> float:
        return self._echotime


class SolverKind(Enum):
    """Time stepping strategies for the BTPDE."""

    INTERVAL_CONSTANT = "interval_constant"
    GENERAL = "general"


def select_solver(gradient) -> SolverKind:
    """
    Pick the time stepping strategy a gradient supports.

    Interval-wise constant gradients can use the theta-rule stepper; all
    others need a general ODE integrator.
    """
    if gradient.isconstant():
        return SolverKind.INTERVAL_CONSTANT
    return SolverKind.GENERAL
