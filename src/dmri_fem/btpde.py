"""
Theta-rule time stepping of the Bloch-Torrey PDE for interval-wise constant
gradients.

The semi-discrete system reads

    M dxi/dt = J(t) xi,    J = -(S + Q + R + i gamma (g . Mx)),

where g is constant on each interval of the gradient profile. On every
interval the implicit operator ``M - dt theta J`` is factorized once and
reused for all substeps:

    (M - dt theta J) xi_{n+1} = (M + dt (1 - theta) J) xi_n

theta = 0.5 is Crank-Nicolson (second order), theta = 1 implicit Euler
(first order, L-stable).
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np
from numpy.typing import NDArray
from scipy import sparse
from scipy.sparse.linalg import splu

from .assembly import FEMatrices
from .errors import ConfigurationError, LinearAlgebraError
from .gradients import SolverKind, select_solver
from .model import Model

logger = logging.getLogger(__name__)


def compute_signal(M: sparse.spmatrix, xi: NDArray[np.complex128]) -> complex:
    """Total magnetization: the integral of xi over the domain."""
    return complex(np.sum(M @ xi))


@dataclass
class StepperConfig:
    """
    Configuration of the theta-rule stepper.

    Attributes:
        theta: Degree of implicitness in [0, 1].
        timestep: Target time step; each interval is split into the closest
            whole number of equal steps.
    """

    theta: float = 0.5
    timestep: float = 5.0

    def __post_init__(self):
        if not 0.0 <= self.theta <= 1.0:
            raise ConfigurationError(f"theta must lie in [0, 1], got {self.theta}")
        if not self.timestep > 0.0:
            raise ConfigurationError(f"timestep must be positive, got {self.timestep}")

    @classmethod
    def crank_nicolson(cls, timestep: float) -> "StepperConfig":
        """Second order, A-stable."""
        return cls(theta=0.5, timestep=timestep)

    @classmethod
    def implicit_euler(cls, timestep: float) -> "StepperConfig":
        """First order, unconditionally stable and damping."""
        return cls(theta=1.0, timestep=timestep)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"theta": self.theta, "timestep": self.timestep}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepperConfig":
        """Create from dictionary."""
        return cls(
            theta=data.get("theta", 0.5),
            timestep=data.get("timestep", 5.0),
        )


class CancellationToken:
    """
    Cooperative cancellation signal, optionally with a time budget.

    The stepper polls :attr:`cancelled` at interval and substep boundaries.
    """

    def __init__(self, deadline: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = deadline

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancellationToken":
        """Token that cancels itself ``seconds`` from now."""
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._event.set()
        return self._event.is_set()


class SolveStatus(Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class BTPDEResult:
    """
    Outcome of a BTPDE solve.

    Attributes:
        magnetization: Complex magnetization on all degrees of freedom
            (read-only).
        status: Whether the solve ran to the end or was cancelled.
        time: Time reached.
        intervals_completed: Number of profile intervals fully stepped.
        nsteps: Total number of time steps taken.
    """

    magnetization: NDArray[np.complex128]
    status: SolveStatus
    time: float
    intervals_completed: int
    nsteps: int

    @property
    def cancelled(self) -> bool:
        return self.status is SolveStatus.CANCELLED


@dataclass
class IntervalConstantBTPDE:
    """
    BTPDE problem specialised for gradients constant on each interval.

    Attributes:
        model: Mesh and coefficients.
        matrices: Assembled finite element matrices (never modified).
        config: Theta and target time step.
    """

    model: Model
    matrices: FEMatrices
    config: StepperConfig = field(default_factory=StepperConfig)

    def __post_init__(self):
        if self.matrices.num_dofs != self.model.mesh.total_points:
            raise ConfigurationError(
                f"Matrices have {self.matrices.num_dofs} degrees of freedom, "
                f"mesh has {self.model.mesh.total_points} points"
            )

    @property
    def theta(self) -> float:
        return self.config.theta

    @property
    def timestep(self) -> float:
        return self.config.timestep

    def _check_gradient(self, gradient) -> NDArray[np.float64]:
        kind = select_solver(gradient)
        if kind is not SolverKind.INTERVAL_CONSTANT:
            raise ConfigurationError(
                "Time profile must be interval-wise constant; "
                f"this gradient needs the {kind.value} solver"
            )
        ivals = np.asarray(gradient.intervals(), dtype=np.float64)
        if ivals.ndim != 1 or len(ivals) < 2:
            raise ConfigurationError("Gradient must define at least one interval")
        decreasing = np.flatnonzero(np.diff(ivals) < 0)
        if len(decreasing) > 0:
            raise ConfigurationError(
                "Interval times must be increasing",
                interval=int(decreasing[0]),
            )
        return ivals

    def solve(
        self,
        gradient,
        callbacks: Sequence = (),
        cancel: Optional[CancellationToken] = None,
    ) -> BTPDEResult:
        """
        Solve the BTPDE over all intervals of the gradient profile.

        Args:
            gradient: Gradient exposing ``isconstant()``, ``intervals()`` and
                evaluation ``gradient(t) -> (3,)``.
            callbacks: Observers with ``initialize``, ``update`` and
                ``finalize`` hooks.
            cancel: Optional cancellation token.

        Returns:
            BTPDEResult holding the final (or, when cancelled, partial)
            magnetization.

        Raises:
            ConfigurationError: If the gradient is not interval-wise constant.
            LinearAlgebraError: If an implicit operator cannot be factorized
                or the state becomes non-finite.
        """
        ivals = self._check_gradient(gradient)

        theta, timestep = self.config.theta, self.config.timestep
        gamma = self.model.gamma
        M, Mx = self.matrices.M, self.matrices.Mx
        K = (self.matrices.S + self.matrices.Q + self.matrices.R).tocsr()

        t = 0.0
        xi = self.model.initial_conditions()
        nsteps = 0
        intervals_completed = 0
        status = SolveStatus.COMPLETED

        for cb in callbacks:
            cb.initialize(self, gradient, xi, t)

        for i in range(len(ivals) - 1):
            if cancel is not None and cancel.cancelled:
                status = SolveStatus.CANCELLED
                break

            logger.debug("Solving for interval [%g, %g]", ivals[i], ivals[i + 1])

            # Adjust time step to divide interval uniformly
            ival_length = ivals[i + 1] - ivals[i]
            if ival_length == 0.0:
                intervals_completed += 1
                continue
            nt = max(1, int(round(ival_length / timestep)))
            dt = ival_length / nt

            # Gradient at midpoint of interval
            g = np.asarray(gradient((ivals[i] + ivals[i + 1]) / 2.0), dtype=np.float64)

            J = -(K + 1j * gamma * (g[0] * Mx[0] + g[1] * Mx[1] + g[2] * Mx[2]))
            F = self._factorize(M - dt * theta * J, interval=i)
            E = (M + dt * (1.0 - theta) * J).tocsr()

            # Step to end of interval
            for k in range(nt):
                if cancel is not None and cancel.cancelled:
                    status = SolveStatus.CANCELLED
                    break

                Ey = E @ xi
                xi = F.solve(Ey)
                if not np.all(np.isfinite(xi)):
                    raise LinearAlgebraError(
                        "Magnetization became non-finite", interval=i, substep=k
                    )

                t = ivals[i] + (k + 1) * dt
                nsteps += 1
                for cb in callbacks:
                    cb.update(self, gradient, xi, t)

            if status is SolveStatus.CANCELLED:
                break
            intervals_completed += 1

        if status is SolveStatus.CANCELLED:
            logger.info(
                "Solve cancelled at t = %g after %d of %d intervals",
                t, intervals_completed, len(ivals) - 1,
            )

        for cb in callbacks:
            cb.finalize()

        xi.setflags(write=False)
        return BTPDEResult(
            magnetization=xi,
            status=status,
            time=float(t),
            intervals_completed=intervals_completed,
            nsteps=nsteps,
        )

    @staticmethod
    def _factorize(A: sparse.spmatrix, interval: int):
        try:
            return splu(sparse.csc_matrix(A, dtype=np.complex128))
        except RuntimeError as e:
            raise LinearAlgebraError(
                f"Factorization of the implicit operator failed: {e}",
                interval=interval,
            ) from e


def solve_multigrad(
    problem: IntervalConstantBTPDE,
    gradients: Sequence,
    callbacks_factory: Optional[Callable[[], Sequence]] = None,
    max_workers: Optional[int] = None,
) -> List[BTPDEResult]:
    """
    Solve one problem for several gradients.

    The matrices of ``problem`` are shared read-only; every solve owns its
    state, operators and callbacks.

    Args:
        problem: Problem to solve.
        gradients: Gradients, e.g. one per direction.
        callbacks_factory: Creates fresh callbacks for each solve.
        max_workers: Solve on a thread pool of this size when greater
            than one.

    Returns:
        One result per gradient, in input order.
    """
    def run(gradient) -> BTPDEResult:
        callbacks = callbacks_factory() if callbacks_factory is not None else ()
        return problem.solve(gradient, callbacks)

    if max_workers is not None and max_workers > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            return list(executor.map(run, gradients))
    return [run(gradient) for gradient in gradients]
