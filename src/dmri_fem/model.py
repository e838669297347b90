"""
Physical model: mesh plus per-compartment and per-boundary coefficients.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

import numpy as np
from numpy.typing import NDArray

from .mesh import FEMesh

# Gyromagnetic ratio of water protons in rad/(us mT), lengths in um
GAMMA_PROTON = 2.67513e-4

TensorLike = Union[float, Sequence[Sequence[float]], NDArray[np.float64]]


def _as_tensor(value: TensorLike) -> NDArray[np.float64]:
    tensor = np.asarray(value, dtype=np.float64)
    if tensor.ndim == 0:
        return float(tensor) * np.eye(3)
    if tensor.shape != (3, 3):
        raise ValueError(f"Diffusion tensor must be a scalar or 3x3, got shape {tensor.shape}")
    return tensor


def _per_item(value, count: int, name: str, default: float) -> List[float]:
    if value is None:
        return [default] * count
    if np.isscalar(value):
        return [float(value)] * count
    values = [float(v) for v in value]
    if len(values) != count:
        raise ValueError(f"Expected {count} values for {name}, got {len(values)}")
    return values


@dataclass
class Model:
    """
    Bloch-Torrey model of a multi-compartment geometry.

    Scalars given for ``T2``, ``rho`` or ``kappa`` apply to every
    compartment (boundary); a scalar diffusion coefficient ``d`` means the
    isotropic tensor ``d * I``.

    Attributes:
        mesh: Compartment mesh.
        D: Diffusion tensor per compartment (3x3, symmetric PSD).
        T2: Transverse relaxation time per compartment; ``inf`` disables
            relaxation.
        rho: Initial spin density per compartment.
        kappa: Permeability (interfaces) or surface relaxivity (outer
            boundaries) per boundary.
        gamma: Gyromagnetic ratio.
    """

    mesh: FEMesh
    D: List[NDArray[np.float64]]
    T2: Optional[List[float]] = None
    rho: Optional[List[float]] = None
    kappa: Optional[List[float]] = None
    gamma: float = GAMMA_PROTON

    def __post_init__(self):
        ncompartment = self.mesh.num_compartments
        nboundary = self.mesh.num_boundaries

        if isinstance(self.D, np.ndarray) and self.D.ndim == 3:
            tensors = list(self.D)
        elif np.isscalar(self.D) or np.asarray(self.D).shape == (3, 3):
            tensors = [self.D] * ncompartment
        else:
            tensors = list(self.D)
        if len(tensors) != ncompartment:
            raise ValueError(
                f"Expected {ncompartment} diffusion tensors, got {len(tensors)}"
            )
        self.D = [_as_tensor(d) for d in tensors]

        for icmpt, tensor in enumerate(self.D):
            if not np.allclose(tensor, tensor.T):
                raise ValueError(f"Diffusion tensor of compartment {icmpt} is not symmetric")
            if np.linalg.eigvalsh(tensor).min() < -1e-12 * max(np.abs(tensor).max(), 1.0):
                raise ValueError(
                    f"Diffusion tensor of compartment {icmpt} is not positive semi-definite"
                )

        self.T2 = _per_item(self.T2, ncompartment, "T2", np.inf)
        self.rho = _per_item(self.rho, ncompartment, "rho", 1.0)
        self.kappa = _per_item(self.kappa, nboundary, "kappa", 0.0)

        if any(t <= 0 for t in self.T2):
            raise ValueError("T2 relaxation times must be positive")

    @property
    def num_compartments(self) -> int:
        return self.mesh.num_compartments

    def initial_conditions(self) -> NDArray[np.complex128]:
        """
        Initial magnetization: the spin density of each compartment on all
        of its degrees of freedom, in global order.
        """
        return np.concatenate([
            np.full(npoint, rho, dtype=np.complex128)
            for npoint, rho in zip(self.mesh.num_points, self.rho)
        ])

    def mean_diffusivity(self) -> float:
        """Volume-weighted mean of the compartment diffusivities (trace / 3)."""
        volumes = self.mesh.compartment_volumes()
        traces = np.array([np.trace(d) / 3.0 for d in self.D])
        return float(traces @ volumes / volumes.sum())
