"""
Local element kernels for P1 finite elements.

Each kernel evaluates per-element contributions (4x4 on tetrahedra, 3x3 on
triangular facets) and scatter-adds them into a sparse matrix indexed by
the compartment's local point numbering.
"""

from itertools import product
from math import factorial
from typing import Optional

import numpy as np
from numpy.typing import NDArray
from scipy import sparse

from .geometry import get_facet_areas, get_mesh_volumes, shape_gradients


def _barycentric_cubic_integrals() -> NDArray[np.float64]:
    """
    Integrals of phi_i * phi_j * phi_k over a tetrahedron of unit volume.

    Uses int(l1^a l2^b l3^c l4^d) = 6 V a! b! c! d! / (3 + a + b + c + d)!.
    """
    table = np.zeros((4, 4, 4))
    for i, j, k in product(range(4), repeat=3):
        counts = np.bincount([i, j, k], minlength=4)
        table[i, j, k] = np.prod([factorial(int(c)) for c in counts]) / 120.0
    return table


_MASS_LOCAL = (np.ones((4, 4)) + np.eye(4)) / 20.0
_MASS_WEIGHTED_LOCAL = _barycentric_cubic_integrals()
_FACET_MASS_LOCAL = (np.ones((3, 3)) + np.eye(3)) / 12.0


def scatter_local_matrices(
    connectivity: NDArray[np.int64],
    local: NDArray[np.float64],
    num_points: int,
) -> sparse.csr_matrix:
    """
    Assemble local matrices into a global sparse matrix.

    Args:
        connectivity: Point indices per cell, shape (C, k).
        local: Local matrices, shape (C, k, k).
        num_points: Size of the assembled matrix.

    Returns:
        CSR matrix of shape (num_points, num_points); duplicate entries
        are summed.
    """
    k = connectivity.shape[1]
    rows = np.repeat(connectivity, k, axis=1).ravel()
    cols = np.tile(connectivity, (1, k)).ravel()
    return sparse.csr_matrix(
        (local.ravel(), (rows, cols)),
        shape=(num_points, num_points),
    )


def assemble_mass_matrix(
    elements: NDArray[np.int64],
    volumes: NDArray[np.float64],
    weights: Optional[NDArray[np.float64]] = None,
    num_points: Optional[int] = None,
) -> sparse.csr_matrix:
    """
    Assemble the P1 mass matrix int(phi_i phi_j) dV.

    With ``weights`` (one value per point, interpolated linearly) the
    weighted mass matrix int(w phi_i phi_j) dV is returned instead; passing
    a coordinate component gives the first-moment matrix of that direction.

    Args:
        elements: Element connectivity, shape (M, 4).
        volumes: Element volumes, shape (M,).
        weights: Optional nodal weight field, shape (N,).
        num_points: Matrix size (defaults to the largest referenced index + 1,
            or ``len(weights)`` when weights are given).

    Returns:
        Sparse (N, N) matrix.
    """
    if num_points is None:
        num_points = len(weights) if weights is not None else int(elements.max()) + 1

    if weights is None:
        local = volumes[:, None, None] * _MASS_LOCAL
    else:
        element_weights = weights[elements]  # (M, 4)
        local = volumes[:, None, None] * np.einsum(
            "ijk,ek->eij", _MASS_WEIGHTED_LOCAL, element_weights
        )

    return scatter_local_matrices(elements, local, num_points)


def assemble_stiffness_matrix(
    elements: NDArray[np.int64],
    points: NDArray[np.float64],
    D: NDArray[np.float64],
) -> sparse.csr_matrix:
    """
    Assemble the stiffness matrix int(grad(phi_i) . D grad(phi_j)) dV.

    Args:
        elements: Element connectivity, shape (M, 4).
        points: Point coordinates, shape (N, 3).
        D: Diffusion tensor, shape (3, 3).

    Returns:
        Sparse (N, N) matrix.
    """
    volumes, _ = get_mesh_volumes(points, elements)
    grads = shape_gradients(points, elements)

    local = volumes[:, None, None] * np.einsum(
        "eia,ab,ejb->eij", grads, np.asarray(D, dtype=np.float64), grads
    )

    return scatter_local_matrices(elements, local, len(points))


def assemble_flux_matrix(
    facets: NDArray[np.int64],
    points: NDArray[np.float64],
    weights: Optional[NDArray[np.float64]] = None,
) -> sparse.csr_matrix:
    """
    Assemble the surface mass matrix int(phi_i phi_j) dA over facets.

    Args:
        facets: Triangles, shape (K, 3).
        points: Point coordinates, shape (N, 3).
        weights: Optional constant weight per facet, shape (K,), e.g. one
            component of the outward normal.

    Returns:
        Sparse (N, N) matrix.
    """
    areas = get_facet_areas(points, facets)
    if weights is not None:
        areas = areas * weights

    local = areas[:, None, None] * _FACET_MASS_LOCAL

    return scatter_local_matrices(facets, local, len(points))
