"""
Assembly of the global finite element operators of a Bloch-Torrey model.

Compartments are assembled independently into immutable
:class:`CompartmentMatrices` records (optionally on a thread pool). A single
reduction step then builds the block-diagonal global matrices and the
flux operator coupling compartments across shared boundaries.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray
from scipy import sparse
from scipy.spatial import cKDTree

from .errors import MeshValidationError
from .geometry import get_mesh_surfacenormals, get_mesh_volumes
from .kernels import assemble_flux_matrix, assemble_mass_matrix, assemble_stiffness_matrix
from .model import Model

logger = logging.getLogger(__name__)

# Interface points closer than this fraction of the mesh size are matched
MATCH_TOLERANCE = 1e-8


@dataclass(frozen=True)
class CompartmentMatrices:
    """
    Finite element matrices of one compartment.

    Attributes:
        M: Mass matrix.
        S: Stiffness matrix weighted by the compartment's diffusion tensor.
        Mx: First-moment matrices int(x_d phi_i phi_j) for d = x, y, z.
        G: Surface integrals int(phi_i n_d) dA over all boundary facets,
            shape (N_c, 3).
        flux_blocks: Surface mass matrix per boundary, ``None`` where the
            compartment has no facets.
        volume: Compartment volume.
    """

    M: sparse.csr_matrix
    S: sparse.csr_matrix
    Mx: Tuple[sparse.csr_matrix, sparse.csr_matrix, sparse.csr_matrix]
    G: NDArray[np.float64]
    flux_blocks: Tuple[Optional[sparse.csr_matrix], ...]
    volume: float


@dataclass(frozen=True)
class FEMatrices:
    """
    Global finite element operators.

    Degrees of freedom are ordered by compartment, then by local point
    index. ``R`` is the block-diagonal relaxation matrix ``M_c / T2_c`` and
    ``Q`` the coupled flux operator.
    """

    M: sparse.csr_matrix
    S: sparse.csr_matrix
    R: sparse.csr_matrix
    Mx: Tuple[sparse.csr_matrix, sparse.csr_matrix, sparse.csr_matrix]
    Q: sparse.csr_matrix
    M_cmpts: List[sparse.csr_matrix]
    S_cmpts: List[sparse.csr_matrix]
    Mx_cmpts: Tuple[List[sparse.csr_matrix], List[sparse.csr_matrix], List[sparse.csr_matrix]]
    G: List[NDArray[np.float64]]
    volumes: NDArray[np.float64]

    @property
    def num_dofs(self) -> int:
        return self.M.shape[0]


def assemble_compartment(
    points: NDArray[np.float64],
    elements: NDArray[np.int64],
    facets: Sequence[NDArray[np.int64]],
    D: NDArray[np.float64],
) -> CompartmentMatrices:
    """
    Assemble all local matrices of one compartment.

    Args:
        points: Point coordinates, shape (N, 3).
        elements: Tetrahedra, shape (M, 4).
        facets: Triangles per boundary, each of shape (K, 3).
        D: Diffusion tensor, shape (3, 3).

    Returns:
        CompartmentMatrices record.
    """
    npoint = len(points)
    fevolumes, volume = get_mesh_volumes(points, elements)

    M = assemble_mass_matrix(elements, fevolumes, num_points=npoint)
    S = assemble_stiffness_matrix(elements, points, D)
    Mx = tuple(
        assemble_mass_matrix(elements, fevolumes, weights=points[:, dim])
        for dim in range(3)
    )

    G = np.zeros((npoint, 3))
    flux_blocks = []
    for boundary_facets in facets:
        if len(boundary_facets) == 0:
            flux_blocks.append(None)
            continue

        _, _, normals = get_mesh_surfacenormals(points, elements, boundary_facets)

        # Surface normal weighted flux matrix in each canonical direction
        for dim in range(3):
            Q_dim = assemble_flux_matrix(boundary_facets, points, normals[:, dim])
            G[:, dim] += np.asarray(Q_dim.sum(axis=1)).ravel()

        flux_blocks.append(assemble_flux_matrix(boundary_facets, points))

    return CompartmentMatrices(
        M=M,
        S=S,
        Mx=Mx,
        G=G,
        flux_blocks=tuple(flux_blocks),
        volume=volume,
    )


def assemble_flux_matrices(model: Model) -> List[List[Optional[sparse.csr_matrix]]]:
    """
    Surface mass matrices indexed ``[compartment][boundary]``.

    Entries are ``None`` where a compartment does not touch a boundary.
    """
    mesh = model.mesh
    return [
        [
            assemble_flux_matrix(facets, points) if len(facets) > 0 else None
            for facets in mesh.facets[icmpt]
        ]
        for icmpt, points in enumerate(mesh.points)
    ]


def _match_interface_points(
    points1: NDArray[np.float64],
    inds1: NDArray[np.int64],
    points2: NDArray[np.float64],
    inds2: NDArray[np.int64],
    tolerance: float,
) -> NDArray[np.int64]:
    """For each point in ``inds1``, the matching point of ``inds2``."""
    if len(inds1) != len(inds2):
        raise MeshValidationError(
            f"Interface has {len(inds1)} points on one side and {len(inds2)} on the other"
        )
    tree = cKDTree(points2[inds2])
    distances, nearest = tree.query(points1[inds1])
    if np.any(distances > tolerance) or len(np.unique(nearest)) != len(nearest):
        raise MeshValidationError("Interface points of touching compartments do not coincide")
    return inds2[nearest]


def couple_flux_matrix(
    model: Model,
    flux_blocks: Sequence[Sequence[Optional[sparse.csr_matrix]]],
    symmetrical: bool = False,
) -> sparse.csr_matrix:
    """
    Build the global flux operator Q from per-compartment surface matrices.

    On an outer boundary (touched by one compartment) ``kappa`` acts as a
    surface relaxivity. On an interface between two compartments the flux
    leaving one side enters the other; unless ``symmetrical`` the exchange
    is weighted so that the equilibrium densities ``rho`` are stationary.

    Args:
        model: Model providing mesh, ``kappa`` and ``rho``.
        flux_blocks: Surface mass matrices indexed ``[compartment][boundary]``.
        symmetrical: Use unit weights on both sides of every interface.

    Returns:
        Sparse (N, N) matrix with N the total number of points.

    Raises:
        MeshValidationError: If more than two compartments share a boundary
            or interface points do not match.
    """
    mesh = model.mesh
    offsets = mesh.offsets
    ntotal = mesh.total_points

    blocks = []

    def add(block: sparse.spmatrix, row_offset: int, col_offset: int) -> None:
        coo = block.tocoo()
        blocks.append((coo.row + row_offset, coo.col + col_offset, coo.data))

    for iboundary in range(mesh.num_boundaries):
        kappa = model.kappa[iboundary]
        touching = [
            icmpt for icmpt in range(mesh.num_compartments)
            if flux_blocks[icmpt][iboundary] is not None
        ]

        if len(touching) == 1:
            icmpt = touching[0]
            add(kappa * flux_blocks[icmpt][iboundary], offsets[icmpt], offsets[icmpt])

        elif len(touching) == 2:
            cmpt1, cmpt2 = touching
            Q1 = flux_blocks[cmpt1][iboundary]
            Q2 = flux_blocks[cmpt2][iboundary]
            npoint1, npoint2 = mesh.num_points[cmpt1], mesh.num_points[cmpt2]

            inds1 = np.unique(mesh.facets[cmpt1][iboundary])
            inds2 = np.unique(mesh.facets[cmpt2][iboundary])
            scale = max(
                np.ptp(mesh.points[cmpt1], axis=0).max(),
                np.ptp(mesh.points[cmpt2], axis=0).max(),
            )
            try:
                matched = _match_interface_points(
                    mesh.points[cmpt1], inds1, mesh.points[cmpt2], inds2,
                    MATCH_TOLERANCE * scale,
                )
            except MeshValidationError as e:
                raise MeshValidationError(e.message, boundary=iboundary) from e

            # P maps local points of compartment 2 onto compartment 1
            P = sparse.csr_matrix(
                (np.ones(len(inds1)), (matched, inds1)),
                shape=(npoint2, npoint1),
            )

            if symmetrical:
                c12, c21 = 1.0, 1.0
            else:
                rho1, rho2 = model.rho[cmpt1], model.rho[cmpt2]
                c21 = 2.0 * rho2 / (rho1 + rho2)
                c12 = 2.0 * rho1 / (rho1 + rho2)

            add(kappa * c21 * Q1, offsets[cmpt1], offsets[cmpt1])
            add(-kappa * c12 * (Q1 @ P.T), offsets[cmpt1], offsets[cmpt2])
            add(kappa * c12 * Q2, offsets[cmpt2], offsets[cmpt2])
            add(-kappa * c21 * (Q2 @ P), offsets[cmpt2], offsets[cmpt1])

        elif len(touching) > 2:
            raise MeshValidationError(
                f"{len(touching)} compartments share one boundary; at most two may touch",
                boundary=iboundary,
            )

    if not blocks:
        return sparse.csr_matrix((ntotal, ntotal))

    rows, cols, data = (np.concatenate(parts) for parts in zip(*blocks))
    return sparse.csr_matrix((data, (rows, cols)), shape=(ntotal, ntotal))


def _assemble_compartment_of(model: Model, icmpt: int) -> CompartmentMatrices:
    mesh = model.mesh
    logger.debug(
        "Assembling compartment %d (%d points, %d elements)",
        icmpt, mesh.num_points[icmpt], len(mesh.elements[icmpt]),
    )
    try:
        return assemble_compartment(
            mesh.points[icmpt], mesh.elements[icmpt], mesh.facets[icmpt], model.D[icmpt]
        )
    except MeshValidationError as e:
        raise MeshValidationError(e.message, compartment=icmpt, boundary=e.boundary) from e


def assemble_matrices(model: Model, max_workers: Optional[int] = None) -> FEMatrices:
    """
    Assemble finite element matrices.

    Args:
        model: Mesh and coefficients.
        max_workers: Assemble compartments on a thread pool of this size
            when greater than one; sequentially otherwise.

    Returns:
        FEMatrices bundle.

    Raises:
        MeshValidationError: For malformed connectivity, facets off the
            compartment boundary or degenerate elements.
    """
    mesh = model.mesh
    mesh.validate()

    icmpts = range(mesh.num_compartments)
    if max_workers is not None and max_workers > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            cmpts = list(executor.map(lambda i: _assemble_compartment_of(model, i), icmpts))
    else:
        cmpts = [_assemble_compartment_of(model, i) for i in icmpts]

    M_cmpts = [c.M for c in cmpts]
    S_cmpts = [c.S for c in cmpts]
    Mx_cmpts = tuple([c.Mx[dim] for c in cmpts] for dim in range(3))

    M = sparse.block_diag(M_cmpts, format="csr")
    S = sparse.block_diag(S_cmpts, format="csr")
    R = sparse.block_diag(
        [M_c / T2 for M_c, T2 in zip(M_cmpts, model.T2)], format="csr"
    )
    Mx = tuple(sparse.block_diag(Mx_cmpts[dim], format="csr") for dim in range(3))
    Q = couple_flux_matrix(model, [c.flux_blocks for c in cmpts])

    logger.debug("Assembled %d degrees of freedom in %d compartments", M.shape[0], len(cmpts))

    return FEMatrices(
        M=M,
        S=S,
        R=R,
        Mx=Mx,
        Q=Q,
        M_cmpts=M_cmpts,
        S_cmpts=S_cmpts,
        Mx_cmpts=Mx_cmpts,
        G=[c.G for c in cmpts],
        volumes=np.array([c.volume for c in cmpts]),
    )
