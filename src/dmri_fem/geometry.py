"""
Geometric quantities of P1 tetrahedral meshes.

Element volumes, basis-function gradients, facet areas and outward facet
normals. All functions work on a single compartment: ``points`` is an
``(N, 3)`` coordinate array and ``elements``/``facets`` hold local point
indices.
"""

from typing import Dict, Tuple

import numpy as np
from numpy.typing import NDArray

from .errors import MeshValidationError

# Volume (area) relative to the cube (square) of the longest edge below
# which a tetrahedron (triangle) is treated as degenerate
DEGENERATE_VOLUME_TOL = 1e-12

# Gradients of the barycentric coordinates on the reference tetrahedron
_REFERENCE_GRADIENTS = np.array([
    [-1.0, -1.0, -1.0],
    [1.0, 0.0, 0.0],
    [0.0, 1.0, 0.0],
    [0.0, 0.0, 1.0],
])

# Local faces of a tetrahedron, each listed with its opposite vertex
_TET_FACES = np.array([
    [1, 2, 3],
    [0, 2, 3],
    [0, 1, 3],
    [0, 1, 2],
])


def _longest_edges(coords: NDArray[np.float64]) -> NDArray[np.float64]:
    """Longest edge of each cell, coords of shape (C, k, 3)."""
    k = coords.shape[1]
    lengths = [
        np.linalg.norm(coords[:, i] - coords[:, j], axis=1)
        for i in range(k) for j in range(i + 1, k)
    ]
    return np.max(lengths, axis=0)


def _edge_matrices(
    points: NDArray[np.float64],
    elements: NDArray[np.int64],
) -> NDArray[np.float64]:
    """Rows are the three edge vectors leaving vertex 0 of each element."""
    coords = points[elements]  # (M, 4, 3)
    return coords[:, 1:, :] - coords[:, :1, :]


def get_mesh_volumes(
    points: NDArray[np.float64],
    elements: NDArray[np.int64],
) -> Tuple[NDArray[np.float64], float]:
    """
    Compute the volume of every tetrahedron.

    Args:
        points: Point coordinates, shape (N, 3).
        elements: Element connectivity, shape (M, 4).

    Returns:
        Tuple of (element volumes, total volume).

    Raises:
        MeshValidationError: If any element has (numerically) zero volume.
    """
    if len(elements) == 0:
        return np.zeros(0), 0.0

    volumes = np.abs(np.linalg.det(_edge_matrices(points, elements))) / 6.0

    tol = DEGENERATE_VOLUME_TOL * _longest_edges(points[elements]) ** 3
    degenerate = np.flatnonzero(volumes <= tol)
    if len(degenerate) > 0:
        shown = ", ".join(str(i) for i in degenerate[:10])
        more = "" if len(degenerate) <= 10 else f" and {len(degenerate) - 10} more"
        raise MeshValidationError(
            f"Degenerate (zero-volume) elements: {shown}{more}"
        )

    return volumes, float(volumes.sum())


def shape_gradients(
    points: NDArray[np.float64],
    elements: NDArray[np.int64],
) -> NDArray[np.float64]:
    """
    Gradients of the four P1 basis functions of each element.

    Returns:
        Array of shape (M, 4, 3); entry [e, i] is grad(phi_i) on element e.
    """
    edges = _edge_matrices(points, elements)
    # grad(lambda_k) is column k of edges^{-1}
    inverse_t = np.linalg.inv(edges).transpose(0, 2, 1)
    return np.matmul(_REFERENCE_GRADIENTS, inverse_t)


def get_facet_areas(
    points: NDArray[np.float64],
    facets: NDArray[np.int64],
) -> NDArray[np.float64]:
    """Area of each triangular facet."""
    coords = points[facets]
    cross = np.cross(coords[:, 1] - coords[:, 0], coords[:, 2] - coords[:, 0])
    return 0.5 * np.linalg.norm(cross, axis=1)


def build_face_owners(elements: NDArray[np.int64]) -> Dict[Tuple[int, ...], list]:
    """Map each sorted element face to the elements that contain it."""
    owners: Dict[Tuple[int, ...], list] = {}
    faces = np.sort(elements[:, _TET_FACES], axis=2)  # (M, 4, 3)
    for e, element_faces in enumerate(faces):
        for face in element_faces:
            owners.setdefault(tuple(face.tolist()), []).append(e)
    return owners


def get_mesh_surfacenormals(
    points: NDArray[np.float64],
    elements: NDArray[np.int64],
    facets: NDArray[np.int64],
) -> Tuple[NDArray[np.float64], NDArray[np.int64], NDArray[np.float64]]:
    """
    Compute outward unit normals of boundary facets.

    Each facet must be the face of exactly one element; the normal is
    oriented away from the vertex of that element opposite the facet.

    Args:
        points: Point coordinates, shape (N, 3).
        elements: Element connectivity, shape (M, 4).
        facets: Boundary triangles, shape (K, 3).

    Returns:
        Tuple of (facet centers (K, 3), owning element per facet (K,),
        outward unit normals (K, 3)).

    Raises:
        MeshValidationError: If a facet is not a boundary face of the mesh
            or has zero area.
    """
    owners = build_face_owners(elements)

    owner_elements = np.empty(len(facets), dtype=np.int64)
    for k, facet in enumerate(np.sort(facets, axis=1)):
        candidates = owners.get(tuple(facet.tolist()), [])
        if len(candidates) != 1:
            where = "no element" if not candidates else f"{len(candidates)} elements"
            raise MeshValidationError(
                f"Facet {k} {facet.tolist()} is a face of {where}; "
                "facets must lie on the compartment boundary"
            )
        owner_elements[k] = candidates[0]

    coords = points[facets]
    centers = coords.mean(axis=1)
    normals = np.cross(coords[:, 1] - coords[:, 0], coords[:, 2] - coords[:, 0])
    lengths = np.linalg.norm(normals, axis=1)

    flat = np.flatnonzero(lengths <= DEGENERATE_VOLUME_TOL * _longest_edges(coords) ** 2)
    if len(flat) > 0:
        raise MeshValidationError(f"Degenerate (zero-area) facets: {flat.tolist()[:10]}")

    normals /= lengths[:, None]

    # Flip normals pointing towards the interior of the owning element
    element_centroids = points[elements[owner_elements]].mean(axis=1)
    inward = np.einsum("ij,ij->i", normals, element_centroids - centers) > 0
    normals[inward] *= -1.0

    return centers, owner_elements, normals
