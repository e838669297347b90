"""
Mesh data structures for multi-compartment finite element models.

A model geometry is an ordered sequence of compartments. Every compartment
owns its points, its tetrahedra and, for each boundary of the geometry, the
triangles of its surface lying on that boundary. Compartments touching each
other at an interface each hold their own copy of the interface points.
"""

from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Tuple

import numpy as np
from numpy.typing import NDArray

from .errors import MeshValidationError
from .geometry import build_face_owners, get_mesh_volumes


@dataclass
class TetMesh:
    """
    Tetrahedral mesh of a single compartment.

    Attributes:
        nodes: Node coordinates, shape (N, 3).
        elements: Element connectivity, shape (M, 4) for tetrahedra.
    """

    nodes: NDArray[np.float64]
    elements: NDArray[np.int64]

    @property
    def num_nodes(self) -> int:
        """Number of nodes in the mesh."""
        return len(self.nodes)

    @property
    def num_elements(self) -> int:
        """Number of elements in the mesh."""
        return len(self.elements)

    def compute_element_volumes(self) -> NDArray[np.float64]:
        """
        Compute volume of each tetrahedral element.

        Returns:
            Array of element volumes.
        """
        volumes, _ = get_mesh_volumes(self.nodes, self.elements)
        return volumes

    def boundary_facets(self) -> NDArray[np.int64]:
        """
        Find the triangles on the surface of the mesh.

        Returns:
            Faces that belong to exactly one element, shape (K, 3), with
            vertices in ascending index order.
        """
        owners = build_face_owners(self.elements)
        faces = [face for face, elems in owners.items() if len(elems) == 1]
        return np.array(sorted(faces), dtype=np.int64).reshape(-1, 3)


def _as_facet_array(facets: Any) -> NDArray[np.int64]:
    return np.asarray(facets, dtype=np.int64).reshape(-1, 3)


@dataclass
class FEMesh:
    """
    Finite element mesh split into compartments.

    Attributes:
        points: Per compartment point coordinates, each of shape (N_c, 3).
        elements: Per compartment tetrahedra, each of shape (M_c, 4), holding
            indices into that compartment's points.
        facets: Table indexed ``facets[compartment][boundary]`` of triangles,
            each of shape (K, 3) with local point indices. Compartments not
            touching a boundary hold an empty (0, 3) array.
    """

    points: List[NDArray[np.float64]]
    elements: List[NDArray[np.int64]]
    facets: List[List[NDArray[np.int64]]] = field(default_factory=list)

    def __post_init__(self):
        self.points = [np.asarray(p, dtype=np.float64) for p in self.points]
        self.elements = [np.asarray(e, dtype=np.int64) for e in self.elements]
        self.facets = [[_as_facet_array(f) for f in row] for row in self.facets]
        if not self.facets:
            self.facets = [[] for _ in self.points]

    @property
    def num_compartments(self) -> int:
        """Number of compartments."""
        return len(self.points)

    @property
    def num_boundaries(self) -> int:
        """Number of boundaries (columns of the facet table)."""
        return len(self.facets[0]) if self.facets else 0

    @property
    def num_points(self) -> List[int]:
        """Point count of each compartment."""
        return [len(p) for p in self.points]

    @property
    def total_points(self) -> int:
        """Number of global degrees of freedom."""
        return int(sum(self.num_points))

    @property
    def offsets(self) -> NDArray[np.int64]:
        """Global index of the first degree of freedom of each compartment."""
        return np.concatenate([[0], np.cumsum(self.num_points)[:-1]]).astype(np.int64)

    def compartment(self, icmpt: int) -> TetMesh:
        """Tetrahedral mesh of one compartment."""
        return TetMesh(nodes=self.points[icmpt], elements=self.elements[icmpt])

    def validate(self) -> None:
        """
        Check shapes and index ranges of all connectivity arrays, and that
        no facet appears twice among the boundaries of one compartment.

        Raises:
            MeshValidationError: On the first malformed array found.
        """
        if len(self.elements) != self.num_compartments:
            raise MeshValidationError(
                f"Got {len(self.elements)} element sets for "
                f"{self.num_compartments} point sets"
            )
        if len(self.facets) != self.num_compartments:
            raise MeshValidationError(
                f"Facet table has {len(self.facets)} rows for "
                f"{self.num_compartments} compartments"
            )

        nboundary = self.num_boundaries
        for icmpt, (points, elements) in enumerate(zip(self.points, self.elements)):
            if points.ndim != 2 or points.shape[1] != 3:
                raise MeshValidationError(
                    f"Points must have shape (N, 3), got {points.shape}",
                    compartment=icmpt,
                )
            if elements.ndim != 2 or elements.shape[1] != 4:
                raise MeshValidationError(
                    f"Elements must have shape (M, 4), got {elements.shape}",
                    compartment=icmpt,
                )
            if len(elements) == 0:
                raise MeshValidationError("Compartment has no elements", compartment=icmpt)
            if elements.min() < 0 or elements.max() >= len(points):
                raise MeshValidationError(
                    f"Element indices outside point range [0, {len(points)})",
                    compartment=icmpt,
                )

            if len(self.facets[icmpt]) != nboundary:
                raise MeshValidationError(
                    f"Facet table row has {len(self.facets[icmpt])} boundaries, "
                    f"expected {nboundary}",
                    compartment=icmpt,
                )
            seen: Dict[Tuple[int, ...], int] = {}
            for iboundary, facets in enumerate(self.facets[icmpt]):
                if len(facets) > 0 and (facets.min() < 0 or facets.max() >= len(points)):
                    raise MeshValidationError(
                        f"Facet indices outside point range [0, {len(points)})",
                        compartment=icmpt,
                        boundary=iboundary,
                    )

                # A facet belongs to one boundary of its compartment, once
                for facet in np.sort(facets, axis=1):
                    key = tuple(facet.tolist())
                    if key in seen:
                        raise MeshValidationError(
                            f"Facet {list(key)} is listed more than once "
                            f"(first on boundary {seen[key]})",
                            compartment=icmpt,
                            boundary=iboundary,
                        )
                    seen[key] = iboundary

    def compartment_volumes(self) -> NDArray[np.float64]:
        """Volume of each compartment."""
        return np.array([
            get_mesh_volumes(points, elements)[1]
            for points, elements in zip(self.points, self.elements)
        ])

    def split_field(self, field_values: NDArray) -> List[NDArray]:
        """
        Split a global field into per-compartment pieces.

        Args:
            field_values: Values on all degrees of freedom, in global order.

        Returns:
            List of views, one per compartment.
        """
        if len(field_values) != self.total_points:
            raise ValueError(
                f"Field has {len(field_values)} values, mesh has {self.total_points} points"
            )
        return np.split(np.asarray(field_values), self.offsets[1:])


def split_mesh(
    points: NDArray[np.float64],
    elements: NDArray[np.int64],
    element_labels: NDArray[np.int64],
    facets: NDArray[np.int64],
    facet_labels: NDArray[np.int64],
    num_compartments: Optional[int] = None,
    num_boundaries: Optional[int] = None,
) -> FEMesh:
    """
    Split a labelled global mesh into compartments.

    Every compartment receives its own copy of the points used by its
    elements. A labelled triangle is assigned to each compartment owning it
    as an element face, so interface triangles end up in both compartments
    they separate.

    Args:
        points: Global point coordinates, shape (N, 3).
        elements: Global tetrahedra, shape (M, 4).
        element_labels: Compartment index of each tetrahedron, shape (M,).
        facets: Boundary triangles, shape (K, 3).
        facet_labels: Boundary index of each triangle, shape (K,).
        num_compartments: Number of compartments (defaults to max label + 1).
        num_boundaries: Number of boundaries (defaults to max label + 1).

    Returns:
        FEMesh with local numbering per compartment.

    Raises:
        MeshValidationError: If a labelled triangle is not a face of any
            compartment.
    """
    points = np.asarray(points, dtype=np.float64)
    elements = np.asarray(elements, dtype=np.int64)
    element_labels = np.asarray(element_labels, dtype=np.int64)
    facets = _as_facet_array(facets)
    facet_labels = np.asarray(facet_labels, dtype=np.int64)

    if num_compartments is None:
        num_compartments = int(element_labels.max()) + 1
    if num_boundaries is None:
        num_boundaries = int(facet_labels.max()) + 1 if len(facet_labels) else 0

    sorted_facets = np.sort(facets, axis=1)
    assigned = np.zeros(len(facets), dtype=bool)

    cmpt_points = []
    cmpt_elements = []
    cmpt_facets = []
    for icmpt in range(num_compartments):
        elems = elements[element_labels == icmpt]
        used = np.unique(elems)
        local = np.full(len(points), -1, dtype=np.int64)
        local[used] = np.arange(len(used))

        cmpt_points.append(points[used])
        cmpt_elements.append(local[elems])

        faces = build_face_owners(elems)
        owned = np.array(
            [tuple(f.tolist()) in faces for f in sorted_facets], dtype=bool
        ).reshape(len(facets))
        assigned |= owned

        row = []
        for iboundary in range(num_boundaries):
            selected = facets[owned & (facet_labels == iboundary)]
            row.append(local[selected].reshape(-1, 3))
        cmpt_facets.append(row)

    orphans = np.flatnonzero(~assigned)
    if len(orphans) > 0:
        raise MeshValidationError(
            f"Triangles {orphans.tolist()[:10]} are not faces of any compartment"
        )

    return FEMesh(points=cmpt_points, elements=cmpt_elements, facets=cmpt_facets)


LABEL_KEY = "label"


def save_mesh(mesh: FEMesh, filename: str) -> None:
    """
    Save a compartment mesh to file using meshio.

    Compartments are written one after the other without merging their
    points. Tetrahedra carry their compartment index and triangles their
    boundary index in the ``label`` cell data.

    Args:
        mesh: Mesh to save.
        filename: Output filename (supports .vtu, .msh, etc.).
    """
    import meshio

    offsets = mesh.offsets

    tets = np.concatenate([e + off for e, off in zip(mesh.elements, offsets)])
    tet_labels = np.concatenate([
        np.full(len(e), icmpt, dtype=np.int64) for icmpt, e in enumerate(mesh.elements)
    ])

    tris = [np.zeros((0, 3), dtype=np.int64)]
    tri_labels = [np.zeros(0, dtype=np.int64)]
    for icmpt, row in enumerate(mesh.facets):
        for iboundary, facets in enumerate(row):
            tris.append(facets + offsets[icmpt])
            tri_labels.append(np.full(len(facets), iboundary, dtype=np.int64))

    meshio_mesh = meshio.Mesh(
        points=np.concatenate(mesh.points),
        cells=[("tetra", tets), ("triangle", np.concatenate(tris))],
        cell_data={LABEL_KEY: [tet_labels, np.concatenate(tri_labels)]},
    )

    meshio_mesh.write(filename)


def load_mesh(filename: str, label_key: str = LABEL_KEY) -> FEMesh:
    """
    Load a compartment mesh from file using meshio.

    Args:
        filename: Input filename.
        label_key: Cell data array holding compartment indices on tetrahedra
            and boundary indices on triangles. Without it all tetrahedra form
            one compartment and all triangles one boundary.

    Returns:
        Loaded FEMesh.
    """
    import meshio

    meshio_mesh = meshio.read(filename)
    labels = meshio_mesh.cell_data.get(label_key)

    tets, tet_labels, tris, tri_labels = [], [], [], []
    for iblock, cell_block in enumerate(meshio_mesh.cells):
        block_labels = (
            np.asarray(labels[iblock], dtype=np.int64)
            if labels is not None
            else np.zeros(len(cell_block.data), dtype=np.int64)
        )
        if cell_block.type == "tetra":
            tets.append(cell_block.data)
            tet_labels.append(block_labels)
        elif cell_block.type == "triangle":
            tris.append(cell_block.data)
            tri_labels.append(block_labels)

    if not tets:
        raise ValueError("No tetrahedral elements found in mesh file")

    return split_mesh(
        points=meshio_mesh.points,
        elements=np.concatenate(tets),
        element_labels=np.concatenate(tet_labels),
        facets=np.concatenate(tris) if tris else np.zeros((0, 3), dtype=np.int64),
        facet_labels=np.concatenate(tri_labels) if tri_labels else np.zeros(0, dtype=np.int64),
    )
