"""
Pytest configuration and shared fixtures for dmri_fem tests.
"""

import pytest
import numpy as np

# Add src to path for imports
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dmri_fem.mesh import FEMesh, TetMesh  # noqa: E402
from dmri_fem.model import Model  # noqa: E402

# Kuhn decomposition of a cube into 6 tetrahedra sharing the main diagonal.
# Corner m sits at (m & 1, (m >> 1) & 1, (m >> 2) & 1). Translated copies
# of the cube produce conforming meshes.
KUHN_TETRAHEDRA = [
    [0, 1, 3, 7],
    [0, 1, 5, 7],
    [0, 2, 3, 7],
    [0, 2, 6, 7],
    [0, 4, 5, 7],
    [0, 4, 6, 7],
]


def build_box(n=2, origin=(0.0, 0.0, 0.0), size=(1.0, 1.0, 1.0)):
    """Structured tetrahedral mesh of a box with n cells per side."""
    origin = np.asarray(origin, dtype=np.float64)
    size = np.asarray(size, dtype=np.float64)

    def index(i, j, k):
        return i + (n + 1) * (j + (n + 1) * k)

    points = np.array([
        origin + size * np.array([i, j, k]) / n
        for k in range(n + 1)
        for j in range(n + 1)
        for i in range(n + 1)
    ])

    elements = []
    for k in range(n):
        for j in range(n):
            for i in range(n):
                corners = [
                    index(i + (m & 1), j + ((m >> 1) & 1), k + ((m >> 2) & 1))
                    for m in range(8)
                ]
                for tet in KUHN_TETRAHEDRA:
                    elements.append([corners[c] for c in tet])

    return points, np.array(elements, dtype=np.int64)


def single_box_mesh(n=2):
    """One compartment, one boundary covering the whole surface."""
    points, elements = build_box(n)
    facets = TetMesh(nodes=points, elements=elements).boundary_facets()
    return FEMesh(points=[points], elements=[elements], facets=[[facets]])


def two_box_mesh(n=2):
    """
    Boxes [0, 1]^3 and [1, 2] x [0, 1]^2 touching at x = 1.

    Boundary 0 is the outer surface of compartment 0, boundary 1 the
    interface and boundary 2 the outer surface of compartment 1.
    """
    points = []
    elements = []
    facets = []
    empty = np.zeros((0, 3), dtype=np.int64)
    for icmpt in range(2):
        pts, elems = build_box(n, origin=(float(icmpt), 0.0, 0.0))
        surface = TetMesh(nodes=pts, elements=elems).boundary_facets()
        on_interface = np.all(np.isclose(pts[surface][:, :, 0], 1.0), axis=1)

        row = [empty, surface[on_interface], empty]
        row[2 * icmpt] = surface[~on_interface]

        points.append(pts)
        elements.append(elems)
        facets.append(row)

    return FEMesh(points=points, elements=elements, facets=facets)


@pytest.fixture
def box_mesh():
    """Unit cube, 2 cells per side, single compartment."""
    return single_box_mesh(n=2)


@pytest.fixture
def box_model(box_mesh):
    """Unit cube with unit diffusivity and no relaxation."""
    return Model(mesh=box_mesh, D=1.0, gamma=1.0)


@pytest.fixture
def coupled_mesh():
    """Two unit cubes sharing a face."""
    return two_box_mesh(n=2)


@pytest.fixture
def coupled_model(coupled_mesh):
    """Two permeable compartments with different densities."""
    return Model(
        mesh=coupled_mesh,
        D=[1.0, 0.5],
        T2=[50.0, 80.0],
        rho=[1.0, 0.6],
        kappa=[0.0, 0.3, 0.0],
        gamma=1.0,
    )


@pytest.fixture
def rng():
    """Seeded random number generator for reproducible tests."""
    return np.random.default_rng(42)
