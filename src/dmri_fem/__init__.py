"""
dmri_fem: Diffusion MRI simulation with finite elements

Solves the Bloch-Torrey PDE on multi-compartment tetrahedral meshes with
P1 finite elements.

Pipeline:
- Mesh: per-compartment points, tetrahedra and boundary facets
- Model: diffusion tensors, T2 relaxation, spin densities, permeabilities
- Assembly: mass, stiffness, first-moment and flux matrices, coupled
  across compartment interfaces
- Time stepping: theta-rule scheme for interval-wise constant gradients
  (PGSE, double PGSE), one LU factorization per interval

Quick start:
    from dmri_fem import (
        Model, PGSE, ScalarGradient, IntervalConstantBTPDE, StepperConfig,
        assemble_matrices, compute_signal, load_mesh,
    )

    mesh = load_mesh("cells.vtu")
    model = Model(mesh=mesh, D=0.002, T2=float("inf"), kappa=1e-5)
    matrices = assemble_matrices(model)

    gradient = ScalarGradient.from_bvalue([1, 0, 0], PGSE(2000, 6000), 1000, model.gamma)
    problem = IntervalConstantBTPDE(model, matrices, StepperConfig.crank_nicolson(5.0))
    result = problem.solve(gradient)
    signal = compute_signal(matrices.M, result.magnetization)
"""

__version__ = "0.1.0"

from .errors import MeshValidationError, ConfigurationError, LinearAlgebraError
from .mesh import TetMesh, FEMesh, split_mesh, save_mesh, load_mesh
from .model import Model, GAMMA_PROTON
from .assembly import (
    CompartmentMatrices,
    FEMatrices,
    assemble_compartment,
    assemble_flux_matrices,
    assemble_matrices,
    couple_flux_matrix,
)
from .gradients import (
    TimeProfile,
    PGSE,
    DoublePGSE,
    CosOGSE,
    SinOGSE,
    ScalarGradient,
    GeneralGradient,
    SolverKind,
    select_solver,
)
from .btpde import (
    StepperConfig,
    IntervalConstantBTPDE,
    CancellationToken,
    SolveStatus,
    BTPDEResult,
    compute_signal,
    solve_multigrad,
)
from .callbacks import Callback, Printer, SignalHistory
from .logging_config import setup_logging

__all__ = [
    # Errors
    "MeshValidationError",
    "ConfigurationError",
    "LinearAlgebraError",
    # Mesh
    "TetMesh",
    "FEMesh",
    "split_mesh",
    "save_mesh",
    "load_mesh",
    # Model
    "Model",
    "GAMMA_PROTON",
    # Assembly
    "CompartmentMatrices",
    "FEMatrices",
    "assemble_compartment",
    "assemble_flux_matrices",
    "assemble_matrices",
    "couple_flux_matrix",
    # Gradients
    "TimeProfile",
    "PGSE",
    "DoublePGSE",
    "CosOGSE",
    "SinOGSE",
    "ScalarGradient",
    "GeneralGradient",
    "SolverKind",
    "select_solver",
    # Time stepping
    "StepperConfig",
    "IntervalConstantBTPDE",
    "CancellationToken",
    "SolveStatus",
    "BTPDEResult",
    "compute_signal",
    "solve_multigrad",
    # Callbacks
    "Callback",
    "Printer",
    "SignalHistory",
    # Logging
    "setup_logging",
]
