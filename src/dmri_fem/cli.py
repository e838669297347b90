"""
Command-line interface for simulating diffusion MRI signals on a mesh.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional


def main(args: Optional[list] = None) -> int:
    """
    Main entry point for the dmri_fem CLI.

    Args:
        args: Command line arguments (uses sys.argv if None).

    Returns:
        Exit code (0 for success).
    """
    parser = argparse.ArgumentParser(
        prog="dmri-simulate",
        description="Simulate the diffusion MRI signal of a compartment mesh with the BTPDE",
    )

    parser.add_argument(
        "mesh",
        type=Path,
        help="Mesh file with compartment labels on tetrahedra and boundary labels on triangles",
    )

    parser.add_argument(
        "--diffusivity",
        type=float,
        nargs="+",
        default=[0.002],
        help="Isotropic diffusivity per compartment in um^2/us (one value applies to all)",
    )

    parser.add_argument(
        "--t2",
        type=float,
        nargs="+",
        default=[float("inf")],
        help="T2 relaxation time per compartment in us (default: no relaxation)",
    )

    parser.add_argument(
        "--rho",
        type=float,
        nargs="+",
        default=[1.0],
        help="Initial spin density per compartment (default: 1)",
    )

    parser.add_argument(
        "--kappa",
        type=float,
        nargs="+",
        default=[0.0],
        help="Permeability or surface relaxivity per boundary in um/us (default: 0)",
    )

    parser.add_argument(
        "--delta",
        type=float,
        default=10000.0,
        help="Gradient pulse duration in us (default: 10000)",
    )

    parser.add_argument(
        "--Delta",
        type=float,
        default=43000.0,
        help="Time between pulse onsets in us (default: 43000)",
    )

    parser.add_argument(
        "--sequence",
        choices=["PGSE", "DoublePGSE"],
        default="PGSE",
        help="Gradient sequence (default: PGSE)",
    )

    parser.add_argument(
        "-b", "--bvalue",
        type=float,
        default=1000.0,
        help="b-value in s/mm^2 (default: 1000)",
    )

    parser.add_argument(
        "--direction",
        type=float,
        nargs=3,
        default=[1.0, 0.0, 0.0],
        metavar=("X", "Y", "Z"),
        help="Gradient direction",
    )

    parser.add_argument(
        "--theta",
        type=float,
        default=0.5,
        help="Degree of implicitness (0.5: Crank-Nicolson, 1: implicit Euler)",
    )

    parser.add_argument(
        "--timestep",
        type=float,
        default=500.0,
        help="Target time step in us (default: 500)",
    )

    parser.add_argument(
        "-j", "--jobs",
        type=int,
        default=None,
        help="Assemble compartments on this many threads",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )

    parsed_args = parser.parse_args(args)

    try:
        return run_simulation(parsed_args)
    except KeyboardInterrupt:
        print("\nSimulation interrupted by user")
        return 1
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        if parsed_args.verbose:
            import traceback
            traceback.print_exc()
        return 1


def run_simulation(args: argparse.Namespace) -> int:
    """Run the simulation with parsed arguments."""
    import time
    from .assembly import assemble_matrices
    from .btpde import IntervalConstantBTPDE, StepperConfig, compute_signal
    from .callbacks import Printer
    from .gradients import PGSE, DoublePGSE, ScalarGradient
    from .logging_config import setup_logging
    from .mesh import load_mesh
    from .model import GAMMA_PROTON, Model

    setup_logging(logging.DEBUG if args.verbose else logging.WARNING)
    start_time = time.time()

    mesh = load_mesh(str(args.mesh))
    ncompartment = mesh.num_compartments

    def per_compartment(values):
        return values[0] if len(values) == 1 else values

    model = Model(
        mesh=mesh,
        D=per_compartment(args.diffusivity),
        T2=per_compartment(args.t2),
        rho=per_compartment(args.rho),
        kappa=per_compartment(args.kappa),
        gamma=GAMMA_PROTON,
    )

    if args.verbose:
        print(f"Mesh: {args.mesh}")
        print(f"  Compartments:        {ncompartment}")
        print(f"  Boundaries:          {mesh.num_boundaries}")
        print(f"  Points:              {mesh.num_points}")
        print()

    matrices = assemble_matrices(model, max_workers=args.jobs)

    profile_cls = DoublePGSE if args.sequence == "DoublePGSE" else PGSE
    profile = profile_cls(args.delta, args.Delta)
    # s/mm^2 and us/um^2 coincide
    gradient = ScalarGradient.from_bvalue(args.direction, profile, args.bvalue, model.gamma)

    problem = IntervalConstantBTPDE(
        model=model,
        matrices=matrices,
        config=StepperConfig(theta=args.theta, timestep=args.timestep),
    )

    callbacks = [Printer(nupdate=10, verbosity=2)] if args.verbose else []
    result = problem.solve(gradient, callbacks)

    signal = compute_signal(matrices.M, result.magnetization)
    signal_0 = compute_signal(matrices.M, model.initial_conditions())
    cmpt_signals = [
        compute_signal(M_c, xi_c)
        for M_c, xi_c in zip(matrices.M_cmpts, mesh.split_field(result.magnetization))
    ]

    total_time = time.time() - start_time

    print(f"Signal:             {signal.real:.6g}{signal.imag:+.6g}i")
    print(f"Attenuation:        {abs(signal) / abs(signal_0):.6g}")
    for icmpt, s in enumerate(cmpt_signals):
        print(f"  Compartment {icmpt}:    {s.real:.6g}{s.imag:+.6g}i")
    print(f"Time steps:         {result.nsteps} ({total_time:.2f}s)")

    return 0


if __name__ == "__main__":
    sys.exit(main())
