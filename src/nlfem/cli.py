"""Command-line front end: ``nlfem-run input.yaml``."""

from __future__ import annotations

import argparse
import sys
import time
from typing import Optional, Sequence

import numba

from nlfem.config import SimulationConfig, load_input
from nlfem.convergence import ResidualControl
from nlfem.exceptions import ComputationalError, ConfigurationError, ConvergenceError
from nlfem.fem.linear_solver import make_linear_solver
from nlfem.fem.mesh import structured_hex_mesh
from nlfem.load_step import AdaptiveLoadStep
from nlfem.output.vtk_export import Visualisation
from nlfem.solid_mesh import SolidMesh
from nlfem.static_matrix import StaticMatrix
from nlfem.utils.run_info import print_material_summary, print_run_header


def build_solver(cfg: SimulationConfig) -> StaticMatrix:
    """Mesh, boundaries, residual control, load stepper, linear solver and writer from a config."""
    (Lx, Ly, Lz), (nx, ny, nz) = cfg.mesh.length, cfg.mesh.elements
    nodes, elems = structured_hex_mesh(Lx, Ly, Lz, nx, ny, nz)

    mesh = SolidMesh(
        nodes,
        elems,
        cfg.material,
        cfg.constitutive,
        cfg.load_case.boundary_conditions,
        quadrature=cfg.mesh.quadrature,
        use_numba=cfg.use_numba,
        debug=cfg.debug_newton,
    )
    print_material_summary(mesh.submeshes[0].constitutive())

    load_step = AdaptiveLoadStep.from_dict(
        cfg.load_case.time, mandatory_times=mesh.boundary_times(), debug=cfg.debug_substeps
    )

    visualisation = None
    if cfg.visualisation is not None:
        visualisation = Visualisation(
            cfg.visualisation.directory,
            name=cfg.name,
            fields=cfg.visualisation.fields,
            write_every=cfg.visualisation.write_every,
        )

    return StaticMatrix(
        mesh,
        ResidualControl.from_dict(cfg.nonlinear),
        load_step,
        make_linear_solver(cfg.linear_solver),
        visualisation,
        max_iterations=int(cfg.nonlinear.get("NonlinearIterations", 15)),
        debug_newton=cfg.debug_newton,
    )


def set_threads(threads) -> None:
    """Cap the worker threads of the Numba parallel kernels."""
    if threads is None:
        return
    try:
        numba.set_num_threads(int(threads))
    except ValueError as exc:
        raise ConfigurationError(f'"Threads"={threads} is not available: {exc}') from exc
    print(f"[numba] threads={numba.get_num_threads()}")


def run(cfg: SimulationConfig) -> StaticMatrix:
    print_run_header(cfg.name)
    set_threads(cfg.threads)
    t0 = time.perf_counter()

    solver = build_solver(cfg)
    solver.solve()
    for i, case in enumerate(cfg.steps, start=1):
        print(f"  [step] load case {i} of {len(cfg.steps)}")
        solver.internal_restart(case.boundary_conditions, case.time)
        solver.solve()

    print(
        f"[run] finished: t={solver.load_step.last_step_time():.6e}  "
        f"load factor={solver.load_step.load_factor():.4f}  "
        f"steps={solver.load_step.step_count}  wall={time.perf_counter() - t0:.2f}s"
    )
    return solver


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="nlfem-run", description="Nonlinear static solid analysis")
    parser.add_argument("input", help="YAML or JSON input document")
    parser.add_argument("--debug-newton", action="store_true", help="print per-iteration Newton norms")
    parser.add_argument("--debug-substeps", action="store_true", help="print load step growth messages")
    parser.add_argument("--no-numba", action="store_true", help="use the NumPy return mapping for J2")
    parser.add_argument("--threads", type=int, default=None, help="number of Numba worker threads")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    try:
        cfg = load_input(args.input)
        if args.debug_newton:
            cfg.debug_newton = True
        if args.debug_substeps:
            cfg.debug_substeps = True
        if args.threads is not None:
            cfg.threads = args.threads
        if args.no_numba:
            cfg.use_numba = False
        run(cfg)
    except (ConfigurationError, ConvergenceError, ComputationalError) as exc:
        print(f"[run] error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
